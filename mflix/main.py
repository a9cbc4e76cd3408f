"""FastAPI entrypoint exposing movie CRUD, reporting and search endpoints."""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

from mflix.core.config import get_settings
from mflix.core.logging_config import configure_logging
from mflix.db import MovieRepository, get_database
from mflix.services.errors import (
    DatabaseOperationError,
    MflixError,
    NotFoundError,
    ValidationError,
)
from mflix.services.models import MovieData, MovieQuery, MovieUpdate, SearchRequest
from mflix.services.pagination import normalize_page
from mflix.services.reports import ReportService
from mflix.services.search import SearchService
from mflix.services.voyage import (
    EmbeddingNotConfiguredError,
    EmbeddingServiceError,
    VoyageClient,
)
from mflix.verification import verify_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Configure logging and verify database provisioning before serving."""

    configure_logging()
    if get_settings().verify_database_on_startup:
        verify_database(get_database())
    yield


app = FastAPI(title="Mflix Movie Service", lifespan=lifespan)


class MovieCreateRequest(BaseModel):
    title: str | None = None
    year: int | None = None
    plot: str | None = None
    fullplot: str | None = None
    genres: list[str] | None = None
    directors: list[str] | None = None
    writers: list[str] | None = None
    cast: list[str] | None = None
    countries: list[str] | None = None
    languages: list[str] | None = None
    rated: str | None = None
    runtime: int | None = None
    poster: str | None = None

    def to_movie(self) -> MovieData:
        return MovieData(**self.model_dump())


class MovieUpdateRequest(MovieCreateRequest):
    """Same fields as creation; only the ones present in the body are applied."""

    def to_update(self) -> MovieUpdate:
        return MovieUpdate.from_mapping(self.model_dump(exclude_unset=True))


class BatchUpdateRequest(BaseModel):
    filter: dict[str, Any] | None = None
    update: dict[str, Any] | None = None


class BatchDeleteRequest(BaseModel):
    filter: dict[str, Any] | None = None


@lru_cache(maxsize=1)
def get_embedder() -> VoyageClient:
    return VoyageClient()


def get_repository(database: Database = Depends(get_database)) -> MovieRepository:
    return MovieRepository.from_database(database)


def get_report_service(database: Database = Depends(get_database)) -> ReportService:
    return ReportService.from_database(database)


def get_search_service(
    database: Database = Depends(get_database),
    embedder: VoyageClient = Depends(get_embedder),
) -> SearchService:
    return SearchService.from_database(database, embedder)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(data: Any) -> Any:
    return jsonable_encoder(data, custom_encoder={ObjectId: str})


def _success(
    data: Any,
    *,
    message: str | None = None,
    pagination: dict[str, int] | None = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    body: dict[str, Any] = {"success": True, "data": _encode(data), "timestamp": _timestamp()}
    if message:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    return JSONResponse(body, status_code=status_code)


def _error(status_code: int, message: str, code: str, details: Any = None) -> JSONResponse:
    error: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        error["details"] = _encode(details)
    return JSONResponse(
        {"success": False, "message": message, "error": error, "timestamp": _timestamp()},
        status_code=status_code,
    )


_STATUS_BY_ERROR: list[tuple[type[MflixError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DatabaseOperationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@app.exception_handler(MflixError)
async def handle_mflix_error(_: Request, exc: MflixError) -> JSONResponse:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    return _error(status_code, exc.message, exc.code, exc.details)


@app.exception_handler(EmbeddingServiceError)
async def handle_embedding_error(_: Request, exc: EmbeddingServiceError) -> JSONResponse:
    if isinstance(exc, EmbeddingNotConfiguredError):
        return _error(status.HTTP_400_BAD_REQUEST, exc.message, exc.code)
    logger.error("Embedding service failure: %s", exc.message)
    return _error(status.HTTP_502_BAD_GATEWAY, exc.message, exc.code)


@app.exception_handler(PyMongoError)
async def handle_store_error(_: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Database operation failed: %s", exc)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        f"Database operation failed: {exc}",
        DatabaseOperationError.code,
    )


@app.get("/api/movies")
def list_movies(
    q: str | None = None,
    genre: str | None = None,
    year: int | None = None,
    min_rating: float | None = Query(default=None, alias="minRating"),
    max_rating: float | None = Query(default=None, alias="maxRating"),
    limit: int | None = None,
    skip: int | None = None,
    sort_by: str | None = Query(default=None, alias="sortBy"),
    sort_order: str | None = Query(default=None, alias="sortOrder"),
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    query = MovieQuery(
        q=q,
        genre=genre,
        year=year,
        min_rating=min_rating,
        max_rating=max_rating,
        limit=limit,
        skip=skip,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    movies = repo.find_by_query(query)
    total = repo.count(query)
    page = normalize_page(limit, skip)
    pagination = {
        "page": page.skip // page.limit + 1,
        "limit": page.limit,
        "total": total,
        "pages": math.ceil(total / page.limit),
    }
    return _success(movies, message=f"Found {len(movies)} movies", pagination=pagination)


@app.get("/api/movies/search")
def search_movies(
    plot: str | None = None,
    fullplot: str | None = None,
    directors: str | None = None,
    writers: str | None = None,
    cast: str | None = None,
    search_operator: str | None = None,
    limit: int | None = None,
    skip: int | None = None,
    search: SearchService = Depends(get_search_service),
) -> JSONResponse:
    request = SearchRequest(
        plot=plot,
        fullplot=fullplot,
        directors=directors,
        writers=writers,
        cast=cast,
        search_operator=search_operator,
        limit=limit,
        skip=skip,
    )
    movies = search.search_movies(request)
    return _success(
        {"movies": movies, "total_count": len(movies)},
        message=f"Found {len(movies)} movies matching the search criteria",
    )


@app.get("/api/movies/vector-search")
def vector_search_movies(
    q: str | None = None,
    limit: int | None = None,
    search: SearchService = Depends(get_search_service),
) -> JSONResponse:
    results = search.vector_search_movies(q, limit)
    return _success(results, message=f"Found {len(results)} similar movies")


@app.get("/api/movies/find-similar-movies")
def find_similar_movies(
    movie_id: str | None = Query(default=None, alias="id"),
    limit: int | None = None,
    search: SearchService = Depends(get_search_service),
) -> JSONResponse:
    movies = search.find_similar_movies(movie_id, limit)
    return _success(movies, message=f"Found {len(movies)} similar movies")


@app.get("/api/movies/aggregations/reportingByComments")
def report_by_comments(
    limit: int | None = None,
    movie_id: str | None = Query(default=None, alias="movieId"),
    reports: ReportService = Depends(get_report_service),
) -> JSONResponse:
    results = reports.movies_with_recent_comments(limit, movie_id)
    return _success(results, message=f"Found {len(results)} movies with recent comments")


@app.get("/api/movies/aggregations/reportingByYear")
def report_by_year(reports: ReportService = Depends(get_report_service)) -> JSONResponse:
    results = reports.movies_by_year()
    return _success(results, message=f"Aggregated statistics for {len(results)} years")


@app.get("/api/movies/aggregations/reportingByDirectors")
def report_by_directors(
    limit: int | None = None,
    reports: ReportService = Depends(get_report_service),
) -> JSONResponse:
    results = reports.directors_with_most_movies(limit)
    return _success(results, message=f"Found {len(results)} directors")


@app.get("/api/movies/{movie_id}")
def get_movie(movie_id: str, repo: MovieRepository = Depends(get_repository)) -> JSONResponse:
    return _success(repo.get_by_id(movie_id), message="Movie retrieved successfully")


@app.post("/api/movies")
def create_movie(
    payload: MovieCreateRequest,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    movie = repo.insert(payload.to_movie())
    return _success(
        movie,
        message=f"Movie '{movie['title']}' created successfully",
        status_code=status.HTTP_201_CREATED,
    )


@app.post("/api/movies/batch")
def create_movies_batch(
    payload: list[MovieCreateRequest] | None = Body(default=None),
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    result = repo.insert_many([item.to_movie() for item in payload or []])
    return _success(
        result,
        message=f"Successfully created {result.inserted_count} movies",
        status_code=status.HTTP_201_CREATED,
    )


@app.patch("/api/movies")
def update_movies_batch(
    payload: BatchUpdateRequest,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    result = repo.update_by_filter(payload.filter, payload.update)
    return _success(
        result,
        message=f"Update operation completed. Matched {result.matched_count}, "
        f"modified {result.modified_count} movies.",
    )


@app.patch("/api/movies/{movie_id}")
def update_movie(
    movie_id: str,
    payload: MovieUpdateRequest,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    movie = repo.update_by_id(movie_id, payload.to_update())
    return _success(movie, message="Movie updated successfully")


@app.put("/api/movies/{movie_id}")
def replace_movie(
    movie_id: str,
    payload: MovieCreateRequest,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    movie = repo.replace_by_id(movie_id, payload.to_movie())
    return _success(movie, message="Movie replaced successfully")


@app.delete("/api/movies")
def delete_movies_batch(
    payload: BatchDeleteRequest,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    result = repo.delete_by_filter(payload.filter)
    return _success(result, message=f"Deleted {result.deleted_count} movies")


@app.delete("/api/movies/{movie_id}/find-and-delete")
def find_and_delete_movie(
    movie_id: str,
    repo: MovieRepository = Depends(get_repository),
) -> JSONResponse:
    movie = repo.find_and_delete_by_id(movie_id)
    return _success(movie, message="Movie found and deleted successfully")


@app.delete("/api/movies/{movie_id}")
def delete_movie(movie_id: str, repo: MovieRepository = Depends(get_repository)) -> JSONResponse:
    result = repo.delete_by_id(movie_id)
    return _success(result, message="Movie deleted successfully")
