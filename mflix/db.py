"""MongoDB client management and the movie repository."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from functools import lru_cache
from typing import Any, ContextManager, Iterable, Mapping

import pymongo
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from mflix.core.config import get_settings
from mflix.models import MOVIES_COLLECTION, MovieFields
from mflix.services.criteria import compile_filter, parse_object_id
from mflix.services.errors import DatabaseOperationError, NotFoundError, ValidationError
from mflix.services.models import (
    BatchInsertResult,
    BatchUpdateResult,
    DeleteResult,
    MovieData,
    MovieQuery,
    MovieUpdate,
)
from mflix.services.pagination import normalize_page, normalize_sort
from mflix.services.updates import compile_update

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> MongoClient:
    """Return the process-wide client; pymongo pools connections internally."""

    settings = get_settings()
    return MongoClient(
        settings.mongodb_uri,
        serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        socketTimeoutMS=settings.mongodb_socket_timeout_ms,
        appname="mflix",
    )


def get_database() -> Database:
    """FastAPI-friendly dependency returning the configured database."""

    return get_client()[get_settings().mongodb_database]


class MovieRepository:
    """Predicate-based CRUD over the canonical ``movies`` collection.

    Single-document operations are scoped by ``_id`` and raise
    :class:`NotFoundError` when nothing matched. Batch writes are validated
    up front but are not transactional across documents.
    """

    def __init__(self, collection: Collection, *, max_time_ms: int | None = None) -> None:
        self.collection = collection
        self.max_time_ms = max_time_ms

    @classmethod
    def from_database(cls, database: Database) -> "MovieRepository":
        return cls(
            database[MOVIES_COLLECTION],
            max_time_ms=get_settings().mongodb_max_time_ms,
        )

    # Reads

    def find(
        self,
        filter_doc: Mapping[str, Any] | None = None,
        *,
        sort_by: str | None = None,
        sort_order: str | None = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> list[dict[str, Any]]:
        return self._find(compile_filter(filter_doc), sort_by, sort_order, limit, skip)

    def find_by_query(self, query: MovieQuery) -> list[dict[str, Any]]:
        return self._find(
            build_list_query(query), query.sort_by, query.sort_order, query.limit, query.skip
        )

    def count(self, query: MovieQuery | Mapping[str, Any] | None = None) -> int:
        if isinstance(query, MovieQuery):
            predicate = build_list_query(query)
        else:
            predicate = compile_filter(query)
        return self.collection.count_documents(predicate, **self._time_limit("maxTimeMS"))

    def _find(
        self,
        predicate: dict[str, Any],
        sort_by: str | None,
        sort_order: str | None,
        limit: int | None,
        skip: int | None,
    ) -> list[dict[str, Any]]:
        page = normalize_page(limit, skip)
        cursor = self.collection.find(
            predicate,
            sort=normalize_sort(sort_by, sort_order),
            skip=page.skip,
            limit=page.limit,
            **self._time_limit("max_time_ms"),
        )
        return list(cursor)

    def get_by_id(self, movie_id: str) -> dict[str, Any]:
        object_id = parse_object_id(movie_id)
        document = self.collection.find_one(
            {MovieFields.ID: object_id}, **self._time_limit("max_time_ms")
        )
        if document is None:
            raise NotFoundError("Movie not found")
        return document

    # Writes

    def insert(self, movie: MovieData) -> dict[str, Any]:
        if not movie.has_title():
            raise ValidationError("Title is required")
        document = movie.to_document()
        with self._write_deadline():
            result = self.collection.insert_one(document)
        document[MovieFields.ID] = result.inserted_id
        logger.info("Inserted movie %s", result.inserted_id)
        return document

    def insert_many(self, movies: Iterable[MovieData]) -> BatchInsertResult:
        """Validate every movie, then insert them in one (non-atomic) batch."""

        movies = list(movies or [])
        if not movies:
            raise ValidationError("Request body must be a non-empty array of movie objects")
        for index, movie in enumerate(movies):
            if not movie.has_title():
                raise ValidationError(f"Movie at index {index}: Title is required")

        with self._write_deadline():
            result = self.collection.insert_many([movie.to_document() for movie in movies])
        inserted_ids = [str(object_id) for object_id in result.inserted_ids]
        logger.info("Inserted %d movies", len(inserted_ids))
        return BatchInsertResult(inserted_count=len(inserted_ids), inserted_ids=inserted_ids)

    def update_by_id(
        self, movie_id: str, update: MovieUpdate | Mapping[str, Any] | None
    ) -> dict[str, Any]:
        """Apply a partial update and return the document as re-read after the write."""

        object_id = parse_object_id(movie_id)
        compiled = compile_update(update)
        with self._write_deadline():
            result = self.collection.update_one({MovieFields.ID: object_id}, compiled)
        if result.matched_count == 0:
            raise NotFoundError("Movie not found")

        document = self.collection.find_one(
            {MovieFields.ID: object_id}, **self._time_limit("max_time_ms")
        )
        if document is None:
            raise DatabaseOperationError("Failed to retrieve updated movie")
        return document

    def update_by_filter(
        self,
        filter_doc: Mapping[str, Any] | None,
        update: MovieUpdate | Mapping[str, Any] | None,
    ) -> BatchUpdateResult:
        if filter_doc is None or update is None:
            raise ValidationError("Both filter and update objects are required")
        if not filter_doc:
            raise ValidationError(
                "Filter object cannot be empty. This prevents accidental update of all documents."
            )
        predicate = compile_filter(filter_doc)
        compiled = compile_update(update)

        with self._write_deadline():
            result = self.collection.update_many(predicate, compiled)
        logger.info(
            "Batch update matched=%d modified=%d", result.matched_count, result.modified_count
        )
        return BatchUpdateResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )

    def replace_by_id(self, movie_id: str, movie: MovieData) -> dict[str, Any]:
        object_id = parse_object_id(movie_id)
        if not movie.has_title():
            raise ValidationError("Title is required")
        document = self.collection.find_one_and_replace(
            {MovieFields.ID: object_id},
            movie.to_document(),
            return_document=ReturnDocument.AFTER,
            **self._time_limit("maxTimeMS"),
        )
        if document is None:
            raise NotFoundError("Movie not found")
        return document

    def delete_by_id(self, movie_id: str) -> DeleteResult:
        object_id = parse_object_id(movie_id)
        with self._write_deadline():
            result = self.collection.delete_one({MovieFields.ID: object_id})
        if result.deleted_count == 0:
            raise NotFoundError("Movie not found")
        logger.info("Deleted movie %s", object_id)
        return DeleteResult(deleted_count=result.deleted_count)

    def delete_by_filter(self, filter_doc: Mapping[str, Any] | None) -> DeleteResult:
        if not filter_doc:
            raise ValidationError(
                "Filter object is required and cannot be empty. "
                "This prevents accidental deletion of all documents."
            )
        predicate = compile_filter(filter_doc)
        with self._write_deadline():
            result = self.collection.delete_many(predicate)
        logger.info("Batch delete removed %d movies", result.deleted_count)
        return DeleteResult(deleted_count=result.deleted_count)

    def find_and_delete_by_id(self, movie_id: str) -> dict[str, Any]:
        object_id = parse_object_id(movie_id)
        document = self.collection.find_one_and_delete(
            {MovieFields.ID: object_id}, **self._time_limit("maxTimeMS")
        )
        if document is None:
            raise NotFoundError("Movie not found")
        return document

    def _time_limit(self, option: str) -> dict[str, int]:
        return {option: self.max_time_ms} if self.max_time_ms else {}

    def _write_deadline(self) -> ContextManager[Any]:
        # Write commands take no maxTimeMS option; bound them client-side.
        if not self.max_time_ms:
            return nullcontext()
        return pymongo.timeout(self.max_time_ms / 1000)


def build_list_query(query: MovieQuery) -> dict[str, Any]:
    """Translate list endpoint parameters into a predicate."""

    predicate: dict[str, Any] = {}
    if query.q and query.q.strip():
        predicate["$text"] = {"$search": query.q.strip()}
    if query.genre and query.genre.strip():
        predicate[MovieFields.GENRES] = {"$regex": query.genre.strip(), "$options": "i"}
    if query.year is not None:
        predicate[MovieFields.YEAR] = query.year
    if query.min_rating is not None or query.max_rating is not None:
        rating: dict[str, float] = {}
        if query.min_rating is not None:
            rating["$gte"] = query.min_rating
        if query.max_rating is not None:
            rating["$lte"] = query.max_rating
        predicate[MovieFields.IMDB_RATING] = rating
    return predicate
