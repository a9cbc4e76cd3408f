"""Keyword and vector search orchestration.

Three flows live here:

- compound keyword search: one ``$search`` stage combining phrase clauses
  (plot, fullplot) and fuzzy text clauses (directors, writers, cast) under a
  single boolean operator;
- two-phase vector search: the query text is embedded, candidates are
  resolved against ``embedded_movies`` and the full records are then fetched
  from the canonical ``movies`` collection;
- similar-movie search: the stored embedding of one movie is used to search
  the canonical collection directly.

Neither vector flow is atomic. If the second phase fails, the first phase
results are lost; callers should treat the lookup as best-effort enrichment.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from mflix.core.config import get_settings
from mflix.models import (
    EMBEDDED_MOVIES_COLLECTION,
    MOVIES_COLLECTION,
    PLOT_EMBEDDING_INDEX_NAME,
    SEARCH_INDEX_NAME,
    VECTOR_INDEX_NAME,
    VOYAGE_EMBEDDING_FIELD,
    MovieFields,
    public_projection,
)
from mflix.services.aggregation import Pipeline, run_pipeline
from mflix.services.criteria import parse_object_id
from mflix.services.errors import DatabaseOperationError, NotFoundError, ValidationError
from mflix.services.models import SearchOperator, SearchRequest, VectorSearchResult
from mflix.services.pagination import Page, clamp, normalize_page

logger = logging.getLogger(__name__)

PHRASE_FIELDS = (MovieFields.PLOT, MovieFields.FULLPLOT)
FUZZY_MAX_EDITS = 1
FUZZY_PREFIX_LENGTH = 5
# Ask the index for 20x more candidates than we return to improve recall.
CANDIDATE_MULTIPLIER = 20


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def build_search_clause(field: str, term: str) -> dict[str, Any]:
    if field in PHRASE_FIELDS:
        return {"phrase": {"query": term, "path": field}}
    return {
        "text": {
            "query": term,
            "path": field,
            "fuzzy": {"maxEdits": FUZZY_MAX_EDITS, "prefixLength": FUZZY_PREFIX_LENGTH},
        }
    }


def build_compound_search_pipeline(
    terms: dict[str, str], operator: SearchOperator, page: Page
) -> Pipeline:
    clauses = [build_search_clause(field, term) for field, term in terms.items()]
    return [
        {"$search": {"index": SEARCH_INDEX_NAME, "compound": {operator.value: clauses}}},
        {"$skip": page.skip},
        {"$limit": page.limit},
        {"$project": public_projection()},
    ]


def build_vector_candidates_pipeline(vector: list[float], limit: int) -> Pipeline:
    return [
        {
            "$vectorSearch": {
                "index": VECTOR_INDEX_NAME,
                "path": VOYAGE_EMBEDDING_FIELD,
                "queryVector": vector,
                "numCandidates": limit * CANDIDATE_MULTIPLIER,
                "limit": limit,
            }
        },
        {"$project": {"_id": 1, "score": {"$meta": "vectorSearchScore"}}},
    ]


def build_vector_hydration_pipeline(movie_ids: list[ObjectId]) -> Pipeline:
    return [
        {"$match": {MovieFields.ID: {"$in": movie_ids}}},
        {
            "$project": {
                MovieFields.TITLE: 1,
                MovieFields.PLOT: 1,
                MovieFields.POSTER: 1,
                MovieFields.GENRES: 1,
                MovieFields.DIRECTORS: 1,
                MovieFields.CAST: 1,
                # Keep the year only when it is a real integer.
                MovieFields.YEAR: {
                    "$cond": {
                        "if": {
                            "$and": [
                                {"$ne": ["$year", None]},
                                {"$eq": [{"$type": "$year"}, "int"]},
                            ]
                        },
                        "then": "$year",
                        "else": None,
                    }
                },
            }
        },
    ]


def build_similar_movies_pipeline(
    source_id: ObjectId, embedding: list[float], limit: int
) -> Pipeline:
    projection = public_projection()
    projection["score"] = {"$meta": "vectorSearchScore"}
    return [
        {
            "$vectorSearch": {
                "index": PLOT_EMBEDDING_INDEX_NAME,
                "path": MovieFields.PLOT_EMBEDDING,
                "queryVector": embedding,
                "numCandidates": limit * CANDIDATE_MULTIPLIER,
                # One extra candidate because the source movie matches itself.
                "limit": limit + 1,
            }
        },
        {"$match": {MovieFields.ID: {"$ne": source_id}}},
        {"$limit": limit},
        {"$project": projection},
    ]


class SearchService:
    def __init__(
        self,
        database: Database,
        embedder: Embedder,
        *,
        max_time_ms: int | None = None,
    ) -> None:
        self.movies = database[MOVIES_COLLECTION]
        self.embedded_movies = database[EMBEDDED_MOVIES_COLLECTION]
        self.embedder = embedder
        self.max_time_ms = max_time_ms

    @classmethod
    def from_database(cls, database: Database, embedder: Embedder) -> "SearchService":
        return cls(database, embedder, max_time_ms=get_settings().mongodb_max_time_ms)

    def search_movies(self, request: SearchRequest) -> list[dict[str, Any]]:
        terms = request.terms()
        if not terms:
            raise ValidationError("At least one search parameter must be provided")
        operator = SearchOperator.parse(request.search_operator)
        page = normalize_page(request.limit, request.skip)

        pipeline = build_compound_search_pipeline(terms, operator, page)
        return run_pipeline(
            self.movies, pipeline, action="MongoDB Search", max_time_ms=self.max_time_ms
        )

    def vector_search_movies(
        self, query: str | None, limit: int | None = None
    ) -> list[VectorSearchResult]:
        if query is None or not query.strip():
            raise ValidationError("Search query is required")
        limit = clamp(limit, default=10, minimum=1, maximum=50)

        vector = self.embedder.embed(query)

        candidates = run_pipeline(
            self.embedded_movies,
            build_vector_candidates_pipeline(vector, limit),
            action="vector search",
            max_time_ms=self.max_time_ms,
        )
        scores: dict[ObjectId, float] = {}
        for row in candidates:
            scores[row[MovieFields.ID]] = row.get("score", 0.0)
        if not scores:
            return []

        documents = run_pipeline(
            self.movies,
            build_vector_hydration_pipeline(list(scores)),
            action="vector search",
            max_time_ms=self.max_time_ms,
        )
        results = []
        for document in documents:
            movie_id = document.get(MovieFields.ID)
            score = scores.get(movie_id)
            if score is None:
                continue
            results.append(
                VectorSearchResult(
                    id=str(movie_id),
                    title=document.get(MovieFields.TITLE),
                    score=score,
                    plot=document.get(MovieFields.PLOT),
                    poster=document.get(MovieFields.POSTER),
                    year=document.get(MovieFields.YEAR),
                    genres=document.get(MovieFields.GENRES),
                    directors=document.get(MovieFields.DIRECTORS),
                    cast=document.get(MovieFields.CAST),
                )
            )
        # The $in lookup returns storage order; restore similarity order.
        results.sort(key=lambda result: result.score, reverse=True)
        logger.info("Vector search for %r returned %d movies", query, len(results))
        return results

    def find_similar_movies(
        self, movie_id: str | None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        if movie_id is None or not movie_id.strip():
            raise ValidationError("Movie ID is required")
        source_id = parse_object_id(movie_id)
        limit = clamp(limit, default=10, minimum=1, maximum=50)

        try:
            source = self.movies.find_one(
                {MovieFields.ID: source_id},
                {MovieFields.PLOT_EMBEDDING: 1},
                **({"max_time_ms": self.max_time_ms} if self.max_time_ms else {}),
            )
        except PyMongoError as exc:
            raise DatabaseOperationError(f"Error performing vector search: {exc}") from exc
        if source is None:
            raise NotFoundError("Movie not found")
        embedding = source.get(MovieFields.PLOT_EMBEDDING)
        if not embedding:
            raise ValidationError("Movie does not have plot embeddings for vector search")

        return run_pipeline(
            self.movies,
            build_similar_movies_pipeline(source_id, list(embedding), limit),
            action="vector search",
            max_time_ms=self.max_time_ms,
        )
