"""Startup checks that the database holds the data and indexes the API needs.

Every step is idempotent and failures are logged rather than raised, so the
service still starts against a partially provisioned cluster.
"""

from __future__ import annotations

import logging

import pymongo
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.operations import SearchIndexModel

from mflix.core.config import get_settings
from mflix.models import (
    COMMENTS_COLLECTION,
    EMBEDDED_MOVIES_COLLECTION,
    MOVIE_ID_INDEX_NAME,
    MOVIES_COLLECTION,
    SEARCH_INDEX_NAME,
    TEXT_INDEX_NAME,
    VECTOR_INDEX_NAME,
    VOYAGE_EMBEDDING_FIELD,
    YEAR_INDEX_NAME,
    CommentFields,
    MovieFields,
)

logger = logging.getLogger(__name__)


def verify_database(database: Database) -> None:
    logger.info("Starting database verification for '%s'", database.name)
    try:
        _verify_movies(database[MOVIES_COLLECTION])
        _verify_comments(database[COMMENTS_COLLECTION])
        _verify_embedded_movies(database[EMBEDDED_MOVIES_COLLECTION])
    except PyMongoError as exc:
        logger.error("Database verification failed: %s", exc)
        return
    logger.info("Database verification completed")


def _verify_movies(movies: Collection) -> None:
    count = movies.estimated_document_count()
    logger.info("Movies collection found with %d documents", count)
    if count == 0:
        logger.warning("Movies collection is empty. Please load the sample_mflix dataset.")

    _ensure_text_index(movies)
    _ensure_index(movies, MovieFields.YEAR, YEAR_INDEX_NAME)
    _ensure_search_index(
        movies,
        SearchIndexModel(
            name=SEARCH_INDEX_NAME,
            definition={
                "mappings": {
                    "dynamic": False,
                    "fields": {
                        field: {"type": "string", "analyzer": "lucene.standard"}
                        for field in (
                            MovieFields.PLOT,
                            MovieFields.FULLPLOT,
                            MovieFields.DIRECTORS,
                            MovieFields.WRITERS,
                            MovieFields.CAST,
                        )
                    },
                }
            },
        ),
    )


def _verify_comments(comments: Collection) -> None:
    count = comments.estimated_document_count()
    logger.info("Comments collection found with %d documents", count)
    if count == 0:
        logger.warning("Comments collection is empty. Please load the sample_mflix dataset.")
    _ensure_index(comments, CommentFields.MOVIE_ID, MOVIE_ID_INDEX_NAME)


def _verify_embedded_movies(embedded: Collection) -> None:
    count = embedded.estimated_document_count()
    if count == 0:
        logger.warning("Embedded movies collection is empty. Vector search will not work.")
        return
    logger.info("Embedded movies collection found with %d documents", count)

    sample = embedded.find_one({}, {VOYAGE_EMBEDDING_FIELD: 1})
    if sample is not None and VOYAGE_EMBEDDING_FIELD not in sample:
        logger.warning(
            "Documents in %s have no '%s' field. Vector search will not work.",
            EMBEDDED_MOVIES_COLLECTION,
            VOYAGE_EMBEDDING_FIELD,
        )
        return

    _ensure_search_index(
        embedded,
        SearchIndexModel(
            name=VECTOR_INDEX_NAME,
            type="vectorSearch",
            definition={
                "fields": [
                    {
                        "type": "vector",
                        "path": VOYAGE_EMBEDDING_FIELD,
                        "numDimensions": get_settings().voyage_output_dimension,
                        "similarity": "cosine",
                    }
                ]
            },
        ),
    )


def _ensure_text_index(movies: Collection) -> None:
    # Only one text index is allowed per collection, whatever its name.
    for index in movies.list_indexes():
        if "_fts" in index.get("key", {}):
            logger.info("Text search index '%s' already exists", index.get("name"))
            return
    try:
        movies.create_index(
            [
                (MovieFields.PLOT, pymongo.TEXT),
                (MovieFields.TITLE, pymongo.TEXT),
                (MovieFields.FULLPLOT, pymongo.TEXT),
            ],
            name=TEXT_INDEX_NAME,
            background=True,
        )
        logger.info("Text search index '%s' created", TEXT_INDEX_NAME)
    except PyMongoError as exc:
        logger.error("Could not create text search index: %s", exc)


def _ensure_index(collection: Collection, field: str, name: str) -> None:
    if any(index.get("name") == name for index in collection.list_indexes()):
        logger.info("Index '%s' already exists on %s", name, collection.name)
        return
    try:
        collection.create_index([(field, pymongo.ASCENDING)], name=name, background=True)
        logger.info("Index '%s' created on %s", name, collection.name)
    except PyMongoError as exc:
        logger.error("Could not create index '%s' on %s: %s", name, collection.name, exc)


def _ensure_search_index(collection: Collection, model: SearchIndexModel) -> None:
    name = model.document["name"]
    try:
        if any(index.get("name") == name for index in collection.list_search_indexes()):
            logger.info("Search index '%s' already exists on %s", name, collection.name)
            return
        collection.create_search_index(model)
        logger.info("Search index '%s' requested on %s; it may take a moment to build", name, collection.name)
    except PyMongoError as exc:
        logger.warning("Could not create search index '%s' on %s: %s", name, collection.name, exc)
