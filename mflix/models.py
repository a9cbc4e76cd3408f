"""MongoDB collection layout.

This module names the collections, fields and indexes the service relies on.
Keeping them isolated here makes the coupling between the pipelines and the
index provisioning explicit.
"""

from __future__ import annotations

MOVIES_COLLECTION = "movies"
COMMENTS_COLLECTION = "comments"
EMBEDDED_MOVIES_COLLECTION = "embedded_movies"

TEXT_INDEX_NAME = "text_search_index"
YEAR_INDEX_NAME = "year_index"
MOVIE_ID_INDEX_NAME = "movie_id_index"
SEARCH_INDEX_NAME = "movieSearchIndex"
VECTOR_INDEX_NAME = "vector_index"
PLOT_EMBEDDING_INDEX_NAME = "plotEmbeddingIndex"

VOYAGE_EMBEDDING_FIELD = "plot_embedding_voyage_3_large"

# Plausible release years; anything outside is treated as corrupt data.
MIN_YEAR = 1800
MAX_YEAR = 2030


class MovieFields:
    """Field names of a movie document."""

    ID = "_id"
    TITLE = "title"
    YEAR = "year"
    PLOT = "plot"
    FULLPLOT = "fullplot"
    RELEASED = "released"
    RUNTIME = "runtime"
    POSTER = "poster"
    GENRES = "genres"
    DIRECTORS = "directors"
    WRITERS = "writers"
    CAST = "cast"
    COUNTRIES = "countries"
    LANGUAGES = "languages"
    RATED = "rated"
    AWARDS = "awards"
    IMDB = "imdb"
    IMDB_RATING = "imdb.rating"
    IMDB_VOTES = "imdb.votes"
    PLOT_EMBEDDING = "plot_embedding"


class CommentFields:
    ID = "_id"
    MOVIE_ID = "movie_id"
    NAME = "name"
    EMAIL = "email"
    TEXT = "text"
    DATE = "date"


# Fields writable through create/update requests.
WRITABLE_FIELDS = (
    MovieFields.TITLE,
    MovieFields.YEAR,
    MovieFields.PLOT,
    MovieFields.FULLPLOT,
    MovieFields.GENRES,
    MovieFields.DIRECTORS,
    MovieFields.WRITERS,
    MovieFields.CAST,
    MovieFields.COUNTRIES,
    MovieFields.LANGUAGES,
    MovieFields.RATED,
    MovieFields.RUNTIME,
    MovieFields.POSTER,
)

PUBLIC_FIELDS = (
    MovieFields.ID,
    MovieFields.TITLE,
    MovieFields.YEAR,
    MovieFields.PLOT,
    MovieFields.FULLPLOT,
    MovieFields.RELEASED,
    MovieFields.RUNTIME,
    MovieFields.POSTER,
    MovieFields.GENRES,
    MovieFields.DIRECTORS,
    MovieFields.WRITERS,
    MovieFields.CAST,
    MovieFields.COUNTRIES,
    MovieFields.LANGUAGES,
    MovieFields.RATED,
    MovieFields.AWARDS,
    MovieFields.IMDB,
)


def public_projection() -> dict[str, int]:
    """Return a ``$project`` body exposing the public movie fields."""

    return {field: 1 for field in PUBLIC_FIELDS}
