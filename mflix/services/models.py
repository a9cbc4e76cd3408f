"""Shared dataclasses for the service layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from mflix.models import WRITABLE_FIELDS, MovieFields
from mflix.services.errors import ValidationError


class _Marker:
    """Presence marker for sparse update fields."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __bool__(self) -> bool:
        return False


# Field omitted from the request: never touches the stored value.
UNSET: Any = _Marker("UNSET")
# Field explicitly cleared: compiles to ``$unset``.
CLEAR: Any = _Marker("CLEAR")


@dataclass(slots=True)
class MovieData:
    """Writable movie attributes used for inserts and full replacement."""

    title: str | None
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

    def has_title(self) -> bool:
        return bool(self.title and self.title.strip())

    def to_document(self) -> dict[str, Any]:
        """Return a Mongo document without null fields."""

        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(slots=True)
class MovieUpdate:
    """Sparse update where each field is ``UNSET`` unless the caller provided it."""

    title: Any = UNSET
    year: Any = UNSET
    plot: Any = UNSET
    fullplot: Any = UNSET
    genres: Any = UNSET
    directors: Any = UNSET
    writers: Any = UNSET
    cast: Any = UNSET
    countries: Any = UNSET
    languages: Any = UNSET
    rated: Any = UNSET
    runtime: Any = UNSET
    poster: Any = UNSET

    def provided(self) -> dict[str, Any]:
        """Return every field the caller supplied, nulls included."""

        values = {name: getattr(self, name) for name in WRITABLE_FIELDS}
        return {name: value for name, value in values.items() if value is not UNSET}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MovieUpdate":
        unknown = sorted(set(data) - set(WRITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Unknown update field(s): {', '.join(unknown)}",
                details={"fields": unknown},
            )
        return cls(**dict(data))


class SearchOperator(str, Enum):
    """Boolean combination modes of a compound search."""

    MUST = "must"
    SHOULD = "should"
    MUST_NOT = "mustNot"
    FILTER = "filter"

    @classmethod
    def parse(cls, raw: str | None) -> "SearchOperator":
        if raw is None:
            return cls.MUST
        try:
            return cls(raw)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"Invalid search_operator '{raw}'. The search_operator must be one of: {allowed}"
            ) from None


SEARCH_FIELDS = (
    MovieFields.PLOT,
    MovieFields.FULLPLOT,
    MovieFields.DIRECTORS,
    MovieFields.WRITERS,
    MovieFields.CAST,
)


@dataclass(slots=True)
class SearchRequest:
    plot: str | None = None
    fullplot: str | None = None
    directors: str | None = None
    writers: str | None = None
    cast: str | None = None
    search_operator: str | None = None
    limit: int | None = None
    skip: int | None = None

    def terms(self) -> dict[str, str]:
        """Return the stripped, non-blank search terms keyed by field."""

        values = {name: getattr(self, name) for name in SEARCH_FIELDS}
        return {name: value.strip() for name, value in values.items() if value and value.strip()}


@dataclass(slots=True)
class MovieQuery:
    """Parameters of the movie list endpoint."""

    q: str | None = None
    genre: str | None = None
    year: int | None = None
    min_rating: float | None = None
    max_rating: float | None = None
    limit: int | None = None
    skip: int | None = None
    sort_by: str | None = None
    sort_order: str | None = None


@dataclass(slots=True)
class BatchInsertResult:
    inserted_count: int
    inserted_ids: list[str]


@dataclass(slots=True)
class BatchUpdateResult:
    matched_count: int
    modified_count: int


@dataclass(slots=True)
class DeleteResult:
    deleted_count: int


@dataclass(slots=True)
class CommentInfo:
    id: str | None
    name: str | None
    email: str | None
    text: str | None
    date: datetime | None


@dataclass(slots=True)
class MovieWithComments:
    id: str | None
    title: str | None
    year: int | None
    plot: str | None = None
    poster: str | None = None
    genres: list[str] | None = None
    imdb_rating: float | None = None
    recent_comments: list[CommentInfo] = field(default_factory=list)
    total_comments: int = 0
    most_recent_comment_date: datetime | None = None


@dataclass(slots=True)
class YearStatistics:
    year: int
    movie_count: int
    average_rating: float | None
    highest_rating: float | None
    lowest_rating: float | None
    total_votes: int


@dataclass(slots=True)
class DirectorStatistics:
    director: str
    movie_count: int
    average_rating: float | None


@dataclass(slots=True)
class VectorSearchResult:
    id: str
    title: str | None
    score: float
    plot: str | None = None
    poster: str | None = None
    year: int | None = None
    genres: list[str] | None = None
    directors: list[str] | None = None
    cast: list[str] | None = None
