"""Reporting pipelines over the movies and comments collections."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pymongo.database import Database

from mflix.core.config import get_settings
from mflix.models import (
    COMMENTS_COLLECTION,
    MAX_YEAR,
    MIN_YEAR,
    MOVIES_COLLECTION,
    CommentFields,
    MovieFields,
)
from mflix.services.aggregation import Pipeline, run_pipeline
from mflix.services.criteria import parse_object_id
from mflix.services.models import (
    CommentInfo,
    DirectorStatistics,
    MovieWithComments,
    YearStatistics,
)
from mflix.services.pagination import clamp

RECENT_COMMENTS_PER_MOVIE = 5


def plausible_year() -> dict[str, Any]:
    """Integer years in the plausible range; strings and outliers are dirty data."""

    return {"$type": "int", "$gte": MIN_YEAR, "$lte": MAX_YEAR}


def round_rating(value: float | None) -> float | None:
    """Round to two decimals, half-up (7.445 -> 7.45)."""

    if value is None:
        return None
    # Trim binary noise first so 7.4449999999 is treated as 7.445.
    exact = Decimal(str(round(float(value), 10)))
    return float(exact.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_recent_comments_pipeline(limit: int, movie_id: str | None = None) -> Pipeline:
    match: dict[str, Any] = {MovieFields.YEAR: plausible_year()}
    if movie_id is not None and movie_id.strip():
        match[MovieFields.ID] = parse_object_id(movie_id)

    return [
        {"$match": match},
        {
            "$lookup": {
                "from": COMMENTS_COLLECTION,
                "localField": MovieFields.ID,
                "foreignField": CommentFields.MOVIE_ID,
                "pipeline": [{"$sort": {CommentFields.DATE: -1}}],
                "as": "comments",
            }
        },
        # Drop movies without comments, turning the left join into an inner join.
        {"$match": {"comments": {"$ne": []}}},
        {
            "$project": {
                MovieFields.TITLE: 1,
                MovieFields.YEAR: 1,
                MovieFields.PLOT: 1,
                MovieFields.POSTER: 1,
                MovieFields.GENRES: 1,
                MovieFields.IMDB: 1,
                "comments": 1,
                "totalComments": {"$size": "$comments"},
                "mostRecentCommentDate": {"$arrayElemAt": ["$comments.date", 0]},
            }
        },
        {"$sort": {"mostRecentCommentDate": -1}},
        {"$limit": limit},
        {
            "$project": {
                MovieFields.TITLE: 1,
                MovieFields.YEAR: 1,
                MovieFields.PLOT: 1,
                MovieFields.POSTER: 1,
                MovieFields.GENRES: 1,
                "imdbRating": "$imdb.rating",
                "recentComments": {"$slice": ["$comments", RECENT_COMMENTS_PER_MOVIE]},
                "totalComments": 1,
                "mostRecentCommentDate": 1,
            }
        },
    ]


def build_year_statistics_pipeline() -> Pipeline:
    return [
        {"$match": {MovieFields.YEAR: plausible_year()}},
        {
            "$group": {
                "_id": f"${MovieFields.YEAR}",
                "movieCount": {"$sum": 1},
                "averageRating": {"$avg": f"${MovieFields.IMDB_RATING}"},
                "highestRating": {"$max": f"${MovieFields.IMDB_RATING}"},
                "lowestRating": {"$min": f"${MovieFields.IMDB_RATING}"},
                "totalVotes": {"$sum": f"${MovieFields.IMDB_VOTES}"},
            }
        },
        {
            "$project": {
                "_id": 0,
                "year": "$_id",
                "movieCount": 1,
                "averageRating": 1,
                "highestRating": 1,
                "lowestRating": 1,
                "totalVotes": 1,
            }
        },
        {"$sort": {"year": -1}},
    ]


def build_director_statistics_pipeline(limit: int) -> Pipeline:
    return [
        {
            "$match": {
                f"{MovieFields.DIRECTORS}.0": {"$exists": True},
                MovieFields.YEAR: plausible_year(),
            }
        },
        {"$unwind": f"${MovieFields.DIRECTORS}"},
        {"$match": {MovieFields.DIRECTORS: {"$nin": [None, ""]}}},
        {
            "$group": {
                "_id": f"${MovieFields.DIRECTORS}",
                "movieCount": {"$sum": 1},
                "averageRating": {"$avg": f"${MovieFields.IMDB_RATING}"},
            }
        },
        {"$sort": {"movieCount": -1, "_id": 1}},
        {"$limit": limit},
        {"$project": {"_id": 0, "director": "$_id", "movieCount": 1, "averageRating": 1}},
    ]


class ReportService:
    """Runs the reporting aggregations against the canonical collection."""

    def __init__(self, database: Database, *, max_time_ms: int | None = None) -> None:
        self.movies = database[MOVIES_COLLECTION]
        self.max_time_ms = max_time_ms

    @classmethod
    def from_database(cls, database: Database) -> "ReportService":
        return cls(database, max_time_ms=get_settings().mongodb_max_time_ms)

    def movies_with_recent_comments(
        self, limit: int | None = None, movie_id: str | None = None
    ) -> list[MovieWithComments]:
        pipeline = build_recent_comments_pipeline(
            clamp(limit, default=10, minimum=1, maximum=50), movie_id
        )
        rows = run_pipeline(
            self.movies, pipeline, action="comments aggregation", max_time_ms=self.max_time_ms
        )
        return [_to_movie_with_comments(row) for row in rows]

    def movies_by_year(self) -> list[YearStatistics]:
        rows = run_pipeline(
            self.movies,
            build_year_statistics_pipeline(),
            action="year statistics aggregation",
            max_time_ms=self.max_time_ms,
        )
        return [
            YearStatistics(
                year=row["year"],
                movie_count=row.get("movieCount", 0),
                average_rating=round_rating(row.get("averageRating")),
                highest_rating=row.get("highestRating"),
                lowest_rating=row.get("lowestRating"),
                total_votes=row.get("totalVotes") or 0,
            )
            for row in rows
        ]

    def directors_with_most_movies(self, limit: int | None = None) -> list[DirectorStatistics]:
        pipeline = build_director_statistics_pipeline(
            clamp(limit, default=20, minimum=1, maximum=100)
        )
        rows = run_pipeline(
            self.movies,
            pipeline,
            action="director statistics aggregation",
            max_time_ms=self.max_time_ms,
        )
        return [
            DirectorStatistics(
                director=row["director"],
                movie_count=row.get("movieCount", 0),
                average_rating=round_rating(row.get("averageRating")),
            )
            for row in rows
        ]


def _numeric(value: Any) -> float | None:
    # Legacy documents store a blank string when a movie has no rating.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _to_movie_with_comments(row: dict[str, Any]) -> MovieWithComments:
    comments = [
        CommentInfo(
            id=str(comment[CommentFields.ID]) if comment.get(CommentFields.ID) else None,
            name=comment.get(CommentFields.NAME),
            email=comment.get(CommentFields.EMAIL),
            text=comment.get(CommentFields.TEXT),
            date=comment.get(CommentFields.DATE),
        )
        for comment in row.get("recentComments") or []
    ]
    movie_id = row.get(MovieFields.ID)
    return MovieWithComments(
        id=str(movie_id) if movie_id is not None else None,
        title=row.get(MovieFields.TITLE),
        year=row.get(MovieFields.YEAR),
        plot=row.get(MovieFields.PLOT),
        poster=row.get(MovieFields.POSTER),
        genres=row.get(MovieFields.GENRES),
        imdb_rating=_numeric(row.get("imdbRating")),
        recent_comments=comments,
        total_comments=row.get("totalComments", 0),
        most_recent_comment_date=row.get("mostRecentCommentDate"),
    )
