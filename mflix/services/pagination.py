"""Clamp client-supplied pagination and sort parameters to safe bounds."""

from __future__ import annotations

from dataclasses import dataclass

import pymongo

from mflix.models import MovieFields

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@dataclass(frozen=True, slots=True)
class Page:
    limit: int
    skip: int


def clamp(value: int | None, *, default: int, minimum: int, maximum: int | None = None) -> int:
    """Return ``value`` (or ``default`` when missing) bounded to ``[minimum, maximum]``."""

    result = default if value is None else int(value)
    if result < minimum:
        return minimum
    if maximum is not None and result > maximum:
        return maximum
    return result


def normalize_page(
    limit: int | None,
    skip: int | None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Page:
    return Page(
        limit=clamp(limit, default=default_limit, minimum=1, maximum=max_limit),
        skip=clamp(skip, default=0, minimum=0),
    )


def normalize_sort(sort_by: str | None, sort_order: str | None) -> list[tuple[str, int]]:
    """Only a case-insensitive ``"desc"`` sorts descending; anything else is ascending."""

    field = sort_by.strip() if sort_by and sort_by.strip() else MovieFields.TITLE
    direction = (
        pymongo.DESCENDING
        if sort_order is not None and sort_order.strip().lower() == "desc"
        else pymongo.ASCENDING
    )
    return [(field, direction)]
