"""Compile sparse update requests into MongoDB field-level update operations."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from mflix.models import MovieFields
from mflix.services.errors import EmptyUpdateError, UnsupportedOperatorError, ValidationError
from mflix.services.models import CLEAR, MovieUpdate

logger = logging.getLogger(__name__)

SET = "$set"
UNSET_OPERATOR = "$unset"


def compile_update(update: MovieUpdate | Mapping[str, Any] | None) -> dict[str, Any]:
    """Return ``{"$set": ...}`` (plus ``$unset`` for explicit clears).

    Absent and null fields are skipped, never cleared. A mapping may be given
    either as plain ``field -> value`` pairs or already wrapped in ``$set``.
    """

    if update is None:
        raise EmptyUpdateError()

    if isinstance(update, MovieUpdate):
        provided = update.provided()
    elif isinstance(update, Mapping):
        provided = _unwrap_set(update)
    else:
        raise ValidationError("Update must be an object")
    _check_title(provided)

    assignments: dict[str, Any] = {}
    clears: dict[str, str] = {}
    for field, value in provided.items():
        if value is CLEAR:
            clears[field] = ""
        elif value is not None:
            assignments[field] = value

    if not assignments and not clears:
        raise EmptyUpdateError()

    compiled: dict[str, Any] = {}
    if assignments:
        compiled[SET] = assignments
    if clears:
        compiled[UNSET_OPERATOR] = clears
    logger.debug("Compiled update %s", compiled)
    return compiled


def _check_title(provided: Mapping[str, Any]) -> None:
    # A stored movie always keeps a non-blank title.
    if MovieFields.TITLE not in provided:
        return
    title = provided[MovieFields.TITLE]
    if title is CLEAR or (isinstance(title, str) and not title.strip()):
        raise ValidationError("Title is required")


def _unwrap_set(update: Mapping[str, Any]) -> dict[str, Any]:
    if SET in update:
        extra = [key for key in update if key != SET]
        if extra:
            raise UnsupportedOperatorError(extra[0], extra[0])
        inner = update[SET]
        if not isinstance(inner, Mapping):
            raise ValidationError("'$set' must be an object")
        update = inner

    for field in update:
        if not isinstance(field, str) or field.startswith("$"):
            raise UnsupportedOperatorError(str(field), str(field))
        if field == "_id":
            raise ValidationError("The _id field cannot be updated")
    return dict(update)
