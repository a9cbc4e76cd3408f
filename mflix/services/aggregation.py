"""Execute aggregation pipelines and translate store failures."""

from __future__ import annotations

import logging
from typing import Any

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from mflix.services.errors import DatabaseOperationError

logger = logging.getLogger(__name__)

Pipeline = list[dict[str, Any]]


def run_pipeline(
    collection: Collection,
    pipeline: Pipeline,
    *,
    action: str,
    max_time_ms: int | None = None,
) -> list[dict[str, Any]]:
    """Run ``pipeline`` on ``collection`` and materialize the rows.

    ``action`` names the operation in the error message surfaced to callers.
    """

    logger.debug("Running %s pipeline on %s: %s", action, collection.name, pipeline)
    options = {"maxTimeMS": max_time_ms} if max_time_ms else {}
    try:
        return list(collection.aggregate(pipeline, **options))
    except PyMongoError as exc:
        raise DatabaseOperationError(f"Error performing {action}: {exc}") from exc
