"""Logging setup driven by environment settings."""

from __future__ import annotations

import logging

from mflix.core.config import get_settings

LOG_FORMAT = "%(levelname)s | %(asctime)s | %(name)s | %(message)s"


def configure_logging() -> None:
    """Configure the root logger once, at the level named in settings."""

    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
