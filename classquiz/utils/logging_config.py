"""Logging configuration helpers for the quiz service."""

from __future__ import annotations

import logging
from logging import Logger


def configure_logging(level: int = logging.INFO) -> Logger:
    """Configure root logging once at startup and return the ``classquiz`` logger.

    Every module logs through ``logging.getLogger(__name__)``, so all records
    from the scoring, session and lifecycle code sit under ``classquiz`` and
    share this format. The returned logger is used by ``app_main`` for
    startup messages.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("classquiz")
