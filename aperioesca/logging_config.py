"""Logging setup shared by the CLI and the relay server."""

from __future__ import annotations

import logging
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog.

    structlog renders the event line; stdlib logging (stderr) emits it, so
    uvicorn and application records share one stream.

    Args:
        level: Level name (DEBUG, INFO, ...); unknown names fall back to INFO
    """
    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=resolved, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
        cache_logger_on_first_use=True,
    )
