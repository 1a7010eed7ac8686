"""Structlog configuration for JSON logs from webhook and install handlers."""

from __future__ import annotations

import logging

import structlog

LOG_LEVEL = logging.INFO


def configure_logging(level: int = LOG_LEVEL) -> None:
    """Emit one JSON object per event, carrying any bound ``trace_id``."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")
