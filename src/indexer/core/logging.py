"""structlog configuration for the indexer process.

Console rendering in development, JSON lines in production. Output goes
through the stdlib logging module so LOG_LEVEL filtering applies to
structlog and third-party loggers alike.
"""

from __future__ import annotations

import logging
import sys

import structlog

from src.indexer.config import Environment, Settings


def configure_structlog(settings: Settings) -> None:
    """Configure structlog processors based on environment."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.LOG_LEVEL.upper(),
        force=True,
    )

    shared_processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
