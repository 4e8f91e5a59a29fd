"""Structured logging configuration with structlog.

Call ``configure_logging`` once at application startup, then obtain bound
loggers with ``get_logger``::

    configure_logging("json")     # machine-readable output
    configure_logging("console")  # colored developer output

    log = get_logger("sync")
    log.info("subscription_opened", user_id="abc")
"""

from __future__ import annotations

import logging
import os
from typing import Any

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(log_format: str = "json") -> None:
    """Configure structlog processors for JSON or console output."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processors: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + final_processors,
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> Any:
    """Return a lazy logger with the component name already bound.

    The logger resolves the structlog configuration on first use, so it is
    safe to create at import time before ``configure_logging`` runs.
    """
    return structlog.get_logger(component=component)
