"""Structured logging setup for the markdown authority entry points."""

from __future__ import annotations

import logging
import sys

import structlog

from markdown_authority.config import settings


def configure_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog and route stdlib loggers through the same renderer.

    Library modules log with ``logging.getLogger(__name__)``; entry points
    call this once at startup.
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    renderer = (
        structlog.dev.ConsoleRenderer()
        if (log_format or settings.log_format) != "json"
        else structlog.processors.JSONRenderer()
    )
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
