# storefront/logs.py
from __future__ import annotations

import logging

import structlog

from .settings import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog once for the whole process (JSON in production, console otherwise)."""
    lvl = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
