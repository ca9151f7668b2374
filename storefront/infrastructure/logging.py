"""Structlog configuration.

Routes both structlog and stdlib logging records through one processor
chain so uvicorn, SQLAlchemy and application logs share a format.
"""

import logging
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from storefront.infrastructure.config import settings


def get_renderer() -> Any:
    """Pick the console renderer in debug mode, JSON otherwise."""
    if settings.debug or not settings.log_json:
        return ConsoleRenderer(colors=settings.debug)
    return JSONRenderer()


def configure_logging() -> None:
    """Configure structlog and bridge stdlib logging into the same chain."""
    shared_pre_chain: list[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.debug else settings.log_level.upper())
