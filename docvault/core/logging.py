"""Structured logging setup built on structlog."""
import logging
import sys
from typing import Any

import structlog

from docvault.core.config import Settings, settings


def setup_logging(config: Settings | None = None) -> None:
    """Configure stdlib logging and structlog processors.

    Production emits JSON lines; development gets a readable console renderer.
    """
    config = config or settings
    level = getattr(logging, config.log_level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer: Any
    if config.is_production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> None:
    """Bind key/values to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_log_context() -> None:
    """Drop all context-bound key/values."""
    structlog.contextvars.clear_contextvars()
