"""
Structured logging configuration.

Uses structlog for machine-readable, context-rich logging. Development
renders human-readable console lines; other environments emit JSON.
Each CRUD operation binds its own context (operation, request type,
calling user) through contextvars, so every line logged while the
operation runs carries it, including lines from the store.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import Processor

from core.config import settings


def _level(name: Optional[str]) -> int:
    level = logging.getLevelName((name or settings.log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog for the current environment.

    Args:
        level: Log level name; defaults to settings.log_level
        json_logs: Force JSON output; defaults to True outside development
    """
    log_level = _level(level)
    if json_logs is None:
        json_logs = not settings.is_development

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # SQLAlchemy echo and driver logs share the stream
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@contextmanager
def operation_context(**context: Any) -> Iterator[None]:
    """
    Bind context to every log line emitted inside the block.

    None values are skipped.

    Usage:
        with operation_context(operation="patch", user="admin"):
            logger.info("Row updated", id=42)
    """
    bound = {k: v for k, v in context.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a logger, optionally bound to initial context.

    Usage:
        logger = get_logger(__name__, model="booking")
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
