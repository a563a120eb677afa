"""
Storage factory for creating connection factories.

This module provides factory functions to create the configured sync and
async stores, including any named connections declared in settings.
"""

from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.logging import get_logger
from core.storage.sql import AsyncSqlStore, SqlStore


if TYPE_CHECKING:
    from core.config import Settings


logger = get_logger(__name__)


def _engine_options(url: str, settings: "Settings") -> dict:
    options: dict = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def _sync_engine(url: str, settings: "Settings") -> Engine:
    return create_engine(url, **_engine_options(url, settings))


def _async_engine(url: str, settings: "Settings") -> AsyncEngine:
    return create_async_engine(url, **_engine_options(url, settings))


def create_store(settings: "Settings") -> SqlStore:
    """
    Create a sync store based on settings.

    Args:
        settings: Application settings

    Returns:
        Configured store (tables not yet created)
    """
    logger.info(
        "Creating SQL store",
        named_connections=sorted(settings.named_connections),
    )
    return SqlStore(
        _sync_engine(settings.database_url, settings),
        named_engines={
            name: _sync_engine(url, settings)
            for name, url in settings.named_connections.items()
        },
    )


def create_async_store(settings: "Settings") -> AsyncSqlStore:
    """
    Create an async store based on settings.

    Args:
        settings: Application settings

    Returns:
        Configured store (tables not yet created)
    """
    logger.info(
        "Creating async SQL store",
        named_connections=sorted(settings.async_named_connections),
    )
    return AsyncSqlStore(
        _async_engine(settings.async_database_url, settings),
        named_engines={
            name: _async_engine(url, settings)
            for name, url in settings.async_named_connections.items()
        },
    )
