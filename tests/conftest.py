"""
Pytest configuration and fixtures.
"""

import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import create_async_engine

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("CRUD_EVENTS_ENABLED", "false")

from autocrud import (  # noqa: E402
    AsyncCrudExecutor,
    CrudExecutor,
    ExpressionEvaluator,
    MetadataResolver,
    SqlCrudEvents,
)
from core.logging import configure_logging  # noqa: E402
from core.storage import AsyncSqlStore, SqlStore  # noqa: E402

from crud_models import metadata, registry  # noqa: E402


configure_logging()


@pytest.fixture
def resolver():
    """A fresh metadata cache per test."""
    return MetadataResolver(registry)


@pytest.fixture
def evaluator():
    return ExpressionEvaluator({"tenant_id": lambda ctx: ctx.items.get("tenant_id")})


@pytest.fixture
def store(tmp_path):
    """File-backed SQLite store with an 'archive' named connection."""
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'crud.db'}")
    archive = sa.create_engine(f"sqlite:///{tmp_path / 'archive.db'}")
    metadata.create_all(archive)

    store = SqlStore(engine, named_engines={"archive": archive})
    store.setup(metadata)
    yield store
    store.close()


@pytest.fixture
def events(store):
    events = SqlCrudEvents()
    events.setup(store)
    return events


@pytest.fixture
def executor(resolver, store, evaluator):
    return CrudExecutor(resolver, store, evaluator=evaluator)


@pytest.fixture
def event_executor(resolver, store, evaluator, events):
    return CrudExecutor(resolver, store, events=events, evaluator=evaluator)


@pytest_asyncio.fixture
async def async_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crud_async.db'}")
    store = AsyncSqlStore(engine)
    await store.setup(metadata)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def async_events(async_store):
    events = SqlCrudEvents()
    await events.setup_async(async_store)
    return events


@pytest.fixture
def async_executor(resolver, async_store, evaluator):
    return AsyncCrudExecutor(resolver, async_store, evaluator=evaluator)

