"""
Storage abstraction layer.

Provides the persistence contracts consumed by the CRUD engine and a
SQLAlchemy Core backend:
- Typed predicates (Condition, Operator, Predicate)
- Per-operation connections, sync and async
- Connection factories with named connections
- Model descriptors derived from SQLAlchemy tables
"""

from core.storage.base import (
    AsyncConnectionFactory,
    AsyncCrudConnection,
    Condition,
    ConnectionFactory,
    CrudConnection,
    Operator,
    Predicate,
)
from core.storage.factory import create_async_store, create_store
from core.storage.schema import (
    FieldDescriptor,
    ModelDescriptor,
    is_default_value,
)
from core.storage.sql import AsyncSqlStore, SqlStore

__all__ = [
    # Abstract interfaces
    "AsyncConnectionFactory",
    "AsyncCrudConnection",
    "ConnectionFactory",
    "CrudConnection",
    # Predicates
    "Condition",
    "Operator",
    "Predicate",
    # Schema
    "FieldDescriptor",
    "ModelDescriptor",
    "is_default_value",
    # SQLAlchemy backend
    "AsyncSqlStore",
    "SqlStore",
    "create_async_store",
    "create_store",
]
