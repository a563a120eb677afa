"""
Abstract base classes for persistence backends.

This module defines the contracts the CRUD engine consumes, enabling
pluggable backends for the write side of auto-generated services:
- a typed predicate value (column, operator, bound value triples)
- per-call connections (sync and async) that execute exactly the
  statements the engine asks for
- connection factories that hand out scoped connections by name
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    Callable,
    ContextManager,
    Iterable,
    Mapping,
    Optional,
)

from core.storage.schema import ModelDescriptor


class Operator(str, Enum):
    """Comparison operators a predicate term can use."""
    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "like"
    IN = "in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    BETWEEN = "between"

    @property
    def arity(self) -> int:
        """Number of bound parameters the operator consumes."""
        if self in (Operator.IS_NULL, Operator.IS_NOT_NULL):
            return 0
        if self is Operator.BETWEEN:
            return 2
        return 1


@dataclass(frozen=True)
class Condition:
    """A single ``column <operator> value`` term."""
    column: str
    operator: Operator = Operator.EQ
    value: Any = None

    def describe(self, quote: Callable[[str], str]) -> str:
        column = quote(self.column)
        if self.operator is Operator.IS_NULL:
            return f"{column} IS NULL"
        if self.operator is Operator.IS_NOT_NULL:
            return f"{column} IS NOT NULL"
        if self.operator is Operator.BETWEEN:
            return f"{column} BETWEEN ? AND ?"
        if self.operator is Operator.IN:
            return f"{column} IN (?)"
        return f"{column} {self.operator.value.upper()} ?"


@dataclass(frozen=True)
class Predicate:
    """
    A conjunction of conditions.

    Values are never interpolated into text; backends bind them as
    parameters when rendering.
    """
    conditions: tuple[Condition, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def and_(self, condition: Condition) -> "Predicate":
        return Predicate(self.conditions + (condition,))

    @property
    def parameters(self) -> list[Any]:
        """Bound values in condition order."""
        params: list[Any] = []
        for condition in self.conditions:
            if condition.operator.arity == 1:
                params.append(condition.value)
            elif condition.operator.arity == 2:
                params.extend(condition.value)
        return params

    def describe(self, quote: Callable[[str], str] = str) -> str:
        return " AND ".join(c.describe(quote) for c in self.conditions)

    @classmethod
    def equals(cls, values: Mapping[str, Any]) -> "Predicate":
        """Build an equality match on every entry of ``values``."""
        return cls(tuple(Condition(k, Operator.EQ, v) for k, v in values.items()))


class CrudConnection(ABC):
    """
    A connection exclusively owned by one operation.

    Writes outside ``transaction()`` commit on their own; writes inside it
    commit or roll back together when the block exits.
    """

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Open a transaction that commits on success and rolls back on error."""
        pass

    @abstractmethod
    def insert(
        self,
        model: ModelDescriptor,
        values: dict[str, Any],
        select_identity: bool = False,
    ) -> Any:
        """
        Insert one row.

        Generated ids of auto-id keys are written back into ``values``.

        Returns:
            The generated identity when ``select_identity`` is set,
            otherwise the number of rows inserted
        """
        pass

    @abstractmethod
    def update(
        self,
        model: ModelDescriptor,
        values: dict[str, Any],
        predicate: Optional[Predicate] = None,
    ) -> int:
        """
        Update the columns in ``values``.

        Without a predicate the primary key inside ``values`` selects the row.
        Returns the number of rows affected.
        """
        pass

    @abstractmethod
    def delete(self, model: ModelDescriptor, predicate: Predicate) -> int:
        """Delete the rows matching ``predicate``; returns rows affected."""
        pass

    @abstractmethod
    def save(self, model: ModelDescriptor, values: dict[str, Any]) -> int:
        """Upsert one row by primary key; returns rows affected."""
        pass

    @abstractmethod
    def fetch_by_id(self, model: ModelDescriptor, id_value: Any) -> Optional[dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_row_version(self, model: ModelDescriptor, id_value: Any) -> Any:
        pass

    @abstractmethod
    def select(
        self,
        model: ModelDescriptor,
        predicate: Optional[Predicate] = None,
        columns: Optional[Iterable[str]] = None,
        distinct: bool = False,
    ) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def quote_column(self, model: ModelDescriptor, field: str) -> str:
        """Quote a column name for the connection's dialect."""
        pass


class AsyncCrudConnection(ABC):
    """Async counterpart of CrudConnection with identical semantics."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        pass

    @abstractmethod
    async def insert(
        self,
        model: ModelDescriptor,
        values: dict[str, Any],
        select_identity: bool = False,
    ) -> Any:
        pass

    @abstractmethod
    async def update(
        self,
        model: ModelDescriptor,
        values: dict[str, Any],
        predicate: Optional[Predicate] = None,
    ) -> int:
        pass

    @abstractmethod
    async def delete(self, model: ModelDescriptor, predicate: Predicate) -> int:
        pass

    @abstractmethod
    async def save(self, model: ModelDescriptor, values: dict[str, Any]) -> int:
        pass

    @abstractmethod
    async def fetch_by_id(self, model: ModelDescriptor, id_value: Any) -> Optional[dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_row_version(self, model: ModelDescriptor, id_value: Any) -> Any:
        pass

    @abstractmethod
    async def select(
        self,
        model: ModelDescriptor,
        predicate: Optional[Predicate] = None,
        columns: Optional[Iterable[str]] = None,
        distinct: bool = False,
    ) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def quote_column(self, model: ModelDescriptor, field: str) -> str:
        pass


class ConnectionFactory(ABC):
    """
    Hands out scoped connections.

    Usage:
        with factory.open_connection() as conn:
            conn.insert(model, {"name": "x"})
    """

    @abstractmethod
    def open_connection(self, name: Optional[str] = None) -> ContextManager[CrudConnection]:
        """
        Acquire a connection, released when the block exits.

        Args:
            name: Optional named connection; None selects the default
        """
        pass

    @abstractmethod
    def setup(self, metadata: Any) -> None:
        """
        Create the tables of ``metadata`` if they do not exist.

        This should be idempotent - safe to call multiple times.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources (engines, pools)."""
        pass


class AsyncConnectionFactory(ABC):
    """Async counterpart of ConnectionFactory."""

    @abstractmethod
    def open_connection(self, name: Optional[str] = None) -> AsyncContextManager[AsyncCrudConnection]:
        pass

    @abstractmethod
    async def setup(self, metadata: Any) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
