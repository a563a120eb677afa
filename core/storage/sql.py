"""
SQLAlchemy storage backend implementation.

Provides SQLAlchemy Core implementations for:
- Per-operation connections (sync Connection and AsyncConnection)
- Connection factories with named connections

Predicates are rendered to SQLAlchemy expressions so every value is sent
as a bound parameter. The concurrency token column (``row_version``) is
maintained here: it starts at 0 and every update bumps it by one.
"""

from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterable, Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.errors import UnsupportedOperationError
from core.logging import get_logger
from core.storage.base import (
    AsyncConnectionFactory,
    AsyncCrudConnection,
    Condition,
    ConnectionFactory,
    CrudConnection,
    Operator,
    Predicate,
)
from core.storage.schema import ModelDescriptor, is_default_value


logger = get_logger(__name__)


def _column(model: ModelDescriptor, name: str) -> sa.Column:
    field = model.get_field(name)
    if field is None:
        raise UnsupportedOperationError(
            f"Unknown field '{name}' on '{model.name}'", field=name,
        )
    return model.table.c[field.name]


def _render(model: ModelDescriptor, condition: Condition) -> sa.ColumnElement:
    column = _column(model, condition.column)
    op = condition.operator
    value = condition.value

    if op is Operator.IS_NULL or (op is Operator.EQ and value is None):
        return column.is_(None)
    if op is Operator.IS_NOT_NULL or (op is Operator.NE and value is None):
        return column.is_not(None)
    if op is Operator.EQ:
        return column == value
    if op is Operator.NE:
        return column != value
    if op is Operator.LT:
        return column < value
    if op is Operator.LE:
        return column <= value
    if op is Operator.GT:
        return column > value
    if op is Operator.GE:
        return column >= value
    if op is Operator.LIKE:
        return column.like(value)
    if op is Operator.IN:
        return column.in_(list(value))
    if op is Operator.BETWEEN:
        low, high = value
        return column.between(low, high)
    raise UnsupportedOperationError(f"Unsupported operator '{op}'")


def _where(model: ModelDescriptor, predicate: Predicate) -> list[sa.ColumnElement]:
    return [_render(model, c) for c in predicate.conditions]


def _column_values(model: ModelDescriptor, values: dict[str, Any]) -> dict[str, Any]:
    return {_column(model, k).key: v for k, v in values.items()}


def _insert_statement(model: ModelDescriptor, values: dict[str, Any]) -> sa.Insert:
    pk = model.primary_key
    if pk is not None and (pk.auto_increment or pk.auto_id):
        if pk.name in values and is_default_value(values[pk.name]):
            del values[pk.name]

    token = model.row_version
    if token is not None and values.get(token.name) is None:
        values[token.name] = 0

    return sa.insert(model.table).values(**_column_values(model, values))


def _update_statement(
    model: ModelDescriptor,
    values: dict[str, Any],
    predicate: Optional[Predicate],
) -> sa.Update:
    values = dict(values)
    table = model.table
    pk = model.primary_key

    if predicate is None:
        if pk is None:
            raise UnsupportedOperationError(f"Table '{model.name}' does not have a primary key")
        if pk.name not in values:
            raise UnsupportedOperationError(
                f"Update of '{model.name}' requires '{pk.name}' or a filter", field=pk.name,
            )
        where = [table.c[pk.name] == values.pop(pk.name)]
    else:
        where = _where(model, predicate)

    token = model.row_version
    if token is not None:
        supplied = values.pop(token.name, None)
        if not is_default_value(supplied):
            where.append(table.c[token.name] == supplied)
        values[token.name] = table.c[token.name] + 1

    if not values:
        raise UnsupportedOperationError(f"No fields to update on '{model.name}'")

    return sa.update(table).where(*where).values(**_column_values(model, values))


def _primary_key(model: ModelDescriptor) -> sa.Column:
    if model.primary_key is None:
        raise UnsupportedOperationError(f"Table '{model.name}' does not have a primary key")
    return model.table.c[model.primary_key.name]


def _select_statement(
    model: ModelDescriptor,
    predicate: Optional[Predicate],
    columns: Optional[Iterable[str]],
    distinct: bool,
) -> sa.Select:
    if columns:
        stmt = sa.select(*[_column(model, c) for c in columns])
    else:
        stmt = sa.select(model.table)
    if predicate:
        stmt = stmt.where(*_where(model, predicate))
    if distinct:
        stmt = stmt.distinct()
    return stmt


def _row_version_statement(model: ModelDescriptor, id_value: Any) -> sa.Select:
    token = model.row_version
    if token is None:
        raise UnsupportedOperationError(f"Table '{model.name}' does not have a row version")
    return sa.select(model.table.c[token.name]).where(_primary_key(model) == id_value)


def _insert_result(
    model: ModelDescriptor,
    values: dict[str, Any],
    result: CursorResult,
    select_identity: bool,
) -> Any:
    pk = model.primary_key
    generated = None
    if pk is not None and result.inserted_primary_key:
        generated = result.inserted_primary_key[0]
        if pk.auto_id and pk.name not in values:
            values[pk.name] = generated
    return generated if select_identity else result.rowcount


class SqlConnection(CrudConnection):
    """CrudConnection over a SQLAlchemy Connection."""

    def __init__(self, connection: Connection):
        self._conn = connection
        self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._conn.in_transaction():
            self._conn.commit()
        with self._conn.begin():
            self._in_transaction = True
            try:
                yield
            finally:
                self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self._conn.commit()

    def insert(self, model, values, select_identity=False):
        result = self._conn.execute(_insert_statement(model, values))
        self._commit()
        return _insert_result(model, values, result, select_identity)

    def update(self, model, values, predicate=None):
        result = self._conn.execute(_update_statement(model, values, predicate))
        self._commit()
        return result.rowcount

    def delete(self, model, predicate):
        if not predicate:
            raise UnsupportedOperationError(f"Refusing unconstrained delete on '{model.name}'")
        result = self._conn.execute(sa.delete(model.table).where(*_where(model, predicate)))
        self._commit()
        return result.rowcount

    def save(self, model, values):
        pk = _primary_key(model)
        id_value = values.get(pk.key)
        if not is_default_value(id_value) and self.fetch_by_id(model, id_value) is not None:
            return self.update(model, values)
        self.insert(model, values)
        return 1

    def fetch_by_id(self, model, id_value):
        stmt = sa.select(model.table).where(_primary_key(model) == id_value)
        row = self._conn.execute(stmt).mappings().first()
        return dict(row) if row is not None else None

    def fetch_row_version(self, model, id_value):
        return self._conn.execute(_row_version_statement(model, id_value)).scalar()

    def select(self, model, predicate=None, columns=None, distinct=False):
        stmt = _select_statement(model, predicate, columns, distinct)
        return [dict(row) for row in self._conn.execute(stmt).mappings()]

    def quote_column(self, model, field):
        return self._conn.dialect.identifier_preparer.quote(_column(model, field).name)


class AsyncSqlConnection(AsyncCrudConnection):
    """AsyncCrudConnection over a SQLAlchemy AsyncConnection."""

    def __init__(self, connection: AsyncConnection):
        self._conn = connection
        self._in_transaction = False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._conn.in_transaction():
            await self._conn.commit()
        async with self._conn.begin():
            self._in_transaction = True
            try:
                yield
            finally:
                self._in_transaction = False

    async def _commit(self) -> None:
        if not self._in_transaction:
            await self._conn.commit()

    async def insert(self, model, values, select_identity=False):
        result = await self._conn.execute(_insert_statement(model, values))
        await self._commit()
        return _insert_result(model, values, result, select_identity)

    async def update(self, model, values, predicate=None):
        result = await self._conn.execute(_update_statement(model, values, predicate))
        await self._commit()
        return result.rowcount

    async def delete(self, model, predicate):
        if not predicate:
            raise UnsupportedOperationError(f"Refusing unconstrained delete on '{model.name}'")
        result = await self._conn.execute(sa.delete(model.table).where(*_where(model, predicate)))
        await self._commit()
        return result.rowcount

    async def save(self, model, values):
        pk = _primary_key(model)
        id_value = values.get(pk.key)
        if not is_default_value(id_value) and await self.fetch_by_id(model, id_value) is not None:
            return await self.update(model, values)
        await self.insert(model, values)
        return 1

    async def fetch_by_id(self, model, id_value):
        stmt = sa.select(model.table).where(_primary_key(model) == id_value)
        row = (await self._conn.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None

    async def fetch_row_version(self, model, id_value):
        return (await self._conn.execute(_row_version_statement(model, id_value))).scalar()

    async def select(self, model, predicate=None, columns=None, distinct=False):
        stmt = _select_statement(model, predicate, columns, distinct)
        result = await self._conn.execute(stmt)
        return [dict(row) for row in result.mappings()]

    def quote_column(self, model, field):
        return self._conn.dialect.identifier_preparer.quote(_column(model, field).name)


class SqlStore(ConnectionFactory):
    """
    Connection factory over one default engine plus optional named engines.

    Usage:
        store = SqlStore(create_engine("sqlite:///app.db"))
        with store.open_connection() as conn:
            conn.fetch_by_id(model, 1)
    """

    def __init__(
        self,
        engine: Engine,
        named_engines: Optional[dict[str, Engine]] = None,
    ):
        self._engine = engine
        self._named_engines = dict(named_engines or {})

    def _engine_for(self, name: Optional[str]) -> Engine:
        if name is None:
            return self._engine
        try:
            return self._named_engines[name]
        except KeyError:
            raise UnsupportedOperationError(f"Unknown named connection '{name}'") from None

    @contextmanager
    def open_connection(self, name: Optional[str] = None) -> Iterator[SqlConnection]:
        with self._engine_for(name).connect() as conn:
            yield SqlConnection(conn)

    def setup(self, metadata: sa.MetaData) -> None:
        metadata.create_all(self._engine)
        logger.info("SQL store initialized", tables=sorted(metadata.tables))

    def close(self) -> None:
        self._engine.dispose()
        for engine in self._named_engines.values():
            engine.dispose()
        logger.info("SQL store closed")


class AsyncSqlStore(AsyncConnectionFactory):
    """Async connection factory over AsyncEngine instances."""

    def __init__(
        self,
        engine: AsyncEngine,
        named_engines: Optional[dict[str, AsyncEngine]] = None,
    ):
        self._engine = engine
        self._named_engines = dict(named_engines or {})

    def _engine_for(self, name: Optional[str]) -> AsyncEngine:
        if name is None:
            return self._engine
        try:
            return self._named_engines[name]
        except KeyError:
            raise UnsupportedOperationError(f"Unknown named connection '{name}'") from None

    @asynccontextmanager
    async def open_connection(self, name: Optional[str] = None) -> AsyncIterator[AsyncSqlConnection]:
        async with self._engine_for(name).connect() as conn:
            yield AsyncSqlConnection(conn)

    async def setup(self, metadata: sa.MetaData) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Async SQL store initialized", tables=sorted(metadata.tables))

    async def close(self) -> None:
        await self._engine.dispose()
        for engine in self._named_engines.values():
            await engine.dispose()
        logger.info("Async SQL store closed")
