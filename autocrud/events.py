"""
Audit event recording.

An EventRecorder is called once per successful write, inside the same
transaction as the write, so the row and its event commit or roll back
together. SqlCrudEvents stores events in a table written through the
operation's own connection and also answers event queries.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import sqlalchemy as sa
from pydantic import BaseModel

from core.config import Settings
from core.errors import MissingArgumentError
from core.logging import get_logger
from core.storage import (
    AsyncConnectionFactory,
    AsyncCrudConnection,
    Condition,
    ConnectionFactory,
    CrudConnection,
    ModelDescriptor,
    Operator,
    Predicate,
)
from autocrud.context import ExecutionContext


logger = get_logger(__name__)


class CrudEvent(BaseModel):
    """One recorded write."""
    id: int
    event_type: str
    model: str
    model_id: Optional[str] = None
    event_date: datetime
    rows_updated: Optional[int] = None
    request_type: str
    request_body: Optional[str] = None
    user_auth_id: Optional[str] = None
    user_auth_name: Optional[str] = None
    remote_ip: Optional[str] = None
    urn: Optional[str] = None


class EventRecorder(ABC):
    """
    Records an event for a completed write.

    Implementations must write through ``ctx.connection`` so the event
    joins the operation's transaction.
    """

    @abstractmethod
    def record(self, ctx: ExecutionContext) -> None:
        pass

    @abstractmethod
    async def record_async(self, ctx: ExecutionContext) -> None:
        pass


def _require_model(model: Optional[str]) -> str:
    if not model:
        raise MissingArgumentError("Model name is required", field="model")
    return model


class SqlCrudEvents(EventRecorder):
    """
    EventRecorder backed by a SQL table.

    Usage:
        events = SqlCrudEvents()
        store.setup(events.metadata)
        executor = CrudExecutor(resolver, store, events=events)
    """

    def __init__(self, table_name: str = "crud_event", metadata: Optional[sa.MetaData] = None):
        self.metadata = metadata if metadata is not None else sa.MetaData()
        self.table = sa.Table(
            table_name,
            self.metadata,
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("event_type", sa.String(20), nullable=False),
            sa.Column("model", sa.String(100), nullable=False, index=True),
            sa.Column("model_id", sa.String(255), index=True),
            sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("rows_updated", sa.Integer),
            sa.Column("request_type", sa.String(255), nullable=False),
            sa.Column("request_body", sa.Text),
            sa.Column("user_auth_id", sa.String(255)),
            sa.Column("user_auth_name", sa.String(255)),
            sa.Column("remote_ip", sa.String(64)),
            sa.Column("urn", sa.String(512)),
        )
        self.model = ModelDescriptor.from_table(self.table)

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SqlCrudEvents"]:
        """Build the recorder when events are enabled in settings."""
        if not settings.crud_events_enabled:
            return None
        return cls(table_name=settings.crud_event_table)

    def to_values(self, ctx: ExecutionContext) -> dict[str, Any]:
        model_id = str(ctx.id) if ctx.id is not None else None
        return {
            "event_type": ctx.operation.value,
            "model": ctx.model.name,
            "model_id": model_id,
            "event_date": datetime.now(timezone.utc),
            "rows_updated": ctx.rows_updated,
            "request_type": ctx.request_type.__name__,
            "request_body": ctx.request.model_dump_json(),
            "user_auth_id": ctx.request_context.user_auth_id,
            "user_auth_name": ctx.request_context.user_auth_name,
            "remote_ip": ctx.request_context.remote_ip,
            "urn": f"urn:{ctx.model.name}:{model_id}",
        }

    def record(self, ctx: ExecutionContext) -> None:
        ctx.connection.insert(self.model, self.to_values(ctx))
        logger.debug("Crud event recorded", model=ctx.model.name, model_id=ctx.id)

    async def record_async(self, ctx: ExecutionContext) -> None:
        await ctx.connection.insert(self.model, self.to_values(ctx))
        logger.debug("Crud event recorded", model=ctx.model.name, model_id=ctx.id)

    # Queries

    def _events_predicate(self, model: str, model_id: Any) -> Predicate:
        predicate = Predicate((Condition("model", Operator.EQ, _require_model(model)),))
        if model_id is not None:
            predicate = predicate.and_(Condition("model_id", Operator.EQ, str(model_id)))
        return predicate

    def _check_predicate(self, model: str, ids: Iterable[Any]) -> Predicate:
        _require_model(model)
        ids = [str(i) for i in (ids or ())]
        if not ids:
            raise MissingArgumentError("At least one id is required", field="ids")
        return Predicate((
            Condition("model", Operator.EQ, model),
            Condition("model_id", Operator.IN, ids),
        ))

    def _to_events(self, rows: list[dict[str, Any]]) -> list[CrudEvent]:
        return [CrudEvent.model_validate(row) for row in sorted(rows, key=lambda r: r["id"])]

    def get_events(
        self,
        connection: CrudConnection,
        model: str,
        model_id: Any = None,
    ) -> list[CrudEvent]:
        """
        List recorded events of a model, oldest first.

        Args:
            connection: Connection to read with
            model: Table name the events were recorded for
            model_id: Optional id to narrow to one row's history
        """
        rows = connection.select(self.model, self._events_predicate(model, model_id))
        return self._to_events(rows)

    def check_events(self, connection: CrudConnection, model: str, ids: Iterable[Any]) -> list[str]:
        """Return which of ``ids`` have at least one recorded event."""
        rows = connection.select(
            self.model, self._check_predicate(model, ids), columns=["model_id"], distinct=True,
        )
        return sorted(row["model_id"] for row in rows)

    async def get_events_async(
        self,
        connection: AsyncCrudConnection,
        model: str,
        model_id: Any = None,
    ) -> list[CrudEvent]:
        rows = await connection.select(self.model, self._events_predicate(model, model_id))
        return self._to_events(rows)

    async def check_events_async(
        self,
        connection: AsyncCrudConnection,
        model: str,
        ids: Iterable[Any],
    ) -> list[str]:
        rows = await connection.select(
            self.model, self._check_predicate(model, ids), columns=["model_id"], distinct=True,
        )
        return sorted(row["model_id"] for row in rows)

    def setup(self, store: ConnectionFactory) -> None:
        store.setup(self.metadata)

    async def setup_async(self, store: AsyncConnectionFactory) -> None:
        await store.setup(self.metadata)
