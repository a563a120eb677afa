"""
Tables, request types and responses shared by the test suite.
"""

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from pydantic import BaseModel

from core.storage import ModelDescriptor

from autocrud import (
    AutoApply,
    AutoDefault,
    AutoFilter,
    AutoIgnore,
    AutoMap,
    AutoUpdate,
    AutoUpdateStyle,
    Behavior,
    BehaviorRegistry,
)


metadata = sa.MetaData()

booking_table = sa.Table(
    "booking",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(100), nullable=False),
    sa.Column("notes", sa.String(255)),
    sa.Column("score", sa.Integer, nullable=False, default=0),
    sa.Column("priority", sa.Integer, nullable=False, default=0),
    sa.Column("tenant_id", sa.Integer),
    sa.Column("row_version", sa.Integer, nullable=False, default=0),
    sa.Column("created_date", sa.DateTime(timezone=True)),
    sa.Column("created_by", sa.String(100)),
    sa.Column("modified_date", sa.DateTime(timezone=True)),
    sa.Column("modified_by", sa.String(100)),
    sa.Column("deleted_date", sa.DateTime(timezone=True)),
    sa.Column("deleted_by", sa.String(100)),
)

country_table = sa.Table(
    "country",
    metadata,
    sa.Column("code", sa.String(2), primary_key=True),
    sa.Column("name", sa.String(100), nullable=False),
)

document_table = sa.Table(
    "document",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True, default=uuid.uuid4),
    sa.Column("title", sa.String(100), nullable=False),
)


# Responses

class BookingRow(BaseModel):
    id: int
    name: str
    notes: Optional[str] = None
    score: int = 0
    priority: int = 0
    tenant_id: Optional[int] = None
    row_version: int = 0
    created_by: Optional[str] = None
    deleted_date: Optional[datetime] = None


class IdResponse(BaseModel):
    id: Optional[int] = None


class WriteResponse(BaseModel):
    id: Optional[int] = None
    count: Optional[int] = None
    row_version: Optional[int] = None


class CountResponse(BaseModel):
    count: Optional[int] = None


class ResultResponse(BaseModel):
    id: Optional[int] = None
    result: Optional[BookingRow] = None


class CodeResponse(BaseModel):
    id: Optional[str] = None


class DocumentResponse(BaseModel):
    id: Optional[uuid.UUID] = None


class EmptyResponse(BaseModel):
    message: Optional[str] = None


# Requests

registry = BehaviorRegistry()


@registry.crud(
    booking_table,
    response=IdResponse,
    behaviors=[AutoApply(Behavior.AUDIT_CREATE)],
    fields={"title": [AutoMap("name")], "comment": [AutoIgnore()]},
)
class CreateBooking(BaseModel):
    title: str
    notes: Optional[str] = None
    score: int = 0
    priority: int = 0
    tenant_id: Optional[int] = None
    comment: Optional[str] = None


class CreateBookingResult(CreateBooking):
    pass


registry.register(
    CreateBookingResult,
    booking_table,
    response=ResultResponse,
    fields={"title": [AutoMap("name")], "comment": [AutoIgnore()]},
)


class ArchiveBooking(CreateBooking):
    pass


registry.register(
    ArchiveBooking,
    booking_table,
    response=IdResponse,
    fields={"title": [AutoMap("name")], "comment": [AutoIgnore()]},
    connection="archive",
)


@registry.crud(booking_table, response=WriteResponse, behaviors=[AutoApply(Behavior.AUDIT_MODIFY)])
class UpdateBooking(BaseModel):
    id: int = 0
    name: str
    notes: Optional[str] = None
    score: int = 0
    row_version: int = 0
    reset: Optional[list[str]] = None


@registry.crud(booking_table, response=WriteResponse)
class PatchBooking(BaseModel):
    id: int = 0
    name: Optional[str] = None
    notes: Optional[str] = None
    score: int = 0
    priority: int = 0


@registry.crud(
    booking_table,
    response=WriteResponse,
    fields={
        "priority": [AutoDefault(value=3)],
        "score": [AutoUpdate(AutoUpdateStyle.NON_DEFAULTS)],
    },
)
class RescoreBooking(BaseModel):
    id: int = 0
    name: str = "rescored"
    score: int = 0
    priority: int = 0
    tenant_id: Optional[int] = 0


@registry.crud(
    booking_table,
    response=CountResponse,
    behaviors=[AutoFilter("tenant_id", eval="tenant_id")],
)
class TenantUpdateBooking(BaseModel):
    id: int = 0
    name: str


@registry.crud(booking_table, response=CountResponse)
class DeleteBooking(BaseModel):
    id: int = 0


@registry.crud(booking_table, response=CountResponse)
class DeleteBookingsByName(BaseModel):
    name: Optional[str] = None


@registry.crud(booking_table, response=IdResponse)
class DeleteBookingsByNameForId(BaseModel):
    name: Optional[str] = None


@registry.crud(booking_table, response=CountResponse, fields={"tenant_id": [AutoFilter()]})
class ScopedUpdateBooking(BaseModel):
    id: int = 0
    name: str
    tenant_id: int = 0


@registry.crud(booking_table, response=CountResponse, fields={"tenant": [AutoFilter("tenant_id")]})
class ScopedDeleteBooking(BaseModel):
    id: int = 0
    tenant: int = 0


@registry.crud(
    booking_table,
    response=CountResponse,
    behaviors=[AutoFilter("tenant_id", eval="tenant_id")],
)
class DeleteTenantBookings(BaseModel):
    id: int = 0
    name: Optional[str] = None


@registry.crud(
    booking_table,
    response=CountResponse,
    behaviors=[AutoApply(Behavior.AUDIT_SOFT_DELETE)],
)
class SoftDeleteBooking(BaseModel):
    id: int = 0


@registry.crud(booking_table, response=EmptyResponse)
class TouchBooking(BaseModel):
    id: int = 0
    notes: Optional[str] = None


@registry.crud(booking_table)
class PlainUpdateBooking(BaseModel):
    id: int = 0
    name: str


@registry.crud(country_table, response=CodeResponse)
class CreateCountry(BaseModel):
    code: Optional[str] = None
    name: str


@registry.crud(country_table, response=CodeResponse)
class SaveCountry(BaseModel):
    code: str
    name: str


@registry.crud(booking_table, response=WriteResponse)
class DeleteBookingsVersioned(BaseModel):
    name: Optional[str] = None


@registry.crud(document_table, response=DocumentResponse)
class CreateDocument(BaseModel):
    title: str


@registry.crud(
    booking_table,
    behaviors=[AutoFilter("score", operator="between", value=(1, 5))],
)
class RangeUpdateBooking(BaseModel):
    id: int = 0
    name: str


class UnregisteredRequest(BaseModel):
    id: int = 0


BOOKING = ModelDescriptor.from_table(booking_table)
COUNTRY = ModelDescriptor.from_table(country_table)
DOCUMENT = ModelDescriptor.from_table(document_table)


def fetch_row(store, model: ModelDescriptor, id_value) -> Optional[dict]:
    """Read a row through a fresh connection."""
    with store.open_connection() as conn:
        return conn.fetch_by_id(model, id_value)


async def fetch_row_async(store, model: ModelDescriptor, id_value) -> Optional[dict]:
    async with store.open_connection() as conn:
        return await conn.fetch_by_id(model, id_value)
