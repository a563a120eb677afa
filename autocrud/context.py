"""
Per-call execution state.

An ExecutionContext lives for exactly one operation. It carries the
request, its resolved metadata, the connection owned by the call, the
optional event recorder and the accessors of the response type. Hooks and
event recorders receive it.
"""

import types
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter

from core.storage import AsyncCrudConnection, CrudConnection, ModelDescriptor
from core.storage.schema import ROW_VERSION
from autocrud.expressions import RequestContext
from autocrud.metadata import AutoCrudMetadata


ID = "id"
COUNT = "count"
RESULT = "result"


class CrudOperation(str, Enum):
    """Kinds of write operations."""
    CREATE = "create"
    UPDATE = "update"
    PATCH = "patch"
    DELETE = "delete"
    SAVE = "save"


@lru_cache(maxsize=None)
def _adapter(annotation: Any) -> TypeAdapter:
    return TypeAdapter(annotation)


def _accepts_str(annotation: Any) -> bool:
    if annotation is str:
        return True
    if get_origin(annotation) in (Union, types.UnionType):
        return str in get_args(annotation)
    return False


@dataclass(frozen=True)
class FieldAccessor:
    """A settable response field and the type its value is converted to."""
    name: str
    annotation: Any

    def convert(self, value: Any) -> Any:
        if value is None:
            return None
        if _accepts_str(self.annotation) and not isinstance(value, str):
            return str(value)
        return _adapter(self.annotation).validate_python(value)


@dataclass(frozen=True)
class ResponseAccessors:
    """Result-carrying fields exposed by a response type."""
    id: Optional[FieldAccessor] = None
    count: Optional[FieldAccessor] = None
    result: Optional[FieldAccessor] = None
    row_version: Optional[FieldAccessor] = None

    def __bool__(self) -> bool:
        return any((self.id, self.count, self.result, self.row_version))

    @classmethod
    def for_type(cls, response_type: Optional[type[BaseModel]]) -> "ResponseAccessors":
        if response_type is None:
            return cls()
        fields = response_type.model_fields

        def accessor(name: str) -> Optional[FieldAccessor]:
            info = fields.get(name)
            return FieldAccessor(name, info.annotation) if info is not None else None

        return cls(
            id=accessor(ID),
            count=accessor(COUNT),
            result=accessor(RESULT),
            row_version=accessor(ROW_VERSION),
        )


@dataclass(frozen=True)
class ExecResult:
    """Outcome of the persistence step."""
    id: Any = None
    rows_updated: Optional[int] = None


@dataclass
class ExecutionContext:
    operation: CrudOperation
    request: BaseModel
    request_context: RequestContext
    meta: AutoCrudMetadata
    connection: Union[CrudConnection, AsyncCrudConnection]
    events: Any = None
    accessors: ResponseAccessors = field(default_factory=ResponseAccessors)
    id: Any = None
    rows_updated: Optional[int] = None
    response: Optional[BaseModel] = None

    @property
    def model(self) -> ModelDescriptor:
        return self.meta.model

    @property
    def request_type(self) -> type[BaseModel]:
        return type(self.request)

    @property
    def response_type(self) -> Optional[type[BaseModel]]:
        return self.meta.response_type

    @property
    def record_event(self) -> bool:
        return self.events is not None and not self.request_context.ignore_event

    def set_result(self, result: ExecResult) -> None:
        self.id = result.id
        self.rows_updated = result.rows_updated

    def request_id(self) -> Any:
        """Read the primary key straight off the request, if it has one."""
        pk = self.model.primary_key
        if pk is None:
            return None
        return getattr(self.request, pk.name, None)

    @classmethod
    def create(
        cls,
        operation: CrudOperation,
        request: BaseModel,
        request_context: RequestContext,
        meta: AutoCrudMetadata,
        connection: Union[CrudConnection, AsyncCrudConnection],
        events: Any = None,
    ) -> "ExecutionContext":
        return cls(
            operation=operation,
            request=request,
            request_context=request_context,
            meta=meta,
            connection=connection,
            events=events,
            accessors=ResponseAccessors.for_type(meta.response_type),
        )
