"""
Field behavior declarations and the registry that binds them to request types.

Request descriptors are plain pydantic models. Instead of decorating their
fields with attributes, each request type is registered once, at startup,
with a table of behaviors:

    registry = BehaviorRegistry()

    @registry.crud(
        booking_table,
        response=IdResponse,
        behaviors=[AutoApply(Behavior.AUDIT_CREATE)],
        fields={"notes": [AutoMap("description")]},
    )
    class CreateBooking(BaseModel):
        name: str
        notes: str | None = None

Type-level behaviors (AutoPopulate, AutoFilter, AutoApply) apply to the
whole request; field-level behaviors (AutoMap, AutoDefault, AutoUpdate,
AutoIgnore) apply to one request field. AutoPopulate and AutoFilter may
also be listed under a field, in which case they target that field.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import sqlalchemy as sa
from pydantic import BaseModel

from core.errors import UnsupportedOperationError
from core.logging import get_logger
from core.storage import ModelDescriptor, Operator


logger = get_logger(__name__)


class AutoUpdateStyle(str, Enum):
    """Whether default-valued fields are written on update."""
    ALL = "all"
    NON_DEFAULTS = "non_defaults"


class Behavior:
    """Names understood by the built-in audit metadata filter."""
    AUDIT_QUERY = "audit_query"
    AUDIT_CREATE = "audit_create"
    AUDIT_MODIFY = "audit_modify"
    AUDIT_DELETE = "audit_delete"
    AUDIT_SOFT_DELETE = "audit_soft_delete"


@dataclass(frozen=True)
class AutoPopulate:
    """Always overwrite ``field`` with an evaluated value before persisting."""
    field: Optional[str] = None
    value: Any = None
    eval: Optional[str] = None


@dataclass(frozen=True)
class AutoFilter:
    """AND ``field <operator> value`` onto the write predicate."""
    field: Optional[str] = None
    operator: Operator = Operator.EQ
    value: Any = None
    eval: Optional[str] = None
    # Request field whose own value is compared, set for field-level filters
    source: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.operator, Operator):
            object.__setattr__(self, "operator", Operator(self.operator))


@dataclass(frozen=True)
class AutoDefault:
    """Replace a default-valued field with an evaluated value."""
    value: Any = None
    eval: Optional[str] = None


@dataclass(frozen=True)
class AutoMap:
    """Write the field to a differently named column."""
    to: str


@dataclass(frozen=True)
class AutoUpdate:
    style: AutoUpdateStyle = AutoUpdateStyle.NON_DEFAULTS


@dataclass(frozen=True)
class AutoIgnore:
    """Never persist the field."""


@dataclass(frozen=True)
class AutoApply:
    """Marker consumed by metadata filters (see Behavior)."""
    name: str


FieldBehavior = Union[AutoMap, AutoDefault, AutoUpdate, AutoIgnore, AutoPopulate, AutoFilter]
TypeBehavior = Union[AutoPopulate, AutoFilter, AutoApply]
Populator = Callable[[dict[str, Any], BaseModel], None]


@dataclass(frozen=True)
class RequestBinding:
    """Everything registered for one request type."""
    request_type: type[BaseModel]
    model: ModelDescriptor
    response_type: Optional[type[BaseModel]] = None
    field_behaviors: Mapping[str, tuple[FieldBehavior, ...]] = field(default_factory=dict)
    type_behaviors: tuple[TypeBehavior, ...] = ()
    connection: Optional[str] = None
    populator: Optional[Populator] = None


def _check_response_type(request_type: type[BaseModel], response: Any) -> None:
    """Responses are shaped from a default instance, so every field needs a default."""
    if not (isinstance(response, type) and issubclass(response, BaseModel)):
        raise UnsupportedOperationError(
            f"Response type of '{request_type.__name__}' must be a pydantic model, got {response!r}"
        )
    required = [name for name, info in response.model_fields.items() if info.is_required()]
    if required:
        raise UnsupportedOperationError(
            f"Response type '{response.__name__}' of '{request_type.__name__}' "
            f"has required fields: {', '.join(required)}",
            field=required[0],
        )


class BehaviorRegistry:
    """
    Static table of request-type bindings.

    Built once at startup and read concurrently afterwards. Lookups walk
    the request type's MRO, so subclasses share their base's binding
    unless registered themselves.
    """

    def __init__(self):
        self._bindings: dict[type, RequestBinding] = {}

    def register(
        self,
        request_type: type[BaseModel],
        model: Union[ModelDescriptor, sa.Table],
        *,
        response: Optional[type[BaseModel]] = None,
        fields: Optional[Mapping[str, Iterable[FieldBehavior]]] = None,
        behaviors: Iterable[TypeBehavior] = (),
        connection: Optional[str] = None,
        populator: Optional[Populator] = None,
    ) -> RequestBinding:
        """
        Bind a request type to its model and behaviors.

        Args:
            request_type: pydantic model describing the request
            model: Target table or its descriptor
            response: Optional response model shaped after the write
            fields: Field name -> behaviors for that field
            behaviors: Type-level behaviors
            connection: Named connection to open for this request type
            populator: Called with the resolved values and the request

        Returns:
            The stored binding
        """
        if not (isinstance(request_type, type) and issubclass(request_type, BaseModel)):
            raise UnsupportedOperationError(
                f"Request type must be a pydantic model, got {request_type!r}"
            )
        if response is not None:
            _check_response_type(request_type, response)
        if isinstance(model, sa.Table):
            model = ModelDescriptor.from_table(model)

        field_behaviors: dict[str, tuple[FieldBehavior, ...]] = {}
        for name, items in (fields or {}).items():
            if name not in request_type.model_fields:
                raise UnsupportedOperationError(
                    f"'{request_type.__name__}' has no field '{name}'", field=name,
                )
            field_behaviors[name] = tuple(items)

        binding = RequestBinding(
            request_type=request_type,
            model=model,
            response_type=response,
            field_behaviors=MappingProxyType(field_behaviors),
            type_behaviors=tuple(behaviors),
            connection=connection,
            populator=populator,
        )
        self._bindings[request_type] = binding
        logger.debug(
            "Request type registered",
            request_type=request_type.__name__,
            model=model.name,
        )
        return binding

    def crud(self, model: Union[ModelDescriptor, sa.Table], **options: Any):
        """Class decorator form of register()."""
        def decorator(request_type: type[BaseModel]) -> type[BaseModel]:
            self.register(request_type, model, **options)
            return request_type
        return decorator

    def get(self, request_type: type) -> RequestBinding:
        for klass in getattr(request_type, "__mro__", (request_type,)):
            binding = self._bindings.get(klass)
            if binding is not None:
                return binding
        raise UnsupportedOperationError(
            f"'{getattr(request_type, '__name__', request_type)}' is not registered for CRUD operations"
        )

    def __contains__(self, request_type: type) -> bool:
        try:
            self.get(request_type)
        except UnsupportedOperationError:
            return False
        return True
