"""
Per-request-type metadata resolution.

The resolver turns a registered request type into an AutoCrudMetadata
value once and caches it for the life of the process. Concurrent callers
may build the same entry at the same time; every build for a type yields
equal content and the last write wins, so no locking is needed.

Registered metadata filters run after the scan, in order, and may add
rules or flags. The audit filter is always first.
"""

import types
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Optional, Union, get_args, get_origin

from pydantic import BaseModel

from core.errors import UnsupportedOperationError
from core.logging import get_logger
from core.storage import FieldDescriptor, ModelDescriptor, Operator
from core.storage.schema import ROW_VERSION
from autocrud.behaviors import (
    AutoApply,
    AutoDefault,
    AutoFilter,
    AutoIgnore,
    AutoMap,
    AutoPopulate,
    AutoUpdate,
    Behavior,
    BehaviorRegistry,
    Populator,
)

logger = get_logger(__name__)


RESET = "reset"

# Request fields kept even though the model has no such column
INCLUDE_FIELDS = frozenset({RESET, ROW_VERSION})

# Audit column names used by the audit behaviors
CREATED_DATE = "created_date"
CREATED_BY = "created_by"
MODIFIED_DATE = "modified_date"
MODIFIED_BY = "modified_by"
DELETED_DATE = "deleted_date"
DELETED_BY = "deleted_by"


@dataclass
class AutoCrudMetadata:
    """Resolved behaviors of one request type."""
    request_type: type[BaseModel]
    model: ModelDescriptor
    response_type: Optional[type[BaseModel]] = None
    connection: Optional[str] = None
    populator: Optional[Populator] = None
    populate: list[AutoPopulate] = field(default_factory=list)
    filters: list[AutoFilter] = field(default_factory=list)
    apply: list[AutoApply] = field(default_factory=list)
    update_styles: dict[str, AutoUpdate] = field(default_factory=dict)
    defaults: dict[str, AutoDefault] = field(default_factory=dict)
    maps: dict[str, AutoMap] = field(default_factory=dict)
    nullable: set[str] = field(default_factory=set)
    remove_fields: list[str] = field(default_factory=list)
    soft_delete: bool = False

    @property
    def row_version(self) -> Optional[FieldDescriptor]:
        return self.model.row_version

    def has_apply(self, name: str) -> bool:
        return any(a.name == name for a in self.apply)

    def add(self, behavior: Union[AutoPopulate, AutoFilter]) -> None:
        if not behavior.field:
            raise UnsupportedOperationError(
                f"{type(behavior).__name__} on '{self.request_type.__name__}' needs a field"
            )
        if isinstance(behavior, AutoPopulate):
            self.populate.append(behavior)
        elif isinstance(behavior, AutoFilter):
            self.filters.append(behavior)
        else:
            raise UnsupportedOperationError(f"Cannot add {behavior!r} to metadata")


MetadataFilter = Callable[[AutoCrudMetadata], None]


def audit_metadata_filter(meta: AutoCrudMetadata) -> None:
    """Expand AutoApply audit markers into populate/filter rules."""
    if meta.has_apply(Behavior.AUDIT_QUERY):
        meta.add(AutoFilter(DELETED_DATE, Operator.IS_NULL))
    if meta.has_apply(Behavior.AUDIT_CREATE):
        meta.add(AutoPopulate(CREATED_DATE, eval="utc_now"))
        meta.add(AutoPopulate(CREATED_BY, eval="user_auth_name"))
    if meta.has_apply(Behavior.AUDIT_CREATE) or meta.has_apply(Behavior.AUDIT_MODIFY):
        meta.add(AutoPopulate(MODIFIED_DATE, eval="utc_now"))
        meta.add(AutoPopulate(MODIFIED_BY, eval="user_auth_name"))
    if meta.has_apply(Behavior.AUDIT_SOFT_DELETE):
        meta.soft_delete = True
    if meta.has_apply(Behavior.AUDIT_DELETE) or meta.has_apply(Behavior.AUDIT_SOFT_DELETE):
        meta.add(AutoPopulate(DELETED_DATE, eval="utc_now"))
        meta.add(AutoPopulate(DELETED_BY, eval="user_auth_name"))


def _is_nullable(annotation: Any) -> bool:
    if annotation is None or annotation is type(None):
        return True
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return type(None) in get_args(annotation)
    return False


def _first(items: Iterable[Any], kind: type) -> Any:
    return next((item for item in items if isinstance(item, kind)), None)


class MetadataResolver:
    """
    Read-through cache of AutoCrudMetadata keyed by request type.

    Created at startup and shared by every executor. Entries are never
    evicted; clear() exists for tests.
    """

    def __init__(
        self,
        registry: BehaviorRegistry,
        filters: Optional[Iterable[MetadataFilter]] = None,
    ):
        self._registry = registry
        self._filters: tuple[MetadataFilter, ...] = (audit_metadata_filter, *(filters or ()))
        self._cache: dict[type, AutoCrudMetadata] = {}

    def resolve(self, request_type: type[BaseModel]) -> AutoCrudMetadata:
        meta = self._cache.get(request_type)
        if meta is not None:
            return meta

        meta = self._build(request_type)
        for fn in self._filters:
            fn(meta)

        self._cache[request_type] = meta
        logger.debug(
            "AutoCrud metadata resolved",
            request_type=request_type.__name__,
            model=meta.model.name,
            populate=len(meta.populate),
            filters=len(meta.filters),
            removed=meta.remove_fields,
            soft_delete=meta.soft_delete,
        )
        return meta

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _build(self, request_type: type[BaseModel]) -> AutoCrudMetadata:
        binding = self._registry.get(request_type)
        model = binding.model
        meta = AutoCrudMetadata(
            request_type=request_type,
            model=model,
            response_type=binding.response_type,
            connection=binding.connection,
            populator=binding.populator,
        )

        for behavior in binding.type_behaviors:
            if isinstance(behavior, AutoApply):
                meta.apply.append(behavior)
            else:
                meta.add(behavior)

        for name, info in request_type.model_fields.items():
            behaviors = binding.field_behaviors.get(name, ())
            prop = name

            mapped = _first(behaviors, AutoMap)
            if mapped is not None:
                meta.maps[name] = mapped
                prop = mapped.to

            update = _first(behaviors, AutoUpdate)
            if update is not None:
                meta.update_styles[prop] = update

            default = _first(behaviors, AutoDefault)
            if default is not None:
                meta.defaults[prop] = default

            for behavior in behaviors:
                if isinstance(behavior, AutoFilter) and behavior.value is None and behavior.eval is None:
                    # Compared against the value the caller sent for this field
                    meta.add(replace(behavior, field=behavior.field or prop, source=name))
                elif isinstance(behavior, (AutoPopulate, AutoFilter)):
                    meta.add(replace(behavior, field=behavior.field or prop))

            if _is_nullable(info.annotation):
                meta.nullable.add(prop)

            # A field-level AutoFilter constrains the write, it is never written
            ignored = _first(behaviors, AutoIgnore) is not None or _first(behaviors, AutoFilter) is not None
            if prop not in INCLUDE_FIELDS:
                if not model.has_field(prop) or ignored:
                    meta.remove_fields.append(prop)

        return meta
