"""
Metadata-driven CRUD execution engine.

Request types are pydantic models registered once in a BehaviorRegistry.
Executors turn request instances into exactly one write against the
registered table, optionally record an audit event in the same
transaction, and shape the registered response type.
"""

from autocrud.behaviors import (
    AutoApply,
    AutoDefault,
    AutoFilter,
    AutoIgnore,
    AutoMap,
    AutoPopulate,
    AutoUpdate,
    AutoUpdateStyle,
    Behavior,
    BehaviorRegistry,
)
from autocrud.context import CrudOperation, ExecResult, ExecutionContext
from autocrud.events import CrudEvent, EventRecorder, SqlCrudEvents
from autocrud.executor import AsyncCrudExecutor, CrudExecutor
from autocrud.expressions import ExpressionEvaluator, RequestContext
from autocrud.filters import FilterExpressionBuilder
from autocrud.hooks import CrudHooks
from autocrud.metadata import AutoCrudMetadata, MetadataResolver, audit_metadata_filter
from autocrud.values import ValueResolver

__all__ = [
    # Behaviors
    "AutoApply",
    "AutoDefault",
    "AutoFilter",
    "AutoIgnore",
    "AutoMap",
    "AutoPopulate",
    "AutoUpdate",
    "AutoUpdateStyle",
    "Behavior",
    "BehaviorRegistry",
    # Resolution
    "AutoCrudMetadata",
    "ExpressionEvaluator",
    "FilterExpressionBuilder",
    "MetadataResolver",
    "RequestContext",
    "ValueResolver",
    "audit_metadata_filter",
    # Execution
    "AsyncCrudExecutor",
    "CrudExecutor",
    "CrudHooks",
    "CrudOperation",
    "ExecResult",
    "ExecutionContext",
    # Events
    "CrudEvent",
    "EventRecorder",
    "SqlCrudEvents",
]
