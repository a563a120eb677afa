"""
Before/after hooks for CRUD operations.

Hooks are fixed when an executor is constructed. Each callback receives
the ExecutionContext; the async executor awaits callbacks that return an
awaitable, so coroutines and plain functions can be mixed.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from autocrud.context import CrudOperation, ExecutionContext


Hook = Callable[[ExecutionContext], Any]


@dataclass(frozen=True)
class CrudHooks:
    on_before_create: Optional[Hook] = None
    on_after_create: Optional[Hook] = None
    on_before_update: Optional[Hook] = None
    on_after_update: Optional[Hook] = None
    on_before_patch: Optional[Hook] = None
    on_after_patch: Optional[Hook] = None
    on_before_delete: Optional[Hook] = None
    on_after_delete: Optional[Hook] = None
    on_before_save: Optional[Hook] = None
    on_after_save: Optional[Hook] = None

    def before(self, operation: CrudOperation) -> Optional[Hook]:
        return getattr(self, f"on_before_{operation.value}")

    def after(self, operation: CrudOperation) -> Optional[Hook]:
        return getattr(self, f"on_after_{operation.value}")
