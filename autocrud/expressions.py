"""
Call context and expression evaluation.

AutoPopulate, AutoDefault and AutoFilter either carry a literal ``value``
or name an expression in ``eval``. Expressions are plain callables that
receive the RequestContext of the current call.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from core.errors import UnsupportedOperationError


# Recognised RequestContext.items keys
EVENT_MODEL_ID = "event_model_id"
IGNORE_EVENT = "ignore_event"


@dataclass
class RequestContext:
    """
    Caller information for one operation.

    Supplied by the hosting service layer; the engine only reads it.
    """
    user_auth_id: Optional[str] = None
    user_auth_name: Optional[str] = None
    remote_ip: Optional[str] = None
    items: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def ignore_event(self) -> bool:
        return IGNORE_EVENT in self.items

    @property
    def event_model_id(self) -> Any:
        return self.items.get(EVENT_MODEL_ID)


Expression = Callable[[RequestContext], Any]


_BUILTINS: dict[str, Expression] = {
    "utc_now": lambda ctx: datetime.now(timezone.utc),
    "now": lambda ctx: datetime.now(),
    "user_auth_id": lambda ctx: ctx.user_auth_id,
    "user_auth_name": lambda ctx: ctx.user_auth_name,
    "remote_ip": lambda ctx: ctx.remote_ip,
    "new_guid": lambda ctx: uuid.uuid4(),
}


class ExpressionEvaluator:
    """Resolves behavior values, evaluating named expressions on demand."""

    def __init__(self, expressions: Optional[dict[str, Expression]] = None):
        self._expressions = dict(_BUILTINS)
        if expressions:
            self._expressions.update(expressions)

    def register(self, name: str, fn: Expression) -> None:
        self._expressions[name] = fn

    def evaluate(self, behavior: Any, request_context: RequestContext) -> Any:
        """
        Evaluate a behavior carrying ``value``/``eval`` attributes.

        A named expression wins over a literal value.
        """
        name = getattr(behavior, "eval", None)
        if name is None:
            return behavior.value
        fn = self._expressions.get(name)
        if fn is None:
            raise UnsupportedOperationError(f"Unknown expression '{name}'")
        return fn(request_context)
