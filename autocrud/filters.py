"""
Write predicate construction.

Update, Patch and Delete requests whose type declares AutoFilters are
executed against a predicate built here rather than a plain primary key
match. Terms are typed Conditions, so every value stays a bound parameter.
"""

from typing import Any, Optional

from pydantic import BaseModel

from core.errors import UnsupportedOperationError
from core.storage import Condition, Operator, Predicate, is_default_value
from autocrud.behaviors import AutoFilter
from autocrud.expressions import ExpressionEvaluator, RequestContext
from autocrud.metadata import AutoCrudMetadata


class FilterExpressionBuilder:
    """Combines primary key equality, declared AutoFilters and leftover fields."""

    def __init__(self, evaluator: ExpressionEvaluator):
        self._evaluator = evaluator

    def build(
        self,
        meta: AutoCrudMetadata,
        values: dict[str, Any],
        request_context: RequestContext,
        request: Optional[BaseModel] = None,
    ) -> Optional[Predicate]:
        """
        Build the AutoFilter predicate for an update.

        The primary key, when present, is moved out of ``values`` and
        becomes the first term. Each AutoFilter then adds one term in
        declaration order. Field-level filters declared without a value
        or expression compare the column with what ``request`` carries
        for that field, since the field itself was removed from ``values``.

        Returns:
            The predicate, or None when the type declares no AutoFilters
        """
        if not meta.filters:
            return None

        model = meta.model
        conditions: list[Condition] = []

        pk = model.primary_key
        if pk is not None and pk.name in values:
            conditions.append(Condition(pk.name, Operator.EQ, values.pop(pk.name)))

        for auto_filter in meta.filters:
            field = model.get_field(auto_filter.field)
            if field is None:
                raise UnsupportedOperationError(
                    f"{meta.request_type.__name__} '{auto_filter.field}' AutoFilter "
                    f"was not found on '{model.name}'",
                    field=auto_filter.field,
                )
            if auto_filter.operator.arity > 1:
                raise UnsupportedOperationError(
                    f"Filter operator '{auto_filter.operator.value}' with multiple arguments is not supported"
                )
            value = None
            if auto_filter.operator.arity == 1:
                value = self._filter_value(meta, auto_filter, request_context, request)
            conditions.append(Condition(field.name, auto_filter.operator, value))

        return Predicate(tuple(conditions))

    def _filter_value(
        self,
        meta: AutoCrudMetadata,
        auto_filter: AutoFilter,
        request_context: RequestContext,
        request: Optional[BaseModel],
    ) -> Any:
        if auto_filter.source is None:
            return self._evaluator.evaluate(auto_filter, request_context)
        if request is None:
            raise UnsupportedOperationError(
                f"{meta.request_type.__name__} '{auto_filter.source}' AutoFilter "
                f"needs the request to read its value",
                field=auto_filter.source,
            )
        return getattr(request, auto_filter.source)

    def build_delete(
        self,
        meta: AutoCrudMetadata,
        values: dict[str, Any],
        request_context: RequestContext,
        request: Optional[BaseModel] = None,
    ) -> Predicate:
        """
        Build the predicate for a physical delete.

        Without AutoFilters every remaining value is matched by equality.
        With AutoFilters, values left over after the primary key was taken
        are AND-ed on as extra equality terms. An empty value map is refused.
        """
        token = meta.row_version
        if token is not None and is_default_value(values.get(token.name)):
            values.pop(token.name, None)

        if not values:
            raise UnsupportedOperationError(
                f"'{meta.request_type.__name__}' did not contain any filters"
            )

        predicate = self.build(meta, values, request_context, request)
        if predicate is None:
            return Predicate.equals(values)

        for key, value in values.items():
            field = meta.model.get_field(key)
            if field is None:
                raise UnsupportedOperationError(
                    f"Unknown '{key}' field in '{meta.request_type.__name__}' delete request",
                    field=key,
                )
            predicate = predicate.and_(Condition(field.name, Operator.EQ, value))
        return predicate
