"""
Request value resolution.

Turns a request instance into the column -> value map that is written.
The steps run in a fixed order and later steps may overwrite earlier ones:

1. dump the request's fields
2. rename fields declared with AutoMap
3. decide which default-valued fields are dropped or replaced by AutoDefault
4. drop them, together with fields that have no column or are ignored
5. apply AutoPopulate, so populated fields are never dropped
6. run the binding's populator, if any
7. apply the ``reset`` pseudo-field
8. make sure the concurrency token has a value
"""

from typing import Any, Iterable, Optional

from pydantic import BaseModel

from core.errors import UnsupportedOperationError
from core.storage import is_default_value
from core.storage.schema import ROW_VERSION
from autocrud.behaviors import AutoUpdateStyle
from autocrud.expressions import ExpressionEvaluator, RequestContext
from autocrud.metadata import RESET, AutoCrudMetadata


def _as_field_names(value: Any) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    if isinstance(value, Iterable) and all(isinstance(name, str) for name in value):
        return list(value)
    raise UnsupportedOperationError(f"'{RESET}' is not a list of field names", field=RESET)


class ValueResolver:
    """Builds the persisted value map for a request; never mutates metadata."""

    def __init__(self, evaluator: ExpressionEvaluator):
        self._evaluator = evaluator

    def resolve(
        self,
        request: BaseModel,
        meta: AutoCrudMetadata,
        request_context: RequestContext,
        skip_defaults: bool = False,
    ) -> dict[str, Any]:
        """
        Resolve the column values of ``request``.

        Args:
            request: The request instance
            meta: Metadata of the request's type
            request_context: Caller information for expressions and ``reset``
            skip_defaults: Drop default-valued fields (Patch semantics)

        Returns:
            Column name -> value
        """
        values = request.model_dump()

        for source, mapped in meta.maps.items():
            if source in values:
                values[mapped.to] = values.pop(source)

        remove_keys = list(meta.remove_fields)

        if skip_defaults or meta.update_styles or meta.defaults:
            replace_values: dict[str, Any] = {}
            for key, value in values.items():
                nullable = key in meta.nullable
                if not (value is None or (not nullable and is_default_value(value))):
                    continue

                default = meta.defaults.get(key)
                if default is not None:
                    replace_values[key] = self._evaluator.evaluate(default, request_context)
                    continue

                update = meta.update_styles.get(key)
                if skip_defaults or (update is not None and update.style == AutoUpdateStyle.NON_DEFAULTS):
                    remove_keys.append(key)

            values.update(replace_values)

        for key in remove_keys:
            values.pop(key, None)

        for populate in meta.populate:
            values[populate.field] = self._evaluator.evaluate(populate, request_context)

        if meta.populator is not None:
            meta.populator(values, request)

        self._apply_reset(values, meta, request_context)

        token = meta.row_version
        if token is None:
            values.pop(ROW_VERSION, None)
        elif values.get(token.name) is None:
            values[token.name] = token.default_value if token.default_value is not None else 0

        return values

    def _apply_reset(
        self,
        values: dict[str, Any],
        meta: AutoCrudMetadata,
        request_context: RequestContext,
    ) -> None:
        model = meta.model
        if model.has_field(RESET):
            return

        names = _as_field_names(values.pop(RESET, None))
        if names is None:
            names = _as_field_names(request_context.params.get(RESET))
        if not names:
            return

        for name in names:
            field = model.get_field(name)
            if field is None:
                raise UnsupportedOperationError(f"Reset field '{name}' does not exist", field=name)
            if field.is_primary_key:
                raise UnsupportedOperationError(f"Cannot reset primary key field '{name}'", field=name)
            values[field.name] = field.default_value
