"""
CRUD operation executors.

Every operation runs the same fixed sequence:

    before hook -> resolve values -> build predicate (optional) -> persist
    -> record event (optional) -> shape response -> after hook

Persist and record run inside one transaction when an event recorder is
configured and the call does not ask to skip events; otherwise the write
commits on its own. Response shaping, including the optional re-fetch of
the written row, happens after the transaction has committed.

CrudExecutor and AsyncCrudExecutor have identical semantics. The async
variant suspends on connection acquisition and on each statement; a
cancellation while awaiting any of them rolls the transaction back.
"""

import inspect
from typing import Any, Callable, Optional

from pydantic import BaseModel

from core.errors import (
    ConcurrencyViolationError,
    IntegrityViolationError,
    MissingArgumentError,
    UnsupportedOperationError,
)
from core.logging import get_logger, operation_context
from core.storage import (
    AsyncConnectionFactory,
    ConnectionFactory,
    FieldDescriptor,
    Predicate,
    is_default_value,
)
from autocrud.context import CrudOperation, ExecResult, ExecutionContext
from autocrud.events import EventRecorder
from autocrud.expressions import ExpressionEvaluator, RequestContext
from autocrud.filters import FilterExpressionBuilder
from autocrud.hooks import CrudHooks
from autocrud.metadata import MetadataResolver
from autocrud.values import ValueResolver


logger = get_logger(__name__)


def _convert_key(pk: FieldDescriptor, value: Any) -> Any:
    if pk.python_type is None or isinstance(value, pk.python_type):
        return value
    return pk.python_type(value)


class _CrudOperations:
    """Steps shared by the sync and async executors. None of them do I/O."""

    def __init__(
        self,
        resolver: MetadataResolver,
        events: Optional[EventRecorder] = None,
        hooks: Optional[CrudHooks] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
    ):
        self.resolver = resolver
        self.events = events
        self.hooks = hooks or CrudHooks()
        self.evaluator = evaluator or ExpressionEvaluator()
        self.values = ValueResolver(self.evaluator)
        self.filters = FilterExpressionBuilder(self.evaluator)

    def _prepare_create(self, ctx: ExecutionContext) -> tuple[dict[str, Any], bool]:
        values = self.values.resolve(ctx.request, ctx.meta, ctx.request_context)
        pk = ctx.model.primary_key
        select_identity = bool(ctx.accessors.id or ctx.accessors.result) or ctx.record_event
        if pk is None:
            return values, False

        # Replaying an external event reuses that event's id
        event_id = ctx.request_context.event_model_id
        if event_id is not None and is_default_value(values.get(pk.name)):
            values[pk.name] = _convert_key(pk, event_id)
            select_identity = False

        supplied = not is_default_value(values.get(pk.name))
        if supplied:
            select_identity = False

        if not (pk.auto_increment or pk.auto_id):
            select_identity = False
            if not supplied:
                raise IntegrityViolationError(
                    f"Primary key '{pk.name}' is required to create '{ctx.model.name}'",
                    field=pk.name,
                )
        return values, select_identity

    @staticmethod
    def _create_result(
        ctx: ExecutionContext,
        values: dict[str, Any],
        select_identity: bool,
        inserted: Any,
    ) -> ExecResult:
        pk = ctx.model.primary_key
        if pk is None:
            return ExecResult(None, inserted)
        # Explicit ids and store-populated auto ids are both in values by now
        if not is_default_value(values.get(pk.name)):
            return ExecResult(values[pk.name], 1 if select_identity else inserted)
        if select_identity:
            return ExecResult(inserted, 1)
        return ExecResult(None, inserted)

    def _prepare_update(
        self,
        ctx: ExecutionContext,
        skip_defaults: bool,
    ) -> tuple[dict[str, Any], Any, Optional[Predicate]]:
        values = self.values.resolve(ctx.request, ctx.meta, ctx.request_context, skip_defaults)
        pk = ctx.model.primary_key
        if pk is None:
            raise UnsupportedOperationError(f"Table '{ctx.model.name}' does not have a primary key")
        id_value = values.get(pk.name)
        if is_default_value(id_value):
            raise MissingArgumentError(f"'{pk.name}' is required", field=pk.name)

        predicate = self.filters.build(ctx.meta, values, ctx.request_context, ctx.request)
        self._log_predicate(ctx, predicate)
        return values, id_value, predicate

    @staticmethod
    def _update_result(ctx: ExecutionContext, id_value: Any, rows_updated: int) -> ExecResult:
        if rows_updated != 1:
            logger.warning(
                "Unexpected number of rows updated",
                id=id_value,
                rows=rows_updated,
            )
            raise ConcurrencyViolationError(
                f"{rows_updated} rows were updated by '{ctx.request_type.__name__}'",
                rows_updated=rows_updated,
            )
        return ExecResult(id_value, rows_updated)

    def _prepare_delete(self, ctx: ExecutionContext) -> tuple[Any, Predicate]:
        values = self.values.resolve(ctx.request, ctx.meta, ctx.request_context, skip_defaults=True)
        pk = ctx.model.primary_key
        id_value = values.get(pk.name) if pk is not None else None
        predicate = self.filters.build_delete(ctx.meta, values, ctx.request_context, ctx.request)
        self._log_predicate(ctx, predicate)
        return id_value, predicate

    @staticmethod
    def _prepare_save(ctx: ExecutionContext) -> dict[str, Any]:
        data = ctx.request.model_dump()
        return {k: v for k, v in data.items() if ctx.model.has_field(k)}

    @staticmethod
    def _response_values(ctx: ExecutionContext) -> dict[str, Any]:
        accessors = ctx.accessors
        values: dict[str, Any] = {}
        if accessors.id and ctx.id is not None:
            values[accessors.id.name] = accessors.id.convert(ctx.id)
        if accessors.count and ctx.rows_updated is not None:
            values[accessors.count.name] = accessors.count.convert(ctx.rows_updated)
        return values

    @staticmethod
    def _row_version_id(ctx: ExecutionContext) -> Any:
        id_value = ctx.id
        if is_default_value(id_value):
            id_value = ctx.request_id()
        if is_default_value(id_value):
            raise UnsupportedOperationError(
                f"Could not resolve Primary Key from '{ctx.request_type.__name__}' "
                "to be able to resolve row version"
            )
        return id_value

    @staticmethod
    def _log_context(operation: CrudOperation, request: BaseModel, request_context: RequestContext):
        return operation_context(
            operation=operation.value,
            request_type=type(request).__name__,
            user=request_context.user_auth_name,
        )

    @staticmethod
    def _log_predicate(ctx: ExecutionContext, predicate: Optional[Predicate]) -> None:
        if not predicate:
            return
        logger.debug(
            "Write predicate built",
            model=ctx.model.name,
            where=predicate.describe(lambda column: ctx.connection.quote_column(ctx.model, column)),
            params=len(predicate.parameters),
        )

    @staticmethod
    def _log_completed(ctx: ExecutionContext) -> None:
        logger.info(
            "Crud operation completed",
            model=ctx.model.name,
            id=ctx.id,
            rows=ctx.rows_updated,
        )


class CrudExecutor(_CrudOperations):
    """
    Synchronous executor.

    Usage:
        executor = CrudExecutor(MetadataResolver(registry), store, events=events)
        response = executor.create(CreateBooking(name="x"), RequestContext(user_auth_name="admin"))
    """

    def __init__(
        self,
        resolver: MetadataResolver,
        connections: ConnectionFactory,
        events: Optional[EventRecorder] = None,
        hooks: Optional[CrudHooks] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
    ):
        super().__init__(resolver, events=events, hooks=hooks, evaluator=evaluator)
        self.connections = connections

    def create(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return self._run(CrudOperation.CREATE, request, request_context, self._create)

    def update(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return self._run(CrudOperation.UPDATE, request, request_context, self._update)

    def patch(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return self._run(CrudOperation.PATCH, request, request_context, self._patch)

    def delete(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        if self.resolver.resolve(type(request)).soft_delete:
            return self.patch(request, request_context)
        return self._run(CrudOperation.DELETE, request, request_context, self._delete)

    def save(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return self._run(CrudOperation.SAVE, request, request_context, self._save)

    def _run(
        self,
        operation: CrudOperation,
        request: BaseModel,
        request_context: Optional[RequestContext],
        fn: Callable[[ExecutionContext], ExecResult],
    ) -> Optional[BaseModel]:
        request_context = request_context or RequestContext()
        meta = self.resolver.resolve(type(request))

        with self._log_context(operation, request, request_context), \
                self.connections.open_connection(meta.connection) as conn:
            ctx = ExecutionContext.create(operation, request, request_context, meta, conn, self.events)

            before = self.hooks.before(operation)
            if before is not None:
                before(ctx)

            self._execute(ctx, fn)
            ctx.response = self._shape_response(ctx)
            self._log_completed(ctx)

            after = self.hooks.after(operation)
            if after is not None:
                after(ctx)

        return ctx.response

    def _execute(self, ctx: ExecutionContext, fn: Callable[[ExecutionContext], ExecResult]) -> None:
        if not ctx.record_event:
            ctx.set_result(fn(ctx))
            return
        try:
            with ctx.connection.transaction():
                ctx.set_result(fn(ctx))
                ctx.events.record(ctx)
        except Exception:
            logger.warning(
                "Write rolled back",
                model=ctx.model.name,
            )
            raise

    def _create(self, ctx: ExecutionContext) -> ExecResult:
        values, select_identity = self._prepare_create(ctx)
        inserted = ctx.connection.insert(ctx.model, values, select_identity=select_identity)
        return self._create_result(ctx, values, select_identity, inserted)

    def _update(self, ctx: ExecutionContext, skip_defaults: bool = False) -> ExecResult:
        values, id_value, predicate = self._prepare_update(ctx, skip_defaults)
        rows = ctx.connection.update(ctx.model, values, predicate)
        return self._update_result(ctx, id_value, rows)

    def _patch(self, ctx: ExecutionContext) -> ExecResult:
        return self._update(ctx, skip_defaults=True)

    def _delete(self, ctx: ExecutionContext) -> ExecResult:
        id_value, predicate = self._prepare_delete(ctx)
        return ExecResult(id_value, ctx.connection.delete(ctx.model, predicate))

    def _save(self, ctx: ExecutionContext) -> ExecResult:
        ctx.connection.save(ctx.model, self._prepare_save(ctx))
        return ExecResult(ctx.request_id(), 1)

    def _shape_response(self, ctx: ExecutionContext) -> Optional[BaseModel]:
        if ctx.response_type is None or not ctx.accessors:
            return None

        accessors = ctx.accessors
        values = self._response_values(ctx)
        if accessors.result and ctx.id is not None:
            row = ctx.connection.fetch_by_id(ctx.model, ctx.id)
            values[accessors.result.name] = accessors.result.convert(row)
        if accessors.row_version:
            token = ctx.connection.fetch_row_version(ctx.model, self._row_version_id(ctx))
            values[accessors.row_version.name] = accessors.row_version.convert(token)

        return ctx.response_type.model_validate(values)


async def _call_hook(hook: Optional[Callable], ctx: ExecutionContext) -> None:
    if hook is None:
        return
    result = hook(ctx)
    if inspect.isawaitable(result):
        await result


class AsyncCrudExecutor(_CrudOperations):
    """
    Asynchronous executor with the same semantics as CrudExecutor.

    Usage:
        executor = AsyncCrudExecutor(MetadataResolver(registry), async_store)
        response = await executor.patch(PatchBooking(id=1, notes="x"))
    """

    def __init__(
        self,
        resolver: MetadataResolver,
        connections: AsyncConnectionFactory,
        events: Optional[EventRecorder] = None,
        hooks: Optional[CrudHooks] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
    ):
        super().__init__(resolver, events=events, hooks=hooks, evaluator=evaluator)
        self.connections = connections

    async def create(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return await self._run(CrudOperation.CREATE, request, request_context, self._create)

    async def update(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return await self._run(CrudOperation.UPDATE, request, request_context, self._update)

    async def patch(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return await self._run(CrudOperation.PATCH, request, request_context, self._patch)

    async def delete(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        if self.resolver.resolve(type(request)).soft_delete:
            return await self.patch(request, request_context)
        return await self._run(CrudOperation.DELETE, request, request_context, self._delete)

    async def save(self, request: BaseModel, request_context: Optional[RequestContext] = None) -> Optional[BaseModel]:
        return await self._run(CrudOperation.SAVE, request, request_context, self._save)

    async def _run(
        self,
        operation: CrudOperation,
        request: BaseModel,
        request_context: Optional[RequestContext],
        fn: Callable[[ExecutionContext], Any],
    ) -> Optional[BaseModel]:
        request_context = request_context or RequestContext()
        meta = self.resolver.resolve(type(request))

        with self._log_context(operation, request, request_context):
            async with self.connections.open_connection(meta.connection) as conn:
                ctx = ExecutionContext.create(operation, request, request_context, meta, conn, self.events)

                await _call_hook(self.hooks.before(operation), ctx)

                await self._execute(ctx, fn)
                ctx.response = await self._shape_response(ctx)
                self._log_completed(ctx)

                await _call_hook(self.hooks.after(operation), ctx)

        return ctx.response

    async def _execute(self, ctx: ExecutionContext, fn: Callable[[ExecutionContext], Any]) -> None:
        if not ctx.record_event:
            ctx.set_result(await fn(ctx))
            return
        try:
            async with ctx.connection.transaction():
                ctx.set_result(await fn(ctx))
                await ctx.events.record_async(ctx)
        except Exception:
            logger.warning(
                "Write rolled back",
                model=ctx.model.name,
            )
            raise

    async def _create(self, ctx: ExecutionContext) -> ExecResult:
        values, select_identity = self._prepare_create(ctx)
        inserted = await ctx.connection.insert(ctx.model, values, select_identity=select_identity)
        return self._create_result(ctx, values, select_identity, inserted)

    async def _update(self, ctx: ExecutionContext, skip_defaults: bool = False) -> ExecResult:
        values, id_value, predicate = self._prepare_update(ctx, skip_defaults)
        rows = await ctx.connection.update(ctx.model, values, predicate)
        return self._update_result(ctx, id_value, rows)

    async def _patch(self, ctx: ExecutionContext) -> ExecResult:
        return await self._update(ctx, skip_defaults=True)

    async def _delete(self, ctx: ExecutionContext) -> ExecResult:
        id_value, predicate = self._prepare_delete(ctx)
        return ExecResult(id_value, await ctx.connection.delete(ctx.model, predicate))

    async def _save(self, ctx: ExecutionContext) -> ExecResult:
        await ctx.connection.save(ctx.model, self._prepare_save(ctx))
        return ExecResult(ctx.request_id(), 1)

    async def _shape_response(self, ctx: ExecutionContext) -> Optional[BaseModel]:
        if ctx.response_type is None or not ctx.accessors:
            return None

        accessors = ctx.accessors
        values = self._response_values(ctx)
        if accessors.result and ctx.id is not None:
            row = await ctx.connection.fetch_by_id(ctx.model, ctx.id)
            values[accessors.result.name] = accessors.result.convert(row)
        if accessors.row_version:
            token = await ctx.connection.fetch_row_version(ctx.model, self._row_version_id(ctx))
            values[accessors.row_version.name] = accessors.row_version.convert(token)

        return ctx.response_type.model_validate(values)
