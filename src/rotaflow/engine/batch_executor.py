"""Executor de lotes — maior unidade de trabalho segura com UMA chamada ao modelo.

Fases de `execute_batch` (estritamente sequenciais):
1. prepare hooks, em ordem; primeira falha aborta (sessão intacta)
2. exatamente uma chamada `generate_message` para o lote inteiro
3. coleta/validação de dados (validação informa, nunca bloqueia o merge)
4. finalize hooks, em ordem; falhas acumuladas, nunca interrompem

Contrato:
- Nunca lança exceção por falha de hook/modelo: erros voltam como dados
- Em prepare_error/llm_error a sessão devolvida é exatamente a recebida
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, cast

from rotaflow.domain.cancellation import CancelToken
from rotaflow.domain.enums import BatchErrorType, BatchEventType, StoppedReason
from rotaflow.domain.history import HistoryItem, ToolCallRecord
from rotaflow.domain.schema import ValidationError, validate_against_schema
from rotaflow.domain.session import Session, merge_data
from rotaflow.engine.events import (
    BatchEvent,
    BatchEventListener,
    EventRegistry,
    SubscriptionToken,
)
from rotaflow.flow.step import EndRoute, Hook, Step, StepContext, is_end_route, needs_input
from rotaflow.observability.logging import get_logger
from rotaflow.observability.timing import Stopwatch, timed

if TYPE_CHECKING:
    from rotaflow.ai.contracts.provider import GenerateMessageOutput
    from rotaflow.flow.route import Route

logger: logging.Logger = get_logger(__name__)

ExecuteHook = Callable[[Hook, dict[str, Any], dict[str, Any], Step], Awaitable[Any]]
GenerateMessage = Callable[[], Awaitable["GenerateMessageOutput"]]
MergeCollected = Callable[[Session, dict[str, Any]], Awaitable[Session]]

__all__ = [
    "BatchExecutor",
    "BatchResult",
    "BatchExecutionResult",
    "BatchExecutionError",
    "BatchExecutionTiming",
    "CollectBatchDataResult",
    "HookExecutionResult",
    "StepRef",
    "needs_input",
]


@dataclass(frozen=True, slots=True)
class StepRef:
    """Referência leve (id, rota) a um passo executado."""

    id: str
    route_id: str


@dataclass(slots=True)
class BatchResult:
    """Resultado de `determine_batch` (transiente)."""

    steps: list[Step] = field(default_factory=list)
    stopped_reason: StoppedReason = StoppedReason.ROUTE_COMPLETE
    stopped_at_step: Step | EndRoute | None = None

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]


@dataclass(slots=True)
class BatchExecutionError:
    """Erro estruturado de lote."""

    type: BatchErrorType
    message: str
    step_id: str | None = None
    details: list[Any] = field(default_factory=list)


@dataclass(slots=True)
class BatchExecutionTiming:
    """Latência por fase (ms)."""

    prepare_hooks_ms: float = 0.0
    llm_call_ms: float = 0.0
    data_collection_ms: float = 0.0
    finalize_hooks_ms: float = 0.0
    total_ms: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "prepare_hooks_ms": self.prepare_hooks_ms,
            "llm_call_ms": self.llm_call_ms,
            "data_collection_ms": self.data_collection_ms,
            "finalize_hooks_ms": self.finalize_hooks_ms,
            "total_ms": self.total_ms,
        }


@dataclass(slots=True)
class HookExecutionResult:
    """Resultado de uma fase de hooks (prepare ou finalize)."""

    success: bool = True
    executed_steps: list[str] = field(default_factory=list)
    error: BatchExecutionError | None = None
    errors: list[BatchExecutionError] = field(default_factory=list)


@dataclass(slots=True)
class CollectBatchDataResult:
    """Resultado da coleta de dados do lote."""

    success: bool
    collected_data: dict[str, Any]
    session: Session
    fields_collected: list[str] = field(default_factory=list)
    fields_missing: list[str] = field(default_factory=list)
    validation_errors: list[ValidationError] = field(default_factory=list)


@dataclass(slots=True)
class BatchExecutionResult:
    """Resultado de `execute_batch`."""

    message: str
    session: Session
    executed_steps: list[StepRef]
    stopped_reason: StoppedReason
    collected_data: dict[str, Any] = field(default_factory=dict)
    error: BatchExecutionError | None = None
    structured: dict[str, Any] | None = None
    tool_calls: list[ToolCallRecord] | None = None
    validation_errors: list[ValidationError] = field(default_factory=list)
    fields_missing: list[str] = field(default_factory=list)
    finalize_errors: list[BatchExecutionError] = field(default_factory=list)
    timing: BatchExecutionTiming = field(default_factory=BatchExecutionTiming)

    @property
    def success(self) -> bool:
        """False apenas para erros que não sejam de finalize (não fatais)."""
        return self.error is None or self.error.type == BatchErrorType.FINALIZE_HOOK


def collect_fields_union(steps: Sequence[Step]) -> list[str]:
    """União deduplicada dos campos `collect`, preservando a ordem."""
    seen: dict[str, None] = {}
    for step in steps:
        for f in step.collect:
            seen.setdefault(f, None)
    return list(seen)


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class BatchExecutor:
    """Determina e executa lotes de passos consecutivos."""

    def __init__(self, events: EventRegistry | None = None) -> None:
        self._events = events or EventRegistry()

    @property
    def events(self) -> EventRegistry:
        return self._events

    def subscribe(self, listener: BatchEventListener) -> SubscriptionToken:
        return self._events.subscribe(listener)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self._events.unsubscribe(token)

    def _emit(self, event_type: BatchEventType, **details: Any) -> None:
        self._events.emit(BatchEvent(type=event_type, **details))

    # -- determinação -------------------------------------------------------

    async def _skip(
        self, step: Step, ctx: StepContext, cache: dict[str, bool]
    ) -> bool:
        if step.id not in cache:
            cache[step.id] = await step.should_skip(ctx)
        return cache[step.id]

    async def _choose_successor(
        self,
        route: Route,
        step: Step,
        ctx: StepContext,
        cache: dict[str, bool],
    ) -> Step | EndRoute | None:
        """Segue a cadeia; em ramificação, o primeiro ramo não pulado."""
        successors = route.successors(step)
        if not successors:
            return None
        if len(successors) == 1:
            return successors[0]
        for candidate in successors:
            if is_end_route(candidate):
                return candidate
            if not await self._skip(candidate, ctx, cache):
                return candidate
        return successors[0]

    async def determine_batch(
        self,
        route: Route,
        current_step: Step | None,
        session_data: Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
        *,
        session: Session | None = None,
        history: Sequence[HistoryItem] = (),
    ) -> BatchResult:
        """Calcula o maior prefixo consecutivo executável sem input novo.

        - skip_if é avaliado antes de needs_input (exceção => não pula)
        - passo que precisa de input nunca entra no lote
        - END_ROUTE encerra com `end_route`; cadeia esgotada => `route_complete`
        """
        data = dict(session_data)
        ctx = StepContext(
            context=dict(context or {}), data=data, session=session, history=list(history)
        )
        skip_cache: dict[str, bool] = {}
        batch = BatchResult()

        position: Step | EndRoute | None = current_step or route.initial
        self._emit(
            BatchEventType.BATCH_START,
            step_id=position.id if position else None,
            reason=(
                "Starting batch determination from "
                f"{position.id if position else 'initial step'}"
            ),
        )

        visited: set[str] = set()
        while True:
            if position is None:
                batch.stopped_reason = StoppedReason.ROUTE_COMPLETE
                self._emit(
                    BatchEventType.BATCH_STOP,
                    reason="No more transitions, route complete",
                    stopped_reason=batch.stopped_reason,
                    batch_size=len(batch.steps),
                )
                break

            if is_end_route(position):
                batch.stopped_reason = StoppedReason.END_ROUTE
                batch.stopped_at_step = position
                self._emit(
                    BatchEventType.BATCH_STOP,
                    step_id=position.id,
                    reason="Reached END_ROUTE",
                    stopped_reason=batch.stopped_reason,
                    batch_size=len(batch.steps),
                )
                break

            step = cast(Step, position)
            if step.id in visited:
                # Ciclo no grafo: a cadeia não avança mais neste turno
                batch.stopped_reason = StoppedReason.ROUTE_COMPLETE
                self._emit(
                    BatchEventType.BATCH_STOP,
                    step_id=step.id,
                    reason="Cycle detected, stopping batch",
                    stopped_reason=batch.stopped_reason,
                    batch_size=len(batch.steps),
                )
                break
            visited.add(step.id)

            if await self._skip(step, ctx, skip_cache):
                self._emit(
                    BatchEventType.STEP_SKIPPED,
                    step_id=step.id,
                    reason="skip_if evaluated to true",
                    batch_size=len(batch.steps),
                )
            elif needs_input(step, data):
                batch.stopped_reason = StoppedReason.NEEDS_INPUT
                batch.stopped_at_step = step
                missing = step.missing_requires(data)
                self._emit(
                    BatchEventType.BATCH_STOP,
                    step_id=step.id,
                    reason=(
                        f"Step needs input - missing requires: [{', '.join(missing)}], "
                        f"collect fields: [{', '.join(step.collect)}]"
                    ),
                    stopped_reason=batch.stopped_reason,
                    batch_size=len(batch.steps),
                )
                break
            else:
                batch.steps.append(step)
                self._emit(
                    BatchEventType.STEP_INCLUDED,
                    step_id=step.id,
                    reason="All requirements satisfied, no input needed",
                    batch_size=len(batch.steps),
                )

            position = await self._choose_successor(route, step, ctx, skip_cache)

        logger.debug(
            "batch_determined",
            extra={
                "route_id": route.id,
                "batch_size": len(batch.steps),
                "stopped_reason": batch.stopped_reason.value,
                "stopped_at_step": batch.stopped_at_step.id if batch.stopped_at_step else None,
            },
        )
        return batch

    # -- hooks ----------------------------------------------------------------

    async def execute_prepare_hooks(
        self,
        steps: Sequence[Step],
        context: dict[str, Any],
        data: dict[str, Any],
        execute_hook: ExecuteHook,
    ) -> HookExecutionResult:
        """Executa prepare em ordem; para na primeira falha."""
        result = HookExecutionResult()
        for step in steps:
            if step.prepare is None:
                continue
            try:
                await execute_hook(step.prepare, context, data, step)
            except Exception as exc:  # noqa: BLE001
                message = _error_message(exc)
                logger.error(
                    "prepare_hook_failed",
                    extra={"step_id": step.id, "error_type": type(exc).__name__},
                )
                result.success = False
                result.error = BatchExecutionError(
                    type=BatchErrorType.PREPARE_HOOK,
                    message=message,
                    step_id=step.id,
                    details=[exc],
                )
                return result
            result.executed_steps.append(step.id)
        return result

    async def execute_finalize_hooks(
        self,
        steps: Sequence[Step],
        context: dict[str, Any],
        data: dict[str, Any],
        execute_hook: ExecuteHook,
    ) -> HookExecutionResult:
        """Executa finalize em ordem; falhas são acumuladas e nunca interrompem."""
        result = HookExecutionResult()
        for step in steps:
            if step.finalize is None:
                continue
            try:
                await execute_hook(step.finalize, context, data, step)
                result.executed_steps.append(step.id)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "finalize_hook_failed",
                    extra={"step_id": step.id, "error_type": type(exc).__name__},
                )
                result.errors.append(
                    BatchExecutionError(
                        type=BatchErrorType.FINALIZE_HOOK,
                        message=_error_message(exc),
                        step_id=step.id,
                        details=[exc],
                    )
                )
        if result.errors:
            logger.warning(
                "finalize_hooks_partially_failed",
                extra={"failed": len(result.errors), "total": len(steps)},
            )
        return result

    # -- coleta -------------------------------------------------------------

    def collect_batch_data(
        self,
        steps: Sequence[Step],
        llm_response: Mapping[str, Any],
        session: Session,
        schema: Mapping[str, Any] | None = None,
    ) -> CollectBatchDataResult:
        """Extrai os campos `collect` da resposta estruturada e mescla na sessão.

        Dados são mesclados mesmo com erros de validação.
        """
        fields = collect_fields_union(steps)
        if not fields:
            return CollectBatchDataResult(success=True, collected_data={}, session=session)

        collected: dict[str, Any] = {}
        fields_collected: list[str] = []
        fields_missing: list[str] = []
        for name in fields:
            value = llm_response.get(name)
            if value is not None:
                collected[name] = value
                fields_collected.append(name)
            else:
                fields_missing.append(name)

        validation_errors: list[ValidationError] = []
        if schema and collected:
            validation_errors = validate_against_schema(collected, schema)
            if validation_errors:
                logger.warning(
                    "batch_data_validation_failed",
                    extra={"fields": [e.field for e in validation_errors]},
                )

        updated = merge_data(session, collected) if collected else session
        return CollectBatchDataResult(
            success=not validation_errors,
            collected_data=collected,
            session=updated,
            fields_collected=fields_collected,
            fields_missing=fields_missing,
            validation_errors=validation_errors,
        )

    # -- execução -----------------------------------------------------------

    async def execute_batch(
        self,
        batch: BatchResult,
        session: Session,
        context: Mapping[str, Any] | None,
        execute_hook: ExecuteHook,
        generate_message: GenerateMessage,
        schema: Mapping[str, Any] | None = None,
        *,
        route_id: str | None = None,
        signal: CancelToken | None = None,
        merge_collected: MergeCollected | None = None,
    ) -> BatchExecutionResult:
        """Executa o lote: prepare -> 1 chamada ao modelo -> coleta -> finalize.

        `merge_collected` permite ao chamador aplicar hooks de onDataUpdate
        sobre os dados coletados; sem ele o merge é raso.
        """
        total = Stopwatch()
        timing = BatchExecutionTiming()
        ctx = dict(context or {})
        rid = route_id or (batch.steps[0].route_id if batch.steps else "unknown")

        if batch.is_empty:
            timing.total_ms = total.stop()
            self._emit(
                BatchEventType.BATCH_COMPLETE,
                reason="Empty batch",
                stopped_reason=batch.stopped_reason,
                batch_size=0,
                timing=timing.as_dict(),
            )
            return BatchExecutionResult(
                message="",
                session=session,
                executed_steps=[],
                stopped_reason=batch.stopped_reason,
                timing=timing,
            )

        # Fase 1: prepare
        with timed("batch.prepare_hooks") as sw:
            prepare = await self.execute_prepare_hooks(
                batch.steps, ctx, dict(session.data), execute_hook
            )
        timing.prepare_hooks_ms = sw.elapsed_ms
        if not prepare.success:
            return self._abort(
                session=session,
                stopped_reason=StoppedReason.PREPARE_ERROR,
                error=prepare.error,
                executed=[StepRef(id=s, route_id=rid) for s in prepare.executed_steps],
                batch_size=len(batch.steps),
                timing=timing,
                total=total,
            )

        # Fase 2: exatamente uma chamada ao modelo
        output: GenerateMessageOutput | None = None
        llm_exc: Exception | None = None
        with timed("batch.llm_call") as sw:
            try:
                if signal is not None:
                    signal.raise_if_cancelled()
                output = await generate_message()
            except Exception as exc:  # noqa: BLE001
                llm_exc = exc
        timing.llm_call_ms = sw.elapsed_ms
        if llm_exc is not None or output is None:
            message = _error_message(llm_exc) if llm_exc else "empty provider response"
            logger.error(
                "batch_llm_call_failed",
                extra={
                    "route_id": rid,
                    "error_type": type(llm_exc).__name__ if llm_exc else None,
                    "elapsed_ms": timing.llm_call_ms,
                },
            )
            return self._abort(
                session=session,
                stopped_reason=StoppedReason.LLM_ERROR,
                error=BatchExecutionError(
                    type=BatchErrorType.LLM_CALL,
                    message=message,
                    details=[llm_exc] if llm_exc else [],
                ),
                executed=[],
                batch_size=len(batch.steps),
                timing=timing,
                total=total,
            )

        structured = dict(output.structured or {})
        message = output.message or str(structured.get("message") or "")

        # Fase 3: coleta e validação (não bloqueia o merge)
        with timed("batch.data_collection") as sw:
            collect = self.collect_batch_data(batch.steps, structured, session, schema)
            current = collect.session
            if merge_collected is not None and collect.collected_data:
                try:
                    current = await merge_collected(session, collect.collected_data)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "batch_merge_hook_failed",
                        extra={"route_id": rid, "error_type": type(exc).__name__},
                    )
        timing.data_collection_ms = sw.elapsed_ms

        validation_error: BatchExecutionError | None = None
        if collect.validation_errors:
            fields = ", ".join(e.field for e in collect.validation_errors)
            validation_error = BatchExecutionError(
                type=BatchErrorType.DATA_VALIDATION,
                message=(
                    f"Validation failed for {len(collect.validation_errors)} field(s): {fields}"
                ),
                details=list(collect.validation_errors),
            )

        executed = [StepRef(id=s.id, route_id=rid) for s in batch.steps]

        # Fase 4: finalize (sempre todos)
        with timed("batch.finalize_hooks") as sw:
            finalize = await self.execute_finalize_hooks(
                batch.steps, ctx, dict(current.data), execute_hook
            )
        timing.finalize_hooks_ms = sw.elapsed_ms

        finalize_error: BatchExecutionError | None = None
        if finalize.errors:
            finalize_error = BatchExecutionError(
                type=BatchErrorType.FINALIZE_HOOK,
                message=f"{len(finalize.errors)} finalize hook(s) failed",
                details=list(finalize.errors),
            )

        # Prioridade: validation_error > motivo do lote; finalize só anexa erro
        stopped_reason = batch.stopped_reason
        error: BatchExecutionError | None = None
        if validation_error is not None:
            stopped_reason = StoppedReason.VALIDATION_ERROR
            error = validation_error
        elif finalize_error is not None:
            error = finalize_error

        timing.total_ms = total.stop()
        self._emit(
            BatchEventType.BATCH_COMPLETE,
            step_id=executed[-1].id if executed else None,
            reason=f"Batch completed with {len(executed)} steps",
            stopped_reason=stopped_reason,
            batch_size=len(executed),
            timing=timing.as_dict(),
        )
        logger.info(
            "batch_executed",
            extra={
                "route_id": rid,
                "batch_size": len(executed),
                "stopped_reason": stopped_reason.value,
                "fields_collected": len(collect.fields_collected),
                "fields_missing": len(collect.fields_missing),
                "validation_errors": len(collect.validation_errors),
                "finalize_errors": len(finalize.errors),
                "total_ms": timing.total_ms,
            },
        )

        return BatchExecutionResult(
            message=message,
            session=current,
            executed_steps=executed,
            stopped_reason=stopped_reason,
            collected_data=collect.collected_data,
            error=error,
            structured=structured or None,
            tool_calls=output.tool_calls,
            validation_errors=list(collect.validation_errors),
            fields_missing=list(collect.fields_missing),
            finalize_errors=list(finalize.errors),
            timing=timing,
        )

    def _abort(
        self,
        *,
        session: Session,
        stopped_reason: StoppedReason,
        error: BatchExecutionError | None,
        executed: list[StepRef],
        batch_size: int,
        timing: BatchExecutionTiming,
        total: Stopwatch,
    ) -> BatchExecutionResult:
        """Retorno antecipado (prepare/llm): sessão exatamente como recebida."""
        timing.total_ms = total.stop()
        self._emit(
            BatchEventType.BATCH_COMPLETE,
            reason=f"{stopped_reason.value}: {error.message if error else ''}",
            stopped_reason=stopped_reason,
            batch_size=batch_size,
            timing=timing.as_dict(),
        )
        return BatchExecutionResult(
            message="",
            session=session,
            executed_steps=executed,
            stopped_reason=stopped_reason,
            error=error,
            timing=timing,
        )
