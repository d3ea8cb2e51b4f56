"""Execução de tools: resolução por precedência e laço de follow-up.

Precedência de resolução (primeiro encontrado vence):
1. tools do passo
2. tools da rota
3. tools do agente
4. registro de domínios (``dominio.funcao``), filtrado por `route.domains`

Contrato:
- `execute_tool` nunca lança: falhas viram `ToolExecutionResult(success=False)`
- tool desconhecida é registrada em log e não executada
- todo id de tool call recebe uma mensagem `tool` (erro quando desconhecida)
- o laço de follow-up é limitado por `max_loops`
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from rotaflow.ai.contracts.provider import GenerateMessageOutput, ToolSpec
from rotaflow.config.settings import DEFAULT_MAX_TOOL_LOOPS
from rotaflow.domain.errors import ToolResolutionError
from rotaflow.domain.history import (
    HistoryItem,
    ToolCallRecord,
    assistant_message,
    tool_message,
)
from rotaflow.flow.domains import DomainRegistry
from rotaflow.flow.route import Route
from rotaflow.flow.step import Step
from rotaflow.flow.tool import (
    InlineTool,
    ToolById,
    ToolContext,
    ToolDefinition,
    ToolRef,
    normalize_tool_result,
    tool_ref,
)
from rotaflow.observability.logging import get_logger
from rotaflow.observability.timing import timed
from rotaflow.utils.awaitables import call_maybe_async

logger: logging.Logger = get_logger(__name__)

UpdateContext = Callable[[Mapping[str, Any]], Awaitable[None]]
ExecuteCall = Callable[[ToolCallRecord], Awaitable["ToolExecutionResult | None"]]
FollowUp = Callable[[list[HistoryItem], bool, int], Awaitable[GenerateMessageOutput]]

FOLLOW_UP_TEXT_INSTRUCTION = "Provide a text response to the user based on the tool results."


@dataclass(slots=True)
class ToolExecutionResult:
    """Resultado de uma execução de tool (nunca lançado como exceção)."""

    tool_id: str
    success: bool
    data: Any = None
    data_update: dict[str, Any] | None = None
    context_update: dict[str, Any] | None = None
    error: str | None = None

    def as_tool_content(self) -> Any:
        """Conteúdo devolvido ao modelo na mensagem de papel `tool`."""
        if not self.success:
            return {"error": self.error}
        return self.data if self.data is not None else "Tool executed successfully"


@dataclass(slots=True)
class ToolLoopResult:
    """Resultado do laço de tools."""

    message: str | None = None
    structured: dict[str, Any] | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    executed: list[ToolExecutionResult] = field(default_factory=list)
    history: list[HistoryItem] = field(default_factory=list)
    loops: int = 0
    limit_reached: bool = False


class ToolExecutor:
    """Resolve e executa tools de passo, rota, agente e domínios."""

    def __init__(
        self,
        tools: Iterable[Any] = (),
        domains: DomainRegistry | None = None,
    ) -> None:
        self._agent_tools: dict[str, ToolDefinition] = {}
        self._domains = domains or DomainRegistry()
        for tool in tools:
            self.register(tool)

    @property
    def domains(self) -> DomainRegistry:
        return self._domains

    @property
    def agent_tools(self) -> list[ToolDefinition]:
        return list(self._agent_tools.values())

    def register(self, tool: Any) -> ToolDefinition:
        """Registra tool no escopo do agente (substitui id repetido)."""
        ref = tool_ref(tool)
        if not isinstance(ref, InlineTool):
            raise ToolResolutionError(
                f"Agent tools must be definitions or callables, got id '{ref.id}'"
            )
        if ref.id in self._agent_tools:
            logger.warning("agent_tool_replaced", extra={"tool_id": ref.id})
        self._agent_tools[ref.id] = ref.definition
        return ref.definition

    # -- resolução ------------------------------------------------------------

    @staticmethod
    def _find_inline(refs: Sequence[ToolRef], tool_id: str) -> ToolDefinition | None:
        for ref in refs:
            if isinstance(ref, InlineTool) and (
                ref.id == tool_id or ref.definition.name == tool_id
            ):
                return ref.definition
        return None

    def resolve(
        self,
        tool: ToolRef | str,
        *,
        route: Route | None = None,
        step: Step | None = None,
    ) -> ToolDefinition | None:
        """Resolve referência para definição; None se desconhecida."""
        ref = tool_ref(tool)
        if isinstance(ref, InlineTool):
            return ref.definition
        tool_id = ref.id
        if step is not None:
            found = self._find_inline(step.tools, tool_id)
            if found is not None:
                return found
        if route is not None:
            found = self._find_inline(route.tools, tool_id)
            if found is not None:
                return found
        found = self._agent_tools.get(tool_id)
        if found is None:
            found = next(
                (t for t in self._agent_tools.values() if t.name == tool_id), None
            )
        if found is not None:
            return found
        allowed = route.domains if route is not None else None
        return self._domains.resolve_tool(tool_id, allowed)

    def available_tools(
        self, route: Route | None = None, step: Step | None = None
    ) -> list[ToolDefinition]:
        """Tools oferecidas ao modelo.

        Passo com tools declaradas restringe a oferta a elas; caso contrário
        agente + rota (rota sobrescreve agente pelo id).
        """
        if step is not None and step.tools:
            offered: dict[str, ToolDefinition] = {}
            for ref in step.tools:
                definition = self.resolve(ref, route=route, step=step)
                if definition is None:
                    logger.warning(
                        "step_tool_not_found", extra={"tool_id": ref.id, "step_id": step.id}
                    )
                    continue
                offered[definition.id] = definition
            return list(offered.values())

        merged: dict[str, ToolDefinition] = dict(self._agent_tools)
        if route is not None:
            for ref in route.tools:
                definition = self.resolve(ref, route=route)
                if definition is None:
                    logger.warning(
                        "route_tool_not_found", extra={"tool_id": ref.id, "route_id": route.id}
                    )
                    continue
                merged[definition.id] = definition
        return list(merged.values())

    def batch_tools(self, route: Route, steps: Sequence[Step]) -> list[ToolDefinition]:
        """União das tools disponíveis para todos os passos de um lote."""
        if not steps:
            return self.available_tools(route)
        merged: dict[str, ToolDefinition] = {}
        for step in steps:
            for definition in self.available_tools(route, step):
                merged.setdefault(definition.id, definition)
        return list(merged.values())

    @staticmethod
    def specs(definitions: Sequence[ToolDefinition]) -> list[ToolSpec]:
        return [d.to_spec() for d in definitions]

    # -- execução -------------------------------------------------------------

    async def execute_tool(
        self,
        tool: ToolRef | ToolDefinition | str,
        args: Mapping[str, Any] | None = None,
        *,
        context: Mapping[str, Any],
        data: Mapping[str, Any],
        history: Sequence[HistoryItem] = (),
        update_context: UpdateContext | None = None,
        route: Route | None = None,
        step: Step | None = None,
    ) -> ToolExecutionResult:
        """Executa a tool e normaliza o retorno do handler."""
        definition = (
            tool if isinstance(tool, ToolDefinition) else self.resolve(tool, route=route, step=step)
        )
        tool_id = definition.id if definition else _ref_id(tool)
        if definition is None:
            logger.warning(
                "tool_not_found",
                extra={"tool_id": tool_id, "route_id": route.id if route else None},
            )
            return ToolExecutionResult(
                tool_id=tool_id, success=False, error=f"Tool not found: {tool_id}"
            )

        async def _noop_update(_: Mapping[str, Any]) -> None:
            return None

        ctx = ToolContext(
            context=dict(context),
            data=dict(data),
            history=list(history),
            update_context=update_context or _noop_update,
            route_id=route.id if route else None,
            step_id=step.id if step else None,
        )
        try:
            with timed(f"tool.{tool_id}") as sw:
                raw = await call_maybe_async(definition.handler, ctx, dict(args or {}))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "tool_execution_failed",
                extra={"tool_id": tool_id, "error_type": type(exc).__name__},
            )
            return ToolExecutionResult(
                tool_id=tool_id, success=False, error=str(exc) or type(exc).__name__
            )

        result = normalize_tool_result(raw)
        logger.debug(
            "tool_executed",
            extra={
                "tool_id": tool_id,
                "elapsed_ms": sw.elapsed_ms,
                "has_data_update": bool(result.data_update),
                "has_context_update": bool(result.context_update),
            },
        )
        return ToolExecutionResult(
            tool_id=tool_id,
            success=True,
            data=result.data,
            data_update=result.data_update,
            context_update=result.context_update,
        )


def _ref_id(tool: Any) -> str:
    if isinstance(tool, (ToolById, InlineTool)):
        return tool.id
    return str(tool)


async def run_tool_loop(
    tool_calls: Sequence[ToolCallRecord],
    *,
    execute_call: ExecuteCall,
    follow_up: FollowUp,
    max_loops: int = DEFAULT_MAX_TOOL_LOOPS,
    initial_message: str | None = None,
) -> ToolLoopResult:
    """Executa as tool calls do modelo e faz chamadas de follow-up.

    `follow_up(historico_extra, oferecer_tools, iteracao)` faz a chamada ao
    modelo; só a primeira iteração oferece tools. Ao atingir `max_loops`
    registra aviso e devolve as últimas tool calls conhecidas.
    """
    result = ToolLoopResult(tool_calls=list(tool_calls))
    pending = list(tool_calls)
    message = initial_message

    while pending:
        result.history.append(assistant_message(message or None, pending))
        for call in pending:
            executed = await execute_call(call)
            if executed is None:
                result.history.append(
                    tool_message(call.id, call.name, {"error": f"Tool not found: {call.name}"})
                )
                continue
            result.executed.append(executed)
            result.history.append(tool_message(call.id, call.name, executed.as_tool_content()))

        if result.loops >= max_loops:
            result.limit_reached = True
            result.message = message
            logger.warning(
                "tool_loop_limit_reached",
                extra={"max_loops": max_loops, "pending_calls": len(pending)},
            )
            break

        result.loops += 1
        output = await follow_up(list(result.history), result.loops == 1, result.loops)
        structured = dict(output.structured or {})
        message = output.message or str(structured.get("message") or "") or None
        if output.tool_calls:
            pending = list(output.tool_calls)
            result.tool_calls = list(pending)
            continue

        result.message = message
        result.structured = structured or None
        result.tool_calls = []
        pending = []

    logger.debug(
        "tool_loop_finished",
        extra={
            "loops": result.loops,
            "executed": len(result.executed),
            "limit_reached": result.limit_reached,
        },
    )
    return result
