"""Despacho de hooks de passo e hooks de ciclo de vida (dados/contexto).

- `execute_hook`: ponto único para `prepare`/`finalize` (função ou tool)
- `apply_data_update` / `apply_context_update`: merge raso seguido dos
  hooks `on_data_update`/`on_context_update` do agente e da rota, na
  ordem configurada. Cada hook pode devolver um mapeamento substituto;
  hook que lança é registrado em log e ignorado (o merge raso permanece)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rotaflow.domain.enums import HookOrder
from rotaflow.domain.errors import RotaflowError
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.session import Session, merge_data, replace_data
from rotaflow.engine.tool_executor import ToolExecutionResult, ToolExecutor, UpdateContext
from rotaflow.flow.route import LifecycleHooks, Route
from rotaflow.flow.step import FunctionHook, Hook, Step, StepContext, ToolHook
from rotaflow.observability.logging import get_logger
from rotaflow.utils.awaitables import call_maybe_async

logger: logging.Logger = get_logger(__name__)


class HookFailedError(RotaflowError):
    """Hook de tool retornou falha (propagada ao executor de lotes)."""


class HookRunner:
    """Executa hooks de passo e aplica hooks de ciclo de vida."""

    def __init__(
        self,
        tools: ToolExecutor,
        *,
        agent_hooks: LifecycleHooks | None = None,
        order: HookOrder | str = HookOrder.AGENT_FIRST,
    ) -> None:
        self._tools = tools
        self._agent_hooks = agent_hooks or LifecycleHooks()
        self._order = HookOrder(order)

    @property
    def order(self) -> HookOrder:
        return self._order

    async def execute_hook(
        self,
        hook: Hook,
        context: dict[str, Any],
        data: dict[str, Any],
        step: Step,
        *,
        route: Route | None = None,
        session: Session | None = None,
        history: Sequence[HistoryItem] = (),
        update_context: UpdateContext | None = None,
    ) -> ToolExecutionResult | Any:
        """Executa um hook; falhas propagam como exceção para o executor."""
        if isinstance(hook, FunctionHook):
            ctx = StepContext(context=context, data=data, session=session, history=list(history))
            return await call_maybe_async(hook.fn, ctx)
        if isinstance(hook, ToolHook):
            result = await self._tools.execute_tool(
                hook.ref,
                {},
                context=context,
                data=data,
                history=history,
                update_context=update_context,
                route=route,
                step=step,
            )
            if not result.success:
                raise HookFailedError(result.error or f"Hook tool failed: {result.tool_id}")
            return result
        raise TypeError(f"Hook inválido: {type(hook).__name__}")

    def _ordered(self, route: Route | None, attr: str) -> list[Any]:
        agent_hook = getattr(self._agent_hooks, attr)
        route_hook = getattr(route.hooks, attr) if route is not None else None
        pair = (
            [agent_hook, route_hook]
            if self._order == HookOrder.AGENT_FIRST
            else [route_hook, agent_hook]
        )
        return [h for h in pair if h is not None]

    async def _run_lifecycle(
        self,
        route: Route | None,
        attr: str,
        current: dict[str, Any],
        previous: dict[str, Any],
    ) -> dict[str, Any]:
        for hook in self._ordered(route, attr):
            try:
                replaced = await call_maybe_async(hook, dict(current), previous)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "lifecycle_hook_failed",
                    extra={
                        "hook": attr,
                        "route_id": route.id if route else None,
                        "error_type": type(exc).__name__,
                    },
                )
                continue
            if replaced is not None:
                current = dict(replaced)
        return current

    async def apply_data_update(
        self, session: Session, update: Mapping[str, Any], route: Route | None = None
    ) -> Session:
        """Merge raso + `on_data_update` (novo, anterior) de agente/rota."""
        if not update:
            return session
        previous = dict(session.data)
        merged = merge_data(session, update)
        data = await self._run_lifecycle(route, "on_data_update", dict(merged.data), previous)
        if data != merged.data:
            logger.debug(
                "data_update_hook_modified",
                extra={"route_id": route.id if route else None, "fields": sorted(data)},
            )
            merged = replace_data(merged, data)
        return merged

    async def apply_context_update(
        self,
        context: Mapping[str, Any],
        update: Mapping[str, Any],
        route: Route | None = None,
    ) -> dict[str, Any]:
        """Merge raso do contexto + `on_context_update` (novo, anterior)."""
        previous = dict(context)
        current = {**previous, **dict(update)}
        return await self._run_lifecycle(route, "on_context_update", current, previous)
