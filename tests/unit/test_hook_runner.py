"""Testes do HookRunner: hooks de passo e hooks de ciclo de vida."""

from __future__ import annotations

import pytest

from rotaflow.domain.enums import HookOrder
from rotaflow.domain.session import create_session, enter_route
from rotaflow.engine.hooks import HookFailedError, HookRunner
from rotaflow.engine.tool_executor import ToolExecutionResult, ToolExecutor
from rotaflow.flow.route import LifecycleHooks, Route
from rotaflow.flow.step import FunctionHook, ToolHook
from rotaflow.flow.tool import define_tool, tool_ref


class TestExecuteHook:
    """Hooks de função e de tool."""

    @pytest.mark.asyncio
    async def test_function_hook_receives_step_context(self):
        route = Route("R", initial_step={"id": "a"})
        seen = {}

        async def prepare(ctx):
            seen.update(context=ctx.context, data=ctx.data)
            return "done"

        result = await HookRunner(ToolExecutor()).execute_hook(
            FunctionHook(prepare), {"c": 1}, {"d": 2}, route.initial
        )

        assert result == "done"
        assert seen == {"context": {"c": 1}, "data": {"d": 2}}

    @pytest.mark.asyncio
    async def test_function_hook_exception_propagates(self):
        route = Route("R", initial_step={"id": "a"})

        def broken(ctx):
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            await HookRunner(ToolExecutor()).execute_hook(
                FunctionHook(broken), {}, {}, route.initial
            )

    @pytest.mark.asyncio
    async def test_tool_hook_returns_execution_result(self):
        route = Route("R", initial_step={"id": "a"})
        tool = define_tool(lambda ctx, args: {"data_update": {"x": 1}}, id="loader")
        runner = HookRunner(ToolExecutor([tool]))

        result = await runner.execute_hook(ToolHook(tool_ref("loader")), {}, {}, route.initial)

        assert isinstance(result, ToolExecutionResult)
        assert result.data_update == {"x": 1}

    @pytest.mark.asyncio
    async def test_failed_tool_hook_raises(self):
        route = Route("R", initial_step={"id": "a"})
        runner = HookRunner(ToolExecutor())

        with pytest.raises(HookFailedError):
            await runner.execute_hook(ToolHook(tool_ref("missing")), {}, {}, route.initial)


class TestLifecycleHooks:
    """on_data_update / on_context_update e ordem agente/rota."""

    @pytest.mark.asyncio
    async def test_data_update_hook_can_replace_data(self):
        def normalize(new, previous):
            return {**new, "email": new["email"].lower()} if "email" in new else None

        route = Route("R", hooks=LifecycleHooks(on_data_update=normalize))
        session = enter_route(create_session(), route.id, route.title)

        updated = await HookRunner(ToolExecutor()).apply_data_update(
            session, {"email": "ANA@X.COM"}, route
        )

        assert updated.data == {"email": "ana@x.com"}
        assert updated.data_by_route[route.id] == {"email": "ana@x.com"}

    @pytest.mark.asyncio
    async def test_hooks_receive_previous_data(self):
        calls = []

        def track(new, previous):
            calls.append((dict(new), dict(previous)))

        route = Route("R", hooks=LifecycleHooks(on_data_update=track))
        session = enter_route(create_session(), route.id, route.title)
        runner = HookRunner(ToolExecutor())
        session = await runner.apply_data_update(session, {"a": 1}, route)
        await runner.apply_data_update(session, {"b": 2}, route)

        assert calls == [({"a": 1}, {}), ({"a": 1, "b": 2}, {"a": 1})]

    @pytest.mark.asyncio
    async def test_failing_data_hook_is_skipped(self):
        """Deve manter o merge raso e seguir para o próximo hook quando um hook lança."""

        def broken(new, previous):
            raise ValueError("enrich failed")

        def tag(new, previous):
            return {**new, "tagged": True}

        route = Route("R", hooks=LifecycleHooks(on_data_update=broken))
        runner = HookRunner(ToolExecutor(), agent_hooks=LifecycleHooks(on_data_update=tag))
        session = enter_route(create_session(), route.id, route.title)

        updated = await runner.apply_data_update(session, {"name": "Ana"}, route)

        assert updated.data == {"name": "Ana", "tagged": True}

    @pytest.mark.asyncio
    async def test_empty_update_skips_hooks(self):
        calls = []
        runner = HookRunner(
            ToolExecutor(), agent_hooks=LifecycleHooks(on_data_update=lambda n, p: calls.append(n))
        )
        session = create_session()

        assert await runner.apply_data_update(session, {}) is session
        assert calls == []

    @pytest.mark.parametrize(
        ("order", "expected"),
        [(HookOrder.AGENT_FIRST, ["agent", "route"]), (HookOrder.ROUTE_FIRST, ["route", "agent"])],
    )
    @pytest.mark.asyncio
    async def test_hook_order(self, order, expected):
        calls: list[str] = []
        agent_hooks = LifecycleHooks(on_context_update=lambda n, p: calls.append("agent"))
        route_hooks = LifecycleHooks(on_context_update=lambda n, p: calls.append("route"))
        route = Route("R", hooks=route_hooks)
        runner = HookRunner(ToolExecutor(), agent_hooks=agent_hooks, order=order)

        await runner.apply_context_update({"a": 1}, {"b": 2}, route)

        assert calls == expected

    @pytest.mark.asyncio
    async def test_context_update_merges_and_allows_replacement(self):
        async def enrich(new, previous):
            return {**new, "enriched": True}

        runner = HookRunner(ToolExecutor(), agent_hooks=LifecycleHooks(on_context_update=enrich))

        result = await runner.apply_context_update({"a": 1}, {"b": 2})

        assert result == {"a": 1, "b": 2, "enriched": True}
