"""Testes de determine_batch: prefixo executável sem input novo."""

from __future__ import annotations

import pytest

from rotaflow.domain.enums import StoppedReason
from rotaflow.engine.batch_executor import BatchExecutor
from rotaflow.flow.route import Route
from rotaflow.flow.step import is_end_route


@pytest.fixture()
def executor() -> BatchExecutor:
    return BatchExecutor()


class TestDetermineBatch:
    """Regras de parada do lote."""

    @pytest.mark.asyncio
    async def test_step_needing_input_stops_batch_before_it(self, executor):
        route = Route("R", initial_step={"id": "a", "collect": ["x"]})

        batch = await executor.determine_batch(route, None, {})

        assert batch.steps == []
        assert batch.stopped_reason == StoppedReason.NEEDS_INPUT
        assert batch.stopped_at_step.id == "a"

    @pytest.mark.asyncio
    async def test_satisfied_last_step_completes_route(self, executor):
        route = Route("R", initial_step={"id": "a", "collect": ["x"]})

        batch = await executor.determine_batch(route, None, {"x": "v"})

        assert batch.step_ids == ["a"]
        assert batch.stopped_reason == StoppedReason.ROUTE_COMPLETE

    @pytest.mark.asyncio
    async def test_chain_until_first_step_needing_input(self, executor):
        route = Route(
            "R",
            steps=[
                {"id": "a", "collect": ["name"]},
                {"id": "b", "requires": ["name"], "collect": ["email"]},
                {"id": "c", "collect": ["phone"]},
            ],
        )

        batch = await executor.determine_batch(route, None, {"name": "Ana", "email": "a@b.c"})

        assert batch.step_ids == ["a", "b"]
        assert batch.stopped_reason == StoppedReason.NEEDS_INPUT
        assert batch.stopped_at_step.id == "c"

    @pytest.mark.asyncio
    async def test_end_route_stops_with_end_route(self, executor):
        route = Route("R", steps=[{"id": "a"}, {"id": "b"}])

        batch = await executor.determine_batch(route, None, {})

        assert batch.step_ids == ["a", "b"]
        assert batch.stopped_reason == StoppedReason.END_ROUTE
        assert is_end_route(batch.stopped_at_step)

    @pytest.mark.asyncio
    async def test_starts_at_current_step_inclusive(self, executor):
        route = Route("R", steps=[{"id": "a"}, {"id": "b"}, {"id": "c", "collect": ["z"]}])

        batch = await executor.determine_batch(route, route.get_step("b"), {})

        assert batch.step_ids == ["b"]
        assert batch.stopped_at_step.id == "c"

    @pytest.mark.asyncio
    async def test_skipped_step_is_not_included_but_chain_continues(self, executor):
        route = Route(
            "R",
            steps=[
                {"id": "a"},
                {"id": "b", "collect": ["x"], "skip_if": lambda ctx: True},
                {"id": "c"},
            ],
        )

        batch = await executor.determine_batch(route, None, {})

        assert batch.step_ids == ["a", "c"]
        assert batch.stopped_reason == StoppedReason.END_ROUTE

    @pytest.mark.asyncio
    async def test_skip_if_receives_context(self, executor):
        route = Route(
            "R",
            steps=[
                {"id": "a", "collect": ["x"], "skip_if": lambda ctx: ctx.context.get("known")},
                {"id": "b"},
            ],
        )

        batch = await executor.determine_batch(route, None, {}, {"known": True})

        assert batch.step_ids == ["b"]

    @pytest.mark.asyncio
    async def test_branch_takes_first_non_skipped_child(self, executor):
        route = Route("R", initial_step={"id": "triage"})
        route.initial_step.branch(
            [
                {"name": "vip", "step": {"id": "vip", "skip_if": lambda ctx: True}},
                {"name": "regular", "step": {"id": "regular", "collect": ["x"]}},
            ]
        )

        batch = await executor.determine_batch(route, None, {})

        assert batch.step_ids == ["triage"]
        assert batch.stopped_reason == StoppedReason.NEEDS_INPUT
        assert batch.stopped_at_step.id == "regular"

    @pytest.mark.asyncio
    async def test_cycle_stops_batch(self, executor):
        route = Route("R", initial_step={"id": "a"})
        b = route.initial_step.next_step(id="b")
        b.next_step(route.initial_step)

        batch = await executor.determine_batch(route, None, {})

        assert batch.step_ids == ["a", "b"]
        assert batch.stopped_reason == StoppedReason.ROUTE_COMPLETE
