"""Testes da regra needs_input e da avaliação de skip_if."""

from __future__ import annotations

import pytest

from rotaflow.flow.step import Step, StepContext, needs_input


def _step(**kwargs) -> Step:
    return Step(id=kwargs.pop("id", "s"), route_id="r", index=0, **kwargs)


class TestNeedsInput:
    """Regra de input pendente (requires domina collect)."""

    def test_no_requires_no_collect_never_needs_input(self):
        assert needs_input(_step(), {}) is False

    def test_missing_requires_needs_input(self):
        step = _step(requires=("name",))
        assert needs_input(step, {}) is True
        assert needs_input(step, {"name": "Ana"}) is False

    def test_none_counts_as_missing(self):
        step = _step(requires=("name",))
        assert needs_input(step, {"name": None}) is True

    def test_collect_needs_input_only_when_no_field_present(self):
        step = _step(collect=("email", "phone"))
        assert needs_input(step, {}) is True
        assert needs_input(step, {"phone": "123"}) is False

    def test_requires_dominates_complete_collect(self):
        step = _step(requires=("name",), collect=("email",))
        assert needs_input(step, {"email": "a@b.c"}) is True

    def test_accepts_mapping_description(self):
        assert needs_input({"id": "a", "requires": [], "collect": ["x"]}, {}) is True
        assert needs_input({"id": "a", "requires": [], "collect": ["x"]}, {"x": "v"}) is False

    def test_method_delegates_to_function(self):
        step = _step(collect=("x",))
        assert step.needs_input({}) is True
        assert step.missing_requires({}) == []


class TestShouldSkip:
    """skip_if sync/async; exceção não pula o passo."""

    @pytest.mark.asyncio
    async def test_without_predicate_is_not_skipped(self):
        assert await _step().should_skip(StepContext(context={}, data={})) is False

    @pytest.mark.asyncio
    async def test_sync_predicate(self):
        step = _step(skip_if=lambda ctx: ctx.data.get("vip") is True)
        assert await step.should_skip(StepContext(context={}, data={"vip": True})) is True
        assert await step.should_skip(StepContext(context={}, data={})) is False

    @pytest.mark.asyncio
    async def test_async_predicate(self):
        async def skip(ctx: StepContext) -> bool:
            return ctx.context.get("logged_in", False)

        step = _step(skip_if=skip)
        assert await step.should_skip(StepContext(context={"logged_in": True}, data={})) is True

    @pytest.mark.asyncio
    async def test_predicate_error_fails_open(self, caplog):
        def boom(ctx: StepContext) -> bool:
            raise RuntimeError("boom")

        step = _step(skip_if=boom)
        assert await step.should_skip(StepContext(context={}, data={})) is False
        assert any(r.getMessage() == "skip_if_evaluation_failed" for r in caplog.records)
