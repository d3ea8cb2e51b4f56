"""Testes de execute_batch: prepare -> modelo -> coleta -> finalize."""

from __future__ import annotations

from typing import Any

import pytest

from rotaflow.ai.contracts.provider import GenerateMessageOutput
from rotaflow.domain.cancellation import CancelToken
from rotaflow.domain.enums import BatchErrorType, StoppedReason
from rotaflow.domain.session import create_session
from rotaflow.engine.batch_executor import BatchExecutor, BatchResult
from rotaflow.flow.route import Route
from rotaflow.flow.step import FunctionHook


def _generator(structured: dict[str, Any] | None = None, message: str = "hi"):
    calls: list[int] = []

    async def generate() -> GenerateMessageOutput:
        calls.append(1)
        return GenerateMessageOutput(message=message, structured=structured)

    generate.calls = calls  # type: ignore[attr-defined]
    return generate


async def _run_hook(hook, context, data, step):
    assert isinstance(hook, FunctionHook)
    return hook.fn(step)


@pytest.fixture()
def executor() -> BatchExecutor:
    return BatchExecutor()


class TestExecuteBatch:
    """Fluxo feliz e contagem de chamadas ao modelo."""

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_model_call(self, executor):
        generate = _generator()
        session = create_session("s1")
        batch = BatchResult(stopped_reason=StoppedReason.NEEDS_INPUT)

        result = await executor.execute_batch(batch, session, {}, _run_hook, generate)

        assert generate.calls == []
        assert result.message == ""
        assert result.session is session
        assert result.executed_steps == []
        assert result.stopped_reason == StoppedReason.NEEDS_INPUT

    @pytest.mark.asyncio
    async def test_single_model_call_for_whole_batch(self, executor):
        route = Route(
            "R", steps=[{"id": "a", "collect": ["name"]}, {"id": "b", "collect": ["email"]}]
        )
        batch = await executor.determine_batch(route, None, {"name": "Ana", "email": "x@y.z"})
        generate = _generator(
            {"message": "done", "name": "Ana", "email": "ana@y.z"}, message="done"
        )

        result = await executor.execute_batch(
            batch, create_session("s1"), {}, _run_hook, generate
        )

        assert len(generate.calls) == 1
        assert result.message == "done"
        assert [s.id for s in result.executed_steps] == ["a", "b"]
        assert result.session.data == {"name": "Ana", "email": "ana@y.z"}
        assert result.stopped_reason == StoppedReason.END_ROUTE
        assert result.success is True

    @pytest.mark.asyncio
    async def test_message_falls_back_to_structured_message(self, executor):
        route = Route("R", initial_step={"id": "a"})
        batch = await executor.determine_batch(route, None, {})
        generate = _generator({"message": "from json"}, message="")

        result = await executor.execute_batch(batch, create_session(), {}, _run_hook, generate)

        assert result.message == "from json"

    @pytest.mark.asyncio
    async def test_model_error_returns_llm_error_with_same_session(self, executor):
        route = Route("R", initial_step={"id": "a"})
        batch = await executor.determine_batch(route, None, {})
        session = create_session("s1")

        async def boom() -> GenerateMessageOutput:
            raise Exception("boom")

        result = await executor.execute_batch(batch, session, {}, _run_hook, boom)

        assert result.stopped_reason == StoppedReason.LLM_ERROR
        assert result.error.type == BatchErrorType.LLM_CALL
        assert result.error.message == "boom"
        assert result.session is session
        assert result.executed_steps == []
        assert result.success is False

    @pytest.mark.asyncio
    async def test_cancelled_signal_aborts_before_model_call(self, executor):
        route = Route("R", initial_step={"id": "a"})
        batch = await executor.determine_batch(route, None, {})
        token = CancelToken()
        token.cancel("client gone")
        generate = _generator()

        result = await executor.execute_batch(
            batch, create_session(), {}, _run_hook, generate, signal=token
        )

        assert generate.calls == []
        assert result.stopped_reason == StoppedReason.LLM_ERROR

    @pytest.mark.asyncio
    async def test_validation_error_keeps_invalid_value_merged(self, executor):
        route = Route("R", initial_step={"id": "a", "collect": ["field1"]})
        batch = BatchResult(steps=[route.initial], stopped_reason=StoppedReason.ROUTE_COMPLETE)
        schema = {"type": "object", "properties": {"field1": {"type": "string"}}}
        generate = _generator({"message": "ok", "field1": 123})

        result = await executor.execute_batch(
            batch, create_session(), {}, _run_hook, generate, schema
        )

        assert result.stopped_reason == StoppedReason.VALIDATION_ERROR
        assert result.error.type == BatchErrorType.DATA_VALIDATION
        assert [e.field for e in result.validation_errors] == ["field1"]
        assert result.session.data["field1"] == 123

    @pytest.mark.asyncio
    async def test_only_collect_fields_are_merged(self, executor):
        route = Route("R", initial_step={"id": "a", "collect": ["name"]})
        batch = BatchResult(steps=[route.initial])
        generate = _generator({"message": "ok", "name": "Ana", "other": "x", "email": None})

        result = await executor.execute_batch(batch, create_session(), {}, _run_hook, generate)

        assert result.session.data == {"name": "Ana"}
        assert result.collected_data == {"name": "Ana"}

    @pytest.mark.asyncio
    async def test_merge_collected_callback_is_used(self, executor):
        route = Route("R", initial_step={"id": "a", "collect": ["name"]})
        batch = BatchResult(steps=[route.initial])
        generate = _generator({"name": "ana"})
        seen: list[dict[str, Any]] = []

        async def merge(session, collected):
            from rotaflow.domain.session import merge_data

            seen.append(collected)
            return merge_data(session, {k: v.upper() for k, v in collected.items()})

        result = await executor.execute_batch(
            batch, create_session(), {}, _run_hook, generate, merge_collected=merge
        )

        assert seen == [{"name": "ana"}]
        assert result.session.data == {"name": "ANA"}

    @pytest.mark.asyncio
    async def test_failing_merge_callback_keeps_plain_merge(self, executor):
        """Deve manter o merge raso quando o callback de merge lança."""
        route = Route("R", initial_step={"id": "a", "collect": ["name"]})
        batch = BatchResult(steps=[route.initial])

        async def merge(session, collected):
            raise ValueError("enrich failed")

        result = await executor.execute_batch(
            batch,
            create_session(),
            {},
            _run_hook,
            _generator({"name": "ana"}),
            merge_collected=merge,
        )

        assert result.success is True
        assert result.stopped_reason == StoppedReason.ROUTE_COMPLETE
        assert result.session.data == {"name": "ana"}


class TestBatchHooks:
    """prepare aborta; finalize apenas anexa erros."""

    @pytest.mark.asyncio
    async def test_prepare_failure_aborts_without_model_call(self, executor):
        order: list[str] = []

        def ok(step):
            order.append(step.id)

        def fail(step):
            raise RuntimeError("prepare broke")

        route = Route(
            "R",
            steps=[
                {"id": "a", "prepare": ok},
                {"id": "b", "prepare": fail},
                {"id": "c", "prepare": ok},
            ],
        )
        batch = await executor.determine_batch(route, None, {})
        session = create_session()
        generate = _generator()

        result = await executor.execute_batch(batch, session, {}, _run_hook, generate)

        assert order == ["a"]
        assert generate.calls == []
        assert result.stopped_reason == StoppedReason.PREPARE_ERROR
        assert result.error.type == BatchErrorType.PREPARE_HOOK
        assert result.error.step_id == "b"
        assert result.error.message == "prepare broke"
        assert [s.id for s in result.executed_steps] == ["a"]
        assert result.session is session

    @pytest.mark.asyncio
    async def test_finalize_failures_do_not_stop_other_finalizers(self, executor):
        order: list[str] = []

        def ok(step):
            order.append(step.id)

        def fail(step):
            raise RuntimeError("finalize broke")

        route = Route("R", steps=[{"id": "a", "finalize": fail}, {"id": "b", "finalize": ok}])
        batch = await executor.determine_batch(route, None, {})

        result = await executor.execute_batch(
            batch, create_session(), {}, _run_hook, _generator({"message": "ok"})
        )

        assert order == ["b"]
        assert result.stopped_reason == StoppedReason.END_ROUTE
        assert result.error.type == BatchErrorType.FINALIZE_HOOK
        assert len(result.finalize_errors) == 1
        assert result.finalize_errors[0].step_id == "a"
        assert result.success is True
        assert result.message == "ok"

    @pytest.mark.asyncio
    async def test_finalize_sees_collected_data(self, executor):
        seen: list[dict[str, Any]] = []

        async def execute_hook(hook, context, data, step):
            seen.append(dict(data))

        route = Route("R", initial_step={"id": "a", "collect": ["x"], "finalize": lambda ctx: None})
        batch = BatchResult(steps=[route.initial])

        await executor.execute_batch(
            batch, create_session(), {}, execute_hook, _generator({"x": 1})
        )

        assert seen == [{"x": 1}]
