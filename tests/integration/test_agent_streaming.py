"""Streaming do Agent: deltas em ordem e chunk final com a sessão."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from rotaflow.ai.contracts.provider import GenerateMessageInput, StreamChunk
from rotaflow.application import Agent
from rotaflow.domain.enums import StoppedReason
from rotaflow.domain.history import user_message
from rotaflow.domain.session import create_session
from rotaflow.flow.route import Route

from conftest import MockProvider


class StreamingProvider(MockProvider):
    """Quebra a mensagem roteirizada em deltas por palavra."""

    async def generate_message_stream(
        self, request: GenerateMessageInput
    ) -> AsyncIterator[StreamChunk]:
        output = await self.generate_message(request)
        accumulated = ""
        for i, word in enumerate(output.message.split(" ") if output.message else []):
            piece = word if i == 0 else f" {word}"
            accumulated += piece
            yield StreamChunk(delta=piece, accumulated=accumulated)
        yield StreamChunk(
            accumulated=accumulated,
            done=True,
            structured=output.structured,
            tool_calls=output.tool_calls,
        )


async def _collect(stream):
    return [chunk async for chunk in stream]


class TestRespondStream:
    """respond_stream nos caminhos de lote e fallback."""

    @pytest.mark.asyncio
    async def test_batch_stream_yields_deltas_then_final(self, settings):
        """Deltas chegam antes do chunk final, que traz sessão e rota."""
        provider = StreamingProvider([{"message": "What is your name?"}])
        route = Route("Signup", id="signup", steps=[{"id": "ask_name", "collect": ["name"]}])
        agent = Agent("Helper", provider, settings=settings, routes=[route])

        chunks = await _collect(agent.respond_stream([user_message("hi")]))

        deltas = [c.delta for c in chunks if not c.done]
        assert "".join(deltas) == "What is your name?"
        final = chunks[-1]
        assert final.done is True
        assert final.accumulated == "What is your name?"
        assert final.route is route
        assert final.session.current_step_id == "ask_name"
        assert final.stopped_reason == StoppedReason.NEEDS_INPUT
        assert all(not c.done for c in chunks[:-1])

    @pytest.mark.asyncio
    async def test_fallback_stream_without_routes(self, settings):
        """Sem rotas os deltas vêm direto do provedor."""
        provider = StreamingProvider([{"message": "Hello there"}])
        agent = Agent("Helper", provider, settings=settings)

        chunks = await _collect(agent.respond_stream([user_message("hi")]))

        assert [c.delta for c in chunks[:-1]] == ["Hello", " there"]
        assert chunks[-1].accumulated == "Hello there"
        assert chunks[-1].done is True

    @pytest.mark.asyncio
    async def test_stream_error_ends_with_failed_chunk(self, settings):
        """Erro do provedor vira chunk final com llm_error e sessão original."""
        provider = StreamingProvider([RuntimeError("stream broke")])
        agent = Agent("Helper", provider, settings=settings)
        session = create_session("s1")

        chunks = await _collect(agent.respond_stream([user_message("hi")], session))

        assert len(chunks) == 1
        assert chunks[0].stopped_reason == StoppedReason.LLM_ERROR
        assert chunks[0].session is session

    @pytest.mark.asyncio
    async def test_default_stream_uses_generate_message(self, provider, settings):
        """Provedor sem streaming próprio entrega um único chunk final."""
        provider.queue({"message": "plain"})
        agent = Agent("Helper", provider, settings=settings)

        chunks = await _collect(agent.respond_stream([user_message("hi")]))

        assert chunks[-1].accumulated == "plain"
        assert chunks[-1].done is True
