"""Testes do adapter OpenAI com cliente mockado (sem rede)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import BadRequestError, InternalServerError

from rotaflow.ai.contracts.provider import (
    GenerateMessageInput,
    GenerationParameters,
    ToolSpec,
)
from rotaflow.ai.openai_provider import OpenAIProvider, parse_structured
from rotaflow.config.settings import Settings
from rotaflow.domain.cancellation import CancelToken, TurnCancelledError
from rotaflow.domain.errors import ProviderError
from rotaflow.domain.history import ToolCallRecord, assistant_message, tool_message, user_message

URL = "https://api.openai.com/v1/chat/completions"


def _completion(content: str | None = None, tool_calls: list | None = None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(call_id: str, name: str, arguments: str):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _status_error(cls, status: int):
    response = httpx.Response(status, request=httpx.Request("POST", URL))
    return cls("upstream failure", response=response, body=None)


def _client(*side_effect):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(side_effect))
    return client


class _Stream:
    """Iterador assíncrono de eventos de streaming."""

    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        return self._events.pop(0)


def _delta(content=None, tool_calls=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


class TestParseStructured:
    """Parse do texto retornado."""

    def test_plain_text_when_no_schema(self):
        """Sem schema o texto é devolvido como mensagem."""
        assert parse_structured("hello", expect_json=False) == ("hello", None)

    def test_json_object_extracts_message(self):
        """JSON válido vira structured e message vem do campo message."""
        message, structured = parse_structured('{"message": "hi", "name": "Ana"}', True)
        assert message == "hi"
        assert structured == {"message": "hi", "name": "Ana"}

    def test_invalid_json_falls_back_to_text(self):
        """JSON inválido cai para texto puro."""
        assert parse_structured("not json", True) == ("not json", None)


class TestGenerateMessage:
    """Chamada não-streaming."""

    @pytest.mark.asyncio
    async def test_structured_request_uses_json_schema_response_format(self):
        """json_schema deve virar response_format e o JSON ser parseado."""
        client = _client(_completion('{"message": "Hello Ana", "name": "Ana"}'))
        provider = OpenAIProvider(client=client, model="gpt-test", temperature=0.1)

        output = await provider.generate_message(
            GenerateMessageInput(
                prompt="system prompt",
                history=[user_message("I'm Ana")],
                parameters=GenerationParameters(
                    json_schema={"type": "object", "properties": {}}, schema_name="batch_response"
                ),
            )
        )

        assert output.message == "Hello Ana"
        assert output.structured == {"message": "Hello Ana", "name": "Ana"}
        params = client.chat.completions.create.call_args.kwargs
        assert params["model"] == "gpt-test"
        assert params["temperature"] == 0.1
        assert params["messages"][0] == {"role": "system", "content": "system prompt"}
        assert params["messages"][1] == {"role": "user", "content": "I'm Ana"}
        assert params["response_format"]["json_schema"]["name"] == "batch_response"

    @pytest.mark.asyncio
    async def test_tool_names_are_mapped_to_and_from_wire_format(self):
        """Ids com '.' são trocados por nomes válidos e restaurados na resposta."""
        call = _tool_call("c1", "orders__status", '{"order_id": "7"}')
        client = _client(_completion(None, [call]))
        provider = OpenAIProvider(client=client)

        output = await provider.generate_message(
            GenerateMessageInput(
                prompt="p",
                tools=[ToolSpec(name="orders.status", description="Order status")],
            )
        )

        params = client.chat.completions.create.call_args.kwargs
        assert params["tools"][0]["function"]["name"] == "orders__status"
        assert output.tool_calls == [
            ToolCallRecord(id="c1", name="orders.status", arguments={"order_id": "7"})
        ]

    @pytest.mark.asyncio
    async def test_tool_history_is_serialized(self):
        """Mensagens de tool e tool_calls do assistente seguem o formato da API."""
        client = _client(_completion("done"))
        provider = OpenAIProvider(client=client)
        call = ToolCallRecord(id="c1", name="lookup", arguments={"q": "x"})

        await provider.generate_message(
            GenerateMessageInput(
                prompt="p",
                history=[
                    assistant_message(None, [call]),
                    tool_message("c1", "lookup", {"hits": 1}),
                ],
            )
        )

        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[1]["tool_calls"][0]["function"] == {
            "name": "lookup",
            "arguments": json.dumps({"q": "x"}),
        }
        assert messages[2] == {"role": "tool", "tool_call_id": "c1", "content": '{"hits": 1}'}

    @pytest.mark.asyncio
    async def test_backup_model_used_on_server_error(self):
        """Erro 500 no primário deve tentar o modelo de backup."""
        client = _client(_status_error(InternalServerError, 500), _completion("from backup"))
        provider = OpenAIProvider(client=client, model="primary", backup_models=["backup"])

        output = await provider.generate_message(GenerateMessageInput(prompt="p"))

        assert output.message == "from backup"
        models = [c.kwargs["model"] for c in client.chat.completions.create.call_args_list]
        assert models == ["primary", "backup"]

    @pytest.mark.asyncio
    async def test_client_error_does_not_use_backup(self):
        """Erro 400 não aciona backup e vira ProviderError."""
        client = _client(_status_error(BadRequestError, 400), _completion("never"))
        provider = OpenAIProvider(client=client, backup_models=["backup"])

        with pytest.raises(ProviderError):
            await provider.generate_message(GenerateMessageInput(prompt="p"))
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_signal_skips_api_call(self):
        """Sinal cancelado aborta antes da chamada."""
        client = _client(_completion("x"))
        token = CancelToken()
        token.cancel("stop")

        with pytest.raises(TurnCancelledError):
            await OpenAIProvider(client=client).generate_message(
                GenerateMessageInput(prompt="p", signal=token)
            )
        client.chat.completions.create.assert_not_awaited()

    def test_from_settings(self):
        """from_settings usa modelo e timeout configurados."""
        settings = Settings(openai_model="gpt-x", openai_timeout_seconds=5.0)
        provider = OpenAIProvider.from_settings(settings, client=MagicMock())
        assert provider._model == "gpt-x"
        assert provider._timeout == 5.0


class TestGenerateMessageStream:
    """Streaming com acumulação de deltas."""

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_then_final_chunk(self):
        """Deltas acumulam; o chunk final traz structured e message."""
        events = [_delta('{"message": '), _delta('"Hi"}'), SimpleNamespace(choices=[])]
        client = _client(_Stream(events))
        provider = OpenAIProvider(client=client)

        chunks = [
            c
            async for c in provider.generate_message_stream(
                GenerateMessageInput(
                    prompt="p", parameters=GenerationParameters(json_schema={"type": "object"})
                )
            )
        ]

        assert [c.delta for c in chunks[:-1]] == ['{"message": ', '"Hi"}']
        final = chunks[-1]
        assert final.done is True
        assert final.structured == {"message": "Hi"}
        assert final.accumulated == "Hi"
        assert client.chat.completions.create.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_accumulates_tool_call_fragments(self):
        """Fragmentos de tool call por índice são concatenados."""
        first = SimpleNamespace(
            index=0, id="c1", function=SimpleNamespace(name="look", arguments='{"q":')
        )
        second = SimpleNamespace(
            index=0, id=None, function=SimpleNamespace(name="up", arguments='"x"}')
        )
        client = _client(_Stream([_delta(tool_calls=[first]), _delta(tool_calls=[second])]))

        chunks = [
            c
            async for c in OpenAIProvider(client=client).generate_message_stream(
                GenerateMessageInput(prompt="p", tools=[ToolSpec(name="lookup")])
            )
        ]

        assert len(chunks) == 1
        expected = ToolCallRecord(id="c1", name="lookup", arguments={"q": "x"})
        assert chunks[0].tool_calls == [expected]

    @pytest.mark.asyncio
    async def test_stream_open_failure_raises_provider_error(self):
        """Falha ao abrir o stream vira ProviderError."""
        client = _client(_status_error(InternalServerError, 503))

        with pytest.raises(ProviderError):
            async for _ in OpenAIProvider(client=client).generate_message_stream(
                GenerateMessageInput(prompt="p")
            ):
                pass
