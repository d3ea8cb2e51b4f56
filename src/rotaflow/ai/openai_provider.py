"""Adapter OpenAI (Chat Completions) para o contrato `AiProvider`.

Suporta:
- resposta estruturada via `response_format` json_schema
- tools como function calling (ids com "." são mapeados para nomes válidos)
- streaming com acumulação de deltas e tool calls
- modelos de backup quando o primário falha por indisponibilidade

Erros da API viram `ProviderError`; o executor de lotes os converte em
`llm_error`. JSON inválido na resposta cai para texto puro.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator, Sequence
from typing import Any

from openai import APIError, APITimeoutError, AsyncOpenAI

from rotaflow.ai.contracts.provider import (
    GenerateMessageInput,
    GenerateMessageOutput,
    StreamChunk,
    ToolSpec,
)
from rotaflow.config.settings import Settings
from rotaflow.domain.enums import MessageRole
from rotaflow.domain.errors import ProviderError
from rotaflow.domain.history import HistoryItem, ToolCallRecord
from rotaflow.domain.protocols import AiProvider
from rotaflow.observability.logging import get_logger
from rotaflow.observability.timing import timed

logger: logging.Logger = get_logger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_BACKUP_STATUS_CODES = frozenset({429, 500, 503})


def _wire_name(tool_id: str) -> str:
    return _INVALID_NAME_CHARS.sub("__", tool_id)[:64]


def _content_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str, ensure_ascii=False)


def _history_messages(
    history: Sequence[HistoryItem], names: dict[str, str]
) -> list[dict[str, Any]]:
    reverse = {v: k for k, v in names.items()}
    messages: list[dict[str, Any]] = []
    for item in history:
        if item.role == MessageRole.TOOL:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": item.tool_call_id or "",
                    "content": _content_text(item.content),
                }
            )
        elif item.role == MessageRole.ASSISTANT and item.tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": _content_text(item.content) or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": reverse.get(call.name, _wire_name(call.name)),
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in item.tool_calls
                    ],
                }
            )
        else:
            messages.append({"role": item.role.value, "content": _content_text(item.content)})
    return messages


def _tool_payload(tools: Sequence[ToolSpec]) -> tuple[list[dict[str, Any]], dict[str, str]]:
    """Converte ToolSpecs; devolve também o mapa nome_na_api -> id original."""
    names: dict[str, str] = {}
    payload: list[dict[str, Any]] = []
    for spec in tools:
        wire = _wire_name(spec.name)
        names[wire] = spec.name
        payload.append(
            {
                "type": "function",
                "function": {
                    "name": wire,
                    "description": spec.description,
                    "parameters": spec.parameters,
                },
            }
        )
    return payload, names


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_arguments_parse_failed")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_structured(text: str, expect_json: bool) -> tuple[str, dict[str, Any] | None]:
    """Extrai (mensagem, structured) do texto retornado; fallback texto puro."""
    if not expect_json:
        return text, None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("structured_output_parse_failed", extra={"length": len(text)})
        return text, None
    if not isinstance(parsed, dict):
        return text, None
    return str(parsed.get("message") or ""), parsed


def _should_use_backup(exc: Exception) -> bool:
    if isinstance(exc, APITimeoutError):
        return True
    status = getattr(exc, "status_code", None)
    if status in _BACKUP_STATUS_CODES:
        return True
    code = getattr(exc, "code", None)
    return code in {"model_not_found", "model_overloaded"}


class OpenAIProvider(AiProvider):
    """Provedor baseado em `AsyncOpenAI` (chat.completions)."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = "gpt-4o-mini",
        backup_models: Sequence[str] = (),
        timeout: float = 30.0,
        temperature: float | None = 0.3,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._backup_models = list(backup_models)
        self._timeout = timeout
        self._temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings, client: AsyncOpenAI | None = None) -> OpenAIProvider:
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.openai_timeout_seconds,
            temperature=settings.openai_temperature,
            client=client,
        )

    def _build_params(
        self, request: GenerateMessageInput, model: str
    ) -> tuple[dict[str, Any], dict[str, str]]:
        tools_payload, names = _tool_payload(request.tools or [])
        params: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": request.prompt},
                *_history_messages(request.history, names),
            ],
            "timeout": self._timeout,
        }
        parameters = request.parameters
        temperature = (
            parameters.temperature
            if parameters and parameters.temperature is not None
            else self._temperature
        )
        if temperature is not None:
            params["temperature"] = temperature
        if parameters and parameters.json_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": parameters.schema_name or "response",
                    "schema": parameters.json_schema,
                },
            }
        if tools_payload:
            params["tools"] = tools_payload
        return params, names

    async def generate_message(self, request: GenerateMessageInput) -> GenerateMessageOutput:
        if request.signal is not None:
            request.signal.raise_if_cancelled()
        models = [self._model, *self._backup_models]
        last_exc: Exception | None = None
        for index, model in enumerate(models):
            try:
                return await self._generate_with_model(request, model)
            except (APIError, APITimeoutError) as e:
                last_exc = e
                logger.warning(
                    "openai_generation_error",
                    extra={
                        "model": model,
                        "error_type": type(e).__name__,
                        "attempt": index + 1,
                    },
                )
                if not _should_use_backup(e):
                    break
        raise ProviderError(f"OpenAI request failed: {last_exc}") from last_exc

    async def _generate_with_model(
        self, request: GenerateMessageInput, model: str
    ) -> GenerateMessageOutput:
        params, names = self._build_params(request, model)
        with timed("openai.generate") as sw:
            response = await self._client.chat.completions.create(**params)
        choice = response.choices[0].message
        text = choice.content or ""
        expect_json = bool(request.parameters and request.parameters.json_schema)
        message, structured = parse_structured(text, expect_json)
        tool_calls = [
            ToolCallRecord(
                id=call.id,
                name=names.get(call.function.name, call.function.name),
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (choice.tool_calls or [])
        ]
        logger.info(
            "openai_generation_ok",
            extra={
                "model": model,
                "elapsed_ms": sw.elapsed_ms,
                "schema_name": request.parameters.schema_name if request.parameters else None,
                "tool_calls": len(tool_calls),
            },
        )
        return GenerateMessageOutput(
            message=message, structured=structured, tool_calls=tool_calls or None
        )

    async def generate_message_stream(
        self, request: GenerateMessageInput
    ) -> AsyncIterator[StreamChunk]:
        """Streaming: `structured` e tool calls só no chunk final."""
        signal = request.signal
        if signal is not None:
            signal.raise_if_cancelled()
        params, names = self._build_params(request, self._model)
        try:
            stream = await self._client.chat.completions.create(**params, stream=True)
        except (APIError, APITimeoutError) as e:
            logger.warning(
                "openai_stream_error",
                extra={"model": self._model, "error_type": type(e).__name__},
            )
            raise ProviderError(f"OpenAI stream failed: {e}") from e

        accumulated = ""
        partial_calls: dict[int, dict[str, str]] = {}
        try:
            async for event in stream:
                if signal is not None:
                    signal.raise_if_cancelled()
                if not event.choices:
                    continue
                delta = event.choices[0].delta
                for call in delta.tool_calls or []:
                    slot = partial_calls.setdefault(
                        call.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if call.id:
                        slot["id"] = call.id
                    if call.function and call.function.name:
                        slot["name"] += call.function.name
                    if call.function and call.function.arguments:
                        slot["arguments"] += call.function.arguments
                if delta.content:
                    accumulated += delta.content
                    yield StreamChunk(delta=delta.content, accumulated=accumulated)
        except (APIError, APITimeoutError) as e:
            raise ProviderError(f"OpenAI stream failed: {e}") from e

        expect_json = bool(request.parameters and request.parameters.json_schema)
        message, structured = parse_structured(accumulated, expect_json)
        tool_calls = [
            ToolCallRecord(
                id=slot["id"],
                name=names.get(slot["name"], slot["name"]),
                arguments=_parse_arguments(slot["arguments"]),
            )
            for _, slot in sorted(partial_calls.items())
        ]
        yield StreamChunk(
            delta="",
            accumulated=message if structured is not None else accumulated,
            done=True,
            structured=structured,
            tool_calls=tool_calls or None,
        )
