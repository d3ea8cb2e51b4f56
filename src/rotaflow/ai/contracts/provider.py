"""Contrato de entrada/saída do provedor de modelo."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rotaflow.domain.cancellation import CancelToken
from rotaflow.domain.history import HistoryItem, ToolCallRecord


class ToolSpec(BaseModel):
    """Tool oferecida ao modelo (nome + schema de parâmetros)."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class GenerationParameters(BaseModel):
    """Parâmetros de geração estruturada."""

    json_schema: dict[str, Any] | None = None
    schema_name: str | None = None
    temperature: float | None = None


class GenerateMessageInput(BaseModel):
    """Requisição para `AiProvider.generate_message`."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str
    history: list[HistoryItem] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    tools: list[ToolSpec] | None = None
    signal: CancelToken | None = Field(default=None, exclude=True)
    parameters: GenerationParameters | None = None


class GenerateMessageOutput(BaseModel):
    """Resposta do provedor.

    `structured` contém o JSON retornado quando há json_schema
    (normalmente `message` + campos coletados).
    """

    message: str = ""
    structured: dict[str, Any] | None = None
    tool_calls: list[ToolCallRecord] | None = None


class StreamChunk(BaseModel):
    """Chunk de streaming; `structured` só no chunk final (done=True)."""

    delta: str = ""
    accumulated: str = ""
    done: bool = False
    structured: dict[str, Any] | None = None
    tool_calls: list[ToolCallRecord] | None = None
