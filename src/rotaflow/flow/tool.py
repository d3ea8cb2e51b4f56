"""Contrato de tools: definição, referência (por id ou inline) e resultado.

Uma tool pode ser referenciada por id registrado (`ToolById`) ou fornecida
inline (`InlineTool`); as duas formas resolvem para o mesmo contrato de
handler: ``handler(ctx, args) -> str | ToolResult | Mapping``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from rotaflow.ai.contracts.provider import ToolSpec
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.schema import JsonSchema
from rotaflow.utils.ids import tool_id_for

ToolHandler = Callable[["ToolContext", dict[str, Any]], Any]


@dataclass(slots=True)
class ToolContext:
    """Contexto entregue ao handler de uma tool."""

    context: dict[str, Any]
    data: dict[str, Any]
    history: list[HistoryItem]
    update_context: Callable[[Mapping[str, Any]], Awaitable[None]]
    route_id: str | None = None
    step_id: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Resultado estruturado de uma tool."""

    data: Any = None
    data_update: dict[str, Any] | None = None
    context_update: dict[str, Any] | None = None


@dataclass(slots=True)
class ToolDefinition:
    """Tool com handler, descrição e schema de parâmetros."""

    id: str
    handler: ToolHandler
    description: str = ""
    parameters: JsonSchema = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.id, description=self.description, parameters=dict(self.parameters)
        )


@dataclass(frozen=True, slots=True)
class ToolById:
    """Referência a uma tool registrada (agente, rota ou domínio)."""

    id: str


@dataclass(frozen=True, slots=True)
class InlineTool:
    """Tool fornecida diretamente no passo/rota."""

    definition: ToolDefinition

    @property
    def id(self) -> str:
        return self.definition.id


ToolRef = Union[ToolById, InlineTool]


def define_tool(
    handler: ToolHandler,
    *,
    id: str | None = None,  # noqa: A002
    description: str | None = None,
    parameters: JsonSchema | None = None,
    name: str | None = None,
) -> ToolDefinition:
    """Cria ToolDefinition a partir de um callable (id determinístico pelo nome)."""
    label = name or getattr(handler, "__name__", None) or "tool"
    return ToolDefinition(
        id=id or tool_id_for(label),
        handler=handler,
        description=description or (handler.__doc__ or "").strip(),
        parameters=parameters or {"type": "object", "properties": {}},
        name=label,
    )


def tool_ref(value: Any) -> ToolRef:
    """Normaliza str | ToolDefinition | callable | ToolRef para ToolRef."""
    if isinstance(value, (ToolById, InlineTool)):
        return value
    if isinstance(value, str):
        return ToolById(value)
    if isinstance(value, ToolDefinition):
        return InlineTool(value)
    if callable(value):
        return InlineTool(define_tool(value))
    raise TypeError(f"Referência de tool inválida: {type(value).__name__}")


def normalize_tool_result(raw: Any) -> ToolResult:
    """Converte o retorno polimórfico do handler em ToolResult.

    - str ou outro valor simples: vira `data`
    - ToolResult: mantido
    - Mapping com `data`/`data_update`/`context_update`: estruturado
    """
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, Mapping) and (
        {"data_update", "context_update"} & raw.keys()
        or set(raw.keys()) == {"data"}
    ):
        return ToolResult(
            data=raw.get("data"),
            data_update=dict(raw["data_update"]) if raw.get("data_update") else None,
            context_update=dict(raw["context_update"]) if raw.get("context_update") else None,
        )
    return ToolResult(data=raw)
