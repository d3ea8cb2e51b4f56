"""Histórico de conversa no formato simplificado (role/content)."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, Field

from rotaflow.domain.enums import MessageRole


class ToolCallRecord(BaseModel):
    """Chamada de tool registrada numa mensagem do assistente."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class HistoryItem(BaseModel):
    """Item do histórico.

    - user/system: `content` obrigatório
    - assistant: `content` pode ser None quando só há tool_calls
    - tool: `tool_call_id` + `name` + `content` (qualquer valor serializável)
    """

    role: MessageRole
    content: Any = None
    name: str | None = None
    tool_calls: list[ToolCallRecord] | None = None
    tool_call_id: str | None = None


History = list[HistoryItem]


def user_message(content: str, name: str | None = None) -> HistoryItem:
    return HistoryItem(role=MessageRole.USER, content=content, name=name)


def assistant_message(
    content: str | None, tool_calls: Sequence[ToolCallRecord] | None = None
) -> HistoryItem:
    return HistoryItem(
        role=MessageRole.ASSISTANT,
        content=content,
        tool_calls=list(tool_calls) if tool_calls else None,
    )


def tool_message(tool_call_id: str, name: str, content: Any) -> HistoryItem:
    return HistoryItem(
        role=MessageRole.TOOL, tool_call_id=tool_call_id, name=name, content=content
    )


def system_message(content: str) -> HistoryItem:
    return HistoryItem(role=MessageRole.SYSTEM, content=content)


def normalize_history(items: Iterable[HistoryItem | dict[str, Any]]) -> History:
    """Aceita dicts (`{"role": "user", "content": "..."}`) ou HistoryItem."""
    out: History = []
    for item in items:
        if isinstance(item, HistoryItem):
            out.append(item)
        else:
            out.append(HistoryItem.model_validate(item))
    return out


def last_user_message(history: Sequence[HistoryItem]) -> str | None:
    for item in reversed(history):
        if item.role == MessageRole.USER and item.content:
            return str(item.content)
    return None


def format_history(history: Sequence[HistoryItem], limit: int | None = None) -> str:
    """Renderiza o histórico como texto para prompts."""
    items = list(history)[-limit:] if limit else list(history)
    lines: list[str] = []
    for item in items:
        if item.role == MessageRole.TOOL:
            payload = item.content if isinstance(item.content, str) else json.dumps(
                item.content, default=str, ensure_ascii=False
            )
            lines.append(f"tool ({item.name}): {payload}")
        elif item.role == MessageRole.ASSISTANT and item.tool_calls and not item.content:
            names = ", ".join(call.name for call in item.tool_calls)
            lines.append(f"assistant: [called tools: {names}]")
        else:
            lines.append(f"{item.role.value}: {item.content}")
    return "\n".join(lines)
