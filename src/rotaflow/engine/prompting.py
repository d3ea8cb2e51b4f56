"""Blocos reutilizáveis de prompt (perfil do agente, contexto, histórico).

Os prompts do motor são compostos por seções markdown independentes;
seções vazias são descartadas em `join_sections`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from rotaflow.domain.history import HistoryItem, format_history, last_user_message
from rotaflow.domain.schema import JsonSchema, describe_field
from rotaflow.flow.knowledge import Guideline, Term, render_bullets, render_guidelines

_TEMPLATE_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

DEFAULT_HISTORY_LIMIT = 10


@dataclass(slots=True)
class AgentProfile:
    """Identidade do agente apresentada em todos os prompts."""

    name: str
    description: str | None = None
    goal: str | None = None
    personality: str | None = None
    guidelines: Sequence[Guideline] = field(default_factory=tuple)
    terms: Sequence[Term] = field(default_factory=tuple)
    schema: JsonSchema | None = None


def join_sections(parts: Sequence[str | None]) -> str:
    return "\n\n".join(p.strip() for p in parts if p and p.strip())


def render_template(text: str | None, values: Mapping[str, Any]) -> str:
    """Substitui ``{{ caminho.pontuado }}``; caminhos inexistentes ficam intactos."""
    if not text:
        return ""

    def _resolve(match: re.Match[str]) -> str:
        current: Any = values
        for part in match.group(1).split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return match.group(0)
        return "" if current is None else str(current)

    return _TEMPLATE_RE.sub(_resolve, text)


def template_values(
    context: Mapping[str, Any], data: Mapping[str, Any], session: Any = None
) -> dict[str, Any]:
    values: dict[str, Any] = {"context": dict(context), "data": dict(data)}
    if session is not None:
        values["session"] = {
            "id": session.id,
            "current_route": session.current_route_id,
            "current_step": session.current_step_id,
        }
    return values


def agent_section(profile: AgentProfile) -> str:
    lines = [f"Agent: {profile.name}"]
    if profile.goal:
        lines.append(f"Goal: {profile.goal}")
    if profile.description:
        lines.append(f"Description: {profile.description}")
    if profile.personality:
        lines.append(f"Personality: {profile.personality.strip()}")
    return "\n".join(lines)


def context_section(context: Mapping[str, Any]) -> str:
    if not context:
        return ""
    payload = json.dumps(dict(context), default=str, ensure_ascii=False, indent=2)
    return f"## Context\n```json\n{payload}\n```"


def collected_data_section(data: Mapping[str, Any]) -> str:
    if not data:
        return "Collected Data: None yet"
    payload = json.dumps(dict(data), default=str, ensure_ascii=False, indent=2)
    return f"Collected Data So Far:\n{payload}"


def history_section(history: Sequence[HistoryItem], limit: int = DEFAULT_HISTORY_LIMIT) -> str:
    if not history:
        return ""
    return f"Recent conversation:\n{format_history(history, limit)}"


def last_message_section(history: Sequence[HistoryItem]) -> str:
    message = last_user_message(history)
    return f"Last user message:\n{message}" if message else ""


def guidelines_section(guidelines: Sequence[Guideline]) -> str:
    return render_bullets("Guidelines", render_guidelines(guidelines))


def terms_section(terms: Sequence[Term]) -> str:
    return render_bullets("Glossary", [t.render() for t in terms])


def directives_section(directives: Sequence[str] | None) -> str:
    if not directives:
        return ""
    return "Address concisely:\n" + "\n".join(f"- {d}" for d in directives)


def field_line(name: str, schema: JsonSchema | None) -> str:
    """``campo (tipo): descrição`` quando o schema conhece o campo."""
    if not schema or name not in (schema.get("properties") or {}):
        return name
    type_name, description = describe_field(schema, name)
    if description:
        return f"{name} ({type_name}): {description}"
    return f"{name} ({type_name})"
