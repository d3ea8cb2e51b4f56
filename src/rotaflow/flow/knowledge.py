"""Diretrizes (guidelines) e glossário (terms) usados na montagem de prompts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Guideline:
    """Regra condicional: "quando <condition>, faça <action>"."""

    action: str
    condition: str | None = None
    enabled: bool = True
    tags: tuple[str, ...] = ()

    def render(self) -> str:
        if self.condition:
            return f"When {self.condition}, then {self.action}"
        return self.action


@dataclass(slots=True)
class Term:
    """Termo de domínio apresentado ao modelo."""

    name: str
    description: str
    synonyms: tuple[str, ...] = field(default_factory=tuple)

    def render(self) -> str:
        if self.synonyms:
            return f"{self.name} ({', '.join(self.synonyms)}): {self.description}"
        return f"{self.name}: {self.description}"


def coerce_guideline(value: Guideline | Mapping[str, Any] | str) -> Guideline:
    if isinstance(value, Guideline):
        return value
    if isinstance(value, str):
        return Guideline(action=value)
    data = dict(value)
    data["tags"] = tuple(data.get("tags") or ())
    return Guideline(**data)


def coerce_term(value: Term | Mapping[str, Any]) -> Term:
    if isinstance(value, Term):
        return value
    data = dict(value)
    data["synonyms"] = tuple(data.get("synonyms") or ())
    return Term(**data)


def render_guidelines(guidelines: Iterable[Guideline]) -> list[str]:
    return [g.render() for g in guidelines if g.enabled]


def render_bullets(title: str, items: Sequence[str]) -> str:
    """Seção markdown com lista; vazio quando não há itens."""
    if not items:
        return ""
    lines = [f"## {title}"]
    lines.extend(f"- {item}" for item in items)
    return "\n".join(lines)
