"""Geradores de identificadores determinísticos.

IDs são função pura do conteúdo (sha256 truncado): estáveis entre
processos e reinícios, sem contadores globais.
"""

from __future__ import annotations

import hashlib
import re
import uuid

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_DIGEST_LEN = 8
_SLUG_MAX = 40


def new_session_id() -> str:
    """Gera um session_id único."""

    return str(uuid.uuid4())


def slugify(text: str, max_len: int = _SLUG_MAX) -> str:
    """Normaliza texto para [a-z0-9_]."""
    slug = _SLUG_RE.sub("_", text.lower()).strip("_")
    return slug[:max_len].rstrip("_")


def content_digest(*parts: str) -> str:
    """sha256 truncado das partes (separadas por \\x1f)."""
    raw = "\x1f".join(parts).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:_DIGEST_LEN]


def route_id_for(title: str) -> str:
    return f"route_{slugify(title) or 'untitled'}_{content_digest('route', title)}"


def step_id_for(route_id: str, description: str | None, sequence: int) -> str:
    """ID de passo como função de (rota, descrição, posição na rota)."""
    label = slugify(description or "") or "step"
    return f"step_{label}_{content_digest(route_id, description or '', str(sequence))}"


def tool_id_for(name: str) -> str:
    return f"tool_{slugify(name) or 'anonymous'}_{content_digest('tool', name)}"
