"""Contexto de turno para logs (correlation_id / session_id).

Substitui o middleware HTTP: aqui o "request" é um turno do agente.
Cada sessão roda em sua própria task asyncio, então ContextVar isola
os valores entre sessões concorrentes sem estado global mutável.
"""

from __future__ import annotations

import contextlib
import uuid
from collections.abc import Generator
from contextvars import ContextVar

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
_session_id: ContextVar[str] = ContextVar("session_id", default="")


def get_correlation_id() -> str:
    """Retorna o correlation_id corrente (ou vazio)."""

    return _correlation_id.get()


def get_session_id() -> str:
    """Retorna o session_id corrente (ou vazio)."""

    return _session_id.get()


@contextlib.contextmanager
def bind_turn_context(
    session_id: str, correlation_id: str | None = None
) -> Generator[str, None, None]:
    """Define correlation_id/session_id durante um turno e restaura ao sair."""
    cid = correlation_id or get_correlation_id() or str(uuid.uuid4())
    cid_token = _correlation_id.set(cid)
    sid_token = _session_id.set(session_id)
    try:
        yield cid
    finally:
        _session_id.reset(sid_token)
        _correlation_id.reset(cid_token)
