"""Operações puras sobre Session.

Nenhuma função aqui muta a sessão recebida: todas devolvem cópias
(`model_copy(update=...)`) com dicts/listas copiados de forma rasa.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from rotaflow.domain.enums import PendingTransitionReason
from rotaflow.domain.session.models import (
    PendingTransition,
    RouteHistoryEntry,
    RoutePosition,
    Session,
    SessionMetadata,
    StepPosition,
    utcnow,
)


def _touched(session: Session) -> SessionMetadata:
    return session.metadata.model_copy(update={"last_updated_at": utcnow()})


def create_session(
    session_id: str | None = None, metadata: Mapping[str, Any] | None = None
) -> Session:
    """Cria sessão vazia (id uuid4 quando não informado)."""
    now = utcnow()
    meta = SessionMetadata(**{**dict(metadata or {}), "created_at": now, "last_updated_at": now})
    return Session(id=session_id or str(uuid.uuid4()), metadata=meta)


def enter_route(session: Session, route_id: str, route_title: str) -> Session:
    """Entra numa rota.

    - Salva `data` atual em `data_by_route[rota_atual]`
    - Fecha (exited_at) a entrada aberta da rota atual no histórico
    - Carrega os dados já coletados da nova rota (retomada) ou {}
    - Limpa o passo atual
    """
    now = utcnow()
    data_by_route = dict(session.data_by_route)
    history = list(session.route_history)

    if session.current_route is not None:
        current_id = session.current_route.id
        data_by_route[current_id] = dict(session.data)
        for idx in range(len(history) - 1, -1, -1):
            entry = history[idx]
            if entry.route_id == current_id and entry.exited_at is None:
                history[idx] = entry.model_copy(update={"exited_at": now})
                break

    new_data = dict(data_by_route.get(route_id, {}))
    data_by_route[route_id] = dict(new_data)
    history.append(RouteHistoryEntry(route_id=route_id, entered_at=now))

    return session.model_copy(
        update={
            "current_route": RoutePosition(id=route_id, title=route_title, entered_at=now),
            "current_step": None,
            "data": new_data,
            "data_by_route": data_by_route,
            "route_history": history,
            "metadata": _touched(session),
        }
    )


def enter_step(session: Session, step_id: str, description: str | None = None) -> Session:
    """Posiciona a sessão num passo da rota atual."""
    return session.model_copy(
        update={
            "current_step": StepPosition(id=step_id, description=description),
            "metadata": _touched(session),
        }
    )


def merge_data(session: Session, update: Mapping[str, Any]) -> Session:
    """Merge raso em `data` e em `data_by_route[rota_atual]` (last-write-wins)."""
    if not update:
        return session
    merged = {**session.data, **dict(update)}
    data_by_route = dict(session.data_by_route)
    if session.current_route is not None:
        data_by_route[session.current_route.id] = dict(merged)
    return session.model_copy(
        update={
            "data": merged,
            "data_by_route": data_by_route,
            "metadata": _touched(session),
        }
    )


def replace_data(session: Session, data: Mapping[str, Any]) -> Session:
    """Substitui `data` por completo (usado após hooks onDataUpdate)."""
    new_data = dict(data)
    data_by_route = dict(session.data_by_route)
    if session.current_route is not None:
        data_by_route[session.current_route.id] = dict(new_data)
    return session.model_copy(
        update={
            "data": new_data,
            "data_by_route": data_by_route,
            "metadata": _touched(session),
        }
    )


def mark_route_completed(session: Session, route_id: str | None = None) -> Session:
    """Marca `completed=True` na entrada aberta (mais recente) da rota."""
    target = route_id or session.current_route_id
    if target is None:
        return session
    history = list(session.route_history)
    for idx in range(len(history) - 1, -1, -1):
        if history[idx].route_id == target:
            if history[idx].completed:
                return session
            history[idx] = history[idx].model_copy(update={"completed": True})
            return session.model_copy(
                update={"route_history": history, "metadata": _touched(session)}
            )
    return session


def set_pending_transition(
    session: Session,
    target_route_id: str,
    condition: str | None = None,
    reason: PendingTransitionReason = PendingTransitionReason.MANUAL,
) -> Session:
    """Registra a (única) transição pendente, substituindo a anterior."""
    pending = PendingTransition(
        target_route_id=target_route_id, condition=condition, reason=reason
    )
    return session.model_copy(
        update={"pending_transition": pending, "metadata": _touched(session)}
    )


def clear_pending_transition(session: Session) -> Session:
    if session.pending_transition is None:
        return session
    return session.model_copy(
        update={"pending_transition": None, "metadata": _touched(session)}
    )


def session_to_record(session: Session) -> dict[str, Any]:
    """Converte a sessão para o formato de repositório.

    Chaves: current_route, current_step e collected_data (dados, histórico
    de rotas, transição pendente e metadata).
    """
    return {
        "current_route": session.current_route_id,
        "current_step": session.current_step_id,
        "collected_data": {
            "data": dict(session.data),
            "data_by_route": {k: dict(v) for k, v in session.data_by_route.items()},
            "route_history": [
                entry.model_dump(mode="json") for entry in session.route_history
            ],
            "current_route_title": session.current_route.title if session.current_route else None,
            "current_step_description": (
                session.current_step.description if session.current_step else None
            ),
            "pending_transition": (
                session.pending_transition.model_dump(mode="json")
                if session.pending_transition
                else None
            ),
            "metadata": session.metadata.model_dump(mode="json"),
        },
    }


def session_from_record(session_id: str, record: Mapping[str, Any]) -> Session:
    """Reconstrói a sessão a partir do formato de repositório."""
    collected: Mapping[str, Any] = record.get("collected_data") or {}
    route_id = record.get("current_route")
    step_id = record.get("current_step")

    current_route = (
        RoutePosition(id=route_id, title=collected.get("current_route_title") or route_id)
        if route_id
        else None
    )
    current_step = (
        StepPosition(id=step_id, description=collected.get("current_step_description"))
        if step_id
        else None
    )
    pending_raw = collected.get("pending_transition")
    metadata_raw = collected.get("metadata") or {}

    return Session(
        id=session_id,
        current_route=current_route,
        current_step=current_step,
        data=dict(collected.get("data") or {}),
        data_by_route={k: dict(v) for k, v in (collected.get("data_by_route") or {}).items()},
        route_history=[
            RouteHistoryEntry.model_validate(entry)
            for entry in collected.get("route_history") or []
        ],
        pending_transition=(
            PendingTransition.model_validate(pending_raw) if pending_raw else None
        ),
        metadata=SessionMetadata.model_validate(metadata_raw),
    )
