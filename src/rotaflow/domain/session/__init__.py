"""Sessão: models imutáveis e operações puras de atualização."""

from rotaflow.domain.session.models import (
    PendingTransition,
    RouteHistoryEntry,
    RoutePosition,
    Session,
    SessionMetadata,
    StepPosition,
)
from rotaflow.domain.session.operations import (
    clear_pending_transition,
    create_session,
    enter_route,
    enter_step,
    mark_route_completed,
    merge_data,
    replace_data,
    session_from_record,
    session_to_record,
    set_pending_transition,
)

__all__ = [
    "Session",
    "SessionMetadata",
    "RoutePosition",
    "StepPosition",
    "RouteHistoryEntry",
    "PendingTransition",
    "create_session",
    "enter_route",
    "enter_step",
    "merge_data",
    "replace_data",
    "mark_route_completed",
    "set_pending_transition",
    "clear_pending_transition",
    "session_to_record",
    "session_from_record",
]
