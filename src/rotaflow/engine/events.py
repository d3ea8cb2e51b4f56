"""Registro de listeners de eventos de lote.

Listeners são registrados via `subscribe` e removidos pelo token retornado.
Um listener que lança exceção é isolado: o erro é logado e os demais
continuam recebendo o evento.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rotaflow.domain.enums import BatchEventType, StoppedReason
from rotaflow.domain.session.models import utcnow
from rotaflow.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass(slots=True)
class BatchEvent:
    """Evento emitido pelo executor de lotes."""

    type: BatchEventType
    timestamp: datetime = field(default_factory=utcnow)
    step_id: str | None = None
    reason: str | None = None
    stopped_reason: StoppedReason | None = None
    batch_size: int = 0
    timing: dict[str, float] | None = None


BatchEventListener = Callable[[BatchEvent], Any]


@dataclass(frozen=True, slots=True)
class SubscriptionToken:
    """Handle opaco retornado por `subscribe`."""

    value: int


class EventRegistry:
    """Registro de listeners indexado por token."""

    def __init__(self) -> None:
        self._listeners: dict[int, BatchEventListener] = {}
        self._counter = itertools.count(1)

    def subscribe(self, listener: BatchEventListener) -> SubscriptionToken:
        token = SubscriptionToken(next(self._counter))
        self._listeners[token.value] = listener
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self._listeners.pop(token.value, None) is not None

    def emit(self, event: BatchEvent) -> None:
        for token, listener in list(self._listeners.items()):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "batch_event_listener_failed",
                    extra={
                        "event_type": event.type.value,
                        "listener_token": token,
                        "error_type": type(exc).__name__,
                    },
                )
        logger.debug(
            "batch_event",
            extra={
                "event_type": event.type.value,
                "step_id": event.step_id,
                "batch_size": event.batch_size,
            },
        )

    def __len__(self) -> int:
        return len(self._listeners)
