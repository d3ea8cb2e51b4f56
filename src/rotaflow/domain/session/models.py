"""Models de sessão — posição na conversa e dados coletados.

Session é um valor imutável:
- Atualizações sempre retornam uma nova instância (ver operations.py)
- `data` é a visão da rota ativa; `data_by_route[rota_ativa]` espelha `data`
- A sessão pertence ao chamador; o motor nunca a remove
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rotaflow.domain.enums import PendingTransitionReason


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class RoutePosition(BaseModel):
    """Rota ativa."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    entered_at: datetime = Field(default_factory=utcnow)


class StepPosition(BaseModel):
    """Passo ativo dentro da rota."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str | None = None
    entered_at: datetime = Field(default_factory=utcnow)


class RouteHistoryEntry(BaseModel):
    """Entrada/saída de uma rota ao longo da sessão."""

    model_config = ConfigDict(frozen=True)

    route_id: str
    entered_at: datetime = Field(default_factory=utcnow)
    exited_at: datetime | None = None
    completed: bool = False


class PendingTransition(BaseModel):
    """Troca de rota adiada, aplicada no início do próximo turno."""

    model_config = ConfigDict(frozen=True)

    target_route_id: str
    condition: str | None = None
    reason: PendingTransitionReason = PendingTransitionReason.MANUAL


class SessionMetadata(BaseModel):
    """Timestamps da sessão + chaves livres do chamador."""

    model_config = ConfigDict(frozen=True, extra="allow")

    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """Estado completo da conversa, serializável para Redis/JSON."""

    model_config = ConfigDict(frozen=True)

    id: str
    current_route: RoutePosition | None = None
    current_step: StepPosition | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    data_by_route: dict[str, dict[str, Any]] = Field(default_factory=dict)
    route_history: list[RouteHistoryEntry] = Field(default_factory=list)
    pending_transition: PendingTransition | None = None
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    @property
    def current_route_id(self) -> str | None:
        return self.current_route.id if self.current_route else None

    @property
    def current_step_id(self) -> str | None:
        return self.current_step.id if self.current_step else None

    def has_value(self, field: str) -> bool:
        """True se o campo existe em `data` com valor não-None."""
        return self.data.get(field) is not None
