"""Estado transiente de um turno do Agent.

Um `TurnState` nasce em `Agent._prepare` e morre ao fim do turno; nunca é
persistido. Guarda a sessão de entrada (para devolver intacta em falha
fatal) e acumula atualizações vindas de tools durante o lote.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from rotaflow.domain.cancellation import CancelToken
from rotaflow.domain.history import HistoryItem, ToolCallRecord
from rotaflow.domain.session import Session
from rotaflow.engine.batch_executor import BatchResult
from rotaflow.flow.route import Route


class TurnKind(StrEnum):
    """Caminho de geração escolhido para o turno."""

    BATCH = "batch"
    COMPLETION = "completion"
    FALLBACK = "fallback"


@dataclass(slots=True)
class TurnState:
    history: list[HistoryItem]
    original: Session
    session: Session
    context: dict[str, Any]
    signal: CancelToken | None = None
    route: Route | None = None
    directives: list[str] | None = None
    kind: TurnKind = TurnKind.FALLBACK
    batch: BatchResult | None = None
    tool_data: dict[str, Any] = field(default_factory=dict)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
