"""Enums canônicos do motor de conversação.

Conforme o contrato do executor de lotes:
- StoppedReason explica por que um lote parou
- BatchErrorType classifica falhas (fatais e não fatais)
- BatchEventType define a ordem estrita dos eventos emitidos
"""

from __future__ import annotations

from enum import StrEnum


class StoppedReason(StrEnum):
    """Motivo de parada de um lote."""

    NEEDS_INPUT = "needs_input"
    """Próximo passo precisa de dados que ainda não existem."""

    END_ROUTE = "end_route"
    """Cadeia alcançou o sentinela END_ROUTE."""

    ROUTE_COMPLETE = "route_complete"
    """Cadeia esgotada sem sentinela explícito."""

    PREPARE_ERROR = "prepare_error"
    """Hook prepare falhou; lote abortado."""

    LLM_ERROR = "llm_error"
    """Chamada ao modelo falhou ou foi cancelada."""

    VALIDATION_ERROR = "validation_error"
    """Dados coletados não batem com o schema (dados mesmo assim mesclados)."""


class BatchErrorType(StrEnum):
    """Taxonomia de erros de lote."""

    PREPARE_HOOK = "prepare_hook"
    LLM_CALL = "llm_call"
    DATA_VALIDATION = "data_validation"
    FINALIZE_HOOK = "finalize_hook"


class BatchEventType(StrEnum):
    """Eventos emitidos pelo executor, em ordem estrita."""

    BATCH_START = "batch_start"
    STEP_INCLUDED = "step_included"
    STEP_SKIPPED = "step_skipped"
    BATCH_STOP = "batch_stop"
    BATCH_COMPLETE = "batch_complete"


class PendingTransitionReason(StrEnum):
    """Origem de uma transição pendente."""

    ROUTE_COMPLETE = "route_complete"
    MANUAL = "manual"


class MessageRole(StrEnum):
    """Papel de um item do histórico."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class HookOrder(StrEnum):
    """Ordem de execução de onDataUpdate/onContextUpdate."""

    AGENT_FIRST = "agent_first"
    ROUTE_FIRST = "route_first"


# Motivos que abortam o lote e devolvem a sessão intacta
FATAL_STOP_REASONS = frozenset({
    StoppedReason.PREPARE_ERROR,
    StoppedReason.LLM_ERROR,
})

# Motivos que indicam que a rota chegou ao fim
COMPLETION_STOP_REASONS = frozenset({
    StoppedReason.END_ROUTE,
    StoppedReason.ROUTE_COMPLETE,
})
