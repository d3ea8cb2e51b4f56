"""Resultados de turno devolvidos pelo Agent (completo e streaming)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rotaflow.domain.enums import FATAL_STOP_REASONS, StoppedReason
from rotaflow.domain.history import ToolCallRecord
from rotaflow.domain.schema import ValidationError
from rotaflow.domain.session import Session
from rotaflow.engine.batch_executor import BatchExecutionError, StepRef
from rotaflow.flow.route import Route
from rotaflow.flow.step import Step


@dataclass(slots=True)
class AgentResponse:
    """Resultado de `Agent.respond`.

    Em falha fatal (prepare/llm) `session` é a sessão recebida, sem
    alterações, e `error` descreve a causa; o chamador pode repetir o turno.
    """

    message: str
    session: Session
    route: Route | None = None
    step: Step | None = None
    tool_calls: list[ToolCallRecord] | None = None
    is_route_complete: bool = False
    stopped_reason: StoppedReason | None = None
    executed_steps: list[StepRef] = field(default_factory=list)
    error: BatchExecutionError | None = None
    validation_errors: list[ValidationError] = field(default_factory=list)
    structured: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.stopped_reason in FATAL_STOP_REASONS


@dataclass(slots=True)
class AgentStreamChunk:
    """Chunk de `Agent.respond_stream`; o último (done=True) traz o resultado."""

    delta: str = ""
    accumulated: str = ""
    done: bool = False
    session: Session | None = None
    route: Route | None = None
    tool_calls: list[ToolCallRecord] | None = None
    is_route_complete: bool = False
    stopped_reason: StoppedReason | None = None
    executed_steps: list[StepRef] = field(default_factory=list)
    error: BatchExecutionError | None = None
    structured: dict[str, Any] | None = None

    @classmethod
    def final(cls, response: AgentResponse) -> AgentStreamChunk:
        return cls(
            delta="",
            accumulated=response.message,
            done=True,
            session=response.session,
            route=response.route,
            tool_calls=response.tool_calls,
            is_route_complete=response.is_route_complete,
            stopped_reason=response.stopped_reason,
            executed_steps=list(response.executed_steps),
            error=response.error,
            structured=response.structured,
        )
