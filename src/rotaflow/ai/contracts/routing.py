"""Contratos de saída estruturada do roteamento."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class RoutingDecisionOutput(BaseModel):
    """Saída da chamada de pontuação de rotas (schema `routing_output`)."""

    context: str | None = None
    routes: dict[str, float] = Field(default_factory=dict)
    response_directives: list[str] | None = None
    selected_step_id: str | None = None
    step_reasoning: str | None = None

    @field_validator("routes")
    @classmethod
    def _clamp_scores(cls, value: dict[str, float]) -> dict[str, float]:
        return {k: max(0.0, min(100.0, float(v))) for k, v in value.items()}


class StepSelectionOutput(BaseModel):
    """Saída da seleção de passo em rota única (schema `step_selection`)."""

    reasoning: str | None = None
    selected_step_id: str
    response_directives: list[str] | None = None
