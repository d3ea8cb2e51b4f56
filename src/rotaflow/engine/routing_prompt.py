"""Prompts e schemas JSON das chamadas de roteamento.

Duas chamadas possíveis por turno:
- `routing_output`: pontua TODAS as rotas oferecidas (0-100) e, havendo rota
  ativa com candidatos, escolhe o passo (`selected_step_id`)
- `step_selection`: rota única com mais de um passo candidato
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from rotaflow.domain.constants import SCORE_BANDS
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.schema import JsonSchema, build_object_schema
from rotaflow.domain.session import Session
from rotaflow.engine.prompting import (
    AgentProfile,
    agent_section,
    collected_data_section,
    context_section,
    history_section,
    join_sections,
    last_message_section,
)
from rotaflow.flow.route import Route
from rotaflow.flow.step import Step

_DIRECTIVES_PROPERTY: dict[str, Any] = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Optional bullet points the response should address (concise)",
}


def scoring_rules() -> str:
    lines = ["Scoring rules:"]
    lines.extend(f"- {low}-{high}: {text}" for low, high, text in SCORE_BANDS)
    lines.append("Return ONLY JSON matching the provided schema. Include scores for ALL routes.")
    return "\n".join(lines)


def build_routing_schema(
    routes: Sequence[Route], active_steps: Sequence[Step] | None = None
) -> JsonSchema:
    """Schema `routing_output`: um score 0-100 obrigatório por id de rota."""
    route_ids = [r.id for r in routes]
    scores = {
        rid: {
            "type": "number",
            "minimum": 0,
            "maximum": 100,
            "description": (
                f"Score for route {rid} based on direct evidence, context "
                "and semantic fit (0-100)"
            ),
        }
        for rid in route_ids
    }
    properties: dict[str, Any] = {
        "context": {"type": "string", "description": "Brief summary of the user's intent/context"},
        "routes": build_object_schema(scores, required=route_ids),
        "response_directives": dict(_DIRECTIVES_PROPERTY),
    }
    required = ["context", "routes"]
    if active_steps:
        properties["selected_step_id"] = {
            "type": "string",
            "enum": [s.id for s in active_steps],
            "description": "The step ID to transition to within the active route",
        }
        properties["step_reasoning"] = {
            "type": "string",
            "description": "Brief explanation of why this step was selected",
        }
        required += ["selected_step_id", "step_reasoning"]
    schema = build_object_schema(properties, required=required)
    schema["description"] = (
        "Full intent analysis: score ALL available routes (0-100) using evidence and context"
    )
    return schema


def build_step_selection_schema(steps: Sequence[Step]) -> JsonSchema:
    """Schema `step_selection`: `enum` com os ids candidatos."""
    schema = build_object_schema(
        {
            "reasoning": {
                "type": "string",
                "description": "Brief explanation of why this step was selected",
            },
            "selected_step_id": {
                "type": "string",
                "enum": [s.id for s in steps],
                "description": "The ID of the selected step to transition to",
            },
            "response_directives": dict(_DIRECTIVES_PROPERTY),
        },
        required=["reasoning", "selected_step_id"],
    )
    schema["description"] = (
        "Step transition decision based on conversation context and collected data"
    )
    return schema


def _step_lines(index: int, step: Step, collect_label: str) -> list[str]:
    lines = [f"{index}. Step ID: {step.id}", f"   Description: {step.description or 'N/A'}"]
    if step.condition:
        lines.append(f"   When this step should be completed: {step.condition}")
    if step.requires:
        lines.append(f"   Required data: {', '.join(step.requires)}")
    if step.collect:
        lines.append(f"   {collect_label}: {', '.join(step.collect)}")
    return lines


def routes_overview(routes: Sequence[Route]) -> str:
    lines = ["Available routes:"]
    for route in routes:
        lines.append(f"- {route.id}: {route.title}")
        if route.description:
            lines.append(f"  Description: {route.description}")
        if route.condition_texts:
            lines.append(f"  Conditions: {'; '.join(route.condition_texts)}")
    return "\n".join(lines)


def build_routing_prompt(
    *,
    profile: AgentProfile,
    routes: Sequence[Route],
    session: Session,
    history: Sequence[HistoryItem],
    active_steps: Sequence[Step] | None = None,
    context: Mapping[str, Any] | None = None,
    history_limit: int = 10,
) -> str:
    parts: list[str] = [
        agent_section(profile),
        "Task: Intent analysis and route scoring (0-100). Score ALL listed routes.",
        context_section(context or {}),
    ]
    if session.current_route is not None:
        info = [
            "Current conversation context:",
            f"- Active route: {session.current_route.title} ({session.current_route.id})",
        ]
        if session.current_step is not None:
            info.append(f"- Current step: {session.current_step.id}")
            if session.current_step.description:
                info.append(f'  "{session.current_step.description}"')
        if session.data:
            info.append(f"- Collected fields: {', '.join(sorted(session.data))}")
        info.append(
            "Note: User is mid-conversation. They may want to continue the current route "
            "or switch to a new one based on their intent."
        )
        parts.append("\n".join(info))

        if active_steps:
            steps_info = ["Available steps in active route (choose one to transition to):"]
            for idx, step in enumerate(active_steps, start=1):
                steps_info.extend(_step_lines(idx, step, "Will collect"))
            steps_info.append("")
            steps_info.append(
                "IMPORTANT: You MUST select a step to transition to, based on what has "
                "been collected and what is still needed."
            )
            parts.append("\n".join(steps_info))

    parts += [
        history_section(history, history_limit),
        last_message_section(history),
        routes_overview(routes),
        scoring_rules(),
    ]
    return join_sections(parts)


def build_step_selection_prompt(
    *,
    profile: AgentProfile,
    route: Route,
    current_step: Step | None,
    candidates: Sequence[Step],
    data: Mapping[str, Any],
    history: Sequence[HistoryItem],
    context: Mapping[str, Any] | None = None,
    history_limit: int = 10,
) -> str:
    if current_step is not None:
        current = (
            f"Current Step: {current_step.id}\n"
            f"Description: {current_step.description or 'N/A'}"
        )
    else:
        current = "Current Step: None (entering route)"

    steps_block = ["Available Steps to Transition To:"]
    for idx, step in enumerate(candidates, start=1):
        steps_block.extend(_step_lines(idx, step, "Collects"))

    task = "\n".join(
        [
            "Task: Decide which step to transition to based on:",
            "1. The user's current message and intent",
            "2. The conversation history and context",
            "3. The collected data we already have",
            "4. The conditions and requirements of each step",
            "",
            "Steps with skip conditions that are met have already been filtered out.",
            "Return ONLY JSON matching the provided schema.",
        ]
    )
    return join_sections(
        [
            agent_section(profile),
            context_section(context or {}),
            f"Active Route: {route.title}\nDescription: {route.description or 'N/A'}",
            current,
            collected_data_section(data),
            history_section(history, history_limit),
            last_message_section(history),
            "\n".join(steps_block),
            task,
        ]
    )
