"""Prompt combinado de um lote: todos os passos numa única chamada ao modelo.

O prompt contém o texto de cada passo do lote e a união deduplicada dos
campos `collect`; o schema de resposta exige `message` e expõe cada campo
coletado como propriedade de topo.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from rotaflow.domain.history import HistoryItem
from rotaflow.domain.schema import JsonSchema, build_object_schema
from rotaflow.domain.session import Session
from rotaflow.engine.batch_executor import collect_fields_union
from rotaflow.engine.prompting import (
    AgentProfile,
    agent_section,
    context_section,
    directives_section,
    field_line,
    guidelines_section,
    history_section,
    join_sections,
    last_message_section,
    render_template,
    template_values,
    terms_section,
)
from rotaflow.flow.knowledge import render_bullets
from rotaflow.flow.route import Route
from rotaflow.flow.step import Step

DEFAULT_COMPLETION_INSTRUCTION = (
    "Summarize what was accomplished and confirm completion"
)


@dataclass(slots=True)
class BatchPrompt:
    prompt: str
    collect_fields: list[str] = field(default_factory=list)
    step_count: int = 0


class BatchPromptBuilder:
    """Monta prompts e schemas de resposta para lotes de passos."""

    def __init__(self, history_limit: int = 10) -> None:
        self._history_limit = history_limit

    def build(
        self,
        *,
        steps: Sequence[Step],
        route: Route,
        profile: AgentProfile,
        session: Session,
        context: Mapping[str, Any] | None = None,
        history: Sequence[HistoryItem] = (),
        directives: Sequence[str] | None = None,
        awaiting_step: Step | None = None,
    ) -> BatchPrompt:
        ctx = dict(context or {})
        values = template_values(ctx, session.data, session)
        collect_fields = collect_fields_union(steps)

        parts: list[str] = [
            agent_section(profile),
            context_section(ctx),
            self._route_section(route),
            terms_section(profile.terms),
            guidelines_section([*profile.guidelines, *route.guidelines]),
            render_bullets("Rules", list(route.rules)),
            render_bullets("Prohibitions", list(route.prohibitions)),
            history_section(history, self._history_limit),
        ]

        step_sections = self._step_sections(steps, values)
        if len(steps) > 1:
            parts.append(
                "## Current Conversation Flow\n\n"
                "You are handling multiple aspects of this conversation in a single response.\n\n"
                + step_sections
            )
        elif steps:
            parts.append("## Current Step\n\n" + step_sections)

        if awaiting_step is not None and awaiting_step not in steps:
            parts.append(self._awaiting_section(awaiting_step, values, profile.schema))

        parts.append(directives_section(directives))
        if collect_fields:
            parts.append(self._data_collection_section(collect_fields, profile.schema))
        parts.append(self._response_format_section(collect_fields))

        return BatchPrompt(
            prompt=join_sections(parts),
            collect_fields=collect_fields,
            step_count=len(steps),
        )

    def build_response_schema(
        self, collect_fields: Sequence[str], schema: JsonSchema | None = None
    ) -> JsonSchema:
        """`message` obrigatório + um campo opcional por item coletado."""
        known = (schema or {}).get("properties") or {}
        properties: dict[str, Any] = {
            "message": {"type": "string", "description": "Response to the user"},
        }
        for name in collect_fields:
            properties[name] = dict(known.get(name) or {"description": f"Value for {name}"})
        return build_object_schema(properties, required=["message"])

    def build_completion_prompt(
        self,
        *,
        route: Route,
        profile: AgentProfile,
        session: Session,
        context: Mapping[str, Any] | None = None,
        history: Sequence[HistoryItem] = (),
    ) -> str:
        """Prompt da mensagem de conclusão (sem coleta de dados)."""
        ctx = dict(context or {})
        values = template_values(ctx, session.data, session)
        instruction = (
            render_template(route.completion_prompt, values)
            or DEFAULT_COMPLETION_INSTRUCTION
        )
        always_active = [
            g for g in [*profile.guidelines, *route.guidelines] if not g.condition
        ]
        collected = json.dumps(session.data, default=str, ensure_ascii=False, indent=2)
        return join_sections(
            [
                agent_section(profile),
                context_section(ctx),
                self._route_section(route),
                terms_section(profile.terms),
                guidelines_section(always_active),
                history_section(history, self._history_limit),
                directives_section(
                    [
                        f"Task completed: {route.title}",
                        f"Collected data: {collected}",
                        "Do NOT ask for more information - the task is complete",
                        instruction,
                    ]
                ),
                self._response_format_section([]),
            ]
        )

    def build_fallback_prompt(
        self,
        *,
        profile: AgentProfile,
        session: Session,
        context: Mapping[str, Any] | None = None,
        history: Sequence[HistoryItem] = (),
        directives: Sequence[str] | None = None,
        route: Route | None = None,
    ) -> str:
        """Resposta sem lote: nenhuma rota selecionada ou rota sem passos executáveis."""
        ctx = dict(context or {})
        guidelines = [*profile.guidelines, *(route.guidelines if route else ())]
        return join_sections(
            [
                agent_section(profile),
                context_section(ctx),
                self._route_section(route) if route is not None else "",
                terms_section(profile.terms),
                guidelines_section(guidelines),
                history_section(history, self._history_limit),
                last_message_section(history),
                directives_section(directives),
                self._response_format_section([]),
            ]
        )

    def build_extraction_prompt(
        self,
        *,
        fields: Sequence[str],
        route: Route,
        profile: AgentProfile,
        context: Mapping[str, Any] | None = None,
        history: Sequence[HistoryItem] = (),
    ) -> str:
        """Pré-extração: só valores explicitamente informados pelo usuário."""
        lines = [
            "Task: Extract structured data from the conversation.",
            "Only include values the user explicitly provided. "
            "Use null for anything not mentioned.",
            "",
            "Fields:",
        ]
        lines.extend(f"- {field_line(f, profile.schema)}" for f in fields)
        lines.append("")
        lines.append("Return ONLY JSON matching the provided schema.")
        return join_sections(
            [
                agent_section(profile),
                context_section(dict(context or {})),
                self._route_section(route),
                history_section(history, self._history_limit),
                last_message_section(history),
                "\n".join(lines),
            ]
        )

    def build_extraction_schema(
        self, fields: Sequence[str], schema: JsonSchema | None = None
    ) -> JsonSchema:
        known = (schema or {}).get("properties") or {}
        properties = {name: dict(known.get(name) or {}) for name in fields}
        return build_object_schema(properties)

    # -- seções ---------------------------------------------------------------

    @staticmethod
    def _route_section(route: Route) -> str:
        lines = [f"## Route: {route.title}"]
        if route.description:
            lines.append(route.description)
        return "\n".join(lines)

    @staticmethod
    def _step_sections(steps: Sequence[Step], values: Mapping[str, Any]) -> str:
        sections: list[str] = []
        for number, step in enumerate(steps, start=1):
            section = f"### Step {number}: {step.description or f'Step {number}'}\n"
            prompt = render_template(step.prompt, values)
            if prompt:
                section += f"\n{prompt}\n"
            if step.collect:
                collect = ", ".join(f"`{f}`" for f in step.collect)
                section += f"\n**Collect:** {collect}\n"
            if step.guidelines:
                section += "\n" + "\n".join(f"- {g}" for g in step.guidelines) + "\n"
            sections.append(section)
        return "\n".join(sections)

    @staticmethod
    def _awaiting_section(
        step: Step, values: Mapping[str, Any], schema: JsonSchema | None
    ) -> str:
        lines = [
            "## Next Step",
            "",
            "After handling the above, ask the user for the information below.",
            f"Step: {step.description or step.id}",
        ]
        prompt = render_template(step.prompt, values)
        if prompt:
            lines.append(prompt)
        missing = [f for f in (*step.requires, *step.collect) if values["data"].get(f) is None]
        if missing:
            lines.append("Information needed:")
            lines.extend(f"- {field_line(f, schema)}" for f in dict.fromkeys(missing))
        return "\n".join(lines)

    @staticmethod
    def _data_collection_section(fields: Sequence[str], schema: JsonSchema | None) -> str:
        lines = [
            "## Data Collection",
            "",
            "Extract the following information from the conversation:",
            "",
        ]
        lines.extend(f"- {field_line(f, schema)}" for f in fields)
        return "\n".join(lines)

    @staticmethod
    def _response_format_section(fields: Sequence[str]) -> str:
        lines = [
            "## Response Format",
            "",
            "Return JSON with:",
            "- `message`: Your response to the user",
        ]
        if fields:
            lines.append("")
            lines.append("Include the following collected fields as top-level properties:")
            lines.extend(f"- `{f}`" for f in fields)
        return "\n".join(lines)
