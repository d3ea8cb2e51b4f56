"""Rota: grafo de passos em arena (nós + arestas por índice).

O builder devolve handles (`StepHandle`) em vez de mutar e retornar `self`:

    route = Route(title="Onboarding", required_fields=["name", "email"])
    ask_name = route.initial_step.next_step(prompt="Pergunte o nome", collect=["name"])
    ask_email = ask_name.next_step(prompt="Pergunte o email", collect=["email"])
    ask_email.end_route()

Após a construção a rota é tratada como somente-leitura pelo motor.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from rotaflow.domain.constants import END_ROUTE_ID
from rotaflow.domain.errors import RouteBuildError
from rotaflow.domain.schema import JsonSchema
from rotaflow.flow.conditions import Condition, split_conditions
from rotaflow.flow.knowledge import Guideline, coerce_guideline
from rotaflow.flow.step import END_ROUTE, EndRoute, Step, StepSpec
from rotaflow.flow.tool import ToolRef, tool_ref
from rotaflow.observability.logging import get_logger
from rotaflow.utils.awaitables import call_maybe_async
from rotaflow.utils.ids import route_id_for, step_id_for

if TYPE_CHECKING:
    from rotaflow.domain.session import Session

logger: logging.Logger = get_logger(__name__)

END_INDEX = -1

DataUpdateHook = Callable[[dict[str, Any], dict[str, Any]], Any]
ContextUpdateHook = Callable[[dict[str, Any], dict[str, Any]], Any]


@dataclass(slots=True)
class LifecycleHooks:
    """Hooks chamados após merge de dados/contexto (sync ou async).

    Cada hook recebe (novo, anterior) e pode devolver um mapeamento que
    substitui o valor mesclado; None mantém o valor.
    """

    on_data_update: DataUpdateHook | None = None
    on_context_update: ContextUpdateHook | None = None


@dataclass(slots=True)
class RouteTransitionConfig:
    """Transição ao concluir rota: rota alvo (id ou título) + condição opcional."""

    next_route: str
    condition: str | None = None


OnComplete = Union[str, RouteTransitionConfig, Callable[..., Any]]


@dataclass(slots=True)
class BranchSpec:
    """Entrada de `branch`: nome do ramo + passo inicial do ramo."""

    name: str
    step: StepSpec | Mapping[str, Any] | None = None
    id: str | None = None


class EndRouteHandle:
    """Handle terminal; encadear a partir dele é erro de construção."""

    __slots__ = ("_route",)

    def __init__(self, route: Route) -> None:
        self._route = route

    @property
    def id(self) -> str:
        return END_ROUTE_ID

    @property
    def route_id(self) -> str:
        return self._route.id

    def next_step(self, *args: Any, **kwargs: Any) -> StepHandle:
        raise RouteBuildError("Cannot transition from END_ROUTE step")

    def branch(self, entries: Any) -> dict[str, StepHandle]:
        raise RouteBuildError("Cannot branch from END_ROUTE step")

    def end_route(self) -> EndRouteHandle:
        return self

    def __repr__(self) -> str:
        return f"EndRouteHandle(route={self._route.id!r})"


class StepHandle:
    """Handle de um passo durante a construção da rota."""

    __slots__ = ("_route", "_index")

    def __init__(self, route: Route, index: int) -> None:
        self._route = route
        self._index = index

    @property
    def step(self) -> Step:
        return self._route._nodes[self._index]

    @property
    def id(self) -> str:
        return self.step.id

    @property
    def route_id(self) -> str:
        return self._route.id

    @property
    def index(self) -> int:
        return self._index

    def next_step(
        self,
        spec: StepSpec | Mapping[str, Any] | StepHandle | EndRoute | None = None,
        **options: Any,
    ) -> StepHandle | EndRouteHandle:
        """Adiciona (ou liga a um existente) o próximo passo da cadeia."""
        if spec is END_ROUTE:
            return self.end_route()
        if isinstance(spec, StepHandle):
            if spec._route is not self._route:
                raise RouteBuildError("Cannot link steps across different routes")
            self._route._link(self._index, spec._index)
            return spec
        step_spec = _merge_spec(spec, options)
        index = self._route._append_step(step_spec, parent=self._index)
        return StepHandle(self._route, index)

    def branch(
        self, entries: Sequence[BranchSpec | Mapping[str, Any]]
    ) -> dict[str, StepHandle]:
        """Cria N cadeias irmãs nomeadas a partir deste passo."""
        if not entries:
            raise RouteBuildError("branch() requires at least one entry")
        handles: dict[str, StepHandle] = {}
        for raw in entries:
            entry = raw if isinstance(raw, BranchSpec) else BranchSpec(**dict(raw))
            if entry.name in handles:
                raise RouteBuildError(f"Duplicate branch name: {entry.name}")
            step_spec = StepSpec.coerce(entry.step)
            if entry.id and not step_spec.id:
                step_spec = dataclasses.replace(step_spec, id=entry.id)
            index = self._route._append_step(
                step_spec, parent=self._index, branch_name=entry.name
            )
            handles[entry.name] = StepHandle(self._route, index)
        return handles

    def end_route(self) -> EndRouteHandle:
        self._route._link(self._index, END_INDEX)
        return EndRouteHandle(self._route)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, StepHandle)
            and other._route is self._route
            and other._index == self._index
        )

    def __hash__(self) -> int:
        return hash((id(self._route), self._index))

    def __repr__(self) -> str:
        return f"StepHandle(id={self.id!r})"


def _merge_spec(spec: StepSpec | Mapping[str, Any] | None, options: Mapping[str, Any]) -> StepSpec:
    if spec is None:
        return StepSpec(**dict(options))
    base = StepSpec.coerce(spec)
    return dataclasses.replace(base, **options) if options else base


class Route:
    """Fluxo conversacional com campos obrigatórios/opcionais e cadeia de passos."""

    def __init__(
        self,
        title: str,
        *,
        id: str | None = None,  # noqa: A002
        description: str | None = None,
        conditions: Sequence[Condition] = (),
        required_fields: Sequence[str] = (),
        optional_fields: Sequence[str] = (),
        initial_step: StepSpec | Mapping[str, Any] | None = None,
        steps: Sequence[StepSpec | Mapping[str, Any] | EndRoute] | None = None,
        hooks: LifecycleHooks | None = None,
        tools: Sequence[Any] = (),
        guidelines: Sequence[Guideline | Mapping[str, Any] | str] = (),
        rules: Sequence[str] = (),
        prohibitions: Sequence[str] = (),
        domains: Sequence[str] | None = None,
        initial_data: Mapping[str, Any] | None = None,
        on_complete: OnComplete | None = None,
        schema: JsonSchema | None = None,
        completion_prompt: str | None = None,
    ) -> None:
        if not title:
            raise RouteBuildError("Route title is required")
        self.id: str = id or route_id_for(title)
        self.title = title
        self.description = description
        self.conditions: tuple[Condition, ...] = tuple(conditions)
        self.condition_texts, self.condition_predicates = split_conditions(self.conditions)
        self.required_fields: tuple[str, ...] = tuple(required_fields)
        self.optional_fields: tuple[str, ...] = tuple(optional_fields)
        self.hooks = hooks or LifecycleHooks()
        self.tools: tuple[ToolRef, ...] = tuple(tool_ref(t) for t in tools)
        self.guidelines: list[Guideline] = [coerce_guideline(g) for g in guidelines]
        self.rules: tuple[str, ...] = tuple(rules)
        self.prohibitions: tuple[str, ...] = tuple(prohibitions)
        self.domains: tuple[str, ...] | None = tuple(domains) if domains is not None else None
        self.initial_data: dict[str, Any] = dict(initial_data or {})
        self.on_complete = on_complete
        self.schema = schema
        self.completion_prompt = completion_prompt

        self._nodes: list[Step] = []
        self._edges: list[list[int]] = []
        self._branch_names: dict[int, dict[str, int]] = {}
        self._ids: dict[str, int] = {}

        sequence = list(steps or ())
        if initial_step is None and sequence:
            initial_step = sequence.pop(0)
        self._append_step(StepSpec.coerce(initial_step), parent=None)

        if steps is not None:
            handle: StepHandle = self.initial_step
            for position, spec in enumerate(sequence, start=1):
                nxt = handle.next_step(spec)
                if isinstance(nxt, StepHandle):
                    handle = nxt
                elif position != len(sequence):
                    raise RouteBuildError("END_ROUTE must be the last entry in steps")
            handle.end_route()

    # -- construção ---------------------------------------------------------

    def _append_step(
        self, spec: StepSpec, *, parent: int | None, branch_name: str | None = None
    ) -> int:
        index = len(self._nodes)
        step_id = spec.id or step_id_for(self.id, spec.description or spec.prompt, index)
        if step_id == END_ROUTE_ID:
            raise RouteBuildError(f"Step id '{END_ROUTE_ID}' is reserved")
        if step_id in self._ids:
            raise RouteBuildError(f"Duplicate step id in route {self.id}: {step_id}")
        self._nodes.append(Step.from_spec(spec, step_id=step_id, route_id=self.id, index=index))
        self._edges.append([])
        self._ids[step_id] = index
        logger.debug("route_step_added", extra={"route_id": self.id, "step_id": step_id})
        if parent is not None:
            self._link(parent, index)
            if branch_name is not None:
                self._branch_names.setdefault(parent, {})[branch_name] = index
        return index

    def _link(self, source: int, target: int) -> None:
        edges = self._edges[source]
        if target not in edges:
            edges.append(target)

    def create_guideline(self, guideline: Guideline | Mapping[str, Any] | str) -> Guideline:
        item = coerce_guideline(guideline)
        self.guidelines.append(item)
        return item

    # -- leitura ------------------------------------------------------------

    @property
    def initial_step(self) -> StepHandle:
        return StepHandle(self, 0)

    @property
    def initial(self) -> Step:
        return self._nodes[0]

    def get_step(self, step_id: str | None) -> Step | None:
        if step_id is None:
            return None
        index = self._ids.get(step_id)
        return self._nodes[index] if index is not None else None

    def get_handle(self, step_id: str) -> StepHandle | None:
        index = self._ids.get(step_id)
        return StepHandle(self, index) if index is not None else None

    def get_all_steps(self) -> list[Step]:
        """Todos os passos em ordem de criação (sem o sentinela)."""
        return list(self._nodes)

    def successors(self, step: Step) -> list[Step | EndRoute]:
        return [
            END_ROUTE if idx == END_INDEX else self._nodes[idx]
            for idx in self._edges[step.index]
        ]

    def branches(self, step: Step) -> dict[str, Step]:
        return {
            name: self._nodes[idx]
            for name, idx in self._branch_names.get(step.index, {}).items()
        }

    def data_fields(self) -> list[str]:
        """Campos da rota: required + optional + collect dos passos (sem repetição)."""
        seen: dict[str, None] = {}
        for f in self.required_fields:
            seen.setdefault(f, None)
        for f in self.optional_fields:
            seen.setdefault(f, None)
        for step in self._nodes:
            for f in step.collect:
                seen.setdefault(f, None)
        return list(seen)

    def missing_required_fields(self, data: Mapping[str, Any]) -> list[str]:
        return [f for f in self.required_fields if data.get(f) is None]

    def is_complete(self, data: Mapping[str, Any]) -> bool:
        """True se todos os required_fields têm valor."""
        return not self.missing_required_fields(data)

    def completion_progress(self, data: Mapping[str, Any]) -> float:
        if not self.required_fields:
            return 1.0
        done = len(self.required_fields) - len(self.missing_required_fields(data))
        return done / len(self.required_fields)

    async def evaluate_on_complete(
        self, session: Session, context: Mapping[str, Any] | None = None
    ) -> RouteTransitionConfig | None:
        """Normaliza `on_complete` (str | config | callable) para config ou None."""
        rule = self.on_complete
        if rule is None:
            return None
        if callable(rule):
            rule = await call_maybe_async(rule, session, dict(context or {}))
            if rule is None:
                return None
        if isinstance(rule, str):
            return RouteTransitionConfig(next_route=rule)
        if isinstance(rule, RouteTransitionConfig):
            return rule
        if isinstance(rule, Mapping):
            return RouteTransitionConfig(
                next_route=rule["next_route"], condition=rule.get("condition")
            )
        raise TypeError(f"on_complete inválido: {type(rule).__name__}")

    def describe(self) -> str:
        """Descrição textual do grafo (debug)."""
        conditions = ", ".join(self.condition_texts) or "None"
        lines = [
            f"Route: {self.title}",
            f"ID: {self.id}",
            f"Description: {self.description or 'N/A'}",
            f"Conditions: {conditions}",
            f"Required fields: {', '.join(self.required_fields) or 'None'}",
            "",
            "Steps:",
        ]
        for step in self._nodes:
            label = f": {step.description}" if step.description else ""
            lines.append(f"  - {step.id}{label}")
            names = {idx: name for name, idx in self._branch_names.get(step.index, {}).items()}
            for idx in self._edges[step.index]:
                target = END_ROUTE_ID if idx == END_INDEX else self._nodes[idx].id
                prefix = f"[{names[idx]}] " if idx in names else ""
                lines.append(f"    -> {prefix}{target}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Route(id={self.id!r}, title={self.title!r}, steps={len(self._nodes)})"
