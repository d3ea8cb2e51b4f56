"""Passos de rota, hooks e o predicado needs_input.

Um passo é um nó imutável no arena da rota; a navegação (next_step/branch)
é feita por `StepHandle`, que guarda apenas (rota, índice).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from rotaflow.domain.constants import END_ROUTE_ID, ROUTE_COMPLETED_DESCRIPTION
from rotaflow.domain.history import HistoryItem
from rotaflow.flow.tool import InlineTool, ToolById, ToolDefinition, ToolRef, tool_ref
from rotaflow.observability.logging import get_logger
from rotaflow.utils.awaitables import call_maybe_async

if TYPE_CHECKING:
    from rotaflow.domain.session import Session

logger: logging.Logger = get_logger(__name__)


@dataclass(slots=True)
class StepContext:
    """Contexto de avaliação de skip_if e de hooks de função."""

    context: dict[str, Any]
    data: dict[str, Any]
    session: Session | None = None
    history: list[HistoryItem] = field(default_factory=list)


SkipPredicate = Callable[[StepContext], Any]


@dataclass(frozen=True, slots=True)
class FunctionHook:
    """Hook implementado como função ``fn(StepContext)`` (sync ou async)."""

    fn: Callable[[StepContext], Any]


@dataclass(frozen=True, slots=True)
class ToolHook:
    """Hook implementado como tool (por id ou inline)."""

    ref: ToolRef


Hook = Union[FunctionHook, ToolHook]


def as_hook(value: Any) -> Hook | None:
    """Normaliza callable | id de tool | ToolDefinition | ToolRef para Hook."""
    if value is None or isinstance(value, (FunctionHook, ToolHook)):
        return value
    if isinstance(value, (str, ToolDefinition, ToolById, InlineTool)):
        return ToolHook(tool_ref(value))
    if callable(value):
        return FunctionHook(value)
    raise TypeError(f"Hook inválido: {type(value).__name__}")


@dataclass(slots=True)
class StepSpec:
    """Opções de criação de um passo (entrada do builder)."""

    description: str | None = None
    id: str | None = None
    prompt: str | None = None
    collect: Sequence[str] = ()
    requires: Sequence[str] = ()
    skip_if: SkipPredicate | None = None
    prepare: Any = None
    finalize: Any = None
    tools: Sequence[Any] = ()
    condition: str | None = None
    guidelines: Sequence[str] = ()

    @classmethod
    def coerce(cls, value: StepSpec | Mapping[str, Any] | None) -> StepSpec:
        if value is None:
            return cls()
        if isinstance(value, StepSpec):
            return value
        return cls(**dict(value))


@dataclass(frozen=True, slots=True)
class Step:
    """Nó de passo (imutável)."""

    id: str
    route_id: str
    index: int
    description: str | None = None
    prompt: str | None = None
    collect: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    skip_if: SkipPredicate | None = None
    prepare: Hook | None = None
    finalize: Hook | None = None
    tools: tuple[ToolRef, ...] = ()
    condition: str | None = None
    guidelines: tuple[str, ...] = ()

    @classmethod
    def from_spec(cls, spec: StepSpec, *, step_id: str, route_id: str, index: int) -> Step:
        return cls(
            id=step_id,
            route_id=route_id,
            index=index,
            description=spec.description,
            prompt=spec.prompt,
            collect=tuple(spec.collect),
            requires=tuple(spec.requires),
            skip_if=spec.skip_if,
            prepare=as_hook(spec.prepare),
            finalize=as_hook(spec.finalize),
            tools=tuple(tool_ref(t) for t in spec.tools),
            condition=spec.condition,
            guidelines=tuple(spec.guidelines),
        )

    @property
    def is_end_route(self) -> bool:
        return False

    @property
    def label(self) -> str:
        return self.description or self.prompt or self.id

    def needs_input(self, data: Mapping[str, Any]) -> bool:
        return needs_input(self, data)

    def missing_requires(self, data: Mapping[str, Any]) -> list[str]:
        return [f for f in self.requires if data.get(f) is None]

    def has_requires(self, data: Mapping[str, Any]) -> bool:
        return not self.missing_requires(data)

    async def should_skip(self, ctx: StepContext) -> bool:
        """Avalia skip_if; exceção => passo NÃO é pulado (fail open)."""
        if self.skip_if is None:
            return False
        try:
            return bool(await call_maybe_async(self.skip_if, ctx))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "skip_if_evaluation_failed",
                extra={
                    "step_id": self.id,
                    "route_id": self.route_id,
                    "error_type": type(exc).__name__,
                },
            )
            return False


class EndRoute:
    """Sentinela terminal de uma cadeia de passos."""

    __slots__ = ()
    id = END_ROUTE_ID
    description = ROUTE_COMPLETED_DESCRIPTION

    @property
    def is_end_route(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "END_ROUTE"


END_ROUTE = EndRoute()


def is_end_route(value: Any) -> bool:
    return value is END_ROUTE or getattr(value, "id", None) == END_ROUTE_ID


def needs_input(step: Step | Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    """True se o passo precisa de input novo antes de executar.

    (a) `requires` não vazio e algum campo sem valor => True
    (b) `collect` não vazio e nenhum campo com valor => True
    `requires` domina: insatisfeito => True mesmo com collect completo.
    Campo ausente ou None conta como "sem valor".
    """
    if isinstance(step, Mapping):
        requires = step.get("requires") or ()
        collect = step.get("collect") or ()
    else:
        requires = step.requires
        collect = step.collect

    if requires and any(data.get(f) is None for f in requires):
        return True
    if collect and not any(data.get(f) is not None for f in collect):
        return True
    return False
