"""Condições de rota: texto (avaliado pela IA) ou callable (avaliado em código).

Condições em texto são repassadas ao prompt de pontuação; callables são
portões determinísticos: se algum retornar False, a rota não é oferecida
para pontuação naquele turno.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Union

from rotaflow.flow.step import StepContext
from rotaflow.observability.logging import get_logger
from rotaflow.utils.awaitables import call_maybe_async

logger: logging.Logger = get_logger(__name__)

ConditionPredicate = Callable[[StepContext], Any]
Condition = Union[str, ConditionPredicate]


def split_conditions(
    conditions: Sequence[Condition],
) -> tuple[list[str], list[ConditionPredicate]]:
    """Separa condições em (textos para IA, predicados em código)."""
    texts: list[str] = []
    predicates: list[ConditionPredicate] = []
    for condition in conditions:
        if isinstance(condition, str):
            texts.append(condition)
        elif callable(condition):
            predicates.append(condition)
        else:
            raise TypeError(f"Condição inválida: {type(condition).__name__}")
    return texts, predicates


async def evaluate_predicates(
    predicates: Sequence[ConditionPredicate],
    ctx: StepContext,
    *,
    route_id: str | None = None,
) -> bool:
    """True se todos os predicados passam. Exceção conta como False."""
    for predicate in predicates:
        try:
            if not await call_maybe_async(predicate, ctx):
                return False
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "route_condition_failed",
                extra={"route_id": route_id, "error_type": type(exc).__name__},
            )
            return False
    return True
