"""Motor de roteamento: escolhe o par (rota, passo) ativo do turno.

Fluxo:
1. Portões determinísticos (condições callable) filtram as rotas elegíveis
2. Rota única: sem chamada de pontuação; seleção de passo só se houver
   mais de um candidato (schema `step_selection`)
3. Várias rotas: uma chamada `routing_output` pontua todas (0-100)
4. Regra de troca: a rota ativa só perde o turno para outra com score
   estritamente maior E >= switch_threshold

Fallback: falha do provedor ou saída malformada mantém a rota ativa
(ou nenhuma), nunca interrompe o turno.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, cast

from pydantic import ValidationError as PydanticValidationError

from rotaflow.ai.contracts.provider import GenerateMessageInput, GenerationParameters
from rotaflow.ai.contracts.routing import RoutingDecisionOutput, StepSelectionOutput
from rotaflow.config.settings import DEFAULT_SWITCH_THRESHOLD, Settings
from rotaflow.domain.cancellation import CancelToken, TurnCancelledError
from rotaflow.domain.constants import END_ROUTE_ID
from rotaflow.domain.history import HistoryItem
from rotaflow.domain.protocols import AiProvider
from rotaflow.domain.session import (
    Session,
    enter_route,
    mark_route_completed,
    merge_data,
    replace_data,
)
from rotaflow.engine.prompting import AgentProfile
from rotaflow.engine.routing_prompt import (
    build_routing_prompt,
    build_routing_schema,
    build_step_selection_prompt,
    build_step_selection_schema,
)
from rotaflow.flow.conditions import evaluate_predicates
from rotaflow.flow.route import Route
from rotaflow.flow.step import Step, StepContext, is_end_route
from rotaflow.observability.logging import get_logger, log_fallback
from rotaflow.observability.timing import timed

logger: logging.Logger = get_logger(__name__)


@dataclass(slots=True)
class CandidateStep:
    """Passo candidato; `is_route_complete` indica END_ROUTE com dados completos."""

    step: Step
    is_route_complete: bool = False


@dataclass(slots=True)
class RoutingDecision:
    """Resultado do roteamento de um turno."""

    session: Session
    selected_route: Route | None = None
    selected_step: Step | None = None
    response_directives: list[str] | None = None
    is_route_complete: bool = False
    scores: dict[str, float] = field(default_factory=dict)


class RoutingEngine:
    """Decide rota e passo do turno a partir de scores do provedor."""

    def __init__(
        self,
        *,
        switch_threshold: int = DEFAULT_SWITCH_THRESHOLD,
        max_candidates: int | None = None,
        allow_route_switch: bool = True,
        history_limit: int = 10,
    ) -> None:
        self.switch_threshold = switch_threshold
        self.max_candidates = max_candidates
        self.allow_route_switch = allow_route_switch
        self.history_limit = history_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> RoutingEngine:
        return cls(
            switch_threshold=settings.routing_switch_threshold,
            max_candidates=settings.routing_max_candidates,
            allow_route_switch=settings.routing_allow_route_switch,
        )

    # -- candidatos -----------------------------------------------------------

    async def _first_valid(
        self, route: Route, start: Step, ctx: StepContext, visited: set[str]
    ) -> Step | None | bool:
        """Desce por passos pulados; True = END_ROUTE alcançado, None = nada."""
        if start.id in visited:
            return None
        visited.add(start.id)
        for target in route.successors(start):
            if is_end_route(target):
                return True
            step = cast(Step, target)
            if not await step.should_skip(ctx):
                return step
            found = await self._first_valid(route, step, ctx, visited)
            if found is not None:
                return found
        return None

    def _end_candidate(self, route: Route, step: Step, data: Mapping[str, Any]) -> CandidateStep:
        if route.is_complete(data):
            return CandidateStep(step=step, is_route_complete=True)
        logger.warning(
            "route_end_reached_with_missing_required_fields",
            extra={"route_id": route.id, "missing": route.missing_required_fields(data)},
        )
        return CandidateStep(step=step, is_route_complete=False)

    async def get_candidate_steps(
        self,
        route: Route,
        current_step: Step | None,
        data: Mapping[str, Any],
        ctx: StepContext | None = None,
    ) -> list[CandidateStep]:
        """Passos para onde a conversa pode ir a partir da posição atual.

        - sem passo atual: passo inicial (ou o primeiro não pulado)
        - passo atual ainda aguardando seus `collect`: permanece nele
        - sucessores pulados são atravessados; `requires` insatisfeito filtra
        - só END_ROUTE à frente: rota completa se required_fields presentes
        """
        ctx = ctx or StepContext(context={}, data=dict(data))

        if current_step is None:
            initial = route.initial
            if not await initial.should_skip(ctx):
                return [CandidateStep(step=initial)]
            found = await self._first_valid(route, initial, ctx, set())
            if found is True:
                return [self._end_candidate(route, initial, data)]
            if isinstance(found, Step):
                return [CandidateStep(step=found)]
            return []

        if current_step.collect and current_step.needs_input(data):
            return [CandidateStep(step=current_step)]

        candidates: list[CandidateStep] = []
        has_end = False
        for target in route.successors(current_step):
            if is_end_route(target):
                has_end = True
                continue
            step = cast(Step, target)
            if await step.should_skip(ctx):
                found = await self._first_valid(route, step, ctx, {current_step.id})
                if found is True:
                    has_end = True
                elif isinstance(found, Step) and found.has_requires(data):
                    candidates.append(CandidateStep(step=found))
                continue
            if not step.has_requires(data):
                logger.debug(
                    "candidate_step_filtered_requires",
                    extra={"route_id": route.id, "step_id": step.id},
                )
                continue
            candidates.append(CandidateStep(step=step))

        if candidates:
            return candidates
        if has_end:
            return [self._end_candidate(route, current_step, data)]
        if not await current_step.should_skip(ctx):
            return [CandidateStep(step=current_step)]
        return []

    # -- elegibilidade --------------------------------------------------------

    async def eligible_routes(self, routes: Sequence[Route], ctx: StepContext) -> list[Route]:
        """Rotas cujas condições callable passam neste turno."""
        eligible: list[Route] = []
        for route in routes:
            if await evaluate_predicates(route.condition_predicates, ctx, route_id=route.id):
                eligible.append(route)
        return eligible

    # -- pontuação ------------------------------------------------------------

    def decide_route_from_scores(
        self, scores: Mapping[str, float], active_route_id: str | None = None
    ) -> tuple[str | None, float]:
        """Aplica max_candidates e a regra de troca sobre os scores."""
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        if self.max_candidates:
            ranked = ranked[: self.max_candidates]
        if not ranked:
            if active_route_id is None:
                return None, 0.0
            return active_route_id, float(scores.get(active_route_id, 0.0))

        top_id, top_score = ranked[0]
        if active_route_id is None:
            return top_id, top_score

        active_score = float(scores.get(active_route_id, 0.0))
        if not self.allow_route_switch or top_id == active_route_id:
            return active_route_id, active_score
        if top_score > active_score and top_score >= self.switch_threshold:
            logger.info(
                "route_switch",
                extra={
                    "from_route": active_route_id,
                    "to_route": top_id,
                    "score": top_score,
                    "active_score": active_score,
                },
            )
            return top_id, top_score
        return active_route_id, active_score

    # -- decisão --------------------------------------------------------------

    @staticmethod
    def enter(session: Session, route: Route) -> Session:
        """Entra na rota; rota já concluída recomeça com dados limpos."""
        restart = RoutingEngine._is_finished(session, route)
        if session.current_route_id == route.id and not restart:
            return session
        updated = enter_route(session, route.id, route.title)
        if restart:
            updated = replace_data(updated, {})
        if route.initial_data:
            updated = merge_data(updated, route.initial_data)
        logger.info("route_entered", extra={"route_id": route.id})
        return updated

    @staticmethod
    def _is_finished(session: Session, route: Route) -> bool:
        return session.current_route_id == route.id and session.current_step_id == END_ROUTE_ID

    async def resolve_position(
        self,
        decision: RoutingDecision,
        route: Route,
        ctx: StepContext,
    ) -> list[CandidateStep]:
        session = decision.session
        current = route.get_step(session.current_step_id)
        candidates = await self.get_candidate_steps(route, current, session.data, ctx)
        if len(candidates) == 1 and candidates[0].is_route_complete:
            decision.is_route_complete = True
            decision.session = mark_route_completed(session, route.id)
        return candidates

    async def decide_route_and_step(
        self,
        *,
        routes: Sequence[Route],
        session: Session,
        history: Sequence[HistoryItem],
        provider: AiProvider,
        profile: AgentProfile,
        context: Mapping[str, Any] | None = None,
        signal: CancelToken | None = None,
    ) -> RoutingDecision:
        ctx_map = dict(context or {})
        ctx = StepContext(
            context=ctx_map, data=dict(session.data), session=session, history=list(history)
        )
        eligible = await self.eligible_routes(routes, ctx)
        if not eligible:
            logger.debug("no_eligible_routes", extra={"routes": len(routes)})
            return RoutingDecision(session=session)

        if len(eligible) == 1:
            return await self._decide_single(
                eligible[0], session, history, provider, profile, ctx, signal
            )
        return await self._decide_multi(eligible, session, history, provider, profile, ctx, signal)

    async def _decide_single(
        self,
        route: Route,
        session: Session,
        history: Sequence[HistoryItem],
        provider: AiProvider,
        profile: AgentProfile,
        ctx: StepContext,
        signal: CancelToken | None,
    ) -> RoutingDecision:
        if self._is_finished(session, route):
            logger.debug("single_route_already_finished", extra={"route_id": route.id})
            return RoutingDecision(session=session)

        decision = RoutingDecision(session=self.enter(session, route), selected_route=route)
        ctx.data = dict(decision.session.data)
        ctx.session = decision.session
        candidates = await self.resolve_position(decision, route, ctx)

        if not candidates:
            logger.warning("single_route_no_valid_steps", extra={"route_id": route.id})
            return decision
        if decision.is_route_complete:
            return decision
        if len(candidates) == 1:
            decision.selected_step = candidates[0].step
            return decision

        steps = [c.step for c in candidates]
        current = route.get_step(decision.session.current_step_id)
        request = GenerateMessageInput(
            prompt=build_step_selection_prompt(
                profile=profile,
                route=route,
                current_step=current,
                candidates=steps,
                data=decision.session.data,
                history=history,
                context=ctx.context,
                history_limit=self.history_limit,
            ),
            history=list(history),
            context=ctx.context,
            signal=signal,
            parameters=GenerationParameters(
                json_schema=build_step_selection_schema(steps), schema_name="step_selection"
            ),
        )
        try:
            with timed("routing.step_selection") as sw:
                output = await provider.generate_message(request)
            selection = StepSelectionOutput.model_validate(output.structured or {})
        except TurnCancelledError:
            raise
        except PydanticValidationError:
            log_fallback(logger, "step_selection", "parse_error")
            decision.selected_step = steps[0]
            return decision
        except Exception as exc:  # noqa: BLE001
            log_fallback(logger, "step_selection", type(exc).__name__)
            decision.selected_step = steps[0]
            return decision

        chosen = next((s for s in steps if s.id == selection.selected_step_id), None)
        if chosen is None:
            log_fallback(logger, "step_selection", "invalid_step_id", sw.elapsed_ms)
            chosen = steps[0]
        decision.selected_step = chosen
        decision.response_directives = selection.response_directives
        return decision

    async def _decide_multi(
        self,
        routes: Sequence[Route],
        session: Session,
        history: Sequence[HistoryItem],
        provider: AiProvider,
        profile: AgentProfile,
        ctx: StepContext,
        signal: CancelToken | None,
    ) -> RoutingDecision:
        by_id = {r.id: r for r in routes}
        active = by_id.get(session.current_route_id or "")
        if active is not None and self._is_finished(session, active):
            active = None

        active_candidates: list[CandidateStep] = []
        active_complete = False
        if active is not None:
            current = active.get_step(session.current_step_id)
            active_candidates = await self.get_candidate_steps(active, current, session.data, ctx)
            active_complete = len(active_candidates) == 1 and active_candidates[0].is_route_complete
        active_steps = None if active_complete else [c.step for c in active_candidates]

        request = GenerateMessageInput(
            prompt=build_routing_prompt(
                profile=profile,
                routes=routes,
                session=session,
                history=history,
                active_steps=active_steps,
                context=ctx.context,
                history_limit=self.history_limit,
            ),
            history=list(history),
            context=ctx.context,
            signal=signal,
            parameters=GenerationParameters(
                json_schema=build_routing_schema(routes, active_steps), schema_name="routing_output"
            ),
        )

        routing: RoutingDecisionOutput | None = None
        try:
            with timed("routing.scoring"):
                output = await provider.generate_message(request)
            routing = RoutingDecisionOutput.model_validate(output.structured or {})
        except TurnCancelledError:
            raise
        except PydanticValidationError:
            log_fallback(logger, "routing", "parse_error")
        except Exception as exc:  # noqa: BLE001
            log_fallback(logger, "routing", type(exc).__name__)

        scores = {rid: s for rid, s in (routing.routes if routing else {}).items() if rid in by_id}
        if routing is not None and not scores:
            log_fallback(logger, "routing", "no_known_route_scores")

        selected_id, score = self.decide_route_from_scores(
            scores, active.id if active is not None else None
        )
        selected = by_id.get(selected_id or "")
        if selected is None:
            return RoutingDecision(session=session, scores=scores)

        logger.info(
            "route_selected",
            extra={"route_id": selected.id, "score": score, "kept_active": selected is active},
        )
        decision = RoutingDecision(
            session=self.enter(session, selected),
            selected_route=selected,
            response_directives=routing.response_directives if routing else None,
            scores=scores,
        )

        if selected is active:
            if active_complete:
                decision.is_route_complete = True
                decision.session = mark_route_completed(decision.session, selected.id)
                return decision
            steps = {c.step.id: c.step for c in active_candidates}
            picked = routing.selected_step_id if routing else None
            if picked and picked in steps:
                decision.selected_step = steps[picked]
            elif active_candidates:
                if picked:
                    log_fallback(logger, "routing_step", "invalid_step_id")
                decision.selected_step = active_candidates[0].step
            return decision

        ctx.data = dict(decision.session.data)
        ctx.session = decision.session
        candidates = await self.resolve_position(decision, selected, ctx)
        if candidates and not decision.is_route_complete:
            decision.selected_step = candidates[0].step
        return decision
