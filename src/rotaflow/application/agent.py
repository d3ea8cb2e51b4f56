"""Agent — fachada pública do motor de conversação.

Ordem de um turno (`respond`):
1. Transição pendente (se houver) substitui o roteamento
2. Roteamento: rota + passo (ver RoutingEngine)
3. Pré-extração de campos da rota (quando há schema)
4. determine_batch a partir do passo selecionado
5. execute_batch: prepare -> 1 chamada ao modelo (+ loop de tools) ->
   coleta -> finalize
6. Conclusão de rota / on_complete
7. Auto-save da sessão

Sem rota selecionada o agente responde com uma chamada simples ao modelo.
Falha fatal (prepare/llm) devolve a sessão recebida, sem alterações.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from typing import Any, cast

from rotaflow.ai.contracts.provider import (
    GenerateMessageInput,
    GenerateMessageOutput,
    GenerationParameters,
    StreamChunk,
)
from rotaflow.application.persistence import PersistenceManager
from rotaflow.application.responses import AgentResponse, AgentStreamChunk
from rotaflow.application.session_manager import SessionManager
from rotaflow.application.turn import TurnKind, TurnState
from rotaflow.config.settings import Settings, get_settings
from rotaflow.domain.cancellation import CancelToken, TurnCancelledError
from rotaflow.domain.constants import END_ROUTE_ID, ROUTE_COMPLETED_DESCRIPTION
from rotaflow.domain.enums import (
    COMPLETION_STOP_REASONS,
    FATAL_STOP_REASONS,
    BatchErrorType,
    PendingTransitionReason,
    StoppedReason,
)
from rotaflow.domain.errors import RouteBuildError, RouteNotFoundError
from rotaflow.domain.history import (
    HistoryItem,
    ToolCallRecord,
    assistant_message,
    last_user_message,
    normalize_history,
    user_message,
)
from rotaflow.domain.protocols import (
    AiProvider,
    AsyncMessageStoreProtocol,
    AsyncSessionStoreProtocol,
)
from rotaflow.domain.schema import JsonSchema
from rotaflow.domain.session import (
    PendingTransition,
    Session,
    clear_pending_transition,
    enter_step,
    mark_route_completed,
    set_pending_transition,
)
from rotaflow.engine.batch_executor import (
    BatchExecutionError,
    BatchExecutionResult,
    BatchExecutor,
    BatchResult,
)
from rotaflow.engine.batch_prompt import BatchPromptBuilder
from rotaflow.engine.events import BatchEventListener, EventRegistry, SubscriptionToken
from rotaflow.engine.hooks import HookRunner
from rotaflow.engine.prompting import AgentProfile, render_template, template_values
from rotaflow.engine.routing_engine import RoutingDecision, RoutingEngine
from rotaflow.engine.tool_executor import (
    FOLLOW_UP_TEXT_INSTRUCTION,
    ToolExecutionResult,
    ToolExecutor,
    run_tool_loop,
)
from rotaflow.flow.domains import DomainRegistry
from rotaflow.flow.knowledge import Guideline, Term, coerce_guideline, coerce_term
from rotaflow.flow.route import LifecycleHooks, Route
from rotaflow.flow.step import Hook, Step, StepContext
from rotaflow.flow.tool import ToolDefinition
from rotaflow.observability.context import bind_turn_context
from rotaflow.observability.logging import get_logger, log_fallback
from rotaflow.observability.timing import timed
from rotaflow.utils.awaitables import call_maybe_async

logger: logging.Logger = get_logger(__name__)

COMPLETION_FALLBACK_TEXT = "Thank you! I've recorded all the information for your {title}."

GenerateFn = Callable[
    [GenerateMessageInput, list[ToolDefinition]], Awaitable[GenerateMessageOutput]
]
ContextProvider = Callable[[], Any]


def _message_of(output: GenerateMessageOutput) -> str:
    return output.message or str((output.structured or {}).get("message") or "")


async def _drain(
    queue: asyncio.Queue[StreamChunk], task: asyncio.Future[Any]
) -> AsyncIterator[StreamChunk]:
    """Entrega chunks da fila enquanto `task` roda; esvazia a fila ao final."""
    while True:
        getter = asyncio.ensure_future(queue.get())
        done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            yield getter.result()
            continue
        getter.cancel()
        break
    while not queue.empty():
        yield queue.get_nowait()


class Agent:
    """Agente conversacional com rotas, passos, tools e persistência opcional."""

    def __init__(
        self,
        name: str,
        provider: AiProvider,
        *,
        description: str | None = None,
        goal: str | None = None,
        personality: str | None = None,
        context: Mapping[str, Any] | None = None,
        context_provider: ContextProvider | None = None,
        schema: JsonSchema | None = None,
        routes: Sequence[Route | Mapping[str, Any]] = (),
        tools: Sequence[Any] = (),
        guidelines: Sequence[Guideline | Mapping[str, Any] | str] = (),
        terms: Sequence[Term | Mapping[str, Any]] = (),
        hooks: LifecycleHooks | None = None,
        session_store: AsyncSessionStoreProtocol | None = None,
        message_store: AsyncMessageStoreProtocol | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.name = name
        self.provider = provider
        self.description = description
        self.goal = goal
        self.personality = personality
        self.schema = schema
        self.settings = settings or get_settings()

        self._context: dict[str, Any] = dict(context or {})
        self._context_provider = context_provider
        self._guidelines: list[Guideline] = [coerce_guideline(g) for g in guidelines]
        self._terms: list[Term] = [coerce_term(t) for t in terms]
        self._routes: dict[str, Route] = {}

        self._domains = DomainRegistry()
        self._tools = ToolExecutor(tools, self._domains)
        self._hooks = HookRunner(
            self._tools, agent_hooks=hooks, order=self.settings.hook_order
        )
        self._events = EventRegistry()
        self._batch = BatchExecutor(self._events)
        self._routing = RoutingEngine.from_settings(self.settings)
        self._prompts = BatchPromptBuilder()

        persistence = (
            PersistenceManager(
                session_store, message_store, ttl_seconds=self.settings.session_ttl_seconds
            )
            if session_store is not None
            else None
        )
        self.sessions = SessionManager(persistence)

        for route in routes:
            if isinstance(route, Route):
                self.add_route(route)
            else:
                self.create_route(**dict(route))

    @classmethod
    def from_settings(
        cls,
        name: str,
        provider: AiProvider,
        settings: Settings | None = None,
        *,
        redis_client: Any | None = None,
        **options: Any,
    ) -> Agent:
        """Cria o agente com o session store definido em `settings`."""
        from rotaflow.infra import create_session_store

        settings = settings or get_settings()
        store = create_session_store(settings, redis_client)
        return cls(name, provider, session_store=store, settings=settings, **options)

    # -- registro -------------------------------------------------------------

    @property
    def profile(self) -> AgentProfile:
        return AgentProfile(
            name=self.name,
            description=self.description,
            goal=self.goal,
            personality=self.personality,
            guidelines=tuple(self._guidelines),
            terms=tuple(self._terms),
            schema=self.schema,
        )

    @property
    def domains(self) -> DomainRegistry:
        return self._domains

    def create_route(self, title: str, **options: Any) -> Route:
        return self.add_route(Route(title, **options))

    def add_route(self, route: Route) -> Route:
        if route.id in self._routes:
            raise RouteBuildError(f"Duplicate route id: {route.id}")
        self._routes[route.id] = route
        logger.debug("route_registered", extra={"route_id": route.id})
        return route

    def get_routes(self) -> list[Route]:
        return list(self._routes.values())

    def get_route(self, ref: str | Route) -> Route | None:
        """Busca por id e, em seguida, por título (case-insensitive)."""
        if isinstance(ref, Route):
            return self._routes.get(ref.id)
        found = self._routes.get(ref)
        if found is not None:
            return found
        lowered = ref.lower()
        return next((r for r in self._routes.values() if r.title.lower() == lowered), None)

    def add_tool(self, tool: Any) -> ToolDefinition:
        return self._tools.register(tool)

    def add_domain(self, name: str, domain: Any) -> None:
        self._domains.register(name, domain)

    def create_guideline(self, guideline: Guideline | Mapping[str, Any] | str) -> Guideline:
        item = coerce_guideline(guideline)
        self._guidelines.append(item)
        return item

    def create_term(self, term: Term | Mapping[str, Any]) -> Term:
        item = coerce_term(term)
        self._terms.append(item)
        return item

    def subscribe(self, listener: BatchEventListener) -> SubscriptionToken:
        return self._events.subscribe(listener)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self._events.unsubscribe(token)

    # -- contexto -------------------------------------------------------------

    async def get_context(self) -> dict[str, Any]:
        """Contexto do turno: `context_provider` (se houver) substitui o estático."""
        if self._context_provider is not None:
            provided = await call_maybe_async(self._context_provider)
            return dict(provided or {})
        return dict(self._context)

    async def update_context(
        self, update: Mapping[str, Any], route: Route | None = None
    ) -> dict[str, Any]:
        self._context = await self._hooks.apply_context_update(self._context, update, route)
        return dict(self._context)

    # -- sessão ---------------------------------------------------------------

    def next_step_route(
        self, session: Session, route: str | Route, condition: str | None = None
    ) -> Session:
        """Agenda troca manual de rota para o início do próximo turno."""
        target = self.get_route(route)
        if target is None:
            ref = route if isinstance(route, str) else route.id
            raise RouteNotFoundError(f"Unknown route: {ref}")
        return set_pending_transition(
            session, target.id, condition, reason=PendingTransitionReason.MANUAL
        )

    # -- turno ----------------------------------------------------------------

    async def respond(
        self,
        history: Sequence[HistoryItem | Mapping[str, Any]],
        session: Session | None = None,
        *,
        session_id: str | None = None,
        context_override: Mapping[str, Any] | None = None,
        signal: CancelToken | None = None,
    ) -> AgentResponse:
        if session is None:
            session = await self.sessions.get_or_create(session_id)
        with bind_turn_context(session.id), timed("agent.respond"):
            try:
                turn = await self._prepare(history, session, context_override, signal)
            except TurnCancelledError as exc:
                return self._cancelled(session, exc)

            if turn.kind == TurnKind.BATCH:
                response = await self._run_batch(turn, self._generate)
            else:
                request = self._plain_request(turn)
                output, error = await self._generate_safely(request)
                response = await self._plain_response(turn, output, error)
            await self._after_turn(turn, response)
            return response

    async def respond_stream(
        self,
        history: Sequence[HistoryItem | Mapping[str, Any]],
        session: Session | None = None,
        *,
        session_id: str | None = None,
        context_override: Mapping[str, Any] | None = None,
        signal: CancelToken | None = None,
    ) -> AsyncIterator[AgentStreamChunk]:
        """Versão streaming de `respond`; o último chunk traz sessão e resultado."""
        if session is None:
            session = await self.sessions.get_or_create(session_id)
        with bind_turn_context(session.id):
            try:
                turn = await self._prepare(history, session, context_override, signal)
            except TurnCancelledError as exc:
                yield AgentStreamChunk.final(self._cancelled(session, exc))
                return

            if turn.kind == TurnKind.BATCH:
                queue: asyncio.Queue[StreamChunk] = asyncio.Queue()

                async def generate(
                    request: GenerateMessageInput, definitions: list[ToolDefinition]
                ) -> GenerateMessageOutput:
                    final: StreamChunk | None = None
                    async for chunk in self.provider.generate_message_stream(request):
                        if chunk.done:
                            final = chunk
                        elif chunk.delta:
                            queue.put_nowait(chunk)
                    return GenerateMessageOutput(
                        message=final.accumulated if final else "",
                        structured=final.structured if final else None,
                        tool_calls=final.tool_calls if final else None,
                    )

                task = asyncio.ensure_future(self._run_batch(turn, generate))
                try:
                    async for chunk in _drain(queue, task):
                        yield AgentStreamChunk(delta=chunk.delta, accumulated=chunk.accumulated)
                finally:
                    if not task.done():
                        task.cancel()
                response = task.result()
            else:
                request = self._plain_request(turn)
                output: GenerateMessageOutput | None = None
                error: Exception | None = None
                try:
                    async for chunk in self.provider.generate_message_stream(request):
                        if chunk.done:
                            output = GenerateMessageOutput(
                                message=chunk.accumulated, structured=chunk.structured
                            )
                        elif chunk.delta:
                            yield AgentStreamChunk(delta=chunk.delta, accumulated=chunk.accumulated)
                except Exception as exc:  # noqa: BLE001 - vira erro do turno
                    error = exc
                response = await self._plain_response(turn, output, error)

            await self._after_turn(turn, response)
            yield AgentStreamChunk.final(response)

    # -- preparação -----------------------------------------------------------

    async def _prepare(
        self,
        history: Sequence[HistoryItem | Mapping[str, Any]],
        session: Session,
        context_override: Mapping[str, Any] | None,
        signal: CancelToken | None,
    ) -> TurnState:
        context = {**await self.get_context(), **dict(context_override or {})}
        turn = TurnState(
            history=normalize_history(history),
            original=session,
            session=session,
            context=context,
            signal=signal,
        )

        pending = session.pending_transition
        if pending is not None:
            decision = await self._apply_pending_transition(turn, pending)
        else:
            decision = await self._routing.decide_route_and_step(
                routes=self.get_routes(),
                session=session,
                history=turn.history,
                provider=self.provider,
                profile=self.profile,
                context=context,
                signal=signal,
            )
        turn.session = decision.session
        turn.route = decision.selected_route
        turn.directives = decision.response_directives

        route = turn.route
        if route is None:
            turn.kind = TurnKind.FALLBACK
            return turn
        if decision.is_route_complete:
            turn.kind = TurnKind.COMPLETION
            return turn

        await self._pre_extract(turn, route)
        if route.required_fields and route.is_complete(turn.session.data):
            turn.kind = TurnKind.COMPLETION
            return turn

        start = decision.selected_step or route.get_step(turn.session.current_step_id)
        turn.batch = await self._batch.determine_batch(
            route,
            start,
            turn.session.data,
            turn.context,
            session=turn.session,
            history=turn.history,
        )
        if turn.batch.steps or turn.batch.stopped_reason == StoppedReason.NEEDS_INPUT:
            turn.kind = TurnKind.BATCH
        elif route.is_complete(turn.session.data):
            turn.kind = TurnKind.COMPLETION
        else:
            missing = route.missing_required_fields(turn.session.data)
            logger.warning(
                "route_stalled_missing_fields",
                extra={"route_id": route.id, "missing": missing},
            )
            turn.directives = [*(turn.directives or []), f"Ask the user for: {', '.join(missing)}"]
            turn.kind = TurnKind.FALLBACK
        return turn

    async def _apply_pending_transition(
        self, turn: TurnState, pending: PendingTransition
    ) -> RoutingDecision:
        session = clear_pending_transition(turn.session)
        target = self.get_route(pending.target_route_id)
        if target is None:
            logger.warning(
                "pending_transition_target_not_found",
                extra={"target_route_id": pending.target_route_id},
            )
            return await self._routing.decide_route_and_step(
                routes=self.get_routes(),
                session=session,
                history=turn.history,
                provider=self.provider,
                profile=self.profile,
                context=turn.context,
                signal=turn.signal,
            )

        decision = RoutingDecision(
            session=self._routing.enter(session, target), selected_route=target
        )
        ctx = StepContext(
            context=turn.context,
            data=dict(decision.session.data),
            session=decision.session,
            history=list(turn.history),
        )
        candidates = await self._routing.resolve_position(decision, target, ctx)
        if candidates and not decision.is_route_complete:
            decision.selected_step = candidates[0].step
        logger.info(
            "pending_transition_applied",
            extra={"route_id": target.id, "reason": pending.reason.value},
        )
        return decision

    def _data_schema(self, route: Route | None) -> JsonSchema | None:
        if route is not None and route.schema is not None:
            return route.schema
        return self.schema

    async def _pre_extract(self, turn: TurnState, route: Route) -> None:
        """Extrai campos da rota já informados antes de montar o lote."""
        schema = self._data_schema(route)
        known = (schema or {}).get("properties") or {}
        fields = [f for f in route.data_fields() if f in known]
        if not fields or all(turn.session.data.get(f) is not None for f in fields):
            return

        profile = self.profile
        if schema is not self.schema:
            profile.schema = schema
        request = GenerateMessageInput(
            prompt=self._prompts.build_extraction_prompt(
                fields=fields,
                route=route,
                profile=profile,
                context=turn.context,
                history=turn.history,
            ),
            history=list(turn.history),
            context=turn.context,
            signal=turn.signal,
            parameters=GenerationParameters(
                json_schema=self._prompts.build_extraction_schema(fields, schema),
                schema_name="data_extraction",
            ),
        )
        try:
            with timed("agent.data_extraction"):
                output = await self.provider.generate_message(request)
        except TurnCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            log_fallback(logger, "data_extraction", type(exc).__name__)
            return

        extracted = {
            k: v for k, v in (output.structured or {}).items() if k in fields and v is not None
        }
        if not extracted:
            return
        turn.session = await self._hooks.apply_data_update(turn.session, extracted, route)
        logger.info(
            "data_pre_extracted",
            extra={"route_id": route.id, "fields": sorted(extracted)},
        )

    # -- lote -----------------------------------------------------------------

    def _context_updater(self, turn: TurnState) -> Callable[[Mapping[str, Any]], Awaitable[None]]:
        async def _update(update: Mapping[str, Any]) -> None:
            await self.update_context(update, route=turn.route)
            turn.context.update(update)

        return _update

    async def _absorb_tool_result(self, turn: TurnState, result: ToolExecutionResult) -> None:
        if not result.success:
            return
        if result.context_update:
            await self._context_updater(turn)(result.context_update)
        if result.data_update:
            turn.tool_data.update(result.data_update)

    def _batch_request(
        self, turn: TurnState, steps: Sequence[Step], awaiting: Step | None
    ) -> tuple[GenerateMessageInput, list[ToolDefinition]]:
        route = cast(Route, turn.route)
        schema = self._data_schema(route)
        profile = self.profile
        profile.schema = schema
        built = self._prompts.build(
            steps=steps,
            route=route,
            profile=profile,
            session=turn.session,
            context=turn.context,
            history=turn.history,
            directives=turn.directives,
            awaiting_step=awaiting,
        )
        definitions = self._tools.batch_tools(route, steps)
        request = GenerateMessageInput(
            prompt=built.prompt,
            history=list(turn.history),
            context=turn.context,
            tools=self._tools.specs(definitions) or None,
            signal=turn.signal,
            parameters=GenerationParameters(
                json_schema=self._prompts.build_response_schema(built.collect_fields, schema),
                schema_name="batch_response",
            ),
        )
        return request, definitions

    async def _generate(
        self, request: GenerateMessageInput, definitions: list[ToolDefinition]
    ) -> GenerateMessageOutput:
        return await self.provider.generate_message(request)

    async def _resolve_tool_calls(
        self,
        turn: TurnState,
        request: GenerateMessageInput,
        definitions: list[ToolDefinition],
        output: GenerateMessageOutput,
    ) -> GenerateMessageOutput:
        """Executa tool calls da resposta e faz os follow-ups necessários."""
        if not output.tool_calls:
            return output
        route = turn.route

        async def execute_call(call: ToolCallRecord) -> ToolExecutionResult | None:
            definition = next(
                (d for d in definitions if call.name in (d.id, d.name)), None
            ) or self._tools.resolve(call.name, route=route)
            if definition is None:
                logger.warning("tool_call_unknown", extra={"tool": call.name})
                return None
            result = await self._tools.execute_tool(
                definition,
                call.arguments,
                context=turn.context,
                data={**turn.session.data, **turn.tool_data},
                history=turn.history,
                update_context=self._context_updater(turn),
                route=route,
            )
            await self._absorb_tool_result(turn, result)
            turn.tool_calls.append(call)
            return result

        async def follow_up(
            extra: list[HistoryItem], offer_tools: bool, iteration: int
        ) -> GenerateMessageOutput:
            if turn.signal is not None:
                turn.signal.raise_if_cancelled()
            prompt = request.prompt
            if iteration > 1:
                prompt = f"{prompt}\n\n{FOLLOW_UP_TEXT_INSTRUCTION}"
            follow = request.model_copy(
                update={
                    "prompt": prompt,
                    "history": [*request.history, *extra],
                    "tools": request.tools if offer_tools else None,
                }
            )
            return await self.provider.generate_message(follow)

        loop = await run_tool_loop(
            output.tool_calls,
            execute_call=execute_call,
            follow_up=follow_up,
            max_loops=self.settings.tool_max_loops,
            initial_message=_message_of(output) or None,
        )
        structured = {**(output.structured or {}), **(loop.structured or {})}
        message = loop.message or _message_of(output)
        if structured:
            structured["message"] = message
        return GenerateMessageOutput(
            message=message,
            structured=structured or None,
            tool_calls=loop.tool_calls or None,
        )

    async def _run_batch(self, turn: TurnState, generate: GenerateFn) -> AgentResponse:
        route = cast(Route, turn.route)
        batch = cast(BatchResult, turn.batch)

        awaiting = (
            batch.stopped_at_step
            if batch.stopped_reason == StoppedReason.NEEDS_INPUT
            and isinstance(batch.stopped_at_step, Step)
            else None
        )
        if not batch.steps and awaiting is not None:
            logger.debug(
                "single_step_fallback", extra={"route_id": route.id, "step_id": awaiting.id}
            )
            batch = BatchResult(
                steps=[awaiting],
                stopped_reason=StoppedReason.NEEDS_INPUT,
                stopped_at_step=awaiting,
            )
            awaiting = None

        request, definitions = self._batch_request(turn, batch.steps, awaiting)

        async def execute_hook(
            hook: Hook, context: dict[str, Any], data: dict[str, Any], step: Step
        ) -> Any:
            result = await self._hooks.execute_hook(
                hook,
                context,
                data,
                step,
                route=route,
                session=turn.session,
                history=turn.history,
                update_context=self._context_updater(turn),
            )
            if isinstance(result, ToolExecutionResult):
                await self._absorb_tool_result(turn, result)
            elif isinstance(result, Mapping):
                turn.tool_data.update(result)
            return result

        async def generate_message() -> GenerateMessageOutput:
            output = await generate(request, definitions)
            return await self._resolve_tool_calls(turn, request, definitions, output)

        async def merge_collected(session: Session, collected: dict[str, Any]) -> Session:
            return await self._hooks.apply_data_update(session, collected, route)

        result = await self._batch.execute_batch(
            batch,
            turn.session,
            turn.context,
            execute_hook,
            generate_message,
            self._data_schema(route),
            route_id=route.id,
            signal=turn.signal,
            merge_collected=merge_collected,
        )
        if result.stopped_reason in FATAL_STOP_REASONS:
            return self._failed(turn, result)

        session = result.session
        if turn.tool_data:
            session = await self._hooks.apply_data_update(session, turn.tool_data, route)
        last = batch.steps[-1]
        session = enter_step(session, last.id, last.description)

        complete = batch.stopped_reason in COMPLETION_STOP_REASONS and route.is_complete(
            session.data
        )
        if complete:
            session = await self._finish_route(turn, session, route)

        return AgentResponse(
            message=result.message,
            session=session,
            route=route,
            step=route.get_step(session.current_step_id),
            tool_calls=list(turn.tool_calls) or None,
            is_route_complete=complete,
            stopped_reason=result.stopped_reason,
            executed_steps=list(result.executed_steps),
            error=result.error,
            validation_errors=list(result.validation_errors),
            structured=result.structured,
        )

    def _failed(self, turn: TurnState, result: BatchExecutionResult) -> AgentResponse:
        logger.error(
            "turn_failed",
            extra={
                "route_id": turn.route.id if turn.route else None,
                "stopped_reason": result.stopped_reason.value,
                "error_type": result.error.type.value if result.error else None,
            },
        )
        return AgentResponse(
            message="",
            session=turn.original,
            route=turn.route,
            step=None,
            stopped_reason=result.stopped_reason,
            executed_steps=list(result.executed_steps),
            error=result.error,
        )

    @staticmethod
    def _cancelled(session: Session, exc: TurnCancelledError) -> AgentResponse:
        logger.info("turn_cancelled", extra={"reason": exc.reason})
        return AgentResponse(
            message="",
            session=session,
            stopped_reason=StoppedReason.LLM_ERROR,
            error=BatchExecutionError(type=BatchErrorType.LLM_CALL, message=str(exc)),
        )

    # -- conclusão e fallback -------------------------------------------------

    async def _finish_route(self, turn: TurnState, session: Session, route: Route) -> Session:
        """END_ROUTE + completed=True; `on_complete` vira transição pendente."""
        config = await route.evaluate_on_complete(session, turn.context)
        next_route: str | None = None
        if config is not None:
            target = self.get_route(config.next_route)
            if target is None:
                logger.warning(
                    "on_complete_target_not_found",
                    extra={"route_id": route.id, "next_route": config.next_route},
                )
            else:
                values = template_values(turn.context, session.data, session)
                session = set_pending_transition(
                    session,
                    target.id,
                    render_template(config.condition, values) or None,
                    reason=PendingTransitionReason.ROUTE_COMPLETE,
                )
                next_route = target.id
        session = enter_step(session, END_ROUTE_ID, ROUTE_COMPLETED_DESCRIPTION)
        session = mark_route_completed(session, route.id)
        logger.info("route_completed", extra={"route_id": route.id, "next_route": next_route})
        return session

    def _plain_request(self, turn: TurnState) -> GenerateMessageInput:
        """Requisição sem lote: conclusão de rota ou resposta livre."""
        profile = self.profile
        if turn.kind == TurnKind.COMPLETION and turn.route is not None:
            prompt = self._prompts.build_completion_prompt(
                route=turn.route,
                profile=profile,
                session=turn.session,
                context=turn.context,
                history=turn.history,
            )
            schema_name = "completion_message"
        else:
            prompt = self._prompts.build_fallback_prompt(
                profile=profile,
                session=turn.session,
                context=turn.context,
                history=turn.history,
                directives=turn.directives,
                route=turn.route,
            )
            schema_name = "fallback_response"
        return GenerateMessageInput(
            prompt=prompt,
            history=list(turn.history),
            context=turn.context,
            signal=turn.signal,
            parameters=GenerationParameters(
                json_schema=self._prompts.build_response_schema([]), schema_name=schema_name
            ),
        )

    async def _generate_safely(
        self, request: GenerateMessageInput
    ) -> tuple[GenerateMessageOutput | None, Exception | None]:
        try:
            return await self.provider.generate_message(request), None
        except Exception as exc:  # noqa: BLE001 - vira erro do turno
            return None, exc

    async def _plain_response(
        self,
        turn: TurnState,
        output: GenerateMessageOutput | None,
        error: Exception | None,
    ) -> AgentResponse:
        route = turn.route
        if turn.kind == TurnKind.COMPLETION and route is not None:
            if isinstance(error, TurnCancelledError):
                return self._cancelled(turn.original, error)
            message = _message_of(output) if output is not None else ""
            if error is not None:
                log_fallback(logger, "completion_message", type(error).__name__)
            if not message:
                message = COMPLETION_FALLBACK_TEXT.format(title=route.title.lower())
            session = await self._finish_route(turn, turn.session, route)
            return AgentResponse(
                message=message,
                session=session,
                route=route,
                is_route_complete=True,
                stopped_reason=StoppedReason.ROUTE_COMPLETE,
                structured=output.structured if output is not None else None,
            )

        if error is not None or output is None:
            logger.error(
                "fallback_response_failed",
                extra={"error_type": type(error).__name__ if error else None},
            )
            return AgentResponse(
                message="",
                session=turn.original,
                route=route,
                stopped_reason=StoppedReason.LLM_ERROR,
                error=BatchExecutionError(
                    type=BatchErrorType.LLM_CALL,
                    message=str(error) if error else "empty provider response",
                    details=[error] if error else [],
                ),
            )
        return AgentResponse(
            message=_message_of(output),
            session=turn.session,
            route=route,
            step=route.get_step(turn.session.current_step_id) if route else None,
            stopped_reason=turn.batch.stopped_reason if turn.batch else None,
            structured=output.structured,
        )

    # -- pós-turno ------------------------------------------------------------

    async def _after_turn(self, turn: TurnState, response: AgentResponse) -> None:
        """Auto-save e histórico; turnos com falha fatal não são persistidos."""
        if response.failed:
            return
        self.sessions.update(response.session)
        if self.settings.auto_save_enabled:
            await self.sessions.persist(response.session)
        persistence = self.sessions.persistence
        if persistence is not None and persistence.has_message_store:
            items: list[HistoryItem] = []
            text = last_user_message(turn.history)
            if text:
                items.append(user_message(text))
            if response.message:
                items.append(assistant_message(response.message))
            await self.sessions.add_messages(response.session.id, items)
