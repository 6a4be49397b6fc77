"""
RagOrchestrationService: end-to-end query handling.

Flow per query:
1. Validate request params and record the query (CREATED)
2. Detect the intent; plan multi-step intents (plan cache first)
3. Publish the routing decision
4. Ask for clarification when the intent is unclear
5. Map intent to strategy, rewrite the query as the strategy asks
6. Execute the task plan, or route to a single processor
7. Retry once with a downgraded strategy when the answer misses the quality bar

`process_query` never raises; every failure ends as a FAILED response.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from app.routing.domain import (
    IntentSource,
    Query,
    QueryIntent,
    QueryParams,
    QueryStatus,
    QueryStrategy,
    QueryType,
    Response,
)
from app.routing.intent.cascade import IntentCascade
from app.routing.orchestration.fallback import FallbackManager
from app.routing.orchestration.task_orchestrator import TaskOrchestrator
from app.routing.planning.planner import PlanResolution, TaskPlanner
from app.routing.protocols import QueryRepository
from app.routing.router import KeywordQueryRouter, QueryRouter
from app.routing.services.clarification import DEFAULT_CLARIFICATION, ClarificationService
from app.routing.services.query_rewriter import QueryRewriteService
from app.routing.services.strategy_mapper import StrategyMapper
from ragroute_core.config import settings
from ragroute_core.infrastructure.telemetry import get_tracer
from ragroute_core.runtime import (
    Capability,
    CapabilityRunner,
    PlanNotFound,
    RouteNotFound,
    ServiceError,
    StorageError,
    ValidationError,
)


class RagOrchestrationService:
    """
    Entry point of the routing pipeline.

    Usage:
        service = build_orchestration_service()
        await service.refresh_routes()
        response = await service.process_query("compare plan A and plan B", user_id="u1")
    """

    def __init__(
        self,
        cascade: IntentCascade,
        task_planner: TaskPlanner,
        router: QueryRouter,
        repository: QueryRepository,
        runner: CapabilityRunner,
        strategy_mapper: StrategyMapper | None = None,
        rewriter: QueryRewriteService | None = None,
        clarification: ClarificationService | None = None,
        task_orchestrator: TaskOrchestrator | None = None,
        fallback_manager: FallbackManager | None = None,
        enable_clarification: bool | None = None,
    ):
        self._cascade = cascade
        self._task_planner = task_planner
        self._router = router
        self._keyword_router = KeywordQueryRouter(router)
        self._repository = repository
        self._runner = runner
        self._mapper = strategy_mapper or StrategyMapper()
        self._rewriter = rewriter
        self._clarification = clarification
        self._task_orchestrator = task_orchestrator
        self._fallback = fallback_manager
        self.enable_clarification = (
            settings.ENABLE_CLARIFICATION if enable_clarification is None else enable_clarification
        )

    @property
    def cascade(self) -> IntentCascade:
        return self._cascade

    async def refresh_routes(self):
        """Reload intent rules and semantic routes."""
        return await self._cascade.refresh_routes()

    async def process_query(
        self,
        text: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        params: QueryParams | dict[str, Any] | None = None,
    ) -> Response:
        """
        Answer one query.

        Args:
            text: The user's question.
            user_id: Caller identity, recorded with the query.
            session_id: Conversation identifier, copied onto the response.
            params: Per-request overrides, as QueryParams or a plain dict.

        Returns:
            A COMPLETED, CLARIFY or FAILED response. Never raises.
        """
        query = Query(original_text=text or "", user_id=user_id, session_id=session_id)
        started = time.perf_counter()

        with get_tracer().start_as_current_span("ragroute.process_query") as span:
            span.set_attribute("ragroute.query_id", query.id)
            try:
                response = await self._process(query, params, started)
            except Exception as e:
                logger.exception(f"[{query.id}] Query processing failed unexpectedly: {e}")
                response = await self._finish_failed(query, f"Unexpected error: {e}", started)

            span.set_attribute("ragroute.status", response.status.value)
            if response.processing_type is not None:
                span.set_attribute("ragroute.processor", response.processing_type.value)
            return response

    async def _process(
        self, query: Query, raw_params: QueryParams | dict[str, Any] | None, started: float
    ) -> Response:
        try:
            params = QueryParams.coerce(raw_params)
            if not query.original_text.strip():
                raise ValidationError("Query text must not be empty")
        except ValidationError as e:
            logger.warning(f"[{query.id}] Rejected query: {e}")
            return await self._finish_failed(query, e.message_safe, started)

        logger.info(f"[{query.id}] Processing query: {query.original_text[:80]}")
        try:
            await self._store(self._repository.save_query, query)
        except StorageError as e:
            logger.error(f"[{query.id}] Failed to record query: {e}")
            return await self._finish_failed(query, e.message_safe, started)

        intent, resolution = await self._detect(query)
        query.metadata.update(
            {
                "intent_source": intent.source.value,
                "task_type": intent.task_type.value,
                "intent_confidence": intent.confidence,
            }
        )

        explicit = params.explicit_type
        if intent.requires_clarification and self.enable_clarification and explicit is None:
            return await self._clarify(query, intent, started)

        try:
            strategy = self._strategy(query, intent, params)
        except ValidationError as e:
            logger.warning(f"[{query.id}] Invalid strategy parameters: {e}")
            return await self._finish_failed(query, e.message_safe, started)

        logger.info(
            f"[{query.id}] intent={intent.task_type.value} source={intent.source.value} "
            f"processor={strategy.processor_type.value} plan_cached={resolution.cached}"
        )

        if self._rewriter is not None:
            await self._rewriter.rewrite(query, intent, strategy)

        if strategy.task_plan is not None and explicit is None and self._task_orchestrator is not None:
            response = await self._execute_plan(query, intent, strategy, started)
            if response is not None:
                return response
            logger.warning(f"[{query.id}] Task plan produced no response, falling back to a single processor")

        return await self._run_processor(query, strategy, started)

    async def _detect(self, query: Query) -> tuple[QueryIntent, PlanResolution]:
        result = await self._cascade.run(
            query.original_text, user_id=query.user_id, session_id=query.session_id
        )
        intent = result.intent
        resolution = PlanResolution(intent.task_plan)

        if intent.multi_step and intent.task_plan is None:
            try:
                resolution = await self._task_planner.resolve(query.original_text, intent)
            except Exception as e:
                logger.warning(f"[{query.id}] Task planning failed, continuing without a plan: {e}")
            if resolution.plan is not None:
                intent = intent.with_plan(resolution.plan)

        self._cascade.tracker.publish(
            result.trace.finish(intent, reason=result.reason, cached=resolution.cached)
        )
        return intent, resolution

    def _strategy(self, query: Query, intent: QueryIntent, params: QueryParams) -> QueryStrategy:
        strategy = self._mapper.map(intent, params)

        if params.explicit_type is not None:
            selected = params.explicit_type
        elif intent.source == IntentSource.FALLBACK:
            selected = self._keyword_router.select(query.original_text, params)
        else:
            return strategy

        if selected == strategy.processor_type:
            return strategy
        logger.debug(f"[{query.id}] Processor overridden: {strategy.processor_type.value} -> {selected.value}")
        return strategy.model_copy(
            update={
                "processor_type": selected,
                "retrieval": self._mapper.retrieval_strategy(intent, params, selected),
            }
        )

    async def _clarify(self, query: Query, intent: QueryIntent, started: float) -> Response:
        question = DEFAULT_CLARIFICATION
        if self._clarification is not None:
            try:
                question = await self._runner.run(
                    Capability.GENERATE,
                    self._clarification.build_clarification,
                    query.original_text,
                    intent,
                    error_cls=ServiceError,
                )
            except ServiceError as e:
                logger.warning(f"[{query.id}] Clarification failed, using default question: {e}")

        logger.info(f"[{query.id}] Asking for clarification")
        response = Response(
            query_id=query.id,
            session_id=query.session_id,
            answer=question,
            status=QueryStatus.CLARIFY,
            metadata={"task_type": intent.task_type.value},
        )
        return await self._finish(query, response, started)

    async def _execute_plan(
        self, query: Query, intent: QueryIntent, strategy: QueryStrategy, started: float
    ) -> Optional[Response]:
        plan = strategy.task_plan
        logger.info(f"[{query.id}] Executing task plan with {len(plan.tasks)} steps")
        try:
            result = await self._task_orchestrator.execute_plan(plan, query, strategy, intent)
        except PlanNotFound as e:
            logger.warning(f"[{query.id}] {e}")
            return None
        if result is None:
            return None

        response = result.model_copy(
            update={
                "query_id": query.id,
                "session_id": query.session_id,
                "processing_type": result.processing_type or strategy.processor_type,
                "metadata": {**result.metadata, "plan_steps": len(plan.tasks)},
            }
        )
        if response.status == QueryStatus.FAILED:
            return await self._finish_failed(
                query, response.error_message or "Task plan failed", started, response=response
            )
        return await self._finish(query, response, started)

    async def _run_processor(self, query: Query, strategy: QueryStrategy, started: float) -> Response:
        try:
            processor = self._router.route(strategy.processor_type)
        except RouteNotFound as e:
            logger.error(f"[{query.id}] {e}")
            return await self._finish_failed(
                query, e.message_safe, started, processing_type=strategy.processor_type
            )

        response = await processor.process(query, strategy)
        if response.status != QueryStatus.COMPLETED or self._fallback is None:
            return response

        adjusted = self._fallback.maybe_adjust_strategy(query, response, strategy)
        if adjusted is strategy:
            return response

        try:
            retry_processor = self._router.route(adjusted.processor_type)
        except RouteNotFound as e:
            logger.warning(f"[{query.id}] Downgrade unavailable, keeping first answer: {e}")
            return response

        logger.info(
            f"[{query.id}] Strategy downgraded: {strategy.processor_type.value} -> "
            f"{adjusted.processor_type.value}"
        )
        retried = await retry_processor.process(query, adjusted)
        retried.metadata["downgraded_from"] = strategy.processor_type.value
        return retried

    async def _store(self, fn, *args) -> None:
        await self._runner.run(Capability.STORE, fn, *args, error_cls=StorageError)

    async def _finish(self, query: Query, response: Response, started: float) -> Response:
        """Record a terminal state reached outside a processor."""
        latency_ms = int((time.perf_counter() - started) * 1000)
        completed_at = datetime.utcnow()
        query.status = response.status
        query.completed_at = completed_at
        query.latency_ms = latency_ms
        query.error_message = response.error_message
        response.latency_ms = latency_ms

        try:
            await self._store(
                self._repository.update_query_status,
                query.id,
                response.status,
                completed_at,
                latency_ms,
                response.error_message,
            )
            await self._store(self._repository.save_response, response)
        except ServiceError as e:
            logger.error(f"[{query.id}] Failed to persist {response.status.value} state: {e}")
        return response

    async def _finish_failed(
        self,
        query: Query,
        message: str,
        started: float,
        response: Response | None = None,
        processing_type: QueryType | None = None,
    ) -> Response:
        """
        Record a FAILED query and response.

        The query is upserted rather than updated since the failure may
        happen before it was first saved.
        """
        if response is None:
            response = Response.failed(query, message, processing_type=processing_type)
        else:
            response.status = QueryStatus.FAILED
            response.error_message = message

        latency_ms = int((time.perf_counter() - started) * 1000)
        query.status = QueryStatus.FAILED
        query.error_message = message
        query.completed_at = datetime.utcnow()
        query.latency_ms = latency_ms
        response.latency_ms = latency_ms

        try:
            await self._store(self._repository.save_query, query)
            await self._store(self._repository.save_response, response)
        except ServiceError as e:
            logger.error(f"[{query.id}] Failed to persist FAILED state: {e}")
        return response
