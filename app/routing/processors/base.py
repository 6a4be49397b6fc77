"""
BaseQueryProcessor: the shared retrieve-generate-evaluate pipeline.

Pipeline per query:
1. Mark the query PROCESSING and persist it
2. Embed the query (an existing vector is reused)
3. Gather contexts (variants override this step)
4. Project contexts into prompt text and sources
5. Generate the answer
6. Evaluate it; evaluation failures degrade to neutral scores
7. Mark query and response COMPLETED and persist both

A failure in steps 1-5 marks the query and response FAILED, persists
them and returns the response. Nothing is raised to the caller.
"""

from __future__ import annotations

import time
from abc import ABC
from datetime import datetime
from typing import Optional

from loguru import logger

from app.routing.domain import (
    EvaluationScores,
    EvaluationStrategy,
    GenerateParams,
    Query,
    QueryStatus,
    QueryStrategy,
    QueryType,
    Response,
    RetrievalParams,
    RetrievedContext,
    SourceRef,
)
from app.routing.protocols import AnswerEvaluator, Generator, QueryRepository
from app.routing.retrieval.aggregator import RetrievalAggregator
from ragroute_core.runtime import (
    Capability,
    CapabilityRunner,
    EvaluationFailure,
    GenerationFailure,
    RetryPolicy,
    ServiceError,
    StorageError,
    with_retry,
)

NO_CONTEXT_ANSWER = "I couldn't find any relevant information to answer that question."


def format_contexts(contexts: list[RetrievedContext]) -> str:
    """Render contexts as numbered source blocks for prompts and judges."""
    parts = []
    for i, context in enumerate(contexts, 1):
        chunk = context.chunk
        label = chunk.title or chunk.source or chunk.document_id
        parts.append(f"[Source {i}: {label}, chunk {chunk.chunk_index}]\n{chunk.content}")
    return "\n\n".join(parts)


def passes_quality_gate(scores: Optional[EvaluationScores], strategy: EvaluationStrategy) -> bool:
    """Faithfulness and relevance (1-10 scale) against the strategy minimums (0-1 scale)."""
    if scores is None or not strategy.enabled or scores.error:
        return True
    return (
        scores.faithfulness / 10 >= strategy.min_faithfulness
        and scores.relevance / 10 >= strategy.min_relevance
    )


class BaseQueryProcessor(ABC):
    """
    Template for query processors. Subclasses set `query_type` and may
    override `gather_contexts` to change how evidence is collected.
    """

    query_type: QueryType = QueryType.BASIC

    def __init__(
        self,
        aggregator: RetrievalAggregator,
        generator: Generator,
        evaluator: AnswerEvaluator | None,
        repository: QueryRepository,
        runner: CapabilityRunner,
    ):
        self._aggregator = aggregator
        self._generator = generator
        self._evaluator = evaluator
        self._repository = repository
        self._runner = runner

    @property
    def aggregator(self) -> RetrievalAggregator:
        return self._aggregator

    async def process(self, query: Query, strategy: QueryStrategy | None = None) -> Response:
        """Run the full pipeline for one query. Never raises."""
        strategy = strategy or QueryStrategy(processor_type=self.query_type)
        started = time.perf_counter()
        response = Response(
            query_id=query.id,
            session_id=query.session_id,
            status=QueryStatus.PROCESSING,
            processing_type=self.query_type,
        )

        try:
            query.status = QueryStatus.PROCESSING
            query.query_type = self.query_type
            await self._store(self._repository.save_query, query)

            if query.vector is None:
                query.vector = await self._aggregator.embed(query.text)

            contexts = await self.gather_contexts(query, strategy.retrieval.params)
            context_text = format_contexts(contexts)
            response.sources = [SourceRef.from_context(c) for c in contexts]
            response.retrieved_context = context_text
            response.metadata["contexts"] = len(contexts)

            response.answer = await self.generate(query, contexts, strategy.generation)
        except Exception as e:
            return await self._fail(query, response, e, started)

        response.evaluation = await self.evaluate(query, response, strategy.evaluation)
        response.metadata["quality_passed"] = passes_quality_gate(
            response.evaluation, strategy.evaluation
        )

        latency_ms = int((time.perf_counter() - started) * 1000)
        completed_at = datetime.utcnow()
        query.status = QueryStatus.COMPLETED
        query.completed_at = completed_at
        query.latency_ms = latency_ms
        response.status = QueryStatus.COMPLETED
        response.latency_ms = latency_ms

        try:
            await self._store(
                self._repository.update_query_status,
                query.id,
                QueryStatus.COMPLETED,
                completed_at,
                latency_ms,
                None,
            )
            await self._store(self._repository.save_response, response)
        except StorageError as e:
            logger.error(f"[{query.id}] Failed to persist completed query: {e}")

        logger.info(
            f"[{query.id}] {self.query_type.value} completed in {latency_ms}ms "
            f"with {len(response.sources)} sources"
        )
        return response

    async def gather_contexts(self, query: Query, params: RetrievalParams) -> list[RetrievedContext]:
        return await self._aggregator.retrieve(query.text, params, vector=query.vector)

    async def generate(
        self, query: Query, contexts: list[RetrievedContext], params: GenerateParams
    ) -> str:
        if not contexts:
            logger.info(f"[{query.id}] No contexts retrieved, skipping generation")
            return NO_CONTEXT_ANSWER
        return await self._runner.run(
            Capability.GENERATE,
            self._generator.generate,
            query.original_text,
            [c.chunk.content for c in contexts],
            params,
            error_cls=GenerationFailure,
        )

    async def evaluate(
        self, query: Query, response: Response, strategy: EvaluationStrategy
    ) -> Optional[EvaluationScores]:
        """
        Score the answer. Failures never abort the query: after the allowed
        retries the neutral scores carry the error as their reasoning.
        """
        if self._evaluator is None or not strategy.enabled:
            return None

        attempts = 1 + (strategy.max_retry if strategy.allow_retry else 0)

        @with_retry(RetryPolicy(max_attempts=attempts, base_delay=0.5, max_delay=2.0))
        async def _score() -> EvaluationScores:
            return await self._runner.run(
                Capability.EVALUATE,
                self._evaluator.evaluate,
                query.original_text,
                response.answer,
                response.retrieved_context,
                error_cls=EvaluationFailure,
            )

        try:
            return await _score()
        except ServiceError as e:
            logger.warning(f"[{query.id}] Evaluation failed, using neutral scores: {e}")
            return EvaluationScores.neutral(e.message_safe)

    async def _store(self, fn, *args) -> None:
        await self._runner.run(Capability.STORE, fn, *args, error_cls=StorageError)

    async def _fail(self, query: Query, response: Response, error: Exception, started: float) -> Response:
        message = error.message_safe if isinstance(error, ServiceError) else f"Unexpected error: {error}"
        if isinstance(error, ServiceError):
            logger.error(f"[{query.id}] {self.query_type.value} failed: {error}")
        else:
            logger.exception(f"[{query.id}] {self.query_type.value} failed unexpectedly: {error}")

        latency_ms = int((time.perf_counter() - started) * 1000)
        completed_at = datetime.utcnow()
        query.status = QueryStatus.FAILED
        query.error_message = message
        query.completed_at = completed_at
        query.latency_ms = latency_ms
        response.status = QueryStatus.FAILED
        response.error_message = message
        response.latency_ms = latency_ms

        try:
            await self._store(
                self._repository.update_query_status,
                query.id,
                QueryStatus.FAILED,
                completed_at,
                latency_ms,
                message,
            )
            await self._store(self._repository.save_response, response)
        except ServiceError as e:
            logger.error(f"[{query.id}] Failed to persist FAILED state: {e}")
        return response
