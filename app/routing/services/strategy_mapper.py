"""
StrategyMapper: turns a QueryIntent and request params into a QueryStrategy.
"""

from __future__ import annotations

from app.routing.domain import (
    EvaluationStrategy,
    GenerateParams,
    QueryIntent,
    QueryParams,
    QueryStrategy,
    QueryType,
    RetrievalParams,
    RetrievalStrategy,
    TaskType,
)

TASK_PROCESSORS: dict[TaskType, QueryType] = {
    TaskType.COMPARISON: QueryType.MULTI_QUERY,
    TaskType.ANALYSIS: QueryType.STEP_BACK,
    TaskType.DECISION_SUPPORT: QueryType.STEP_BACK,
    TaskType.TROUBLESHOOT: QueryType.DECOMPOSITION,
}

STRICT_EVALUATION_TASKS = frozenset(
    {TaskType.ANALYSIS, TaskType.DECISION_SUPPORT, TaskType.ORDER_LOOKUP}
)


class StrategyMapper:
    """Pure mapping, no I/O."""

    def map(self, intent: QueryIntent, params: QueryParams | None = None) -> QueryStrategy:
        """
        Build the strategy for one query.

        Raises:
            ValidationError: If retrieval overrides in `params` are invalid.
        """
        params = params or QueryParams()
        processor = self.decide_processor(intent)
        return QueryStrategy(
            processor_type=processor,
            retrieval=self.retrieval_strategy(intent, params, processor),
            generation=self.generation_params(intent, params),
            evaluation=self.evaluation_strategy(intent, params),
            clarification_required=intent.requires_clarification,
            task_plan=intent.task_plan,
        )

    @staticmethod
    def decide_processor(intent: QueryIntent) -> QueryType:
        if intent.task_plan is not None and intent.task_plan.has_tasks:
            return QueryType.RAG_FUSION
        if intent.recommended_processor is not None:
            return intent.recommended_processor
        return TASK_PROCESSORS.get(intent.task_type, QueryType.BASIC)

    @staticmethod
    def retrieval_strategy(
        intent: QueryIntent, params: QueryParams, processor: QueryType
    ) -> RetrievalStrategy:
        return RetrievalStrategy(
            params=RetrievalParams.build(params.retrieval),
            multi_query_enabled=(
                processor in (QueryType.MULTI_QUERY, QueryType.RAG_FUSION)
                or intent.task_type == TaskType.COMPARISON
                or params.multi_query_enabled
            ),
            hyde_enabled=processor == QueryType.HYDE or params.hyde_enabled,
            step_back_enabled=(
                processor == QueryType.STEP_BACK
                or intent.task_type == TaskType.ANALYSIS
                or params.step_back_enabled
            ),
            decomposition_enabled=processor == QueryType.DECOMPOSITION,
        )

    @staticmethod
    def generation_params(intent: QueryIntent, params: QueryParams) -> GenerateParams:
        default_temperature = 0.2 if intent.task_type == TaskType.DECISION_SUPPORT else 0.1
        values = {
            "temperature": default_temperature if params.temperature is None else params.temperature,
        }
        if params.max_tokens is not None:
            values["max_tokens"] = params.max_tokens
        return GenerateParams(**values)

    @staticmethod
    def evaluation_strategy(intent: QueryIntent, params: QueryParams) -> EvaluationStrategy:
        if not params.evaluation_enabled:
            return EvaluationStrategy.disabled()
        if intent.task_type in STRICT_EVALUATION_TASKS:
            return EvaluationStrategy(
                min_faithfulness=0.85, min_relevance=0.6, allow_retry=True, max_retry=1
            )
        return EvaluationStrategy(min_faithfulness=0.6, min_relevance=0.5)
