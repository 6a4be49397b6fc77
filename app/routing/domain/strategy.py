"""
Per-query execution strategy, derived from the intent by StrategyMapper.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.routing.domain.intent import QueryType
from app.routing.domain.plan import TaskPlan
from app.routing.domain.query import GenerateParams, RetrievalParams


class RetrievalStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    params: RetrievalParams = Field(default_factory=RetrievalParams)
    multi_query_enabled: bool = False
    hyde_enabled: bool = False
    step_back_enabled: bool = False
    decomposition_enabled: bool = False


class EvaluationStrategy(BaseModel):
    """Quality gate applied after evaluation. Thresholds are on a 0-1 scale."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    min_faithfulness: float = 0.6
    min_relevance: float = 0.5
    allow_retry: bool = False
    max_retry: int = Field(default=0, ge=0)

    @classmethod
    def disabled(cls) -> "EvaluationStrategy":
        return cls(enabled=False, allow_retry=False, max_retry=0)


class QueryStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    processor_type: QueryType = QueryType.BASIC
    retrieval: RetrievalStrategy = Field(default_factory=RetrievalStrategy)
    generation: GenerateParams = Field(default_factory=GenerateParams)
    evaluation: EvaluationStrategy = Field(default_factory=EvaluationStrategy)
    clarification_required: bool = False
    task_plan: Optional[TaskPlan] = None

    def downgraded(self) -> "QueryStrategy":
        """BASIC processing with evaluation gating switched off."""
        return self.model_copy(
            update={
                "processor_type": QueryType.BASIC,
                "evaluation": EvaluationStrategy.disabled(),
                "clarification_required": False,
            }
        )
