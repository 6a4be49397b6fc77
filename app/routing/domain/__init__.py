"""Routing domain models."""

from app.routing.domain.intent import (
    ComplexityLevel,
    DetectorResult,
    IntentClassification,
    IntentRule,
    IntentSource,
    MatchMode,
    QueryIntent,
    QueryType,
    RoutingDecision,
    RuleType,
    TaskType,
    TopicDomain,
)
from app.routing.domain.plan import AUTO_TOOL, CachedTaskPlan, TaskExecutionContext, TaskNode, TaskPlan
from app.routing.domain.query import (
    ChunkHit,
    DocAggregation,
    EvaluationScores,
    GenerateParams,
    Query,
    QueryParams,
    QueryStatus,
    Response,
    RetrievalParams,
    RetrievedContext,
    SourceRef,
)
from app.routing.domain.strategy import EvaluationStrategy, QueryStrategy, RetrievalStrategy

__all__ = [
    "AUTO_TOOL",
    "CachedTaskPlan",
    "ChunkHit",
    "ComplexityLevel",
    "DetectorResult",
    "DocAggregation",
    "EvaluationScores",
    "EvaluationStrategy",
    "GenerateParams",
    "IntentClassification",
    "IntentRule",
    "IntentSource",
    "MatchMode",
    "Query",
    "QueryIntent",
    "QueryParams",
    "QueryStatus",
    "QueryStrategy",
    "QueryType",
    "Response",
    "RetrievalParams",
    "RetrievalStrategy",
    "RetrievedContext",
    "RoutingDecision",
    "RuleType",
    "SourceRef",
    "TaskExecutionContext",
    "TaskNode",
    "TaskPlan",
    "TaskType",
    "TopicDomain",
]
