"""
Intent domain models.

Rules drive the cascade, QueryIntent is its output, and DetectorResult /
RoutingDecision record how the cascade got there.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.routing.domain.plan import TaskPlan


class _LenientEnum(str, Enum):
    """str Enum that parses names case-insensitively and maps unknowns to UNKNOWN."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().upper()
            for member in cls:
                if member.value == key:
                    return member
            if "UNKNOWN" in cls.__members__:
                return cls.__members__["UNKNOWN"]
        return None


class TaskType(_LenientEnum):
    FAQ = "FAQ"
    FACT_LOOKUP = "FACT_LOOKUP"
    COMPARISON = "COMPARISON"
    SUMMARIZATION = "SUMMARIZATION"
    ANALYSIS = "ANALYSIS"
    DECISION_SUPPORT = "DECISION_SUPPORT"
    TROUBLESHOOT = "TROUBLESHOOT"
    ORDER_LOOKUP = "ORDER_LOOKUP"
    WEATHER = "WEATHER"
    CHAT = "CHAT"
    UNKNOWN = "UNKNOWN"


class TopicDomain(_LenientEnum):
    GENERAL = "GENERAL"
    PRODUCT = "PRODUCT"
    ORDER = "ORDER"
    LEGAL = "LEGAL"
    FINANCE = "FINANCE"
    TECH_SUPPORT = "TECH_SUPPORT"
    WEATHER = "WEATHER"
    UNKNOWN = "UNKNOWN"


class ComplexityLevel(_LenientEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class QueryType(str, Enum):
    """Processor selector used by the query router."""

    BASIC = "BASIC"
    MULTI_QUERY = "MULTI_QUERY"
    HYDE = "HYDE"
    DECOMPOSITION = "DECOMPOSITION"
    STEP_BACK = "STEP_BACK"
    SELF_RAG = "SELF_RAG"
    RAG_FUSION = "RAG_FUSION"
    RETRIEVAL_AWARE = "RETRIEVAL_AWARE"

    @classmethod
    def parse(cls, value: "QueryType | str | None") -> Optional["QueryType"]:
        """Return the member named by `value` (case-insensitive), or None."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class IntentSource(str, Enum):
    RULE_BASED = "RULE_BASED"
    SEMANTIC_ROUTER = "SEMANTIC_ROUTER"
    LLM_PLANNER = "LLM_PLANNER"
    FALLBACK = "FALLBACK"


class RuleType(str, Enum):
    KEYWORD = "KEYWORD"
    REGEX = "REGEX"
    SEMANTIC_EXAMPLE = "SEMANTIC_EXAMPLE"


class MatchMode(str, Enum):
    EXACT = "EXACT"
    CONTAINS = "CONTAINS"
    PREFIX = "PREFIX"
    SUFFIX = "SUFFIX"
    REGEX = "REGEX"


class IntentRule(BaseModel):
    """A configured routing rule (keyword, regex or semantic example)."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Stable rule identifier, breaks priority ties")
    rule_type: RuleType
    match_mode: MatchMode = MatchMode.CONTAINS
    content: str = Field(..., description="Keyword, pattern or example utterance")
    task_type: TaskType = TaskType.UNKNOWN
    domain: TopicDomain = TopicDomain.GENERAL
    target_processor: Optional[QueryType] = None
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    priority: int = 0
    is_active: bool = True
    allow_cascade: bool = False
    lock_processor: bool = False
    route_key: Optional[str] = None
    semantic_threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    description: Optional[str] = None

    @property
    def effective_route_key(self) -> str:
        """Semantic grouping key: explicit route key, else the task type."""
        return self.route_key or self.task_type.value


class QueryIntent(BaseModel):
    """Final classification of a query. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    source: IntentSource
    task_type: TaskType = TaskType.UNKNOWN
    domain: TopicDomain = TopicDomain.UNKNOWN
    complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    multi_step: bool = False
    requires_clarification: bool = False
    lock_processor: bool = False
    allow_cascade: bool = True
    recommended_processor: Optional[QueryType] = None
    secondary_processors: frozenset[QueryType] = Field(default_factory=frozenset)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    task_plan: Optional[TaskPlan] = None
    summary: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)

    def with_plan(self, plan: TaskPlan | None) -> "QueryIntent":
        """Copy of this intent carrying `plan`."""
        return self.model_copy(update={"task_plan": plan})


class IntentClassification(BaseModel):
    """Structured task classification produced by a language model."""

    model_config = ConfigDict(frozen=True)

    task_type: TaskType = TaskType.UNKNOWN
    domain: TopicDomain = TopicDomain.UNKNOWN
    complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    multi_step: bool = False
    ambiguous: bool = False
    summary: Optional[str] = None


class DetectorResult(BaseModel):
    """Outcome of one detector invocation inside the cascade."""

    model_config = ConfigDict(frozen=True)

    detector: str
    matched: bool
    confidence: float = 0.0
    reason: str = ""
    latency_ms: float = 0.0


class RoutingDecision(BaseModel):
    """Write-once record of how a query was routed."""

    model_config = ConfigDict(frozen=True)

    query_text: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    detector_results: tuple[DetectorResult, ...] = ()
    final_intent: QueryIntent
    reason: str = ""
    latency_ms: float = 0.0
    timestamp_ms: int = Field(default_factory=lambda: int(time.time() * 1000))
    cached: bool = False
