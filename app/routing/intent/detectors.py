"""
Intent detectors.

Each detector inspects the query against the current routing snapshot and
returns a DetectorOutcome whose decision tells the cascade whether to lock,
stop, or continue to the next detector.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from loguru import logger

from app.routing.domain import (
    IntentClassification,
    IntentRule,
    IntentSource,
    QueryIntent,
    QueryType,
)
from app.routing.intent.rules import IntentRuleIndex
from app.routing.intent.similarity import best_similarity
from app.routing.protocols import Embedder, IntentClassifier
from ragroute_core.config import settings
from ragroute_core.runtime import Capability, CapabilityRunner, EmbeddingFailure, PlanningFailure


class CascadeDecision(str, Enum):
    LOCKED = "LOCKED"
    STOP = "STOP"
    CONTINUE = "CONTINUE"


@dataclass(frozen=True)
class SemanticRoute:
    """Example vectors sharing one route key, fronted by their top-priority rule."""

    key: str
    rule: IntentRule
    vectors: tuple[tuple[float, ...], ...]
    threshold: float | None = None


@dataclass(frozen=True)
class RoutingSnapshot:
    """Rule index and semantic routes in effect for one detection pass."""

    index: IntentRuleIndex = field(default_factory=IntentRuleIndex.empty)
    routes: tuple[SemanticRoute, ...] = ()


@dataclass(frozen=True)
class DetectorOutcome:
    decision: CascadeDecision
    candidates: tuple[QueryIntent, ...] = ()
    reason: str = ""

    @property
    def matched(self) -> bool:
        return bool(self.candidates)

    @property
    def confidence(self) -> float:
        return max((c.confidence for c in self.candidates), default=0.0)

    @property
    def decisive(self) -> QueryIntent | None:
        """The candidate that ended the cascade, for LOCKED and STOP outcomes."""
        if self.decision == CascadeDecision.CONTINUE or not self.candidates:
            return None
        return self.candidates[-1]


class IntentDetector(Protocol):
    name: str

    async def detect(self, query_text: str, snapshot: RoutingSnapshot) -> DetectorOutcome:
        ...


def decision_for(rule: IntentRule) -> CascadeDecision:
    if rule.lock_processor:
        return CascadeDecision.LOCKED
    if not rule.allow_cascade:
        return CascadeDecision.STOP
    return CascadeDecision.CONTINUE


def intent_from_rule(rule: IntentRule, source: IntentSource, confidence: float) -> QueryIntent:
    return QueryIntent(
        source=source,
        task_type=rule.task_type,
        domain=rule.domain,
        lock_processor=rule.lock_processor,
        allow_cascade=rule.allow_cascade,
        recommended_processor=rule.target_processor,
        confidence=max(0.0, min(1.0, confidence)),
        summary=rule.description,
        attributes={"rule_id": str(rule.id), "route_key": rule.effective_route_key},
    )


class RuleBasedDetector:
    """Keyword and regex rules, scanned in priority order."""

    name = "rule_based"

    async def detect(self, query_text: str, snapshot: RoutingSnapshot) -> DetectorOutcome:
        candidates: list[QueryIntent] = []
        for rule in snapshot.index.iter_matches(query_text):
            intent = intent_from_rule(rule, IntentSource.RULE_BASED, rule.confidence)
            candidates.append(intent)
            decision = decision_for(rule)
            if decision == CascadeDecision.LOCKED:
                return DetectorOutcome(decision, (intent,), f"rule {rule.id} locks {rule.target_processor}")
            if decision == CascadeDecision.STOP:
                return DetectorOutcome(decision, tuple(candidates), f"rule {rule.id} stops cascade")

        if candidates:
            ids = ", ".join(c.attributes["rule_id"] for c in candidates)
            return DetectorOutcome(CascadeDecision.CONTINUE, tuple(candidates), f"rules {ids} allow cascade")
        return DetectorOutcome(CascadeDecision.CONTINUE, (), f"no match among {len(snapshot.index)} rules")


class SemanticRouter:
    """Nearest route by cosine similarity against example utterances."""

    name = "semantic_router"

    def __init__(
        self,
        embedder: Embedder,
        runner: CapabilityRunner,
        default_threshold: float | None = None,
    ):
        self._embedder = embedder
        self._runner = runner
        self._default_threshold = (
            settings.SEMANTIC_DEFAULT_THRESHOLD if default_threshold is None else default_threshold
        )

    @property
    def default_threshold(self) -> float:
        return self._default_threshold

    async def build_routes(self, rules: tuple[IntentRule, ...] | list[IntentRule]) -> tuple[SemanticRoute, ...]:
        """
        Group semantic example rules by route key and embed their examples.

        Examples are embedded in one batch; if the batch call fails each
        example is embedded on its own and failures are skipped.
        """
        if not rules:
            return ()

        texts = [rule.content for rule in rules]
        try:
            vectors = await self._runner.run(
                Capability.EMBED, self._embedder.embed_batch, texts, error_cls=EmbeddingFailure
            )
        except EmbeddingFailure as e:
            logger.warning(f"Batch embedding of {len(texts)} route examples failed, retrying one by one: {e}")
            vectors = []
            for text in texts:
                try:
                    vectors.append(
                        await self._runner.run(
                            Capability.EMBED, self._embedder.embed, text, error_cls=EmbeddingFailure
                        )
                    )
                except EmbeddingFailure as inner:
                    logger.warning(f"Skipping route example {text!r}: {inner}")
                    vectors.append(None)

        grouped: dict[str, list[tuple[IntentRule, list[float]]]] = {}
        for rule, vector in zip(rules, vectors):
            if vector:
                grouped.setdefault(rule.effective_route_key, []).append((rule, vector))

        routes = []
        for key, members in grouped.items():
            # rules arrive in priority order, so the first member fronts the route
            head = members[0][0]
            threshold = next(
                (rule.semantic_threshold for rule, _ in members if rule.semantic_threshold is not None),
                None,
            )
            routes.append(
                SemanticRoute(
                    key=key,
                    rule=head,
                    vectors=tuple(tuple(vector) for _, vector in members),
                    threshold=threshold,
                )
            )
        return tuple(routes)

    async def detect(self, query_text: str, snapshot: RoutingSnapshot) -> DetectorOutcome:
        if not snapshot.routes:
            return DetectorOutcome(CascadeDecision.CONTINUE, (), "no semantic routes")

        vector = await self._runner.run(
            Capability.EMBED, self._embedder.embed, query_text, error_cls=EmbeddingFailure
        )

        best_route: SemanticRoute | None = None
        best_score = -1.0
        closest = ("", -1.0)
        for route in snapshot.routes:
            score = best_similarity(vector, route.vectors)
            if score > closest[1]:
                closest = (route.key, score)
            threshold = self._default_threshold if route.threshold is None else route.threshold
            if score >= threshold and score > best_score:
                best_route, best_score = route, score

        if best_route is None:
            return DetectorOutcome(
                CascadeDecision.CONTINUE,
                (),
                f"closest route {closest[0]} at {closest[1]:.3f} below threshold",
            )

        intent = intent_from_rule(best_route.rule, IntentSource.SEMANTIC_ROUTER, best_score)
        return DetectorOutcome(
            decision_for(best_route.rule),
            (intent,),
            f"route {best_route.key} similarity {best_score:.3f}",
        )


class LlmPlannerDetector:
    """Language-model classification, the last resort of the cascade."""

    name = "llm_planner"

    SHORT_QUERY_CONFIDENCE = 0.72
    DEFAULT_CONFIDENCE = 0.88

    def __init__(
        self,
        classifier: IntentClassifier,
        runner: CapabilityRunner,
        short_query_chars: int | None = None,
    ):
        self._classifier = classifier
        self._runner = runner
        self._short_query_chars = short_query_chars or settings.SHORT_QUERY_CHARS

    async def detect(self, query_text: str, snapshot: RoutingSnapshot) -> DetectorOutcome:
        classification: IntentClassification = await self._runner.run(
            Capability.CLASSIFY, self._classifier.classify, query_text, error_cls=PlanningFailure
        )

        short_query = len(query_text.strip()) < self._short_query_chars
        intent = QueryIntent(
            source=IntentSource.LLM_PLANNER,
            task_type=classification.task_type,
            domain=classification.domain,
            complexity=classification.complexity,
            multi_step=classification.multi_step,
            requires_clarification=short_query or classification.ambiguous,
            recommended_processor=QueryType.RAG_FUSION if classification.multi_step else QueryType.BASIC,
            confidence=self.SHORT_QUERY_CONFIDENCE if short_query else self.DEFAULT_CONFIDENCE,
            summary=classification.summary,
            attributes={"planner_model": getattr(self._classifier, "model_id", "unknown")},
        )
        return DetectorOutcome(
            CascadeDecision.CONTINUE,
            (intent,),
            f"classified as {classification.task_type.value}",
        )
