"""
IntentCascade: ordered intent detection.

Detectors run in a fixed order (rules, semantic router, LLM planner). A
LOCKED or STOP outcome ends the cascade with that detector's deciding
candidate; otherwise every candidate collected along the way competes and
the highest confidence wins, earlier detectors winning ties.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from app.routing.domain import ComplexityLevel, IntentSource, QueryIntent, QueryType, RuleType
from app.routing.domain.intent import TaskType, TopicDomain
from app.routing.intent.detectors import (
    CascadeDecision,
    IntentDetector,
    LlmPlannerDetector,
    RoutingSnapshot,
    RuleBasedDetector,
    SemanticRouter,
)
from app.routing.intent.rules import IntentRuleIndex
from app.routing.protocols import Embedder, IntentClassifier, IntentRuleRepository
from app.routing.tracking import DecisionTrace, RoutingDecisionTracker
from ragroute_core.config import settings
from ragroute_core.runtime import Capability, CapabilityRunner, StorageError


@dataclass(frozen=True)
class CascadeResult:
    intent: QueryIntent
    trace: DecisionTrace
    reason: str


def fallback_intent(query_text: str, confidence: float, long_query_chars: int) -> QueryIntent:
    """Intent used when no detector produced a candidate."""
    is_long = len(query_text or "") > long_query_chars
    return QueryIntent(
        source=IntentSource.FALLBACK,
        task_type=TaskType.UNKNOWN,
        domain=TopicDomain.UNKNOWN,
        complexity=ComplexityLevel.HIGH if is_long else ComplexityLevel.MEDIUM,
        requires_clarification=True,
        recommended_processor=QueryType.BASIC,
        confidence=confidence,
        summary="no detector matched",
    )


class IntentCascade:
    """
    Runs the detector chain over an immutable routing snapshot.

    Usage:
        cascade = IntentCascade(rule_repository, embedder, classifier, runner)
        await cascade.refresh_routes()
        intent = await cascade.detect("what's the weather in Paris")
    """

    def __init__(
        self,
        rule_repository: IntentRuleRepository,
        embedder: Embedder,
        classifier: IntentClassifier,
        runner: CapabilityRunner,
        tracker: RoutingDecisionTracker | None = None,
        semantic_threshold: float | None = None,
        fallback_confidence: float | None = None,
        long_query_chars: int | None = None,
    ):
        self._rule_repository = rule_repository
        self._runner = runner
        self._tracker = tracker or RoutingDecisionTracker()
        self._semantic_router = SemanticRouter(embedder, runner, default_threshold=semantic_threshold)
        self._detectors: tuple[IntentDetector, ...] = (
            RuleBasedDetector(),
            self._semantic_router,
            LlmPlannerDetector(classifier, runner),
        )
        self._fallback_confidence = (
            settings.FALLBACK_CONFIDENCE if fallback_confidence is None else fallback_confidence
        )
        self._long_query_chars = long_query_chars or settings.LONG_QUERY_CHARS
        self._snapshot = RoutingSnapshot()
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> RoutingSnapshot:
        return self._snapshot

    @property
    def detectors(self) -> tuple[IntentDetector, ...]:
        return self._detectors

    @property
    def tracker(self) -> RoutingDecisionTracker:
        return self._tracker

    async def refresh_routes(self) -> RoutingSnapshot:
        """
        Reload rules and rebuild semantic routes, then swap the snapshot in.

        The three rule facets are fetched concurrently; if any fetch fails
        the refresh fails and the previous snapshot stays in effect.
        In-flight detections keep using the snapshot they started with.
        """
        async with self._refresh_lock:
            started = time.perf_counter()
            keyword, regex, semantic = await asyncio.gather(
                self._load(RuleType.KEYWORD),
                self._load(RuleType.REGEX),
                self._load(RuleType.SEMANTIC_EXAMPLE),
            )
            index = IntentRuleIndex([*keyword, *regex, *semantic])
            routes = await self._semantic_router.build_routes(index.semantic_rules)
            self._snapshot = RoutingSnapshot(index=index, routes=routes)

            logger.info(
                f"Routing snapshot refreshed: {len(index)} lexical rules, "
                f"{len(routes)} semantic routes in {(time.perf_counter() - started) * 1000:.1f}ms"
            )
            return self._snapshot

    async def _load(self, rule_type: RuleType):
        return await self._runner.run(
            Capability.STORE, self._rule_repository.list_rules, rule_type, error_cls=StorageError
        )

    async def detect(
        self,
        query_text: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> QueryIntent:
        """Classify a query and publish its routing decision. Never raises."""
        result = await self.run(query_text, user_id=user_id, session_id=session_id)
        self._tracker.publish(result.trace.finish(result.intent, reason=result.reason))
        return result.intent

    async def run(
        self,
        query_text: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> CascadeResult:
        """
        Classify a query and return the intent together with its trace.

        The caller owns publishing the finished trace. Never raises.
        """
        trace = self._tracker.start(query_text, user_id=user_id, session_id=session_id)
        try:
            intent, reason = await self._cascade(query_text, trace)
        except Exception as e:
            logger.exception(f"Intent cascade failed, using fallback intent: {e}")
            intent = fallback_intent(query_text, self._fallback_confidence, self._long_query_chars)
            reason = f"cascade error: {e}"
        return CascadeResult(intent=intent, trace=trace, reason=reason)

    async def _cascade(self, query_text: str, trace: DecisionTrace) -> tuple[QueryIntent, str]:
        snapshot = self._snapshot
        candidates: list[QueryIntent] = []

        for detector in self._detectors:
            started = time.perf_counter()
            try:
                outcome = await detector.detect(query_text, snapshot)
            except Exception as e:
                latency = (time.perf_counter() - started) * 1000
                logger.warning(f"Detector {detector.name} failed: {e}")
                trace.record(detector.name, False, reason=f"error: {e}", latency_ms=latency)
                continue

            latency = (time.perf_counter() - started) * 1000
            trace.record(
                detector.name,
                outcome.matched,
                confidence=outcome.confidence,
                reason=outcome.reason,
                latency_ms=latency,
            )

            decisive = outcome.decisive
            if decisive is not None:
                verb = "locked" if outcome.decision == CascadeDecision.LOCKED else "stopped"
                return decisive, f"{verb} by {detector.name}: {outcome.reason}"

            candidates.extend(outcome.candidates)

        if not candidates:
            intent = fallback_intent(query_text, self._fallback_confidence, self._long_query_chars)
            return intent, "fallback: no detector matched"

        # max() keeps the first of equal maxima, i.e. the earliest detector
        best = max(candidates, key=lambda c: c.confidence)
        return best, f"highest confidence {best.confidence:.2f} from {best.source.value}"
