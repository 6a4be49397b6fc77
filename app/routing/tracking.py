"""
Routing decision tracking.

A DecisionTrace collects DetectorResults while the cascade runs; once the
final intent is known it is frozen into a RoutingDecision and handed to the
publishers. Tracking is a side channel: publisher failures are logged and
dropped, never raised into the query path.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, Optional

from loguru import logger

from app.routing.domain import DetectorResult, QueryIntent, RoutingDecision
from app.routing.protocols import DecisionPublisher
from ragroute_core.infrastructure.telemetry import get_meter


class DecisionTrace:
    """Accumulates detector results for a single query."""

    def __init__(
        self,
        query_text: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.query_text = query_text
        self.user_id = user_id
        self.session_id = session_id
        self._clock = clock
        self._started = clock()
        self._results: list[DetectorResult] = []

    @property
    def results(self) -> tuple[DetectorResult, ...]:
        return tuple(self._results)

    def record(
        self,
        detector: str,
        matched: bool,
        confidence: float = 0.0,
        reason: str = "",
        latency_ms: float = 0.0,
    ) -> DetectorResult:
        result = DetectorResult(
            detector=detector,
            matched=matched,
            confidence=confidence,
            reason=reason,
            latency_ms=latency_ms,
        )
        self._results.append(result)
        return result

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000

    def finish(self, intent: QueryIntent, reason: str = "", cached: bool = False) -> RoutingDecision:
        return RoutingDecision(
            query_text=self.query_text,
            user_id=self.user_id,
            session_id=self.session_id,
            detector_results=self.results,
            final_intent=intent,
            reason=reason,
            latency_ms=self.elapsed_ms(),
            cached=cached,
        )


class LogDecisionPublisher:
    """Writes one structured log line per decision."""

    def publish(self, decision: RoutingDecision) -> None:
        intent = decision.final_intent
        path = " -> ".join(
            f"{r.detector}({'hit' if r.matched else 'miss'}:{r.confidence:.2f})"
            for r in decision.detector_results
        )
        logger.bind(routing_decision=decision.model_dump(mode="json")).info(
            f"Routing decision: task={intent.task_type.value} source={intent.source.value} "
            f"processor={intent.recommended_processor.value if intent.recommended_processor else None} "
            f"confidence={intent.confidence:.2f} cached={decision.cached} "
            f"latency={decision.latency_ms:.1f}ms path=[{path}] reason={decision.reason}"
        )


class MetricsDecisionPublisher:
    """Records decision counts and latencies through OpenTelemetry metrics."""

    def __init__(self):
        meter = get_meter()
        self._decisions = meter.create_counter(
            "ragroute.routing.decisions",
            description="Routing decisions by final intent source and task type",
        )
        self._detector_hits = meter.create_counter(
            "ragroute.routing.detector_hits",
            description="Detector invocations by detector and outcome",
        )
        self._latency = meter.create_histogram(
            "ragroute.routing.latency",
            unit="ms",
            description="Total cascade latency per query",
        )

    def publish(self, decision: RoutingDecision) -> None:
        intent = decision.final_intent
        self._decisions.add(
            1,
            {
                "source": intent.source.value,
                "task_type": intent.task_type.value,
                "cached": decision.cached,
            },
        )
        for result in decision.detector_results:
            self._detector_hits.add(1, {"detector": result.detector, "matched": result.matched})
        self._latency.record(decision.latency_ms, {"source": intent.source.value})


class RoutingDecisionTracker:
    """Fan-out of finished decisions to the configured publishers."""

    def __init__(self, publishers: Iterable[DecisionPublisher] | None = None):
        self._publishers = list(publishers) if publishers is not None else [LogDecisionPublisher()]

    @property
    def publishers(self) -> list[DecisionPublisher]:
        return list(self._publishers)

    def start(
        self,
        query_text: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> DecisionTrace:
        return DecisionTrace(query_text, user_id=user_id, session_id=session_id)

    def publish(self, decision: RoutingDecision) -> None:
        for publisher in self._publishers:
            try:
                publisher.publish(decision)
            except Exception as e:
                logger.warning(f"Routing decision publisher {type(publisher).__name__} failed: {e}")
