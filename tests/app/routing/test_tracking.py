"""Unit tests for routing decision tracking."""

from unittest.mock import MagicMock, patch

import pytest

from app.routing.domain import IntentSource, QueryIntent, QueryType, TaskType
from app.routing.tracking import (
    DecisionTrace,
    LogDecisionPublisher,
    MetricsDecisionPublisher,
    RoutingDecisionTracker,
)
from tests.app.routing.fakes import RecordingPublisher


class TestDecisionTrace:
    """Tests for trace accumulation."""

    def test_finish_freezes_results_and_latency(self, intent):
        ticks = iter([10.0, 10.25])
        trace = DecisionTrace("what's the weather", user_id="u1", session_id="s1", clock=lambda: next(ticks))
        trace.record("rule_based", True, confidence=0.9, reason="rule 1", latency_ms=1.5)

        decision = trace.finish(intent, reason="locked", cached=True)

        assert decision.query_text == "what's the weather"
        assert decision.user_id == "u1"
        assert decision.session_id == "s1"
        assert decision.latency_ms == pytest.approx(250.0)
        assert decision.cached is True
        assert decision.final_intent == intent
        assert [r.detector for r in decision.detector_results] == ["rule_based"]
        assert decision.detector_results[0].confidence == 0.9

    def test_decision_is_write_once(self, intent):
        decision = DecisionTrace("q").finish(intent)

        with pytest.raises(Exception):
            decision.reason = "changed"

    def test_results_snapshot_is_a_copy(self):
        trace = DecisionTrace("q")
        trace.record("rule_based", False)
        snapshot = trace.results
        trace.record("semantic_router", False)

        assert len(snapshot) == 1
        assert len(trace.results) == 2


class TestRoutingDecisionTracker:
    """Tests for publisher fan-out."""

    def test_publishes_to_every_publisher(self, intent):
        first, second = RecordingPublisher(), RecordingPublisher()
        tracker = RoutingDecisionTracker([first, second])

        tracker.publish(tracker.start("q").finish(intent))

        assert len(first.decisions) == 1
        assert len(second.decisions) == 1

    def test_failing_publisher_is_swallowed(self, intent):
        healthy = RecordingPublisher()
        tracker = RoutingDecisionTracker([RecordingPublisher(fail=True), healthy])

        tracker.publish(tracker.start("q").finish(intent))

        assert len(healthy.decisions) == 1

    def test_defaults_to_log_publisher(self):
        tracker = RoutingDecisionTracker()

        assert [type(p) for p in tracker.publishers] == [LogDecisionPublisher]

    def test_log_publisher_formats_decision(self, intent):
        trace = DecisionTrace("q")
        trace.record("rule_based", True, confidence=0.9)

        # must not raise on a populated decision
        LogDecisionPublisher().publish(trace.finish(intent, reason="locked by rule_based"))


class TestMetricsDecisionPublisher:
    """Tests for the OpenTelemetry sink."""

    def test_records_counters_and_latency(self, intent):
        meter = MagicMock()
        with patch("app.routing.tracking.get_meter", return_value=meter):
            publisher = MetricsDecisionPublisher()

        trace = DecisionTrace("q")
        trace.record("rule_based", False)
        trace.record("llm_planner", True, confidence=0.88)
        publisher.publish(trace.finish(intent))

        counters = meter.create_counter.return_value
        histogram = meter.create_histogram.return_value
        # one decision plus two detector hits on the shared counter mock
        assert counters.add.call_count == 3
        histogram.record.assert_called_once()


# --- Fixtures ---


@pytest.fixture
def intent():
    return QueryIntent(
        source=IntentSource.RULE_BASED,
        task_type=TaskType.WEATHER,
        recommended_processor=QueryType.BASIC,
        confidence=0.9,
    )
