"""
Unit tests for routing domain models.
"""

import pytest

from app.routing.domain import (
    EvaluationScores,
    QueryParams,
    QueryStatus,
    QueryStrategy,
    QueryType,
    TaskExecutionContext,
    TaskNode,
    TaskPlan,
    TaskType,
    TopicDomain,
)
from ragroute_core.runtime import ValidationError


class TestEnums:
    def test_query_type_parse(self):
        assert QueryType.parse("hyde") == QueryType.HYDE
        assert QueryType.parse(QueryType.BASIC) == QueryType.BASIC
        assert QueryType.parse(None) is None
        assert QueryType.parse("unknown-type") is None

    def test_lenient_enums(self):
        assert TaskType("comparison") == TaskType.COMPARISON
        assert TaskType("astrology") == TaskType.UNKNOWN
        assert TopicDomain(" finance ") == TopicDomain.FINANCE

    def test_terminal_statuses(self):
        assert QueryStatus.CLARIFY.is_terminal
        assert not QueryStatus.PROCESSING.is_terminal


class TestTaskPlan:
    """Tests for dependency ordering."""

    def test_topological_order(self):
        plan = TaskPlan(
            tasks=(
                TaskNode(step=2, dependencies=(0, 1)),
                TaskNode(step=1, dependencies=(0,)),
                TaskNode(step=0),
            )
        )

        assert plan.topological_order() == [0, 1, 2]

    def test_independent_steps_keep_step_order(self):
        plan = TaskPlan(tasks=(TaskNode(step=3), TaskNode(step=1), TaskNode(step=2, dependencies=(1,))))

        assert plan.topological_order() == [1, 2, 3]

    def test_unknown_and_self_dependencies_are_ignored(self):
        plan = TaskPlan(tasks=(TaskNode(step=0, dependencies=(0, 9)),))

        assert plan.topological_order() == [0]

    def test_cycle_raises(self):
        plan = TaskPlan(
            tasks=(TaskNode(step=0, dependencies=(1,)), TaskNode(step=1, dependencies=(0,)))
        )

        with pytest.raises(ValueError, match="cycle"):
            plan.topological_order()

    def test_has_tasks(self):
        assert not TaskPlan().has_tasks
        assert TaskPlan(tasks=(TaskNode(step=0),)).has_tasks


class TestTaskExecutionContext:
    def test_values_attempts_and_steps(self):
        context = TaskExecutionContext(query="q")

        context.put("k", 1)
        assert context.increment_attempt("rag_query") == 1
        assert context.increment_attempt("rag_query") == 2
        context.record_step(0, "result")

        assert context.get("k") == 1
        assert context.get("missing", "default") == "default"
        assert context.attempts("rag_query") == 2
        assert context.attempts("other") == 0
        assert context.step_result(0) == "result"
        assert context.step_results == {0: "result"}


class TestQueryParams:
    def test_coerce(self):
        assert QueryParams.coerce(None) == QueryParams()
        params = QueryParams(hyde_enabled=True)
        assert QueryParams.coerce(params) is params
        assert QueryParams.coerce({"force_type": "hyde", "unknown": 1}).explicit_type == QueryType.HYDE

    def test_invalid_dict_raises(self):
        with pytest.raises(ValidationError) as exc:
            QueryParams.coerce({"temperature": 5})

        assert exc.value.message_safe.startswith("Invalid query parameters")

    def test_unknown_explicit_type_is_none(self):
        assert QueryParams(query_type="nope").explicit_type is None

    def test_coerce_rejects_unknown_processor_type(self):
        with pytest.raises(ValidationError) as exc:
            QueryParams.coerce({"query_type": "nope"})

        assert exc.value.message_safe == "Unknown processor type for query_type: 'nope'"

    def test_coerce_ignores_blank_processor_type(self):
        assert QueryParams.coerce({"force_type": "  "}).explicit_type is None

    def test_coerce_validates_retrieval_overrides(self):
        with pytest.raises(ValidationError) as exc:
            QueryParams.coerce({"retrieval": {"max_contexts": 0}})

        assert exc.value.message_safe.startswith("Invalid retrieval parameters")

    def test_coerce_checks_model_instances_too(self):
        with pytest.raises(ValidationError):
            QueryParams.coerce(QueryParams(force_type="bogus"))


class TestStrategy:
    def test_downgraded(self):
        strategy = QueryStrategy(processor_type=QueryType.HYDE, clarification_required=True)

        downgraded = strategy.downgraded()

        assert downgraded.processor_type == QueryType.BASIC
        assert not downgraded.evaluation.enabled
        assert not downgraded.clarification_required
        assert strategy.processor_type == QueryType.HYDE

    def test_neutral_scores(self):
        scores = EvaluationScores.neutral("judge down")

        assert scores.total_score == 5
        assert scores.error == "judge down"
