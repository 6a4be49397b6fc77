"""
Unit tests for BaseQueryProcessor.

The pipeline should:
1. Move the query through PROCESSING to COMPLETED and persist both records
2. Turn any retrieval or generation failure into a persisted FAILED response
3. Degrade evaluation failures to neutral scores, retrying when allowed
"""

import pytest

from app.routing.domain import (
    EvaluationScores,
    EvaluationStrategy,
    GenerateParams,
    Query,
    QueryStatus,
    QueryStrategy,
    QueryType,
    RetrievalParams,
    RetrievalStrategy,
)
from app.routing.processors.base import NO_CONTEXT_ANSWER, format_contexts, passes_quality_gate
from app.routing.processors.variants import BasicProcessor
from app.routing.repositories.memory import InMemoryQueryRepository
from app.routing.retrieval.aggregator import RetrievalAggregator
from ragroute_core.runtime import CapabilityRunner
from tests.app.routing.fakes import (
    FakeChunkStore,
    FakeEmbedder,
    FakeEvaluator,
    FakeGenerator,
    FakeSearch,
    chunk,
)


class TestProcessSuccess:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_completed_response_and_persisted_records(self, make_processor, repository, generator):
        processor = make_processor()
        query = Query(original_text="How do refunds work?", session_id="s1")

        response = await processor.process(query, strategy())

        assert response.status == QueryStatus.COMPLETED
        assert response.answer == "Refunds take 5 days."
        assert response.session_id == "s1"
        assert response.processing_type == QueryType.BASIC
        assert [s.document_id for s in response.sources] == ["a", "a"]
        assert "[Source 1: Title a, chunk 0]" in response.retrieved_context
        assert response.evaluation.faithfulness == 9
        assert response.metadata["quality_passed"] is True
        assert response.latency_ms is not None

        stored = repository.get_query(query.id)
        assert stored.status == QueryStatus.COMPLETED
        assert stored.completed_at is not None
        assert [r.status for r in repository.responses_for(query.id)] == [QueryStatus.COMPLETED]

        # generation receives the original question, chunk texts and the strategy params
        question, contexts, params = generator.calls[0]
        assert question == "How do refunds work?"
        assert contexts == ["a chunk 0", "a chunk 1"]
        assert params.temperature == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_existing_vector_is_reused(self, make_processor, embedder):
        processor = make_processor()
        query = Query(original_text="q", vector=[0.2, 0.2])

        await processor.process(query, strategy())

        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_no_contexts_skips_generation(self, make_processor, generator):
        processor = make_processor(hits=[])

        response = await processor.process(Query(original_text="unknown topic"), strategy())

        assert response.status == QueryStatus.COMPLETED
        assert response.answer == NO_CONTEXT_ANSWER
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_default_strategy(self, make_processor):
        processor = make_processor()

        response = await processor.process(Query(original_text="q"))

        assert response.status == QueryStatus.COMPLETED


class TestProcessFailures:
    """Tests for FAILED responses."""

    @pytest.mark.asyncio
    async def test_generation_failure_is_persisted_not_raised(self, make_processor, repository, generator):
        generator.fail = True
        processor = make_processor()
        query = Query(original_text="How do refunds work?")

        response = await processor.process(query, strategy())

        assert response.status == QueryStatus.FAILED
        assert "LLM provider returned 500" in response.error_message
        stored = repository.get_query(query.id)
        assert stored.status == QueryStatus.FAILED
        assert stored.error_message == response.error_message
        assert repository.responses_for(query.id)[0].status == QueryStatus.FAILED

    @pytest.mark.asyncio
    async def test_retrieval_failure(self, make_processor):
        processor = make_processor()
        processor.aggregator._search.fail = True

        response = await processor.process(Query(original_text="q"), strategy())

        assert response.status == QueryStatus.FAILED
        assert "search failed" in response.error_message

    @pytest.mark.asyncio
    async def test_embedding_failure(self, make_processor, embedder):
        embedder.fail = True
        processor = make_processor()

        response = await processor.process(Query(original_text="q"), strategy())

        assert response.status == QueryStatus.FAILED
        assert "embed failed" in response.error_message

    @pytest.mark.asyncio
    async def test_storage_failure_while_failing_is_logged(self, make_processor):
        processor = make_processor(repository=_BrokenRepository())

        response = await processor.process(Query(original_text="q"), strategy())

        assert response.status == QueryStatus.FAILED


class TestEvaluation:
    """Tests for evaluation degradation and retry."""

    @pytest.mark.asyncio
    async def test_failure_yields_neutral_scores(self, make_processor):
        processor = make_processor(evaluator=FakeEvaluator(failures=5))

        response = await processor.process(Query(original_text="q"), strategy())

        assert response.status == QueryStatus.COMPLETED
        assert response.evaluation.faithfulness == 5
        assert response.evaluation.total_score == 5
        assert response.evaluation.reasoning.startswith("evaluation error:")
        assert response.evaluation.error

    @pytest.mark.asyncio
    async def test_retry_when_allowed(self, make_processor):
        evaluator = FakeEvaluator(failures=1)
        processor = make_processor(evaluator=evaluator)
        evaluation = EvaluationStrategy(allow_retry=True, max_retry=1)

        response = await processor.process(Query(original_text="q"), strategy(evaluation=evaluation))

        assert evaluator.calls == 2
        assert response.evaluation.faithfulness == 9

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, make_processor):
        evaluator = FakeEvaluator(failures=1)
        processor = make_processor(evaluator=evaluator)

        response = await processor.process(Query(original_text="q"), strategy())

        assert evaluator.calls == 1
        assert response.evaluation.error is not None

    @pytest.mark.asyncio
    async def test_disabled_evaluation(self, make_processor):
        evaluator = FakeEvaluator()
        processor = make_processor(evaluator=evaluator)

        response = await processor.process(
            Query(original_text="q"), strategy(evaluation=EvaluationStrategy.disabled())
        )

        assert response.evaluation is None
        assert evaluator.calls == 0

    @pytest.mark.asyncio
    async def test_low_scores_fail_the_quality_gate(self, make_processor):
        scores = EvaluationScores(faithfulness=4, relevance=9)
        processor = make_processor(evaluator=FakeEvaluator(scores))

        response = await processor.process(Query(original_text="q"), strategy())

        assert response.metadata["quality_passed"] is False


class TestHelpers:
    def test_quality_gate_thresholds(self):
        gate = EvaluationStrategy(min_faithfulness=0.85, min_relevance=0.6)

        assert passes_quality_gate(EvaluationScores(faithfulness=9, relevance=6), gate)
        assert not passes_quality_gate(EvaluationScores(faithfulness=8, relevance=9), gate)
        assert passes_quality_gate(None, gate)
        assert passes_quality_gate(EvaluationScores.neutral("boom"), gate)

    def test_format_contexts_empty(self):
        assert format_contexts([]) == ""


class _BrokenRepository(InMemoryQueryRepository):
    def save_query(self, query):
        raise RuntimeError("database down")

    def update_query_status(self, *args, **kwargs):
        raise RuntimeError("database down")


def strategy(**overrides) -> QueryStrategy:
    values = dict(
        processor_type=QueryType.BASIC,
        retrieval=RetrievalStrategy(
            params=RetrievalParams(top_k=5, min_score=0.5, neighbor_window=0, max_contexts=6)
        ),
        generation=GenerateParams(temperature=0.1, max_tokens=256),
        evaluation=EvaluationStrategy(),
    )
    values.update(overrides)
    return QueryStrategy(**values)


# --- Fixtures ---


@pytest.fixture
def runner():
    pool = CapabilityRunner(max_workers=4)
    yield pool
    pool.shutdown()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator(answer="Refunds take 5 days.")


@pytest.fixture
def repository():
    return InMemoryQueryRepository()


@pytest.fixture
def make_processor(runner, embedder, generator, repository):
    default_hits = [chunk("a", 0, 0.9), chunk("a", 1, 0.8)]

    def _make(hits=None, evaluator=None, repository=repository):
        aggregator = RetrievalAggregator(
            embedder, FakeSearch(default_hits if hits is None else hits), FakeChunkStore(), runner
        )
        return BasicProcessor(aggregator, generator, evaluator or FakeEvaluator(), repository, runner)

    return _make
