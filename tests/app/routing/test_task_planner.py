"""Unit tests for TaskPlanner."""

import pytest

from app.routing.domain import IntentSource, QueryIntent, TaskNode, TaskPlan
from app.routing.planning.cache import TaskPlanCache
from app.routing.planning.planner import TaskPlanner
from ragroute_core.runtime import CapabilityRunner
from tests.app.routing.fakes import FakeEmbedder, FakePlanner

ORIGINAL = "compare plan A and plan B for a small team"
PARAPHRASE = "for a small team, compare plan A with plan B"

MULTI_STEP = QueryIntent(source=IntentSource.LLM_PLANNER, multi_step=True, confidence=0.88)


class TestTaskPlanner:
    """Tests for cache-fronted planning."""

    @pytest.mark.asyncio
    async def test_single_step_intent_is_not_planned(self, task_planner, planner):
        intent = QueryIntent(source=IntentSource.LLM_PLANNER, multi_step=False)

        assert await task_planner.plan_tasks(ORIGINAL, intent) is None
        assert planner.calls == []

    @pytest.mark.asyncio
    async def test_paraphrase_hits_cache(self, task_planner, planner):
        """First call plans and caches; a 0.97-similar paraphrase reuses the plan."""
        first = await task_planner.resolve(ORIGINAL, MULTI_STEP)
        second = await task_planner.resolve(PARAPHRASE, MULTI_STEP)

        assert first.cached is False
        assert second.cached is True
        assert second.plan == first.plan
        assert second.similarity == pytest.approx(0.972, abs=0.005)
        assert planner.calls == [ORIGINAL]
        assert len(task_planner.cache) == 1

    @pytest.mark.asyncio
    async def test_given_vector_skips_embedding(self, task_planner, embedder):
        await task_planner.plan_tasks(ORIGINAL, MULTI_STEP, vector=[0.3, 0.3, 0.3, 0.3, 0.3])

        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_embedding_failure_bypasses_cache(self, task_planner, embedder, planner):
        embedder.fail = True

        plan = await task_planner.plan_tasks(ORIGINAL, MULTI_STEP)

        assert plan is not None
        assert planner.calls == [ORIGINAL]
        assert len(task_planner.cache) == 0

    @pytest.mark.asyncio
    async def test_planning_failure_returns_none(self, task_planner, planner):
        planner.fail = True

        assert await task_planner.plan_tasks(ORIGINAL, MULTI_STEP) is None
        assert len(task_planner.cache) == 0

    @pytest.mark.asyncio
    async def test_empty_plan_is_not_cached(self, task_planner, planner):
        planner.plan_result = TaskPlan()

        assert await task_planner.plan_tasks(ORIGINAL, MULTI_STEP) is None
        assert len(task_planner.cache) == 0


# --- Fixtures ---


@pytest.fixture
def runner():
    pool = CapabilityRunner(max_workers=2)
    yield pool
    pool.shutdown()


@pytest.fixture
def embedder():
    return FakeEmbedder(
        {
            ORIGINAL: [0.1, 0.2, 0.3, 0.4, 0.5, 1.0],
            PARAPHRASE: [0.1, 0.2, 0.3, 0.4, 0.5, 0.62],
        }
    )


@pytest.fixture
def planner():
    return FakePlanner(
        TaskPlan(
            tasks=(
                TaskNode(step=1, tool_name="RAG_QUERY", description="Find plan A features"),
                TaskNode(step=2, tool_name="RAG_QUERY", description="Find plan B features"),
                TaskNode(step=3, tool_name="AUTO", description="Compare", dependencies=(1, 2)),
            ),
            summary="compare plans",
            requires_tools=True,
        )
    )


@pytest.fixture
def task_planner(planner, embedder, runner):
    return TaskPlanner(planner, embedder, TaskPlanCache(similarity_threshold=0.95), runner)
