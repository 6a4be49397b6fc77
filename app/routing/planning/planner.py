"""
TaskPlanner: cache-fronted multi-step planning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from app.routing.domain import QueryIntent, TaskPlan
from app.routing.planning.cache import TaskPlanCache
from app.routing.protocols import Embedder, Planner
from ragroute_core.runtime import (
    Capability,
    CapabilityRunner,
    EmbeddingFailure,
    PlanningFailure,
)


@dataclass(frozen=True)
class PlanResolution:
    plan: Optional[TaskPlan]
    cached: bool = False
    similarity: Optional[float] = None


class TaskPlanner:
    """
    Produces task plans for multi-step intents, reusing cached plans for
    sufficiently similar queries.

    Usage:
        planner = TaskPlanner(llm_planner, embedder, TaskPlanCache(), runner)
        plan = await planner.plan_tasks(query_text, intent)
    """

    def __init__(
        self,
        planner: Planner,
        embedder: Embedder,
        cache: TaskPlanCache,
        runner: CapabilityRunner,
    ):
        self._planner = planner
        self._embedder = embedder
        self._cache = cache
        self._runner = runner

    @property
    def cache(self) -> TaskPlanCache:
        return self._cache

    async def plan_tasks(
        self,
        query_text: str,
        intent: QueryIntent,
        vector: Optional[Sequence[float]] = None,
    ) -> Optional[TaskPlan]:
        """Plan for `query_text`, or None when the intent is single-step or planning failed."""
        return (await self.resolve(query_text, intent, vector=vector)).plan

    async def resolve(
        self,
        query_text: str,
        intent: QueryIntent,
        vector: Optional[Sequence[float]] = None,
    ) -> PlanResolution:
        if not intent.multi_step:
            return PlanResolution(plan=None)

        if vector is None:
            try:
                vector = await self._runner.run(
                    Capability.EMBED, self._embedder.embed, query_text, error_cls=EmbeddingFailure
                )
            except EmbeddingFailure as e:
                logger.warning(f"Plan cache bypassed, query embedding failed: {e}")
                vector = None

        if vector:
            hit = self._cache.lookup(vector)
            if hit is not None:
                logger.info(
                    f"Plan cache hit (similarity={hit.similarity:.3f}) for '{query_text[:60]}', "
                    f"original query '{hit.entry.query_text[:60]}'"
                )
                return PlanResolution(plan=hit.plan, cached=True, similarity=hit.similarity)

        try:
            plan = await self._runner.run(
                Capability.PLAN, self._planner.plan, query_text, intent, error_cls=PlanningFailure
            )
        except PlanningFailure as e:
            logger.warning(f"Task planning failed, continuing without a plan: {e}")
            return PlanResolution(plan=None)

        if plan is None or not plan.has_tasks:
            logger.info(f"Planner returned no tasks for '{query_text[:60]}'")
            return PlanResolution(plan=None)

        if vector:
            self._cache.store(query_text, vector, plan)
        return PlanResolution(plan=plan)
