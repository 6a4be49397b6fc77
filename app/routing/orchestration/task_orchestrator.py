"""
TaskOrchestrator: executes a TaskPlan DAG.

Steps run in topological order (Kahn). Steps that become ready together
run concurrently when parallelism is enabled. A failed step blocks its
dependants but not unrelated branches; an ABORT decision stops the plan.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from app.routing.domain import (
    AUTO_TOOL,
    Query,
    QueryIntent,
    QueryStatus,
    QueryStrategy,
    Response,
    TaskExecutionContext,
    TaskNode,
    TaskPlan,
)
from app.routing.orchestration.fallback import FallbackAction, FallbackDecision, FallbackManager
from app.routing.orchestration.tools import AutoTaskExecutor, RagTool, ToolRegistry
from ragroute_core.config import settings
from ragroute_core.runtime import PlanNotFound, TerminalError


class TaskAborted(TerminalError):
    """Raised inside step execution when the fallback manager aborts the plan."""


@dataclass
class _StepOutcome:
    step: int
    result: Any = None
    error: Optional[Exception] = None


def _is_empty(result: Any) -> bool:
    if result is None:
        return True
    if isinstance(result, str):
        return not result.strip()
    return False


class TaskOrchestrator:
    """
    Usage:
        orchestrator = TaskOrchestrator(registry, fallback_manager, auto_executor)
        response = await orchestrator.execute_plan(plan, query, strategy, intent)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        fallback_manager: FallbackManager,
        auto_executor: AutoTaskExecutor,
        enable_parallel: bool | None = None,
    ):
        self._registry = registry
        self._fallback = fallback_manager
        self._auto = auto_executor
        self.enable_parallel = (
            settings.ORCHESTRATION_ENABLE_PARALLEL if enable_parallel is None else enable_parallel
        )

    async def execute_plan(
        self,
        plan: TaskPlan | None,
        query: Query,
        strategy: QueryStrategy | None = None,
        intent: QueryIntent | None = None,
    ) -> Optional[Response]:
        """
        Execute every reachable step of `plan`.

        Returns:
            The last step's Response, a COMPLETED Response wrapping the
            last step's text, a FAILED Response when the plan was aborted
            before any step produced a result, or None when no step did.

        Raises:
            PlanNotFound: If the plan is missing or has no tasks.
        """
        if plan is None or not plan.has_tasks:
            raise PlanNotFound("Task plan is empty, nothing to execute")

        context = TaskExecutionContext(query, strategy=strategy, intent=intent)
        context.put("intent", intent)

        nodes = plan.steps()
        indegree = {step: 0 for step in nodes}
        children: dict[int, list[int]] = {step: [] for step in nodes}
        for node in nodes.values():
            for dep in node.dependencies:
                if dep in nodes and dep != node.step:
                    children[dep].append(node.step)
                    indegree[node.step] += 1

        ready = sorted(step for step, degree in indegree.items() if degree == 0)
        last_result: Any = None
        executed = 0
        aborted = False

        while ready and not aborted:
            batch, ready = ready, []
            if self.enable_parallel and len(batch) > 1:
                logger.info(f"[{query.id}] Running {len(batch)} steps in parallel: {batch}")
                outcomes = await asyncio.gather(*(self._run_step(nodes[s], context) for s in batch))
            else:
                outcomes = []
                for step in batch:
                    outcome = await self._run_step(nodes[step], context)
                    outcomes.append(outcome)
                    if isinstance(outcome.error, TaskAborted):
                        break

            for outcome in outcomes:
                if isinstance(outcome.error, TaskAborted):
                    logger.warning(f"[{query.id}] Plan aborted at step {outcome.step}: {outcome.error}")
                    context.put("abort_message", outcome.error.message_safe)
                    aborted = True
                    break
                if outcome.error is not None:
                    logger.error(f"[{query.id}] Step {outcome.step} failed, dependants skipped: {outcome.error}")
                    continue

                executed += 1
                context.record_step(outcome.step, outcome.result)
                last_result = outcome.result
                if isinstance(outcome.result, Response):
                    context.last_response = outcome.result
                for child in children[outcome.step]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        ready.append(child)
            ready.sort()

        skipped = len(nodes) - executed
        if skipped and not aborted:
            logger.warning(f"[{query.id}] {skipped} plan steps were not executed")

        return self._final_response(last_result, query, context.get("abort_message") if aborted else None)

    @staticmethod
    def _final_response(last_result: Any, query: Query, abort_message: Optional[str] = None) -> Optional[Response]:
        if isinstance(last_result, Response):
            return last_result
        if _is_empty(last_result):
            if abort_message:
                return Response(
                    query_id=query.id,
                    session_id=query.session_id,
                    status=QueryStatus.FAILED,
                    error_message=abort_message,
                )
            return None
        return Response(
            query_id=query.id,
            session_id=query.session_id,
            answer=str(last_result),
            status=QueryStatus.COMPLETED,
        )

    async def _run_step(self, node: TaskNode, context: TaskExecutionContext) -> _StepOutcome:
        try:
            return _StepOutcome(node.step, result=await self._execute_node(node, context))
        except Exception as e:
            return _StepOutcome(node.step, error=e)

    async def _execute_node(self, node: TaskNode, context: TaskExecutionContext) -> Any:
        tool = self._registry.get(node.tool_name)
        if tool is None or node.tool_name.upper() == AUTO_TOOL:
            context.increment_attempt(AUTO_TOOL)
            try:
                result = await self._auto.execute(context, node)
            except Exception as e:
                decision = self._fallback.handle_tool_failure(AUTO_TOOL, e, context)
                return await self._handle_decision(decision, node, context)
            if _is_empty(result):
                decision = self._fallback.handle_empty_result(AUTO_TOOL, context)
                return await self._handle_decision(decision, node, context)
            return result

        return await self._execute_with_tool(tool, node, context)

    async def _execute_with_tool(self, tool: RagTool, node: TaskNode, context: TaskExecutionContext) -> Any:
        context.increment_attempt(tool.name)
        logger.info(f"Executing step {node.step} with tool {tool.name}")
        try:
            result = await tool.execute(context, node)
        except Exception as e:
            decision = self._fallback.handle_tool_failure(tool.name, e, context)
            return await self._handle_decision(decision, node, context)

        if _is_empty(result):
            decision = self._fallback.handle_empty_result(tool.name, context)
            return await self._handle_decision(decision, node, context)
        return result

    async def _handle_decision(
        self, decision: FallbackDecision, node: TaskNode, context: TaskExecutionContext
    ) -> Any:
        if decision.action == FallbackAction.RETRY_SAME_TOOL:
            return await self._execute_node(node, context)
        if decision.action == FallbackAction.SWITCH_TOOL:
            if not decision.next_tool:
                raise TaskAborted("Fallback decision did not name a tool")
            switched = node.model_copy(update={"tool_name": decision.next_tool})
            return await self._execute_node(switched, context)
        if decision.action == FallbackAction.CLARIFY:
            query = context.query
            return Response(
                query_id=query.id,
                session_id=query.session_id,
                answer=decision.message,
                status=QueryStatus.CLARIFY,
            )
        raise TaskAborted(decision.message or "No fallback available")
