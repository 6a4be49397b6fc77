"""
Tools that execute task plan steps.

- ToolRegistry: name -> tool, built once at startup
- RagQueryTool ("RAG_QUERY"): answers a step with the routed query processor
- AutoTaskExecutor ("AUTO"): lets the chat model complete a step from its
  description and the results of the steps it depends on
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol

from loguru import logger

from app.routing.domain import (
    AUTO_TOOL,
    Query,
    QueryStatus,
    QueryType,
    Response,
    TaskExecutionContext,
    TaskNode,
)
from app.routing.router import QueryRouter
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import chat_completion, get_openai_client
from ragroute_core.runtime import Capability, CapabilityRunner, GenerationFailure


class RagTool(Protocol):
    """A named tool able to execute one task node."""

    name: str

    async def execute(self, context: TaskExecutionContext, node: TaskNode) -> Any:
        ...


class ToolRegistry:
    """
    In-memory tool registry.

    Usage:
        registry = ToolRegistry([RagQueryTool(router)])
        tool = registry.get("RAG_QUERY")
    """

    def __init__(self, tools: Iterable[RagTool] = ()):
        self._tools: dict[str, RagTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: RagTool) -> None:
        name = tool.name.upper()
        if name == AUTO_TOOL:
            raise ValueError(f"'{AUTO_TOOL}' is reserved for automatic execution")
        self._tools[name] = tool
        logger.debug(f"Registered tool {name}")

    def get(self, name: Optional[str]) -> Optional[RagTool]:
        if not name:
            return None
        return self._tools.get(name.upper())

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name.upper() in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def result_text(result: Any) -> str:
    """Text of a step result, for prompts and final answers."""
    if isinstance(result, Response):
        return result.answer
    return "" if result is None else str(result)


class RagQueryTool:
    """Runs a plan step through the knowledge-base pipeline."""

    name = "RAG_QUERY"

    def __init__(self, router: QueryRouter, default_type: QueryType = QueryType.BASIC):
        self._router = router
        self._default_type = default_type

    def _processor_type(self, context: TaskExecutionContext) -> QueryType:
        strategy = context.strategy
        if strategy is not None and self._router.is_registered(strategy.processor_type):
            return strategy.processor_type
        return self._default_type

    async def execute(self, context: TaskExecutionContext, node: TaskNode) -> Optional[Response]:
        parent: Query = context.query
        step_query = Query(
            original_text=node.description or parent.original_text,
            user_id=parent.user_id,
            session_id=parent.session_id,
            metadata={"parent_query_id": parent.id, "plan_step": node.step},
        )
        processor = self._router.route(self._processor_type(context))
        strategy = context.strategy.model_copy(update={"task_plan": None}) if context.strategy else None
        response = await processor.process(step_query, strategy)

        if response.status == QueryStatus.FAILED:
            raise GenerationFailure(response.error_message or f"RAG step {node.step} failed")
        if not response.sources:
            return None
        return response


AUTO_SYSTEM_PROMPT = """You are a task execution assistant. Complete the task described by the user.
Use the results of earlier steps when they are provided, and answer clearly and accurately.
If the information needed is not available, say so instead of guessing."""


class AutoTaskExecutor:
    """Completes a step with the chat model."""

    name = AUTO_TOOL

    def __init__(self, runner: CapabilityRunner, model: str | None = None, client=None):
        self._runner = runner
        self.model = model or settings.OPENAI_MODEL_ID
        self._client = client

    @staticmethod
    def build_user_prompt(node: TaskNode, context: TaskExecutionContext) -> str:
        lines = [f"Task: {node.description}", ""]
        dependency_results = [
            (dep, result_text(context.step_result(dep)))
            for dep in node.dependencies
            if context.step_result(dep) is not None
        ]
        if dependency_results:
            lines.append("Results of earlier steps:")
            lines.extend(f"Step {dep}: {text}" for dep, text in dependency_results)
            lines.append("")
        if context.query is not None:
            lines.append(f"Original request: {context.query.original_text}")
        return "\n".join(lines)

    def execute_task_node(self, node: TaskNode, context: TaskExecutionContext) -> str:
        logger.info(f"Auto-executing step {node.step}: {node.description[:80]}")
        if self._client is None:
            self._client = get_openai_client()
        return chat_completion(
            self._client,
            model=self.model,
            system_prompt=AUTO_SYSTEM_PROMPT,
            user_message=self.build_user_prompt(node, context),
        ).strip()

    async def execute(self, context: TaskExecutionContext, node: TaskNode) -> str:
        return await self._runner.run(
            Capability.TOOL, self.execute_task_node, node, context, error_cls=GenerationFailure
        )
