"""
FallbackManager: retry and degradation decisions.

Three levels, tried in order:
1. Tool level: retry the same tool, then switch to another one
2. Task level: ask the user to clarify
3. System level: abort the plan
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from app.routing.domain import (
    AUTO_TOOL,
    Query,
    QueryStrategy,
    Response,
    TaskExecutionContext,
)
from app.routing.orchestration.tools import RagQueryTool, ToolRegistry
from app.routing.processors.base import passes_quality_gate
from ragroute_core.config import settings


class FallbackAction(str, Enum):
    RETRY_SAME_TOOL = "RETRY_SAME_TOOL"
    SWITCH_TOOL = "SWITCH_TOOL"
    CLARIFY = "CLARIFY"
    ABORT = "ABORT"


@dataclass(frozen=True)
class FallbackDecision:
    action: FallbackAction
    message: str = ""
    next_tool: Optional[str] = None

    @classmethod
    def retry(cls, message: str) -> "FallbackDecision":
        return cls(FallbackAction.RETRY_SAME_TOOL, message)

    @classmethod
    def switch_to(cls, tool_name: str, message: str) -> "FallbackDecision":
        return cls(FallbackAction.SWITCH_TOOL, message, next_tool=tool_name)

    @classmethod
    def clarify(cls, message: str) -> "FallbackDecision":
        return cls(FallbackAction.CLARIFY, message)

    @classmethod
    def abort(cls, message: str) -> "FallbackDecision":
        return cls(FallbackAction.ABORT, message)


class FallbackManager:
    """
    Decides what to do after a failed or empty tool result, and whether a
    low-quality answer deserves a downgraded second attempt.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        max_tool_retries: int | None = None,
        enable_clarification: bool | None = None,
        prefer_rag_on_failure: bool | None = None,
        short_query_chars: int | None = None,
    ):
        self._registry = registry
        self.max_tool_retries = (
            settings.FALLBACK_MAX_TOOL_RETRIES if max_tool_retries is None else max_tool_retries
        )
        self.enable_clarification = (
            settings.FALLBACK_ENABLE_CLARIFICATION
            if enable_clarification is None
            else enable_clarification
        )
        self.prefer_rag_on_failure = (
            settings.FALLBACK_PREFER_RAG_ON_FAILURE
            if prefer_rag_on_failure is None
            else prefer_rag_on_failure
        )
        self.short_query_chars = short_query_chars or settings.SHORT_QUERY_CHARS

    def maybe_adjust_strategy(
        self, query: Query, response: Response, strategy: QueryStrategy
    ) -> QueryStrategy:
        """Downgraded strategy when the answer misses the quality bar and a retry is allowed."""
        evaluation = strategy.evaluation
        if not evaluation.enabled or not evaluation.allow_retry:
            return strategy
        if passes_quality_gate(response.evaluation, evaluation):
            return strategy

        scores = response.evaluation
        logger.warning(
            f"[{query.id}] Answer below quality bar (faithfulness={scores.faithfulness}, "
            f"relevance={scores.relevance}), retrying once with BASIC"
        )
        return strategy.downgraded()

    def handle_tool_failure(
        self, tool_name: str, error: Exception, context: TaskExecutionContext
    ) -> FallbackDecision:
        logger.warning(f"Tool {tool_name} failed: {error}")
        attempts = context.attempts(tool_name)

        if attempts < self.max_tool_retries:
            logger.info(f"Retrying tool {tool_name} (attempt {attempts + 1})")
            return FallbackDecision.retry(f"Retrying tool {tool_name}")

        fallback_tool = self.fallback_tool(tool_name, context)
        if fallback_tool is not None:
            logger.info(f"Tool {tool_name} failed, switching to {fallback_tool}")
            return FallbackDecision.switch_to(fallback_tool, f"Switched to fallback tool {fallback_tool}")

        if self.enable_clarification and self.should_request_clarification(context):
            return FallbackDecision.clarify(
                "I couldn't complete this request. Could you add more details or say more precisely what you need?"
            )

        return FallbackDecision.abort(
            f"Tool {tool_name} failed repeatedly: {error}. The request cannot be processed right now."
        )

    def handle_empty_result(self, tool_name: str, context: TaskExecutionContext) -> FallbackDecision:
        logger.warning(f"Tool {tool_name} produced no result")

        fallback_tool = self.fallback_tool(tool_name, context)
        if fallback_tool is not None:
            return FallbackDecision.switch_to(fallback_tool, "No result, switched to fallback tool")

        if self.enable_clarification and self.should_request_clarification(context):
            return FallbackDecision.clarify(
                "I couldn't find relevant information. Could you add details or rephrase your question?"
            )

        return FallbackDecision.abort(f"Tool {tool_name} produced no result; the request cannot be processed.")

    def should_request_clarification(self, context: TaskExecutionContext) -> bool:
        query = context.query
        if query is None:
            return False
        text = (query.original_text or "").strip()
        if len(text) < self.short_query_chars:
            return True
        intent = context.intent or context.get("intent")
        return bool(intent is not None and intent.requires_clarification)

    def fallback_tool(self, tool_name: str, context: TaskExecutionContext) -> Optional[str]:
        """
        Another registered tool that still has attempts left.

        A failing RAG_QUERY prefers any other tool; any other failing tool
        prefers RAG_QUERY when prefer_rag_on_failure is set.
        """
        candidates = [
            name
            for name in self._registry.names()
            if name not in (tool_name, AUTO_TOOL) and context.attempts(name) < self.max_tool_retries
        ]
        if not candidates:
            return None

        rag = RagQueryTool.name
        if tool_name == rag:
            return next((name for name in candidates if name != rag), None)
        if self.prefer_rag_on_failure and rag in candidates:
            return rag
        return candidates[0]
