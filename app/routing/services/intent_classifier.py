"""
OpenAI-backed task classification and planning (JSON mode).
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from app.routing.domain import (
    AUTO_TOOL,
    ComplexityLevel,
    IntentClassification,
    QueryIntent,
    TaskNode,
    TaskPlan,
    TaskType,
    TopicDomain,
)
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import (
    chat_completion,
    get_openai_client,
    parse_json_object,
)
from ragroute_core.runtime import PlanningFailure

TASK_TYPES = "|".join(t.value for t in TaskType)
DOMAINS = "|".join(d.value for d in TopicDomain)

CLASSIFIER_SYSTEM = f"""You classify user requests for an enterprise question-answering system.
Respond with a JSON object only:
{{
  "task_type": "{TASK_TYPES}",
  "domain": "{DOMAINS}",
  "complexity": "LOW|MEDIUM|HIGH",
  "multi_step": true|false,
  "ambiguous": true|false,
  "summary": "one-sentence description of what the user wants"
}}
Set "multi_step" when answering needs several dependent steps, and "ambiguous"
when the request cannot be acted on without asking the user for details."""

PLANNER_SYSTEM = """You are the task planner of an enterprise AI system. Break the user's request
into high-level steps. The system chooses a tool for each step automatically, so describe each
step's goal in natural language instead of naming tools.

Respond with a JSON object only:
{
  "summary": "high-level description of the task",
  "tasks": [
    {"step": 1, "description": "what this step must achieve", "dependencies": []}
  ]
}
Dependencies must reference existing step numbers. Keep the plan short."""

SHORT_QUERY_HINT = (
    "\nThe request is short. If the task cannot be determined, return an empty "
    "tasks list and say in the summary that clarification is needed."
)


class _OpenAIJsonClient:
    def __init__(self, model: str | None = None, client=None):
        self.model_id = model or settings.OPENAI_MODEL_ID
        self._client = client

    def _call_json(self, system_prompt: str, user_message: str) -> dict[str, Any]:
        if self._client is None:
            self._client = get_openai_client()
        content = chat_completion(
            self._client,
            model=self.model_id,
            system_prompt=system_prompt,
            user_message=user_message,
            temperature=0,
            json_mode=True,
        )
        return parse_json_object(content)


class OpenAIIntentClassifier(_OpenAIJsonClient):
    """
    Classifies a query into task type, domain and complexity.

    Usage:
        classifier = OpenAIIntentClassifier()
        classification = classifier.classify("compare plan A and plan B")
    """

    def classify(self, query_text: str) -> IntentClassification:
        try:
            payload = self._call_json(CLASSIFIER_SYSTEM, query_text)
            classification = IntentClassification(
                task_type=TaskType(str(payload.get("task_type", "UNKNOWN"))),
                domain=TopicDomain(str(payload.get("domain", "UNKNOWN"))),
                complexity=ComplexityLevel(str(payload.get("complexity", "MEDIUM"))),
                multi_step=bool(payload.get("multi_step", False)),
                ambiguous=bool(payload.get("ambiguous", False)),
                summary=payload.get("summary"),
            )
        except Exception as e:
            logger.warning(f"Intent classification failed: {e}")
            raise PlanningFailure(f"Intent classification failed: {e}", cause=e) from e

        logger.info(
            f"Classified '{query_text[:50]}' as {classification.task_type.value} "
            f"(multi_step={classification.multi_step})"
        )
        return classification


def plan_from_payload(payload: dict[str, Any]) -> TaskPlan:
    """
    Build a TaskPlan from a planner reply.

    Raises:
        ValueError: If a task entry is malformed.
    """
    nodes = []
    for index, task in enumerate(payload.get("tasks") or [], 1):
        if not isinstance(task, dict):
            raise ValueError(f"Task entry {index} is not an object")
        dependencies = tuple(
            int(dep) for dep in task.get("dependencies") or [] if isinstance(dep, (int, float))
        )
        nodes.append(
            TaskNode(
                step=int(task.get("step", index)),
                tool_name=str(task.get("tool") or AUTO_TOOL),
                description=str(task.get("description", "")),
                dependencies=dependencies,
            )
        )
    return TaskPlan(
        tasks=tuple(nodes),
        summary=str(payload.get("summary", "")),
        requires_tools=len(nodes) > 1,
    )


class OpenAITaskPlanner(_OpenAIJsonClient):
    """Produces dependency-ordered task plans for multi-step requests."""

    def __init__(self, model: str | None = None, client=None, short_query_chars: int | None = None):
        super().__init__(model=model, client=client)
        self._short_query_chars = short_query_chars or settings.SHORT_QUERY_CHARS

    def plan(self, query_text: str, intent: QueryIntent) -> TaskPlan:
        user_message = f"User request: {query_text}"
        if intent.summary:
            user_message += f"\nUnderstood so far: {intent.summary}"
        if len(query_text.strip()) < self._short_query_chars:
            user_message += SHORT_QUERY_HINT

        try:
            plan = plan_from_payload(self._call_json(PLANNER_SYSTEM, user_message))
            plan.topological_order()
        except Exception as e:
            logger.warning(f"Task planning failed: {e}")
            raise PlanningFailure(f"Task planning failed: {e}", cause=e) from e

        logger.info(f"Planned {len(plan.tasks)} steps for '{query_text[:50]}'")
        return plan
