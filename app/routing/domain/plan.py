"""
Task planning models.

A TaskPlan is a DAG of TaskNodes keyed by step index; TaskExecutionContext
is the scratch state owned by one plan execution.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

AUTO_TOOL = "AUTO"


class TaskNode(BaseModel):
    """One step of a task plan."""

    model_config = ConfigDict(frozen=True)

    step: int
    tool_name: str = AUTO_TOOL
    description: str = ""
    dependencies: tuple[int, ...] = ()


class TaskPlan(BaseModel):
    """Ordered list of task nodes forming a dependency DAG."""

    model_config = ConfigDict(frozen=True)

    tasks: tuple[TaskNode, ...] = ()
    summary: Optional[str] = None
    requires_tools: bool = False

    @property
    def has_tasks(self) -> bool:
        return bool(self.tasks)

    def steps(self) -> dict[int, TaskNode]:
        return {node.step: node for node in self.tasks}

    def topological_order(self) -> list[int]:
        """
        Step indices in an order that respects dependencies.

        Dependencies on unknown steps are ignored. Raises ValueError when
        the plan contains a cycle.
        """
        nodes = self.steps()
        indegree = {step: 0 for step in nodes}
        children: dict[int, list[int]] = defaultdict(list)
        for node in self.tasks:
            for dep in node.dependencies:
                if dep in nodes and dep != node.step:
                    children[dep].append(node.step)
                    indegree[node.step] += 1

        ready = sorted(step for step, degree in indegree.items() if degree == 0)
        order: list[int] = []
        while ready:
            step = ready.pop(0)
            order.append(step)
            for child in children[step]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)
            ready.sort()

        if len(order) != len(nodes):
            raise ValueError("Task plan contains a dependency cycle")
        return order


class CachedTaskPlan(BaseModel):
    """Immutable cache entry for a previously computed plan."""

    model_config = ConfigDict(frozen=True)

    query_text: str
    embedding: tuple[float, ...]
    plan: TaskPlan
    created_at_ms: int = Field(..., description="Insertion time, epoch millis")


class TaskExecutionContext:
    """
    Scratch state for one plan execution.

    Holds a key/value map, per-tool attempt counters, per-step results and
    the latest intermediate response. Steps that run concurrently write to
    it, so mutations take a lock; the object itself is never shared
    between executions.
    """

    def __init__(self, query: Any, strategy: Any = None, intent: Any = None):
        self.query = query
        self.strategy = strategy
        self.intent = intent
        self.last_response: Any = None
        self._values: dict[str, Any] = {}
        self._attempts: dict[str, int] = defaultdict(int)
        self._step_results: dict[int, Any] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def increment_attempt(self, tool_name: str) -> int:
        with self._lock:
            self._attempts[tool_name] += 1
            return self._attempts[tool_name]

    def attempts(self, tool_name: str) -> int:
        return self._attempts.get(tool_name, 0)

    def record_step(self, step: int, result: Any) -> None:
        with self._lock:
            self._step_results[step] = result

    def step_result(self, step: int) -> Any:
        return self._step_results.get(step)

    @property
    def step_results(self) -> dict[int, Any]:
        return dict(self._step_results)
