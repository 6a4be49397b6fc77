"""
In-memory repositories, for tests and single-process deployments.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterable, Optional

from app.routing.domain import IntentRule, Query, QueryStatus, Response, RuleType
from app.routing.intent.rules import rule_sort_key


class InMemoryQueryRepository:
    """Keeps copies of queries and responses keyed by id."""

    def __init__(self):
        self._queries: dict[str, Query] = {}
        self._responses: dict[str, Response] = {}
        self._lock = threading.Lock()

    def save_query(self, query: Query) -> None:
        with self._lock:
            self._queries[query.id] = query.model_copy(deep=True)

    def update_query_status(
        self,
        query_id: str,
        status: QueryStatus,
        complete_time: Optional[datetime] = None,
        latency_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            query = self._queries.get(query_id)
            if query is None:
                raise KeyError(f"Unknown query {query_id}")
            update = {"status": status}
            if complete_time is not None:
                update["completed_at"] = complete_time
            if latency_ms is not None:
                update["latency_ms"] = latency_ms
            if error is not None:
                update["error_message"] = error
            self._queries[query_id] = query.model_copy(update=update)

    def save_response(self, response: Response) -> None:
        with self._lock:
            self._responses[response.id] = response.model_copy(deep=True)

    def get_query(self, query_id: str) -> Optional[Query]:
        return self._queries.get(query_id)

    def responses_for(self, query_id: str) -> list[Response]:
        return [r for r in self._responses.values() if r.query_id == query_id]


class InMemoryIntentRuleRepository:
    """Serves a fixed rule set; `replace` swaps it for refresh tests."""

    def __init__(self, rules: Iterable[IntentRule] = ()):
        self._rules = tuple(rules)

    def replace(self, rules: Iterable[IntentRule]) -> None:
        self._rules = tuple(rules)

    def list_rules(self, rule_type: RuleType) -> list[IntentRule]:
        return sorted(
            (r for r in self._rules if r.rule_type == rule_type and r.is_active),
            key=rule_sort_key,
        )
