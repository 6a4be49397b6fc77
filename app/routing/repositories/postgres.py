"""
PostgreSQL repositories for query records and intent rules.

Tables:
- rag_queries: one row per query, updated as it moves through its states
- rag_responses: one row per response, with sources and scores as JSONB
- intent_rules: routing rules consumed by the intent cascade
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from loguru import logger

from app.routing.domain import (
    IntentRule,
    MatchMode,
    Query,
    QueryStatus,
    QueryType,
    Response,
    RuleType,
    TaskType,
    TopicDomain,
)
from ragroute_core.infrastructure.postgres import get_db_connection


class PostgresQueryRepository:
    """Persists queries and responses."""

    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def save_query(self, query: Query) -> None:
        """Insert the query, or update its mutable columns when it already exists."""
        with get_db_connection(self._dsn) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO rag_queries (
                    query_id, original_text, processed_text, user_id, session_id,
                    status, query_type, metadata, created_at, completed_at,
                    latency_ms, error_message
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (query_id) DO UPDATE SET
                    processed_text = EXCLUDED.processed_text,
                    status = EXCLUDED.status,
                    query_type = EXCLUDED.query_type,
                    metadata = EXCLUDED.metadata,
                    completed_at = EXCLUDED.completed_at,
                    latency_ms = EXCLUDED.latency_ms,
                    error_message = EXCLUDED.error_message
                """,
                (
                    query.id,
                    query.original_text,
                    query.processed_text,
                    query.user_id,
                    query.session_id,
                    query.status.value,
                    query.query_type.value if query.query_type else None,
                    json.dumps(query.metadata, default=str),
                    query.created_at,
                    query.completed_at,
                    query.latency_ms,
                    query.error_message,
                ),
            )
            conn.commit()

        logger.debug(f"Saved query {query.id} ({query.status.value})")

    def update_query_status(
        self,
        query_id: str,
        status: QueryStatus,
        complete_time: Optional[datetime] = None,
        latency_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        with get_db_connection(self._dsn) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE rag_queries
                SET status = %s,
                    completed_at = COALESCE(%s, completed_at),
                    latency_ms = COALESCE(%s, latency_ms),
                    error_message = COALESCE(%s, error_message)
                WHERE query_id = %s
                """,
                (status.value, complete_time, latency_ms, error, query_id),
            )
            conn.commit()

        logger.debug(f"Query {query_id} -> {status.value}")

    def save_response(self, response: Response) -> None:
        evaluation = response.evaluation.model_dump() if response.evaluation else None
        with get_db_connection(self._dsn) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO rag_responses (
                    response_id, query_id, session_id, answer, sources,
                    retrieved_context, evaluation, status, error_message,
                    processing_type, latency_ms, metadata, created_at_ms
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (response_id) DO UPDATE SET
                    answer = EXCLUDED.answer,
                    sources = EXCLUDED.sources,
                    evaluation = EXCLUDED.evaluation,
                    status = EXCLUDED.status,
                    error_message = EXCLUDED.error_message,
                    latency_ms = EXCLUDED.latency_ms,
                    metadata = EXCLUDED.metadata
                """,
                (
                    response.id,
                    response.query_id,
                    response.session_id,
                    response.answer,
                    json.dumps([s.model_dump() for s in response.sources]),
                    response.retrieved_context,
                    json.dumps(evaluation) if evaluation else None,
                    response.status.value,
                    response.error_message,
                    response.processing_type.value if response.processing_type else None,
                    response.latency_ms,
                    json.dumps(response.metadata, default=str),
                    response.timestamp_ms,
                ),
            )
            conn.commit()

        logger.debug(f"Saved response {response.id} for query {response.query_id}")


class PostgresIntentRuleRepository:
    """Loads active intent rules ordered by priority."""

    _COLUMNS = """
        rule_id, rule_type, match_mode, content, task_type, domain,
        target_processor, confidence, priority, is_active, allow_cascade,
        lock_processor, route_key, semantic_threshold, description
    """

    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def list_rules(self, rule_type: RuleType) -> list[IntentRule]:
        with get_db_connection(self._dsn) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {self._COLUMNS}
                FROM intent_rules
                WHERE rule_type = %s AND is_active = TRUE
                ORDER BY priority DESC, rule_id ASC
                """,
                (rule_type.value,),
            )
            rows = cursor.fetchall()

        rules = []
        for row in rows:
            rule = self._row_to_rule(row)
            if rule is not None:
                rules.append(rule)
        logger.debug(f"Loaded {len(rules)} {rule_type.value} rules")
        return rules

    def _row_to_rule(self, row: tuple) -> IntentRule | None:
        try:
            return IntentRule(
                id=row[0],
                rule_type=RuleType(row[1]),
                match_mode=MatchMode(row[2] or MatchMode.CONTAINS.value),
                content=row[3],
                task_type=TaskType(row[4] or TaskType.UNKNOWN.value),
                domain=TopicDomain(row[5] or TopicDomain.GENERAL.value),
                target_processor=QueryType.parse(row[6]),
                confidence=row[7] if row[7] is not None else 0.9,
                priority=row[8] or 0,
                is_active=bool(row[9]),
                allow_cascade=bool(row[10]),
                lock_processor=bool(row[11]),
                route_key=row[12],
                semantic_threshold=row[13],
                description=row[14],
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed intent rule {row[0]!r}: {e}")
            return None
