"""
Unit tests for query and intent-rule repositories.

The PostgreSQL repositories are exercised against a mocked connection.
"""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from app.routing.domain import (
    EvaluationScores,
    IntentRule,
    MatchMode,
    Query,
    QueryStatus,
    QueryType,
    Response,
    RuleType,
    SourceRef,
    TaskType,
    TopicDomain,
)
from app.routing.repositories.memory import InMemoryIntentRuleRepository, InMemoryQueryRepository
from app.routing.repositories.postgres import PostgresIntentRuleRepository, PostgresQueryRepository


class TestInMemoryQueryRepository:
    def test_save_and_update(self):
        repo = InMemoryQueryRepository()
        query = Query(original_text="q")
        repo.save_query(query)
        done = datetime(2026, 1, 1)

        repo.update_query_status(query.id, QueryStatus.FAILED, done, 42, "boom")

        stored = repo.get_query(query.id)
        assert stored.status == QueryStatus.FAILED
        assert stored.completed_at == done
        assert stored.latency_ms == 42
        assert stored.error_message == "boom"

    def test_stores_copies(self):
        repo = InMemoryQueryRepository()
        query = Query(original_text="q")
        repo.save_query(query)

        query.status = QueryStatus.COMPLETED

        assert repo.get_query(query.id).status == QueryStatus.CREATED

    def test_update_unknown_query_raises(self):
        with pytest.raises(KeyError):
            InMemoryQueryRepository().update_query_status("missing", QueryStatus.COMPLETED)

    def test_responses_for(self):
        repo = InMemoryQueryRepository()
        repo.save_response(Response(query_id="q1", answer="a"))
        repo.save_response(Response(query_id="q2", answer="b"))

        assert [r.answer for r in repo.responses_for("q1")] == ["a"]


class TestInMemoryIntentRuleRepository:
    def test_filters_by_type_and_active_and_sorts(self):
        repo = InMemoryIntentRuleRepository(
            [
                IntentRule(id=2, rule_type=RuleType.KEYWORD, content="b", priority=1),
                IntentRule(id=1, rule_type=RuleType.KEYWORD, content="a", priority=5),
                IntentRule(id=3, rule_type=RuleType.KEYWORD, content="c", is_active=False),
                IntentRule(id=4, rule_type=RuleType.REGEX, content="d"),
            ]
        )

        assert [r.id for r in repo.list_rules(RuleType.KEYWORD)] == [1, 2]

    def test_replace(self):
        repo = InMemoryIntentRuleRepository()
        repo.replace([IntentRule(id=1, rule_type=RuleType.REGEX, content="x")])

        assert len(repo.list_rules(RuleType.REGEX)) == 1


class TestPostgresQueryRepository:
    """Tests for query and response persistence."""

    def test_save_query_upserts(self, mock_postgres):
        repo = PostgresQueryRepository("postgresql://test")
        query = Query(original_text="q", user_id="u1", query_type=QueryType.HYDE, metadata={"k": "v"})

        repo.save_query(query)

        cursor = mock_postgres["cursor"]
        sql, values = cursor.execute.call_args[0]
        assert "INSERT INTO RAG_QUERIES" in sql.upper()
        assert "ON CONFLICT (QUERY_ID) DO UPDATE" in sql.upper()
        assert values[0] == query.id
        assert values[5] == "CREATED"
        assert values[6] == "HYDE"
        assert json.loads(values[7]) == {"k": "v"}
        mock_postgres["connection"].commit.assert_called_once()
        mock_postgres["get_conn"].assert_called_with("postgresql://test")

    def test_update_query_status(self, mock_postgres):
        repo = PostgresQueryRepository()

        repo.update_query_status("q1", QueryStatus.COMPLETED, None, 120, None)

        sql, values = mock_postgres["cursor"].execute.call_args[0]
        assert "UPDATE RAG_QUERIES" in sql.upper()
        assert values == ("COMPLETED", None, 120, None, "q1")

    def test_save_response_serializes_json(self, mock_postgres):
        repo = PostgresQueryRepository()
        response = Response(
            query_id="q1",
            answer="a",
            sources=[SourceRef(document_id="d", chunk_index=2)],
            evaluation=EvaluationScores(faithfulness=8),
            status=QueryStatus.COMPLETED,
            processing_type=QueryType.BASIC,
        )

        repo.save_response(response)

        sql, values = mock_postgres["cursor"].execute.call_args[0]
        assert "INSERT INTO RAG_RESPONSES" in sql.upper()
        assert json.loads(values[4])[0]["document_id"] == "d"
        assert json.loads(values[6])["faithfulness"] == 8
        assert values[7] == "COMPLETED"
        assert values[9] == "BASIC"

    def test_connection_errors_propagate(self, mock_postgres):
        mock_postgres["get_conn"].side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            PostgresQueryRepository().save_query(Query(original_text="q"))


class TestPostgresIntentRuleRepository:
    def test_list_rules_maps_rows(self, mock_postgres):
        mock_postgres["cursor"].fetchall.return_value = [
            (7, "KEYWORD", "CONTAINS", "refund", "FAQ", "ORDER", "basic", 0.95, 10, True, False, True, None, None, "refunds"),
            (8, "KEYWORD", None, "price", None, None, None, None, None, True, True, False, "pricing", 0.9, None),
        ]
        repo = PostgresIntentRuleRepository()

        rules = repo.list_rules(RuleType.KEYWORD)

        first, second = rules
        assert first.id == 7
        assert first.task_type == TaskType.FAQ
        assert first.domain == TopicDomain.ORDER
        assert first.target_processor == QueryType.BASIC
        assert first.lock_processor is True
        assert second.match_mode == MatchMode.CONTAINS
        assert second.task_type == TaskType.UNKNOWN
        assert second.confidence == 0.9
        assert second.priority == 0
        assert second.effective_route_key == "pricing"
        sql, values = mock_postgres["cursor"].execute.call_args[0]
        assert "ORDER BY PRIORITY DESC" in sql.upper()
        assert values == ("KEYWORD",)

    def test_malformed_rows_are_skipped(self, mock_postgres):
        mock_postgres["cursor"].fetchall.return_value = [
            (9, "NOT_A_TYPE", None, "x", None, None, None, None, None, True, False, False, None, None, None),
            (10, "REGEX", "REGEX", r"order \d+", "ORDER_LOOKUP", None, None, 1.0, 0, True, False, False, None, None, None),
        ]

        rules = PostgresIntentRuleRepository().list_rules(RuleType.REGEX)

        assert [r.id for r in rules] == [10]


# --- Fixtures ---


@pytest.fixture
def mock_postgres():
    """Provides mock PostgreSQL connection and cursor."""
    with patch("app.routing.repositories.postgres.get_db_connection") as mock_get_conn:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()

        mock_conn.cursor.return_value = mock_cursor
        mock_conn.__enter__ = MagicMock(return_value=mock_conn)
        mock_conn.__exit__ = MagicMock(return_value=False)

        mock_get_conn.return_value = mock_conn

        yield {
            "get_conn": mock_get_conn,
            "connection": mock_conn,
            "cursor": mock_cursor,
        }
