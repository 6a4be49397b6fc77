from __future__ import annotations
"""
Protocols for the routing pipeline.

Every external capability the pipeline consumes is a narrow, synchronous
interface. The orchestration layer runs these calls on the worker pool, so
implementations are free to block.
"""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from app.routing.domain import (
    ChunkHit,
    EvaluationScores,
    GenerateParams,
    IntentClassification,
    IntentRule,
    Query,
    QueryIntent,
    QueryStatus,
    Response,
    RoutingDecision,
    RuleType,
    TaskPlan,
)


@runtime_checkable
class Embedder(Protocol):
    """Protocol for text embedding services."""

    def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed.

        Returns:
            The embedding vector.
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed several texts, preserving order.

        Args:
            texts: Texts to embed.

        Returns:
            One vector per input text.
        """
        ...


@runtime_checkable
class VectorSearch(Protocol):
    """Protocol for nearest-neighbor search over indexed chunks."""

    def search(
        self,
        vector: list[float],
        top_k: int,
        min_score: float,
        index_name: Optional[str] = None,
    ) -> list[ChunkHit]:
        """
        Find the chunks closest to `vector`.

        Args:
            vector: Query embedding.
            top_k: Maximum number of hits.
            min_score: Minimum similarity score.
            index_name: Optional index/collection scope.

        Returns:
            Hits ordered by score descending.
        """
        ...


@runtime_checkable
class ChunkStore(Protocol):
    """Protocol for fetching chunks by position within a document."""

    def fetch_chunks(
        self,
        document_id: str,
        chunk_indices: list[int],
        index_name: Optional[str] = None,
    ) -> list[ChunkHit]:
        """
        Load the given chunk indices of one document.

        Missing indices are simply absent from the result.
        """
        ...


@runtime_checkable
class Generator(Protocol):
    """Protocol for grounded answer generation."""

    def generate(self, query: str, contexts: list[str], params: GenerateParams) -> str:
        """
        Generate an answer from the query and evidence texts.

        Args:
            query: The user's question.
            contexts: Evidence texts, best first.
            params: Sampling parameters.

        Returns:
            The answer text.
        """
        ...


@runtime_checkable
class AnswerEvaluator(Protocol):
    """Protocol for answer quality judges."""

    def evaluate(self, query: str, answer: str, context: str) -> EvaluationScores:
        """
        Score an answer against its evidence.

        Raises:
            EvaluationFailure: If the judge cannot produce scores.
        """
        ...


@runtime_checkable
class IntentClassifier(Protocol):
    """Protocol for language-model task classification."""

    def classify(self, query_text: str) -> IntentClassification:
        ...


@runtime_checkable
class Planner(Protocol):
    """Protocol for language-model task planning."""

    def plan(self, query_text: str, intent: QueryIntent) -> TaskPlan:
        """
        Produce a dependency-ordered plan for a multi-step query.

        Raises:
            PlanningFailure: If no usable plan could be produced.
        """
        ...


@runtime_checkable
class QueryRepository(Protocol):
    """Protocol for persisting queries and responses."""

    def save_query(self, query: Query) -> None:
        ...

    def update_query_status(
        self,
        query_id: str,
        status: QueryStatus,
        complete_time: Optional[datetime] = None,
        latency_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        ...

    def save_response(self, response: Response) -> None:
        ...


@runtime_checkable
class IntentRuleRepository(Protocol):
    """Protocol for loading intent rules."""

    def list_rules(self, rule_type: RuleType) -> list[IntentRule]:
        """Return active rules of one type."""
        ...


@runtime_checkable
class DecisionPublisher(Protocol):
    """Protocol for routing decision sinks."""

    def publish(self, decision: RoutingDecision) -> None:
        ...
