from __future__ import annotations
"""
Fake implementations of routing protocols for testing.
"""

from typing import Optional

from app.routing.domain import (
    ChunkHit,
    EvaluationScores,
    GenerateParams,
    IntentClassification,
    QueryIntent,
    RoutingDecision,
    TaskPlan,
)
from ragroute_core.runtime import EvaluationFailure, GenerationFailure


class FakeEmbedder:
    """Returns vectors from a lookup table, a default vector otherwise."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None):
        self.vectors = vectors or {}
        self.default = default or [0.1, 0.2, 0.3, 0.4, 0.5]
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []
        self.fail = False

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return list(self.vectors.get(text, self.default))

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [list(self.vectors.get(t, self.default)) for t in texts]


class FakeSearch:
    """Returns canned hits, truncated to top_k."""

    def __init__(self, hits: list[ChunkHit] | None = None):
        self.hits = hits or []
        self.calls: list[dict] = []
        self.fail = False

    def search(
        self,
        vector: list[float],
        top_k: int,
        min_score: float,
        index_name: Optional[str] = None,
    ) -> list[ChunkHit]:
        self.calls.append(
            {"vector": vector, "top_k": top_k, "min_score": min_score, "index_name": index_name}
        )
        if self.fail:
            raise RuntimeError("vector store unavailable")
        return list(self.hits[:top_k])


class FakeChunkStore:
    """Serves chunks keyed by (document_id, chunk_index)."""

    def __init__(self, chunks: list[ChunkHit] | None = None):
        self.chunks = {(c.document_id, c.chunk_index): c for c in (chunks or [])}
        self.calls: list[tuple[str, list[int]]] = []
        self.fail = False

    def fetch_chunks(
        self, document_id: str, chunk_indices: list[int], index_name: Optional[str] = None
    ) -> list[ChunkHit]:
        self.calls.append((document_id, list(chunk_indices)))
        if self.fail:
            raise RuntimeError("chunk store unavailable")
        return [
            self.chunks[(document_id, i)] for i in chunk_indices if (document_id, i) in self.chunks
        ]


class FakeGenerator:
    def __init__(self, answer: str = "Fake answer", fail: bool = False):
        self.answer = answer
        self.fail = fail
        self.calls: list[tuple[str, list[str], GenerateParams]] = []

    def generate(self, query: str, contexts: list[str], params: GenerateParams) -> str:
        self.calls.append((query, list(contexts), params))
        if self.fail:
            raise GenerationFailure("LLM provider returned 500")
        return self.answer


class FakeEvaluator:
    """Returns fixed scores; fails the first `failures` calls."""

    def __init__(self, scores: EvaluationScores | None = None, failures: int = 0):
        self.scores = scores or EvaluationScores(faithfulness=9, relevance=9, total_score=9)
        self.failures = failures
        self.calls = 0

    def evaluate(self, query: str, answer: str, context: str) -> EvaluationScores:
        self.calls += 1
        if self.calls <= self.failures:
            raise EvaluationFailure("judge returned malformed JSON")
        return self.scores


class FakeClassifier:
    model_id = "fake-classifier"

    def __init__(self, classification: IntentClassification | None = None, fail: bool = False):
        self.classification = classification or IntentClassification()
        self.fail = fail
        self.calls: list[str] = []

    def classify(self, query_text: str) -> IntentClassification:
        self.calls.append(query_text)
        if self.fail:
            raise RuntimeError("classifier unavailable")
        return self.classification


class FakePlanner:
    def __init__(self, plan: TaskPlan | None = None, fail: bool = False):
        self.plan_result = plan or TaskPlan()
        self.fail = fail
        self.calls: list[str] = []

    def plan(self, query_text: str, intent: QueryIntent) -> TaskPlan:
        self.calls.append(query_text)
        if self.fail:
            raise RuntimeError("planner unavailable")
        return self.plan_result


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.decisions: list[RoutingDecision] = []
        self.fail = fail

    def publish(self, decision: RoutingDecision) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.decisions.append(decision)


def chunk(document_id: str, chunk_index: int, score: float = 0.0, content: str | None = None) -> ChunkHit:
    return ChunkHit(
        document_id=document_id,
        chunk_index=chunk_index,
        content=content if content is not None else f"{document_id} chunk {chunk_index}",
        title=f"Title {document_id}",
        score=score,
    )
