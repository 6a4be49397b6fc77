"""
Qdrant-backed vector search and chunk store.

Chunk points carry their text and position in the payload:
document_id, chunk_index, content, title, source, start_position,
end_position. The collection name is the retrieval index name.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger
from qdrant_client import QdrantClient
from qdrant_client.http.models import FieldCondition, Filter, MatchAny, MatchValue

from app.routing.domain import ChunkHit
from ragroute_core.config import settings
from ragroute_core.infrastructure.qdrant import QdrantDatabaseConnector
from ragroute_core.runtime import RetrievalFailure, RetryPolicy, sync_with_retry

QDRANT_RETRY_POLICY = RetryPolicy(max_attempts=2, base_delay=0.2, max_delay=1.0)


def hit_from_payload(payload: dict[str, Any] | None, score: float = 0.0) -> ChunkHit | None:
    """Map a point payload to a ChunkHit, or None when it lacks a document/chunk key."""
    payload = payload or {}
    document_id = payload.get("document_id")
    chunk_index = payload.get("chunk_index")
    if document_id is None or chunk_index is None:
        return None
    return ChunkHit(
        document_id=str(document_id),
        chunk_index=int(chunk_index),
        content=payload.get("content", ""),
        title=payload.get("title"),
        source=payload.get("source"),
        start_position=payload.get("start_position"),
        end_position=payload.get("end_position"),
        score=float(score),
    )


class _QdrantAdapter:
    def __init__(self, client: QdrantClient | None = None, default_collection: str | None = None):
        self._client = client
        self._default_collection = default_collection or settings.RETRIEVAL_INDEX_NAME

    def _get_client(self) -> QdrantClient:
        """Get the Qdrant client (lazy initialization)."""
        if self._client is None:
            self._client = QdrantDatabaseConnector.get_instance()
        return self._client

    def _collection(self, index_name: Optional[str]) -> str:
        return index_name or self._default_collection


class QdrantVectorSearch(_QdrantAdapter):
    """Nearest-neighbor search with query_points."""

    @sync_with_retry(QDRANT_RETRY_POLICY)
    def search(
        self,
        vector: list[float],
        top_k: int,
        min_score: float,
        index_name: Optional[str] = None,
    ) -> list[ChunkHit]:
        collection_name = self._collection(index_name)
        try:
            response = self._get_client().query_points(
                collection_name=collection_name,
                query=vector,
                limit=top_k,
                score_threshold=min_score,
                with_payload=True,
            )
        except Exception as e:
            logger.error(f"Qdrant search failed on '{collection_name}': {e}")
            raise RetrievalFailure(f"Vector search failed on '{collection_name}'", cause=e) from e

        hits = []
        for point in response.points:
            hit = hit_from_payload(point.payload, point.score)
            if hit is None:
                logger.debug(f"Skipping point {point.id} without document_id/chunk_index")
                continue
            hits.append(hit)
        return hits


class QdrantChunkStore(_QdrantAdapter):
    """Fetches chunks of one document by index with a payload filter."""

    @sync_with_retry(QDRANT_RETRY_POLICY)
    def fetch_chunks(
        self,
        document_id: str,
        chunk_indices: list[int],
        index_name: Optional[str] = None,
    ) -> list[ChunkHit]:
        if not chunk_indices:
            return []

        collection_name = self._collection(index_name)
        scroll_filter = Filter(
            must=[
                FieldCondition(key="document_id", match=MatchValue(value=document_id)),
                FieldCondition(key="chunk_index", match=MatchAny(any=list(chunk_indices))),
            ]
        )
        try:
            points, _ = self._get_client().scroll(
                collection_name=collection_name,
                scroll_filter=scroll_filter,
                limit=len(chunk_indices),
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            logger.error(f"Qdrant chunk fetch failed for document {document_id}: {e}")
            raise RetrievalFailure(f"Chunk fetch failed for document {document_id}", cause=e) from e

        chunks = [hit_from_payload(point.payload) for point in points]
        return sorted((c for c in chunks if c is not None), key=lambda c: c.chunk_index)
