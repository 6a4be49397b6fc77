"""
RetrievalAggregator: document-aware context assembly.

Pipeline:
1. Embed the query (or reuse a vector computed upstream)
2. Over-fetch candidates from the vector store and drop low scores
3. Group hits by document and cap chunks per document
4. Expand surviving chunks with their neighbors for continuity
5. Score documents, rank them and emit chunks up to max_contexts
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from app.routing.domain import ChunkHit, DocAggregation, RetrievalParams, RetrievedContext
from app.routing.protocols import ChunkStore, Embedder, VectorSearch
from ragroute_core.runtime import (
    Capability,
    CapabilityRunner,
    EmbeddingFailure,
    RetrievalFailure,
)


def document_score(scores: Sequence[float], mode: DocAggregation) -> float:
    """Reduce the kept chunk scores of one document to a single score."""
    if not scores:
        return 0.0
    ordered = sorted(scores, reverse=True)
    if mode == DocAggregation.MAX:
        return ordered[0]
    top = ordered[:2]
    return sum(top) / len(top)


@dataclass
class _DocumentGroup:
    document_id: str
    hits: dict[int, ChunkHit] = field(default_factory=dict)
    kept: list[RetrievedContext] = field(default_factory=list)
    neighbors: list[RetrievedContext] = field(default_factory=list)
    score: float = 0.0

    def add(self, hit: ChunkHit) -> None:
        current = self.hits.get(hit.chunk_index)
        if current is None or hit.score > current.score:
            self.hits[hit.chunk_index] = hit

    def ordered(self) -> list[RetrievedContext]:
        return sorted(
            [*self.kept, *self.neighbors],
            key=lambda c: (c.rank, c.chunk.chunk_index),
        )


class RetrievalAggregator:
    """
    Turns a query into a bounded, document-grouped list of contexts.

    Usage:
        aggregator = RetrievalAggregator(embedder, search, chunk_store, runner)
        contexts = await aggregator.retrieve("how do refunds work", RetrievalParams())
    """

    def __init__(
        self,
        embedder: Embedder,
        search: VectorSearch,
        chunk_store: ChunkStore,
        runner: CapabilityRunner,
    ):
        self._embedder = embedder
        self._search = search
        self._chunk_store = chunk_store
        self._runner = runner

    async def embed(self, query_text: str) -> list[float]:
        return await self._runner.run(
            Capability.EMBED, self._embedder.embed, query_text, error_cls=EmbeddingFailure
        )

    async def retrieve(
        self,
        query_text: str,
        params: RetrievalParams | None = None,
        vector: Optional[Sequence[float]] = None,
    ) -> list[RetrievedContext]:
        """
        Retrieve contexts for a query.

        Args:
            query_text: Text to embed when no vector is given.
            params: Retrieval knobs; configured defaults when omitted.
            vector: Precomputed query embedding.

        Returns:
            At most params.max_contexts contexts, grouped by document in
            document-score order.

        Raises:
            EmbeddingFailure: If the query cannot be embedded.
            RetrievalFailure: If the vector search fails.
        """
        params = params or RetrievalParams()
        if vector is None:
            vector = await self.embed(query_text)

        contexts = await self._retrieve(list(vector), params)
        if not contexts and params.relax_on_empty:
            relaxed = params.model_copy(
                update={
                    "min_score": 0.0,
                    "candidate_multiplier": params.candidate_multiplier * 2,
                    "relax_on_empty": False,
                }
            )
            logger.info(
                f"No contexts above min_score={params.min_score}, "
                f"retrying with {relaxed.candidate_limit} candidates and no score floor"
            )
            contexts = await self._retrieve(list(vector), relaxed)
        return contexts

    async def _retrieve(self, vector: list[float], params: RetrievalParams) -> list[RetrievedContext]:
        hits = await self._runner.run(
            Capability.SEARCH,
            self._search.search,
            vector,
            params.candidate_limit,
            params.min_score,
            params.index_name,
            error_cls=RetrievalFailure,
        )
        hits = [hit for hit in hits or [] if hit.score >= params.min_score]
        if not hits:
            logger.debug(f"Vector search returned no hits above {params.min_score}")
            return []

        groups = self._group(hits)
        for group in groups:
            self._truncate(group, params)

        if params.neighbor_window > 0:
            await asyncio.gather(*(self._expand(group, params) for group in groups))

        # sorted() is stable, so equal scores keep first-appearance order
        ranked = sorted(groups, key=lambda g: g.score, reverse=True)

        contexts: list[RetrievedContext] = []
        for group in ranked:
            for context in group.ordered():
                if len(contexts) >= params.max_contexts:
                    break
                contexts.append(context)
            if len(contexts) >= params.max_contexts:
                break

        logger.debug(
            f"Aggregated {len(hits)} hits from {len(groups)} documents into {len(contexts)} contexts"
        )
        return contexts

    @staticmethod
    def _group(hits: list[ChunkHit]) -> list[_DocumentGroup]:
        groups: dict[str, _DocumentGroup] = {}
        for hit in hits:
            groups.setdefault(hit.document_id, _DocumentGroup(hit.document_id)).add(hit)
        return list(groups.values())

    @staticmethod
    def _truncate(group: _DocumentGroup, params: RetrievalParams) -> None:
        ordered = sorted(group.hits.values(), key=lambda h: (-h.score, h.chunk_index))
        kept = ordered[: params.per_doc_max_chunks]
        group.score = document_score([h.score for h in kept], params.doc_agg)
        group.kept = [
            RetrievedContext(chunk=hit, score=hit.score, document_score=group.score, rank=rank)
            for rank, hit in enumerate(kept)
        ]

    async def _expand(self, group: _DocumentGroup, params: RetrievalParams) -> None:
        window = params.neighbor_window
        kept_indices = {c.chunk.chunk_index for c in group.kept}

        # each wanted neighbor index maps to the best-ranked kept chunk within the window
        parents: dict[int, RetrievedContext] = {}
        for context in group.kept:
            center = context.chunk.chunk_index
            for index in range(center - window, center + window + 1):
                if index < 0 or index in kept_indices or index in parents:
                    continue
                parents[index] = context

        if not parents:
            return

        try:
            neighbors = await self._runner.run(
                Capability.FETCH_CHUNKS,
                self._chunk_store.fetch_chunks,
                group.document_id,
                sorted(parents),
                params.index_name,
                error_cls=RetrievalFailure,
            )
        except RetrievalFailure as e:
            logger.warning(f"Neighbor expansion skipped for document {group.document_id}: {e}")
            return

        seen: set[int] = set()
        for chunk in neighbors or []:
            parent = parents.get(chunk.chunk_index)
            if chunk.document_id != group.document_id or parent is None or chunk.chunk_index in seen:
                continue
            seen.add(chunk.chunk_index)
            group.neighbors.append(
                RetrievedContext(
                    chunk=chunk,
                    score=parent.score,
                    document_score=group.score,
                    rank=parent.rank,
                    expanded=True,
                )
            )
