"""
Processor variants.

Each variant changes only how contexts are gathered; generation,
evaluation and persistence come from BaseQueryProcessor. Variants that
depend on rewritten text (query variants, hypothetical answer, step-back
question, sub-questions) fall back to plain retrieval when the rewrite
produced nothing.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from loguru import logger

from app.routing.domain import Query, QueryType, RetrievalParams, RetrievedContext
from app.routing.processors.base import BaseQueryProcessor

RRF_K = 60


def merge_contexts(
    result_lists: Iterable[list[RetrievedContext]], max_contexts: int
) -> list[RetrievedContext]:
    """Union of result lists, deduped on (document_id, chunk_index), best score first."""
    best: dict[tuple[str, int], RetrievedContext] = {}
    for contexts in result_lists:
        for context in contexts:
            current = best.get(context.key)
            if current is None or context.score > current.score:
                best[context.key] = context
    merged = sorted(best.values(), key=lambda c: c.score, reverse=True)
    return merged[:max_contexts]


def reciprocal_rank_fusion(
    result_lists: Iterable[list[RetrievedContext]], max_contexts: int, k: int = RRF_K
) -> list[RetrievedContext]:
    """Order contexts by summed 1 / (k + rank) across result lists."""
    fused: dict[tuple[str, int], float] = {}
    representative: dict[tuple[str, int], RetrievedContext] = {}
    for contexts in result_lists:
        for rank, context in enumerate(contexts, 1):
            fused[context.key] = fused.get(context.key, 0.0) + 1.0 / (k + rank)
            current = representative.get(context.key)
            if current is None or context.score > current.score:
                representative[context.key] = context
    ordered = sorted(fused, key=lambda key: fused[key], reverse=True)
    return [representative[key] for key in ordered[:max_contexts]]


class BasicProcessor(BaseQueryProcessor):
    """Single retrieval with the query embedding."""

    query_type = QueryType.BASIC


class _MultiRetrievalProcessor(BaseQueryProcessor):
    """Retrieves for several texts concurrently and merges the results."""

    def retrieval_texts(self, query: Query) -> list[str]:
        return []

    async def gather_contexts(self, query: Query, params: RetrievalParams) -> list[RetrievedContext]:
        extra = [t for t in self.retrieval_texts(query) if t and t.strip() and t != query.text]
        if not extra:
            return await super().gather_contexts(query, params)

        result_lists = await asyncio.gather(
            self._aggregator.retrieve(query.text, params, vector=query.vector),
            *(self._aggregator.retrieve(text, params) for text in extra),
        )
        logger.debug(
            f"[{query.id}] {self.query_type.value} merged {sum(len(r) for r in result_lists)} "
            f"contexts from {len(result_lists)} retrievals"
        )
        return self.merge(result_lists, params.max_contexts)

    def merge(self, result_lists: list[list[RetrievedContext]], max_contexts: int) -> list[RetrievedContext]:
        return merge_contexts(result_lists, max_contexts)


class MultiQueryProcessor(_MultiRetrievalProcessor):
    """Retrieves once per rewritten query variant."""

    query_type = QueryType.MULTI_QUERY

    def retrieval_texts(self, query: Query) -> list[str]:
        return list(query.variants)


class StepBackProcessor(_MultiRetrievalProcessor):
    """Adds evidence for a more general step-back question."""

    query_type = QueryType.STEP_BACK

    def retrieval_texts(self, query: Query) -> list[str]:
        return [query.step_back_text] if query.step_back_text else []


class DecompositionProcessor(_MultiRetrievalProcessor):
    """Retrieves once per sub-question."""

    query_type = QueryType.DECOMPOSITION

    def retrieval_texts(self, query: Query) -> list[str]:
        return list(query.sub_questions)


class RagFusionProcessor(_MultiRetrievalProcessor):
    """Query variants fused with reciprocal rank fusion."""

    query_type = QueryType.RAG_FUSION

    def retrieval_texts(self, query: Query) -> list[str]:
        return [*query.variants, *query.sub_questions]

    def merge(self, result_lists: list[list[RetrievedContext]], max_contexts: int) -> list[RetrievedContext]:
        return reciprocal_rank_fusion(result_lists, max_contexts)


class HydeProcessor(BaseQueryProcessor):
    """Retrieves with the embedding of a hypothetical answer."""

    query_type = QueryType.HYDE

    async def gather_contexts(self, query: Query, params: RetrievalParams) -> list[RetrievedContext]:
        hypothetical: Optional[str] = query.hypothetical_answer
        if not hypothetical or not hypothetical.strip():
            return await super().gather_contexts(query, params)
        return await self._aggregator.retrieve(hypothetical, params)


DEFAULT_PROCESSORS: tuple[type[BaseQueryProcessor], ...] = (
    BasicProcessor,
    MultiQueryProcessor,
    HydeProcessor,
    StepBackProcessor,
    DecompositionProcessor,
    RagFusionProcessor,
)
