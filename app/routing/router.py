"""
Query routing: processor registry and keyword-scored selection.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional

from loguru import logger

from app.routing.domain import QueryParams, QueryType
from app.routing.processors.base import BaseQueryProcessor
from ragroute_core.runtime import RouteNotFound


class QueryRouter:
    """
    Registry of processors keyed by QueryType, built once.

    Usage:
        router = QueryRouter([BasicProcessor(...), HydeProcessor(...)])
        processor = router.route("hyde")
    """

    def __init__(self, processors: Iterable[BaseQueryProcessor]):
        self._processors: dict[QueryType, BaseQueryProcessor] = {}
        for processor in processors:
            if processor.query_type in self._processors:
                logger.warning(f"Duplicate processor for {processor.query_type.value}, keeping the first")
                continue
            self._processors[processor.query_type] = processor
        logger.info(
            f"Registered {len(self._processors)} query processors: "
            f"{', '.join(t.value for t in self._processors)}"
        )

    @property
    def registered_types(self) -> tuple[QueryType, ...]:
        return tuple(self._processors)

    def is_registered(self, selector: QueryType | str | None) -> bool:
        query_type = QueryType.parse(selector)
        return query_type is not None and query_type in self._processors

    def route(self, selector: QueryType | str) -> BaseQueryProcessor:
        """
        Resolve a processor.

        Raises:
            RouteNotFound: If the selector is unknown or has no processor.
        """
        query_type = QueryType.parse(selector)
        processor = self._processors.get(query_type) if query_type else None
        if processor is None:
            raise RouteNotFound(f"No query processor registered for '{selector}'")
        return processor


# Phrase lists are matched as lowercase substrings
HYDE_PATTERN = re.compile(r"\b(suppose|supposing|hypothetically|imagine|what if|assuming|in theory)\b")
MULTI_QUERY_KEYWORDS = frozenset(
    {"compare", "comparison", "difference", "differences", "versus", " vs ", "list all", "which ones", "enumerate"}
)
DECOMPOSITION_KEYWORDS = frozenset(
    {"explain in detail", "in depth", "in-depth", "step by step", "step-by-step", "comprehensive", "thoroughly"}
)
SELF_RAG_KEYWORDS = frozenset(
    {"accurate", "precise", "authoritative", "reliable", "factual", "verify", "verified"}
)
LONG_QUERY_CHARS = 120


class KeywordQueryRouter:
    """
    Picks a processor from keyword cues and request switches.

    An explicit `query_type`/`force_type` wins when it is registered;
    otherwise every registered processor is scored and the highest
    score wins, BASIC being the floor.
    """

    def __init__(self, router: QueryRouter):
        self._router = router

    def score(self, text: str, params: QueryParams) -> dict[QueryType, float]:
        scores = {query_type: 0.0 for query_type in QueryType}
        lowered = f" {(text or '').lower()} "

        if HYDE_PATTERN.search(lowered):
            scores[QueryType.HYDE] += 0.35
        if any(word in lowered for word in MULTI_QUERY_KEYWORDS):
            scores[QueryType.MULTI_QUERY] += 0.30
        if any(word in lowered for word in DECOMPOSITION_KEYWORDS):
            scores[QueryType.DECOMPOSITION] += 0.25
        if any(word in lowered for word in SELF_RAG_KEYWORDS):
            scores[QueryType.SELF_RAG] += 0.20
        if len((text or "").strip()) > LONG_QUERY_CHARS:
            scores[QueryType.STEP_BACK] += 0.20

        if params.multi_query_enabled:
            scores[QueryType.MULTI_QUERY] += 0.35
        if params.hyde_enabled:
            scores[QueryType.HYDE] += 0.35
        if params.step_back_enabled:
            scores[QueryType.STEP_BACK] += 0.30
        if params.self_rag_enabled:
            scores[QueryType.SELF_RAG] += 0.30

        scores[QueryType.BASIC] += 0.10
        return scores

    def select(self, text: str, params: QueryParams | dict[str, Any] | None = None) -> QueryType:
        params = QueryParams.coerce(params)

        explicit: Optional[QueryType] = params.explicit_type
        if explicit is not None and self._router.is_registered(explicit):
            logger.debug(f"Explicit processor requested: {explicit.value}")
            return explicit

        best, best_score = QueryType.BASIC, -1.0
        for query_type, value in self.score(text, params).items():
            if self._router.is_registered(query_type) and value > best_score:
                best, best_score = query_type, value

        logger.debug(f"Keyword routing selected {best.value} (score {min(best_score, 1.0):.2f})")
        return best
