"""
EmbeddingService: sentence-transformers embedder with an in-process LRU.

Route examples, plan-cache lookups and retrieval all embed the same short
texts repeatedly, so vectors are cached by text. A batch call only sends
the texts missing from the cache to the model.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Callable, Optional

from loguru import logger

from ragroute_core.config import settings
from ragroute_core.infrastructure.embeddings import EmbeddingModelSingleton
from ragroute_core.runtime import EmbeddingFailure


class EmbeddingService:
    """
    Embedder backed by the shared sentence-transformers model.

    Usage:
        service = EmbeddingService()
        vector = service.embed("how do refunds work")
        vectors = service.embed_batch(["a", "b"])
    """

    def __init__(
        self,
        model: Optional[Callable[[list[str]], list[list[float]]]] = None,
        cache_size: int | None = None,
    ):
        """
        Args:
            model: Callable embedding a list of texts; defaults to the
                process-wide EmbeddingModelSingleton.
            cache_size: LRU capacity in vectors; 0 disables caching.
        """
        self._model = model
        self._cache_size = settings.EMBEDDING_CACHE_SIZE if cache_size is None else cache_size
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()

    def _get_model(self) -> Callable[[list[str]], list[list[float]]]:
        if self._model is None:
            self._model = EmbeddingModelSingleton()
        return self._model

    @property
    def cache_len(self) -> int:
        return len(self._cache)

    def _cached(self, text: str) -> Optional[list[float]]:
        with self._lock:
            vector = self._cache.get(text)
            if vector is not None:
                self._cache.move_to_end(text)
            return vector

    def _remember(self, text: str, vector: list[float]) -> None:
        if self._cache_size <= 0:
            return
        with self._lock:
            self._cache[text] = vector
            self._cache.move_to_end(text)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        results: list[Optional[list[float]]] = [self._cached(text) for text in texts]
        missing = sorted({text for text, vector in zip(texts, results) if vector is None})

        if missing:
            logger.debug(f"Embedding {len(missing)} texts ({len(texts) - len(missing)} cached)")
            try:
                vectors = self._get_model()(missing)
            except Exception as e:
                logger.error(f"Failed to generate embeddings: {e}")
                raise EmbeddingFailure(f"Failed to generate embeddings: {e}", cause=e) from e

            if len(vectors) != len(missing):
                raise EmbeddingFailure(
                    f"Embedding model returned {len(vectors)} vectors for {len(missing)} texts"
                )
            fresh = dict(zip(missing, vectors))
            for text, vector in fresh.items():
                self._remember(text, vector)
            results = [vector if vector is not None else fresh[text] for text, vector in zip(texts, results)]

        return results  # type: ignore[return-value]
