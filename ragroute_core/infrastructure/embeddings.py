"""
Embedding model infrastructure.

Process-wide wrapper around a sentence-transformers model. The model is
loaded lazily on first use and shared by every embedder instance.
"""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from loguru import logger

from ragroute_core.config import settings

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer


class EmbeddingModelSingleton:
    """
    Singleton wrapper for the sentence-transformers model.

    Usage:
        model = EmbeddingModelSingleton()
        vectors = model(["text1", "text2"])
        print(model.embedding_size)
    """

    _instance: "EmbeddingModelSingleton | None" = None
    _lock = threading.Lock()

    def __new__(cls, model_id: str | None = None, device: str | None = None):
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialize(
                    model_id or settings.TEXT_EMBEDDING_MODEL_ID,
                    device or settings.RAG_MODEL_DEVICE,
                )
                cls._instance = instance
        return cls._instance

    def _initialize(self, model_id: str, device: str) -> None:
        from sentence_transformers import SentenceTransformer

        self._model_id = model_id
        self._device = device

        logger.info(f"Loading embedding model: {model_id} on {device}")
        self._model: SentenceTransformer = SentenceTransformer(model_id, device=device)
        self._embedding_size = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded. Dimension: {self._embedding_size}")

    @classmethod
    def reset(cls) -> None:
        """Drop the loaded model (tests, model switches)."""
        with cls._lock:
            cls._instance = None

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def embedding_size(self) -> int:
        return self._embedding_size

    def __call__(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts.

        Vectors are L2-normalized so that dot product equals cosine
        similarity downstream.
        """
        if not texts:
            return []

        embeddings = self._model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [emb.tolist() for emb in embeddings]

    def embed_single(self, text: str) -> list[float]:
        return self([text])[0]
