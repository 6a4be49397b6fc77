"""
Unified configuration for ragroute services.

This module provides a single Settings class that holds every tunable used
by the routing pipeline: infrastructure endpoints, model identifiers,
cascade and cache limits, retrieval defaults and worker pool timeouts.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the ragroute pipeline.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "ragroute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_SERIALIZE: bool = False

    # Telemetry
    ENABLE_TELEMETRY: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""

    # PostgreSQL (query/response records, intent rules)
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"

    # Qdrant Configuration
    USE_QDRANT_CLOUD: bool = False
    QDRANT_DATABASE_HOST: str = "localhost"
    QDRANT_DATABASE_PORT: int = 6333
    QDRANT_CLOUD_URL: str = ""
    QDRANT_APIKEY: str | None = None

    # Embedding model
    TEXT_EMBEDDING_MODEL_ID: str = "intfloat/e5-large-unsupervised"
    RAG_MODEL_DEVICE: str = "cpu"
    EMBEDDING_CACHE_SIZE: int = 2048

    # OpenAI
    OPENAI_MODEL_ID: str = "gpt-5-nano"
    OPENAI_API_KEY: str = ""

    # Worker pool and per-capability timeouts (seconds)
    WORKER_POOL_SIZE: int = 8
    EMBED_TIMEOUT: float = 10.0
    SEARCH_TIMEOUT: float = 10.0
    GENERATE_TIMEOUT: float = 60.0
    EVALUATE_TIMEOUT: float = 30.0
    PLAN_TIMEOUT: float = 30.0
    STORE_TIMEOUT: float = 5.0

    # Intent cascade
    SEMANTIC_DEFAULT_THRESHOLD: float = 0.78
    FALLBACK_CONFIDENCE: float = 0.3
    LONG_QUERY_CHARS: int = 120
    SHORT_QUERY_CHARS: int = 10
    ENABLE_CLARIFICATION: bool = True

    # Task plan cache
    PLAN_CACHE_SIMILARITY_THRESHOLD: float = 0.95
    PLAN_CACHE_BUCKET_SIZE: int = 10
    PLAN_CACHE_MAX_ENTRIES: int = 1000
    PLAN_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    PLAN_CACHE_BUCKET_DIMS: int = 5

    # Retrieval defaults
    RETRIEVAL_TOP_K: int = 5
    RETRIEVAL_MIN_SCORE: float = 0.5
    RETRIEVAL_INDEX_NAME: str = "default"
    RETRIEVAL_CANDIDATE_MULTIPLIER: int = 4
    RETRIEVAL_DOC_AGG: str = "MEAN_TOP2"
    RETRIEVAL_NEIGHBOR_WINDOW: int = 1
    RETRIEVAL_PER_DOC_MAX_CHUNKS: int = 2
    RETRIEVAL_MAX_CONTEXTS: int = 6

    # Generation defaults
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_TOKENS: int = 1024

    # Routing / orchestration
    DEFAULT_PROCESSOR: str = "BASIC"
    ORCHESTRATION_ENABLE_PARALLEL: bool = True
    FALLBACK_MAX_TOOL_RETRIES: int = 2
    FALLBACK_ENABLE_CLARIFICATION: bool = True
    FALLBACK_PREFER_RAG_ON_FAILURE: bool = True

    # Adapter selection
    REPOSITORY_BACKEND: str = "postgres"  # postgres | memory
    EVALUATOR_BACKEND: str = "openai"  # openai | heuristic | none
    QUERY_REWRITE_MOCK: bool = False
    ROUTING_METRICS_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
