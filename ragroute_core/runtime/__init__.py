"""
Service runtime layer for ragroute.

Shared infrastructure for reliability:
- ServiceError hierarchy: stage failures with retry semantics
- RetryPolicy / with_retry: bounded retries for RetryableError
- CapabilityRunner: bounded worker pool with per-capability timeouts
"""

from .errors import (
    CacheFailure,
    CapabilityTimeout,
    EmbeddingFailure,
    ErrorCode,
    EvaluationFailure,
    GenerationFailure,
    PlanNotFound,
    PlanningFailure,
    RetrievalFailure,
    RetryableError,
    RouteNotFound,
    ServiceError,
    StorageError,
    TerminalError,
    ValidationError,
)
from .executor import Capability, CapabilityRunner
from .retry import RetryPolicy, sync_with_retry, with_retry

__all__ = [
    "CacheFailure",
    "Capability",
    "CapabilityRunner",
    "CapabilityTimeout",
    "EmbeddingFailure",
    "ErrorCode",
    "EvaluationFailure",
    "GenerationFailure",
    "PlanNotFound",
    "PlanningFailure",
    "RetrievalFailure",
    "RetryableError",
    "RetryPolicy",
    "RouteNotFound",
    "ServiceError",
    "StorageError",
    "TerminalError",
    "ValidationError",
    "sync_with_retry",
    "with_retry",
]
