"""
Error model for the routing pipeline.

Every failure the pipeline can observe is a ServiceError carrying a
machine-readable code, a message safe to surface to callers and a retry
classification. Stage-specific subclasses let the orchestration layer decide
which failures abort a query and which are recovered in place.
"""

from __future__ import annotations

import uuid
from typing import Any


class ErrorCode:
    """Error codes attached to ServiceError instances."""

    # Worker pool
    TIMEOUT = "TIMEOUT"

    # Input
    INVALID_INPUT = "INVALID_INPUT"

    # Pipeline stages
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    RETRIEVAL_FAILED = "RETRIEVAL_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    EVALUATION_FAILED = "EVALUATION_FAILED"
    PLANNING_FAILED = "PLANNING_FAILED"
    CACHE_ERROR = "CACHE_ERROR"

    # Configuration
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"

    # Storage
    STORAGE_WRITE_ERROR = "STORAGE_WRITE_ERROR"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ServiceError(Exception):
    """Base error with retry classification.

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Message safe for logs and for the FAILED response.
        message_debug: Optional detail for debugging (never surfaced).
        retryable: Whether repeating the operation may succeed.
        cause: Underlying exception, if any.
        debug_id: Short identifier for log correlation.
    """

    default_code = ErrorCode.INTERNAL_ERROR
    default_retryable = False

    def __init__(
        self,
        message_safe: str,
        *,
        code: str | None = None,
        message_debug: str | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code or self.default_code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = self.default_retryable if retryable is None else retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize without debug details."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Transient failure: timeouts, rate limits, flaky upstreams."""

    default_retryable = True


class TerminalError(ServiceError):
    """Permanent failure: bad input or missing configuration."""

    default_retryable = False


class ValidationError(TerminalError):
    """Malformed request parameters, rejected before the pipeline starts."""

    default_code = ErrorCode.INVALID_INPUT


class CapabilityTimeout(RetryableError):
    """A blocking capability call exceeded its configured timeout."""

    default_code = ErrorCode.TIMEOUT


class EmbeddingFailure(RetryableError):
    default_code = ErrorCode.EMBEDDING_FAILED


class RetrievalFailure(RetryableError):
    default_code = ErrorCode.RETRIEVAL_FAILED


class GenerationFailure(RetryableError):
    default_code = ErrorCode.GENERATION_FAILED


class EvaluationFailure(RetryableError):
    """Recovered locally by substituting neutral scores."""

    default_code = ErrorCode.EVALUATION_FAILED


class PlanningFailure(RetryableError):
    default_code = ErrorCode.PLANNING_FAILED


class CacheFailure(ServiceError):
    """Best-effort cache problem; callers treat it as a miss."""

    default_code = ErrorCode.CACHE_ERROR


class PlanNotFound(TerminalError):
    default_code = ErrorCode.PLAN_NOT_FOUND


class RouteNotFound(TerminalError):
    default_code = ErrorCode.ROUTE_NOT_FOUND


class StorageError(RetryableError):
    default_code = ErrorCode.STORAGE_WRITE_ERROR
