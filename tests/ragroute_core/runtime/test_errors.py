"""Unit tests for the ServiceError hierarchy."""

import pytest

from ragroute_core.runtime.errors import (
    CacheFailure,
    CapabilityTimeout,
    EmbeddingFailure,
    ErrorCode,
    EvaluationFailure,
    GenerationFailure,
    PlanNotFound,
    RetrievalFailure,
    RetryableError,
    RouteNotFound,
    ServiceError,
    StorageError,
    TerminalError,
    ValidationError,
)


class TestServiceError:
    """Tests for ServiceError base class."""

    def test_create_with_required_fields(self):
        """Should default code, retryability and debug id."""
        error = ServiceError("Something went wrong")

        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.message_safe == "Something went wrong"
        assert error.message_debug is None
        assert error.retryable is False
        assert error.cause is None
        assert error.debug_id is not None

    def test_create_with_all_fields(self):
        """Should keep every explicit field."""
        cause = ValueError("underlying error")
        error = ServiceError(
            "Safe message",
            code="FULL_ERROR",
            message_debug="Detailed debug info",
            retryable=True,
            cause=cause,
            debug_id="custom-id",
        )

        assert error.code == "FULL_ERROR"
        assert error.message_debug == "Detailed debug info"
        assert error.retryable is True
        assert error.cause is cause
        assert error.debug_id == "custom-id"

    def test_str_representation(self):
        """Should format as [CODE] message."""
        error = ServiceError("My message", code="MY_CODE")

        assert str(error) == "[MY_CODE] My message"

    def test_to_dict_excludes_debug_details(self):
        """Serialized form should never carry message_debug."""
        error = ServiceError("Safe", message_debug="secret", debug_id="abc")

        assert error.to_dict() == {"code": ErrorCode.INTERNAL_ERROR, "message": "Safe", "debug_id": "abc"}


class TestStageErrors:
    """Tests for the stage-specific subclasses."""

    @pytest.mark.parametrize(
        "error_cls, code",
        [
            (EmbeddingFailure, ErrorCode.EMBEDDING_FAILED),
            (RetrievalFailure, ErrorCode.RETRIEVAL_FAILED),
            (GenerationFailure, ErrorCode.GENERATION_FAILED),
            (EvaluationFailure, ErrorCode.EVALUATION_FAILED),
            (StorageError, ErrorCode.STORAGE_WRITE_ERROR),
            (CapabilityTimeout, ErrorCode.TIMEOUT),
        ],
    )
    def test_retryable_stage_errors(self, error_cls, code):
        """Stage failures should be retryable with their own code."""
        error = error_cls("boom")

        assert isinstance(error, RetryableError)
        assert error.retryable is True
        assert error.code == code

    @pytest.mark.parametrize(
        "error_cls, code",
        [
            (ValidationError, ErrorCode.INVALID_INPUT),
            (PlanNotFound, ErrorCode.PLAN_NOT_FOUND),
            (RouteNotFound, ErrorCode.ROUTE_NOT_FOUND),
        ],
    )
    def test_terminal_errors(self, error_cls, code):
        """Configuration and input errors should never be retried."""
        error = error_cls("nope")

        assert isinstance(error, TerminalError)
        assert error.retryable is False
        assert error.code == code

    def test_cache_failure_is_neither_retryable_nor_terminal(self):
        """Cache problems are best-effort and stand apart."""
        error = CacheFailure("bad vector")

        assert not isinstance(error, (RetryableError, TerminalError))
        assert error.code == ErrorCode.CACHE_ERROR

    def test_explicit_code_overrides_default(self):
        """A timeout reported as a stage failure keeps the TIMEOUT code."""
        error = GenerationFailure("generate timed out", code=ErrorCode.TIMEOUT)

        assert error.code == ErrorCode.TIMEOUT
