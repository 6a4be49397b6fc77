"""
Query lifecycle models: requests, retrieval parameters, evidence and responses.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.routing.domain.intent import QueryType
from ragroute_core.config import settings
from ragroute_core.runtime.errors import ValidationError


def now_ms() -> int:
    return int(time.time() * 1000)


class QueryStatus(str, Enum):
    CREATED = "CREATED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CLARIFY = "CLARIFY"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.COMPLETED, QueryStatus.FAILED, QueryStatus.CLARIFY)


class DocAggregation(str, Enum):
    MEAN_TOP2 = "MEAN_TOP2"
    MAX = "MAX"


class RetrievalParams(BaseModel):
    """Knobs for the retrieval aggregator. Defaults come from settings."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default_factory=lambda: settings.RETRIEVAL_TOP_K, ge=1)
    min_score: float = Field(default_factory=lambda: settings.RETRIEVAL_MIN_SCORE, ge=-1.0, le=1.0)
    index_name: Optional[str] = Field(default_factory=lambda: settings.RETRIEVAL_INDEX_NAME)
    candidate_multiplier: int = Field(
        default_factory=lambda: settings.RETRIEVAL_CANDIDATE_MULTIPLIER, ge=1
    )
    doc_agg: DocAggregation = Field(
        default_factory=lambda: DocAggregation(settings.RETRIEVAL_DOC_AGG)
    )
    neighbor_window: int = Field(default_factory=lambda: settings.RETRIEVAL_NEIGHBOR_WINDOW, ge=0)
    per_doc_max_chunks: int = Field(
        default_factory=lambda: settings.RETRIEVAL_PER_DOC_MAX_CHUNKS, ge=1
    )
    max_contexts: int = Field(default_factory=lambda: settings.RETRIEVAL_MAX_CONTEXTS, ge=1)
    relax_on_empty: bool = False

    @property
    def candidate_limit(self) -> int:
        return self.top_k * self.candidate_multiplier

    @classmethod
    def build(cls, overrides: dict[str, Any] | None = None) -> "RetrievalParams":
        """
        Build params from request overrides over configured defaults.

        None-valued overrides are ignored.

        Raises:
            ValidationError: If an override is out of range or malformed.
        """
        values = {k: v for k, v in (overrides or {}).items() if v is not None}
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid retrieval parameters: {e.errors()[0].get('msg', 'invalid value')}",
                message_debug=str(e),
                cause=e,
            ) from e


class GenerateParams(BaseModel):
    """Sampling parameters handed to the generation capability."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default_factory=lambda: settings.GENERATION_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default_factory=lambda: settings.GENERATION_MAX_TOKENS, ge=1)
    system_prompt: Optional[str] = None


class QueryParams(BaseModel):
    """Optional per-request overrides accepted by process_query."""

    model_config = ConfigDict(extra="ignore")

    retrieval: dict[str, Any] = Field(default_factory=dict)
    query_type: Optional[str] = None
    force_type: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    multi_query_enabled: bool = False
    hyde_enabled: bool = False
    step_back_enabled: bool = False
    self_rag_enabled: bool = False
    evaluation_enabled: bool = True

    @property
    def explicit_type(self) -> Optional[QueryType]:
        """Processor requested by the caller, `query_type` before `force_type`."""
        return QueryType.parse(self.query_type) or QueryType.parse(self.force_type)

    @classmethod
    def coerce(cls, params: "QueryParams | dict[str, Any] | None") -> "QueryParams":
        """
        Accept a QueryParams, a plain dict or None.

        Raises:
            ValidationError: If the dict does not validate, a retrieval
                override is out of range or a processor type is unknown.
        """
        if params is None:
            return cls()
        if not isinstance(params, cls):
            try:
                params = cls.model_validate(params)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid query parameters: {e.errors()[0].get('msg', 'invalid value')}",
                    message_debug=str(e),
                    cause=e,
                ) from e
        params.check_overrides()
        return params

    def check_overrides(self) -> None:
        """Reject retrieval overrides and processor selectors the pipeline cannot honor."""
        RetrievalParams.build(self.retrieval)
        for name in ("query_type", "force_type"):
            value = getattr(self, name)
            if value is not None and value.strip() and QueryType.parse(value) is None:
                raise ValidationError(f"Unknown processor type for {name}: {value!r}")


class ChunkHit(BaseModel):
    """A chunk row returned by the vector store."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int
    content: str = ""
    title: Optional[str] = None
    source: Optional[str] = None
    start_position: Optional[int] = None
    end_position: Optional[int] = None
    score: float = 0.0


class RetrievedContext(BaseModel):
    """A chunk selected by the aggregator, with its ordering metadata."""

    model_config = ConfigDict(frozen=True)

    chunk: ChunkHit
    score: float
    document_score: float
    rank: int = Field(..., description="Rank of the originating kept chunk within its document")
    expanded: bool = False

    @property
    def key(self) -> tuple[str, int]:
        return (self.chunk.document_id, self.chunk.chunk_index)


class SourceRef(BaseModel):
    """Evidence projected onto a response."""

    document_id: str
    chunk_index: int
    title: Optional[str] = None
    snippet: str = ""
    source: Optional[str] = None
    score: float = 0.0
    start_position: Optional[int] = None
    end_position: Optional[int] = None

    @classmethod
    def from_context(cls, context: RetrievedContext, snippet_chars: int = 300) -> "SourceRef":
        chunk = context.chunk
        return cls(
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            title=chunk.title,
            snippet=chunk.content[:snippet_chars],
            source=chunk.source,
            score=context.score,
            start_position=chunk.start_position,
            end_position=chunk.end_position,
        )


NEUTRAL_SCORE = 5


class EvaluationScores(BaseModel):
    """Judge scores on a 1-10 scale."""

    faithfulness: float = NEUTRAL_SCORE
    relevance: float = NEUTRAL_SCORE
    context_relevance: float = NEUTRAL_SCORE
    factual_consistency: float = NEUTRAL_SCORE
    completeness: float = NEUTRAL_SCORE
    conciseness: float = NEUTRAL_SCORE
    total_score: float = NEUTRAL_SCORE
    reasoning: str = ""
    error: Optional[str] = None

    @classmethod
    def neutral(cls, error: Exception | str) -> "EvaluationScores":
        message = str(error)
        return cls(reasoning=f"evaluation error: {message}", error=message)


class Query(BaseModel):
    """A user query and its processing state."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    original_text: str
    processed_text: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    status: QueryStatus = QueryStatus.CREATED
    query_type: Optional[QueryType] = None
    vector: Optional[list[float]] = None
    variants: list[str] = Field(default_factory=list)
    hypothetical_answer: Optional[str] = None
    step_back_text: Optional[str] = None
    sub_questions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    latency_ms: Optional[int] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text used for retrieval: processed text when set, else the original."""
        return self.processed_text or self.original_text


class Response(BaseModel):
    """Outcome of processing one query attempt."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    query_id: str
    session_id: Optional[str] = None
    answer: str = ""
    sources: list[SourceRef] = Field(default_factory=list)
    retrieved_context: str = ""
    evaluation: Optional[EvaluationScores] = None
    status: QueryStatus = QueryStatus.PROCESSING
    error_message: Optional[str] = None
    timestamp_ms: int = Field(default_factory=now_ms)
    latency_ms: Optional[int] = None
    processing_type: Optional[QueryType] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(
        cls,
        query: Query,
        message: str,
        processing_type: QueryType | None = None,
    ) -> "Response":
        return cls(
            query_id=query.id,
            session_id=query.session_id,
            status=QueryStatus.FAILED,
            error_message=message,
            processing_type=processing_type,
        )
