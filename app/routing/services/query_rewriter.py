"""
QueryRewriteService: pre-retrieval query rewriting.

This service handles:
1. QueryExpansion: alternative phrasings for multi-query retrieval
2. HyDE: a hypothetical answer used as the retrieval text
3. StepBack: a more general question for background evidence
4. Decomposition: independent sub-questions

Every rewrite is optional. A failed rewrite keeps the original text.
"""

import asyncio

from loguru import logger

from app.routing.domain import Query, QueryIntent, QueryStrategy, TaskType
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import chat_completion, get_openai_client
from ragroute_core.runtime import Capability, CapabilityRunner, ServiceError


# --- Prompt Templates ---

FORMAT_SYSTEM = "You are an assistant that follows the requested output format exactly."

QUERY_EXPANSION_SYSTEM = """You are a search query generator.
Given a user question, generate {n} alternative ways to phrase the question
that would help find relevant documents.

Output each alternative on a new line, separated by '#'.
Example:
Alternative 1
#
Alternative 2
#
Alternative 3
"""

HYDE_SYSTEM = """Write the ideal answer to the user's question as if you had the perfect source
material at hand. Plausible inference is fine; do not mention that the answer is hypothetical.
Return only the answer text."""

STEP_BACK_SYSTEM = """Rewrite the user's specific question as one more general, higher-level question
that retrieves the background knowledge needed to answer it.
Return only the question."""

DECOMPOSITION_SYSTEM = """Break the user's question into at most {n} simpler sub-questions that can
each be answered independently.

Output each sub-question on a new line, separated by '#'."""


def normalize_query(text: str) -> str:
    """Collapse runs of whitespace and trim the ends."""
    return " ".join(text.split())


def _split_alternatives(response: str) -> list[str]:
    return [alt.strip() for alt in response.split("#") if alt.strip()]


class QueryRewriteService:
    """
    LLM-backed query rewriting.

    Usage:
        rewriter = QueryRewriteService(runner)
        await rewriter.rewrite(query, intent, strategy)
        # query.variants / hypothetical_answer / step_back_text / sub_questions are filled
    """

    def __init__(
        self,
        runner: CapabilityRunner,
        mock: bool = False,
        model: str | None = None,
        client=None,
        variants: int = 3,
    ):
        """
        Args:
            runner: Worker pool for the blocking LLM calls.
            mock: If True, skip LLM calls and return trivial rewrites.
            model: OpenAI model to use (defaults to config).
            client: OpenAI client (defaults to the shared singleton).
            variants: Number of alternatives/sub-questions to request.
        """
        self._runner = runner
        self._mock = mock
        self._model = model or settings.OPENAI_MODEL_ID
        self._client = client
        self._variants = variants

    def _call_openai(self, system_prompt: str, user_message: str, temperature: float = 0) -> str:
        if self._client is None:
            self._client = get_openai_client()
        return chat_completion(
            self._client,
            model=self._model,
            system_prompt=system_prompt,
            user_message=user_message,
            temperature=temperature,
        ).strip()

    def expand_query(self, query: str, n: int | None = None) -> list[str]:
        """Alternative phrasings of `query`, original excluded."""
        n = n or self._variants
        if self._mock:
            return []
        response = self._call_openai(QUERY_EXPANSION_SYSTEM.format(n=n), query, temperature=0.3)
        return [alt for alt in _split_alternatives(response) if alt != query][:n]

    def hypothetical_answer(self, query: str) -> str:
        if self._mock:
            return query
        return self._call_openai(HYDE_SYSTEM, query, temperature=0.3)

    def step_back(self, query: str) -> str:
        if self._mock:
            return query
        return self._call_openai(STEP_BACK_SYSTEM, query)

    def decompose(self, query: str, n: int | None = None) -> list[str]:
        n = n or self._variants
        if self._mock:
            return []
        return _split_alternatives(self._call_openai(DECOMPOSITION_SYSTEM.format(n=n), query))[:n]

    async def rewrite(self, query: Query, intent: QueryIntent, strategy: QueryStrategy) -> Query:
        """
        Normalize the query text into `processed_text`, then fill the
        rewrite fields the strategy asks for.

        Rewrites run concurrently; each one that fails is logged and
        skipped.
        """
        retrieval = strategy.retrieval
        query.processed_text = normalize_query(query.original_text)
        text = query.text
        jobs: dict[str, object] = {}

        if retrieval.multi_query_enabled:
            jobs["variants"] = self._run(self.expand_query, text)
        if retrieval.hyde_enabled:
            jobs["hypothetical_answer"] = self._run(self.hypothetical_answer, text)
        if retrieval.step_back_enabled or intent.task_type == TaskType.ANALYSIS:
            jobs["step_back_text"] = self._run(self.step_back, text)
        if retrieval.decomposition_enabled:
            jobs["sub_questions"] = self._run(self.decompose, text)

        if not jobs:
            return query

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        for field, result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.warning(f"[{query.id}] Rewrite '{field}' failed, keeping original text: {result}")
                continue
            if result:
                setattr(query, field, result)

        logger.info(f"[{query.id}] Query rewritten: {', '.join(jobs)}")
        return query

    async def _run(self, fn, text: str):
        return await self._runner.run(Capability.REWRITE, fn, text, error_cls=ServiceError)
