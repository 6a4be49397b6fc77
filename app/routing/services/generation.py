"""
OpenAIGenerator: grounded answer generation.

Answers strictly from the retrieved evidence; when the evidence does not
cover the question the model is told to say so.
"""

from __future__ import annotations

from loguru import logger

from app.routing.domain import GenerateParams
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import chat_completion, get_openai_client
from ragroute_core.runtime import GenerationFailure

GENERAL_SYSTEM_PROMPT = """You are a helpful assistant that answers questions based on the provided context.
Answer the question using ONLY the information from the context below.
If the context doesn't contain the answer, say "I don't have enough information to answer that question."
Be concise and precise in your answers."""


def build_user_prompt(query: str, contexts: list[str]) -> str:
    if not contexts:
        return f"""Question: {query}

Note: No context was provided. Indicate that specific information is not available.

Answer:"""

    blocks = "\n\n".join(f"[{i}] {text}" for i, text in enumerate(contexts, 1))
    return f"""Context:
{blocks}

Question: {query}

Answer:"""


class OpenAIGenerator:
    """
    Generator backed by OpenAI chat completions.

    Usage:
        generator = OpenAIGenerator()
        answer = generator.generate("What is the refund window?", contexts, GenerateParams())
    """

    def __init__(self, model: str | None = None, system_prompt: str | None = None, client=None):
        """
        Args:
            model: Model name (defaults to config).
            system_prompt: Default system prompt; GenerateParams.system_prompt overrides it.
            client: OpenAI client (defaults to the shared singleton).
        """
        self.model = model or settings.OPENAI_MODEL_ID
        self.system_prompt = system_prompt or GENERAL_SYSTEM_PROMPT
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def generate(self, query: str, contexts: list[str], params: GenerateParams) -> str:
        logger.info(f"Generating answer (OpenAI) for: '{query[:50]}...' with {len(contexts)} contexts")
        try:
            answer = chat_completion(
                self._get_client(),
                model=self.model,
                system_prompt=params.system_prompt or self.system_prompt,
                user_message=build_user_prompt(query, contexts),
                temperature=params.temperature,
                max_tokens=params.max_tokens,
            )
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise GenerationFailure(f"Answer generation failed: {e}", cause=e) from e

        if not answer.strip():
            raise GenerationFailure("Answer generation returned an empty completion")
        return answer.strip()
