"""
ClarificationService: asks the user to narrow down an unclear query.
"""

from loguru import logger

from app.routing.domain import QueryIntent
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import chat_completion, get_openai_client

CLARIFICATION_SYSTEM = """You are a polite, professional assistant. The user's request is unclear.
Ask one short clarifying question that the user can easily answer or choose from, and that
tells the system what to do next."""

DEFAULT_CLARIFICATION = (
    "To help you better, could you share more details or say more precisely what you need?"
)


class ClarificationService:
    """
    Builds clarifying questions with the chat model.

    Any failure yields DEFAULT_CLARIFICATION.
    """

    def __init__(self, model: str | None = None, client=None):
        self.model = model or settings.OPENAI_MODEL_ID
        self._client = client

    def build_clarification(self, query_text: str, intent: QueryIntent) -> str:
        instructions = (
            f"Original question: {query_text}\n"
            f"What is understood so far: {intent.summary or 'nothing specific'}\n"
            'Reply with a single clarifying question, e.g. "Do you mean ... or ...?" '
            'or "Could you specify ...?"'
        )
        try:
            if self._client is None:
                self._client = get_openai_client()
            question = chat_completion(
                self._client,
                model=self.model,
                system_prompt=CLARIFICATION_SYSTEM,
                user_message=instructions,
                temperature=0.3,
            ).strip()
        except Exception as e:
            logger.warning(f"Clarification generation failed: {e}")
            return DEFAULT_CLARIFICATION
        return question or DEFAULT_CLARIFICATION
