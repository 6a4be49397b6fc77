"""
OpenAI client singleton.

One client instance is shared by the generator, judge, classifier, planner
and rewriter so HTTP connections are pooled across the pipeline.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from loguru import logger

from ragroute_core.config import settings

if TYPE_CHECKING:
    from openai import OpenAI


class OpenAIClientSingleton:
    """
    Lazily created, process-wide OpenAI client.

    Usage:
        client = OpenAIClientSingleton.get_instance()
        response = client.chat.completions.create(...)
    """

    _instance: "OpenAI | None" = None

    @classmethod
    def get_instance(cls) -> "OpenAI":
        """
        Get or create the OpenAI client.

        Raises:
            ValueError: If OPENAI_API_KEY is not configured.
        """
        if cls._instance is None:
            from openai import OpenAI

            api_key = settings.OPENAI_API_KEY
            if not api_key:
                raise ValueError(
                    "OPENAI_API_KEY not configured. "
                    "Set it in .env or environment variables."
                )

            cls._instance = OpenAI(api_key=api_key)
            logger.info("OpenAI client initialized (singleton)")

        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def get_openai_client() -> "OpenAI":
    """Convenience accessor for the shared client."""
    return OpenAIClientSingleton.get_instance()


def chat_completion(
    client: "OpenAI",
    *,
    model: str,
    system_prompt: str,
    user_message: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    json_mode: bool = False,
) -> str:
    """
    Run a single system+user chat completion and return the message text.

    Args:
        client: OpenAI client.
        model: Model identifier.
        system_prompt: System message.
        user_message: User message.
        temperature: Sampling temperature (omitted when None).
        max_tokens: Completion token limit (omitted when None).
        json_mode: Request a JSON object response.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
    }
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""


def parse_json_object(content: str) -> dict[str, Any]:
    """
    Parse a model reply that should be a JSON object.

    Tolerates Markdown code fences around the payload.

    Raises:
        ValueError: If the reply is not a JSON object.
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
