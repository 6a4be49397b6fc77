"""Unit tests for the OpenAI client helpers."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from ragroute_core.infrastructure.openai_client import (
    OpenAIClientSingleton,
    chat_completion,
    parse_json_object,
)


class TestChatCompletion:
    """Tests for the single-turn completion helper."""

    def test_builds_system_and_user_messages(self, mock_client):
        """Should send both messages and return the reply text."""
        result = chat_completion(
            mock_client, model="gpt-test", system_prompt="be brief", user_message="hi"
        )

        assert result == "reply"
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ]
        assert "temperature" not in kwargs
        assert "response_format" not in kwargs

    def test_optional_arguments(self, mock_client):
        """Temperature, max_tokens and JSON mode should be forwarded when set."""
        chat_completion(
            mock_client,
            model="gpt-test",
            system_prompt="s",
            user_message="u",
            temperature=0.0,
            max_tokens=50,
            json_mode=True,
        )

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 50
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_none_content_becomes_empty_string(self, mock_client):
        mock_client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))]
        )

        assert chat_completion(mock_client, model="m", system_prompt="s", user_message="u") == ""


class TestParseJsonObject:
    """Tests for tolerant JSON parsing of model replies."""

    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object(self):
        """Markdown fences around the payload should be stripped."""
        assert parse_json_object('```json\n{"task_type": "FAQ"}\n```') == {"task_type": "FAQ"}

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_json_object("[1, 2]")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_json_object("not json at all")


class TestOpenAIClientSingleton:
    """Tests for the shared client."""

    def test_requires_api_key(self):
        OpenAIClientSingleton.reset()
        with patch("ragroute_core.infrastructure.openai_client.settings") as mock_settings:
            mock_settings.OPENAI_API_KEY = ""
            with pytest.raises(ValueError, match="OPENAI_API_KEY"):
                OpenAIClientSingleton.get_instance()

    def test_creates_client_once(self):
        OpenAIClientSingleton.reset()
        with (
            patch("ragroute_core.infrastructure.openai_client.settings") as mock_settings,
            patch("openai.OpenAI") as mock_openai,
        ):
            mock_settings.OPENAI_API_KEY = "sk-test"
            first = OpenAIClientSingleton.get_instance()
            second = OpenAIClientSingleton.get_instance()

        assert first is second
        mock_openai.assert_called_once_with(api_key="sk-test")
        OpenAIClientSingleton.reset()


# --- Fixtures ---


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="reply"))]
    )
    return client
