"""Tests for the Anthropic model provider."""

import json
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from anthropic import InternalServerError
from anthropic.types import TextBlock, ToolUseBlock

from turnwise.clients.anthropic import AnthropicConfig, AnthropicModelProvider
from turnwise.errors import MessageConversionError
from turnwise.models.llm import ToolSpec
from turnwise.models.messages import (
    MediaResource,
    RoleMessage,
    SystemMessage,
    ToolCall,
    ToolCallMessage,
    ToolResponse,
    ToolResponseMessage,
)


def make_provider(**config):
    with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        provider = AnthropicModelProvider(config=AnthropicConfig(**config))
    # Mock tokenizer for consistent testing
    provider.tokenizer = Mock()
    provider.tokenizer.encode.side_effect = lambda text: ["token"] * (len(text) // 4)
    return provider


def text_message(role, text):
    return {"role": role, "content": [{"type": "text", "text": text}]}


@pytest.fixture
def provider():
    return make_provider()


class TestProviderSetup:
    """Tests for provider construction."""

    def test_requires_api_key(self):
        """Test that a missing API key is a configuration error."""
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
                AnthropicModelProvider()

    def test_config_from_env(self):
        """Test that the model and limits can come from the environment."""
        env = {"ANTHROPIC_MODEL": "claude-test", "ANTHROPIC_MAX_TOKENS": "256"}
        with patch.dict("os.environ", env):
            config = AnthropicConfig.from_env()

        assert config.model == "claude-test"
        assert config.max_tokens == 256


class TestTokenValidation:
    """Tests for message token validation."""

    def test_validate_message_tokens_within_limit(self):
        """Test that messages within token limit pass validation."""
        provider = make_provider(max_message_tokens=1000)
        provider.tokenizer.encode.side_effect = None
        provider.tokenizer.encode.return_value = ["token"] * 500

        provider.validate_message_tokens("Short message")

    def test_validate_message_tokens_exceeds_limit(self):
        """Test that messages exceeding token limit raise ValueError."""
        provider = make_provider(max_message_tokens=1000)
        provider.tokenizer.encode.side_effect = None
        provider.tokenizer.encode.return_value = ["token"] * 1500

        with pytest.raises(ValueError, match="Message exceeds token limit"):
            provider.validate_message_tokens("Very long message")

    def test_fallback_without_tokenizer(self):
        """Test token estimation fallback when tokenizer is unavailable."""
        provider = make_provider(max_message_tokens=1000)
        provider.tokenizer = None

        provider.validate_message_tokens("a" * 3000)
        with pytest.raises(ValueError, match="Message exceeds token limit"):
            provider.validate_message_tokens("a" * 5000)


class TestConversationTruncation:
    """Tests for conversation truncation."""

    def test_within_limit_is_unchanged(self, provider):
        """Test that conversations within limits are not truncated."""
        messages = [text_message("user", "Message 1"), text_message("assistant", "Response 1")]

        assert provider.truncate_conversation(messages, "System prompt") == messages

    def test_exceeding_limit_keeps_recent(self):
        """Test that conversations are truncated from the oldest message."""
        provider = make_provider(max_conversation_tokens=1000, token_headroom=100)
        messages = [
            text_message("user", "a" * 1600),
            text_message("assistant", "b" * 1600),
            text_message("user", "c" * 1600),
        ]

        result = provider.truncate_conversation(messages, "System prompt")

        assert len(result) == 1
        assert result[-1]["content"][0]["text"].startswith("c")

    def test_orphaned_tool_result_dropped(self):
        """Test that the kept history never starts with a tool result."""
        provider = make_provider(max_conversation_tokens=1000, token_headroom=100)
        messages = [
            text_message("user", "a" * 2000),
            {"role": "assistant", "content": [{"type": "tool_use", "id": "t1", "name": "x" * 1600, "input": {}}]},
            {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]},
            text_message("assistant", "done"),
            text_message("user", "thanks"),
        ]

        result = provider.truncate_conversation(messages, "")

        assert result == [text_message("user", "thanks")]

    def test_empty_messages(self, provider):
        """Test truncation with empty message list."""
        assert provider.truncate_conversation([], "System prompt") == []


class TestMessageConversion:
    """Tests for converting messages to request blocks."""

    def test_system_messages_become_system_prompt(self, provider):
        """Test that system messages are lifted out of the message list."""
        system, messages = provider.to_anthropic_messages(
            [SystemMessage(content="be brief"), RoleMessage.user("hi"), SystemMessage(content="be kind")]
        )

        assert system == "be brief\n\nbe kind"
        assert messages == [text_message("user", "hi")]

    def test_tool_round(self, provider):
        """Test that tool calls and responses map to tool_use and tool_result blocks."""
        call = ToolCall(id="toolu_1", name="current_time", arguments='{"timezone": "UTC"}')
        _, messages = provider.to_anthropic_messages(
            [
                RoleMessage.user("time?"),
                ToolCallMessage(content="Checking.", tool_calls=[call]),
                ToolResponseMessage(
                    tool_responses=[ToolResponse(id="toolu_1", name="current_time", response_data='"noon"')],
                    metadata={"error_ids": ["toolu_1"]},
                ),
            ]
        )

        assert [message["role"] for message in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"] == [
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "toolu_1", "name": "current_time", "input": {"timezone": "UTC"}},
        ]
        assert messages[2]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": '"noon"',
            "is_error": True,
        }

    def test_same_role_messages_merge(self, provider):
        """Test that consecutive messages for one role are merged."""
        _, messages = provider.to_anthropic_messages(
            [
                RoleMessage.assistant("Let me check."),
                ToolCallMessage(tool_calls=[ToolCall(id="toolu_1", name="current_time")]),
            ]
        )

        assert len(messages) == 1
        assert [block["type"] for block in messages[0]["content"]] == ["text", "tool_use"]

    def test_image_media(self, provider):
        """Test that image attachments become image blocks."""
        image = MediaResource.from_bytes("image/png", b"\x89PNG")

        _, messages = provider.to_anthropic_messages([RoleMessage.user("look", media=[image])])

        block = messages[0]["content"][1]
        assert block["type"] == "image"
        assert block["source"] == {"type": "base64", "media_type": "image/png", "data": image.data}

    def test_unsupported_media(self, provider):
        """Test that non-image attachments are rejected."""
        document = MediaResource(mime_type="application/zip", uri="https://example.com/a.zip")

        with pytest.raises(MessageConversionError):
            provider.to_anthropic_messages([RoleMessage.user("look", media=[document])])

    def test_unsupported_role(self, provider):
        """Test that role messages outside user and assistant are rejected."""
        with pytest.raises(MessageConversionError):
            provider.to_anthropic_messages([RoleMessage(role="narrator", content="meanwhile")])


class TestResponseConversion:
    """Tests for converting responses back to messages."""

    def test_text_response(self, provider):
        """Test that text-only content becomes an assistant message."""
        message = provider.from_anthropic_content([TextBlock(type="text", text="Hello")])

        assert isinstance(message, RoleMessage)
        assert message.role == "assistant"
        assert message.content == "Hello"

    def test_tool_use_response(self, provider):
        """Test that tool_use content becomes a tool call message."""
        message = provider.from_anthropic_content(
            [
                TextBlock(type="text", text="Checking."),
                ToolUseBlock(type="tool_use", id="toolu_1", name="current_time", input={"timezone": "UTC"}),
            ]
        )

        assert isinstance(message, ToolCallMessage)
        assert message.content == "Checking."
        assert message.tool_calls[0].id == "toolu_1"
        assert json.loads(message.tool_calls[0].arguments) == {"timezone": "UTC"}


class TestInvoke:
    """Tests for calling the API."""

    @pytest.fixture
    def api_response(self):
        response = Mock()
        response.content = [TextBlock(type="text", text="Hello")]
        response.stop_reason = "end_turn"
        response.model = "claude-test"
        response.usage = Mock(
            input_tokens=12, output_tokens=3, cache_creation_input_tokens=None, cache_read_input_tokens=4
        )
        return response

    @pytest.mark.asyncio
    async def test_invoke_builds_request(self, provider, api_response):
        """Test that the request carries system prompt, messages and tools."""
        provider.client = Mock()
        provider.client.messages.create = AsyncMock(return_value=api_response)
        tool = ToolSpec(name="current_time", description="time", input_schema={"type": "object"})

        result = await provider.invoke(
            [SystemMessage(content="be brief"), RoleMessage.user("hi")], [tool], {"max_tokens": 50}
        )

        params = provider.client.messages.create.call_args.kwargs
        assert params["system"] == "be brief"
        assert params["max_tokens"] == 50
        assert params["messages"] == [text_message("user", "hi")]
        assert params["tools"][0]["name"] == "current_time"
        assert result.message.content == "Hello"
        assert result.usage.total_tokens == 15
        assert result.usage.cache_read_input_tokens == 4
        assert result.is_terminal

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, provider, api_response):
        """Test that a 5xx response is retried with backoff."""
        server_error = InternalServerError(
            "overloaded",
            response=httpx.Response(500, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")),
            body=None,
        )
        provider.client = Mock()
        provider.client.messages.create = AsyncMock(side_effect=[server_error, api_response])

        with patch("turnwise.clients.anthropic.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await provider.invoke([RoleMessage.user("hi")], [], {})

        assert result.message.content == "Hello"
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, api_response):
        """Test that the last failure is raised once retries run out."""
        provider = make_provider(max_retries=2)
        server_error = InternalServerError(
            "overloaded",
            response=httpx.Response(500, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")),
            body=None,
        )
        provider.client = Mock()
        provider.client.messages.create = AsyncMock(side_effect=[server_error, server_error])

        with patch("turnwise.clients.anthropic.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(InternalServerError):
                await provider.invoke([RoleMessage.user("hi")], [], {})


if __name__ == "__main__":
    pytest.main([__file__])
