"""Anthropic model provider with rate limiting and error handling."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import tiktoken
from anthropic import APIError, AsyncAnthropic
from anthropic.types import Message as AnthropicMessage
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from turnwise.errors import MessageConversionError
from turnwise.models.llm import ModelResult, ModelUsage, ToolSpec
from turnwise.models.messages import (
    BaseMessage,
    MediaResource,
    RoleMessage,
    SystemMessage,
    ToolCall,
    ToolCallMessage,
    ToolResponseMessage,
)
from turnwise.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


@dataclass
class AnthropicConfig:
    """Configuration for the Anthropic model provider."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    temperature: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for validation and truncation
    max_message_tokens: int = 2000
    max_conversation_tokens: int = 200000
    token_headroom: int = 2000

    requests_per_minute: int = 50
    tokens_per_minute: int = 40_000

    @classmethod
    def from_env(cls) -> "AnthropicConfig":
        """Build a config from ``ANTHROPIC_*`` environment variables."""
        return cls(
            model=os.getenv("ANTHROPIC_MODEL", cls.model),
            max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", cls.max_tokens)),
            temperature=float(os.getenv("ANTHROPIC_TEMPERATURE", cls.temperature)),
        )


class AnthropicRateLimiter:
    """Request and token rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        cost = max(1, min(estimated_tokens, self.token_limit.amount))
        if not self.limiter.hit(self.token_limit, token_identifier, cost=cost):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicModelProvider:
    """Model provider backed by the Anthropic Messages API.

    Converts the conversation's message variants to Anthropic request blocks
    and the responses back into messages. System messages become the system
    prompt; tool calls become ``tool_use`` blocks on the assistant side and
    tool responses become ``tool_result`` blocks on the user side.
    """

    tokenizer: tiktoken.Encoding | None = None

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        client: AsyncAnthropic | None = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Provider configuration
            client: Preconfigured SDK client
        """
        self.config = config or AnthropicConfig()
        if client is None:
            anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY environment variable is required")
            client = AsyncAnthropic(api_key=anthropic_api_key)
        self.client = client
        self.rate_limiter = AnthropicRateLimiter(self.config.requests_per_minute, self.config.tokens_per_minute)

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def invoke(
        self, messages: list[BaseMessage], tools: list[ToolSpec], options: dict[str, Any]
    ) -> ModelResult:
        """Send the history to the model and convert its reply."""
        request_params = await self._prepare_request(messages, tools, options)

        logger.debug(f"Making Anthropic API call with model: {request_params['model']}")
        response: AnthropicMessage = await self._request_with_retries(
            lambda: self.client.messages.create(**request_params)
        )
        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}"
        )

        return ModelResult(
            message=self.from_anthropic_content(response.content),
            usage=self._convert_usage(response.usage),
            stop_reason=response.stop_reason,
            model=response.model,
        )

    async def stream(
        self, messages: list[BaseMessage], tools: list[ToolSpec], options: dict[str, Any]
    ) -> AsyncIterator[BaseMessage]:
        """Stream the reply as message deltas.

        Text arrives as assistant ``RoleMessage`` deltas, tool calls as
        ``ToolCallMessage`` deltas whose argument fragments share the call id.
        """
        request_params = await self._prepare_request(messages, tools, options)
        current_call: ToolCall | None = None

        async with self.client.messages.stream(**request_params) as stream:
            async for event in stream:
                match event.type:
                    case "content_block_start" if event.content_block.type == "tool_use":
                        current_call = ToolCall(id=event.content_block.id, name=event.content_block.name, arguments="")
                        yield ToolCallMessage(tool_calls=[current_call])
                    case "content_block_delta" if event.delta.type == "text_delta":
                        yield RoleMessage.assistant(event.delta.text)
                    case "content_block_delta" if event.delta.type == "input_json_delta" and current_call:
                        yield ToolCallMessage(
                            tool_calls=[current_call.model_copy(update={"arguments": event.delta.partial_json})]
                        )
                    case "content_block_stop":
                        current_call = None

    async def _prepare_request(
        self, messages: list[BaseMessage], tools: list[ToolSpec], options: dict[str, Any]
    ) -> dict[str, Any]:
        system_prompt, anthropic_messages = self.to_anthropic_messages(messages)
        if options.get("system"):
            system_prompt = "\n\n".join(filter(None, [options["system"], system_prompt]))
        tool_dicts = [tool.model_dump() for tool in tools]

        truncated = self.truncate_conversation(anthropic_messages, system_prompt, tool_dicts)
        estimated_tokens = self._estimate_tokens(truncated, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        logger.debug(f"Creating message with {len(truncated)} messages, {len(tool_dicts)} tools")
        request_params: dict[str, Any] = {
            "model": options.get("model", self.config.model),
            "max_tokens": options.get("max_tokens", self.config.max_tokens),
            "temperature": options.get("temperature", self.config.temperature),
            "messages": truncated,
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if tool_dicts:
            request_params["tools"] = tool_dicts
        return request_params

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute an Anthropic API request with retry logic."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code == 429:
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None:
                        retry_after = int(response.headers.get("retry-after", 60))

                    if retry_after < 120 and attempt < self.config.max_retries - 1:
                        logger.warning(f"Anthropic rate limited, retrying in {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                elif status_code is not None and status_code >= 500 and attempt < self.config.max_retries - 1:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise

        raise RuntimeError(f"Failed to complete request after {self.config.max_retries} attempts")

    @staticmethod
    def to_anthropic_messages(messages: list[BaseMessage]) -> tuple[str, list[dict[str, Any]]]:
        """Convert messages to a system prompt and Anthropic message dicts.

        Consecutive messages for the same Anthropic role are merged, since the
        API expects the roles to alternate.

        Raises:
            MessageConversionError: For unsupported variants, roles or media
        """
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []

        for message in messages:
            match message:
                case SystemMessage():
                    system_parts.append(message.content)
                    continue
                case ToolCallMessage():
                    role = "assistant"
                    blocks = _text_blocks(message) + [
                        {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments_dict()}
                        for call in message.tool_calls
                    ]
                case ToolResponseMessage():
                    role = "user"
                    error_ids = set(message.metadata.get("error_ids", []))
                    blocks = [
                        {
                            "type": "tool_result",
                            "tool_use_id": response.id,
                            "content": response.response_data,
                            "is_error": response.id in error_ids,
                        }
                        for response in message.tool_responses
                    ]
                case RoleMessage(role="user" | "assistant"):
                    role = message.role
                    blocks = _text_blocks(message) + [_media_block(resource) for resource in message.media]
                case _:
                    raise MessageConversionError(
                        f"Unsupported message {type(message).__name__} with role {message.role}"
                    )

            if not blocks:
                continue
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})

        return "\n\n".join(part for part in system_parts if part), converted

    @staticmethod
    def from_anthropic_content(content: list[Any]) -> BaseMessage:
        """Convert response content blocks to a message.

        Responses containing ``tool_use`` blocks become a ``ToolCallMessage``;
        anything else becomes an assistant ``RoleMessage``.
        """
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in content:
            match block.type:
                case "text":
                    text_parts.append(block.text)
                case "tool_use":
                    tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input)))
                case _:
                    logger.warning(f"Unknown content block type: {block.type}")

        text = "".join(text_parts)
        if tool_calls:
            return ToolCallMessage(content=text, tool_calls=tool_calls)
        return RoleMessage.assistant(text)

    @staticmethod
    def _convert_usage(usage: Any) -> ModelUsage:
        if not usage:
            return ModelUsage()
        return ModelUsage(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
            cache_creation_input_tokens=usage.cache_creation_input_tokens or 0,
            cache_read_input_tokens=usage.cache_read_input_tokens or 0,
        )

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a piece of text."""
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed the per-message token limit.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def _estimate_tokens(self, messages: list[dict[str, Any]], system_prompt: str) -> int:
        text_content = system_prompt + "".join(_message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    def truncate_conversation(
        self, messages: list[dict[str, Any]], system_prompt: str, tools: list[dict[str, Any]] | None = None
    ) -> list[dict[str, Any]]:
        """Truncate the conversation from the oldest message to fit within token limits.

        The kept history always starts with a plain user message so no
        ``tool_result`` is sent without its ``tool_use``.
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom
        system_tokens = self.estimate_message_tokens(system_prompt)
        tool_tokens = 0
        if tools:
            tool_tokens = self.estimate_message_tokens(
                "".join(tool["name"] + tool["description"] + str(tool["input_schema"]) for tool in tools)
            )
        available_tokens -= system_tokens + tool_tokens

        truncated: list[dict[str, Any]] = []
        current_tokens = 0
        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(_message_text(message))
            if current_tokens + message_tokens > available_tokens:
                break
            truncated.insert(0, message)
            current_tokens += message_tokens

        while truncated and (truncated[0]["role"] != "user" or _has_tool_results(truncated[0])):
            truncated.pop(0)

        if len(truncated) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated)} messages "
                f"to fit within {available_tokens} token limit"
            )
        return truncated


def _text_blocks(message: BaseMessage) -> list[dict[str, Any]]:
    return [{"type": "text", "text": message.content}] if message.content else []


def _media_block(resource: MediaResource) -> dict[str, Any]:
    if resource.mime_type not in IMAGE_MIME_TYPES:
        raise MessageConversionError(f"Unsupported media type {resource.mime_type}")
    if resource.data:
        source = {"type": "base64", "media_type": resource.mime_type, "data": resource.data}
    elif resource.uri:
        source = {"type": "url", "url": resource.uri}
    else:
        raise MessageConversionError("Media resource has neither data nor uri")
    return {"type": "image", "source": source}


def _message_text(message: dict[str, Any]) -> str:
    parts: list[str] = []
    for block in message["content"]:
        match block["type"]:
            case "text":
                parts.append(block["text"])
            case "tool_use":
                parts.append(block["name"] + json.dumps(block["input"]))
            case "tool_result":
                parts.append(block["content"])
    return "".join(parts)


def _has_tool_results(message: dict[str, Any]) -> bool:
    return any(block["type"] == "tool_result" for block in message["content"])
