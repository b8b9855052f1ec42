"""Model-provider facing data models (provider-agnostic)."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from turnwise.models.messages import BaseMessage, ToolCall, ToolCallMessage


class ToolSpec(BaseModel):
    """Tool catalog entry sent to the model provider."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ModelUsage:
    """Token usage information from the model provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    def accumulate(self, other: "ModelUsage | None") -> None:
        """Add another usage report into this one."""
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens

    @property
    def cache_hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total_input = self.input_tokens + self.cache_read_input_tokens + self.cache_creation_input_tokens
        if total_input == 0:
            return 0.0
        return (self.cache_read_input_tokens / total_input) * 100


@dataclass
class ModelResult:
    """One response from the model provider.

    The result is terminal unless ``message`` is a ``ToolCallMessage`` that
    carries at least one tool call.
    """

    message: BaseMessage
    usage: ModelUsage | None = None
    stop_reason: str | None = None
    model: str | None = None

    @property
    def requested_tool_calls(self) -> list[ToolCall]:
        if isinstance(self.message, ToolCallMessage):
            return list(self.message.tool_calls)
        return []

    @property
    def is_terminal(self) -> bool:
        return not self.requested_tool_calls


@dataclass
class LoopResult:
    """Result from running the tool-call loop to completion."""

    message: BaseMessage
    rounds: int
    usage: ModelUsage
    new_messages: list[BaseMessage] = field(default_factory=list)
