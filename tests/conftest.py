"""Shared test fixtures."""

from collections.abc import AsyncIterator

import pytest

from turnwise.models.llm import ModelResult, ModelUsage
from turnwise.models.messages import BaseMessage, ToolCallMessage


class ScriptedProvider:
    """Model provider replaying a fixed list of responses.

    Each entry is a message returned by ``invoke`` or, for ``stream``, a list
    of deltas. Every request's messages are recorded in ``prompts``.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts: list[list[BaseMessage]] = []
        self.tool_names: list[list[str]] = []

    async def invoke(self, messages, tools, options) -> ModelResult:
        self.prompts.append(list(messages))
        self.tool_names.append([tool.name for tool in tools])
        message = self.responses.pop(0)
        return ModelResult(
            message=message,
            usage=ModelUsage(input_tokens=10, output_tokens=5, total_tokens=15),
            stop_reason="tool_use" if isinstance(message, ToolCallMessage) else "end_turn",
        )

    async def stream(self, messages, tools, options) -> AsyncIterator[BaseMessage]:
        self.prompts.append(list(messages))
        for delta in self.responses.pop(0):
            yield delta


@pytest.fixture
def scripted_provider():
    """Factory for providers replaying the given responses."""
    return ScriptedProvider
