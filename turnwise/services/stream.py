"""Folding of streamed message deltas into complete messages."""

from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any

from turnwise.errors import MessageConversionError
from turnwise.models.messages import (
    BaseMessage,
    RoleMessage,
    SystemMessage,
    ToolCall,
    ToolCallMessage,
    ToolResponseMessage,
    message_variant,
)


class StreamMessageAggregator:
    """Collapses runs of same-speaker deltas into discrete messages.

    Consecutive deltas belong to one group when they are the same message
    variant with the same role. Within a group content and media are
    concatenated in arrival order and metadata is merged, later keys winning.
    The aggregated message keeps the id and timestamp of the group's first
    delta.

    Aggregation is lazy: a message is produced as soon as the next delta
    starts a new group, so unbounded streams are fine. The aggregator holds no
    state between calls.
    """

    def aggregate(self, deltas: Iterable[BaseMessage]) -> Iterator[BaseMessage]:
        group: list[BaseMessage] = []
        for delta in deltas:
            if group and not self.same_group(group[-1], delta):
                yield self.merge(group)
                group = []
            group.append(delta)
        if group:
            yield self.merge(group)

    async def aggregate_async(self, deltas: AsyncIterable[BaseMessage]) -> AsyncIterator[BaseMessage]:
        group: list[BaseMessage] = []
        async for delta in deltas:
            if group and not self.same_group(group[-1], delta):
                yield self.merge(group)
                group = []
            group.append(delta)
        if group:
            yield self.merge(group)

    @staticmethod
    def same_group(previous: BaseMessage, current: BaseMessage) -> bool:
        return message_variant(previous) == message_variant(current) and previous.role == current.role

    def merge(self, group: list[BaseMessage]) -> BaseMessage:
        first = group[0]
        if len(group) == 1:
            return first

        metadata: dict[str, Any] = {}
        for delta in group:
            metadata.update(delta.metadata)
        update: dict[str, Any] = {
            "content": "".join(delta.content for delta in group),
            "media": [resource for delta in group for resource in delta.media],
            "metadata": metadata,
        }

        match first:
            case ToolCallMessage():
                update["tool_calls"] = _merge_tool_calls(group)
            case ToolResponseMessage():
                update["tool_responses"] = [response for delta in group for response in delta.tool_responses]
            case RoleMessage() | SystemMessage():
                pass
            case _:
                raise MessageConversionError(f"Cannot aggregate message variant {type(first).__name__}")

        return first.model_copy(update=update)


def _merge_tool_calls(group: list[BaseMessage]) -> list[ToolCall]:
    """Concatenate tool calls; fragments sharing an id are joined into one call."""
    merged: dict[str, ToolCall] = {}
    for delta in group:
        for call in delta.tool_calls:
            existing = merged.get(call.id)
            if existing is None:
                merged[call.id] = call
            else:
                merged[call.id] = existing.model_copy(
                    update={"name": existing.name or call.name, "arguments": existing.arguments + call.arguments}
                )
    return list(merged.values())
