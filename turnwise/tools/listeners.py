"""Tool execution listeners."""

from collections.abc import Callable
from typing import Any

from turnwise.errors import ToolError
from turnwise.tools.base import ToolContext, ToolDefinition
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


class ToolExecutionListener:
    """Observer of tool executions. Every hook is a no-op by default.

    Hooks fire in this order around one execution: ``on_tool_input_request``,
    ``on_tool_input``, then ``on_tool_output`` followed by
    ``on_tool_response`` on success, or ``on_tool_exception`` on failure.
    """

    def on_tool_input_request(self, tool: ToolDefinition, context: ToolContext, raw_input: str) -> None:
        pass

    def on_tool_input(self, tool: ToolDefinition, context: ToolContext, tool_input: Any) -> None:
        pass

    def on_tool_output(self, tool: ToolDefinition, context: ToolContext, tool_input: Any, output: Any) -> None:
        pass

    def on_tool_exception(
        self, tool: ToolDefinition, context: ToolContext, tool_input: Any, exception: ToolError
    ) -> None:
        pass

    def on_tool_response(self, tool: ToolDefinition, context: ToolContext, raw_input: str, output: str) -> None:
        pass


class ToolListenerRegistry:
    """Ordered collection of tool execution listeners."""

    def __init__(self, listeners: list[ToolExecutionListener] | None = None):
        self._listeners: list[ToolExecutionListener] = list(listeners or [])

    @property
    def listeners(self) -> list[ToolExecutionListener]:
        return list(self._listeners)

    def register_listener(self, listener: ToolExecutionListener) -> None:
        self._listeners.append(listener)

    def unregister_listener(self, listener: ToolExecutionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()


def notify_listeners(
    registry: ToolListenerRegistry | None, notify: Callable[[ToolExecutionListener], None]
) -> None:
    """Invoke ``notify`` on every listener in registration order.

    A failing listener is logged and skipped; it never stops the remaining
    listeners or the tool execution.
    """
    if registry is None:
        return
    for listener in registry.listeners:
        try:
            notify(listener)
        except Exception as e:
            logger.error(f"Fail to invoke tool listener {type(listener).__name__}: {e}", exc_info=True)


class LoggingToolListener(ToolExecutionListener):
    """Logs tool requests, responses and failures."""

    def __init__(self, max_length: int = 100):
        self.max_length = max_length

    def on_tool_input_request(self, tool: ToolDefinition, context: ToolContext, raw_input: str) -> None:
        logger.debug(f"Executing tool: {tool.name} with input: {raw_input[: self.max_length]}")

    def on_tool_response(self, tool: ToolDefinition, context: ToolContext, raw_input: str, output: str) -> None:
        logger.debug(f"Tool {tool.name} succeeded: {output[: self.max_length]}...")

    def on_tool_exception(
        self, tool: ToolDefinition, context: ToolContext, tool_input: Any, exception: ToolError
    ) -> None:
        logger.error(f"Tool {tool.name} failed: {exception}")
