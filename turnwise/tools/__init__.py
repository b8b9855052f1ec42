"""Tool registry, execution and listeners."""

from turnwise.tools.base import ToolContext, ToolDefinition
from turnwise.tools.executor import SecurityLevel, ToolExecutionConfig, ToolExecutor, ToolExecutorContext
from turnwise.tools.listeners import LoggingToolListener, ToolExecutionListener, ToolListenerRegistry
from turnwise.tools.registry import ToolsRegistry
from turnwise.tools.tracker import ToolCallRecord, ToolCallTracker

__all__ = [
    "LoggingToolListener",
    "SecurityLevel",
    "ToolCallRecord",
    "ToolCallTracker",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutionConfig",
    "ToolExecutionListener",
    "ToolExecutor",
    "ToolExecutorContext",
    "ToolListenerRegistry",
    "ToolsRegistry",
]
