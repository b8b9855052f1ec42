"""Tools registry for resolving tools by name."""

from turnwise.errors import ToolNotFound
from turnwise.models.llm import ToolSpec
from turnwise.tools.base import ToolDefinition
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


class ToolsRegistry:
    """Registry for managing the tools offered to the model.

    Registries are constructed explicitly and handed to whoever needs them;
    there is no process-wide instance.
    """

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a tool, replacing any tool with the same name."""
        if tool.name in self._tools:
            logger.warning(f"Replacing registered tool {tool.name}")
        self._tools[tool.name] = tool

    def unregister_tool(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def resolve(self, name: str) -> ToolDefinition:
        """Get a tool by name.

        Raises:
            ToolNotFound: If no tool is registered under ``name``
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def get_tool_specs(self) -> list[ToolSpec]:
        """Tool catalog in registration order."""
        return [tool.to_spec() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
