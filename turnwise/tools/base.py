"""Base types and definitions for tools."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from turnwise.errors import ToolExecutionFailed
from turnwise.models.llm import ToolSpec


@dataclass
class ToolContext:
    """What a tool handler sees about the call it is serving."""

    conversation_id: str | None = None
    call_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[BaseModel, ToolContext], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the model.

    ``read_only`` tools skip approval at the restricted security level.
    ``fail_fast`` tools abort the tool-call loop when they fail instead of
    reporting the error back to the model.
    """

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    read_only: bool = False
    fail_fast: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: str) -> BaseModel:
        """Parse and validate the JSON input of a tool call.

        Raises:
            ToolExecutionFailed: If the input is not valid JSON or fails validation
        """
        try:
            return self.input_schema_class.model_validate_json(raw_input or "{}")
        except ValidationError as e:
            raise ToolExecutionFailed(self.name, f"invalid input: {e}") from e

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.get_json_schema())


def serialize_output(output: Any) -> str:
    """Convert a handler result to the JSON text returned to the model."""
    if isinstance(output, str):
        return output
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    return json.dumps(output, default=str)
