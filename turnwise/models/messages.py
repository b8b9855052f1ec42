"""Message data models.

Messages are immutable values discriminated by their ``type`` field. The
four variants cover ordinary role text, system instructions, assistant
messages that request tool calls, and the responses to those calls.
"""

import base64
import json
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from turnwise.errors import MessageConversionError

cuid = cuid_wrapper()


def generate_id() -> str:
    """Generate an opaque identifier for messages, conversations and requests."""
    return cuid()


class MediaResource(BaseModel):
    """A binary or URI resource attached to a message."""

    mime_type: str
    uri: str | None = None
    data: str | None = None  # base64

    class Config:
        frozen = True

    @classmethod
    def from_bytes(cls, mime_type: str, raw: bytes) -> "MediaResource":
        return cls(mime_type=mime_type, data=base64.b64encode(raw).decode("ascii"))

    def as_bytes(self) -> bytes | None:
        """Return the decoded inline payload, if any."""
        if self.data is None:
            return None
        return base64.b64decode(self.data)


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant."""

    id: str
    type: str = "function"
    name: str
    arguments: str = "{}"

    class Config:
        frozen = True

    def arguments_dict(self) -> dict[str, Any]:
        """Parse the JSON arguments into a dictionary."""
        try:
            value = json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError as e:
            raise MessageConversionError(f"Tool call {self.id} has malformed arguments: {e}") from e
        if not isinstance(value, dict):
            raise MessageConversionError(f"Tool call {self.id} arguments must be a JSON object")
        return value


class ToolResponse(BaseModel):
    """Result of a tool call, correlated to the request by ``id``."""

    id: str
    name: str
    response_data: str

    class Config:
        frozen = True


class BaseMessage(BaseModel):
    """Fields shared by every message variant."""

    id: str = Field(default_factory=generate_id)
    role: str
    content: str = ""
    media: list[MediaResource] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    class Config:
        frozen = True


class RoleMessage(BaseMessage):
    """Ordinary user or assistant turn text."""

    type: Literal["role"] = "role"

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> "RoleMessage":
        return cls(role="user", content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> "RoleMessage":
        return cls(role="assistant", content=content, **kwargs)


class SystemMessage(BaseMessage):
    """Instruction context. Not part of turn counting."""

    type: Literal["system"] = "system"
    role: Literal["system"] = "system"


class ToolCallMessage(BaseMessage):
    """Assistant message that also requests zero or more tool invocations."""

    type: Literal["tool_call"] = "tool_call"
    role: str = "assistant"
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ToolResponseMessage(BaseMessage):
    """Results of previously requested tool calls."""

    type: Literal["tool_response"] = "tool_response"
    role: str = "tool-response"
    tool_responses: list[ToolResponse] = Field(default_factory=list)

    def response_for(self, call_id: str) -> ToolResponse | None:
        return next((r for r in self.tool_responses if r.id == call_id), None)


Message = Annotated[
    RoleMessage | SystemMessage | ToolCallMessage | ToolResponseMessage,
    Field(discriminator="type"),
]

message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(data: dict[str, Any] | str | bytes) -> Message:
    """Validate raw data (a mapping or a JSON document) into a message.

    Raises:
        MessageConversionError: If the data is malformed or names an unknown variant
    """
    try:
        if isinstance(data, str | bytes):
            return message_adapter.validate_json(data)
        return message_adapter.validate_python(data)
    except ValidationError as e:
        raise MessageConversionError(f"Invalid message: {e}") from e


def dump_message(message: BaseMessage) -> dict[str, Any]:
    """Dump a message to a JSON-compatible dictionary."""
    return message.model_dump(mode="json")


def message_variant(message: BaseMessage) -> str:
    """Name of the variant ``message`` belongs to.

    Raises:
        MessageConversionError: If ``message`` is not one of the known variants
    """
    match message:
        case RoleMessage():
            return "role"
        case SystemMessage():
            return "system"
        case ToolCallMessage():
            return "tool_call"
        case ToolResponseMessage():
            return "tool_response"
        case _:
            raise MessageConversionError(f"Unknown message variant {type(message).__name__}")
