"""Error types raised by the conversation runtime."""


class TurnwiseError(Exception):
    """Base class for all runtime errors."""


class ToolError(TurnwiseError):
    """An error tied to a single tool call."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFound(ToolError):
    """The model requested a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool {tool_name}")


class ToolRejected(ToolError):
    """The tool call was denied by policy or by an approver."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(tool_name, f"Tool {tool_name} rejected: {reason}")
        self.reason = reason


class ToolExecutionFailed(ToolError):
    """The underlying tool raised while running."""

    def __init__(self, tool_name: str, cause: BaseException | str):
        super().__init__(tool_name, f"Call tool {tool_name} failed: {cause}")
        self.cause = cause


class MaxToolTurnsExceeded(TurnwiseError):
    """The tool-call loop hit its round-trip bound."""

    def __init__(self, max_rounds: int):
        super().__init__(f"Exceeded maximum of {max_rounds} tool-call rounds")
        self.max_rounds = max_rounds


class ApprovalError(TurnwiseError):
    """A pending approval did not reach a decision."""

    def __init__(self, request_id: str, message: str):
        super().__init__(message)
        self.request_id = request_id


class ApprovalCancelled(ApprovalError):
    def __init__(self, request_id: str):
        super().__init__(request_id, f"Approval {request_id} was cancelled")


class ApprovalTimedOut(ApprovalError):
    def __init__(self, request_id: str, timeout: float):
        super().__init__(request_id, f"Approval {request_id} timed out after {timeout}s")
        self.timeout = timeout


class MessageConversionError(TurnwiseError):
    """A message could not be converted at a boundary (storage, provider)."""


class ConversationTargetNotFound(TurnwiseError, LookupError):
    """``reset_after`` was given a message id the conversation does not hold."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found in conversation")
        self.message_id = message_id


class ConversationCleared(TurnwiseError):
    """The session's conversation was cleared while a message was being processed."""

    def __init__(self, session_id: str):
        super().__init__(f"Conversation {session_id} was cleared")
        self.session_id = session_id
