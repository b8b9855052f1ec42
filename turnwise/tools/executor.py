"""Tool execution with approval gating and listener notification."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from fnmatch import fnmatch
from typing import Any

from pydantic import BaseModel, Field

from turnwise.errors import ApprovalError, ToolError, ToolExecutionFailed, ToolRejected
from turnwise.models.approval import PermissionRequest
from turnwise.models.messages import generate_id
from turnwise.services.approval import PermissionApprovalManager
from turnwise.tools.base import ToolContext, ToolDefinition, serialize_output
from turnwise.tools.listeners import ToolListenerRegistry, notify_listeners
from turnwise.tools.tracker import ToolCallRecord, ToolCallTracker
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


class SecurityLevel(StrEnum):
    """How eagerly tool calls are routed through approval."""

    UNRESTRICTED = "unrestricted"  # never ask
    RESTRICTED = "restricted"  # ask for tools that are not read-only
    STRICT = "strict"  # ask for every tool


class ToolExecutionConfig(BaseModel):
    """Approval policy for tool execution.

    Tool name patterns use shell-style globs. Disallowed patterns reject the
    call outright; allowed patterns skip approval.
    """

    security_level: SecurityLevel = SecurityLevel.RESTRICTED
    allowed_tools: list[str] = Field(default_factory=list)
    disallowed_tools: list[str] = Field(default_factory=list)
    approval_timeout: float | None = None

    def is_allowed(self, tool_name: str) -> bool:
        return any(fnmatch(tool_name, pattern) for pattern in self.allowed_tools)

    def is_disallowed(self, tool_name: str) -> bool:
        return any(fnmatch(tool_name, pattern) for pattern in self.disallowed_tools)


@dataclass
class ToolExecutorContext:
    """Collaborators used while executing tools for one conversation."""

    conversation_id: str | None = None
    listener_registry: ToolListenerRegistry | None = None
    approval_manager: PermissionApprovalManager | None = None
    tracker: ToolCallTracker | None = None
    execution_config: ToolExecutionConfig = field(default_factory=ToolExecutionConfig)


class ToolExecutor:
    """Runs a single tool call.

    Listener hooks fire around every execution. Failures surface as
    ``ToolError`` subclasses; approval errors and cancellation propagate
    unchanged.
    """

    async def execute(
        self,
        context: ToolExecutorContext,
        tool: ToolDefinition,
        json_input: str,
        call_id: str | None = None,
    ) -> str:
        """Execute ``tool`` with ``json_input`` and return its JSON output.

        Raises:
            ToolRejected: If policy or the approver denies the call
            ToolExecutionFailed: If input validation or the tool itself fails
        """
        call_id = call_id or generate_id()
        tool_context = ToolContext(conversation_id=context.conversation_id, call_id=call_id)
        registry = context.listener_registry
        record = ToolCallRecord(
            id=call_id, tool_name=tool.name, tool_input=json_input, conversation_id=context.conversation_id
        )
        tool_input: Any = None

        try:
            notify_listeners(registry, lambda listener: listener.on_tool_input_request(tool, tool_context, json_input))

            if self.approval_required(context, tool):
                await self.request_approval(context, tool, json_input, call_id)

            tool_input = tool.parse_input(json_input)
            notify_listeners(registry, lambda listener: listener.on_tool_input(tool, tool_context, tool_input))

            try:
                output = await tool.handler(tool_input, tool_context)
            except ToolError:
                raise
            except Exception as e:
                raise ToolExecutionFailed(tool.name, e) from e

            notify_listeners(registry, lambda listener: listener.on_tool_output(tool, tool_context, tool_input, output))
            response = serialize_output(output)
            record.output = response
            notify_listeners(
                registry, lambda listener: listener.on_tool_response(tool, tool_context, json_input, response)
            )
            return response

        except ToolError as e:
            record.error = str(e)
            failed_input = tool_input
            notify_listeners(
                registry, lambda listener: listener.on_tool_exception(tool, tool_context, failed_input, e)
            )
            raise
        except ApprovalError as e:
            record.error = str(e)
            raise
        finally:
            if record.output is None and record.error is None:
                record.error = "aborted"
            record.finished_at = datetime.now(UTC)
            if context.tracker is not None:
                context.tracker.track(record)

    def approval_required(self, context: ToolExecutorContext, tool: ToolDefinition) -> bool:
        """Decide whether ``tool`` needs approval under the context's policy.

        Raises:
            ToolRejected: If the tool is disallowed outright
        """
        config = context.execution_config
        if config.security_level is SecurityLevel.UNRESTRICTED:
            return False
        if config.is_disallowed(tool.name):
            raise ToolRejected(tool.name, "not allowed execution")
        if config.is_allowed(tool.name):
            return False
        if config.security_level is SecurityLevel.RESTRICTED:
            return not tool.read_only
        return True

    async def request_approval(
        self, context: ToolExecutorContext, tool: ToolDefinition, json_input: str, call_id: str
    ) -> None:
        """Block the call until an approver decides.

        Raises:
            ToolRejected: If the request is denied or no approval manager is available
            ApprovalTimedOut: If the configured approval timeout elapses
            ApprovalCancelled: If the request is cancelled before a decision
        """
        manager = context.approval_manager
        if manager is None:
            raise ToolRejected(tool.name, "approval required but no approver is configured")

        request = PermissionRequest.for_tool_call(
            tool.name, json_input, request_id=call_id, requester=context.conversation_id
        )
        future = manager.initiate_approval(request)
        approval = await manager.wait_for_approval(request.id, future, context.execution_config.approval_timeout)
        if not approval.is_approved:
            raise ToolRejected(tool.name, approval.content or "user rejected tool execution")
        logger.debug(f"Tool {tool.name} call {call_id} approved")
