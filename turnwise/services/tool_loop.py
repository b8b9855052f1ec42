"""Tool-call loop driving a conversation to a final model answer."""

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from turnwise.conversation import Conversation
from turnwise.errors import MaxToolTurnsExceeded, ToolError, ToolNotFound
from turnwise.models.llm import LoopResult, ModelResult, ModelUsage, ToolSpec
from turnwise.models.messages import (
    BaseMessage,
    SystemMessage,
    ToolCall,
    ToolCallMessage,
    ToolResponse,
    ToolResponseMessage,
)
from turnwise.services.stream import StreamMessageAggregator
from turnwise.tools.executor import ToolExecutor, ToolExecutorContext
from turnwise.tools.registry import ToolsRegistry
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


class ModelProvider(Protocol):
    """Model-provider collaborator."""

    async def invoke(
        self, messages: list[BaseMessage], tools: list[ToolSpec], options: dict[str, Any]
    ) -> ModelResult: ...

    def stream(
        self, messages: list[BaseMessage], tools: list[ToolSpec], options: dict[str, Any]
    ) -> AsyncIterator[BaseMessage]: ...


class ToolCallLoop:
    """Alternates between the model and tool execution until a final answer.

    Each round sends the full history plus the tool catalog to the provider.
    A response that requests tool calls is appended as a ``ToolCallMessage``,
    the calls are executed in request order and their results appended as a
    single ``ToolResponseMessage``. A response without tool calls is appended
    and ends the loop.

    Tool errors are reported back to the model as error payloads unless the
    tool (or the loop) is ``fail_fast``. When a round aborts (fail-fast tool
    error, approval error, cancellation) its ``ToolCallMessage`` is rolled
    back so the log never holds unanswered tool calls.
    """

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolsRegistry,
        executor: ToolExecutor | None = None,
        max_rounds: int = 10,
        fail_fast: bool = False,
        parallel_tool_calls: bool = False,
    ):
        """Initialize the loop.

        Args:
            provider: Model-provider collaborator
            registry: Tools offered to the model
            executor: Tool executor (defaults to a plain ``ToolExecutor``)
            max_rounds: Maximum tool-call round-trips per run
            fail_fast: Abort on any tool error, unknown tools included
            parallel_tool_calls: Run the calls of one round concurrently; results
                are still appended in request order
        """
        if max_rounds < 0:
            raise ValueError("max_rounds must not be negative")
        self.provider = provider
        self.registry = registry
        self.executor = executor or ToolExecutor()
        self.max_rounds = max_rounds
        self.fail_fast = fail_fast
        self.parallel_tool_calls = parallel_tool_calls
        self.aggregator = StreamMessageAggregator()

    async def run(
        self,
        conversation: Conversation,
        *inputs: BaseMessage,
        context: ToolExecutorContext | None = None,
        system_messages: Sequence[SystemMessage] = (),
        options: dict[str, Any] | None = None,
        max_rounds: int | None = None,
    ) -> LoopResult:
        """Run the loop until the provider returns a response without tool calls.

        Args:
            conversation: Conversation to read history from and append to
            *inputs: New messages for this invocation; they open a new turn
            context: Tool execution collaborators
            system_messages: Instructions prepended to every request
            options: Provider options
            max_rounds: Override of the loop's round bound

        Returns:
            The final message with round count, usage and appended messages

        Raises:
            MaxToolTurnsExceeded: If the model keeps requesting tools past the bound
        """
        max_rounds = self.max_rounds if max_rounds is None else max_rounds
        context = context or ToolExecutorContext(conversation_id=conversation.id)
        tools = self.registry.get_tool_specs()
        new_messages = self._begin(conversation, inputs)
        usage = ModelUsage()
        rounds = 0

        logger.info(
            f"Starting tool-call loop for conversation {conversation.id} with {len(inputs)} new messages, "
            f"{len(tools)} tools, max_rounds: {max_rounds}"
        )

        while True:
            logger.debug(f"Tool-call loop round {rounds + 1}, conversation {conversation.id}")
            result = await self.provider.invoke(
                self._build_prompt(conversation, system_messages), tools, dict(options or {})
            )
            usage.accumulate(result.usage)
            logger.debug(f"Model response - Stop reason: {result.stop_reason}")

            if result.is_terminal:
                self._append(conversation, result.message, new_messages)
                conversation.finish_turn()
                logger.info(f"Tool-call loop completed in {rounds} tool rounds")
                return LoopResult(message=result.message, rounds=rounds, usage=usage, new_messages=new_messages)

            self._check_bound(rounds, max_rounds)
            logger.info(f"Model wants to use {len(result.requested_tool_calls)} tools")
            await self._execute_round(conversation, context, result.message, new_messages)
            rounds += 1

    async def run_stream(
        self,
        conversation: Conversation,
        *inputs: BaseMessage,
        context: ToolExecutorContext | None = None,
        system_messages: Sequence[SystemMessage] = (),
        options: dict[str, Any] | None = None,
        max_rounds: int | None = None,
    ) -> AsyncIterator[BaseMessage]:
        """Streaming variant of ``run``.

        Yields every delta the provider produces. Deltas are folded into
        complete messages before they are appended to the conversation. The
        final answer is the conversation's last message once the stream ends.
        """
        max_rounds = self.max_rounds if max_rounds is None else max_rounds
        context = context or ToolExecutorContext(conversation_id=conversation.id)
        tools = self.registry.get_tool_specs()
        new_messages = self._begin(conversation, inputs)
        rounds = 0

        while True:
            deltas: list[BaseMessage] = []
            async for delta in self.provider.stream(
                self._build_prompt(conversation, system_messages), tools, dict(options or {})
            ):
                deltas.append(delta)
                yield delta

            messages = list(self.aggregator.aggregate(deltas))
            if not any(_requests_tools(message) for message in messages):
                for message in messages:
                    self._append(conversation, message, new_messages)
                conversation.finish_turn()
                logger.info(f"Streaming tool-call loop completed in {rounds} tool rounds")
                return

            self._check_bound(rounds, max_rounds)
            for message in messages:
                if _requests_tools(message):
                    await self._execute_round(conversation, context, message, new_messages)
                else:
                    self._append(conversation, message, new_messages)
            rounds += 1

    def _begin(self, conversation: Conversation, inputs: Sequence[BaseMessage]) -> list[BaseMessage]:
        new_messages: list[BaseMessage] = []
        if inputs:
            conversation.new_turn()
            for message in inputs:
                self._append(conversation, message, new_messages)
        return new_messages

    @staticmethod
    def _append(conversation: Conversation, message: BaseMessage, new_messages: list[BaseMessage]) -> None:
        conversation.append_message(message)
        new_messages.append(message)

    @staticmethod
    def _build_prompt(conversation: Conversation, system_messages: Sequence[SystemMessage]) -> list[BaseMessage]:
        return [*system_messages, *conversation]

    @staticmethod
    def _check_bound(rounds: int, max_rounds: int) -> None:
        if rounds >= max_rounds:
            logger.warning(f"Tool-call loop reached max rounds ({max_rounds})")
            raise MaxToolTurnsExceeded(max_rounds)

    async def _execute_round(
        self,
        conversation: Conversation,
        context: ToolExecutorContext,
        call_message: ToolCallMessage,
        new_messages: list[BaseMessage],
    ) -> None:
        finished_flags = [turn.finished for turn in conversation.turns()]
        self._append(conversation, call_message, new_messages)
        try:
            if self.parallel_tool_calls:
                responses = await self._execute_parallel(context, call_message.tool_calls)
            else:
                responses = [await self._execute_call(context, call) for call in call_message.tool_calls]
        except BaseException:
            logger.warning(f"Tool round aborted, rolling back tool call message {call_message.id}")
            conversation.reset_after(call_message.id, inclusive=True)
            # reset_after re-opens the turn it lands in
            for turn, finished in zip(conversation.turns(), finished_flags):
                turn.finished = finished
            new_messages.remove(call_message)
            raise

        error_ids = [response.id for response in responses if _is_error_payload(response.response_data)]
        response_message = ToolResponseMessage(
            tool_responses=responses,
            metadata={"error_ids": error_ids} if error_ids else {},
        )
        self._append(conversation, response_message, new_messages)

    async def _execute_parallel(self, context: ToolExecutorContext, calls: Sequence[ToolCall]) -> list[ToolResponse]:
        """Run ``calls`` concurrently, returning responses in request order.

        The first failure cancels the remaining calls and is raised as is.
        """
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(self._execute_call(context, call)) for call in calls]
        except BaseExceptionGroup as errors:
            raise _first_error(errors) from errors
        return [task.result() for task in tasks]

    async def _execute_call(self, context: ToolExecutorContext, call: ToolCall) -> ToolResponse:
        try:
            tool = self.registry.resolve(call.name)
        except ToolNotFound as e:
            logger.error(f"Unknown tool requested: {call.name}")
            if self.fail_fast:
                raise
            return _error_response(call, e)

        try:
            output = await self.executor.execute(context, tool, call.arguments, call_id=call.id)
        except ToolError as e:
            if tool.fail_fast or self.fail_fast:
                raise
            return _error_response(call, e)
        return ToolResponse(id=call.id, name=call.name, response_data=output)


ERROR_KEY = "error"


def _error_response(call: ToolCall, error: ToolError) -> ToolResponse:
    payload = {ERROR_KEY: type(error).__name__, "message": str(error)}
    return ToolResponse(id=call.id, name=call.name, response_data=json.dumps(payload))


def _is_error_payload(response_data: str) -> bool:
    try:
        payload = json.loads(response_data)
    except json.JSONDecodeError:
        return False
    return isinstance(payload, dict) and set(payload) == {ERROR_KEY, "message"}


def _first_error(errors: BaseExceptionGroup) -> BaseException:
    error = errors.exceptions[0]
    while isinstance(error, BaseExceptionGroup):
        error = error.exceptions[0]
    return error


def _requests_tools(message: BaseMessage) -> bool:
    return isinstance(message, ToolCallMessage) and message.has_tool_calls
