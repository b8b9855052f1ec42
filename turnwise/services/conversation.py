"""Conversation service running the tool-call loop for sessions."""

import asyncio
import json
from collections.abc import Callable

from turnwise.conversation import ConversationStorage
from turnwise.errors import ConversationCleared
from turnwise.models.llm import LoopResult
from turnwise.models.messages import RoleMessage, SystemMessage
from turnwise.models.session import Session
from turnwise.services.approval import PermissionApprovalManager
from turnwise.services.session_manager import InMemorySessionManager
from turnwise.services.tool_loop import ToolCallLoop
from turnwise.tools.executor import ToolExecutorContext
from turnwise.tools.tracker import ToolCallTracker
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)

ExecutorContextFactory = Callable[[str], ToolExecutorContext]
MessageValidator = Callable[[str], None]


class ConversationService:
    """Service for handling conversational interactions.

    Every session owns one conversation. Messages are appended through the
    tool-call loop and the conversation is saved after every run, whether or
    not the run succeeded.
    """

    def __init__(
        self,
        loop: ToolCallLoop,
        storage: ConversationStorage,
        session_manager: InMemorySessionManager,
        context_factory: ExecutorContextFactory,
        system_prompt: str = "",
        max_message_chars: int = 4000,
        approval_manager: PermissionApprovalManager | None = None,
        tracker: ToolCallTracker | None = None,
        message_validator: MessageValidator | None = None,
    ):
        self.loop = loop
        self.storage = storage
        self.session_manager = session_manager
        self.context_factory = context_factory
        self.system_messages = [SystemMessage(content=system_prompt)] if system_prompt else []
        self.max_message_chars = max_message_chars
        self.approval_manager = approval_manager
        self.tracker = tracker
        self.message_validator = message_validator

    def get_or_create_session(self, session_id: str | None = None) -> Session:
        """Get a live session, resuming it from storage when it is not in memory."""
        session, created = self.session_manager.get_or_create_session(session_id)
        if created and session_id:
            self.storage.load(session.conversation)
            logger.info(f"Resumed session {session_id} with {len(session.conversation)} stored messages")
        return session

    def find_session(self, session_id: str) -> Session | None:
        """Get a session that is live or persisted, None otherwise."""
        session = self.session_manager.get_session(session_id)
        if session is None and self.storage.has(session_id):
            session = self.get_or_create_session(session_id)
        return session

    async def process_message(self, message: str, session: Session) -> LoopResult:
        """Process a user message and return the loop result.

        Args:
            message: User's message
            session: Current session state

        Raises:
            ValueError: If message is empty or too long
            ConversationCleared: If the conversation is cleared before or during the run
        """
        self._validate_message(message)
        logger.info(f"Processing message for session {session.session_id} {json.dumps(session.as_dict())}")

        async with session.lock:
            if session.cleared:
                raise ConversationCleared(session.session_id)
            session.task = asyncio.current_task()
            try:
                result = await self.loop.run(
                    session.conversation,
                    RoleMessage.user(message),
                    context=self.context_factory(session.session_id),
                    system_messages=self.system_messages,
                )
            except BaseException as e:
                if not session.cleared:
                    raise
                # the run was stopped by clear_conversation
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    task.uncancel()
                raise ConversationCleared(session.session_id) from e
            finally:
                session.task = None
                if not session.cleared:
                    self.storage.save(session.conversation)
                session.update_activity()

        logger.info(
            f"Token usage - Input: {result.usage.input_tokens}, "
            f"Output: {result.usage.output_tokens}, "
            f"Cache hits: {result.usage.cache_read_input_tokens}"
        )
        return result

    async def reset_conversation(self, session: Session, message_id: str, inclusive: bool = True) -> None:
        """Rewind the session's conversation to ``message_id``.

        Raises:
            ConversationTargetNotFound: If the message is not in the conversation
        """
        async with session.lock:
            session.conversation.reset_after(message_id, inclusive=inclusive)
            self.storage.save(session.conversation)
        logger.info(f"Reset session {session.session_id} after message {message_id} (inclusive={inclusive})")

    def clear_conversation(self, session_id: str) -> bool:
        """Forget a session and its stored conversation.

        A run in progress for the session is cancelled along with its pending
        approvals, and its conversation is not saved again.

        Returns:
            True if a live or stored conversation existed
        """
        existed = self.storage.has(session_id)
        session = self.session_manager.get_session(session_id)
        if session is not None:
            session.cleared = True
            if session.is_running:
                logger.info(f"Cancelling in-flight run for session {session_id}")
                session.task.cancel()
            self.session_manager.delete_session(session_id)
        self._cancel_approvals(session_id)
        self.storage.clear(session_id)
        if self.tracker is not None:
            self.tracker.clear(session_id)
        logger.info(f"Cleared conversation for session {session_id}")
        return session is not None or existed

    def _cancel_approvals(self, session_id: str) -> None:
        if self.approval_manager is None:
            return
        for request in self.approval_manager.pending_requests():
            if request.requester == session_id:
                self.approval_manager.cancel_approval(request.id)

    def _validate_message(self, message: str) -> None:
        if not message.strip():
            raise ValueError("Message must not be empty.")
        if len(message) > self.max_message_chars:
            raise ValueError(
                f"Your message is too long. Please keep messages under {self.max_message_chars} characters."
            )
        if self.message_validator is not None:
            self.message_validator(message)
