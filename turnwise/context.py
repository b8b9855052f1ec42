"""Runtime context wiring the conversation runtime together."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from turnwise.config import ApprovalMode, RuntimeConfig
from turnwise.conversation import ConversationStorage, FileConversationStorage, InMemoryConversationStorage
from turnwise.services.approval import PermissionApprovalManager, PolicyApprover, always_approve, always_deny
from turnwise.services.conversation import ConversationService, MessageValidator
from turnwise.services.session_manager import InMemorySessionManager
from turnwise.services.tool_loop import ModelProvider, ToolCallLoop
from turnwise.tools.clock import create_current_time_tool
from turnwise.tools.executor import ToolExecutionConfig, ToolExecutor, ToolExecutorContext
from turnwise.tools.listeners import LoggingToolListener, ToolListenerRegistry
from turnwise.tools.registry import ToolsRegistry
from turnwise.tools.tracker import ToolCallTracker
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RuntimeContext:
    """Every collaborator of one runtime, constructed explicitly and closed together."""

    config: RuntimeConfig
    provider: ModelProvider
    tools: ToolsRegistry
    listeners: ToolListenerRegistry
    approval_manager: PermissionApprovalManager
    tracker: ToolCallTracker
    storage: ConversationStorage
    sessions: InMemorySessionManager
    loop: ToolCallLoop
    conversations: ConversationService
    approval_executor: ThreadPoolExecutor | None = None

    @classmethod
    def create(
        cls,
        config: RuntimeConfig | None = None,
        provider: ModelProvider | None = None,
        tools: ToolsRegistry | None = None,
        message_validator: MessageValidator | None = None,
    ) -> "RuntimeContext":
        """Build a runtime from ``config``.

        Args:
            config: Runtime configuration (defaults to ``RuntimeConfig.from_env()``)
            provider: Model provider (defaults to the Anthropic provider)
            tools: Tools offered to the model (defaults to the current time tool)
            message_validator: Extra check on inbound messages (defaults to the
                Anthropic provider's token limit when that provider is built here)
        """
        config = config or RuntimeConfig.from_env()
        if provider is None:
            from turnwise.clients.anthropic import AnthropicConfig, AnthropicModelProvider

            anthropic_provider = AnthropicModelProvider(config=AnthropicConfig.from_env())
            message_validator = message_validator or anthropic_provider.validate_message_tokens
            provider = anthropic_provider
        if tools is None:
            tools = ToolsRegistry([create_current_time_tool()])

        approval_executor: ThreadPoolExecutor | None = None
        match config.approval_mode:
            case ApprovalMode.AUTO:
                approval_executor = ThreadPoolExecutor(
                    max_workers=config.approval_workers, thread_name_prefix="turnwise-approval"
                )
                approval_manager = PermissionApprovalManager.with_approver(always_approve, approval_executor)
            case ApprovalMode.POLICY:
                approver = PolicyApprover(allowed=config.approval_allow, denied=config.approval_deny)
                approval_manager = PermissionApprovalManager.with_approver(approver)
            case ApprovalMode.DENY:
                approval_manager = PermissionApprovalManager.with_approver(always_deny)
            case ApprovalMode.HUMAN:
                approval_manager = PermissionApprovalManager()

        storage: ConversationStorage
        if config.storage_path_pattern:
            storage = FileConversationStorage(config.storage_path_pattern)
        else:
            storage = InMemoryConversationStorage()

        listeners = ToolListenerRegistry([LoggingToolListener()])
        tracker = ToolCallTracker(capacity=config.tracker_capacity)
        sessions = InMemorySessionManager(session_timeout_minutes=config.session_timeout_minutes)
        loop = ToolCallLoop(provider, tools, ToolExecutor(), max_rounds=config.max_tool_rounds)
        execution_config = ToolExecutionConfig(
            security_level=config.security_level, approval_timeout=config.approval_timeout
        )

        def context_factory(conversation_id: str) -> ToolExecutorContext:
            return ToolExecutorContext(
                conversation_id=conversation_id,
                listener_registry=listeners,
                approval_manager=approval_manager,
                tracker=tracker,
                execution_config=execution_config,
            )

        conversations = ConversationService(
            loop,
            storage,
            sessions,
            context_factory,
            system_prompt=config.system_prompt,
            max_message_chars=config.max_message_chars,
            approval_manager=approval_manager,
            tracker=tracker,
            message_validator=message_validator,
        )

        logger.info(
            f"Runtime created - approval mode: {config.approval_mode}, tools: {tools.get_tool_names()}, "
            f"storage: {type(storage).__name__}"
        )
        return cls(
            config=config,
            provider=provider,
            tools=tools,
            listeners=listeners,
            approval_manager=approval_manager,
            tracker=tracker,
            storage=storage,
            sessions=sessions,
            loop=loop,
            conversations=conversations,
            approval_executor=approval_executor,
        )

    def close(self) -> None:
        """Cancel outstanding approvals and release resources."""
        self.approval_manager.close()
        if self.approval_executor is not None:
            self.approval_executor.shutdown(wait=False, cancel_futures=True)
        self.storage.close()
        logger.info("Runtime closed")
