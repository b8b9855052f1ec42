"""Runtime configuration."""

import os
from dataclasses import dataclass, field
from enum import StrEnum

from turnwise.tools.executor import SecurityLevel
from turnwise.tools.tracker import DEFAULT_TRACKER_CAPACITY

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the available tools when they help answer the user's request."
)


class ApprovalMode(StrEnum):
    """How tool approval requests are decided."""

    AUTO = "auto"  # approve everything
    POLICY = "policy"  # decide by tool-name patterns
    HUMAN = "human"  # wait for a decision through the API
    DENY = "deny"  # reject everything


@dataclass
class RuntimeConfig:
    """Configuration for a runtime context."""

    max_tool_rounds: int = 10
    approval_mode: ApprovalMode = ApprovalMode.AUTO
    approval_timeout: float | None = None
    security_level: SecurityLevel = SecurityLevel.RESTRICTED
    storage_path_pattern: str | None = None
    session_timeout_minutes: int = 60
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    approval_workers: int = 4
    max_message_chars: int = 4000
    approval_allow: list[str] = field(default_factory=list)
    approval_deny: list[str] = field(default_factory=list)
    tracker_capacity: int = DEFAULT_TRACKER_CAPACITY

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """Build a config from ``TURNWISE_*`` environment variables."""
        approval_timeout = os.getenv("TURNWISE_APPROVAL_TIMEOUT")
        return cls(
            max_tool_rounds=int(os.getenv("TURNWISE_MAX_TOOL_ROUNDS", cls.max_tool_rounds)),
            approval_mode=ApprovalMode(os.getenv("TURNWISE_APPROVAL_MODE", cls.approval_mode).lower()),
            approval_timeout=float(approval_timeout) if approval_timeout else None,
            security_level=SecurityLevel(os.getenv("TURNWISE_SECURITY_LEVEL", cls.security_level).lower()),
            storage_path_pattern=os.getenv("TURNWISE_STORAGE_PATH") or None,
            session_timeout_minutes=int(os.getenv("TURNWISE_SESSION_TIMEOUT_MINUTES", cls.session_timeout_minutes)),
            system_prompt=os.getenv("TURNWISE_SYSTEM_PROMPT", cls.system_prompt),
            approval_workers=int(os.getenv("TURNWISE_APPROVAL_WORKERS", cls.approval_workers)),
            max_message_chars=int(os.getenv("TURNWISE_MAX_MESSAGE_CHARS", cls.max_message_chars)),
            approval_allow=_patterns(os.getenv("TURNWISE_APPROVAL_ALLOW", "")),
            approval_deny=_patterns(os.getenv("TURNWISE_APPROVAL_DENY", "")),
            tracker_capacity=int(os.getenv("TURNWISE_TRACKER_CAPACITY", cls.tracker_capacity)),
        )


def _patterns(value: str) -> list[str]:
    """Split a comma-separated list of tool-name patterns."""
    return [pattern.strip() for pattern in value.split(",") if pattern.strip()]
