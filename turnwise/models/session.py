"""Session state."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from turnwise.conversation import Conversation


@dataclass
class Session:
    """A live conversation and the bookkeeping needed to run it.

    ``lock`` serializes loop runs so the conversation has a single writer.
    ``task`` is the run currently holding the lock. Once ``cleared`` is set
    the session is never saved again.
    """

    session_id: str
    conversation: Conversation = field(default=None)  # type: ignore[assignment]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    task: asyncio.Task | None = field(default=None, repr=False, compare=False)
    cleared: bool = False

    def __post_init__(self):
        if self.conversation is None:
            self.conversation = Conversation(conversation_id=self.session_id)

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "turns": len(self.conversation.turns()),
            "messages": len(self.conversation),
            "running": self.is_running,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def update_activity(self) -> None:
        self.last_activity = datetime.now(UTC)
