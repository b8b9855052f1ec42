"""Turn-based conversation store and persistence."""

from turnwise.conversation.conversation import Conversation
from turnwise.conversation.storage import (
    ConversationStorage,
    FileConversationStorage,
    InMemoryConversationStorage,
)
from turnwise.conversation.turn import MessageTurn

__all__ = [
    "Conversation",
    "ConversationStorage",
    "FileConversationStorage",
    "InMemoryConversationStorage",
    "MessageTurn",
]
