"""Conversation persistence.

Stored conversations are written in chronological order: the oldest turn
first and, within a turn, the oldest message first. ``Conversation.reverse``
is a read-time view only and never affects what is persisted.
"""

from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from turnwise.conversation.conversation import Conversation
from turnwise.conversation.turn import MessageTurn
from turnwise.errors import MessageConversionError
from turnwise.models.messages import Message
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)


class StoredTurn(BaseModel):
    """On-disk form of a message turn."""

    messages: list[Message]
    finished: bool = False


class StoredConversation(BaseModel):
    """On-disk form of a conversation.

    Documents that carry only a flat ``messages`` array (no turn metadata)
    are loaded as a single unfinished turn.
    """

    id: str
    turns: list[StoredTurn] | None = None
    messages: list[Message] | None = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "StoredConversation":
        return cls(
            id=conversation.id,
            turns=[StoredTurn(messages=list(turn.messages), finished=turn.finished) for turn in conversation.turns()],
        )

    def to_turns(self) -> list[MessageTurn]:
        if self.turns is not None:
            return [MessageTurn(turn.messages, turn.finished) for turn in self.turns]
        if self.messages:
            return [MessageTurn(self.messages, finished=False)]
        return []


class ConversationStorage(Protocol):
    """Conversation-id keyed store."""

    def save(self, conversation: Conversation) -> None: ...

    def load(self, conversation: Conversation) -> None: ...

    def clear(self, conversation_id: str) -> None: ...

    def has(self, conversation_id: str) -> bool: ...

    def close(self) -> None: ...


def _replace_turns(conversation: Conversation, turns: list[MessageTurn]) -> None:
    conversation.clear()
    for turn in turns:
        conversation.append_turn(turn)


class InMemoryConversationStorage:
    """Keeps copies of saved conversations in process memory."""

    def __init__(self):
        self._conversations: dict[str, StoredConversation] = {}

    def save(self, conversation: Conversation) -> None:
        self._conversations[conversation.id] = StoredConversation.from_conversation(conversation)

    def load(self, conversation: Conversation) -> None:
        stored = self._conversations.get(conversation.id)
        if stored is not None:
            _replace_turns(conversation, stored.to_turns())

    def clear(self, conversation_id: str) -> None:
        self._conversations.pop(conversation_id, None)

    def has(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def close(self) -> None:
        self._conversations.clear()


class FileConversationStorage:
    """Stores one JSON document per conversation id.

    Args:
        path_pattern: File path with a ``{}`` placeholder for the conversation id,
            e.g. ``".turnwise/conversations/{}.json"``
    """

    def __init__(self, path_pattern: str):
        self.path_pattern = path_pattern.strip()
        if "{}" not in self.path_pattern:
            raise ValueError("path_pattern must contain a '{}' placeholder for the conversation id")

    def get_file_path(self, conversation_id: str) -> Path:
        return Path(self.path_pattern.format(conversation_id))

    def save(self, conversation: Conversation) -> None:
        path = self.get_file_path(conversation.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = StoredConversation.from_conversation(conversation)
        path.write_text(document.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
        logger.debug(f"Saved conversation {conversation.id} ({len(conversation)} messages) to {path}")

    def load(self, conversation: Conversation) -> None:
        """Replace ``conversation``'s contents with the stored document, if one exists.

        Raises:
            MessageConversionError: If the stored document is malformed
        """
        path = self.get_file_path(conversation.id)
        if not path.exists():
            return
        try:
            document = StoredConversation.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise MessageConversionError(f"Failed to load conversation file {path}: {e}") from e

        if document.turns is None:
            logger.warning(f"Conversation file {path} has no turn metadata, loading as a single turn")
        _replace_turns(conversation, document.to_turns())

    def clear(self, conversation_id: str) -> None:
        self.get_file_path(conversation_id).unlink(missing_ok=True)

    def has(self, conversation_id: str) -> bool:
        return self.get_file_path(conversation_id).exists()

    def close(self) -> None:
        pass
