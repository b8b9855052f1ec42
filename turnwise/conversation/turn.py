"""Message turns."""

from collections.abc import Iterable, Iterator

from turnwise.models.messages import BaseMessage

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class MessageTurn:
    """An ordered run of messages forming one logical exchange unit.

    A turn is typically one user message plus the assistant's full response,
    tool round-trips included. Once ``finished`` is set the conversation
    starts a new turn for the next appended message.
    """

    def __init__(self, messages: Iterable[BaseMessage] | None = None, finished: bool = False):
        self._messages: list[BaseMessage] = list(messages or [])
        self.finished = finished

    @property
    def messages(self) -> tuple[BaseMessage, ...]:
        """Snapshot of the turn's messages in append order."""
        return tuple(self._messages)

    @property
    def turn_id(self) -> str:
        return self._messages[0].id if self._messages else str(id(self))

    def append_message(self, message: BaseMessage) -> None:
        self._messages.append(message)

    def index_of(self, message_id: str) -> int:
        """Position of ``message_id`` within the turn, or -1."""
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                return i
        return -1

    def is_empty(self) -> bool:
        return not self._messages

    def __iter__(self) -> Iterator[BaseMessage]:
        return iter(self.messages)

    def __reversed__(self) -> Iterator[BaseMessage]:
        return reversed(self.messages)

    def __len__(self) -> int:
        return len(self._messages)

    def as_text(self, max_messages: int = 10, max_length: int = 1000) -> str:
        splitter = "=" * 80
        lines = [f"Turn {self.turn_id} (Finished={self.finished}):", splitter]
        messages = self.messages
        if not messages:
            lines.append("<empty messages>")
        for message in messages[:max_messages]:
            content = message.content
            if len(content) > max_length:
                content = content[:max_length] + "...(truncated)"
            lines.append(f"[{message.created_at.strftime(TIME_FORMAT)}] {message.role}: {content}")
        if len(messages) > max_messages:
            lines.append("... (hidden messages)")
        lines.append(splitter)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.as_text()
