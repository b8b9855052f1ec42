"""Turn-based conversation store."""

from collections.abc import Callable, Iterable, Iterator
from itertools import islice

from turnwise.conversation.turn import MessageTurn
from turnwise.errors import ConversationTargetNotFound
from turnwise.models.messages import BaseMessage, generate_id
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)

MessagePredicate = Callable[[BaseMessage], bool]


class Conversation:
    """Ordered, turn-structured log of messages for one session.

    The conversation has a single logical writer (the loop driving the
    session). Readers iterate over snapshots, so a concurrent append or
    rewind is observed either entirely or not at all.

    Only the last turn may be unfinished. Appending when the last turn is
    missing or finished opens a new turn first.
    """

    def __init__(self, conversation_id: str | None = None, turns: Iterable[MessageTurn] | None = None):
        self.id = conversation_id or generate_id()
        self._turns: list[MessageTurn] = list(turns or [])

    def turns(self, reverse: bool = False) -> list[MessageTurn]:
        """Snapshot of the turns, oldest first unless ``reverse``."""
        turns = list(self._turns)
        if reverse:
            turns.reverse()
        return turns

    def last_turn(self) -> MessageTurn | None:
        return self._turns[-1] if self._turns else None

    def last_turns(self, count: int) -> list[MessageTurn]:
        """The most recent ``count`` turns in chronological order."""
        if count <= 0:
            return []
        return self._turns[-count:]

    def new_turn(self) -> MessageTurn:
        """Finish the current turn and open a new empty one.

        An empty unfinished last turn is reused rather than stacking empty turns.
        """
        last = self.last_turn()
        if last is not None:
            if not last.finished and last.is_empty():
                return last
            last.finished = True
        turn = MessageTurn()
        self.append_turn(turn)
        return turn

    def append_turn(self, turn: MessageTurn) -> None:
        self._turns.append(turn)

    def finish_turn(self) -> None:
        """Mark the current turn finished, if there is one."""
        last = self.last_turn()
        if last is not None:
            last.finished = True

    def append_message(self, message: BaseMessage) -> None:
        """Append ``message`` to the current turn, opening a new turn when needed."""
        turn = self.last_turn()
        if turn is None or turn.finished:
            turn = self.new_turn()
        turn.append_message(message)

    def __iter__(self) -> Iterator[BaseMessage]:
        for turn in self.turns():
            yield from turn

    def reverse(self) -> Iterator[BaseMessage]:
        """Iterate messages most recent first, the exact reverse of append order."""
        for turn in self.turns(reverse=True):
            yield from reversed(turn)

    def __len__(self) -> int:
        return sum(len(turn) for turn in self.turns())

    def is_empty(self) -> bool:
        return all(turn.is_empty() for turn in self.turns())

    def messages(self) -> list[BaseMessage]:
        return list(self)

    def last_message(self) -> BaseMessage | None:
        return next(self.reverse(), None)

    def last_messages(self, count: int) -> list[BaseMessage]:
        """The most recent ``count`` messages in chronological order."""
        if count <= 0:
            return []
        recent = list(islice(self.reverse(), count))
        recent.reverse()
        return recent

    def find_messages(self, predicate: MessagePredicate, reverse: bool = False) -> list[BaseMessage]:
        source = self.reverse() if reverse else iter(self)
        return [message for message in source if predicate(message)]

    def find_message(self, predicate: MessagePredicate, reverse: bool = False) -> BaseMessage | None:
        source = self.reverse() if reverse else iter(self)
        return next((message for message in source if predicate(message)), None)

    def get_message(self, message_id: str) -> BaseMessage | None:
        return self.find_message(lambda message: message.id == message_id, reverse=True)

    def reset_after(self, message_id: str, inclusive: bool = True) -> None:
        """Remove every message appended after ``message_id``.

        The target itself is removed when ``inclusive``. Messages strictly
        before the target are never touched. The turn holding the new last
        message is re-opened so the next append continues it.

        Raises:
            ConversationTargetNotFound: If no message has ``message_id``; the
                conversation is left unchanged.
        """
        turns = self.turns()
        for turn_index in range(len(turns) - 1, -1, -1):
            message_index = turns[turn_index].index_of(message_id)
            if message_index >= 0:
                break
        else:
            raise ConversationTargetNotFound(message_id)

        keep = message_index if inclusive else message_index + 1
        kept_messages = turns[turn_index].messages[:keep]
        remaining = turns[:turn_index]
        if kept_messages:
            remaining.append(MessageTurn(kept_messages, finished=False))
        elif remaining:
            remaining[-1] = MessageTurn(remaining[-1].messages, finished=False)

        removed = len(self) - sum(len(turn) for turn in remaining)
        self._turns = remaining
        logger.debug(f"Conversation {self.id} reset after {message_id} (inclusive={inclusive}), removed {removed}")

    def clear(self) -> None:
        """Remove all turns and messages. The id is retained."""
        self._turns = []

    def as_text(self, max_turns: int = 4) -> str:
        lines = [f"Conversation history (ID={self.id}):"]
        turns = self.last_turns(max_turns)
        if not turns:
            lines.append("<empty messages>")
        lines.extend(str(turn) for turn in turns)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.as_text()
