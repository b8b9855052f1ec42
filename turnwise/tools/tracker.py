"""Tracking of executed tool calls."""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

DEFAULT_TRACKER_CAPACITY = 1000


@dataclass
class ToolCallRecord:
    """One tool execution, successful or not."""

    id: str
    tool_name: str
    tool_input: str
    conversation_id: str | None = None
    output: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.finished_at is not None


class ToolCallTracker:
    """Record of the most recent tool executions for one runtime context.

    At most ``capacity`` records are kept; the oldest are dropped first.
    """

    def __init__(self, capacity: int = DEFAULT_TRACKER_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._records: deque[ToolCallRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._records.maxlen or 0

    def track(self, record: ToolCallRecord) -> None:
        with self._lock:
            self._records.append(record)

    def find(self, predicate: Callable[[ToolCallRecord], bool]) -> list[ToolCallRecord]:
        return [record for record in self.records if predicate(record)]

    def find_by_tool_name(self, tool_name: str) -> list[ToolCallRecord]:
        return self.find(lambda record: record.tool_name == tool_name)

    def find_by_conversation(self, conversation_id: str) -> list[ToolCallRecord]:
        return self.find(lambda record: record.conversation_id == conversation_id)

    @property
    def records(self) -> list[ToolCallRecord]:
        with self._lock:
            return list(self._records)

    def clear(self, conversation_id: str | None = None) -> int:
        """Drop records, only those of ``conversation_id`` when given.

        Returns:
            Number of records dropped
        """
        with self._lock:
            before = len(self._records)
            if conversation_id is None:
                self._records.clear()
            else:
                kept = [record for record in self._records if record.conversation_id != conversation_id]
                self._records.clear()
                self._records.extend(kept)
            return before - len(self._records)
