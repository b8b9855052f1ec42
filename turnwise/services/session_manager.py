"""Session management for in-memory storage."""

import threading
from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from turnwise.models.session import Session
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemorySessionManager:
    """In-memory session manager.

    Each session owns one conversation whose id is the session id, so a
    persisted conversation can be picked up again by a session with the same
    id.
    """

    def __init__(self, session_timeout_minutes: int = 60):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Minutes before session expires
        """
        self.sessions: dict[str, Session] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self._lock = threading.Lock()

    def get_or_create_session(self, session_id: str | None = None) -> tuple[Session, bool]:
        """Get existing session or create new one.

        Args:
            session_id: Optional existing session ID

        Returns:
            The session and whether it was newly created
        """
        self._cleanup_expired_sessions()

        with self._lock:
            if session_id and session_id in self.sessions:
                session = self.sessions[session_id]
                session.update_activity()
                return session, False

            new_session_id = session_id or self._generate_session_id()
            session = Session(session_id=new_session_id)
            self.sessions[new_session_id] = session

        logger.info(f"Created session {new_session_id}")
        return session, True

    def get_session(self, session_id: str) -> Session | None:
        """Get existing session by ID.

        Returns:
            Session if found and not expired, None otherwise
        """
        self._cleanup_expired_sessions()

        with self._lock:
            session = self.sessions.get(session_id)
        if session:
            session.update_activity()
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session.

        Returns:
            True if session was deleted, False if not found
        """
        with self._lock:
            return self.sessions.pop(session_id, None) is not None

    def _generate_session_id(self) -> str:
        """Generate a new CUID-based session ID."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove expired sessions from memory."""
        current_time = datetime.now(UTC)
        with self._lock:
            expired_sessions = [
                session_id
                for session_id, session in self.sessions.items()
                if current_time - session.last_activity > self.session_timeout
            ]
            for session_id in expired_sessions:
                del self.sessions[session_id]

        if expired_sessions:
            logger.info(f"Expired {len(expired_sessions)} sessions")

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)
