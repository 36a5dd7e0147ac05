"""
Sessions Module: Chat Session Lifecycle

Each session moves through ``none -> active -> closed`` and is persisted
as one JSON file keyed by its session id. Only one session is active at a
time: starting or resuming a session closes any other active one.
"""

import secrets
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..exceptions import NotFoundError, SessionClosedError, StateReadError, StateWriteError
from ..models.enums import MessageRole, SessionStatus
from ..models.schemas import Message, Session, utc_now
from ..utils.logging import get_logger
from .storage import atomic_write_json, read_json, safe_filename

logger = get_logger(__name__)

LATEST = "latest"

SessionRef = Union[Session, str]


def generate_session_id(now: Optional[datetime] = None) -> str:
    """Session id of the form ``cos_YYYYMMDD_HHMMSS_<8 hex>`` (UTC)."""
    now = now or utc_now()
    return f"cos_{now:%Y%m%d_%H%M%S}_{secrets.token_hex(4)}"


class SessionManager:
    """
    Creates, resumes, appends to and closes chat sessions.

    Example:
        sessions = SessionManager(paths.sessions_dir, config.user_email)
        session = sessions.start_new()
        sessions.append_message(session, MessageRole.USER, "hello")
        sessions.close(session)
    """

    def __init__(
        self,
        sessions_dir: Path,
        user_email: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sessions_dir = Path(sessions_dir)
        self.user_email = user_email
        self._clock = clock or utc_now

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{safe_filename(session_id)}.json"

    def _save(self, session: Session) -> None:
        path = self._path(session.session_id)
        try:
            atomic_write_json(path, session.model_dump(mode="json"))
        except OSError as e:
            raise StateWriteError(path, str(e)) from e

    def _id_of(self, session: SessionRef) -> str:
        return session if isinstance(session, str) else session.session_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Session:
        path = self._path(session_id)
        if not path.exists():
            raise NotFoundError("session", session_id)
        try:
            return Session(**read_json(path))
        except (OSError, ValueError, TypeError) as e:
            raise StateReadError(path, str(e).split("\n", 1)[0]) from e

    def list_sessions(self) -> List[Session]:
        """All persisted sessions, most recently active first."""
        sessions = []
        if not self.sessions_dir.exists():
            return sessions
        for path in self.sessions_dir.glob("cos_*.json"):
            try:
                sessions.append(Session(**read_json(path)))
            except (OSError, ValueError, TypeError) as e:
                logger.warning("session_file_unreadable", path=str(path), error=str(e))
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    def latest(self) -> Optional[Session]:
        sessions = self.list_sessions()
        return sessions[0] if sessions else None

    def active(self) -> Optional[Session]:
        for session in self.list_sessions():
            if session.is_active:
                return session
        return None

    def todays_sessions(self, now: Optional[datetime] = None) -> List[Session]:
        """Sessions whose first message falls on the current local day, oldest first."""
        today = (now or self._clock()).astimezone().date()
        sessions = [
            s for s in self.list_sessions()
            if s.started_at is not None and s.started_at.astimezone().date() == today
        ]
        return sorted(sessions, key=lambda s: s.started_at)

    def export_transcript(self, session: SessionRef) -> List[Message]:
        """Messages in original order; valid in any state."""
        return list(self.get(self._id_of(session)).messages)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_new(self) -> Session:
        """Allocate and persist a fresh active session."""
        self._close_others(None)
        now = self._clock()
        session = Session(
            session_id=generate_session_id(now),
            user_email=self.user_email,
            created_at=now,
            updated_at=now,
        )
        self._save(session)
        logger.info("session_started", session_id=session.session_id)
        return session

    def resume(self, session_id: str = LATEST) -> Session:
        """
        Reactivate an existing session by id, or the most recently active one.

        Raises:
            NotFoundError: If no such session exists
        """
        if session_id == LATEST:
            latest = self.latest()
            if latest is None:
                raise NotFoundError("session", LATEST)
            session = latest
        else:
            session = self.get(session_id)

        self._close_others(session.session_id)
        if not session.is_active:
            session.status = SessionStatus.ACTIVE
            session.closed_at = None
            session.updated_at = self._clock()
            self._save(session)

        logger.info("session_resumed", session_id=session.session_id, messages=len(session.messages))
        return session

    def append_message(self, session: SessionRef, role: MessageRole, text: str) -> Message:
        """
        Append one message to an active session and persist it.

        Raises:
            SessionClosedError: If the session is not active
        """
        current = self.get(self._id_of(session))
        if not current.is_active:
            raise SessionClosedError(current.session_id)

        message = Message(role=role, text=text, timestamp=self._clock())
        current.messages.append(message)
        current.updated_at = message.timestamp
        self._save(current)

        if isinstance(session, Session):
            session.messages = list(current.messages)
            session.status = current.status
            session.updated_at = current.updated_at
        return message

    def close(self, session: SessionRef) -> Session:
        """Close a session; closing an already closed session is a no-op."""
        current = self.get(self._id_of(session))
        if current.is_active:
            now = self._clock()
            current.status = SessionStatus.CLOSED
            current.closed_at = now
            current.updated_at = now
            self._save(current)
            logger.info("session_closed", session_id=current.session_id)

        if isinstance(session, Session):
            session.status = current.status
            session.closed_at = current.closed_at
            session.updated_at = current.updated_at
        return current

    def _close_others(self, keep_id: Optional[str]) -> None:
        for other in self.list_sessions():
            if other.is_active and other.session_id != keep_id:
                self.close(other)
                logger.debug("session_superseded", session_id=other.session_id)
