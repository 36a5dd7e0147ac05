"""Reflection over chat session transcripts."""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..api.client import BackendClient
from ..exceptions import NotFoundError, StateWriteError
from ..models.schemas import Reflection, utc_now
from ..utils.logging import get_logger
from .sessions import SessionManager
from .storage import atomic_write_text

logger = get_logger(__name__)


class ReflectionService:
    """
    Builds transcripts from the session store and asks the backend for a
    reflection on them.

    Example:
        service = ReflectionService(client, sessions)
        reflection, session_ids = service.reflect()
        service.export_markdown(reflection, Path("."))
    """

    def __init__(self, client: BackendClient, sessions: SessionManager):
        self.client = client
        self.sessions = sessions

    def transcript(self, session_id: Optional[str] = None) -> Tuple[List[str], List[Dict[str, Any]]]:
        """
        Transcript of one session, or of today's sessions in start order.

        Raises:
            NotFoundError: If there is nothing to reflect on
        """
        if session_id is not None:
            selected = [self.sessions.get(session_id)]
        else:
            selected = self.sessions.todays_sessions()
            if not selected:
                raise NotFoundError("session", "today")

        entries: List[Dict[str, Any]] = []
        for session in selected:
            for message in self.sessions.export_transcript(session.session_id):
                entries.append({
                    "session_id": session.session_id,
                    "role": str(message.role),
                    "text": message.text,
                    "timestamp": message.timestamp.isoformat(),
                })
        return [s.session_id for s in selected], entries

    def reflect(self, session_id: Optional[str] = None) -> Tuple[Reflection, List[str]]:
        session_ids, entries = self.transcript(session_id)
        logger.info("reflection_requested", sessions=len(session_ids), messages=len(entries))
        return self.client.generate_reflection(session_ids, entries), session_ids

    def save(self, reflection: Reflection) -> str:
        return self.client.save_reflection(reflection)

    def export_markdown(
        self,
        reflection: Reflection,
        output_dir: Path,
        now: Optional[datetime] = None,
    ) -> Path:
        """Write ``reflection_<timestamp>.md`` into ``output_dir``."""
        now = now or utc_now()
        path = Path(output_dir) / f"reflection_{now:%Y%m%d_%H%M%S}.md"
        try:
            atomic_write_text(path, to_markdown(reflection, now))
        except OSError as e:
            raise StateWriteError(path, str(e)) from e
        logger.info("reflection_exported", path=str(path))
        return path


def to_markdown(reflection: Reflection, now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    lines = ["# PAM Reflection", f"*Generated: {now:%Y-%m-%d %H:%M} UTC*", ""]

    sections = [
        ("What Worked", reflection.what_worked),
        ("What Could Be Improved", reflection.what_failed),
        ("Key Learnings", reflection.learnings),
    ]
    for title, items in sections:
        lines.append(f"## {title}")
        lines.extend(f"- {item}" for item in items)
        lines.append("")

    if reflection.action_items:
        lines.append("## Action Items")
        lines.extend(f"{i}. {item}" for i, item in enumerate(reflection.action_items, start=1))
        lines.append("")

    return "\n".join(lines)
