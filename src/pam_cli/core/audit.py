"""
Audit Module: Append-Only Skill Invocation Log

Every skill invocation attempt is written as ``pending`` before the
request is sent, then overwritten in place with its final outcome. The
log holds one line per invocation id and lines are never removed, so an
attempt interrupted by a crash remains visible as ``pending``.
"""

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..exceptions import StateWriteError
from ..models.schemas import AuditRecord
from ..utils.logging import get_logger
from .storage import atomic_write_text

logger = get_logger(__name__)


class AuditLog:
    """
    JSON-lines audit log of skill invocations.

    Example:
        audit = AuditLog(paths.audit_file)
        audit.append(record)
        recent = audit.query(limit=20, skill_name="jira-query")
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as f:
            return [line for line in f.read().splitlines() if line.strip()]

    @staticmethod
    def _find(lines: List[str], invocation_id: str) -> Optional[int]:
        for index, line in enumerate(lines):
            try:
                if json.loads(line).get("invocation_id") == invocation_id:
                    return index
            except (ValueError, AttributeError):
                continue
        return None

    def append(self, record: AuditRecord) -> None:
        """
        Durably record one entry.

        An existing line with the same invocation id is replaced, otherwise
        the line is appended. The whole log is rewritten atomically, so a
        crash leaves either the previous log or the updated one.

        Raises:
            StateWriteError: If the log could not be written
        """
        line = record.model_dump_json()
        with self._lock:
            lines = self._read_lines()
            index = self._find(lines, record.invocation_id)
            if index is None:
                lines.append(line)
            else:
                lines[index] = line
            try:
                atomic_write_text(self.path, "\n".join(lines) + "\n")
            except OSError as e:
                raise StateWriteError(self.path, str(e)) from e

        logger.debug(
            "audit_record_appended",
            invocation_id=record.invocation_id,
            skill=record.skill_name,
            outcome=str(record.outcome),
        )

    def records(self) -> List[AuditRecord]:
        """Latest entry per invocation, oldest attempt first."""
        latest: Dict[str, AuditRecord] = {}
        for number, line in enumerate(self._read_lines(), start=1):
            try:
                record = AuditRecord.model_validate_json(line)
            except ValidationError as e:
                logger.warning("audit_line_unreadable", line=number, error=str(e))
                continue
            latest[record.invocation_id] = record
        return sorted(latest.values(), key=lambda r: r.started_at)

    def query(self, limit: Optional[int] = None, skill_name: Optional[str] = None) -> List[AuditRecord]:
        """Most recent attempts first, optionally filtered by skill."""
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        records = self.records()
        if skill_name:
            records = [r for r in records if r.skill_name == skill_name]
        records.reverse()
        return records[:limit] if limit is not None else records

    def get(self, invocation_id: str) -> Optional[AuditRecord]:
        for record in self.records():
            if record.invocation_id == invocation_id:
                return record
        return None

    def pending(self) -> List[AuditRecord]:
        """Attempts that never recorded an outcome."""
        return [r for r in self.records() if r.is_pending]

