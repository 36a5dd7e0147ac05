"""
Tests for the append-only audit log.
"""

from datetime import timedelta

import pytest

from pam_cli.core.audit import AuditLog
from pam_cli.exceptions import StateWriteError
from pam_cli.models.enums import AuditOutcome
from pam_cli.models.schemas import AuditRecord, utc_now


def make_record(invocation_id, skill="jira-query", minutes_ago=0):
    return AuditRecord(
        invocation_id=invocation_id,
        skill_name=skill,
        params={"query": "x"},
        started_at=utc_now() - timedelta(minutes=minutes_ago),
    )


class TestAuditLog:
    """Tests for AuditLog append and query."""

    def test_empty_log(self, audit_log):
        """Test a missing file reads as an empty log."""
        assert audit_log.query() == []

    def test_finalize_replaces_pending(self, audit_log):
        """Test re-appending an id collapses to the latest entry."""
        pending = make_record("inv-1")
        audit_log.append(pending)
        audit_log.append(pending.finalize(AuditOutcome.SUCCESS, result_summary="ok"))

        records = audit_log.records()

        assert len(records) == 1
        assert records[0].outcome is AuditOutcome.SUCCESS
        assert records[0].duration_ms is not None

    def test_refinalize_overwrites_in_place(self, audit_log):
        """Test re-appending an invocation id replaces its line rather than adding one."""
        audit_log.append(make_record("inv-0", minutes_ago=5))
        pending = make_record("inv-1")
        audit_log.append(pending)
        final = pending.finalize(AuditOutcome.SUCCESS, result_summary="ok")
        audit_log.append(final)
        audit_log.append(final)

        lines = audit_log.path.read_text().splitlines()

        assert len(lines) == 2
        assert '"inv-0"' in lines[0]
        assert audit_log.get("inv-1").outcome is AuditOutcome.SUCCESS

    def test_entries_never_removed(self, audit_log):
        """Test finalizing one attempt leaves the others on disk."""
        first = make_record("inv-1")
        audit_log.append(first)
        audit_log.append(make_record("inv-2"))
        audit_log.append(first.finalize(AuditOutcome.FAILURE, reason="server_error: boom"))

        lines = audit_log.path.read_text().splitlines()
        assert len(lines) == 2
        assert audit_log.get("inv-2").is_pending

    def test_query_newest_first_with_limit(self, audit_log):
        """Test query orders by started_at descending and honors limit."""
        audit_log.append(make_record("old", minutes_ago=30))
        audit_log.append(make_record("new", minutes_ago=1))
        audit_log.append(make_record("mid", minutes_ago=10))

        assert [r.invocation_id for r in audit_log.query()] == ["new", "mid", "old"]
        assert [r.invocation_id for r in audit_log.query(limit=2)] == ["new", "mid"]

    def test_query_rejects_negative_limit(self, audit_log):
        for i in range(3):
            audit_log.append(make_record(f"inv-{i}", minutes_ago=10 - i))

        with pytest.raises(ValueError):
            audit_log.query(limit=-1)
        assert len(audit_log.query(limit=0)) == 0
        assert len(audit_log.query()) == 3

    def test_query_by_skill(self, audit_log):
        audit_log.append(make_record("a", skill="jira-query"))
        audit_log.append(make_record("b", skill="web-fetch"))

        assert [r.invocation_id for r in audit_log.query(skill_name="web-fetch")] == ["b"]

    def test_pending_survives_reload(self, paths):
        """Test a record never finalized stays visible as pending."""
        AuditLog(paths.audit_file).append(make_record("crashed"))

        pending = AuditLog(paths.audit_file).pending()

        assert [r.invocation_id for r in pending] == ["crashed"]

    def test_unreadable_line_skipped(self, audit_log):
        """Test a damaged line does not hide the other records."""
        audit_log.append(make_record("good"))
        with audit_log.path.open("a") as f:
            f.write("{broken\n")

        assert [r.invocation_id for r in audit_log.records()] == ["good"]

    def test_write_failure_keeps_previous_log(self, audit_log, mocker):
        """Test a failed write raises StateWriteError and leaves the log intact."""
        audit_log.append(make_record("first"))
        mocker.patch("pam_cli.core.audit.atomic_write_text", side_effect=OSError("read-only"))

        with pytest.raises(StateWriteError):
            audit_log.append(make_record("second"))

        mocker.stopall()
        assert [r.invocation_id for r in audit_log.records()] == ["first"]

    def test_get(self, audit_log):
        audit_log.append(make_record("abc"))
        assert audit_log.get("abc").skill_name == "jira-query"
        assert audit_log.get("missing") is None
