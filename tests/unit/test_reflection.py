"""
Tests for reflection transcripts and export.
"""

from datetime import datetime, timezone

import pytest

from pam_cli.core.reflection import ReflectionService, to_markdown
from pam_cli.exceptions import NotFoundError
from pam_cli.models.enums import MessageRole
from pam_cli.models.schemas import Reflection


@pytest.fixture
def service(fake_client, session_manager):
    return ReflectionService(fake_client, session_manager)


@pytest.fixture
def reflection():
    return Reflection(
        what_worked=["Focused standup"],
        what_failed=["Too many context switches"],
        learnings=["Batch reviews"],
        action_items=["Block focus time", "Triage Jira"],
    )


class TestTranscript:
    def test_single_session(self, service, session_manager):
        session = session_manager.start_new()
        session_manager.append_message(session, MessageRole.USER, "hi")

        session_ids, entries = service.transcript(session.session_id)

        assert session_ids == [session.session_id]
        assert entries[0]["text"] == "hi"
        assert entries[0]["role"] == "user"

    def test_today_concatenated_in_start_order(self, service, session_manager, clock):
        first = session_manager.start_new()
        session_manager.append_message(first, MessageRole.USER, "a")
        clock.advance(minutes=5)
        second = session_manager.start_new()
        session_manager.append_message(second, MessageRole.USER, "b")

        session_ids, entries = service.transcript()

        assert session_ids == [first.session_id, second.session_id]
        assert [e["text"] for e in entries] == ["a", "b"]

    def test_nothing_today(self, service):
        with pytest.raises(NotFoundError):
            service.transcript()

    def test_unknown_session(self, service):
        with pytest.raises(NotFoundError):
            service.transcript("cos_20240101_000000_00000000")


class TestExport:
    def test_markdown_sections(self, reflection):
        text = to_markdown(reflection, datetime(2024, 6, 3, 17, 30, tzinfo=timezone.utc))

        assert text.startswith("# PAM Reflection\n*Generated: 2024-06-03 17:30 UTC*")
        assert "## What Worked\n- Focused standup" in text
        assert "## What Could Be Improved\n- Too many context switches" in text
        assert "## Action Items\n1. Block focus time\n2. Triage Jira" in text

    def test_no_action_items_section_when_empty(self):
        assert "Action Items" not in to_markdown(Reflection(learnings=["x"]))

    def test_export_file_name(self, service, reflection, temp_dir):
        now = datetime(2024, 6, 3, 17, 30, 5, tzinfo=timezone.utc)

        path = service.export_markdown(reflection, temp_dir, now=now)

        assert path.name == "reflection_20240603_173005.md"
        assert "Batch reviews" in path.read_text()
