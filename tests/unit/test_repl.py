"""
Tests for the interactive chat state machine.
"""

import pytest
from rich.console import Console

from pam_cli.core.reflection import ReflectionService
from pam_cli.exceptions import BackendError
from pam_cli.models.enums import MessageRole, ReplState, SessionStatus
from pam_cli.models.schemas import Reflection
from pam_cli.repl import ChatRepl, ReplCommand, classify
from pam_cli.utils.rich_logging import PAM_THEME, PamConsole


def scripted(*lines):
    feed = iter(lines)

    def read_line():
        try:
            return next(feed)
        except StopIteration:
            raise EOFError
    return read_line


@pytest.fixture
def console():
    return PamConsole(Console(theme=PAM_THEME, record=True, width=120))


@pytest.fixture
def make_repl(session_manager, fake_client, console):
    def factory(*lines):
        reflections = ReflectionService(fake_client, session_manager)
        return ChatRepl(session_manager, fake_client, reflections, console, read_line=scripted(*lines))
    return factory


class TestClassify:
    @pytest.mark.parametrize(
        "line,command",
        [
            ("quit", ReplCommand.QUIT),
            ("EXIT", ReplCommand.QUIT),
            (" q ", ReplCommand.QUIT),
            ("clear", ReplCommand.CLEAR),
            ("/reflect", ReplCommand.REFLECT),
            ("/status", ReplCommand.STATUS),
            ("help", ReplCommand.HELP),
            ("   ", ReplCommand.EMPTY),
            ("what's on today?", ReplCommand.MESSAGE),
        ],
    )
    def test_guards(self, line, command):
        assert classify(line) is command


class TestChatRepl:
    """Tests for loop transitions."""

    def test_messages_recorded_and_quit_closes(self, make_repl, session_manager, fake_client):
        """Test a turn records both sides and quit closes the session."""
        repl = make_repl("hello", "", "quit")
        session = session_manager.start_new()

        final = repl.run(session)

        assert repl.state is ReplState.CLOSED
        transcript = session_manager.export_transcript(final)
        assert [(m.role, m.text) for m in transcript] == [
            (MessageRole.USER, "hello"),
            (MessageRole.ASSISTANT, "Hello from PAM"),
        ]
        assert session_manager.get(session.session_id).status is SessionStatus.CLOSED
        fake_client.chat.assert_called_once_with(session.session_id, "hello")

    def test_clear_starts_new_session(self, make_repl, session_manager, clock):
        repl = make_repl("clear", "quit")
        first = session_manager.start_new()
        clock.advance(seconds=1)

        final = repl.run(first)

        assert final.session_id != first.session_id
        assert session_manager.get(first.session_id).status is SessionStatus.CLOSED

    def test_end_of_input_quits(self, make_repl, session_manager):
        repl = make_repl()
        session = session_manager.start_new()

        repl.run(session)

        assert repl.state is ReplState.CLOSED
        assert session_manager.active() is None

    def test_backend_error_keeps_loop_running(self, make_repl, session_manager, fake_client, console):
        fake_client.chat.side_effect = [BackendError("down", operation="chat", category="server_error"), "ok"]
        repl = make_repl("first", "second", "quit")

        final = repl.run(session_manager.start_new())

        texts = [m.text for m in session_manager.export_transcript(final)]
        assert texts == ["first", "second", "ok"]
        assert "chat failed" in console.console.export_text()

    def test_reflect_and_status(self, make_repl, session_manager, fake_client, console):
        fake_client.generate_reflection.return_value = Reflection(learnings=["Ship smaller PRs"])
        repl = make_repl("hi", "/reflect", "/status", "help", "quit")
        session = session_manager.start_new()

        repl.run(session)

        output = console.console.export_text()
        assert "Ship smaller PRs" in output
        assert session.session_id in output
        assert "/reflect" in output
        assert fake_client.generate_reflection.call_args.args[0] == [session.session_id]
