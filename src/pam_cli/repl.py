"""
Interactive chat loop.

The loop is an explicit state machine driven by one blocking read per
iteration::

    idle -> awaiting_input -> processing -> idle
                                        \\-> closed

Special inputs (``quit``, ``clear``, ``/reflect``, ``/status``, ``help``
and empty lines) are guards evaluated once in the processing state.
"""

from enum import Enum
from typing import Callable, Optional

from .api.client import BackendClient
from .core.reflection import ReflectionService
from .core.sessions import SessionManager
from .exceptions import PamError
from .models.enums import MessageRole, ReplState
from .models.schemas import Session
from .utils.logging import get_logger
from .utils.rich_logging import PamConsole

logger = get_logger(__name__)


class ReplCommand(str, Enum):
    QUIT = "quit"
    CLEAR = "clear"
    REFLECT = "reflect"
    STATUS = "status"
    HELP = "help"
    EMPTY = "empty"
    MESSAGE = "message"


_COMMANDS = {
    "quit": ReplCommand.QUIT,
    "exit": ReplCommand.QUIT,
    "q": ReplCommand.QUIT,
    "clear": ReplCommand.CLEAR,
    "/reflect": ReplCommand.REFLECT,
    "/status": ReplCommand.STATUS,
    "help": ReplCommand.HELP,
    "": ReplCommand.EMPTY,
}


def classify(line: str) -> ReplCommand:
    return _COMMANDS.get(line.strip().lower(), ReplCommand.MESSAGE)


def exchange(sessions: SessionManager, client: BackendClient, session: Session, text: str) -> str:
    """
    Send one chat turn and record both sides in the session.

    The user message is recorded before the request so a failed turn still
    appears in the transcript.
    """
    sessions.append_message(session, MessageRole.USER, text)
    reply = client.chat(session.session_id, text)
    sessions.append_message(session, MessageRole.ASSISTANT, reply)
    return reply


class ChatRepl:
    """
    Read-eval-print loop over one active session.

    Example:
        repl = ChatRepl(sessions, client, reflections, PamConsole())
        repl.run(sessions.start_new())
    """

    def __init__(
        self,
        sessions: SessionManager,
        client: BackendClient,
        reflections: ReflectionService,
        console: PamConsole,
        read_line: Optional[Callable[[], str]] = None,
    ):
        self.sessions = sessions
        self.client = client
        self.reflections = reflections
        self.console = console
        self.read_line = read_line or self._prompt
        self.state = ReplState.IDLE
        self.session: Optional[Session] = None

    def _prompt(self) -> str:
        return self.console.console.input("[bold]You[/bold]: ")

    def run(self, session: Session) -> Session:
        """Drive the loop until the user quits; returns the last session used."""
        self.session = session
        self.state = ReplState.IDLE
        self._print_header()
        line = ""

        while self.state is not ReplState.CLOSED:
            if self.state is ReplState.IDLE:
                self.state = ReplState.AWAITING_INPUT
            elif self.state is ReplState.AWAITING_INPUT:
                try:
                    line = self.read_line()
                except (EOFError, KeyboardInterrupt):
                    line = "quit"
                self.state = ReplState.PROCESSING
            elif self.state is ReplState.PROCESSING:
                self.state = self._process(line)

        return self.session

    def _process(self, line: str) -> ReplState:
        command = classify(line)
        logger.debug("repl_input", command=str(command.value))

        if command is ReplCommand.QUIT:
            self.sessions.close(self.session)
            self.console.print("\n👋 Goodbye!")
            return ReplState.CLOSED

        if command is ReplCommand.CLEAR:
            self.sessions.close(self.session)
            self.session = self.sessions.start_new()
            self.console.print_success(f"Started new session: {self.session.session_id}")
        elif command is ReplCommand.HELP:
            self._print_help()
        elif command is ReplCommand.STATUS:
            self.console.print(f"Session: [session]{self.session.session_id}[/session]")
            self.console.print(f"User: {self.sessions.user_email or '(unknown)'}")
            self.console.print(f"Messages: {len(self.session.messages)}")
        elif command is ReplCommand.REFLECT:
            self._reflect()
        elif command is ReplCommand.MESSAGE:
            self._send(line.strip())

        return ReplState.IDLE

    def _send(self, text: str) -> None:
        try:
            with self.console.console.status("[muted]PAM is thinking...[/muted]"):
                reply = exchange(self.sessions, self.client, self.session, text)
        except PamError as e:
            logger.error("chat_turn_failed", session_id=self.session.session_id, error=str(e))
            self.console.print_error(e.user_message)
            return
        self.console.print("[bold cyan]PAM:[/bold cyan]")
        self.console.print(reply, markup=False)
        self.console.print()

    def _reflect(self) -> None:
        try:
            reflection, _ = self.reflections.reflect(self.session.session_id)
        except PamError as e:
            self.console.print_error(f"Reflection failed: {e.user_message}")
            return
        self.console.print("\n[bold cyan]Reflection:[/bold cyan]")
        for learning in reflection.learnings:
            self.console.print(f"  💡 {learning}")

    def _print_header(self) -> None:
        self.console.print_banner()
        self.console.print("Type 'quit' or 'exit' to end, 'clear' to reset session")
        self.console.print(f"Session: [muted]{self.session.session_id}[/muted]\n")

    def _print_help(self) -> None:
        self.console.print("\n[bold]Commands:[/bold]")
        self.console.print("  [cyan]quit, exit, q[/cyan]  - End the chat session")
        self.console.print("  [cyan]clear[/cyan]          - Start a new session")
        self.console.print("  [cyan]/reflect[/cyan]       - Generate reflection from this session")
        self.console.print("  [cyan]/status[/cyan]        - Show current session info")
        self.console.print("  [cyan]help[/cyan]           - Show this help\n")
