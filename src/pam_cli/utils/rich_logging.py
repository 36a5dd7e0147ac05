"""Terminal output with Rich"""

from typing import TYPE_CHECKING, Any, Iterable, Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme
from rich.traceback import install as install_rich_traceback

if TYPE_CHECKING:
    from ..models.schemas import BundleStatus, CacheStats, RefreshReport

PAM_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "muted": "dim",
        "skill": "bold blue",
        "session": "magenta",
        "stale": "red",
        "fresh": "green",
    }
)


class PamConsole:
    """Themed console used by every command."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(theme=PAM_THEME)

    def print(self, *args: Any, **kwargs: Any) -> None:
        self.console.print(*args, **kwargs)

    def print_banner(self) -> None:
        self.console.print(
            Panel.fit(
                "[bold cyan]PAM[/bold cyan] - Proactive Agentic Manager\n"
                "[dim]Chief of Staff CLI[/dim]",
                border_style="cyan",
            )
        )

    def print_heading(self, title: str) -> None:
        self.console.print(f"[bold]{title}[/bold]")
        self.console.print("─" * 40)

    def print_mapping(self, title: str, data: dict[str, Any]) -> None:
        table = Table(title=title, show_header=False, border_style="cyan")
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value", style="yellow")
        for key, value in sorted(data.items()):
            if isinstance(value, dict):
                value = ", ".join(f"{k}={v}" for k, v in value.items())
            table.add_row(key, "(not set)" if value is None else str(value))
        self.console.print(table)

    def print_bundle_statuses(self, statuses: Iterable["BundleStatus"]) -> None:
        table = Table(title="Context Bundles", border_style="cyan")
        table.add_column("Bundle", style="cyan", no_wrap=True)
        table.add_column("State")
        table.add_column("Age", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Details", style="dim")

        for status in statuses:
            state = "[stale]stale[/stale]" if status.is_stale else "[fresh]fresh[/fresh]"
            age = _format_age(status.age_seconds) if status.age_seconds is not None else "-"
            size = f"{status.size_bytes / 1024:.1f} KB" if status.cached else "-"
            details = []
            if status.stale_reason is not None:
                details.append(str(status.stale_reason))
            if status.remote_check_error:
                details.append(f"remote check failed: {status.remote_check_error}")
            table.add_row(status.name, state, age, size, ", ".join(details))

        self.console.print(table)

    def print_refresh_report(self, report: "RefreshReport") -> None:
        for outcome in report.outcomes:
            if outcome.success:
                self.print_success(f"{outcome.name} ({outcome.size_bytes / 1024:.1f} KB)")
            else:
                self.print_error(f"{outcome.name}: {outcome.error}")
        self.console.print(
            f"\n{len(report.succeeded)} refreshed, {len(report.failed)} failed, "
            f"{report.total_bytes / 1024:.2f} KB total"
        )

    def print_cache_stats(self, stats: "CacheStats") -> None:
        table = Table(title="Context Cache", show_header=False, border_style="cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow", justify="right")
        table.add_row("Bundles", str(stats.bundle_count))
        table.add_row("Total Size", f"{stats.total_bytes / 1024:.2f} KB")
        table.add_row("Estimated Tokens", f"~{stats.estimated_tokens:,}")
        table.add_row("Stale", str(stats.stale_count))
        oldest = stats.oldest_fetched_at.isoformat(timespec="seconds") if stats.oldest_fetched_at else "-"
        table.add_row("Oldest Fetch", oldest)
        self.console.print(table)

    def print_success(self, message: str) -> None:
        self.console.print(f"[success]✓[/success] {message}")

    def print_error(self, message: str) -> None:
        self.console.print(f"[error]✗[/error] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[warning]⚠[/warning] {message}")

    def print_info(self, message: str) -> None:
        self.console.print(f"[info]ℹ[/info] {message}")


def _format_age(seconds: float) -> str:
    if seconds < 3600:
        return f"{seconds / 60:.0f}m"
    if seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    return f"{seconds / 86400:.1f}d"


def setup_rich_logging() -> None:
    """
    Install Rich's traceback handler globally.

    Only used in verbose mode; structlog configuration is handled
    separately in utils/logging.py.
    """
    install_rich_traceback(
        show_locals=False,
        width=120,
        extra_lines=3,
        theme="monokai",
        word_wrap=False,
        suppress=[structlog],
    )
