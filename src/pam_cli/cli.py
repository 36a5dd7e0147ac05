"""
Command-line interface for the PAM Chief of Staff.

Provides commands for configuration, chat, skills, memory, context
bundles, reflection and health checks.
"""

import functools
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
from rich.markdown import Markdown
from rich.table import Table

from . import __version__
from .api.client import BackendClient
from .api.storage import BundleSource, HttpBundleSource
from .core.audit import AuditLog
from .core.cache import ContextCacheManager
from .core.config import SECRET_MASK, ConfigStore, PamConfig, PamPaths
from .core.reflection import ReflectionService
from .core.sessions import LATEST, SessionManager
from .core.skills import SkillRegistry
from .exceptions import NotFoundError, PamError
from .models.schemas import Reflection
from .repl import ChatRepl, exchange
from .utils.logging import get_logger, setup_logging
from .utils.rich_logging import PamConsole, setup_rich_logging

logger = get_logger(__name__)

app = typer.Typer(
    name="pam",
    help="PAM Chief of Staff - chat, skills, memory and context from the command line",
    add_completion=False,
    no_args_is_help=True,
)

console = PamConsole()


@dataclass
class CliState:
    paths: PamPaths
    verbose: bool = False


def make_client(config: PamConfig) -> BackendClient:
    return BackendClient(config)


def make_source(client: BackendClient) -> BundleSource:
    return HttpBundleSource(client)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Render PamError as a message and a non-zero exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PamError as e:
            logger.debug("command_failed", error=e.to_dict())
            console.print_error(e.user_message)
            raise typer.Exit(code=e.exit_code)
        except KeyboardInterrupt:
            console.print_warning("Interrupted")
            raise typer.Exit(code=130)

    return wrapper


def _state(ctx: typer.Context) -> CliState:
    if ctx.obj is None:
        ctx.obj = CliState(paths=PamPaths.default())
    return ctx.obj


def _load_config(ctx: typer.Context) -> PamConfig:
    state = _state(ctx)
    config = ConfigStore(state.paths).load()
    setup_logging(config, state.verbose)
    return config


def _cache(ctx: typer.Context) -> ContextCacheManager:
    config = _load_config(ctx)
    return ContextCacheManager(config, make_source(make_client(config)), _state(ctx).paths.cache_dir)


def _registry(ctx: typer.Context) -> SkillRegistry:
    config = _load_config(ctx)
    audit = AuditLog(_state(ctx).paths.audit_file)
    return SkillRegistry(make_client(config), audit, config.user_email)


def _parse_params(params_json: Optional[str], pairs: Optional[List[str]]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if params_json:
        try:
            params = json.loads(params_json)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"not valid JSON: {e}", param_hint="--params")
        if not isinstance(params, dict):
            raise typer.BadParameter("must be a JSON object", param_hint="--params")

    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got '{pair}'", param_hint="--param")
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config_dir: Optional[Path] = typer.Option(
        None, "--config-dir", help="Directory holding config, sessions, cache and audit log"
    ),
):
    """PAM Chief of Staff CLI."""
    paths = PamPaths(config_dir.expanduser()) if config_dir else PamPaths.default()
    ctx.obj = CliState(paths=paths, verbose=verbose)
    setup_logging(None, verbose)
    if verbose:
        setup_rich_logging()


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]pam[/bold cyan] version {__version__}")
    console.print("PAM Chief of Staff CLI")


# ============================================================================
# config
# ============================================================================

config_app = typer.Typer(help="Configuration management commands", no_args_is_help=True)
app.add_typer(config_app, name="config")


@config_app.command("init")
@handle_errors
def config_init(
    ctx: typer.Context,
    email: Optional[str] = typer.Option(None, "--email", help="Your email address"),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Backend base URL"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="CLI API key"),
    freshness_window: Optional[int] = typer.Option(
        None, "--freshness-window", help="Seconds before a context bundle is stale"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
):
    """Create the config file."""
    store = ConfigStore(_state(ctx).paths)
    if email is None:
        email = typer.prompt("Your email")

    config = store.init(
        {
            "user_email": email,
            "api_url": api_url,
            "cli_api_key": api_key,
            "freshness_window_seconds": freshness_window,
        },
        force=force,
    )
    console.print_success(f"Configuration written to {store.path}")
    console.print_mapping("Configuration", store.show(config))


@config_app.command("set")
@handle_errors
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name"),
    value: str = typer.Argument(..., help="New value"),
):
    """Set a single configuration value."""
    store = ConfigStore(_state(ctx).paths)
    store.set(key, value)
    shown = SECRET_MASK if key in PamConfig.SECRET_FIELDS else value
    console.print_success(f"{key} = {shown}")


@config_app.command("show")
@handle_errors
def config_show(ctx: typer.Context):
    """Display the effective configuration with secrets masked."""
    store = ConfigStore(_state(ctx).paths)
    config = _load_config(ctx)
    console.print_mapping("Active Settings", store.show(config))


@config_app.command("path")
def config_path(ctx: typer.Context):
    """Print the config file location."""
    console.print(str(ConfigStore(_state(ctx).paths).path))


# ============================================================================
# chat
# ============================================================================


@app.command()
@handle_errors
def chat(
    ctx: typer.Context,
    message: Optional[str] = typer.Argument(None, help="Send one message and exit"),
    continue_session: bool = typer.Option(
        False, "--continue-session", "-c", help="Continue the most recent session"
    ),
):
    """Chat with PAM, interactively or with a single message."""
    config = _load_config(ctx)
    client = make_client(config)
    sessions = SessionManager(_state(ctx).paths.sessions_dir, config.user_email)

    if continue_session:
        try:
            session = sessions.resume(LATEST)
            console.print_info(f"Continuing session: {session.session_id}")
        except NotFoundError:
            console.print_info("No previous session found, starting new one")
            session = sessions.start_new()
    else:
        session = sessions.start_new()

    if message is None:
        ChatRepl(sessions, client, ReflectionService(client, sessions), console).run(session)
        return

    console.print(f"[bold]You:[/bold] {message}\n")
    with console.console.status("[muted]PAM is thinking...[/muted]"):
        reply = exchange(sessions, client, session, message)
    console.print("[bold cyan]PAM:[/bold cyan]")
    console.print(reply, markup=False)


# ============================================================================
# skills
# ============================================================================

skills_app = typer.Typer(help="List, test and invoke backend skills", no_args_is_help=True)
app.add_typer(skills_app, name="skills")


@skills_app.command("list")
@handle_errors
def skills_list(
    ctx: typer.Context,
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Include usage counts"),
):
    """List available skills."""
    skills = _registry(ctx).list()

    table = Table(title=f"Skills ({len(skills)})", border_style="cyan")
    table.add_column("Skill", style="skill", no_wrap=True)
    table.add_column("Description")
    table.add_column("Required", style="yellow")
    table.add_column("Risk", style="muted")
    if detailed:
        table.add_column("Uses", justify="right")
    for skill in sorted(skills, key=lambda s: s.name):
        name = skill.name if skill.enabled else f"{skill.name} [muted](disabled)[/muted]"
        row = [name, skill.description, ", ".join(skill.required_parameters), skill.risk_level]
        if detailed:
            row.append(str(skill.usage_count))
        table.add_row(*row)
    console.print(table)


@skills_app.command("describe")
@handle_errors
def skills_describe(ctx: typer.Context, name: str = typer.Argument(..., help="Skill name")):
    """Show a skill's parameter schema."""
    skill = _registry(ctx).describe(name)
    console.print(f"[skill]{skill.name}[/skill] - {skill.description}")
    console.print(f"Strict: {'yes' if skill.strict else 'no'}   Risk: {skill.risk_level}")

    table = Table(border_style="cyan")
    table.add_column("Parameter", style="cyan")
    table.add_column("Type")
    table.add_column("Required")
    table.add_column("Description", style="muted")
    for param, spec in skill.parameter_schema.items():
        table.add_row(param, str(spec.type), "yes" if spec.required else "no", spec.description)
    console.print(table)


@skills_app.command("test")
@handle_errors
def skills_test(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Skill name"),
    params: Optional[str] = typer.Option(None, "--params", "-p", help="Parameters as a JSON object"),
):
    """Dry-run a skill with sample or explicit parameters."""
    explicit = _parse_params(params, None) if params else None
    report = _registry(ctx).test(name, explicit)

    console.print(f"Testing [skill]{name}[/skill] with {json.dumps(report.params)}")
    for violation in report.violations:
        console.print_error(violation)
    if report.error:
        console.print_error(report.error)
    if report.passed:
        console.print_success(f"Skill test passed ({report.duration_ms:.0f}ms)")
        if report.output_preview:
            console.print(f"[muted]{report.output_preview}[/muted]")
    else:
        raise typer.Exit(code=1)


@skills_app.command("invoke")
@handle_errors
def skills_invoke(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Skill name"),
    params: Optional[str] = typer.Option(None, "--params", "-p", help="Parameters as a JSON object"),
    param: Optional[List[str]] = typer.Option(None, "--param", help="Single parameter as key=value"),
):
    """Invoke a skill."""
    payload = _parse_params(params, param)
    result = _registry(ctx).invoke(name, payload)

    console.print_success(f"{name} completed in {result.duration_ms:.0f}ms")
    if result.content is not None:
        console.print(result.content, markup=False)
    else:
        console.console.print_json(data=result.data)


@skills_app.command("log")
@handle_errors
def skills_log(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=0, help="Number of entries"),
    skill: Optional[str] = typer.Option(None, "--skill", help="Filter by skill name"),
    remote: bool = typer.Option(False, "--remote", help="Show the backend's skill log"),
):
    """Show recent skill invocations."""
    registry = _registry(ctx)

    table = Table(title="Skill Invocations", border_style="cyan")
    table.add_column("Started", style="muted")
    table.add_column("Skill", style="skill")
    table.add_column("Outcome")
    table.add_column("Duration", justify="right")
    table.add_column("Details", style="muted")
    for record in registry.log(limit=limit, skill_name=skill):
        duration = f"{record.duration_ms:.0f}ms" if record.duration_ms is not None else "-"
        table.add_row(
            record.started_at.isoformat(timespec="seconds"),
            record.skill_name,
            str(record.outcome),
            duration,
            record.reason or record.result_summary or "",
        )
    console.print(table)

    if remote:
        entries = registry.client.skill_log(skill, limit)
        remote_table = Table(title="Backend Skill Log", border_style="cyan")
        remote_table.add_column("When", style="muted")
        remote_table.add_column("Skill", style="skill")
        remote_table.add_column("User")
        remote_table.add_column("Result")
        remote_table.add_column("Duration", justify="right")
        for entry in entries:
            remote_table.add_row(
                entry.created_at,
                entry.skill_key,
                entry.user_email,
                "[success]ok[/success]" if entry.success else "[error]failed[/error]",
                f"{entry.duration_ms}ms",
            )
        console.print(remote_table)


# ============================================================================
# memory
# ============================================================================

memory_app = typer.Typer(help="Search and manage PAM's long-term memory", no_args_is_help=True)
app.add_typer(memory_app, name="memory")


@memory_app.command("status")
@handle_errors
def memory_status(
    ctx: typer.Context,
    deep: bool = typer.Option(False, "--deep", help="Include context source diagnostics"),
):
    """Show memory statistics."""
    client = make_client(_load_config(ctx))
    status = client.memory_status()
    console.print_mapping(
        "Memory",
        {
            "memories": status.total_memories,
            "sessions": status.total_sessions,
            "reflections": status.total_reflections,
        },
    )
    if deep:
        console.print_mapping("Context Sources", client.context_debug())


@memory_app.command("search")
@handle_errors
def memory_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(10, "--limit", "-n", min=0, help="Maximum results"),
):
    """Search memories."""
    results = make_client(_load_config(ctx)).search_memories(query, limit)
    if not results:
        console.print_warning("No matching memories")
        return
    for i, result in enumerate(results, start=1):
        console.print(f"[bold]{i}. {result.title}[/bold] [muted]({result.relevance_score:.2f})[/muted]")
        console.print(f"   [session]{result.session_id}[/session] {result.created_at}")
        if result.content:
            console.print(f"   {result.content[:200]}")


@memory_app.command("list")
@handle_errors
def memory_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=0, help="Maximum entries"),
):
    """List recent memories."""
    entries = make_client(_load_config(ctx)).list_memories(limit)
    table = Table(title="Recent Memories", border_style="cyan")
    table.add_column("Created", style="muted")
    table.add_column("Session", style="session")
    table.add_column("Preview")
    for entry in entries:
        table.add_row(entry.created_at.isoformat(timespec="minutes"), entry.session_id, entry.preview)
    console.print(table)


@memory_app.command("index")
@handle_errors
def memory_index(
    ctx: typer.Context,
    content: Optional[str] = typer.Argument(None, help="Text to remember"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read content from a file"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
):
    """Index new content into memory."""
    if file is not None:
        content = file.read_text(encoding="utf-8")
    if not content:
        raise typer.BadParameter("provide CONTENT or --file")
    memory_id = make_client(_load_config(ctx)).index_memory(content, tag or [])
    console.print_success(f"Indexed memory {memory_id}")


@memory_app.command("clear")
@handle_errors
def memory_clear(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User whose memories to clear (default: configured email)"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete all memories for a user."""
    config = _load_config(ctx)
    user = user or config.user_email
    if not force:
        typer.confirm(f"Clear all memories for {user}? This cannot be undone.", abort=True)
    count = make_client(config).clear_memories(user)
    console.print_success(f"Cleared {count} memories for {user}")


# ============================================================================
# context
# ============================================================================

context_app = typer.Typer(help="Inspect and refresh cached context bundles", no_args_is_help=True)
app.add_typer(context_app, name="context")


@context_app.command("status")
@handle_errors
def context_status(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Bundle name (default: all)"),
    freshness: bool = typer.Option(False, "--freshness", help="Check remote versions"),
):
    """Show bundle freshness."""
    statuses = _cache(ctx).status(name, freshness=freshness)
    console.print_bundle_statuses(statuses.values())


@context_app.command("show")
@handle_errors
def context_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Bundle name"),
    raw: bool = typer.Option(False, "--raw", help="Print without Markdown rendering"),
):
    """Print a cached bundle."""
    bundle = _cache(ctx).get(name)
    console.print(
        f"[bold]{bundle.name}[/bold] [muted]({bundle.object_name}, "
        f"fetched {bundle.fetched_at.isoformat(timespec='seconds')})[/muted]\n"
    )
    if raw:
        console.print(bundle.content, markup=False)
    else:
        console.print(Markdown(bundle.content))


@context_app.command("refresh")
@handle_errors
def context_refresh(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Bundle name (default: all)"),
):
    """Fetch bundles from remote storage."""
    report = _cache(ctx).refresh(name)
    console.print_refresh_report(report)
    if not report.all_ok:
        raise typer.Exit(code=1)


@context_app.command("stats")
@handle_errors
def context_stats(ctx: typer.Context):
    """Show cache statistics."""
    console.print_cache_stats(_cache(ctx).stats())


@context_app.command("list")
@handle_errors
def context_list(ctx: typer.Context):
    """List known bundles and their remote objects."""
    console.print_mapping("Context Bundles", _cache(ctx).describe())


@context_app.command("evict")
@handle_errors
def context_evict(ctx: typer.Context, name: str = typer.Argument(..., help="Bundle name")):
    """Delete one cached bundle."""
    cache = _cache(ctx)
    if not cache.evict(name):
        raise NotFoundError("context bundle", cache.resolve(name))
    console.print_success(f"Evicted {cache.resolve(name)}")


@context_app.command("clear")
@handle_errors
def context_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every cached bundle."""
    if not yes:
        typer.confirm("Delete all cached context bundles?", abort=True)
    count = _cache(ctx).clear()
    console.print_success(f"Removed {count} cached bundle(s)")


# ============================================================================
# reflect / health
# ============================================================================


@app.command()
@handle_errors
def reflect(
    ctx: typer.Context,
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session id (default: today's sessions)"),
    export: bool = typer.Option(False, "--export", help="Export the reflection as Markdown"),
    output: Path = typer.Option(Path("."), "--output", "-o", help="Directory for the exported file"),
):
    """Generate a reflection from session transcripts."""
    config = _load_config(ctx)
    client = make_client(config)
    service = ReflectionService(client, SessionManager(_state(ctx).paths.sessions_dir, config.user_email))

    console.print_heading("PAM Reflection Loop")
    console.print(f"User: [info]{config.user_email}[/info]")
    console.print(f"Session: {session}" if session else "Scope: Today's sessions")

    with console.console.status("[muted]Generating reflection...[/muted]"):
        result, session_ids = service.reflect(session)
    logger.debug("reflection_generated", sessions=session_ids)

    _print_reflection(result)

    if export:
        path = service.export_markdown(result, output)
        console.print_success(f"Exported to: {path}")

    try:
        reflection_id = service.save(result)
        console.print_success(f"Reflection saved (ID: {reflection_id})")
    except PamError as e:
        console.print_warning(f"Failed to save reflection: {e.user_message}")


def _print_reflection(reflection: Reflection) -> None:
    console.print("\n[bold cyan]" + "═" * 50 + "[/bold cyan]")
    console.print("[bold cyan]REFLECTION SUMMARY[/bold cyan]")
    console.print("[bold cyan]" + "═" * 50 + "[/bold cyan]")

    console.print("\n[success]What Worked:[/success]")
    for item in reflection.what_worked:
        console.print(f"  [success]✓[/success] {item}")
    console.print("\n[warning]What Could Be Improved:[/warning]")
    for item in reflection.what_failed:
        console.print(f"  [warning]•[/warning] {item}")
    console.print("\n[info]Key Learnings:[/info]")
    for learning in reflection.learnings:
        console.print(f"  💡 {learning}")
    if reflection.action_items:
        console.print("\n[bold magenta]Action Items:[/bold magenta]")
        for i, item in enumerate(reflection.action_items, start=1):
            console.print(f"  {i}. {item}")


@app.command()
@handle_errors
def health(
    ctx: typer.Context,
    deep: bool = typer.Option(False, "--deep", help="Probe database and context source too"),
):
    """Check backend connectivity."""
    config = _load_config(ctx)
    client = make_client(config)
    console.print_heading("PAM Health Check")
    console.print(f"Endpoint: {config.api_url}")

    failures = 0
    checks: List[tuple] = [("API", client.health)]
    if deep:
        checks += [("Database", client.health_detailed), ("Context source", client.context_debug)]

    for label, probe in checks:
        try:
            result = probe()
        except PamError as e:
            failures += 1
            console.print_error(f"{label}: {e.user_message}")
            continue
        detail = result if isinstance(result, str) else result.get("status", "ok")
        console.print_success(f"{label}: {detail}")

    if failures:
        raise typer.Exit(code=1)


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
