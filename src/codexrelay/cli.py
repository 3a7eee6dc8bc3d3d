"""
codex-relay CLI - command-line interface for the session relay.

Runs the bridge and exposes operator commands for setting up projects,
syncing and replaying sessions, and inspecting the mapping store.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from codexrelay.logging_config import setup_logging

app = typer.Typer(
    name="codex-relay",
    help="codex-relay - Mirror Codex sessions into chat threads",
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)

SIMULATOR_HELP = (
    "Type '<thread_id> <message>' to talk to Codex in a thread, or "
    "'thread <channel_id> <name>' to open a thread in a project channel."
)


def _init_logging(context: str) -> None:
    # Fall back to console logging if file logging is not permitted
    try:
        setup_logging(context=context)
    except PermissionError:
        logging.basicConfig(level=logging.INFO)


async def _handle_simulator_line(chat, line: str) -> Any:
    """
    Act on one line typed into `run --simulate`.

    "thread <channel_id> <name>" opens a thread as a user would;
    "<thread_id> <text>" posts text into that thread.
    """
    from codexrelay.chat.base import ChatPlatformError

    line = line.strip()
    if not line:
        return None

    try:
        if line.startswith("thread "):
            parts = line.split(maxsplit=2)
            if len(parts) < 3:
                console.print(f"[yellow]{SIMULATOR_HELP}[/yellow]")
                return None
            return await chat.open_thread(parts[1], parts[2])

        parts = line.split(maxsplit=1)
        if len(parts) < 2:
            console.print(f"[yellow]{SIMULATOR_HELP}[/yellow]")
            return None
        return await chat.post_message(parts[0], parts[1])
    except ChatPlatformError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return None


def _read_simulator_input(
    loop: asyncio.AbstractEventLoop, chat, tasks: set[asyncio.Task]
) -> bool:
    """Feed stdin lines to the simulator. Returns False if stdin cannot be watched."""

    def _on_input() -> None:
        line = sys.stdin.readline()
        if not line:
            loop.remove_reader(sys.stdin.fileno())
            return
        task = loop.create_task(_handle_simulator_line(chat, line))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    try:
        loop.add_reader(sys.stdin.fileno(), _on_input)
    except (NotImplementedError, OSError, ValueError) as e:
        logger.warning(f"Simulator console input unavailable: {e}")
        return False
    return True


async def _serve(bridge, simulator=None) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await bridge.start()
    console.print("[green]✓ Watching for Codex sessions[/green] (Ctrl+C to stop)")

    input_tasks: set[asyncio.Task] = set()
    reading = simulator is not None and _read_simulator_input(
        loop, simulator, input_tasks
    )
    if reading:
        console.print(f"[dim]{SIMULATOR_HELP}[/dim]")
    try:
        await stop.wait()
    finally:
        if reading:
            loop.remove_reader(sys.stdin.fileno())
        if input_tasks:
            await asyncio.gather(*list(input_tasks), return_exceptions=True)
        await bridge.stop()
        await bridge.watcher.wait_for_handlers()


def _run_bridge_operation(operation: Callable[[Any], Awaitable[Any]]) -> Any:
    """
    Run one operator operation against the configured chat platform.

    Performs the startup checks first; operation errors exit with status 1.
    """
    from codexrelay.agent.codex_exec import CodexExecRuntime
    from codexrelay.bridge import RelayBridge, create_chat_platform
    from codexrelay.chat.base import ChatPlatformError
    from codexrelay.config import settings
    from codexrelay.exceptions import RelayOperationError
    from codexrelay.startup import StartupCheckError, run_startup_checks

    try:
        startup = run_startup_checks(settings)
    except StartupCheckError as e:
        console.print(str(e), markup=False)
        raise typer.Exit(1)

    try:
        bridge = RelayBridge(
            startup.store,
            create_chat_platform(settings),
            CodexExecRuntime(codex_bin=settings.codex_bin),
            settings,
        )
        try:
            return asyncio.run(operation(bridge))
        except (RelayOperationError, ChatPlatformError) as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)
    finally:
        startup.close()


@app.command()
def run(
    simulate: bool = typer.Option(
        False,
        "--simulate",
        help="Use the in-memory chat platform, print its traffic and read user input",
    ),
) -> None:
    """
    Start the relay bridge.

    Watches the Codex sessions directory and mirrors every session into a
    chat thread until interrupted.
    """
    from codexrelay.agent.codex_exec import CodexExecRuntime
    from codexrelay.bridge import RelayBridge, create_chat_platform
    from codexrelay.chat.simulator import SimulatedChatPlatform
    from codexrelay.config import settings
    from codexrelay.startup import StartupCheckError, run_startup_checks

    _init_logging("relay")

    console.print("[bold green]Starting codex-relay...[/bold green]")
    console.print(f"  Sessions: {settings.sessions_directory}")
    console.print(f"  Database: {settings.database_file}")
    console.print(f"  Chat platform: {'simulator' if simulate else settings.chat_platform}")
    console.print(f"  Model: {settings.default_model}")
    console.print()

    try:
        startup = run_startup_checks(settings)
    except StartupCheckError as e:
        console.print(str(e), markup=False)
        raise typer.Exit(1)

    try:
        if simulate:
            chat = SimulatedChatPlatform()
            chat.on_message_sent = lambda sent: console.print(
                f"→ {sent.target_id}  {sent.text}", markup=False
            )
        else:
            chat = create_chat_platform(settings)

        runtime = CodexExecRuntime(
            codex_bin=settings.codex_bin,
            sandbox_mode=settings.sandbox_mode,
            approval_mode=settings.approval_mode,
            default_model=settings.default_model,
        )
        bridge = RelayBridge(startup.store, chat, runtime, settings)
        asyncio.run(_serve(bridge, simulator=chat if simulate else None))
    finally:
        startup.close()

    console.print("[bold]codex-relay stopped[/bold]")


@app.command()
def scan(
    archived: bool = typer.Option(False, "--archived", help="Include archived sessions"),
) -> None:
    """List Codex sessions grouped by project directory."""
    from codexrelay.config import settings
    from codexrelay.parsers.codex import scan_all_sessions

    _init_logging("cli")

    projects = scan_all_sessions(
        settings.sessions_directory,
        settings.archived_sessions_directory,
        include_archived=archived or settings.sync_archived,
    )
    if not projects:
        console.print(f"[yellow]No sessions found in {settings.sessions_directory}[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Codex sessions")
    table.add_column("Project")
    table.add_column("Sessions", justify="right")
    table.add_column("Latest")
    table.add_column("Model")
    for project_path, sessions in projects.items():
        latest = sessions[0]
        table.add_row(
            project_path,
            str(len(sessions)),
            latest.timestamp or "-",
            latest.model or "default",
        )
    console.print(table)


@app.command()
def projects() -> None:
    """List projects registered in the mapping store."""
    from codexrelay.config import settings
    from codexrelay.db.connection import Database
    from codexrelay.models.db import ThreadStatus
    from codexrelay.store import MappingStore

    _init_logging("cli")

    database = Database.from_settings(settings)
    try:
        database.init()
        store = MappingStore(database)
        rows = store.list_projects()
        if not rows:
            console.print("[yellow]No projects registered[/yellow]")
            raise typer.Exit(0)

        table = Table(title="Registered projects")
        table.add_column("Name")
        table.add_column("Path")
        table.add_column("Channel")
        table.add_column("Threads", justify="right")
        table.add_column("Active", justify="right")
        for project in rows:
            threads = store.list_threads(project.id)
            active = sum(1 for t in threads if t.status == ThreadStatus.ACTIVE.value)
            table.add_row(
                project.project_name,
                project.project_path,
                project.channel_id,
                str(len(threads)),
                str(active),
            )
        console.print(table)
    finally:
        database.dispose()


@app.command()
def setup(
    path: str = typer.Argument(..., help="Project directory"),
    name: Optional[str] = typer.Option(
        None, "--name", help="Display name (default: directory name)"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", help="Codex model for this project"
    ),
) -> None:
    """
    Register a project directory.

    Creates the project's chat channel; threads created in it talk to Codex.
    """
    _init_logging("cli")

    project = _run_bridge_operation(
        lambda bridge: bridge.setup_project(path, name=name, model=model)
    )
    console.print(f"[green]✓ Project set up[/green] {project.project_name}")
    console.print(f"  Path: {project.project_path}")
    console.print(f"  Channel: {project.channel_id}")


@app.command("sync-projects")
def sync_projects() -> None:
    """Create channels and threads for every project found in the Codex sessions."""
    _init_logging("cli")

    summary = _run_bridge_operation(lambda bridge: bridge.sync_projects())
    console.print(
        f"[bold]Projects:[/bold] {summary.created} created, {summary.skipped} skipped"
    )
    console.print(f"[bold]Threads created:[/bold] {summary.threads_created}")
    for detail in summary.details:
        console.print(f"  {detail}", markup=False)


@app.command("remove-project")
def remove_project(
    name: str = typer.Argument(..., help="Project name (case-insensitive)"),
) -> None:
    """
    Remove a project.

    Deletes the project's chat channel and its thread mappings.
    """
    _init_logging("cli")

    project = _run_bridge_operation(lambda bridge: bridge.remove_project(name))
    console.print(f"[green]✓ Removed project[/green] {project.project_name}")


@app.command()
def reconcile() -> None:
    """Merge duplicate project and thread mappings."""
    from codexrelay.config import settings
    from codexrelay.startup import StartupCheckError, run_startup_checks

    _init_logging("cli")

    try:
        startup = run_startup_checks(settings)
    except StartupCheckError as e:
        console.print(str(e), markup=False)
        raise typer.Exit(1)

    report = startup.reconcile_report
    startup.close()

    if not report.changed:
        console.print("[green]✓ No duplicates found[/green]")
        return

    console.print("[bold]Reconciled:[/bold]")
    console.print(f"  Projects merged: {report.projects_merged}")
    console.print(f"  Threads moved: {report.threads_moved}")
    console.print(f"  Paths rewritten: {report.paths_rewritten}")
    console.print(f"  Threads merged: {report.threads_merged}")
    console.print(f"  Messages moved: {report.messages_moved}")


@app.command()
def replay(
    session_id: str = typer.Argument(..., help="Codex session id (prefix allowed)"),
    limit: int = typer.Option(0, help="Show only the last N messages (0 = all)"),
    to_thread: Optional[str] = typer.Option(
        None, "--to-thread", help="Post the messages into this chat thread instead"
    ),
) -> None:
    """
    Print a session's user and assistant messages.

    With --to-thread, the messages are replayed into the chat thread in
    rate-limited batches.
    """
    from codexrelay.config import settings
    from codexrelay.parsers.codex import parse_session_messages, scan_all_sessions
    from codexrelay.sync.coordinator import ASSISTANT_PREFIX, USER_PREFIX

    _init_logging("cli")

    projects = scan_all_sessions(
        settings.sessions_directory,
        settings.archived_sessions_directory,
        include_archived=True,
    )
    matches = [
        session
        for sessions in projects.values()
        for session in sessions
        if session.id.startswith(session_id)
    ]
    if not matches:
        console.print(f"[bold red]Error:[/bold red] Session not found: {session_id}")
        raise typer.Exit(1)
    if len({s.id for s in matches}) > 1:
        console.print(f"[bold red]Error:[/bold red] Ambiguous session id: {session_id}")
        for session in matches:
            console.print(f"  {session.id}  {session.cwd}")
        raise typer.Exit(1)

    session = matches[0]
    if to_thread:
        result = _run_bridge_operation(
            lambda bridge: bridge.replay_session(to_thread, session.id)
        )
        console.print(
            f"[green]✓ Replayed[/green] {result.sent} messages into {to_thread}"
            f" ({result.user_count} user, {result.assistant_count} assistant)"
        )
        if result.failed:
            console.print(f"[yellow]{result.failed} messages failed to send[/yellow]")
        return

    messages = [
        m
        for m in parse_session_messages(session.file_path)
        if m.role == "user" or (m.role == "assistant" and m.kind == "text")
    ]
    if limit > 0:
        messages = messages[-limit:]

    console.print(f"[bold blue]Session:[/bold blue] {session.id}")
    console.print(f"  Project: {session.cwd}")
    console.print(f"  Model: {session.model or 'default'}")
    console.print()
    for message in messages:
        prefix = USER_PREFIX if message.role == "user" else ASSISTANT_PREFIX
        console.print(f"{prefix}\n{message.text}\n", markup=False)

    console.print(f"[bold]{len(messages)} messages[/bold]")


if __name__ == "__main__":
    app()
