"""Command-line interface for caldav-tasks."""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from caldav_tasks import __version__
from caldav_tasks.api.network import NetworkMonitor
from caldav_tasks.api.scheduler import SyncScheduler
from caldav_tasks.core.config import AppConfig, load_config
from caldav_tasks.core.errors import TransportError
from caldav_tasks.core.export import EXPORT_FORMATS, export_tasks_as_markdown
from caldav_tasks.core.ical import looks_like_task_json, parse_ics_file, parse_json_tasks_file
from caldav_tasks.core.models import Priority, ServerType, Task
from caldav_tasks.core.query import TaskQueryCache
from caldav_tasks.core.store import TaskStore
from caldav_tasks.core.sync import OFFLINE_MESSAGE, SyncEngine, SyncStats
from caldav_tasks.sources.caldav_adapter import CalDAVTransport
from caldav_tasks.utils.colors import contrast_text_color
from caldav_tasks.utils.credentials import CredentialStore
from caldav_tasks.utils.db import StorePersister, TasksDB
from caldav_tasks.utils.logging import setup_logging

# Create Typer app
app = typer.Typer(
    name="caldav-tasks",
    help="Local-first task manager synchronized with CalDAV servers",
    add_completion=False,
)

# Create console for rich output
console = Console()

PRIORITY_STYLES = {
    Priority.HIGH: "red",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "blue",
    Priority.NONE: "dim",
}


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        exists=True,
        dir_okay=False,
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
) -> None:
    """caldav-tasks - tasks that sync with any CalDAV server."""
    ctx.ensure_object(dict)
    cfg = load_config(config_file)
    ctx.obj["config"] = cfg
    setup_logging(cfg, level_name=log_level)


async def _open_store(cfg: AppConfig, persist: bool = True) -> tuple[TaskStore, StorePersister]:
    store = TaskStore(defaults=cfg.defaults)
    persister = StorePersister(store, TasksDB(cfg.db_path))
    await persister.load()
    if persist:
        persister.attach()
    return store, persister


def _build_engine(cfg: AppConfig, store: TaskStore) -> tuple[SyncEngine, NetworkMonitor]:
    credentials = CredentialStore()
    transport = CalDAVTransport(password_lookup=credentials.get_password)
    network = NetworkMonitor(cfg.sync.network_probe_url, timeout=cfg.sync.network_probe_timeout)
    return SyncEngine(store, transport, network), network


def _find_task(store: TaskStore, ref: str) -> Task:
    """Resolve a task by id or unique id prefix."""
    matches = [t for t in store.get_tasks() if t.id == ref or t.id.startswith(ref)]
    if len(matches) != 1:
        console.print(f"[red]{'No' if not matches else 'Ambiguous'} task matching: {ref}[/red]")
        raise typer.Exit(1)
    return matches[0]


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        console.print(f"[red]Invalid date (expected YYYY-MM-DD): {value}[/red]")
        raise typer.Exit(1)
    return parsed.replace(tzinfo=timezone.utc)


def _print_stats(stats: SyncStats) -> None:
    table = Table(title="Sync Results")
    table.add_column("Direction", style="cyan")
    table.add_column("Created", style="green", justify="right")
    table.add_column("Updated", style="yellow", justify="right")
    table.add_column("Deleted", style="red", justify="right")

    table.add_row(
        "Server → local",
        str(stats.created_local),
        str(stats.updated_local),
        str(stats.deleted_local),
    )
    table.add_row(
        "Local → server",
        str(stats.created_remote),
        str(stats.updated_remote),
        str(stats.deleted_remote),
    )
    console.print(table)
    if stats.errors > 0:
        console.print(f"[red]Errors: {stats.errors}[/red]")


@app.command()
def version() -> None:
    """Show version information."""
    import platform

    table = Table(title="caldav-tasks Version Information")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.platform())

    console.print(table)


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", "-s", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", "-i", help="Create a default configuration file"),
) -> None:
    """Manage configuration."""
    cfg = ctx.obj["config"]

    if init:
        config_path = cfg.default_config_path
        if config_path.exists():
            console.print(f"[yellow]Config file already exists:[/yellow] {config_path}")
            if not typer.confirm("Overwrite existing config?"):
                console.print("[dim]Config creation cancelled[/dim]")
                raise typer.Exit(0)

        cfg.save_to_file(config_path)
        console.print(f"[green]✓ Config file created:[/green] {config_path}")
        return

    if show:
        table = Table(title="caldav-tasks Configuration")
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value", style="green")

        table.add_row("Data Directory", str(cfg.general.data_dir))
        table.add_row("Config File", str(cfg.general.config_file or "Not set"))
        table.add_row("Log Level", cfg.general.log_level)

        table.add_row("", "")
        table.add_row("[bold]Sync[/bold]", "")
        table.add_row("Auto Sync", "✓" if cfg.sync.auto_sync else "✗")
        table.add_row("Interval", f"{cfg.sync.sync_interval} min")
        table.add_row("Sync On Startup", "✓" if cfg.sync.sync_on_startup else "✗")

        table.add_row("", "")
        table.add_row("[bold]Task Defaults[/bold]", "")
        table.add_row("Calendar", cfg.defaults.default_calendar_id or "Not set")
        table.add_row("Priority", cfg.defaults.default_priority.value)
        table.add_row("Subtasks On Delete", cfg.defaults.delete_subtasks_with_parent)

        console.print(table)
    else:
        console.print(f"[yellow]Configuration file:[/yellow] {cfg.general.config_file or 'Not set'}")
        console.print(f"[yellow]Data directory:[/yellow] {cfg.general.data_dir}")
        console.print("\n[dim]Use --show to display full configuration[/dim]")
        console.print("[dim]Use --init to create a default config file[/dim]")


# Account subcommand group
account_app = typer.Typer(help="Manage CalDAV accounts")
app.add_typer(account_app, name="account")


@account_app.command("add")
def account_add(
    ctx: typer.Context,
    server_url: str = typer.Option(..., "--url", "-u", help="CalDAV server URL"),
    username: str = typer.Option(..., "--username", help="CalDAV username"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name for the account"),
    server_type: ServerType = typer.Option(
        ServerType.GENERIC, "--server-type", "-t", help="Server flavour (decides the principal URL)"
    ),
) -> None:
    """Add an account, verify the connection and import its task calendars."""
    cfg = ctx.obj["config"]
    password = typer.prompt(f"Enter CalDAV password for {username}", hide_input=True)

    async def run_add():
        store, persister = await _open_store(cfg)
        account = store.create_account(
            name=name or server_url,
            server_url=server_url,
            username=username,
            server_type=server_type,
        )

        credentials = CredentialStore()
        try:
            credentials.set_password(account.id, password)
        except Exception:
            console.print("[yellow]Keyring unavailable, storing password with the account[/yellow]")
            account = store.update_account(account.id, password=password)

        transport = CalDAVTransport(password_lookup=lambda _: password)
        try:
            await transport.reconnect(account)
            calendars = await transport.fetch_calendars(account.id)
        except TransportError as e:
            store.delete_account(account.id)
            credentials.delete_password(account.id)
            await persister.flush()
            console.print(f"[red]Failed to connect: {e}[/red]")
            raise typer.Exit(1)

        for calendar in calendars:
            store.add_calendar(account.id, calendar)
        await persister.flush()

        console.print(f"[green]✓ Added account {account.name} with {len(calendars)} calendars[/green]")

    asyncio.run(run_add())


@account_app.command("list")
def account_list(ctx: typer.Context) -> None:
    """List accounts and their calendars."""
    cfg = ctx.obj["config"]

    async def run_list():
        store, _ = await _open_store(cfg, persist=False)
        accounts = store.get_accounts()
        if not accounts:
            console.print("[yellow]No accounts configured[/yellow]")
            return

        table = Table(title="Accounts")
        table.add_column("Account", style="cyan", no_wrap=True)
        table.add_column("Calendar", style="green")
        table.add_column("Tasks", justify="right")
        table.add_column("Last Sync", style="dim")

        for account in accounts:
            last_sync = account.last_sync.strftime("%Y-%m-%d %H:%M") if account.last_sync else "Never"
            if not account.calendars:
                table.add_row(account.name, "-", "0", last_sync)
            for calendar in account.calendars:
                count = len(store.get_tasks_by_calendar(calendar.id))
                table.add_row(account.name, calendar.display_name, str(count), last_sync)

        console.print(table)

    asyncio.run(run_list())


@account_app.command("remove")
def account_remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account name or id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Remove an account together with its calendars and local tasks."""
    cfg = ctx.obj["config"]

    async def run_remove():
        store, persister = await _open_store(cfg)
        account = next((a for a in store.get_accounts() if name in (a.id, a.name)), None)
        if account is None:
            console.print(f"[red]Account not found: {name}[/red]")
            raise typer.Exit(1)

        if not yes and not typer.confirm(f"Remove {account.name} and its local tasks?"):
            console.print("[dim]Cancelled[/dim]")
            raise typer.Exit(0)

        store.delete_account(account.id)
        CredentialStore().delete_password(account.id)
        await persister.flush()
        console.print(f"[green]✓ Removed account {account.name}[/green]")

    asyncio.run(run_remove())


@app.command()
def sync(
    ctx: typer.Context,
    calendar: Optional[str] = typer.Option(
        None, "--calendar", help="Only sync this calendar (id or display name)"
    ),
) -> None:
    """Synchronize tasks with the configured servers."""
    cfg = ctx.obj["config"]

    async def run_sync():
        store, persister = await _open_store(cfg)
        if not store.get_accounts():
            console.print("[yellow]No accounts configured[/yellow]")
            console.print("[dim]Add one with: caldav-tasks account add[/dim]")
            raise typer.Exit(1)

        engine, network = _build_engine(cfg, store)
        await network.check()

        if calendar:
            target = next(
                (
                    c
                    for a in store.get_accounts()
                    for c in a.calendars
                    if calendar in (c.id, c.display_name)
                ),
                None,
            )
            if target is None:
                console.print(f"[red]Calendar not found: {calendar}[/red]")
                raise typer.Exit(1)
            if not network.is_online:
                stats = None
                engine.last_sync_error = OFFLINE_MESSAGE
            else:
                try:
                    stats = await engine.sync_calendar(target.id)
                except Exception as e:
                    console.print(f"[red]Sync failed: {e}[/red]")
                    await persister.flush()
                    raise typer.Exit(1)
        else:
            stats = await engine.sync_all()

        await persister.flush()

        if engine.last_sync_error:
            console.print(f"[red]{engine.last_sync_error}[/red]")
        if stats is not None:
            _print_stats(stats)
            console.print("[bold green]Sync completed![/bold green]")

    asyncio.run(run_sync())


@app.command()
def run(ctx: typer.Context) -> None:
    """Keep syncing in the background until interrupted."""
    cfg = ctx.obj["config"]

    async def run_forever():
        store, persister = await _open_store(cfg)
        engine, network = _build_engine(cfg, store)
        scheduler = SyncScheduler(engine, store, cfg, network)

        await scheduler.start()
        console.print("[green]Sync scheduler running. Press Ctrl+C to stop.[/green]")
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()
            await persister.flush()

    try:
        asyncio.run(run_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


# Task subcommand group
tasks_app = typer.Typer(help="Work with tasks")
app.add_typer(tasks_app, name="tasks")


@tasks_app.command("list")
def tasks_list(
    ctx: typer.Context,
    calendar: Optional[str] = typer.Option(None, "--calendar", help="Calendar id"),
    tag: Optional[str] = typer.Option(None, "--tag", help="Tag name"),
    search: str = typer.Option("", "--search", "-q", help="Search title, description and subtasks"),
    hide_completed: bool = typer.Option(False, "--hide-completed", help="Hide completed tasks"),
) -> None:
    """List tasks as an indented tree."""
    cfg = ctx.obj["config"]

    async def run_list():
        store, _ = await _open_store(cfg, persist=False)
        if tag:
            found = store.find_tag_by_name(tag)
            if found is None:
                console.print(f"[red]Tag not found: {tag}[/red]")
                raise typer.Exit(1)
            store.set_active_tag(found.id)
        elif calendar:
            store.set_active_calendar(calendar)
        else:
            store.set_all_tasks_view()
        store.set_search_query(search)
        store.set_show_completed_tasks(not hide_completed)

        views = TaskQueryCache(store)
        rows = views.visible_tree()
        if not rows:
            console.print("[yellow]No tasks[/yellow]")
            return

        table = Table(title="Tasks")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Task")
        table.add_column("Priority")
        table.add_column("Due", style="magenta")
        table.add_column("Tags")

        for row in rows:
            task = store.get_task(row.id)
            checkbox = "[green]✓[/green]" if task.completed else "☐"
            tag_names = ", ".join(t.name for t in (store.get_tag(i) for i in task.tags) if t)
            table.add_row(
                task.id[:8],
                f"{'  ' * row.depth}{checkbox} {task.title}",
                f"[{PRIORITY_STYLES[task.priority]}]{task.priority.value}[/]",
                task.due_date.strftime("%Y-%m-%d") if task.due_date else "",
                tag_names,
            )
        console.print(table)
        views.close()

    asyncio.run(run_list())


@tasks_app.command("add")
def tasks_add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    calendar: Optional[str] = typer.Option(None, "--calendar", help="Calendar id"),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent task id (prefix)"),
    priority: Optional[Priority] = typer.Option(None, "--priority", help="Task priority"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date (YYYY-MM-DD)"),
    description: str = typer.Option("", "--description", "-d", help="Task notes"),
    tags: Optional[list[str]] = typer.Option(None, "--tag", "-t", help="Tag name (repeatable)"),
) -> None:
    """Create a task locally; it is uploaded on the next sync."""
    cfg = ctx.obj["config"]
    due_date = _parse_date(due)

    async def run_add():
        store, persister = await _open_store(cfg)
        fields = {"title": title, "description": description}
        if calendar:
            fields["calendar_id"] = calendar
        if priority is not None:
            fields["priority"] = priority
        if due_date is not None:
            fields.update(due_date=due_date, due_date_all_day=True)
        if tags:
            fields["tags"] = [store.ensure_tag(name).id for name in tags]

        task = store.create_task(**fields)
        if parent:
            parent_task = _find_task(store, parent)
            if not store.set_task_parent(task.id, parent_task.uid):
                console.print("[yellow]Could not nest the task under that parent[/yellow]")

        await persister.flush()
        console.print(f"[green]✓ Created task {task.id[:8]}:[/green] {task.title}")

    asyncio.run(run_add())


@tasks_app.command("done")
def tasks_done(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id (prefix)"),
) -> None:
    """Toggle a task's completion."""
    cfg = ctx.obj["config"]

    async def run_done():
        store, persister = await _open_store(cfg)
        task = store.toggle_task_complete(_find_task(store, task_id).id)
        await persister.flush()
        state = "completed" if task.completed else "reopened"
        console.print(f"[green]✓ Task {state}:[/green] {task.title}")

    asyncio.run(run_done())


@tasks_app.command("collapse")
def tasks_collapse(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id (prefix)"),
) -> None:
    """Toggle whether a task's subtasks are hidden in listings."""
    cfg = ctx.obj["config"]

    async def run_collapse():
        store, persister = await _open_store(cfg)
        task = store.toggle_task_collapsed(_find_task(store, task_id).id)
        await persister.flush()
        state = "collapsed" if task.is_collapsed else "expanded"
        console.print(f"[green]✓ Task {state}:[/green] {task.title}")

    asyncio.run(run_collapse())


@tasks_app.command("rm")
def tasks_rm(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id (prefix)"),
    keep_children: Optional[bool] = typer.Option(
        None,
        "--keep-children/--delete-children",
        help="Keep subtasks as top-level tasks (default: from config)",
    ),
) -> None:
    """Delete a task; the server copy is removed on the next sync."""
    cfg = ctx.obj["config"]

    async def run_rm():
        store, persister = await _open_store(cfg)
        task = _find_task(store, task_id)
        delete_children = None if keep_children is None else not keep_children
        store.delete_task(task.id, delete_children=delete_children)
        await persister.flush()
        console.print(f"[green]✓ Deleted task:[/green] {task.title}")

    asyncio.run(run_rm())


# Tag subcommand group
tags_app = typer.Typer(help="Work with tags")
app.add_typer(tags_app, name="tags")


@tags_app.command("list")
def tags_list(ctx: typer.Context) -> None:
    """List tags with their task counts."""
    cfg = ctx.obj["config"]

    async def run_list():
        store, _ = await _open_store(cfg, persist=False)
        views = TaskQueryCache(store)
        counts = views.tag_counts()
        if not counts:
            console.print("[yellow]No tags[/yellow]")
            return

        table = Table(title="Tags")
        table.add_column("Tag")
        table.add_column("Tasks", justify="right")
        for tag in store.get_tags():
            style = f"{contrast_text_color(tag.color)} on {tag.color}"
            table.add_row(f"[{style}] {tag.name} [/]", str(counts.get(tag.id, 0)))
        console.print(table)
        views.close()

    asyncio.run(run_list())


@app.command("export")
def export_tasks(
    ctx: typer.Context,
    fmt: str = typer.Option("ics", "--format", "-f", help="ics, json, md or csv"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
    calendar: Optional[str] = typer.Option(None, "--calendar", help="Only export this calendar"),
) -> None:
    """Export tasks to a file."""
    cfg = ctx.obj["config"]
    if fmt not in EXPORT_FORMATS:
        console.print(f"[red]Unknown format: {fmt}[/red] (choose from {', '.join(EXPORT_FORMATS)})")
        raise typer.Exit(1)

    async def run_export():
        store, _ = await _open_store(cfg, persist=False)
        tasks = store.get_tasks_by_calendar(calendar) if calendar else store.get_tasks()
        wire = [store.wire_task(t) for t in tasks]

        if fmt == "md":
            # Nest children under their parents
            by_parent: dict[str | None, list[Task]] = {}
            uids = {t.uid for t in wire}
            for task in wire:
                parent = task.parent_uid if task.parent_uid in uids else None
                by_parent.setdefault(parent, []).append(task)
            content = export_tasks_as_markdown(
                by_parent.get(None, []), children_of=lambda t: by_parent.get(t.uid, [])
            )
        else:
            exporter, _ = EXPORT_FORMATS[fmt]
            content = exporter(wire)

        if output is None:
            sys.stdout.write(content)
            return
        output.write_text(content, encoding="utf-8")
        console.print(f"[green]✓ Exported {len(wire)} tasks to {output}[/green]")

    asyncio.run(run_export())


@app.command("import")
def import_tasks(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help=".ics or .json file"),
    calendar: Optional[str] = typer.Option(None, "--calendar", help="Destination calendar id"),
) -> None:
    """Import tasks from an .ics bundle or a JSON export."""
    cfg = ctx.obj["config"]
    content = file.read_text(encoding="utf-8")

    if file.suffix.lower() == ".json":
        records = parse_json_tasks_file(content)
        if records and not looks_like_task_json(records):
            records = []
    else:
        records = parse_ics_file(content)

    if not records:
        console.print(f"[yellow]No tasks found in {file}[/yellow]")
        raise typer.Exit(1)

    async def run_import():
        store, persister = await _open_store(cfg)
        if calendar and store.get_calendar(calendar) is None:
            console.print(f"[red]Calendar not found: {calendar}[/red]")
            raise typer.Exit(1)
        imported = store.import_tasks(records, calendar_id=calendar)
        await persister.flush()
        console.print(f"[green]✓ Imported {len(imported)} tasks[/green]")

    asyncio.run(run_import())


def main_entry() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logging.exception("Unhandled exception")
        sys.exit(1)


if __name__ == "__main__":
    main_entry()
