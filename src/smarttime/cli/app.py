"""``smarttime`` command line.

Producer commands (``record``, ``write``, ``project``) only append files to
the queues. ``process`` and ``collect`` run one pipeline step in the
foreground; ``run`` keeps both timers going until interrupted.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from smarttime import __version__
from smarttime.config import SmartTimeConfig, load_config, save_config
from smarttime.errors import LockTimeoutError, SmartTimeError
from smarttime.pipeline.batch_processor import BatchProcessor
from smarttime.pipeline.processor import LOCK_TIMEOUT_MS, OperationQueueProcessor
from smarttime.pipeline.runtime import PipelineRuntime, build_store
from smarttime.storage.batches import TimeReport
from smarttime.storage.layout import StorageManager
from smarttime.storage.lock import FileLock
from smarttime.storage.operations import (
    WRITE_KINDS,
    ProjectChangeRequest,
    WriteFileRequest,
    write_operation,
)

console = Console()

app = typer.Typer(
    help="SmartTime: file activity to versioned daily time records",
    no_args_is_help=True,
)


def _config(ctx: typer.Context) -> SmartTimeConfig:
    return ctx.obj["config"]


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"smarttime {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (default: ~/.smarttime/config.toml)",
    ),
    root: Optional[Path] = typer.Option(
        None,
        "--root",
        help="Override the SmartTime root directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(config_path)
    if root is not None:
        config.root = root.expanduser().resolve()
    ctx.obj = {"config": config, "config_path": config_path}


@app.command()
def init(
    ctx: typer.Context,
    save: bool = typer.Option(False, "--save", help="Persist the effective config to disk"),
) -> None:
    """Create the directory layout and both git repositories."""
    config = _config(ctx)
    storage = StorageManager(config)
    try:
        storage.initialize()
        build_store(config).ensure()
    except (OSError, SmartTimeError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if save:
        written = save_config(config, ctx.obj["config_path"])
        console.print(f"Config File: [dim]{written}[/dim]")
    console.print(f"[green]✓[/green] SmartTime initialized at [cyan]{config.root}[/cyan]")


@app.command()
def record(
    ctx: typer.Context,
    workspace: str = typer.Argument(..., help="Workspace root directory"),
    file: str = typer.Argument(..., help="Touched file, relative to the workspace"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Current git branch"),
    timestamp: Optional[int] = typer.Option(None, "--timestamp", help="Epoch milliseconds (default: now)"),
) -> None:
    """Append one file-activity event to the raw queue."""
    storage = StorageManager(_config(ctx))
    name = storage.queue.add_entry(workspace, file, git_branch=branch, timestamp=timestamp)
    console.print(f"[green]✓[/green] Queued [dim]{name}[/dim]")


@app.command()
def write(
    ctx: typer.Context,
    file: str = typer.Argument(..., help="Target path, relative to the data directory"),
    body: Optional[str] = typer.Option(None, "--body", help="JSON object to write"),
    body_file: Optional[Path] = typer.Option(None, "--body-file", help="Read the JSON object from a file"),
    kind: str = typer.Option("write", "--type", "-t", help=f"Request type: {', '.join(WRITE_KINDS)}"),
) -> None:
    """Enqueue a write request for a file in the data tree."""
    if (body is None) == (body_file is None):
        console.print("[red]Error:[/red] Pass exactly one of --body or --body-file")
        raise typer.Exit(1)
    if kind not in WRITE_KINDS:
        console.print(f"[red]Error:[/red] Unknown request type {kind!r}")
        raise typer.Exit(1)

    try:
        raw = body if body is not None else body_file.read_text(encoding="utf-8")  # type: ignore[union-attr]
        parsed: Any = json.loads(raw)
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Error:[/red] Could not read body: {exc}")
        raise typer.Exit(1)
    if not isinstance(parsed, dict):
        console.print("[red]Error:[/red] Body must be a JSON object")
        raise typer.Exit(1)

    storage = StorageManager(_config(ctx))
    name = write_operation(storage.operations, WriteFileRequest(type=kind, file=file, body=parsed))
    console.print(f"[green]✓[/green] Write request queued: [dim]{name}[/dim]")


@app.command()
def project(
    ctx: typer.Context,
    action: str = typer.Argument(..., help="add, update, delete or addUnbound"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b"),
    directory: Optional[str] = typer.Option(None, "--directory", "-d"),
    name: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
) -> None:
    """Enqueue a change to the branch/directory project map."""
    try:
        request = ProjectChangeRequest(action=action, branch=branch, directory=directory, project=name)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    storage = StorageManager(_config(ctx))
    file_name = write_operation(storage.operations, request)
    console.print(f"[green]✓[/green] Project change queued: [dim]{file_name}[/dim]")


@app.command()
def process(
    ctx: typer.Context,
    batch: bool = typer.Option(False, "--batch", help="Enqueue processBatch first when raw events are waiting"),
) -> None:
    """Run one operation queue processing cycle in the foreground."""
    config = _config(ctx)
    storage = StorageManager(config)
    storage.initialize()
    if batch:
        BatchProcessor(storage.queue, storage.operations, config.interval_seconds).process()

    processor = OperationQueueProcessor(storage, build_store(config))
    result = processor.process_queue()
    if result.skipped:
        console.print("[yellow]Store is busy, nothing processed[/yellow]")
        raise typer.Exit(1)

    console.print(
        f"Processed [green]{len(result.processed)}[/green], "
        f"failed [red]{len(result.failed)}[/red], "
        f"dead-lettered [red]{len(result.dead_lettered)}[/red]"
    )


@app.command()
def collect(ctx: typer.Context) -> None:
    """Fold pending batches from earlier days into per-day documents and commit."""
    config = _config(ctx)
    storage = StorageManager(config)
    store = build_store(config)
    try:
        with FileLock(config.data).held(LOCK_TIMEOUT_MS):
            result = storage.collect_batches()
            if result.collected:
                store.commit("housekeeping: batch collection")
    except LockTimeoutError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(1)
    except (OSError, ValueError, SmartTimeError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if result.collected:
        console.print(f"[green]✓[/green] Collected {result.files_processed} batch file(s)")
    else:
        console.print("[dim]No batch files to collect[/dim]")


@app.command()
def report(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(None, "--date", help="Local date, YYYY-MM-DD (default: today)"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Show the merged time report for one day."""
    config = _config(ctx)
    try:
        target = date.fromisoformat(day) if day else date.today()
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid date: {day}")
        raise typer.Exit(1)

    storage = StorageManager(config)
    merged = storage.batches.merge_into_report(
        TimeReport(date=target.isoformat()),
        target,
        config.view_group_by_minutes,
    )

    if as_json:
        typer.echo(json.dumps(merged.to_dict(), indent=2))
        return
    if not merged.entries:
        console.print(f"[dim]No activity recorded on {target.isoformat()}[/dim]")
        return

    table = Table(title=f"Time report {target.isoformat()}", show_header=True, header_style="bold cyan")
    table.add_column("Time", style="cyan")
    table.add_column("Branch")
    table.add_column("Directory", style="dim")
    table.add_column("Files", justify="right")
    for entry in merged.entries:
        table.add_row(entry.key, entry.branch, entry.directory, str(len(entry.files)))
    console.print(table)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show queue depths, dead letters and store health."""
    config = _config(ctx)
    storage = StorageManager(config)
    store = build_store(config)
    lock = FileLock(config.data)

    def _count(directory: Path) -> int:
        try:
            return sum(1 for p in directory.iterdir() if p.suffix == ".json" and not p.name.startswith("."))
        except FileNotFoundError:
            return 0

    table = Table(title="SmartTime Status", show_header=False)
    table.add_column("Item", style="bold", no_wrap=True)
    table.add_column("Value")
    table.add_row("Root", str(config.root))
    table.add_row("Raw events queued", str(_count(config.queue)))
    table.add_row("Raw events in batch", str(len(storage.queue.batch_files())))
    table.add_row("Raw events dead-lettered", str(_count(config.queue_backup)))
    table.add_row("Operation requests pending", str(len(storage.operations.list_files())))
    table.add_row("Operation requests dead-lettered", str(_count(config.operation_queue_backup)))
    table.add_row("Pending batches", str(len(storage.batches.pending_files())))
    table.add_row("Last housekeeping", store.last_housekeeping() or "never")

    holder = lock.holder_pid()
    table.add_row("Store lock", f"held by PID {holder}" if holder else "free")
    if (config.data / ".git").exists():
        table.add_row("Data repository", "healthy" if store.is_working_healthy() else "[red]broken[/red]")
        table.add_row("Commits", str(store.head_commit_count()))
    else:
        table.add_row("Data repository", "[dim]not initialized[/dim]")
    console.print(table)


@app.command()
def run(ctx: typer.Context) -> None:
    """Start both pipeline timers and keep running until interrupted."""
    config = _config(ctx)
    runtime = PipelineRuntime(config)
    try:
        runtime.start()
    except (OSError, SmartTimeError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    started = datetime.now().strftime("%H:%M:%S")
    console.print(f"[green]✓[/green] SmartTime running since {started} (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping...[/dim]")
    finally:
        runtime.stop()
