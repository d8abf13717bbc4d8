"""Command-line interface for discvault."""

import logging
import os
import subprocess
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from discvault.archive.manifest import ArchiveManifest
from discvault.config import ArchiverConfig, create_sample_config, load_config
from discvault.core.daemon import ArchiveDaemon
from discvault.core.orchestrator import read_status_file
from discvault.drive.registry import DriveRegistry, DriveSnapshot
from discvault.error_handling import (
    ConfigurationError,
    DiscVaultError,
    check_dependencies,
)
from discvault.notify.ntfy import NtfyNotifier
from discvault.process_lock import ProcessLock
from discvault.queue.manager import JobQueue, JobState
from discvault.services.eject import EjectTool
from discvault.services.interfaces import TrayAction
from discvault.services.inventory import LsscsiInventory
from discvault.services.media_probe import BlkidMediaProbe

console = Console()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "discvault" / "config.toml"


def setup_logging(
    *,
    verbose: bool = False,
    config: ArchiverConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    show_path = level == logging.DEBUG
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_path=show_path),
    ]

    if config and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_dir / "discvault.log")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """discvault - Unattended optical disc archival across many drives."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose

        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError, RuntimeError) as e:
        config_error = ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config,
            solution="Run 'discvault config validate' to check your configuration file",
        )
        console.print(f"[red]Configuration Error:[/red] {config_error}")
        sys.exit(1)


@cli.group("config")
def config_cmd() -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: ArchiverConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Archive Directory", str(config.archive_dir))
    table.add_row("Log Directory", str(config.log_dir))
    table.add_row("Drives", ", ".join(config.drives) or "All cd/dvd drives")
    table.add_row("Decryption Library", config.dvdcss_library or "Disabled")
    table.add_row("Verify Mode", config.verify_mode)
    table.add_row("Hash Algorithm", config.hash_algorithm)
    table.add_row(
        "Retry Policy",
        f"{config.max_attempts} attempts, backoff {config.backoff_base:g}s "
        f"x{config.backoff_factor:g} (cap {config.backoff_cap:g}s)",
    )
    table.add_row("Ntfy Topic", config.ntfy_topic or "Not configured")

    console.print(table)


@config_cmd.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    config: ArchiverConfig = ctx.obj["config"]

    console.print("[bold]Configuration Validation[/bold]")
    errors = []

    for name, path in [
        ("Archive", config.archive_dir),
        ("Partial", config.partial_dir),
        ("Log", config.log_dir),
    ]:
        try:
            path.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/green] {name} directory: {path}")
        except OSError as e:
            console.print(f"[red]✗[/red] {name} directory: {e}")
            errors.append(f"{name} directory: {e}")

    for device in config.drives:
        if Path(device).exists():
            console.print(f"[green]✓[/green] Drive: {device}")
        else:
            console.print(f"[yellow]⚠[/yellow] Drive not found: {device}")

    for dep in check_dependencies():
        console.print(f"[red]✗[/red] {dep.message}")
        errors.append(dep.message)

    if errors:
        console.print(f"\n[red]Found {len(errors)} configuration errors[/red]")
        sys.exit(1)
    else:
        console.print("\n[green]Configuration is valid[/green]")


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon, drive and queue status."""
    config: ArchiverConfig = ctx.obj["config"]

    console.print("[bold]System Status[/bold]")

    holder = ProcessLock(config).find_holder()
    if holder:
        pid, mode = holder
        console.print(f"🟢 discvault: [green]Running in {mode} mode (PID {pid})[/green]")
    else:
        console.print("🔴 discvault: [red]Not running[/red]")

    missing = check_dependencies()
    if missing:
        names = ", ".join(dep.dependency for dep in missing)
        console.print(f"🔧 Tools: [red]Missing {names}[/red]")
    else:
        console.print("🔧 Tools: Available")

    if config.ntfy_topic:
        console.print("📱 Notifications: Configured")
    else:
        console.print("📱 Notifications: [yellow]Not configured[/yellow]")

    if holder:
        drives = read_status_file(config)
        if drives:
            console.print()
            console.print(format_drive_table(drives))

    console.print("\n[bold]Queue Status[/bold]")
    stats = JobQueue(config).get_queue_stats()
    if not stats:
        console.print("Queue is empty")
    else:
        table = Table()
        table.add_column("State")
        table.add_column("Count", justify="right")
        for state, count in stats.items():
            table.add_row(f"[{get_state_color(state)}]{state.title()}[/]", str(count))
        console.print(table)


@cli.command()
@click.option("--systemd", is_flag=True, help="Running under systemd (internal)")
@click.pass_context
def start(ctx: click.Context, systemd: bool) -> None:
    """Start the archival daemon."""
    config: ArchiverConfig = ctx.obj["config"]

    console.print("Checking system dependencies...")
    missing = check_dependencies()
    if missing:
        for dep in missing:
            dep.display_to_user()
        sys.exit(1)

    archive_daemon = ArchiveDaemon(config)
    try:
        if systemd or os.getenv("INVOCATION_ID"):
            archive_daemon.start_systemd_mode()
        else:
            archive_daemon.start_daemon()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running daemon; jobs on a drive are requeued."""
    config: ArchiverConfig = ctx.obj["config"]
    holder = ProcessLock(config).find_holder()

    if not holder:
        console.print("[yellow]discvault is not running[/yellow]")
        return

    pid, mode = holder
    console.print(f"[blue]Stopping discvault {mode} mode (PID {pid})...[/blue]")

    if ProcessLock.stop_process(pid):
        console.print("[green]discvault stopped[/green]")
    else:
        console.print(f"[red]Failed to stop discvault process {pid}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.option("--lines", "-n", type=int, default=10, help="Number of lines to show")
@click.pass_context
def show(ctx: click.Context, follow: bool, lines: int) -> None:
    """Show daemon log output with colors."""
    config: ArchiverConfig = ctx.obj["config"]
    log_file = config.log_dir / "discvault.log"

    if not log_file.exists():
        console.print("[yellow]No log file found[/yellow]")
        console.print(f"Expected location: {log_file}")
        sys.exit(1)

    cmd = ["tail", "-f", str(log_file)] if follow else ["tail", "-n", str(lines), str(log_file)]
    try:
        with subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        ) as proc:
            try:
                for line in proc.stdout:
                    _colorize_log_line(line.rstrip())
            except KeyboardInterrupt:
                proc.terminate()
                sys.exit(0)

        if proc.returncode != 0:
            console.print("[red]Error running tail command[/red]")
            sys.exit(1)

    except FileNotFoundError:
        console.print("[red]tail command not found - install coreutils[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def drives(ctx: click.Context) -> None:
    """List optical drives and their state."""
    config: ArchiverConfig = ctx.obj["config"]

    snapshots = None
    if ProcessLock(config).find_holder():
        snapshots = read_status_file(config)

    if snapshots is None:
        registry = DriveRegistry(LsscsiInventory(config), BlkidMediaProbe(config))
        try:
            registry.refresh()
        except DiscVaultError as e:
            e.display_to_user()
            sys.exit(1)
        snapshots = registry.snapshot()

    if not snapshots:
        console.print("No optical drives found")
        return

    console.print(format_drive_table(snapshots))


@cli.command()
@click.argument("device")
@click.option(
    "--wait",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds to wait for a running daemon to carry out the eject",
)
@click.pass_context
def eject(ctx: click.Context, device: str, wait: float) -> None:
    """Open the tray of an idle drive."""
    config: ArchiverConfig = ctx.obj["config"]

    if ProcessLock(config).find_holder():
        _request_tray_action(config, device, TrayAction.OPEN, wait)
        return

    try:
        ejected = EjectTool(config).eject(device)
    except DiscVaultError as e:
        e.display_to_user()
        sys.exit(1)

    if ejected:
        console.print(f"[green]Ejected {device}[/green]")
    else:
        console.print(f"[red]Could not eject {device}[/red]")
        sys.exit(1)


@cli.command("close")
@click.argument("device")
@click.option(
    "--wait",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds to wait for a running daemon to close the tray",
)
@click.pass_context
def close_tray(ctx: click.Context, device: str, wait: float) -> None:
    """Close the tray of a drive."""
    config: ArchiverConfig = ctx.obj["config"]

    if ProcessLock(config).find_holder():
        _request_tray_action(config, device, TrayAction.CLOSE, wait)
        return

    try:
        closed = EjectTool(config).close(device)
    except DiscVaultError as e:
        e.display_to_user()
        sys.exit(1)

    if closed:
        console.print(f"[green]Closed {device}[/green]")
    else:
        console.print(f"[red]Could not close {device}[/red]")
        sys.exit(1)


def _request_tray_action(
    config: ArchiverConfig,
    device: str,
    action: TrayAction,
    wait: float,
) -> None:
    """Hand a tray action to the running daemon, which owns the drives."""
    queue = JobQueue(config)
    request_id = queue.request_tray(device, action.value)

    deadline = time.monotonic() + wait
    result = queue.get_tray_request(request_id)
    while result and result[0] in ("pending", "taken") and time.monotonic() < deadline:
        time.sleep(0.25)
        result = queue.get_tray_request(request_id)

    outcome, message = result or ("pending", None)
    if outcome == "done":
        verb = "Ejected" if action is TrayAction.OPEN else "Closed"
        console.print(f"[green]{verb} {device}[/green]")
    elif outcome in ("pending", "taken"):
        console.print(
            f"[yellow]Tray {action.value} for {device} sent to the running daemon[/yellow]",
        )
    else:
        console.print(f"[red]{message or f'Could not {action.value} {device}'}[/red]")
        sys.exit(1)


@cli.group()
def job() -> None:
    """Archival job commands."""


@job.command("add")
@click.option("--label", "-l", help="Operator label for the disc")
@click.option(
    "--destination",
    "-d",
    type=click.Path(path_type=Path),
    help="Output file or directory (relative paths are under the archive dir)",
)
@click.option("--priority", "-p", type=int, default=0, help="Higher runs first")
@click.option("--drive", "affinity", help="Only run on this drive")
@click.option("--max-attempts", type=click.IntRange(min=1), help="Override retry limit")
@click.pass_context
def job_add(
    ctx: click.Context,
    label: str | None,
    destination: Path | None,
    priority: int,
    affinity: str | None,
    max_attempts: int | None,
) -> None:
    """Queue a disc for archival."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    new_job = queue.add_job(
        label,
        destination=destination,
        priority=priority,
        affinity=affinity,
        max_attempts=max_attempts,
    )
    console.print(f"[green]Queued job {new_job.job_id}: {new_job}[/green]")


@job.command("list")
@click.option(
    "--state",
    "-s",
    type=click.Choice([s.value for s in JobState]),
    help="Only show jobs in this state",
)
@click.pass_context
def job_list(ctx: click.Context, state: str | None) -> None:
    """List archival jobs."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    jobs = queue.get_jobs_by_state(JobState(state)) if state else queue.get_all_jobs()
    if not jobs:
        console.print("Queue is empty")
        return

    console.print(format_job_table(jobs))


@job.command("cancel")
@click.argument("job_id", type=int)
@click.pass_context
def job_cancel(ctx: click.Context, job_id: int) -> None:
    """Cancel a queued or running job."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    existing = queue.get_job(job_id)
    if not existing:
        console.print(f"[red]Job {job_id} not found[/red]")
        return

    if not queue.request_cancel(job_id):
        console.print(
            f"[yellow]Job {job_id} is already {existing.state.value}[/yellow]",
        )
        return

    if existing.state.is_active:
        console.print(
            f"[green]Cancellation requested; {existing.drive} will eject "
            "once the worker stops[/green]",
        )
    else:
        console.print(f"[green]Job {job_id} cancelled[/green]")


@job.command("retry")
@click.argument("job_id", type=int)
@click.pass_context
def job_retry(ctx: click.Context, job_id: int) -> None:
    """Requeue a failed or cancelled job with fresh attempts."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    existing = queue.get_job(job_id)
    if not existing:
        console.print(f"[red]Job {job_id} not found[/red]")
        return

    if queue.retry_job(job_id):
        console.print(f"[green]Job {job_id} requeued[/green]")
    else:
        console.print(
            f"[yellow]Job {job_id} is {existing.state.value}, not failed or cancelled[/yellow]",
        )


@job.command("remove")
@click.argument("job_id", type=int)
@click.pass_context
def job_remove(ctx: click.Context, job_id: int) -> None:
    """Remove a job that is not on a drive."""
    config: ArchiverConfig = ctx.obj["config"]

    if JobQueue(config).remove_job(job_id):
        console.print(f"[green]Removed job {job_id}[/green]")
    else:
        console.print(f"[yellow]Job {job_id} not found or still running[/yellow]")


@job.command("clear")
@click.option("--completed", is_flag=True, help="Only clear succeeded and cancelled jobs")
@click.option("--failed", is_flag=True, help="Only clear failed jobs")
@click.option(
    "--force",
    is_flag=True,
    help="Force clear all jobs including those on a drive",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def job_clear(
    ctx: click.Context,
    completed: bool,
    failed: bool,
    force: bool,
    yes: bool,
) -> None:
    """Clear jobs from the queue."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    if sum([completed, failed, force]) > 1:
        console.print("[red]Error: Cannot specify multiple clear options[/red]")
        return

    if completed:
        count = queue.clear_completed()
        console.print(f"[green]Cleared {count} completed jobs[/green]")
    elif failed:
        count = queue.clear_failed()
        console.print(f"[green]Cleared {count} failed jobs[/green]")
    elif force:
        if yes or click.confirm(
            "Are you sure you want to FORCE clear every job (including running ones)?",
        ):
            count = queue.clear_all(force=True)
            console.print(f"[green]Force cleared {count} jobs from queue[/green]")
    elif yes or click.confirm("Are you sure you want to clear the entire queue?"):
        try:
            count = queue.clear_all()
            console.print(f"[green]Cleared {count} jobs from queue[/green]")
        except RuntimeError as e:
            console.print(f"[red]Error: {e}[/red]")
            console.print(
                "[yellow]Wait for running jobs to finish or use --force[/yellow]",
            )


@job.command("health")
@click.pass_context
def job_health(ctx: click.Context) -> None:
    """Check job database health and schema integrity."""
    config: ArchiverConfig = ctx.obj["config"]
    queue = JobQueue(config)

    console.print("[bold blue]Database Health Check[/bold blue]")
    console.print()

    health = queue.check_database_health()

    if health["database_exists"]:
        console.print(f"[green]✓[/green] Database file exists: {queue.db_path}")
    else:
        console.print(f"[red]✗[/red] Database file missing: {queue.db_path}")
        return

    if health["database_readable"]:
        console.print("[green]✓[/green] Database is readable")
    else:
        console.print("[red]✗[/red] Database is not readable")
        if "error" in health:
            console.print(f"[red]Error: {health['error']}[/red]")
        return

    if health["table_exists"]:
        console.print("[green]✓[/green] Jobs table exists")
    else:
        console.print("[red]✗[/red] Jobs table missing")

    if health["integrity_check"]:
        console.print("[green]✓[/green] Database integrity check passed")
    else:
        console.print("[red]✗[/red] Database integrity check failed")

    console.print(f"[blue]Total Jobs:[/blue] {health['total_jobs']}")

    if health["missing_columns"]:
        console.print(
            f"[yellow]⚠[/yellow] Missing columns: {', '.join(health['missing_columns'])}",
        )
    else:
        console.print("[green]✓[/green] All expected columns present")


@cli.group()
def archive() -> None:
    """Archive record commands."""


@archive.command("list")
@click.option("--job", "job_id", type=int, help="Only records written by this job")
@click.pass_context
def archive_list(ctx: click.Context, job_id: int | None) -> None:
    """List archive records."""
    config: ArchiverConfig = ctx.obj["config"]
    manifest = ArchiveManifest(config.manifest_path)
    records = manifest.for_job(job_id) if job_id is not None else manifest.records()

    if not records:
        console.print("No archived discs")
        return

    table = Table()
    table.add_column("Hash")
    table.add_column("Label")
    table.add_column("Size", justify="right")
    table.add_column("Drive")
    table.add_column("Completed")
    table.add_column("Path")

    for record in records:
        label = record.disc_label or "-"
        if record.duplicate:
            label += " [yellow](duplicate)[/yellow]"
        table.add_row(
            record.content_hash[:12],
            label,
            format_file_size(record.byte_length),
            record.source_drive,
            record.completed_at.strftime("%Y-%m-%d %H:%M"),
            str(record.path),
        )

    console.print(table)


@archive.command("verify")
@click.argument("content_hash", required=False)
@click.pass_context
def archive_verify(ctx: click.Context, content_hash: str | None) -> None:
    """Re-hash archived content and compare it with its record."""
    config: ArchiverConfig = ctx.obj["config"]
    manifest = ArchiveManifest(config.manifest_path)

    records = manifest.find(content_hash) if content_hash else manifest.records()
    if not records:
        console.print("[yellow]No matching archive records[/yellow]")
        return

    bad = 0
    for record in records:
        if manifest.verify_record(record):
            console.print(f"[green]✓[/green] {record.path}")
        else:
            console.print(f"[red]✗[/red] {record.path}")
            bad += 1

    if bad:
        console.print(f"\n[red]{bad} of {len(records)} archives failed verification[/red]")
        sys.exit(1)
    console.print(f"\n[green]All {len(records)} archives verified[/green]")


@cli.command("test-notify")
@click.pass_context
def test_notify(ctx: click.Context) -> None:
    """Send a test notification."""
    config: ArchiverConfig = ctx.obj["config"]
    notifier = NtfyNotifier(config)

    if notifier.test_notification():
        console.print("[green]Test notification sent successfully[/green]")
    else:
        console.print("[red]Failed to send test notification[/red]")


# CLI utility functions
def format_file_size(size_bytes: int) -> str:
    """Format file size in bytes to human readable format."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


def get_state_color(state: object) -> str:
    """Get color code for job or drive state display."""
    state_colors = {
        "queued": "yellow",
        "retrying": "yellow",
        "running": "blue",
        "verifying": "blue",
        "succeeded": "green",
        "failed": "red",
        "cancelled": "dim",
        "unknown": "dim",
        "empty": "white",
        "disk_present": "green",
        "mounting": "blue",
        "reading": "blue",
        "ejecting": "blue",
        "error": "red",
        "offline": "red",
    }

    state_str = state.value if hasattr(state, "value") else str(state)
    return state_colors.get(state_str.lower(), "white")


def format_drive_table(drives: list[DriveSnapshot]) -> Table:
    table = Table()
    table.add_column("Device")
    table.add_column("Slot")
    table.add_column("Model")
    table.add_column("State")
    table.add_column("Disc")
    table.add_column("Job", justify="right")
    table.add_column("Failures", justify="right")

    for drive in drives:
        state = drive.state.value
        if drive.last_failure:
            state += f" ({drive.last_failure.value})"
        job_cell = str(drive.job_id) if drive.job_id is not None else "-"
        if drive.job_id is None and drive.reserved_for is not None:
            job_cell = f"held for {drive.reserved_for}"
        table.add_row(
            drive.device,
            drive.slot,
            f"{drive.vendor} {drive.model}".strip() or "-",
            f"[{get_state_color(drive.state)}]{state}[/]",
            drive.disc_label or "-",
            job_cell,
            str(drive.consecutive_failures),
        )

    return table


def format_job_table(jobs: list) -> Table:
    """Format jobs into a table."""
    table = Table()
    table.add_column("ID", justify="right")
    table.add_column("Label")
    table.add_column("State")
    table.add_column("Drive")
    table.add_column("Attempts", justify="right")
    table.add_column("Progress")
    table.add_column("Failure")

    for item in jobs:
        progress = f"{item.progress_percent:.0f}%" if item.state.is_active else "-"
        if item.progress_message and not item.state.is_terminal:
            progress = f"{progress} {item.progress_message}".strip(" -")
        failure = "-"
        if item.failure_kind:
            failure = f"{item.failure_kind.value}: {item.error_message or ''}".strip()
        elif item.error_message:
            failure = item.error_message

        table.add_row(
            str(item.job_id),
            item.label or "-",
            f"[{get_state_color(item.state)}]{item.state.value}[/]",
            item.affinity or item.drive or "-",
            f"{item.attempts}/{item.max_attempts}",
            progress,
            failure,
        )

    return table


def _colorize_log_line(line: str) -> None:
    """Colorize a single log line based on log level."""
    if " ERROR " in line:
        console.print(f"[red]{line}[/red]")
    elif " WARNING " in line:
        console.print(f"[yellow]{line}[/yellow]")
    elif " INFO " in line:
        console.print(f"[blue]{line}[/blue]")
    elif " DEBUG " in line:
        console.print(f"[dim]{line}[/dim]")
    else:
        console.print(line)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
