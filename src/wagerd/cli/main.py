"""wagerd CLI application."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import psutil
import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from wagerd import __version__
from wagerd.config import (
    DEFAULT_PID_FILE,
    ConfigError,
    create_default_config,
    ensure_state_dir,
    load_config,
    resolve_config_path,
)
from wagerd.core.orchestrator import Orchestrator
from wagerd.core.supervisor import Supervisor
from wagerd.models import DeploymentMode, LoggingConfig

app = typer.Typer(
    name="wagerd",
    help="wagerd - worker supervisor and task scheduler for the betting pipeline",
    no_args_is_help=True,
)
console = Console()


def setup_logging(verbose: bool = False, config: LoggingConfig | None = None) -> None:
    """Setup logging configuration."""
    logger.remove()

    level = "DEBUG" if verbose else (config.level if config else "INFO")

    # Console logging
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    if config and config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=level,
            rotation=config.rotation,
            retention=config.retention,
        )


def get_daemon_pid() -> int | None:
    """Get the PID of the running daemon."""
    if not DEFAULT_PID_FILE.exists():
        return None

    try:
        pid = int(DEFAULT_PID_FILE.read_text().strip())
        if Supervisor.check_pid(pid):
            return pid
        # Stale PID file
        DEFAULT_PID_FILE.unlink()
        return None
    except (ValueError, FileNotFoundError):
        return None


def write_daemon_pid(pid: int) -> None:
    """Write the daemon PID to file."""
    ensure_state_dir()
    DEFAULT_PID_FILE.write_text(str(pid))


def remove_daemon_pid() -> None:
    """Remove the daemon PID file."""
    if DEFAULT_PID_FILE.exists():
        DEFAULT_PID_FILE.unlink()


def _exit_daemon(code: int) -> None:
    """Remove the PID file, then end the process with the shutdown exit code."""
    remove_daemon_pid()
    os._exit(code)


def _load_or_exit(config_path: Path | None):
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)


@app.command("run")
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to wagerd.yaml"),
    mode: Optional[DeploymentMode] = typer.Option(None, "--mode", "-m", help="Override deployment mode"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Start all workers and the scheduler in the foreground."""
    setup_logging(verbose)

    pid = get_daemon_pid()
    if pid:
        console.print(f"[yellow]wagerd is already running (PID: {pid})[/yellow]")
        raise typer.Exit(0)

    config = _load_or_exit(config_path)
    if mode is not None:
        config.mode = mode
    setup_logging(verbose, config.logging)

    write_daemon_pid(os.getpid())
    try:
        orchestrator = Orchestrator(config, exit_func=_exit_daemon)
        exit_code = asyncio.run(orchestrator.run())
    except Exception as e:
        logger.error(f"Daemon error: {e}")
        raise
    finally:
        remove_daemon_pid()

    raise typer.Exit(exit_code)


@app.command("stop")
def stop(
    timeout: int = typer.Option(15, "--timeout", "-t", help="Shutdown timeout in seconds"),
) -> None:
    """Stop the running wagerd daemon."""
    pid = get_daemon_pid()
    if not pid:
        console.print("[yellow]wagerd is not running[/yellow]")
        raise typer.Exit(1)

    console.print(f"[blue]Stopping wagerd (PID: {pid})...[/blue]")

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found[/yellow]")
        remove_daemon_pid()
        return

    start = time.time()
    while time.time() - start < timeout:
        if not Supervisor.check_pid(pid):
            console.print("[green]✓ wagerd stopped[/green]")
            remove_daemon_pid()
            return
        time.sleep(0.5)

    console.print("[yellow]wagerd did not stop gracefully, force killing...[/yellow]")
    try:
        os.kill(pid, signal.SIGKILL)
        time.sleep(0.5)
        console.print("[green]✓ wagerd killed[/green]")
    except ProcessLookupError:
        pass
    finally:
        remove_daemon_pid()


@app.command("status")
def status() -> None:
    """Show daemon status and its worker processes."""
    pid = get_daemon_pid()

    if not pid:
        console.print("[red]○ wagerd is not running[/red]")
        return

    console.print(f"[green]● wagerd is running (PID: {pid})[/green]")

    try:
        proc = psutil.Process(pid)
        uptime = datetime.now() - datetime.fromtimestamp(proc.create_time())
        mem = proc.memory_info().rss / (1024 * 1024)
        console.print(f"  Uptime: {str(uptime).split('.')[0]}")
        console.print(f"  Memory: {mem:.1f} MB")

        children = proc.children()
    except psutil.Error as e:
        console.print(f"[yellow]  Could not inspect daemon: {e}[/yellow]")
        return

    if not children:
        console.print("  Workers: none running")
        return

    table = Table(title="Workers")
    table.add_column("PID", justify="right")
    table.add_column("Worker")
    table.add_column("Command")
    table.add_column("Memory", justify="right")

    for child in children:
        try:
            with child.oneshot():
                name = child.environ().get("WAGERD_WORKER", "?")
                cmd = " ".join(child.cmdline())
                child_mem = child.memory_info().rss / (1024 * 1024)
        except psutil.AccessDenied:
            name, cmd, child_mem = "?", child.name(), 0.0
        except psutil.NoSuchProcess:
            continue
        table.add_row(str(child.pid), name, cmd, f"{child_mem:.1f} MB")

    console.print(table)


@app.command("init")
def init(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Where to write the config"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a default wagerd.yaml."""
    setup_logging()
    try:
        written = create_default_config(path or resolve_config_path(), force=force)
    except ConfigError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Created {written}[/green]")


@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to wagerd.yaml"),
) -> None:
    """Validate the configuration and print workers and schedule."""
    setup_logging()
    config = _load_or_exit(config_path)

    console.print(f"[bold]Mode:[/bold] {config.mode.value}  [bold]Base dir:[/bold] {config.base_dir}")
    console.print(
        f"[bold]Warm-up:[/bold] {config.warmup_seconds:g}s  "
        f"[bold]Grace period:[/bold] {config.grace_period_seconds:g}s"
    )

    workers = Table(title="Workers")
    workers.add_column("Name", style="cyan")
    workers.add_column("Entry")
    workers.add_column("Port", justify="right")
    workers.add_column("Auto-start")
    workers.add_column("Max retries", justify="right")
    for w in config.workers:
        workers.add_row(
            w.name,
            w.entry,
            str(w.port),
            "[dim]manual[/dim]" if w.start_manually else "[green]yes[/green]",
            str(w.max_retries),
        )
    console.print(workers)

    names = {w.name for w in config.workers}
    schedule = Table(title="Schedule")
    schedule.add_column("Worker", style="cyan")
    schedule.add_column("Endpoint")
    schedule.add_column("Every", justify="right")
    for t in config.schedule:
        worker = t.worker if t.worker in names else f"[red]{t.worker} (unknown)[/red]"
        schedule.add_row(worker, t.endpoint, _format_interval(t.interval_ms))
    console.print(schedule)


@app.command("version")
def version() -> None:
    """Show the wagerd version."""
    console.print(f"wagerd {__version__}")


def _format_interval(ms: int) -> str:
    """Format a millisecond interval for display."""
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:g}s"
    if seconds < 3600:
        return f"{seconds / 60:g}m"
    return f"{seconds / 3600:g}h"


def main() -> None:
    app()


if __name__ == "__main__":
    main()
