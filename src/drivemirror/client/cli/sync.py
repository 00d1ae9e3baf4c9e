"""Upload command for drivemirror CLI.

Commands:
- upload: Mirror local directories into a remote folder
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from pathlib import Path

import click

from drivemirror.client.api import AuthenticationError, DriveClient
from drivemirror.client.auth import TokenProvider
from drivemirror.client.cli.config import load_credentials, load_uploader_config
from drivemirror.client.http import build_http_client
from drivemirror.client.sync.checkpoint import CheckpointStore
from drivemirror.client.sync.orchestrator import SyncOrchestrator
from drivemirror.client.sync.types import RemoteDestination
from drivemirror.client.sync.workers.pool import SyncTask, WorkerPool
from drivemirror.core.config import UploaderConfig
from drivemirror.core.types import OperationStatus

TERM_WIDTH = 80


class StatusLineAwareHandler(logging.Handler):
    """Logging handler that coordinates with the status line display.

    Clears the status line before printing log messages and restores it after.
    """

    def __init__(
        self,
        clear_func: Callable[[], None],
        update_func: Callable[[], None],
        lock: threading.RLock,
    ) -> None:
        super().__init__()
        self._clear_func = clear_func
        self._update_func = update_func
        self._lock = lock

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            with self._lock:
                self._clear_func()
                # Use stdout (same as status line) to prevent interleaving
                sys.stdout.write(msg + "\n")
                sys.stdout.flush()
                self._update_func()
        except Exception:
            self.handleError(record)


class ConsoleStatus:
    """Single status line shared by all running sync tasks."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.lock = threading.RLock()
        self._lines: dict[str, str] = {}
        self._last_len = 0

    def reporter(self, label: str) -> TaskReporter:
        """Get a StatusReporter writing under a label."""
        return TaskReporter(self, label)

    def set(self, label: str, text: str) -> None:
        with self.lock:
            self._lines[label] = text
            self.update()

    def clear(self) -> None:
        """Clear the current status line."""
        with self.lock:
            if self._last_len > 0 and self.enabled:
                sys.stdout.write("\r" + " " * self._last_len + "\r")
                sys.stdout.flush()
                self._last_len = 0

    def update(self) -> None:
        """Redraw the status line."""
        if not self.enabled:
            return
        with self.lock:
            if not self._lines:
                self.clear()
                return
            status = "  " + " | ".join(self._lines.values())
            if len(status) > TERM_WIDTH - 3:
                status = status[: TERM_WIDTH - 6] + "..."
            clear_part = " " * max(0, self._last_len - len(status))
            sys.stdout.write(f"\r{status}{clear_part}")
            sys.stdout.flush()
            self._last_len = len(status)


class TaskReporter:
    """StatusReporter of one sync task, rendered on the console status line."""

    def __init__(self, console: ConsoleStatus, label: str) -> None:
        self._console = console
        self._label = label
        self._status = ""
        self._total = 0.0
        self._current = 0.0

    def set_status(self, text: str) -> None:
        self._status = text
        self._render()

    def set_total_progress(self, fraction: float) -> None:
        self._total = fraction
        self._render()

    def set_current_progress(self, fraction: float) -> None:
        self._current = fraction
        self._render()

    def _render(self) -> None:
        self._console.set(
            self._label,
            f"{self._label} {self._total:.0%} {self._status} {self._current:.0%}",
        )


def build_orchestrator(config: UploaderConfig) -> tuple[SyncOrchestrator, Callable[[], None]]:
    """Wire the remote store client, token provider and checkpoints.

    Args:
        config: Uploader configuration.

    Returns:
        The orchestrator and a function releasing its HTTP resources.

    Raises:
        AuthenticationError: If no access token can be obtained.
    """
    http = build_http_client(config)
    try:
        tokens = TokenProvider(
            load_credentials, http, config.token_url, max_attempts=config.max_token_refreshes
        )
    except AuthenticationError:
        http.close()
        raise
    client = DriveClient(config, tokens, http=http)
    checkpoints = CheckpointStore(config.ensure_tmp_dir())
    return SyncOrchestrator(client, tokens, config, checkpoints), http.close


def configure_logging(console: ConsoleStatus, verbose: bool) -> None:
    """Route drivemirror log records through the status line."""
    level = logging.INFO if verbose else logging.WARNING
    handler = StatusLineAwareHandler(
        clear_func=console.clear,
        update_func=console.update,
        lock=console.lock,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)

    drivemirror_logger = logging.getLogger("drivemirror")
    for existing in drivemirror_logger.handlers[:]:
        drivemirror_logger.removeHandler(existing)
    drivemirror_logger.addHandler(handler)
    drivemirror_logger.setLevel(level)
    # Prevent propagation to root logger
    drivemirror_logger.propagate = False


def display_report(task: SyncTask) -> None:
    """Print the result of one sync task."""
    if task.error is not None:
        click.echo(click.style(f"{task.local_root}: failed: {task.error}", fg="red"))
        return
    result = task.result
    if result is None:
        click.echo(click.style(f"{task.local_root}: did not finish", fg="yellow"))
        return

    color = {
        OperationStatus.COMPLETED: "green",
        OperationStatus.WARNING: "yellow",
    }.get(result.status, "red")
    click.echo(click.style(f"{task.local_root}: {result.summary()}", fg=color))
    click.echo(f"  {result.transferred} transferred, {result.skipped} already up to date")

    if result.errors:
        click.echo(click.style("  Errors:", fg="red"))
        for path, error in result.errors.items():
            click.echo(f"    ✗ {path}: {error}")
    if result.warnings:
        click.echo(click.style("  Warnings:", fg="yellow"))
        for path, message in result.warnings.items():
            click.echo(f"    ! {path}: {message}")


def task_failed(task: SyncTask) -> bool:
    if task.error is not None or task.result is None:
        return True
    return task.result.status in (OperationStatus.ERROR, OperationStatus.STOPPED)


@click.command()
@click.argument(
    "sources",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("--dest", "dest_title", help="Folder under the remote root (created if absent).")
@click.option("--dest-id", help="Id of an existing remote folder.")
@click.option("--overwrite", is_flag=True, help="Replace remote files whose content differs.")
@click.option(
    "--workers",
    type=click.IntRange(1, 16),
    default=3,
    show_default=True,
    help="Directories uploaded at the same time.",
)
@click.option("--no-progress", is_flag=True, help="Disable the status line.")
@click.option("--verbose", "-v", is_flag=True, help="Show informational messages.")
def upload(
    sources: tuple[Path, ...],
    dest_title: str | None,
    dest_id: str | None,
    overwrite: bool,
    workers: int,
    no_progress: bool,
    verbose: bool,
) -> None:
    """Mirror local directories into a remote folder.

    Each SOURCE directory is created inside the destination folder. Large
    files are sent in resumable chunks; an interrupted upload continues
    where it stopped on the next run.
    """
    if not dest_title and not dest_id:
        click.echo("Error: give a destination with --dest or --dest-id.", err=True)
        sys.exit(1)

    if not load_credentials().is_complete:
        click.echo("Error: no credentials. Run 'drivemirror credentials' first.", err=True)
        sys.exit(1)

    try:
        config = load_uploader_config()
    except ValueError as e:
        click.echo(f"Error: invalid settings: {e}", err=True)
        sys.exit(1)

    console = ConsoleStatus(enabled=not no_progress)
    configure_logging(console, verbose)

    try:
        orchestrator, close = build_orchestrator(config)
    except AuthenticationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    destination = RemoteDestination(id=dest_id, title=dest_title)
    pool = WorkerPool(orchestrator, max_workers=workers)
    tasks: list[SyncTask] = []

    click.echo(f"Uploading to {destination}...\n")
    pool.start()
    try:
        for source in sources:
            task = SyncTask(
                destination=destination,
                local_root=source,
                overwrite=overwrite,
                reporter=console.reporter(source.name or str(source)),
            )
            if pool.submit(task):
                tasks.append(task)
            else:
                click.echo(f"Skipping duplicate source: {source}")

        try:
            for task in tasks:
                while not task.wait(timeout=0.2):
                    pass
        except KeyboardInterrupt:
            console.clear()
            click.echo("\nStopping, interrupted uploads will resume on the next run...")
            for task in tasks:
                pool.cancel(task)
    finally:
        pool.stop()
        close()
        with console.lock:
            console.enabled = False

    click.echo()
    for task in tasks:
        display_report(task)

    if any(task_failed(task) for task in tasks):
        sys.exit(1)
