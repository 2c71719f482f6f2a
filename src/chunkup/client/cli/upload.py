"""Upload command for the chunkup CLI.

Commands:
- upload: Upload a file with a live status line; Ctrl+C pauses it
"""

from __future__ import annotations

import contextlib
import logging
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from chunkup.client.cli.config import get_server_config
from chunkup.client.upload import (
    InvalidTransitionError,
    UploadResult,
    UploadSnapshot,
    UploadTask,
    format_eta,
    format_speed,
)
from chunkup.core.chunking import DEFAULT_CHUNK_SIZE
from chunkup.core.config import UploadOptions
from chunkup.core.types import UploadError, UploadState

STATUS_REFRESH_INTERVAL = 0.2  # seconds


class StatusLineAwareHandler(logging.Handler):
    """Logging handler that coordinates with the status line display.

    Clears the status line before printing log messages and restores it after.
    """

    def __init__(
        self,
        clear_func: Callable[[], None],
        update_func: Callable[[], None],
        lock: threading.Lock,
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


def format_status(snapshot: UploadSnapshot) -> str:
    """Build the status line of an upload snapshot."""
    if snapshot.state == UploadState.HASHING:
        return f"  Hashing {snapshot.file_name}: {snapshot.hash_progress.percentage}%"
    if snapshot.state in (UploadState.RECONCILING, UploadState.INITIALIZING):
        return f"  Contacting server for {snapshot.file_name}..."
    if snapshot.state == UploadState.FINALIZING:
        return f"  Finalizing {snapshot.file_name}..."
    return (
        f"  {snapshot.file_name}: {snapshot.progress.percentage}% "
        f"({snapshot.uploaded_chunks}/{snapshot.total_chunks} chunks) "
        f"{format_speed(snapshot.speed.current)}, ETA {format_eta(snapshot.eta)}"
    )


class StatusLine:
    """Single-line upload status on stdout.

    The text is built from a task snapshot before the display lock is taken;
    draw() only repaints the cached text, so the logging handler never waits
    on the task lock while holding the display lock.
    """

    def __init__(self, task: UploadTask, enabled: bool = True, width: int = 80) -> None:
        self.lock = threading.Lock()
        self._task = task
        self._enabled = enabled
        self._width = width
        self._text = ""
        self._last_len = 0

    def clear(self) -> None:
        """Clear the current status line. Caller holds the lock."""
        if self._last_len > 0 and self._enabled:
            sys.stdout.write("\r" + " " * self._last_len + "\r")
            sys.stdout.flush()
            self._last_len = 0

    def draw(self) -> None:
        """Repaint the cached status text. Caller holds the lock."""
        if not self._enabled or not self._text:
            return
        clear_part = " " * max(0, self._last_len - len(self._text))
        sys.stdout.write(f"\r{self._text}{clear_part}")
        sys.stdout.flush()
        self._last_len = len(self._text)

    def refresh(self) -> None:
        """Rebuild the status text from the task and repaint it."""
        if not self._enabled:
            return
        snapshot = self._task.snapshot()
        if snapshot.state in (UploadState.IDLE, UploadState.PAUSED) or snapshot.state.is_terminal:
            text = ""
        else:
            text = format_status(snapshot)
            if len(text) > self._width - 3:
                text = text[: self._width - 6] + "..."
        with self.lock:
            self._text = text
            if text:
                self.draw()
            else:
                self.clear()

    def close(self) -> None:
        """Clear the line and stop repainting it."""
        with self.lock:
            self._text = ""
            self.clear()


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--chunk-size",
    type=int,
    default=DEFAULT_CHUNK_SIZE // (1024 * 1024),
    show_default=True,
    help="Chunk size in MiB.",
)
@click.option("--concurrent", type=int, default=3, show_default=True, help="Parallel chunk transfers.")
@click.option("--retries", type=int, default=3, show_default=True, help="Attempts per chunk.")
@click.option("--no-chunk-hash", is_flag=True, help="Do not send per-chunk digests.")
@click.option("--no-progress", is_flag=True, help="Disable the status line.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.option(
    "--keep-session",
    is_flag=True,
    help="On Ctrl+C, keep the server session so a later run resumes.",
)
def upload(
    path: Path,
    chunk_size: int,
    concurrent: int,
    retries: int,
    no_chunk_hash: bool,
    no_progress: bool,
    verbose: bool,
    keep_session: bool,
) -> None:
    """Upload a file in resumable chunks.

    Chunks already stored on the server are skipped, and a file the
    server already holds completes instantly.
    """
    server_config = get_server_config()
    try:
        options = UploadOptions(
            chunk_size=chunk_size * 1024 * 1024,
            concurrent=concurrent,
            retry_times=retries,
            chunk_fingerprints=not no_chunk_hash,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    task = UploadTask(server_config, options)
    status_line = StatusLine(task, enabled=not no_progress)

    # Install status-line-aware logging handler to prevent log interleaving
    status_handler = StatusLineAwareHandler(
        clear_func=status_line.clear,
        update_func=status_line.draw,
        lock=status_line.lock,
    )
    status_handler.setFormatter(logging.Formatter("%(message)s"))
    chunkup_logger = logging.getLogger("chunkup")
    for handler in chunkup_logger.handlers[:]:
        chunkup_logger.removeHandler(handler)
    chunkup_logger.addHandler(status_handler)
    chunkup_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    chunkup_logger.propagate = False

    outcome: dict[str, Any] = {}

    def run() -> None:
        try:
            outcome["result"] = task.start()
        except UploadError as e:
            outcome["error"] = e

    worker = threading.Thread(target=run, name="chunkup-upload", daemon=True)

    try:
        task.select_file(path)
        worker.start()
        try:
            while worker.is_alive():
                worker.join(STATUS_REFRESH_INTERVAL)
                status_line.refresh()
        except KeyboardInterrupt:
            status_line.close()
            _interrupt(task, worker, keep_session)
            sys.exit(130)

        status_line.close()

        if "error" in outcome:
            click.echo(f"Error: {outcome['error']}", err=True)
            if task.session is not None:
                click.echo("Run the same command again to resume.", err=True)
            sys.exit(1)

        result: UploadResult | None = outcome.get("result")
        if result is None:
            click.echo("Upload stopped before completion.", err=True)
            sys.exit(1)

        if result.instant:
            click.echo(f"{result.file_name} is already on the server (instant transfer)")
        else:
            speed = task.speed
            click.echo(
                f"Uploaded {result.file_name}: {result.size} bytes in {result.total_chunks} chunks "
                f"(avg {format_speed(speed.average)}, peak {format_speed(speed.peak)})"
            )
        if result.url:
            click.echo(f"URL: {result.url}")
    except UploadError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        task.close()


def _interrupt(task: UploadTask, worker: threading.Thread, keep_session: bool) -> None:
    """Stop a running upload after Ctrl+C."""
    with contextlib.suppress(InvalidTransitionError):
        if task.state == UploadState.TRANSFERRING:
            task.pause()
        elif not task.state.is_terminal and task.state != UploadState.PAUSED:
            task.cancel()
    worker.join()

    if task.state == UploadState.PAUSED:
        if keep_session:
            click.echo("Upload paused. Run the same command again to resume.", err=True)
            return
        with contextlib.suppress(InvalidTransitionError):
            task.cancel()
    click.echo("Upload cancelled.", err=True)
