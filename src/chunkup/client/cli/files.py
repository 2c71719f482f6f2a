"""File inspection commands for the chunkup CLI.

Commands:
- hash: Print the fingerprint of a file
- check: Report what the backend already holds for a file
- cancel: Release the backend session of a file
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import httpx

from chunkup.client.api import APIError, UploadClient
from chunkup.client.cli.config import get_server_config
from chunkup.client.upload import UploadTask
from chunkup.core.chunking import DEFAULT_CHUNK_SIZE
from chunkup.core.config import UploadOptions
from chunkup.core.hashing import DEFAULT_HASH_ALGORITHM, compute_file_fingerprint
from chunkup.core.types import UploadError

FILE_ARGUMENT = click.Path(exists=True, dir_okay=False, path_type=Path)


@click.command(name="hash")
@click.argument("path", type=FILE_ARGUMENT)
@click.option(
    "--algorithm",
    default=DEFAULT_HASH_ALGORITHM,
    show_default=True,
    help="hashlib algorithm shared with the backend.",
)
def hash_file(path: Path, algorithm: str) -> None:
    """Print the fingerprint of a file."""
    try:
        fingerprint = compute_file_fingerprint(path, algorithm=algorithm)
    except (UploadError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"{fingerprint}  {path.name}")


@click.command()
@click.argument("path", type=FILE_ARGUMENT)
@click.option(
    "--chunk-size",
    type=int,
    default=DEFAULT_CHUNK_SIZE // (1024 * 1024),
    show_default=True,
    help="Chunk size in MiB.",
)
def check(path: Path, chunk_size: int) -> None:
    """Report whether a file would upload instantly, resume or start fresh."""
    server_config = get_server_config()
    try:
        options = UploadOptions(chunk_size=chunk_size * 1024 * 1024)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    with UploadTask(server_config, options) as task:
        try:
            task.select_file(path)
            fingerprint = task.compute_fingerprint()
        except UploadError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"Fingerprint: {fingerprint}")
        if task.is_instant:
            click.echo("Status: already stored (instant transfer)")
            if task.snapshot().url:
                click.echo(f"URL: {task.snapshot().url}")
        elif task.session is not None:
            click.echo(
                f"Status: resumable, {task.uploaded_chunks}/{task.total_chunks} chunks stored"
            )
        else:
            click.echo(f"Status: new upload, {task.total_chunks} chunks")


@click.command()
@click.argument("path", type=FILE_ARGUMENT)
def cancel(path: Path) -> None:
    """Release the backend upload session of a file."""
    server_config = get_server_config()
    try:
        fingerprint = compute_file_fingerprint(path)
    except UploadError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    with UploadClient(server_config) as client:
        try:
            client.cancel_upload(fingerprint)
        except (APIError, httpx.HTTPError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Cancelled upload session of {path.name}")
