"""Command-line interface for chunkup.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the backend URL, API prefix and auth token
- hash: Print the fingerprint of a file
- check: Report instant / resume / fresh status of a file
- upload: Upload a file in resumable chunks
- cancel: Release the backend session of a file
"""

from __future__ import annotations

import click

from chunkup.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_server_config,
    load_config,
    save_config,
)
from chunkup.client.cli.configure import configure
from chunkup.client.cli.files import cancel, check, hash_file
from chunkup.client.cli.upload import upload


@click.group()
@click.version_option(package_name="chunkup")
def cli() -> None:
    """chunkup - Resumable chunked file uploads."""


# Setup
cli.add_command(configure)

# File commands
cli.add_command(hash_file)
cli.add_command(check)
cli.add_command(upload)
cli.add_command(cancel)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_server_config",
    "load_config",
    "save_config",
]
