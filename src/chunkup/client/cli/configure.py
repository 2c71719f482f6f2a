"""Configuration command for the chunkup CLI.

Commands:
- configure: Store the backend URL, API prefix and auth token
"""

from __future__ import annotations

import click

from chunkup.client.cli.config import load_config, save_config
from chunkup.client.credentials import store_token


@click.command()
@click.option(
    "--server",
    required=True,
    help="Server URL (e.g., http://localhost:8000).",
)
@click.option(
    "--token",
    default=None,
    help="Bearer token for the upload API.",
)
@click.option(
    "--prefix",
    default=None,
    help="Path prefix of the upload endpoints (default: /api/upload).",
)
@click.option(
    "--complete-endpoint",
    default=None,
    help="Name of the finalize endpoint (e.g. 'merge').",
)
@click.option("--insecure", is_flag=True, help="Do not verify SSL certificates.")
def configure(
    server: str,
    token: str | None,
    prefix: str | None,
    complete_endpoint: str | None,
    insecure: bool,
) -> None:
    """Configure the upload backend.

    The token is kept in the OS keyring when one is available,
    otherwise in the config file.
    """
    server_url = server.rstrip("/")
    config = load_config()
    config["server_url"] = server_url
    config.pop("token", None)

    if prefix is not None:
        config["api_prefix"] = prefix
    if complete_endpoint:
        endpoints = dict(config.get("endpoints") or {})
        endpoints["complete"] = complete_endpoint
        config["endpoints"] = endpoints
    if insecure:
        config["verify_ssl"] = False
    else:
        config.pop("verify_ssl", None)

    if token:
        if store_token(server_url, token):
            click.echo("Token stored in the OS keyring.")
        else:
            config["token"] = token
            click.echo("Warning: No keyring available, token stored in the config file.", err=True)

    save_config(config)
    click.echo(f"Configured server {server_url}")
