"""Configuration utilities for the chunkup CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from chunkup.client.credentials import load_token
from chunkup.core.config import EndpointConfig, ServerConfig


def get_config_dir() -> Path:
    """Get the configuration directory for chunkup.

    Returns:
        Path to ~/.chunkup or equivalent.
    """
    return Path.home() / ".chunkup"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_server_config() -> ServerConfig:
    """Build the server configuration from the config file and keyring.

    Exits with an error message if no server is configured.
    """
    config = load_config()
    server_url = config.get("server_url")
    if not server_url:
        click.echo("Error: No server configured. Run 'chunkup configure' first.", err=True)
        sys.exit(1)

    token = load_token(server_url) or config.get("token")
    kwargs: dict[str, Any] = {"server_url": server_url, "token": token}
    if "api_prefix" in config:
        kwargs["api_prefix"] = config["api_prefix"]
    if "timeout" in config:
        kwargs["timeout"] = float(config["timeout"])
    if "verify_ssl" in config:
        kwargs["verify_ssl"] = bool(config["verify_ssl"])
    if config.get("endpoints"):
        kwargs["endpoints"] = EndpointConfig(**config["endpoints"])
    return ServerConfig(**kwargs)
