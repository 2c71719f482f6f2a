"""Auth token storage for chunkup.

This module provides:
- OS keyring storage of the backend bearer token, keyed by server URL

Keyring backends are not available everywhere (headless servers, CI);
callers fall back to the config file when store_token() returns False.
"""

from __future__ import annotations

import contextlib

import keyring
from keyring.errors import KeyringError

KEYRING_SERVICE = "chunkup"


def store_token(server_url: str, token: str) -> bool:
    """Store the bearer token of a server in the OS keyring.

    Returns:
        True if the keyring accepted the token.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, server_url, token)
    except KeyringError:
        return False
    return True


def load_token(server_url: str) -> str | None:
    """Get the bearer token of a server from the OS keyring, if any."""
    try:
        return keyring.get_password(KEYRING_SERVICE, server_url)
    except KeyringError:
        return None


def delete_token(server_url: str) -> None:
    """Remove the bearer token of a server from the OS keyring (silently ignore if absent)."""
    with contextlib.suppress(KeyringError):
        keyring.delete_password(KEYRING_SERVICE, server_url)
