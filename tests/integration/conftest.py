"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing of complete upload runs
against the in-memory backend, with production-sized chunks.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from chunkup.client.api import UploadClient
from chunkup.client.upload import UploadTask
from chunkup.core.config import DEFAULT_API_PREFIX, EndpointConfig, ServerConfig, UploadOptions


@dataclass
class UploadTestClient:
    """Container for a simulated upload client."""

    name: str
    folder: Path
    config: ServerConfig
    api_client: UploadClient
    tasks: list[UploadTask] = field(default_factory=list)

    def create_file(self, relative_path: str, size: int) -> Path:
        """Create a file of random bytes in the client's folder."""
        path = self.folder / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(os.urandom(size))
        return path

    def new_task(self, **options: Any) -> UploadTask:
        """Create an upload task (as a fresh process would)."""
        task = UploadTask(self.api_client, UploadOptions(**options))
        self.tasks.append(task)
        return task


@pytest.fixture
def client_factory(tmp_path: Path) -> Generator[Any, None, None]:
    """Factory fixture to create clients, each wired to its own backend."""
    clients: list[UploadTestClient] = []

    def _create_client(
        backend: Any,
        name: str = "client",
        api_prefix: str = DEFAULT_API_PREFIX,
        endpoints: EndpointConfig | None = None,
    ) -> UploadTestClient:
        folder = tmp_path / "clients" / name
        folder.mkdir(parents=True, exist_ok=True)
        config = ServerConfig(
            server_url="http://test",
            token="integration-token",
            api_prefix=api_prefix,
            endpoints=endpoints or EndpointConfig(),
        )
        client = UploadTestClient(
            name=name,
            folder=folder,
            config=config,
            api_client=UploadClient(config, transport=backend.transport()),
        )
        clients.append(client)
        return client

    yield _create_client

    # Cleanup
    for client in clients:
        for task in client.tasks:
            task.close()
        client.api_client.close()


@pytest.fixture
def uploader(backend: Any, client_factory: Any) -> UploadTestClient:
    """Create a client talking to the default backend."""
    return client_factory(backend)
