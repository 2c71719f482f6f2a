"""Pytest fixtures shared by the chunkup test suite.

This module provides an in-memory upload backend served through an
httpx.MockTransport, so client, task and end-to-end tests exercise the real
HTTP stack without sockets.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pytest

from chunkup.client.api import UploadClient
from chunkup.core.config import ServerConfig

PREFIX = "/api/upload"


def parse_multipart(request: httpx.Request) -> tuple[dict[str, str], bytes]:
    """Split a multipart/form-data request into its text fields and file bytes."""
    body = request.read()
    boundary = request.headers["content-type"].split("boundary=", 1)[1].strip('"').encode()
    fields: dict[str, str] = {}
    content = b""
    for part in body.split(b"--" + boundary):
        if not part.strip() or part.startswith(b"--"):
            continue
        head, _, data = part.partition(b"\r\n\r\n")
        data = data[:-2]  # CRLF before the next boundary
        name = re.search(rb'name="([^"]+)"', head).group(1).decode()
        if name == "chunk":
            content = data
        else:
            fields[name] = data.decode()
    return fields, content


class FakeBackend:
    """In-memory chunked upload backend.

    Attributes:
        sessions: Open sessions by fingerprint (chunk index -> bytes).
        stored: Finalized objects by fingerprint.
        calls: Endpoint names in request order.
        chunk_calls: Chunk indices of every chunk request that reached the handler.
        fail_chunks: Chunk index -> number of requests to answer with HTTP 500.
        fail_complete: Number of complete calls to answer with success=false.
        fail_cancel: Answer cancel calls with HTTP 500.
        check_override: Fixed response for check calls.
        report_parts: Report prior chunks as S3-style session.parts.
        chunk_delay: Seconds each chunk request takes.
        cancelled: Fingerprints whose session was cancelled; their chunks are refused.
    """

    def __init__(self, prefix: str = PREFIX) -> None:
        self.prefix = prefix
        self.sessions: dict[str, dict[str, Any]] = {}
        self.stored: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.chunk_calls: list[int] = []
        self.chunk_fields: list[dict[str, str]] = []
        self.complete_payloads: list[dict[str, Any]] = []
        self.fail_chunks: dict[int, int] = {}
        self.fail_complete = 0
        self.fail_cancel = False
        self.check_override: dict[str, Any] | None = None
        self.report_parts = False
        self.chunk_delay = 0.0
        self.cancelled: set[str] = set()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def transport(self) -> httpx.MockTransport:
        """Get a transport routing requests to this backend."""
        return httpx.MockTransport(self.handle)

    def seed_session(self, fingerprint: str, file_name: str, chunks: dict[int, bytes]) -> None:
        """Pretend an earlier run already stored some chunks."""
        self.sessions[fingerprint] = {"file_name": file_name, "chunks": dict(chunks)}

    def stored_counts(self) -> dict[int, int]:
        """Count how many chunk requests were stored per index."""
        counts: dict[int, int] = {}
        for index in self.chunk_calls:
            counts[index] = counts.get(index, 0) + 1
        return counts

    def handle(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.removeprefix(self.prefix + "/")
        with self._lock:
            self.calls.append(endpoint)
        if endpoint == "chunk":
            return self._chunk(request)
        payload = json.loads(request.read() or b"{}")
        handler = getattr(self, f"_{endpoint}", None)
        if handler is None:
            return httpx.Response(404, json={"detail": "Not found"})
        return handler(payload)

    def _check(self, payload: dict[str, Any]) -> httpx.Response:
        if self.check_override is not None:
            return httpx.Response(200, json=self.check_override)
        fingerprint = payload["fileHash"]
        if fingerprint in self.stored:
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "fileExists": True,
                    "isComplete": True,
                    "url": f"https://files.test/{payload['fileName']}",
                },
            )
        session = self.sessions.get(fingerprint)
        if session is None:
            return httpx.Response(
                200, json={"success": True, "fileExists": False, "isComplete": False}
            )

        indices = sorted(session["chunks"])
        body: dict[str, Any] = {
            "success": True,
            "fileExists": True,
            "isComplete": False,
            "session": {
                "sessionId": f"s-{fingerprint[:8]}",
                "uploadId": f"u-{fingerprint[:8]}",
                "objectName": session["file_name"],
                "fileName": session["file_name"],
            },
        }
        if self.report_parts:
            body["session"]["parts"] = [
                {"partNumber": i + 1, "etag": hashlib.md5(session["chunks"][i]).hexdigest()}
                for i in indices
            ]
        else:
            body["uploadedChunks"] = [f"{fingerprint}_chunk_{i}" for i in indices]
        return httpx.Response(200, json=body)

    def _initialize(self, payload: dict[str, Any]) -> httpx.Response:
        fingerprint = payload["fileHash"]
        self.cancelled.discard(fingerprint)
        self.sessions[fingerprint] = {"file_name": payload["fileName"], "chunks": {}}
        return httpx.Response(
            200,
            json={
                "success": True,
                "session": {
                    "sessionId": f"s-{fingerprint[:8]}",
                    "uploadId": f"u-{fingerprint[:8]}",
                    "objectName": payload["fileName"],
                    "totalChunks": payload["totalChunks"],
                },
            },
        )

    def _chunk(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            fields, content = parse_multipart(request)
            if self.chunk_delay:
                time.sleep(self.chunk_delay)
            index = int(fields["chunkIndex"])
            with self._lock:
                if self.fail_chunks.get(index, 0) > 0:
                    self.fail_chunks[index] -= 1
                    return httpx.Response(500, json={"message": "storage unavailable"})
                if fields["fileHash"] in self.cancelled:
                    return httpx.Response(404, json={"message": "upload session cancelled"})
                if "chunkHash" in fields and fields["chunkHash"] != hashlib.md5(content).hexdigest():
                    return httpx.Response(400, json={"message": "chunk hash mismatch"})
                session = self.sessions.setdefault(
                    fields["fileHash"], {"file_name": fields["fileName"], "chunks": {}}
                )
                session["chunks"][index] = content
                self.chunk_calls.append(index)
                self.chunk_fields.append(fields)
            return httpx.Response(
                200, json={"success": True, "data": {"etag": hashlib.md5(content).hexdigest()}}
            )
        finally:
            with self._lock:
                self.active -= 1

    def _complete(self, payload: dict[str, Any]) -> httpx.Response:
        self.complete_payloads.append(payload)
        if self.fail_complete > 0:
            self.fail_complete -= 1
            return httpx.Response(200, json={"success": False, "message": "merge failed"})
        fingerprint = payload["fileHash"]
        chunks = self.sessions[fingerprint]["chunks"]
        if len(chunks) != payload["totalChunks"]:
            return httpx.Response(200, json={"success": False, "message": "missing chunks"})
        self.stored[fingerprint] = b"".join(chunks[i] for i in sorted(chunks))
        del self.sessions[fingerprint]
        return httpx.Response(
            200, json={"success": True, "url": f"https://files.test/{payload['fileName']}"}
        )

    def _cancel(self, payload: dict[str, Any]) -> httpx.Response:
        if self.fail_cancel:
            return httpx.Response(500, json={"message": "cancel failed"})
        self.sessions.pop(payload["fileHash"], None)
        self.cancelled.add(payload["fileHash"])
        return httpx.Response(200, json={"success": True})

    def _merge(self, payload: dict[str, Any]) -> httpx.Response:
        # Finalize endpoint of merge-style backends
        return self._complete(payload)


@pytest.fixture
def backend() -> FakeBackend:
    """Create an empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def upload_client(backend: FakeBackend) -> Generator[UploadClient, None, None]:
    """Create an UploadClient wired to the in-memory backend."""
    client = UploadClient(ServerConfig(server_url="http://test"), transport=backend.transport())
    yield client
    client.close()


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Create a file of random bytes in tmp_path."""

    def _make(size: int, name: str = "data.bin") -> Path:
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path

    return _make
