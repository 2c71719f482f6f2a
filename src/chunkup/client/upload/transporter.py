"""Single-chunk transfer over HTTP.

This module provides:
- ChunkTransporter: uploads one chunk as multipart/form-data with byte-level
  progress, its own deadline and cooperative cancellation

Each request runs on its own thread while the caller waits on the response
and the cancellation token, so a pause or cancel returns promptly even when
the body is already sent. Responses that land after the caller gave up are
collected by settle().
"""

from __future__ import annotations

import io
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from chunkup.client.api import APIError
from chunkup.client.upload.cancellation import CancellationToken
from chunkup.client.upload.types import (
    ChunkReceipt,
    ChunkRejectedError,
    ChunkRequest,
    NetworkError,
    ProgressCallback,
    TransferTimeoutError,
)
from chunkup.core.chunking import Chunk, chunk_identifier
from chunkup.core.hashing import DEFAULT_HASH_ALGORITHM, compute_chunk_fingerprint
from chunkup.core.types import CancellationError, ReadError

if TYPE_CHECKING:
    from chunkup.client.api import UploadClient

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_TIMEOUT = 60.0  # seconds
CANCEL_POLL_INTERVAL = 0.05  # seconds


class _ProgressReader(io.BytesIO):
    """In-memory chunk body that reports how far the transport has read.

    httpx pulls the multipart body through read(), so every call is both a
    progress point and a cancellation point. Raising here aborts the request
    and the exception propagates out of the client unchanged.
    """

    def __init__(
        self,
        data: bytes,
        token: CancellationToken,
        deadline: float,
        clock: Callable[[], float],
        on_read: Callable[[int], None] | None = None,
    ) -> None:
        super().__init__(data)
        self._token = token
        self._deadline = deadline
        self._clock = clock
        self._on_read = on_read

    def read(self, size: int | None = -1) -> bytes:
        self._token.raise_if_cancelled()
        if self._clock() > self._deadline:
            raise TransferTimeoutError("Chunk transfer deadline exceeded")
        data = super().read(size)
        if self._on_read:
            # tell() restarts at 0 when the body is rewound for a resend
            self._on_read(self.tell())
        return data


class _Transfer:
    """One chunk request running on its own thread."""

    def __init__(
        self,
        chunk: Chunk,
        size: int,
        started_at: float,
        chunk_hash: str | None,
        send: Callable[[], dict[str, Any]],
    ) -> None:
        self.chunk = chunk
        self.size = size
        self.started_at = started_at
        self.chunk_hash = chunk_hash
        self.done = threading.Event()
        self._send = send
        self._response: dict[str, Any] | None = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(
            target=self._run, name=f"chunk-{chunk.index}-request", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def join(self) -> None:
        self._thread.join()

    def _run(self) -> None:
        try:
            self._response = self._send()
        except Exception as e:
            self._error = e
        finally:
            self.done.set()

    def result(self) -> dict[str, Any]:
        """Get the response, or raise the error of the request."""
        if self._error is not None:
            raise self._error
        assert self._response is not None
        return self._response


class ChunkTransporter:
    """Uploads single chunks to the backend.

    One transporter is shared by all transfers of an upload task; concurrent
    calls are safe.
    """

    def __init__(
        self,
        client: UploadClient,
        timeout: float = DEFAULT_CHUNK_TIMEOUT,
        chunk_fingerprints: bool = True,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the transporter.

        Args:
            client: Backend client.
            timeout: Deadline of one transfer in seconds.
            chunk_fingerprints: Send a per-chunk content digest.
            algorithm: Digest algorithm of the per-chunk fingerprint.
            clock: Monotonic time source (injectable for tests).
        """
        self._client = client
        self._timeout = timeout
        self._chunk_fingerprints = chunk_fingerprints
        self._algorithm = algorithm
        self._clock = clock
        self._lock = threading.Lock()
        # Transfers abandoned by a cancelled caller, still awaiting a response
        self._abandoned: list[_Transfer] = []

    @property
    def pending(self) -> int:
        """Get the number of abandoned transfers not yet settled."""
        with self._lock:
            return len(self._abandoned)

    def upload(
        self,
        chunk: Chunk,
        request: ChunkRequest,
        token: CancellationToken,
        on_progress: ProgressCallback | None = None,
    ) -> ChunkReceipt:
        """Upload one chunk.

        Args:
            chunk: Chunk to send; its bytes are read here.
            request: Per-file fields sent with every chunk.
            token: Cancellation token of this transfer.
            on_progress: Called with (sent_bytes, total_bytes) as the body is sent.

        Returns:
            ChunkReceipt with timestamps and the backend's part tag.

        Raises:
            CancellationError: If the token was cancelled before a response arrived.
            TransferTimeoutError: If the transfer exceeded its deadline.
            ChunkRejectedError: If the backend answered with an error.
            NetworkError: If the transfer failed in transit.
            ReadError: If the chunk bytes could not be read.
        """
        token.raise_if_cancelled()

        try:
            data = chunk.read()
        except OSError as e:
            raise ReadError(f"Cannot read chunk {chunk.index}: {e}") from e

        chunk_hash = None
        if self._chunk_fingerprints:
            chunk_hash = compute_chunk_fingerprint(data, self._algorithm)

        fields = {
            "fileName": request.file_name,
            "fileHash": request.fingerprint,
            "chunkIndex": str(chunk.index),
            "totalChunks": str(request.total_chunks),
            "chunkId": chunk_identifier(request.fingerprint, chunk.index),
        }
        if chunk_hash is not None:
            fields["chunkHash"] = chunk_hash

        size = len(data)
        started_at = self._clock()
        reader = _ProgressReader(
            data,
            token,
            deadline=started_at + self._timeout,
            clock=self._clock,
            on_read=(lambda sent: on_progress(min(sent, size), size)) if on_progress else None,
        )

        def send() -> dict[str, Any]:
            try:
                return self._client.upload_chunk(
                    fields,
                    reader,
                    filename=f"{request.file_name}.part{chunk.index}",
                    timeout=self._timeout,
                )
            finally:
                reader.close()

        logger.debug(f"Sending chunk {chunk.index} ({size} bytes)")
        transfer = _Transfer(chunk, size, started_at, chunk_hash, send)
        transfer.start()
        # A response that arrives together with a pause is honoured
        while not transfer.done.wait(CANCEL_POLL_INTERVAL):
            if token.cancelled:
                with self._lock:
                    self._abandoned.append(transfer)
                logger.debug(f"Stopped waiting for chunk {chunk.index}: {token.reason}")
                token.raise_if_cancelled()

        try:
            response = transfer.result()
        except (CancellationError, TransferTimeoutError):
            raise
        except httpx.TimeoutException as e:
            raise TransferTimeoutError(f"Chunk {chunk.index} timed out: {e}") from e
        except APIError as e:
            raise ChunkRejectedError(f"Chunk {chunk.index} rejected: {e}") from e
        except httpx.RequestError as e:
            # Aborted by a pause rather than by the network
            token.raise_if_cancelled()
            raise NetworkError(f"Chunk {chunk.index} failed: {e}") from e

        receipt = self._receipt(transfer, response)
        if on_progress:
            on_progress(size, size)
        return receipt

    def settle(self) -> list[ChunkReceipt]:
        """Wait for abandoned transfers to finish.

        Returns:
            Receipts of the abandoned transfers the backend accepted anyway.
        """
        with self._lock:
            abandoned, self._abandoned = self._abandoned, []

        receipts = []
        for transfer in abandoned:
            transfer.join()
            try:
                receipts.append(self._receipt(transfer, transfer.result()))
            except (CancellationError, TransferTimeoutError, ChunkRejectedError, APIError, httpx.HTTPError):
                continue
            logger.debug(f"Chunk {transfer.chunk.index} landed after its transfer was stopped")
        return receipts

    def discard(self) -> None:
        """Forget abandoned transfers without waiting for them."""
        with self._lock:
            self._abandoned.clear()

    def _receipt(self, transfer: _Transfer, response: dict[str, Any]) -> ChunkReceipt:
        index = transfer.chunk.index
        if not response.get("success", False):
            message = response.get("message") or "backend reported failure"
            raise ChunkRejectedError(f"Chunk {index} rejected: {message}")

        payload = response.get("data")
        part_tag = payload.get("etag") if isinstance(payload, dict) else None
        part_tag = part_tag or response.get("etag")

        return ChunkReceipt(
            index=index,
            size=transfer.size,
            started_at=transfer.started_at,
            ended_at=self._clock(),
            part_tag=part_tag,
            fingerprint=transfer.chunk_hash,
        )
