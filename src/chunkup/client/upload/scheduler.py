"""Bounded-concurrency chunk transfer scheduling.

This module provides:
- TransferScheduler: runs chunk transfers on worker threads, never more than
  `concurrent` at a time, with per-chunk retry and cooperative cancellation
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from chunkup.client.upload.cancellation import CancellationToken
from chunkup.client.upload.retry import RetryPolicy, retry_with_backoff
from chunkup.client.upload.types import ChunkReceipt, ChunkRequest
from chunkup.core.chunking import Chunk
from chunkup.core.types import CancellationError

if TYPE_CHECKING:
    from chunkup.client.upload.transporter import ChunkTransporter

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENT = 3

# (chunk index, receipt on success, error on failure)
_Completion = tuple[int, "ChunkReceipt | None", "BaseException | None"]


class TransferScheduler:
    """Runs the transfers of one upload pass.

    The scheduler owns the in-flight registry (chunk index -> cancellation
    token). Chunk transfer state (uploaded, progress, retry_count, part tag,
    timestamps) is mutated only here, under the lock shared with the owning
    upload task.

    Usage:
        scheduler = TransferScheduler(transporter, request, concurrent=3)
        scheduler.run(chunks, token)  # blocks until done, paused or failed
    """

    def __init__(
        self,
        transporter: ChunkTransporter,
        request: ChunkRequest,
        concurrent: int = DEFAULT_CONCURRENT,
        retry: RetryPolicy | None = None,
        lock: threading.RLock | None = None,
        on_progress: Callable[[Chunk, int, int], None] | None = None,
        on_chunk_done: Callable[[Chunk, ChunkReceipt], None] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            transporter: Sends single chunks.
            request: Per-file fields sent with every chunk.
            concurrent: Maximum number of transfers in flight.
            retry: Retry policy per chunk.
            lock: Lock guarding chunk state, shared with the caller.
            on_progress: Called with (chunk, sent_bytes, total_bytes) while sending.
            on_chunk_done: Called with (chunk, receipt) after a chunk is stored.
        """
        if concurrent < 1:
            raise ValueError(f"concurrent must be at least 1, got {concurrent}")
        self._transporter = transporter
        self._request = request
        self._concurrent = concurrent
        self._retry = retry or RetryPolicy()
        self._lock = lock or threading.RLock()
        self._on_progress = on_progress
        self._on_chunk_done = on_chunk_done

        self._in_flight: dict[int, CancellationToken] = {}
        self._sent: dict[int, int] = {}
        self._max_in_flight = 0

    @property
    def concurrent(self) -> int:
        """Get the concurrency bound."""
        return self._concurrent

    @property
    def in_flight(self) -> tuple[int, ...]:
        """Get the indices of chunks currently being transferred."""
        with self._lock:
            return tuple(sorted(self._in_flight))

    @property
    def max_in_flight(self) -> int:
        """Get the highest number of simultaneous transfers observed."""
        return self._max_in_flight

    @property
    def sent_bytes(self) -> int:
        """Get the bytes sent so far by transfers still in flight."""
        with self._lock:
            return sum(self._sent.values())

    def run(self, chunks: list[Chunk], token: CancellationToken) -> None:
        """Transfer every chunk that is not uploaded yet.

        Returns when all chunks are uploaded, or when token is cancelled and
        every admitted transfer has acknowledged the cancellation.

        Args:
            chunks: Planned chunks of the file (uploaded ones are skipped).
            token: Cancellation token of the pass.

        Raises:
            TransferFailed: If a chunk exhausted its retries.
            ReadError: If a chunk could not be read.
        """
        by_index = {chunk.index: chunk for chunk in chunks}
        pending = deque(chunk for chunk in chunks if not chunk.uploaded)
        completions: queue.Queue[_Completion] = queue.Queue()
        failure: BaseException | None = None

        logger.debug(f"Scheduling {len(pending)} of {len(chunks)} chunks")

        while True:
            with self._lock:
                while (
                    failure is None
                    and not token.cancelled
                    and pending
                    and len(self._in_flight) < self._concurrent
                ):
                    chunk = pending.popleft()
                    if chunk.uploaded or chunk.index in self._in_flight:
                        continue
                    self._admit(chunk, token.child(), completions)
                if not self._in_flight:
                    break

            index, receipt, error = completions.get()
            chunk = by_index[index]

            with self._lock:
                child = self._in_flight.pop(index)
                token.detach(child)
                self._sent.pop(index, None)
                if receipt is not None:
                    self._apply(chunk, receipt)
                else:
                    chunk.progress = 0
                    if not isinstance(error, CancellationError) and failure is None:
                        failure = error
                        logger.error(f"Chunk {index} failed, stopping transfers: {error}")
                        for other in self._in_flight.values():
                            other.cancel("transfer failed")

            if receipt is not None and self._on_chunk_done:
                self._on_chunk_done(chunk, receipt)

        if failure is not None:
            raise failure

        if token.cancelled:
            logger.debug("Transfer pass cancelled, in-flight transfers drained")

    def _admit(
        self,
        chunk: Chunk,
        child: CancellationToken,
        completions: queue.Queue[_Completion],
    ) -> None:
        """Register a chunk as in flight and start its transfer thread."""
        self._in_flight[chunk.index] = child
        self._sent[chunk.index] = 0
        chunk.progress = 0
        self._max_in_flight = max(self._max_in_flight, len(self._in_flight))

        thread = threading.Thread(
            target=self._transfer,
            args=(chunk, child, completions),
            name=f"chunk-{chunk.index}",
            daemon=True,
        )
        thread.start()

    def _apply(self, chunk: Chunk, receipt: ChunkReceipt) -> None:
        """Record a successful transfer on the chunk. Caller holds the lock."""
        chunk.started_at = receipt.started_at
        chunk.ended_at = receipt.ended_at
        if receipt.fingerprint is not None:
            chunk.fingerprint = receipt.fingerprint
        chunk.mark_uploaded(receipt.part_tag)
        logger.debug(f"Chunk {chunk.index} uploaded in {receipt.elapsed:.2f}s")

    def _transfer(
        self,
        chunk: Chunk,
        token: CancellationToken,
        completions: queue.Queue[_Completion],
    ) -> None:
        """Worker thread body: upload one chunk with retries."""

        def on_progress(sent: int, total: int) -> None:
            with self._lock:
                if chunk.index not in self._in_flight:
                    return
                self._sent[chunk.index] = sent
                chunk.progress = sent * 100 // total if total else 100
            if self._on_progress:
                self._on_progress(chunk, sent, total)

        def on_failure(attempt: int, error: Exception) -> None:
            with self._lock:
                chunk.retry_count += 1
                chunk.progress = 0
                self._sent[chunk.index] = 0

        try:
            receipt = retry_with_backoff(
                lambda: self._transporter.upload(chunk, self._request, token, on_progress),
                self._retry,
                token,
                chunk.index,
                on_failure=on_failure,
            )
        except BaseException as e:
            completions.put((chunk.index, None, e))
        else:
            completions.put((chunk.index, receipt, None))
