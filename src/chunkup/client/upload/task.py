"""Upload task lifecycle.

States:
    IDLE -> HASHING -> RECONCILING -> COMPLETED (instant transfer)
                                   -> INITIALIZING -> TRANSFERRING
                                   -> TRANSFERRING (resume)
    TRANSFERRING <-> PAUSED
    TRANSFERRING -> FINALIZING -> COMPLETED
    any active state -> FAILED / CANCELLED; any state -> IDLE (reset)

All state transitions are validated against VALID_TRANSITIONS.

This module provides:
- UploadTask: one resumable chunked upload of one file
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

import httpx

from chunkup.client.api import APIError, UploadClient
from chunkup.client.upload.cancellation import CancellationToken
from chunkup.client.upload.reconciler import SessionReconciler
from chunkup.client.upload.retry import RetryPolicy
from chunkup.client.upload.scheduler import TransferScheduler
from chunkup.client.upload.speed import SpeedTracker
from chunkup.client.upload.transporter import ChunkTransporter
from chunkup.client.upload.types import (
    CheckResult,
    ChunkReceipt,
    ChunkRequest,
    EventListener,
    FinalizeError,
    InvalidTransitionError,
    ResumeInfo,
    SpeedInfo,
    UploadEvent,
    UploadEventType,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadSnapshot,
)
from chunkup.core.chunking import Chunk, count_chunks, plan_chunks
from chunkup.core.config import ServerConfig, UploadOptions
from chunkup.core.hashing import HashProgress, compute_file_fingerprint
from chunkup.core.types import CancellationError, UploadError, UploadState, ValidationError

logger = logging.getLogger(__name__)

_ACTIVE = {
    UploadState.HASHING,
    UploadState.RECONCILING,
    UploadState.INITIALIZING,
    UploadState.TRANSFERRING,
}

# Valid state transitions (reset to IDLE is allowed from every other state)
VALID_TRANSITIONS: dict[UploadState, set[UploadState]] = {
    UploadState.IDLE: {UploadState.HASHING},
    UploadState.HASHING: {
        UploadState.RECONCILING,
        UploadState.FAILED,
        UploadState.CANCELLED,
        UploadState.IDLE,
    },
    UploadState.RECONCILING: {
        UploadState.INITIALIZING,
        UploadState.TRANSFERRING,
        UploadState.COMPLETED,
        UploadState.FAILED,
        UploadState.CANCELLED,
        UploadState.IDLE,
    },
    UploadState.INITIALIZING: {
        UploadState.TRANSFERRING,
        UploadState.FAILED,
        UploadState.CANCELLED,
        UploadState.IDLE,
    },
    UploadState.TRANSFERRING: {
        UploadState.PAUSED,
        UploadState.FINALIZING,
        UploadState.FAILED,
        UploadState.CANCELLED,
        UploadState.IDLE,
    },
    UploadState.PAUSED: {UploadState.TRANSFERRING, UploadState.CANCELLED, UploadState.IDLE},
    UploadState.FINALIZING: {UploadState.COMPLETED, UploadState.FAILED, UploadState.IDLE},
    UploadState.COMPLETED: {UploadState.IDLE},
    UploadState.FAILED: {UploadState.TRANSFERRING, UploadState.IDLE},  # Retry of a failed pass
    UploadState.CANCELLED: {UploadState.IDLE},
}


class UploadTask:
    """A resumable, chunked upload of a single file.

    The blocking operations (compute_fingerprint, start, resume) run in the
    caller's thread; pause, cancel and reset may be called from any other
    thread and take effect at the next suspension point.

    Usage:
        with UploadTask(ServerConfig("https://files.example.com")) as task:
            task.select_file(Path("video.mp4"))
            task.subscribe(print)
            result = task.start()  # None if paused or cancelled meanwhile
    """

    def __init__(
        self,
        client: UploadClient | ServerConfig,
        options: UploadOptions | None = None,
    ) -> None:
        """Initialize the task.

        Args:
            client: Backend client, or the server configuration to build one
                owned (and closed) by this task.
            options: Engine tunables.
        """
        if isinstance(client, ServerConfig):
            client = UploadClient(client)
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client
        self._options = options or UploadOptions()

        self._lock = threading.RLock()
        self._listeners: list[EventListener] = []
        self._reconciler = SessionReconciler(client)
        self._transporter = ChunkTransporter(
            client,
            timeout=self._options.chunk_timeout,
            chunk_fingerprints=self._options.chunk_fingerprints,
            algorithm=self._options.hash_algorithm,
        )
        self._speed = SpeedTracker()

        # Set while no hashing or transfer pass is running
        self._idle = threading.Event()
        self._idle.set()
        self._runner: int | None = None

        self._state = UploadState.IDLE
        self._clear()

    def _clear(self) -> None:
        """Forget everything derived from the selected file."""
        self._path: Path | None = None
        self._file_name: str | None = None
        self._file_size = 0
        self._fingerprint: str | None = None
        self._chunks: list[Chunk] = []
        self._check: CheckResult | None = None
        self._session: UploadSession | None = None
        self._needs_session = False
        self._scheduler: TransferScheduler | None = None
        self._token: CancellationToken | None = None
        self._hash_progress = HashProgress()
        self._result: UploadResult | None = None
        self._error: str | None = None
        self._speed.reset()
        self._transporter.discard()

    # === Properties ===

    @property
    def state(self) -> UploadState:
        """Get the current lifecycle state."""
        return self._state

    @property
    def options(self) -> UploadOptions:
        """Get the engine tunables."""
        return self._options

    @property
    def file_path(self) -> Path | None:
        """Get the selected file."""
        return self._path

    @property
    def fingerprint(self) -> str | None:
        """Get the whole-file fingerprint, once computed."""
        return self._fingerprint

    @property
    def session(self) -> UploadSession | None:
        """Get the backend session, if one was opened or resumed."""
        return self._session

    @property
    def chunks(self) -> list[Chunk]:
        """Get the planned chunks."""
        return list(self._chunks)

    @property
    def total_chunks(self) -> int:
        """Get the number of planned chunks."""
        return len(self._chunks)

    @property
    def uploaded_chunks(self) -> int:
        """Get the number of chunks stored on the backend."""
        with self._lock:
            return sum(1 for chunk in self._chunks if chunk.uploaded)

    @property
    def remaining_chunks(self) -> int:
        """Get the number of chunks still to transfer."""
        return self.total_chunks - self.uploaded_chunks

    @property
    def uploaded_size(self) -> int:
        """Get the bytes stored plus the bytes sent by in-flight transfers."""
        with self._lock:
            stored = sum(chunk.size for chunk in self._chunks if chunk.uploaded)
            in_flight = self._scheduler.sent_bytes if self._scheduler else 0
            return min(stored + in_flight, self._file_size)

    @property
    def progress(self) -> UploadProgress:
        """Get the overall byte progress."""
        return UploadProgress.of(self.uploaded_size, self._file_size)

    @property
    def hash_progress(self) -> HashProgress:
        """Get the fingerprint computation progress."""
        return self._hash_progress

    @property
    def speed(self) -> SpeedInfo:
        """Get the current throughput figures."""
        return self._speed.snapshot()

    @property
    def chunk_speeds(self) -> list[float]:
        """Get per-chunk throughput samples in bytes/sec."""
        return self._speed.chunk_speeds

    @property
    def is_instant(self) -> bool:
        """Check if the backend already held the complete file."""
        return self._check is not None and self._check.is_instant

    @property
    def resume_info(self) -> ResumeInfo | None:
        """Get the prior progress reported by the backend, if any."""
        return self._check.resume_info if self._check else None

    @property
    def error(self) -> str | None:
        """Get the message of the error that failed the task, if any."""
        return self._error

    # === Observation ===

    def snapshot(self) -> UploadSnapshot:
        """Get an immutable view of the task."""
        with self._lock:
            uploaded = self.uploaded_size
            return UploadSnapshot(
                state=self._state,
                file_name=self._file_name,
                file_size=self._file_size,
                fingerprint=self._fingerprint,
                total_chunks=len(self._chunks),
                uploaded_chunks=sum(1 for chunk in self._chunks if chunk.uploaded),
                in_flight=self._scheduler.in_flight if self._scheduler else (),
                progress=UploadProgress.of(uploaded, self._file_size),
                hash_progress=self._hash_progress,
                speed=self._speed.snapshot(),
                eta=self._speed.eta(uploaded),
                instant=self.is_instant,
                url=self._result.url if self._result else None,
                error=self._error,
            )

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener for upload events.

        Returns:
            Function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: UploadEventType, chunk_index: int | None = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        event = UploadEvent(type=event_type, snapshot=self.snapshot(), chunk_index=chunk_index)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Upload listener failed on {event_type.value}")

    # === State machine ===

    def _transition(self, new_state: UploadState) -> None:
        """Move to new_state. Caller holds the lock."""
        if new_state not in VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Cannot transition from {self._state.value} to {new_state.value}"
            )
        logger.debug(f"Upload state {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _set_state(self, new_state: UploadState) -> None:
        with self._lock:
            self._transition(new_state)
        self._emit(UploadEventType.STATE_CHANGED)

    def _advance(self, token: CancellationToken, new_state: UploadState) -> None:
        """Move to new_state unless the operation was cancelled meanwhile."""
        with self._lock:
            token.raise_if_cancelled()
            self._transition(new_state)
        self._emit(UploadEventType.STATE_CHANGED)

    def _fail(self, token: CancellationToken, error: UploadError) -> None:
        """Record a fatal error, or classify it as cancellation.

        Raises:
            CancellationError: If the operation was paused or cancelled meanwhile.
        """
        with self._lock:
            if token.cancelled:
                raise CancellationError(str(error)) from error
            self._error = str(error)
            self._transition(UploadState.FAILED)
        logger.error(f"Upload of {self._file_name} failed: {error}")
        self._emit(UploadEventType.STATE_CHANGED)

    def _begin(self) -> CancellationToken:
        """Start a hashing or transfer run in the calling thread. Caller holds the lock."""
        token = CancellationToken()
        self._token = token
        self._idle.clear()
        self._runner = threading.get_ident()
        return token

    def _end(self, token: CancellationToken) -> None:
        with self._lock:
            if self._token is token:
                self._runner = None
                self._idle.set()

    def _wait_idle(self) -> None:
        """Wait for a running pass to drain, unless called from inside it."""
        if self._runner != threading.get_ident():
            self._idle.wait()

    # === Operations ===

    def select_file(self, path: Path | str) -> None:
        """Select the file to upload.

        Raises:
            InvalidTransitionError: If the task is not idle.
            ValidationError: If the file is missing, empty or over the limits.
        """
        path = Path(path)
        with self._lock:
            if self._state != UploadState.IDLE:
                raise InvalidTransitionError(f"Cannot select a file while {self._state.value}")

            if not path.exists():
                raise ValidationError(f"File not found: {path}")
            if not path.is_file():
                raise ValidationError(f"Not a regular file: {path}")
            size = path.stat().st_size
            if size == 0:
                raise ValidationError(f"File is empty: {path}")
            max_size = self._options.max_file_size
            if max_size is not None and size > max_size:
                raise ValidationError(f"File is {size} bytes, limit is {max_size}")
            total = count_chunks(size, self._options.chunk_size)
            max_chunks = self._options.max_chunks
            if max_chunks is not None and total > max_chunks:
                raise ValidationError(
                    f"File needs {total} chunks, limit is {max_chunks}; use a larger chunk size"
                )

            self._clear()
            self._path = path
            self._file_name = path.name
            self._file_size = size
            self._chunks = plan_chunks(size, self._options.chunk_size, path)

        logger.info(f"Selected {path.name} ({size} bytes, {total} chunks)")

    def compute_fingerprint(self) -> str:
        """Fingerprint the file and reconcile it with the backend.

        Ends in COMPLETED for an instant transfer; otherwise the resume or
        fresh-session decision is recorded for start().

        Returns:
            The whole-file fingerprint.

        Raises:
            ValidationError: If no file is selected.
            ReadError: If the file cannot be read.
            ReconciliationError: If the backend check failed.
            CancellationError: If cancelled or reset meanwhile.
        """
        with self._lock:
            if self._path is None:
                raise ValidationError("No file selected")
            if self._state != UploadState.IDLE:
                raise InvalidTransitionError(f"Cannot fingerprint while {self._state.value}")
            token = self._begin()
            self._transition(UploadState.HASHING)
            path = self._path
        self._emit(UploadEventType.STATE_CHANGED)

        try:
            return self._fingerprint_and_check(path, token)
        finally:
            self._end(token)

    def _fingerprint_and_check(self, path: Path, token: CancellationToken) -> str:
        def on_hash_progress(progress: HashProgress) -> None:
            self._hash_progress = progress
            self._emit(UploadEventType.HASH_PROGRESS)

        try:
            fingerprint = compute_file_fingerprint(
                path,
                algorithm=self._options.hash_algorithm,
                window_size=self._options.hash_window_size,
                on_progress=on_hash_progress,
                cancel_check=token,
            )
        except UploadError as e:
            if isinstance(e, CancellationError):
                raise
            self._fail(token, e)
            raise

        with self._lock:
            self._fingerprint = fingerprint
        logger.info(f"Fingerprint of {self._file_name}: {fingerprint}")
        self._advance(token, UploadState.RECONCILING)

        try:
            check = self._reconciler.check_status(fingerprint, self._file_name, self._file_size)
        except UploadError as e:
            self._fail(token, e)
            raise

        with self._lock:
            token.raise_if_cancelled()
            self._check = check
            if check.is_instant:
                for chunk in self._chunks:
                    chunk.mark_uploaded()
                self._result = UploadResult(
                    file_name=self._file_name,
                    fingerprint=fingerprint,
                    size=self._file_size,
                    total_chunks=len(self._chunks),
                    url=check.url,
                    instant=True,
                )
                self._transition(UploadState.COMPLETED)
            elif check.has_progress:
                self._reconciler.apply(check, self._chunks, fingerprint)
                self._session = self._reconciler.resume_session(
                    check, self._chunks, fingerprint, self._file_name, self._file_size
                )
                self._needs_session = False
            else:
                self._needs_session = True

        if check.is_instant:
            logger.info(f"Instant transfer: {self._file_name} is already stored")
            self._emit(UploadEventType.STATE_CHANGED)
        return fingerprint

    def start(self) -> UploadResult | None:
        """Run the upload: fingerprint, reconcile, transfer and finalize.

        Returns:
            UploadResult on completion, or None if the upload was paused,
            cancelled or reset before it finished.

        Raises:
            ValidationError: If no file is selected.
            InvalidTransitionError: If the task is past the start.
            UploadError: On any fatal failure (the task is then FAILED).
        """
        with self._lock:
            if self._state == UploadState.COMPLETED and self._result is not None:
                return self._result
            if self._state not in (UploadState.IDLE, UploadState.RECONCILING):
                raise InvalidTransitionError(f"Cannot start while {self._state.value}")
            needs_fingerprint = self._fingerprint is None

        try:
            if needs_fingerprint:
                self.compute_fingerprint()
        except CancellationError:
            return None

        with self._lock:
            if self._state == UploadState.COMPLETED:
                return self._result
            if self._state != UploadState.RECONCILING:
                return None
            token = self._begin()

        try:
            if self._needs_session:
                try:
                    self._open_session(token)
                except CancellationError:
                    return None
            return self._run_pass(token, fresh=True)
        finally:
            self._end(token)

    def _open_session(self, token: CancellationToken) -> None:
        self._advance(token, UploadState.INITIALIZING)
        try:
            session = self._reconciler.initialize_session(
                self._fingerprint,
                self._file_name,
                self._file_size,
                self._options.chunk_size,
                len(self._chunks),
            )
        except UploadError as e:
            self._fail(token, e)
            raise
        with self._lock:
            token.raise_if_cancelled()
            self._session = session
            self._needs_session = False

    def _run_pass(self, token: CancellationToken, fresh: bool = False) -> UploadResult | None:
        """Transfer every missing chunk, then finalize. Caller owns token.

        Speed figures restart only on the fresh pass of start(); a resumed
        pass keeps the peak and history of the earlier ones.
        """
        try:
            self._advance(token, UploadState.TRANSFERRING)
        except CancellationError:
            return None

        scheduler = TransferScheduler(
            self._transporter,
            ChunkRequest(
                file_name=self._file_name,
                fingerprint=self._fingerprint,
                total_chunks=len(self._chunks),
            ),
            concurrent=self._options.concurrent,
            retry=RetryPolicy(self._options.retry_times, self._options.retry_delay),
            lock=self._lock,
            on_progress=self._on_chunk_progress,
            on_chunk_done=self._on_chunk_done,
        )
        with self._lock:
            self._scheduler = scheduler
            if fresh:
                self._speed.start(self._file_size)
        if fresh:
            self._speed.update(self.uploaded_size)
        else:
            self._speed.rebase(self.uploaded_size)

        logger.info(
            f"Transferring {self.remaining_chunks} of {self.total_chunks} chunks "
            f"of {self._file_name}"
        )
        try:
            scheduler.run(self._chunks, token)
        except UploadError as e:
            try:
                self._fail(token, e)
            except CancellationError:
                return None
            raise

        with self._lock:
            if token.cancelled:
                return None
            self._transition(UploadState.FINALIZING)
        self._emit(UploadEventType.STATE_CHANGED)

        try:
            return self._finalize(token)
        except CancellationError:
            return None

    def _finalize(self, token: CancellationToken) -> UploadResult:
        parts = [
            {"partNumber": chunk.part_number, "etag": chunk.part_tag}
            for chunk in self._chunks
            if chunk.part_tag
        ]
        try:
            response = self._client.complete_upload(
                self._fingerprint, self._file_name, len(self._chunks), parts
            )
        except (APIError, httpx.HTTPError) as e:
            error = FinalizeError(f"complete failed: {e}")
            self._fail(token, error)
            raise error from e

        if not response.get("success", False):
            error = FinalizeError(
                f"complete failed: {response.get('message') or 'backend reported failure'}"
            )
            self._fail(token, error)
            raise error

        result = UploadResult(
            file_name=self._file_name,
            fingerprint=self._fingerprint,
            size=self._file_size,
            total_chunks=len(self._chunks),
            url=response.get("url"),
        )
        with self._lock:
            self._result = result
            self._error = None
            self._transition(UploadState.COMPLETED)
        logger.info(f"Upload of {self._file_name} complete")
        self._emit(UploadEventType.STATE_CHANGED)
        return result

    def _on_chunk_progress(self, chunk: Chunk, sent: int, total: int) -> None:
        self._emit(UploadEventType.CHUNK_PROGRESS, chunk.index)
        if self._speed.update(self.uploaded_size):
            self._emit(UploadEventType.SPEED_UPDATED)

    def _on_chunk_done(self, chunk: Chunk, receipt: ChunkReceipt) -> None:
        self._speed.record_chunk(receipt.size, receipt.elapsed)
        self._emit(UploadEventType.CHUNK_UPLOADED, chunk.index)

    def pause(self) -> None:
        """Pause the transfer.

        In-flight transfers are cancelled and their chunks restart from byte
        0 on resume. The running start()/resume() call returns None once the
        transfers have drained.

        Raises:
            InvalidTransitionError: If not transferring.
        """
        with self._lock:
            if self._state != UploadState.TRANSFERRING:
                raise InvalidTransitionError(f"Cannot pause while {self._state.value}")
            self._transition(UploadState.PAUSED)
            if self._token is not None:
                self._token.cancel("paused")
        logger.info(f"Paused upload of {self._file_name}")
        self._emit(UploadEventType.STATE_CHANGED)

    def resume(self) -> UploadResult | None:
        """Resume a paused upload, or retry a failed one that has a session.

        Returns:
            UploadResult on completion, or None if paused or cancelled again.

        Raises:
            InvalidTransitionError: If there is nothing to resume.
            UploadError: On any fatal failure (the task is then FAILED).
        """
        with self._lock:
            resumable = self._state == UploadState.PAUSED or (
                self._state == UploadState.FAILED
                and self._session is not None
                and self._fingerprint is not None
            )
            if not resumable:
                raise InvalidTransitionError(f"Cannot resume while {self._state.value}")

        self._wait_idle()
        landed = self._transporter.settle()

        with self._lock:
            if self._state not in (UploadState.PAUSED, UploadState.FAILED):
                raise InvalidTransitionError(f"Cannot resume while {self._state.value}")
            for receipt in landed:
                self._apply_landed(receipt)
            self._error = None
            token = self._begin()
        logger.info(f"Resuming upload of {self._file_name}")

        try:
            return self._run_pass(token)
        finally:
            self._end(token)

    def _apply_landed(self, receipt: ChunkReceipt) -> None:
        """Record a chunk the backend accepted after its transfer was stopped. Caller holds the lock."""
        if receipt.index >= len(self._chunks):
            return
        chunk = self._chunks[receipt.index]
        chunk.started_at = receipt.started_at
        chunk.ended_at = receipt.ended_at
        if receipt.fingerprint is not None:
            chunk.fingerprint = receipt.fingerprint
        chunk.mark_uploaded(receipt.part_tag)

    def cancel(self) -> None:
        """Cancel the upload and release the backend session (best effort).

        Raises:
            InvalidTransitionError: If the task is not running or paused.
        """
        with self._lock:
            if self._state not in _ACTIVE and self._state != UploadState.PAUSED:
                raise InvalidTransitionError(f"Cannot cancel while {self._state.value}")
            self._transition(UploadState.CANCELLED)
            if self._token is not None:
                self._token.cancel("cancelled")
            session = self._session
            fingerprint = self._fingerprint
        logger.info(f"Cancelled upload of {self._file_name}")
        self._emit(UploadEventType.STATE_CHANGED)

        self._wait_idle()
        self._transporter.discard()
        if session is not None and fingerprint is not None:
            try:
                self._client.cancel_upload(fingerprint)
            except (APIError, httpx.HTTPError) as e:
                logger.error(f"Failed to cancel remote session of {self._file_name}: {e}")

    def reset(self) -> None:
        """Stop anything running and forget the file. Allowed in every state."""
        with self._lock:
            if self._token is not None:
                self._token.cancel("reset")
        self._wait_idle()
        with self._lock:
            changed = self._state != UploadState.IDLE
            if changed:
                self._transition(UploadState.IDLE)
            self._clear()
        if changed:
            self._emit(UploadEventType.STATE_CHANGED)

    def close(self) -> None:
        """Reset the task and close the client if the task created it."""
        self.reset()
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> UploadTask:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
