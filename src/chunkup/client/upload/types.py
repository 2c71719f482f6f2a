"""Shared types and dataclasses for upload operations.

This module provides:
- Error taxonomy of the upload engine (on top of chunkup.core.types)
- UploadSession, CheckResult, ResumeInfo: backend session bookkeeping
- ChunkRequest, ChunkReceipt: single-chunk transfer input/output
- UploadProgress, UploadResult: task progress and outcome
- UploadEventType, UploadEvent, UploadSnapshot: state-change notifications
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chunkup.core.hashing import HashProgress
from chunkup.core.types import (
    CancellationError,
    ReadError,
    UploadError,
    UploadState,
    ValidationError,
)


class NetworkError(UploadError):
    """A chunk transfer failed in transit (retryable)."""


class TransferTimeoutError(NetworkError):
    """A chunk transfer exceeded its own deadline (retryable)."""


class ChunkRejectedError(NetworkError):
    """The backend answered a chunk upload with an error (retryable)."""


class TransferFailed(UploadError):
    """A chunk exhausted its retries; fatal for the current pass.

    Attributes:
        chunk_index: Index of the chunk that failed.
        attempts: Number of attempts made.
    """

    def __init__(self, chunk_index: int, attempts: int, cause: Exception | None = None) -> None:
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Chunk {chunk_index} failed after {attempts} attempts"
            + (f": {cause}" if cause else "")
        )


class ReconciliationError(UploadError):
    """The check or initialize call failed; no transfer was started."""


class FinalizeError(UploadError):
    """The backend could not finalize the object; chunk state is kept."""


class InvalidTransitionError(UploadError):
    """Raised when attempting an operation not allowed in the current state."""


@dataclass(frozen=True)
class UploadSession:
    """Server-side bookkeeping of an in-progress multi-chunk upload."""

    session_id: str | None
    remote_upload_id: str | None
    object_name: str | None
    file_name: str
    file_size: int
    total_chunks: int
    satisfied_chunk_ids: frozenset[str] = frozenset()

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        file_name: str,
        file_size: int,
        total_chunks: int,
        satisfied_chunk_ids: frozenset[str] = frozenset(),
    ) -> UploadSession:
        """Create from a "session" object of a check/initialize response.

        Missing fields fall back to the locally known values.
        """
        return cls(
            session_id=data.get("sessionId"),
            remote_upload_id=data.get("uploadId"),
            object_name=data.get("objectName"),
            file_name=data.get("fileName") or file_name,
            file_size=int(data.get("fileSize") or file_size),
            total_chunks=int(data.get("totalChunks") or total_chunks),
            satisfied_chunk_ids=satisfied_chunk_ids,
        )


@dataclass(frozen=True)
class ResumeInfo:
    """Prior progress reported by the backend."""

    uploaded_count: int = 0
    total_chunks: int = 0
    progress: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResumeInfo:
        """Create from a "resumeInfo" response object."""
        return cls(
            uploaded_count=int(data.get("uploadedCount") or 0),
            total_chunks=int(data.get("totalChunks") or 0),
            progress=float(data.get("progress") or 0),
        )


@dataclass(frozen=True)
class CheckResult:
    """Result of the backend check call.

    Attributes:
        exists: Backend knows content for this fingerprint.
        complete: The object is fully stored (instant transfer).
        url: Location of the stored object, if complete.
        satisfied_chunk_ids: Chunk identifiers the backend already holds.
        part_tags: Part tags by chunk index, for backends that report them.
        legacy_uploaded_count: Count-only progress from older backends.
        resume_info: Prior progress summary, if any.
        session: Raw session object of the response, if any.
    """

    exists: bool = False
    complete: bool = False
    url: str | None = None
    satisfied_chunk_ids: frozenset[str] = frozenset()
    part_tags: dict[int, str] = field(default_factory=dict)
    legacy_uploaded_count: int = 0
    resume_info: ResumeInfo | None = None
    session: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckResult:
        """Create from a check response dictionary.

        Chunk identifiers come from "uploadedChunks" or, for multipart
        backends, from "session.parts". The count-only "uploadedParts" /
        "resumeInfo.uploadedCount" is kept only when neither is present.
        """
        session = data.get("session") or None
        resume = data.get("resumeInfo")

        part_tags: dict[int, str] = {}
        parts = session.get("parts") if session else None
        for part in parts or []:
            part_number = int(part["partNumber"])
            if part_number >= 1:
                part_tags[part_number - 1] = part.get("etag") or ""

        identifiers_available = "uploadedChunks" in data or parts is not None
        legacy_count = 0
        if not identifiers_available:
            if session and session.get("uploadedParts"):
                legacy_count = int(session["uploadedParts"])
            elif resume and resume.get("uploadedCount"):
                legacy_count = int(resume["uploadedCount"])

        resume_info = ResumeInfo.from_dict(resume) if resume else None
        if resume_info is None and session:
            resume_info = ResumeInfo(
                uploaded_count=int(session.get("uploadedParts") or len(part_tags)),
                total_chunks=int(session.get("totalChunks") or 0),
                progress=float(session.get("progress") or 0),
            )

        return cls(
            exists=bool(data.get("fileExists", False)),
            complete=bool(data.get("isComplete", False)),
            url=data.get("url"),
            satisfied_chunk_ids=frozenset(data.get("uploadedChunks") or ()),
            part_tags=part_tags,
            legacy_uploaded_count=legacy_count,
            resume_info=resume_info,
            session=session,
        )

    @property
    def is_instant(self) -> bool:
        """Check if the object already exists in full on the backend."""
        return self.exists and self.complete

    @property
    def has_progress(self) -> bool:
        """Check if the backend reports prior progress for this fingerprint."""
        return bool(
            self.satisfied_chunk_ids
            or self.part_tags
            or self.legacy_uploaded_count
            or self.session
        )


@dataclass(frozen=True)
class ChunkRequest:
    """Per-file fields sent with every chunk."""

    file_name: str
    fingerprint: str
    total_chunks: int


@dataclass(frozen=True)
class ChunkReceipt:
    """Outcome of a successful chunk transfer."""

    index: int
    size: int
    started_at: float
    ended_at: float
    part_tag: str | None = None
    fingerprint: str | None = None

    @property
    def elapsed(self) -> float:
        """Seconds spent transferring the chunk."""
        return max(self.ended_at - self.started_at, 0.0)


@dataclass(frozen=True)
class UploadProgress:
    """Overall byte progress of an upload."""

    loaded: int = 0
    total: int = 0
    percentage: int = 0

    @classmethod
    def of(cls, loaded: int, total: int) -> UploadProgress:
        """Build progress with a rounded percentage."""
        percentage = round(loaded * 100 / total) if total > 0 else 0
        return cls(loaded=loaded, total=total, percentage=percentage)


@dataclass(frozen=True)
class UploadResult:
    """Result of a completed upload."""

    file_name: str
    fingerprint: str
    size: int
    total_chunks: int
    url: str | None = None
    instant: bool = False


@dataclass(frozen=True)
class SpeedInfo:
    """Throughput figures in bytes/second."""

    current: float = 0.0
    average: float = 0.0
    peak: float = 0.0
    history: tuple[float, ...] = ()
    last_update: float = 0.0


class UploadEventType(str, Enum):
    """Kind of notification emitted by an upload task."""

    STATE_CHANGED = "state_changed"
    HASH_PROGRESS = "hash_progress"
    CHUNK_PROGRESS = "chunk_progress"
    CHUNK_UPLOADED = "chunk_uploaded"
    SPEED_UPDATED = "speed_updated"


@dataclass(frozen=True)
class UploadSnapshot:
    """Immutable view of an upload task at one point in time."""

    state: UploadState
    file_name: str | None = None
    file_size: int = 0
    fingerprint: str | None = None
    total_chunks: int = 0
    uploaded_chunks: int = 0
    in_flight: tuple[int, ...] = ()
    progress: UploadProgress = field(default_factory=UploadProgress)
    hash_progress: HashProgress = field(default_factory=HashProgress)
    speed: SpeedInfo = field(default_factory=SpeedInfo)
    eta: float | None = None
    instant: bool = False
    url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class UploadEvent:
    """A discrete notification from an upload task.

    Attributes:
        type: What happened.
        snapshot: Task state right after it happened.
        chunk_index: Chunk concerned, for chunk events.
    """

    type: UploadEventType
    snapshot: UploadSnapshot
    chunk_index: int | None = None


# Type aliases for callbacks
ProgressCallback = Callable[[int, int], None]
EventListener = Callable[[UploadEvent], None]

__all__ = [
    "CancellationError",
    "ChunkReceipt",
    "ChunkRejectedError",
    "ChunkRequest",
    "CheckResult",
    "EventListener",
    "FinalizeError",
    "InvalidTransitionError",
    "NetworkError",
    "ProgressCallback",
    "ReadError",
    "ReconciliationError",
    "ResumeInfo",
    "SpeedInfo",
    "TransferFailed",
    "TransferTimeoutError",
    "UploadError",
    "UploadEvent",
    "UploadEventType",
    "UploadProgress",
    "UploadResult",
    "UploadSession",
    "UploadSnapshot",
    "UploadState",
    "ValidationError",
]
