"""Resumable chunked upload engine.

Architecture:
    ChunkPlanner → ContentHasher → SessionReconciler → TransferScheduler → finalize

Components:
- **UploadTask**: Lifecycle state machine of one file upload
- **SessionReconciler**: check/initialize calls, instant transfer and resume matching
- **TransferScheduler**: Bounded-concurrency chunk transfers with retry
- **ChunkTransporter**: Single multipart chunk upload with progress and deadline
- **SpeedTracker**: Sampled throughput, average/peak speed and ETA
- **CancellationToken**: Top-down cooperative cancellation (pause, cancel, reset)
"""

from chunkup.client.upload.cancellation import CancellationToken
from chunkup.client.upload.reconciler import SessionReconciler
from chunkup.client.upload.retry import (
    DEFAULT_RETRY_DELAY,
    DEFAULT_RETRY_TIMES,
    RETRYABLE_EXCEPTIONS,
    RetryPolicy,
    retry_with_backoff,
)
from chunkup.client.upload.scheduler import DEFAULT_CONCURRENT, TransferScheduler
from chunkup.client.upload.speed import SpeedTracker, format_eta, format_speed
from chunkup.client.upload.task import VALID_TRANSITIONS, UploadTask
from chunkup.client.upload.transporter import DEFAULT_CHUNK_TIMEOUT, ChunkTransporter
from chunkup.client.upload.types import (
    CancellationError,
    CheckResult,
    ChunkReceipt,
    ChunkRejectedError,
    ChunkRequest,
    EventListener,
    FinalizeError,
    InvalidTransitionError,
    NetworkError,
    ProgressCallback,
    ReadError,
    ReconciliationError,
    ResumeInfo,
    SpeedInfo,
    TransferFailed,
    TransferTimeoutError,
    UploadError,
    UploadEvent,
    UploadEventType,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadSnapshot,
    UploadState,
    ValidationError,
)

__all__ = [
    # Task
    "VALID_TRANSITIONS",
    "UploadTask",
    # Components
    "CancellationToken",
    "ChunkTransporter",
    "DEFAULT_CHUNK_TIMEOUT",
    "DEFAULT_CONCURRENT",
    "SessionReconciler",
    "SpeedTracker",
    "TransferScheduler",
    "format_eta",
    "format_speed",
    # Retry
    "DEFAULT_RETRY_DELAY",
    "DEFAULT_RETRY_TIMES",
    "RETRYABLE_EXCEPTIONS",
    "RetryPolicy",
    "retry_with_backoff",
    # Types
    "CheckResult",
    "ChunkReceipt",
    "ChunkRequest",
    "EventListener",
    "ProgressCallback",
    "ResumeInfo",
    "SpeedInfo",
    "UploadEvent",
    "UploadEventType",
    "UploadProgress",
    "UploadResult",
    "UploadSession",
    "UploadSnapshot",
    "UploadState",
    # Errors
    "CancellationError",
    "ChunkRejectedError",
    "FinalizeError",
    "InvalidTransitionError",
    "NetworkError",
    "ReadError",
    "ReconciliationError",
    "TransferFailed",
    "TransferTimeoutError",
    "UploadError",
    "ValidationError",
]
