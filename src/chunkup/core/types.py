"""Shared types for chunkup.

This module defines the upload lifecycle states and the base of the error
taxonomy, used by both the core helpers and the upload engine.
"""

from __future__ import annotations

from enum import Enum


class UploadState(str, Enum):
    """Lifecycle state of an upload task."""

    IDLE = "idle"
    HASHING = "hashing"
    RECONCILING = "reconciling"
    INITIALIZING = "initializing"
    TRANSFERRING = "transferring"
    PAUSED = "paused"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if no further work happens in this state without reset."""
        return self in (UploadState.COMPLETED, UploadState.FAILED, UploadState.CANCELLED)


class UploadError(Exception):
    """Base exception for upload errors."""


class ValidationError(UploadError):
    """The task cannot proceed with its current inputs (no retry)."""


class ReadError(UploadError):
    """Reading the source file failed."""


class CancellationError(UploadError):
    """The operation was stopped by pause or cancel.

    Not a failure: it is never retried and never moves a task to FAILED.
    """
