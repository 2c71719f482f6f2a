"""Upload speed tracking.

This module provides:
- SpeedTracker: samples cumulative uploaded bytes at >= 1s intervals and
  derives current, average and peak throughput plus an ETA
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

from chunkup.client.upload.types import SpeedInfo

DEFAULT_HISTORY_SIZE = 10
DEFAULT_SAMPLE_INTERVAL = 1.0  # seconds
DEFAULT_CHUNK_SPEED_HISTORY = 100


class SpeedTracker:
    """Sliding-window throughput tracker.

    The first update() anchors the start time; every later update taken at
    least sample_interval seconds after the previous sample produces one
    instantaneous speed. Average speed is cumulative bytes over cumulative
    time since the anchor.

    Usage:
        tracker = SpeedTracker()
        tracker.start(total_bytes=file_size)
        tracker.update(uploaded_bytes)  # call on every progress callback
        tracker.eta(uploaded_bytes)     # seconds, or None while unknown
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the tracker.

        Args:
            history_size: Number of instantaneous samples kept.
            sample_interval: Minimum seconds between two samples.
            clock: Monotonic time source (injectable for tests).
        """
        self._history_size = history_size
        self._sample_interval = sample_interval
        self._clock = clock
        self._lock = threading.Lock()

        self._history: deque[float] = deque(maxlen=history_size)
        self._chunk_speeds: deque[float] = deque(maxlen=DEFAULT_CHUNK_SPEED_HISTORY)
        self._total_bytes = 0
        self._start_time: float | None = None
        self._last_time = 0.0
        self._last_bytes = 0
        self._current = 0.0
        self._average = 0.0
        self._peak = 0.0
        self._last_update = 0.0

    @property
    def total_bytes(self) -> int:
        """Get the number of bytes the upload has to send in total."""
        return self._total_bytes

    @property
    def current(self) -> float:
        """Get the most recent instantaneous speed in bytes/sec."""
        return self._current

    @property
    def average(self) -> float:
        """Get the average speed since start in bytes/sec."""
        return self._average

    @property
    def peak(self) -> float:
        """Get the highest instantaneous speed observed in bytes/sec."""
        return self._peak

    @property
    def history(self) -> list[float]:
        """Get the most recent instantaneous speeds, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def chunk_speeds(self) -> list[float]:
        """Get per-chunk throughput samples, oldest first."""
        with self._lock:
            return list(self._chunk_speeds)

    def reset(self) -> None:
        """Clear all samples and figures."""
        with self._lock:
            self._history.clear()
            self._chunk_speeds.clear()
            self._total_bytes = 0
            self._start_time = None
            self._last_time = 0.0
            self._last_bytes = 0
            self._current = 0.0
            self._average = 0.0
            self._peak = 0.0
            self._last_update = 0.0

    def start(self, total_bytes: int) -> None:
        """Reset and set the byte total of a new upload."""
        self.reset()
        with self._lock:
            self._total_bytes = total_bytes

    def rebase(self, uploaded_bytes: int) -> None:
        """Restart the next sample interval at uploaded_bytes, keeping all figures.

        Used when a paused upload resumes, so the pause does not show up as
        a zero-speed sample and bytes discarded from interrupted chunks do
        not count against the next one.
        """
        now = self._clock()
        with self._lock:
            if self._start_time is None:
                self._start_time = now
            self._last_time = now
            self._last_bytes = uploaded_bytes

    def update(self, uploaded_bytes: int) -> bool:
        """Feed the cumulative number of uploaded bytes.

        Args:
            uploaded_bytes: Bytes uploaded so far across all chunks.

        Returns:
            True if a new speed sample was taken.
        """
        now = self._clock()
        with self._lock:
            if self._start_time is None:
                self._start_time = now
                self._last_time = now
                self._last_bytes = uploaded_bytes
                return False

            elapsed = now - self._last_time
            if elapsed < self._sample_interval:
                return False

            current = max(uploaded_bytes - self._last_bytes, 0) / elapsed
            self._current = current
            self._last_update = now
            self._history.append(current)

            total_time = now - self._start_time
            self._average = uploaded_bytes / total_time if total_time > 0 else 0.0
            self._peak = max(self._peak, current)

            self._last_time = now
            self._last_bytes = uploaded_bytes
            return True

    def record_chunk(self, size: int, seconds: float) -> None:
        """Record the throughput of one completed chunk transfer."""
        if seconds <= 0:
            return
        with self._lock:
            self._chunk_speeds.append(size / seconds)

    def eta(self, uploaded_bytes: int) -> float | None:
        """Estimate the seconds left, or None while the average is unknown."""
        with self._lock:
            if self._average <= 0:
                return None
            remaining = max(self._total_bytes - uploaded_bytes, 0)
            return remaining / self._average

    def snapshot(self) -> SpeedInfo:
        """Get an immutable copy of the current figures."""
        with self._lock:
            return SpeedInfo(
                current=self._current,
                average=self._average,
                peak=self._peak,
                history=tuple(self._history),
                last_update=self._last_update,
            )


def format_speed(bytes_per_second: float) -> str:
    """Format a speed for display (e.g. "1.50 MB/s")."""
    if bytes_per_second <= 0:
        return "0 B/s"
    if bytes_per_second >= 1024 ** 3:
        return f"{bytes_per_second / 1024 ** 3:.2f} GB/s"
    if bytes_per_second >= 1024 ** 2:
        return f"{bytes_per_second / 1024 ** 2:.2f} MB/s"
    if bytes_per_second >= 1024:
        return f"{bytes_per_second / 1024:.2f} KB/s"
    return f"{bytes_per_second:.0f} B/s"


def format_eta(seconds: float | None) -> str:
    """Format remaining time for display (e.g. "2m 05s")."""
    if seconds is None:
        return "unknown"
    seconds = int(seconds)
    if seconds >= 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60:02d}m"
    if seconds >= 60:
        return f"{seconds // 60}m {seconds % 60:02d}s"
    return f"{seconds}s"
