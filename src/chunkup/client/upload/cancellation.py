"""Cooperative cancellation for upload operations.

This module provides:
- CancellationToken: thread-safe cancellation flag with parent/child links

A task owns one token per upload pass. The scheduler derives one child token
per admitted chunk, so pause/cancel propagate top-down while a single chunk
can still be cancelled on its own.
"""

from __future__ import annotations

import threading

from chunkup.core.types import CancellationError


class CancellationToken:
    """Thread-safe cancellation flag.

    Usage:
        token = CancellationToken()
        child = token.child()

        token.cancel("paused")
        assert child.cancelled
        child.raise_if_cancelled()  # raises CancellationError
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        """Initialize the token.

        Args:
            parent: Token whose cancellation also cancels this one.
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancellationToken] = []
        self._reason: str | None = None
        if parent is not None:
            parent._attach(self)

    @property
    def cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Get the reason given to cancel(), if any."""
        return self._reason

    def __call__(self) -> bool:
        """Allow the token to be used as a cancel_check callable."""
        return self._event.is_set()

    def _attach(self, child: CancellationToken) -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
        child.cancel(self._reason)

    def child(self) -> CancellationToken:
        """Create a token cancelled together with this one."""
        return CancellationToken(parent=self)

    def detach(self, child: CancellationToken) -> None:
        """Stop propagating cancellation to child."""
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation of this token and all its children."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel(reason)

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, waking early on cancellation.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError if cancellation was requested."""
        if self._event.is_set():
            raise CancellationError(self._reason or "Operation cancelled")
