"""Tests for cancellation tokens."""

import threading

import pytest

from chunkup.client.upload.cancellation import CancellationToken
from chunkup.core.types import CancellationError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initially_not_cancelled(self) -> None:
        """A new token should not be cancelled."""
        token = CancellationToken()
        assert token.cancelled is False
        assert token() is False
        token.raise_if_cancelled()

    def test_cancel(self) -> None:
        """cancel() should set the flag and keep the reason."""
        token = CancellationToken()
        token.cancel("paused")

        assert token.cancelled is True
        assert token.reason == "paused"
        with pytest.raises(CancellationError, match="paused"):
            token.raise_if_cancelled()

    def test_cancel_propagates_to_children(self) -> None:
        """Cancelling a parent should cancel every descendant."""
        parent = CancellationToken()
        child = parent.child()
        grandchild = child.child()

        parent.cancel("cancelled")

        assert child.cancelled is True
        assert grandchild.cancelled is True
        assert grandchild.reason == "cancelled"

    def test_child_cancel_does_not_affect_parent(self) -> None:
        """Cancelling a child should leave the parent and siblings running."""
        parent = CancellationToken()
        first = parent.child()
        second = parent.child()

        first.cancel()

        assert parent.cancelled is False
        assert second.cancelled is False

    def test_child_of_cancelled_parent(self) -> None:
        """A child created after cancellation should start cancelled."""
        parent = CancellationToken()
        parent.cancel("reset")

        assert parent.child().cancelled is True

    def test_detached_child_not_cancelled(self) -> None:
        """A detached child should no longer follow its parent."""
        parent = CancellationToken()
        child = parent.child()
        parent.detach(child)

        parent.cancel()

        assert child.cancelled is False

    def test_wait_times_out(self) -> None:
        """wait() should return False when nobody cancels."""
        assert CancellationToken().wait(0.01) is False

    def test_wait_wakes_on_cancel(self) -> None:
        """wait() should return early once cancelled from another thread."""
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        try:
            assert token.wait(5.0) is True
        finally:
            timer.cancel()
