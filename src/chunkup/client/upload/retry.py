"""Retry logic with linear backoff and cooperative cancellation.

This module provides:
- RetryPolicy: attempt limit and linear delay (attempt * base delay)
- retry_with_backoff: run a callable until it succeeds, attempts run out,
  or the cancellation token fires
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from chunkup.client.upload.cancellation import CancellationToken
from chunkup.client.upload.types import NetworkError, TransferFailed
from chunkup.core.types import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_RETRY_TIMES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds, multiplied by the attempt number

# Failures worth another attempt
RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (NetworkError,)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a chunk is retried.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay unit; the wait after attempt n is n * base_delay.
    """

    max_attempts: int = DEFAULT_RETRY_TIMES
    base_delay: float = DEFAULT_RETRY_DELAY

    def delay_for(self, attempt: int) -> float:
        """Get the wait after a failed attempt (1-based)."""
        return attempt * self.base_delay


def retry_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy,
    token: CancellationToken,
    chunk_index: int,
    retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
    on_failure: Callable[[int, Exception], None] | None = None,
) -> T:
    """Execute func with linear backoff retry.

    Cancellation is never retried: a CancellationError from func, or a
    cancelled token between attempts, stops the loop immediately.

    Args:
        func: Function to execute.
        policy: Attempt limit and backoff.
        token: Cancellation token checked before each attempt and while waiting.
        chunk_index: Chunk being retried (for errors and logs).
        retryable_exceptions: Exception types worth another attempt.
        on_failure: Called with (attempt, error) after each retryable failure.

    Returns:
        Result of func.

    Raises:
        CancellationError: If the token was cancelled.
        TransferFailed: If all attempts failed.
    """
    last_error: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        token.raise_if_cancelled()
        try:
            return func()
        except CancellationError:
            raise
        except retryable_exceptions as e:
            # A failure surfacing while paused is the pause, not the network
            token.raise_if_cancelled()
            last_error = e
            if on_failure:
                on_failure(attempt, e)

            if attempt == policy.max_attempts:
                logger.error(f"Chunk {chunk_index}: all {policy.max_attempts} attempts failed: {e}")
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Chunk {chunk_index}: attempt {attempt}/{policy.max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            if token.wait(delay):
                token.raise_if_cancelled()

    raise TransferFailed(chunk_index, policy.max_attempts, last_error)
