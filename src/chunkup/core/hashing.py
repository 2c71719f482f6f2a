"""Content fingerprints for chunkup.

This module provides:
- Streaming whole-file fingerprints with progress reporting
- Per-chunk fingerprints used by the backend to verify chunk integrity

Only determinism matters here: the fingerprint keys deduplication and resume
on the backend, so both sides must use the same algorithm.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from chunkup.core.chunking import Chunk
from chunkup.core.types import CancellationError, ReadError

logger = logging.getLogger(__name__)

DEFAULT_HASH_ALGORITHM = "md5"
DEFAULT_HASH_WINDOW_SIZE = 2 * 1024 * 1024  # 2 MB read windows


@dataclass(frozen=True)
class HashProgress:
    """Progress of a fingerprint computation."""

    loaded: int = 0
    total: int = 0
    percentage: int = 0


def new_hasher(algorithm: str = DEFAULT_HASH_ALGORITHM) -> hashlib._Hash:
    """Create an incremental digest accumulator.

    Raises:
        ValueError: If the algorithm is not supported by hashlib.
    """
    try:
        return hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from None


def compute_file_fingerprint(
    path: Path,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
    window_size: int = DEFAULT_HASH_WINDOW_SIZE,
    on_progress: Callable[[HashProgress], None] | None = None,
    cancel_check: Callable[[], bool] | None = None,
) -> str:
    """Compute the fingerprint of a file.

    Reads the file in windows of window_size bytes so that memory use stays
    bounded regardless of file size. cancel_check is polled between windows.

    Args:
        path: Path to the file to hash.
        algorithm: hashlib algorithm name.
        window_size: Bytes read per window.
        on_progress: Called after each window with the bytes processed so far.
        cancel_check: Returns True if the computation should stop.

    Returns:
        Hex digest of the file content.

    Raises:
        ReadError: If the file cannot be opened or a window cannot be read.
        CancellationError: If cancel_check returned True.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")

    hasher = new_hasher(algorithm)
    try:
        total = Path(path).stat().st_size
        f = open(path, "rb")
    except OSError as e:
        raise ReadError(f"Cannot open {path}: {e}") from e

    loaded = 0
    with f:
        while True:
            if cancel_check and cancel_check():
                raise CancellationError(f"Hashing of {path} cancelled at {loaded} bytes")
            try:
                window = f.read(window_size)
            except OSError as e:
                raise ReadError(f"Cannot read {path} at offset {loaded}: {e}") from e
            if not window:
                break
            hasher.update(window)
            loaded += len(window)
            if on_progress:
                percentage = round(loaded * 100 / total) if total else 100
                on_progress(HashProgress(loaded=loaded, total=total, percentage=percentage))

    digest = hasher.hexdigest()
    logger.debug(f"Fingerprint of {path}: {digest} ({loaded} bytes, {algorithm})")
    return digest


def compute_chunk_fingerprint(
    chunk: Chunk | bytes,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
) -> str:
    """Compute the fingerprint of a single chunk.

    Args:
        chunk: A planned chunk (its byte range is read from disk) or raw bytes.
        algorithm: hashlib algorithm name.

    Returns:
        Hex digest of the chunk content.

    Raises:
        ReadError: If the chunk's byte range cannot be read.
    """
    if isinstance(chunk, Chunk):
        try:
            data = chunk.read()
        except OSError as e:
            raise ReadError(f"Cannot read chunk {chunk.index}: {e}") from e
    else:
        data = chunk
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()
