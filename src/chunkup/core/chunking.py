"""Fixed-size chunk planning for chunkup.

This module provides:
- Deterministic byte-range partitioning of a file into upload chunks
- Chunk identifiers shared with the backend for resume matching

Both client and backend index chunks the same way for a given
(file_size, chunk_size) pair, so resume never needs to exchange byte ranges.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

# Chunk size configuration (in bytes)
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MB, minimum S3 part size
CHUNK_ID_SEPARATOR = "_chunk_"


@dataclass
class Chunk:
    """A contiguous byte range of a file, the unit of network transfer.

    The byte range never changes once planned. Transfer state (uploaded,
    progress, retry_count, timestamps, part_tag) is mutated by the transfer
    scheduler only.
    """

    index: int
    start: int
    end: int
    path: Path | None = None
    fingerprint: str | None = None
    uploaded: bool = False
    progress: int = 0
    retry_count: int = 0
    part_tag: str | None = None
    started_at: float | None = None
    ended_at: float | None = None

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return self.end - self.start

    @property
    def part_number(self) -> int:
        """Return the 1-based part number used by multipart backends."""
        return self.index + 1

    @property
    def throughput(self) -> float | None:
        """Bytes per second of the last successful transfer, if known."""
        if self.started_at is None or self.ended_at is None:
            return None
        elapsed = self.ended_at - self.started_at
        if elapsed <= 0:
            return None
        return self.size / elapsed

    def read(self) -> bytes:
        """Read this chunk's bytes from the source file.

        Raises:
            ValueError: If the chunk has no file reference.
            OSError: If the file cannot be read.
        """
        if self.path is None:
            raise ValueError(f"Chunk {self.index} has no file reference")
        with open(self.path, "rb") as f:
            f.seek(self.start)
            data = f.read(self.size)
        if len(data) != self.size:
            raise OSError(
                f"Short read for chunk {self.index}: "
                f"expected {self.size} bytes, got {len(data)}"
            )
        return data

    def mark_uploaded(self, part_tag: str | None = None) -> None:
        """Mark the chunk as fully present on the server."""
        self.uploaded = True
        self.progress = 100
        if part_tag is not None:
            self.part_tag = part_tag


def count_chunks(file_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Return ceil(file_size / chunk_size).

    Raises:
        ValueError: If chunk_size is not positive or file_size is negative.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if file_size < 0:
        raise ValueError(f"file_size must not be negative, got {file_size}")
    return math.ceil(file_size / chunk_size)


def plan_chunks(
    file_size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    path: Path | None = None,
) -> list[Chunk]:
    """Split a file of file_size bytes into contiguous fixed-size chunks.

    Every chunk has chunk_size bytes except possibly the last one, which
    holds the remainder. No chunk is empty.

    Args:
        file_size: Total size of the file in bytes.
        chunk_size: Size of each chunk in bytes.
        path: Optional file the chunks read their bytes from.

    Returns:
        Ordered list of chunks covering [0, file_size).

    Raises:
        ValueError: If chunk_size is not positive or file_size is negative.
    """
    total = count_chunks(file_size, chunk_size)
    chunks = []
    for index in range(total):
        start = index * chunk_size
        end = min(start + chunk_size, file_size)
        chunks.append(Chunk(index=index, start=start, end=end, path=path))
    return chunks


def chunk_identifier(fingerprint: str, index: int) -> str:
    """Return the identifier the backend uses for a chunk of a file."""
    return f"{fingerprint}{CHUNK_ID_SEPARATOR}{index}"


def parse_chunk_identifier(identifier: str, fingerprint: str) -> int | None:
    """Return the chunk index encoded in identifier.

    Returns:
        The index, or None if the identifier belongs to another file or is
        malformed.
    """
    prefix = f"{fingerprint}{CHUNK_ID_SEPARATOR}"
    if not identifier.startswith(prefix):
        return None
    suffix = identifier[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)
