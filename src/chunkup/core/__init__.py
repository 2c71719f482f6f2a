"""Core module - Chunk planning, fingerprints, configuration and shared types."""

from chunkup.core.chunking import (
    DEFAULT_CHUNK_SIZE,
    Chunk,
    chunk_identifier,
    count_chunks,
    parse_chunk_identifier,
    plan_chunks,
)
from chunkup.core.config import EndpointConfig, ServerConfig, UploadOptions
from chunkup.core.hashing import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_HASH_WINDOW_SIZE,
    HashProgress,
    compute_chunk_fingerprint,
    compute_file_fingerprint,
)
from chunkup.core.types import (
    CancellationError,
    ReadError,
    UploadError,
    UploadState,
    ValidationError,
)

__all__ = [
    # Chunking
    "DEFAULT_CHUNK_SIZE",
    "Chunk",
    "chunk_identifier",
    "count_chunks",
    "parse_chunk_identifier",
    "plan_chunks",
    # Config
    "EndpointConfig",
    "ServerConfig",
    "UploadOptions",
    # Hashing
    "DEFAULT_HASH_ALGORITHM",
    "DEFAULT_HASH_WINDOW_SIZE",
    "HashProgress",
    "compute_chunk_fingerprint",
    "compute_file_fingerprint",
    # Types
    "CancellationError",
    "ReadError",
    "UploadError",
    "UploadState",
    "ValidationError",
]
