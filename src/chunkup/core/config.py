"""Configuration classes for chunkup.

This module defines the backend connection settings and the tunables of the
upload engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from chunkup.core.chunking import DEFAULT_CHUNK_SIZE
from chunkup.core.hashing import DEFAULT_HASH_ALGORITHM, DEFAULT_HASH_WINDOW_SIZE, new_hasher

DEFAULT_API_PREFIX = "/api/upload"
DEFAULT_MAX_CHUNKS = 10000  # S3 multipart part limit


@dataclass
class EndpointConfig:
    """Endpoint names of the upload backend, relative to the API prefix.

    Merge-style backends finalize with "merge" instead of "complete".
    """

    check: str = "check"
    initialize: str = "initialize"
    chunk: str = "chunk"
    complete: str = "complete"
    cancel: str = "cancel"


@dataclass
class ServerConfig:
    """Configuration for connecting to an upload backend.

    Attributes:
        server_url: Base URL of the server (e.g., "https://files.example.com").
        token: Optional bearer token sent in the Authorization header.
        timeout: Request timeout in seconds for JSON calls.
        verify_ssl: Whether to verify SSL certificates (default True).
        api_prefix: Path prefix of the upload endpoints.
        headers: Extra headers sent with every request.
        endpoints: Endpoint names under api_prefix.
    """

    server_url: str
    token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True
    api_prefix: str = DEFAULT_API_PREFIX
    headers: dict[str, str] = field(default_factory=dict)
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)

    def __post_init__(self) -> None:
        """Normalize server URL and API prefix."""
        self.server_url = self.server_url.rstrip("/")
        prefix = self.api_prefix.strip("/")
        self.api_prefix = f"/{prefix}" if prefix else ""

    def endpoint_path(self, name: str) -> str:
        """Get the path of a named endpoint (e.g. "check").

        Raises:
            AttributeError: If name is not a known endpoint.
        """
        endpoint = getattr(self.endpoints, name).strip("/")
        return f"{self.api_prefix}/{endpoint}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass
class UploadOptions:
    """Tunables of the upload engine.

    Attributes:
        chunk_size: Transfer chunk size in bytes.
        concurrent: Maximum number of chunk transfers in flight.
        retry_times: Attempts per chunk before the pass fails.
        retry_delay: Base delay in seconds; attempt n waits n * retry_delay.
        hash_window_size: Read window of the file fingerprint.
        hash_algorithm: hashlib algorithm shared with the backend.
        chunk_fingerprints: Send a per-chunk digest for integrity checks.
        chunk_timeout: Deadline of a single chunk transfer in seconds.
        max_file_size: Largest accepted file in bytes (None = no limit).
        max_chunks: Largest accepted number of chunks (None = no limit).
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    concurrent: int = 3
    retry_times: int = 3
    retry_delay: float = 1.0
    hash_window_size: int = DEFAULT_HASH_WINDOW_SIZE
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    chunk_fingerprints: bool = True
    chunk_timeout: float = 60.0
    max_file_size: int | None = None
    max_chunks: int | None = DEFAULT_MAX_CHUNKS

    def __post_init__(self) -> None:
        """Validate option ranges."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.concurrent < 1:
            raise ValueError(f"concurrent must be at least 1, got {self.concurrent}")
        if self.retry_times < 1:
            raise ValueError(f"retry_times must be at least 1, got {self.retry_times}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must not be negative, got {self.retry_delay}")
        if self.hash_window_size <= 0:
            raise ValueError(
                f"hash_window_size must be positive, got {self.hash_window_size}"
            )
        if self.chunk_timeout <= 0:
            raise ValueError(f"chunk_timeout must be positive, got {self.chunk_timeout}")
        # Fail early on algorithms hashlib does not know
        new_hasher(self.hash_algorithm)
