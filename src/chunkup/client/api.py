"""HTTP client for the chunked upload backend.

This module provides:
- UploadClient: HTTP client for the check/initialize/chunk/complete/cancel API
- APIError and subclasses mapped from HTTP status codes
"""

from __future__ import annotations

import logging
from typing import IO, Any

import httpx

from chunkup.core.config import ServerConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


def _error_detail(response: httpx.Response, default: str) -> str:
    """Extract an error message from a JSON or plain-text body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or default
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or default)
    return default


class UploadClient:
    """HTTP client for the chunked upload backend."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the upload client.

        Args:
            config: Server configuration with URL, token and endpoint names.
            transport: Optional httpx transport (used to plug in test backends).
        """
        self._config = config
        headers = dict(config.headers)
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            headers=headers,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> ServerConfig:
        """Get the server configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> UploadClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 400:
            detail = _error_detail(response, f"HTTP {response.status_code}")
            raise APIError(detail, response.status_code)
        return response

    def _post_json(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON payload to a named endpoint and decode the reply."""
        response = self._handle_response(
            self._client.post(self._config.endpoint_path(endpoint), json=payload)
        )
        try:
            result = response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON from {endpoint}: {e}", response.status_code) from e
        if not isinstance(result, dict):
            raise APIError(f"Unexpected response from {endpoint}", response.status_code)
        return result

    # === Session operations ===

    def check_upload(self, fingerprint: str, file_name: str, file_size: int) -> dict[str, Any]:
        """Ask the backend what it already holds for a fingerprint.

        Args:
            fingerprint: Whole-file fingerprint.
            file_name: Name of the file.
            file_size: Size of the file in bytes.

        Returns:
            Raw response (fileExists, isComplete, uploadedChunks, session, ...).
        """
        return self._post_json(
            "check",
            {"fileHash": fingerprint, "fileName": file_name, "fileSize": file_size},
        )

    def initialize_upload(
        self,
        fingerprint: str,
        file_name: str,
        file_size: int,
        chunk_size: int,
        total_chunks: int,
    ) -> dict[str, Any]:
        """Open a new upload session.

        Returns:
            Raw response with "success" and "session".
        """
        return self._post_json(
            "initialize",
            {
                "fileName": file_name,
                "fileHash": fingerprint,
                "fileSize": file_size,
                "chunkSize": chunk_size,
                "totalChunks": total_chunks,
            },
        )

    def complete_upload(
        self,
        fingerprint: str,
        file_name: str,
        total_chunks: int,
        parts: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Ask the backend to assemble the uploaded chunks.

        Returns:
            Raw response with "success", "url" and "message".
        """
        return self._post_json(
            "complete",
            {
                "fileHash": fingerprint,
                "fileName": file_name,
                "totalChunks": total_chunks,
                "parts": parts,
            },
        )

    def cancel_upload(self, fingerprint: str) -> None:
        """Release the backend session of a fingerprint."""
        self._handle_response(
            self._client.post(
                self._config.endpoint_path("cancel"),
                json={"fileHash": fingerprint},
            )
        )

    # === Chunk operations ===

    def upload_chunk(
        self,
        fields: dict[str, str],
        content: IO[bytes],
        filename: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Upload one chunk as multipart/form-data.

        The body is streamed from content, so a file-like object that reports
        its reads gives byte-level progress.

        Args:
            fields: Form fields (fileHash, chunkIndex, ...).
            content: Binary file-like object with the chunk bytes.
            filename: File name of the multipart part.
            timeout: Request timeout in seconds (defaults to the client's).

        Returns:
            Decoded JSON response.
        """
        response = self._handle_response(
            self._client.post(
                self._config.endpoint_path("chunk"),
                data=fields,
                files={"chunk": (filename, content, "application/octet-stream")},
                timeout=timeout if timeout is not None else self._config.timeout,
            )
        )
        try:
            result = response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON from chunk: {e}", response.status_code) from e
        if not isinstance(result, dict):
            raise APIError("Unexpected response from chunk", response.status_code)
        return result
