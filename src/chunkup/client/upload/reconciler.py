"""Reconciliation of local chunks with backend state.

This module provides:
- SessionReconciler: check/initialize calls and resume matching
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from chunkup.client.api import APIError
from chunkup.client.upload.types import CheckResult, ReconciliationError, UploadSession
from chunkup.core.chunking import Chunk, chunk_identifier, parse_chunk_identifier

if TYPE_CHECKING:
    from chunkup.client.api import UploadClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionReconciler:
    """Asks the backend what it holds and opens upload sessions.

    Usage:
        reconciler = SessionReconciler(client)
        result = reconciler.check_status(fingerprint, name, size)
        if result.is_instant:
            ...
        elif result.has_progress:
            reconciler.apply(result, chunks, fingerprint)
            session = reconciler.resume_session(result, chunks, fingerprint, name, size)
        else:
            session = reconciler.initialize_session(fingerprint, name, size, chunk_size, len(chunks))
    """

    def __init__(self, client: UploadClient) -> None:
        self._client = client

    def check_status(self, fingerprint: str, file_name: str, file_size: int) -> CheckResult:
        """Ask the backend what it already holds for a fingerprint.

        Raises:
            ReconciliationError: If the call failed or the backend reported failure.
        """
        response = self._call(
            "check", lambda: self._client.check_upload(fingerprint, file_name, file_size)
        )
        result = self._parse("check", lambda: self._check_result(response, file_name, file_size))
        if result.is_instant:
            logger.info(f"{file_name} already stored on the backend")
        elif result.has_progress:
            logger.info(f"Found prior progress for {file_name}")
        return result

    def initialize_session(
        self,
        fingerprint: str,
        file_name: str,
        file_size: int,
        chunk_size: int,
        total_chunks: int,
    ) -> UploadSession:
        """Open a fresh upload session.

        Raises:
            ReconciliationError: If the call failed or the backend reported failure.
        """
        response = self._call(
            "initialize",
            lambda: self._client.initialize_upload(
                fingerprint, file_name, file_size, chunk_size, total_chunks
            ),
        )
        session = self._parse(
            "initialize",
            lambda: UploadSession.from_dict(
                response.get("session") or {}, file_name, file_size, total_chunks
            ),
        )
        logger.info(
            f"Initialized upload session {session.session_id or session.remote_upload_id} "
            f"for {file_name} ({total_chunks} chunks)"
        )
        return session

    def resume_session(
        self,
        result: CheckResult,
        chunks: list[Chunk],
        fingerprint: str,
        file_name: str,
        file_size: int,
    ) -> UploadSession:
        """Build the session of a resumed upload from a check result.

        Call after apply() so the session records every matched chunk.
        """
        satisfied = frozenset(
            chunk_identifier(fingerprint, chunk.index) for chunk in chunks if chunk.uploaded
        )
        return self._parse(
            "check",
            lambda: UploadSession.from_dict(
                result.session or {},
                file_name,
                file_size,
                len(chunks),
                satisfied_chunk_ids=satisfied,
            ),
        )

    def apply(self, result: CheckResult, chunks: list[Chunk], fingerprint: str) -> set[int]:
        """Mark the planned chunks the backend already holds as uploaded.

        Chunks are matched by identifier ("{fingerprint}_chunk_{i}") or by
        reported part number. Only when the backend reports neither does the
        legacy uploaded-parts count mark the first N chunks.

        Returns:
            Indices of the chunks marked uploaded.
        """
        by_index = {chunk.index: chunk for chunk in chunks}
        satisfied: set[int] = set()

        for identifier in result.satisfied_chunk_ids:
            index = parse_chunk_identifier(identifier, fingerprint)
            if index is None or index not in by_index:
                logger.debug(f"Ignoring unknown chunk identifier {identifier}")
                continue
            satisfied.add(index)

        for index in result.part_tags:
            if index in by_index:
                satisfied.add(index)

        if not satisfied and result.legacy_uploaded_count:
            count = min(result.legacy_uploaded_count, len(chunks))
            logger.warning(
                f"Backend reported only a count of {count} uploaded chunks; "
                f"assuming chunks 0..{count - 1} are stored"
            )
            satisfied.update(range(count))

        for index in satisfied:
            chunk = by_index[index]
            chunk.mark_uploaded(result.part_tags.get(index) or chunk.part_tag)

        if satisfied:
            logger.info(f"Resuming with {len(satisfied)}/{len(chunks)} chunks already stored")
        return satisfied

    def _call(self, name: str, func: Callable[[], dict[str, Any]]) -> dict[str, Any]:
        """Run a backend call and map its failures to ReconciliationError."""
        try:
            response = func()
        except (APIError, httpx.HTTPError) as e:
            raise ReconciliationError(f"{name} failed: {e}") from e

        if response.get("success") is False:
            message = response.get("message") or "backend reported failure"
            raise ReconciliationError(f"{name} failed: {message}")
        return response

    @staticmethod
    def _check_result(response: dict[str, Any], file_name: str, file_size: int) -> CheckResult:
        result = CheckResult.from_dict(response)
        if result.session:
            # Fail here rather than when the session is resumed
            UploadSession.from_dict(result.session, file_name, file_size, 0)
        return result

    @staticmethod
    def _parse(name: str, func: Callable[[], T]) -> T:
        """Build a response object and map malformed fields to ReconciliationError."""
        try:
            return func()
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ReconciliationError(f"{name} returned a malformed response: {e!r}") from e
