"""Multipart session lifecycle management.

Handles the complete lifecycle of backend multipart sessions:
- Start the session
- Track completed parts and their ETags
- Complete, or abort exactly once on any other exit path

Both classes are context managers. Leaving the ``with`` block without
calling ``complete()`` aborts the session, including on exceptions and
timeouts.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from storage_cli.backends.base import BlobBackend
from storage_cli.models import CompletedPart, MultipartSession

logger = logging.getLogger(__name__)


class _ScopedSession(ABC):
    """Shared bookkeeping for multipart copy and upload sessions."""

    kind = "multipart"

    def __init__(self, backend: BlobBackend, destination_key: str):
        self.backend = backend
        self.destination_key = destination_key
        self.session: Optional[MultipartSession] = None
        self.completed = False
        self.aborted = False
        self._lock = threading.Lock()

    @abstractmethod
    def _start(self) -> MultipartSession:
        pass

    @abstractmethod
    def _complete(self, session: MultipartSession, parts: Sequence[CompletedPart]) -> None:
        pass

    @abstractmethod
    def _abort(self, session: MultipartSession) -> None:
        pass

    def start(self) -> MultipartSession:
        self.session = self._start()
        logger.debug(
            "Started %s session %s for %s",
            self.kind, self.session.upload_id, self.destination_key,
        )
        return self.session

    def add_part(self, part_number: int, etag: str) -> None:
        """Record a part. Safe to call from worker threads."""
        if self.session is None:
            raise RuntimeError("Session not started")
        with self._lock:
            self.session.parts.append(CompletedPart(part_number=part_number, etag=etag))

    def get_uploaded_parts(self) -> list[CompletedPart]:
        """Recorded parts, ordered by part number."""
        if self.session is None:
            return []
        with self._lock:
            return self.session.ordered_parts()

    def complete(self) -> None:
        if self.session is None:
            raise RuntimeError("Session not started")
        self._complete(self.session, self.get_uploaded_parts())
        self.completed = True

    def abort(self) -> None:
        """Abort the session.

        Runs at most once. Failures are logged and never raised; a stale
        session is reclaimed by the backend's own lifecycle rules.
        """
        if self.session is None or self.completed or self.aborted:
            return
        self.aborted = True
        try:
            self._abort(self.session)
        except Exception as e:
            logger.warning(
                "Failed to abort %s session %s for %s: %s",
                self.kind, self.session.upload_id, self.destination_key, e,
            )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if not self.completed:
            self.abort()
        return False  # Don't suppress exceptions


class MultipartCopy(_ScopedSession):
    """Server-side multipart copy into ``destination_key``."""

    kind = "multipart copy"

    def _start(self) -> MultipartSession:
        return self.backend.start_multipart_copy(self.destination_key)

    def _complete(self, session: MultipartSession, parts: Sequence[CompletedPart]) -> None:
        self.backend.complete_multipart_copy(session, parts)

    def _abort(self, session: MultipartSession) -> None:
        self.backend.abort_multipart_copy(session)


class MultipartUpload(_ScopedSession):
    """Chunked upload of local data into ``destination_key``."""

    kind = "multipart upload"

    def _start(self) -> MultipartSession:
        return self.backend.start_multipart_upload(self.destination_key)

    def _complete(self, session: MultipartSession, parts: Sequence[CompletedPart]) -> None:
        self.backend.complete_multipart_upload(session, parts)

    def _abort(self, session: MultipartSession) -> None:
        self.backend.abort_multipart_upload(session)
