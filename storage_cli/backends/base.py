"""Backend capability interface consumed by the transfer engine."""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import BinaryIO, Callable, Optional, Sequence

from storage_cli.errors import CapabilityNotSupportedError, NotFoundError
from storage_cli.models import CompletedPart, ListPage, MultipartSession, ObjectInfo


class BlobBackend(ABC):
    """Primitive object operations of one storage provider.

    Adapters translate vendor SDK calls and exceptions into this contract.
    Multipart methods are optional: the defaults raise
    CapabilityNotSupportedError, which the orchestrators treat as a cue to
    fall back to single-request strategies.
    """

    #: Human readable name used in log lines.
    name = "backend"

    #: Whether start/upload/complete/abort_multipart_upload are implemented.
    supports_multipart_upload = False

    @abstractmethod
    def stat_object(self, key: str) -> ObjectInfo:
        """Return object metadata. Raises NotFoundError if absent."""

    @abstractmethod
    def put_object(self, key: str, stream: BinaryIO, content_md5: bytes) -> Optional[bytes]:
        """Upload ``stream`` in one request.

        Returns:
            The MD5 digest the backend reports for the stored object, or
            None if the backend does not report one.
        """

    @abstractmethod
    def get_object_range(self, key: str, start_byte: int, end_byte: int) -> BinaryIO:
        """Open a readable stream over ``[start_byte, end_byte]`` (inclusive)."""

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """Delete an object. Succeeds when the object is already absent."""

    @abstractmethod
    def list_page(self, prefix: str, cursor: Optional[str]) -> ListPage:
        """Fetch one page of keys. ``cursor`` is passed back verbatim."""

    @abstractmethod
    def copy_object(self, source_key: str, destination_key: str) -> None:
        """Server-side copy in a single call."""

    # Multipart copy

    def start_multipart_copy(self, destination_key: str) -> MultipartSession:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart copy")

    def copy_part_range(
        self,
        session: MultipartSession,
        part_number: int,
        source_key: str,
        start_byte: int,
        end_byte: int,
    ) -> str:
        """Copy a byte range of ``source_key`` into the session. Returns the part ETag."""
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart copy")

    def complete_multipart_copy(
        self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]
    ) -> None:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart copy")

    def abort_multipart_copy(self, session: MultipartSession) -> None:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart copy")

    # Multipart upload

    def start_multipart_upload(self, destination_key: str) -> MultipartSession:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart upload")

    def upload_part(
        self,
        session: MultipartSession,
        part_number: int,
        data: bytes,
        content_md5: bytes,
    ) -> tuple[str, Optional[bytes]]:
        """Upload one part.

        Returns:
            The part ETag and the MD5 digest the backend reports for the
            part (None if not reported).
        """
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart upload")

    def complete_multipart_upload(
        self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]
    ) -> None:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart upload")

    def abort_multipart_upload(self, session: MultipartSession) -> None:
        raise CapabilityNotSupportedError(f"{self.name} does not support multipart upload")

    # Operations outside the transfer engine

    def exists(self, key: str) -> bool:
        try:
            self.stat_object(key)
        except NotFoundError:
            return False
        return True

    def sign(self, key: str, action: str, expiration: timedelta) -> str:
        """Create a pre-signed URL for ``action`` ("GET" or "PUT")."""
        raise CapabilityNotSupportedError(f"{self.name} does not support signed URLs")

    def ensure_storage_exists(self) -> None:
        """Create the bucket or container if it does not exist."""
        raise CapabilityNotSupportedError(f"{self.name} cannot create storage")

    def close(self) -> None:
        """Release connections held by the adapter."""


class TranslatedStream:
    """Readable body whose read failures are mapped through ``translate``.

    SDKs raise their own exceptions when a connection drops while a body is
    being read, after ``get_object_range`` has already returned.
    """

    def __init__(
        self,
        stream: BinaryIO,
        key: str,
        errors: tuple[type[BaseException], ...],
        translate: Callable[[Exception, str], Exception],
    ):
        self._stream = stream
        self.key = key
        self._errors = errors
        self._translate = translate

    def read(self, size: Optional[int] = None) -> bytes:
        try:
            if size is None or size < 0:
                return self._stream.read()
            return self._stream.read(size)
        except self._errors as e:
            translated = self._translate(e, self.key)
            if translated is e:
                raise
            raise translated from e

    def close(self) -> None:
        self._stream.close()
