"""Verified, retried uploads.

Small objects go up in one request. Larger objects are split with the
part planner and uploaded through a multipart session with a bounded
number of parts in flight. Every upload is checked against a locally
computed MD5; a mismatch removes the destination.
"""

import hashlib
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import BinaryIO, Optional

from storage_cli.backends.base import BlobBackend
from storage_cli.deadline import Deadline, call_with_deadline
from storage_cli.errors import (
    ChecksumMismatchError,
    InvalidSizeError,
    SourceNotSeekableError,
    StorageError,
)
from storage_cli.models import Part, TransferSettings, TransferSpec, UploadOutcome
from storage_cli.multipart import MultipartUpload
from storage_cli.planner import plan_for
from storage_cli.reporters.base import NullReporter, Reporter
from storage_cli.retry import (
    RetryExhausted,
    is_retryable_error,
    linear_delays,
    retry_with_backoff,
    sleep_within,
)

logger = logging.getLogger(__name__)

# Whole-object attempts; parts have their own budget inside each attempt
UPLOAD_ATTEMPTS = 3

READ_BUFFER_SIZE = 1024 * 1024


def compute_md5(source: BinaryIO) -> tuple[bytes, int]:
    """Stream ``source`` to its end once.

    Returns:
        The MD5 digest and the number of bytes read.
    """
    digest = hashlib.md5()
    size = 0
    while True:
        chunk = source.read(READ_BUFFER_SIZE)
        if not chunk:
            break
        digest.update(chunk)
        size += len(chunk)
    return digest.digest(), size


def composite_md5(part_digests: list[bytes]) -> bytes:
    """MD5 over the concatenated part digests, in part order."""
    return hashlib.md5(b"".join(part_digests)).digest()


def _is_seekable(source: BinaryIO) -> bool:
    seekable = getattr(source, "seekable", None)
    if seekable is None:
        return False
    try:
        return bool(seekable())
    except (OSError, ValueError):
        return False


class UploadOrchestrator:
    """Drives a checksummed upload of a seekable stream to one key."""

    def __init__(
        self,
        backend: BlobBackend,
        settings: Optional[TransferSettings] = None,
        reporter: Optional[Reporter] = None,
        max_attempts: int = UPLOAD_ATTEMPTS,
        part_attempts: int = 3,
    ):
        self.backend = backend
        self.settings = settings or TransferSettings()
        self.reporter = reporter or NullReporter()
        self.max_attempts = max_attempts
        self.part_attempts = part_attempts

    def upload(
        self,
        source: BinaryIO,
        destination_key: str,
        spec: Optional[TransferSpec] = None,
        deadline: Optional[Deadline] = None,
    ) -> UploadOutcome:
        """Upload ``source`` from its current position to ``destination_key``.

        Args:
            source: Seekable binary stream.
            destination_key: Object key to write.
            spec: Transfer parameters; derived from settings if omitted.
            deadline: Optional deadline for the whole operation.

        Returns:
            UploadOutcome with the verified remote checksum.

        Raises:
            SourceNotSeekableError: If the source cannot be rewound.
            ChecksumMismatchError: If the stored object does not match.
            RetryExhausted: If every attempt failed with a transient error.
            TransferTimeoutError: If the deadline expires.
        """
        if not _is_seekable(source):
            raise SourceNotSeekableError(
                f"upload source for '{destination_key}' must be seekable to allow retries"
            )
        deadline = deadline or Deadline.none()

        start_position = source.tell()
        content_md5, size = compute_md5(source)
        source.seek(start_position)

        if spec is None:
            spec = self.settings.upload_spec(size)
        elif spec.source_size != size:
            raise InvalidSizeError(
                f"expected {spec.source_size} bytes for '{destination_key}', source has {size}"
            )

        chunked = self._use_chunked(spec)
        logger.info(
            "Uploading %s (%d bytes, %s)",
            destination_key, size, "chunked" if chunked else "single request",
        )

        self.reporter.on_transfer_start("upload", destination_key, size)
        success = False
        try:
            attempt = 1
            while True:
                deadline.check(f"upload of '{destination_key}'")
                try:
                    if chunked:
                        local, remote = self._upload_chunked(source, destination_key, spec, deadline)
                    else:
                        remote = self._upload_single(source, destination_key, content_md5, size, deadline)
                        local = content_md5
                    break
                except Exception as e:
                    if not (is_retryable_error(e) or isinstance(e, RetryExhausted)):
                        raise
                    if attempt >= self.max_attempts:
                        raise RetryExhausted(
                            f"upload of '{destination_key}' failed after {attempt} attempts: {e}",
                            attempts=attempt,
                            last_error=e,
                        ) from e
                    delay = linear_delays(self.max_attempts)[attempt - 1]
                    logger.warning(
                        "Upload of %s failed (attempt %d/%d), retrying in %.0fs: %s",
                        destination_key, attempt, self.max_attempts, delay, e,
                    )
                    source.seek(start_position)
                    sleep_within(delay, deadline, f"upload of '{destination_key}'")
                    attempt += 1

            self._verify(destination_key, local, remote)
            success = True
            logger.info("Successfully uploaded %s", destination_key)
            return UploadOutcome(success=True, remote_checksum=remote, attempts=attempt)
        finally:
            self.reporter.on_transfer_complete(destination_key, success)

    def _use_chunked(self, spec: TransferSpec) -> bool:
        if not spec.multipart_enabled or spec.source_size == 0:
            return False
        if not self.backend.supports_multipart_upload:
            return False
        threshold = self.settings.multipart_threshold
        if threshold is None:
            # A single part gains nothing from a multipart session
            return spec.source_size > spec.part_size
        return spec.source_size >= threshold

    def _upload_single(
        self,
        source: BinaryIO,
        key: str,
        content_md5: bytes,
        size: int,
        deadline: Deadline,
    ) -> Optional[bytes]:
        remote = call_with_deadline(
            self.backend.put_object, deadline, f"upload of '{key}'", key, source, content_md5
        )
        self.reporter.on_bytes_transferred(key, size)
        return remote

    def _upload_chunked(
        self,
        source: BinaryIO,
        key: str,
        spec: TransferSpec,
        deadline: Deadline,
    ) -> tuple[bytes, Optional[bytes]]:
        """Upload parts concurrently through a multipart session.

        Returns:
            The local and remote composite digests. The remote one is None
            if the backend did not report a digest for every part.
        """
        parts = plan_for(spec)
        # One permit per buffered part caps memory at concurrency * part_size
        permits = threading.BoundedSemaphore(spec.concurrency)
        executor = ThreadPoolExecutor(max_workers=spec.concurrency)
        timed_out = False
        operation = f"upload of '{key}'"

        with MultipartUpload(self.backend, key) as upload:
            try:
                futures: list[Future] = []
                for part in parts:
                    if not permits.acquire(timeout=deadline.remaining()):
                        timed_out = True
                        raise deadline.error(operation)
                    if any(f.done() and f.exception() is not None for f in futures):
                        permits.release()
                        break
                    data = source.read(part.length)
                    if len(data) != part.length:
                        permits.release()
                        raise StorageError(
                            f"source for '{key}' changed while uploading: "
                            f"part {part.index} expected {part.length} bytes, read {len(data)}"
                        )
                    futures.append(
                        executor.submit(self._upload_part, upload, part, data, permits, deadline)
                    )

                done, not_done = wait(futures, timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)
                for future in done:
                    error = future.exception()
                    if error is not None:
                        raise error
                if not_done:
                    timed_out = True
                    raise deadline.error(operation)
            finally:
                executor.shutdown(wait=not timed_out, cancel_futures=True)

            results = sorted(f.result() for f in futures)
            call_with_deadline(upload.complete, deadline, operation)

        local = composite_md5([local_md5 for _, local_md5, _ in results])
        remote_digests = [remote_md5 for _, _, remote_md5 in results]
        if any(d is None for d in remote_digests):
            return local, None
        return local, composite_md5(remote_digests)

    def _upload_part(
        self,
        upload: MultipartUpload,
        part: Part,
        data: bytes,
        permits: threading.BoundedSemaphore,
        deadline: Deadline,
    ) -> tuple[int, bytes, Optional[bytes]]:
        try:
            local_md5 = hashlib.md5(data).digest()
            etag, remote_md5 = retry_with_backoff(
                self.backend.upload_part,
                max_attempts=self.part_attempts,
                args=(upload.session, part.index, data, local_md5),
                deadline=deadline,
                operation=f"upload of part {part.index} of '{upload.destination_key}'",
            )
            upload.add_part(part.index, etag)
            self.reporter.on_bytes_transferred(upload.destination_key, part.length)
            logger.debug("Uploaded part %d of %s", part.index, upload.destination_key)
            return part.index, local_md5, remote_md5
        finally:
            permits.release()

    def _verify(self, key: str, local: bytes, remote: Optional[bytes]) -> None:
        if remote is None:
            logger.debug("%s reported no checksum for %s, skipping verification", self.backend.name, key)
            return

        if remote != local:
            logger.error(
                "Upload failed due to MD5 mismatch, deleting %s (expected %s, received %s)",
                key, local.hex(), remote.hex(),
            )
            try:
                self.backend.delete_object(key)
            except Exception as e:
                logger.error("Failed to delete %s after MD5 mismatch: %s", key, e)
            raise ChecksumMismatchError(key, expected=local, actual=remote)

        logger.debug("MD5 verification passed for %s: %s", key, remote.hex())
