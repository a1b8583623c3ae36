"""Object downloads into a local file.

Large objects are fetched as concurrent ranged reads, each written at its
own offset. Objects the backend can only serve sequentially, and objects
that fit in one part, are streamed in order.
"""

import logging
import os
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Optional

from storage_cli.backends.base import BlobBackend
from storage_cli.deadline import Deadline, call_with_deadline
from storage_cli.errors import IncompleteTransferError
from storage_cli.models import ObjectInfo, Part, TransferSettings, TransferSpec
from storage_cli.planner import plan_for
from storage_cli.reporters.base import NullReporter, Reporter
from storage_cli.retry import retry_with_backoff

logger = logging.getLogger(__name__)

WRITE_BUFFER_SIZE = 1024 * 1024


class FileSink:
    """Random-access write target backed by a local file.

    Writes use ``os.pwrite`` so concurrent parts with disjoint ranges need
    no lock and share no file position.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)

    def write_at(self, offset: int, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.pwrite(self._fd, view, offset)
            view = view[written:]
            offset += written

    def size(self) -> int:
        return os.fstat(self._fd).st_size

    def truncate(self, size: int) -> None:
        os.ftruncate(self._fd, size)

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


class DownloadOrchestrator:
    """Retrieves one object into a sink."""

    def __init__(
        self,
        backend: BlobBackend,
        settings: Optional[TransferSettings] = None,
        reporter: Optional[Reporter] = None,
        part_attempts: int = 3,
    ):
        self.backend = backend
        self.settings = settings or TransferSettings()
        self.reporter = reporter or NullReporter()
        self.part_attempts = part_attempts

    def download(
        self,
        source_key: str,
        sink: FileSink,
        spec: Optional[TransferSpec] = None,
        deadline: Optional[Deadline] = None,
    ) -> ObjectInfo:
        """Download ``source_key`` into ``sink``.

        Returns:
            The metadata of the downloaded object.

        Raises:
            NotFoundError: If the object does not exist.
            IncompleteTransferError: If fewer bytes arrived than the object holds.
            TransferTimeoutError: If the deadline expires.
        """
        deadline = deadline or Deadline.none()
        operation = f"download of '{source_key}'"

        info = call_with_deadline(self.backend.stat_object, deadline, operation, source_key)
        if spec is None:
            spec = self.settings.download_spec(info.size)
        parts = plan_for(TransferSpec(
            source_size=info.size,
            part_size=spec.part_size,
            concurrency=spec.concurrency,
            multipart_enabled=spec.multipart_enabled,
        ))

        self.reporter.on_transfer_start("download", source_key, info.size)
        success = False
        try:
            if info.sequential_only or len(parts) <= 1:
                logger.info("Downloading %s (%d bytes, sequential)", source_key, info.size)
                if parts:
                    whole = Part(index=1, start_byte=0, end_byte=info.size - 1)
                    self._fetch_part(source_key, whole, sink, deadline)
            else:
                logger.info(
                    "Downloading %s (%d bytes, %d parts)", source_key, info.size, len(parts)
                )
                self._fetch_parts(source_key, parts, sink, spec.concurrency, deadline)

            self._check_size(source_key, info.size, sink)
            success = True
        finally:
            self.reporter.on_transfer_complete(source_key, success)

        logger.info("Successfully downloaded %s", source_key)
        return info

    def _fetch_parts(
        self,
        key: str,
        parts: list[Part],
        sink: FileSink,
        concurrency: int,
        deadline: Deadline,
    ) -> None:
        executor = ThreadPoolExecutor(max_workers=concurrency)
        timed_out = False
        try:
            futures: list[Future] = [
                executor.submit(self._fetch_part, key, part, sink, deadline) for part in parts
            ]
            done, not_done = wait(futures, timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    raise error
            if not_done:
                timed_out = True
                raise deadline.error(f"download of '{key}'")
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)

    def _fetch_part(self, key: str, part: Part, sink: FileSink, deadline: Deadline) -> None:
        retry_with_backoff(
            self._read_range,
            max_attempts=self.part_attempts,
            args=(key, part, sink, deadline),
            deadline=deadline,
            operation=f"download of part {part.index} of '{key}'",
        )
        logger.debug("Downloaded part %d of %s", part.index, key)

    def _read_range(self, key: str, part: Part, sink: FileSink, deadline: Deadline) -> None:
        stream = self.backend.get_object_range(key, part.start_byte, part.end_byte)
        offset = part.start_byte
        try:
            while offset <= part.end_byte:
                deadline.check(f"download of '{key}'")
                chunk = stream.read(min(WRITE_BUFFER_SIZE, part.end_byte - offset + 1))
                if not chunk:
                    break
                sink.write_at(offset, chunk)
                offset += len(chunk)
                self.reporter.on_bytes_transferred(key, len(chunk))
        finally:
            stream.close()
        # A short part would otherwise leave a hole the final size check cannot see
        if offset <= part.end_byte:
            raise IncompleteTransferError(key, expected=part.length, actual=offset - part.start_byte)

    def _check_size(self, key: str, expected: int, sink: FileSink) -> None:
        actual = sink.size()
        if actual > expected:
            logger.debug("Truncating %s from %d to %d bytes", sink.path, actual, expected)
            sink.truncate(expected)
        elif actual < expected:
            raise IncompleteTransferError(key, expected=expected, actual=actual)
