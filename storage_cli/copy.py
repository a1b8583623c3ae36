"""Server-side object copy.

Objects below the multipart copy threshold are copied with one request.
Larger objects are copied part by part through a multipart copy session.
Backends that reject multipart copy get a single fallback to the simple
strategy.
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Optional

from storage_cli.backends.base import BlobBackend
from storage_cli.deadline import Deadline, call_with_deadline
from storage_cli.errors import CapabilityNotSupportedError
from storage_cli.models import CopyStrategy, Part, TransferSettings
from storage_cli.multipart import MultipartCopy
from storage_cli.planner import plan
from storage_cli.reporters.base import NullReporter, Reporter
from storage_cli.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class CopyOrchestrator:
    """Copies one object to another key on the same backend."""

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

    def select_strategy(self, size: int) -> CopyStrategy:
        if size == 0 or size < self.settings.multipart_copy_threshold:
            return CopyStrategy.SIMPLE
        return CopyStrategy.MULTIPART

    def copy(
        self,
        source_key: str,
        destination_key: str,
        deadline: Optional[Deadline] = None,
    ) -> CopyStrategy:
        """Copy ``source_key`` to ``destination_key``.

        Returns:
            The strategy that produced the destination object.

        Raises:
            NotFoundError: If the source does not exist.
            TransferTimeoutError: If the deadline expires.
        """
        deadline = deadline or Deadline.none()
        operation = f"copy of '{source_key}' to '{destination_key}'"

        info = call_with_deadline(self.backend.stat_object, deadline, operation, source_key)
        strategy = self.select_strategy(info.size)
        logger.info(
            "Copying %s to %s (%d bytes, %s)",
            source_key, destination_key, info.size, strategy.value,
        )

        self.reporter.on_transfer_start("copy", destination_key, info.size)
        success = False
        try:
            if strategy is CopyStrategy.MULTIPART:
                try:
                    self._copy_multipart(source_key, destination_key, info.size, deadline)
                except CapabilityNotSupportedError as e:
                    logger.info(
                        "Multipart copy not supported by %s, falling back to simple copy: %s",
                        self.backend.name, e,
                    )
                    strategy = CopyStrategy.SIMPLE
                    self._copy_simple(source_key, destination_key, info.size, deadline)
            else:
                self._copy_simple(source_key, destination_key, info.size, deadline)
            success = True
        finally:
            self.reporter.on_transfer_complete(destination_key, success)

        logger.info("Copied %s to %s", source_key, destination_key)
        return strategy

    def _copy_simple(self, source_key: str, destination_key: str, size: int, deadline: Deadline) -> None:
        call_with_deadline(
            self.backend.copy_object,
            deadline,
            f"copy of '{source_key}' to '{destination_key}'",
            source_key,
            destination_key,
        )
        self.reporter.on_bytes_transferred(destination_key, size)

    def _copy_multipart(self, source_key: str, destination_key: str, size: int, deadline: Deadline) -> None:
        parts = plan(size, self.settings.multipart_copy_part_size)
        concurrency = self.settings.upload_concurrency
        operation = f"copy of '{source_key}' to '{destination_key}'"

        with MultipartCopy(self.backend, destination_key) as session:
            # Part 1 goes first so an unsupported backend fails before any fan-out
            call_with_deadline(
                self._copy_part, deadline, operation, session, source_key, parts[0], deadline
            )

            executor = ThreadPoolExecutor(max_workers=concurrency)
            timed_out = False
            try:
                futures: list[Future] = [
                    executor.submit(self._copy_part, session, source_key, part, deadline)
                    for part in parts[1:]
                ]
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

            call_with_deadline(session.complete, deadline, operation)
            logger.debug("Completed multipart copy of %s in %d parts", destination_key, len(parts))

    def _copy_part(self, session: MultipartCopy, source_key: str, part: Part, deadline: Deadline) -> None:
        etag = retry_with_backoff(
            self.backend.copy_part_range,
            max_attempts=self.part_attempts,
            args=(session.session, part.index, source_key, part.start_byte, part.end_byte),
            deadline=deadline,
            operation=f"copy of part {part.index} of '{source_key}'",
        )
        session.add_part(part.index, etag)
        self.reporter.on_bytes_transferred(session.destination_key, part.length)
        logger.debug("Copied part %d of %s", part.index, source_key)
