"""Recursive deletion with a bounded worker pool."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional

from storage_cli.backends.base import BlobBackend
from storage_cli.deadline import Deadline
from storage_cli.errors import NotFoundError, PartialFailureError
from storage_cli.listing import BulkLister
from storage_cli.models import DeletionTask

logger = logging.getLogger(__name__)

DEFAULT_DELETE_CONCURRENCY = 10


class BoundedRecursiveDeleter:
    """Deletes every key under a prefix with at most N deletes in flight."""

    def __init__(self, backend: BlobBackend, lister: Optional[BulkLister] = None):
        self.backend = backend
        self.lister = lister or BulkLister(backend)

    def delete_all(
        self,
        prefix: str = "",
        max_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        deadline: Optional[Deadline] = None,
    ) -> int:
        """Delete all objects under ``prefix``.

        The full key set is listed before the first delete, so a listing
        failure leaves the store untouched. One failing key does not stop
        the others.

        Returns:
            Number of deletion tasks executed.

        Raises:
            PartialFailureError: If any key failed, naming each one.
            TransferTimeoutError: If the deadline expires first.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        deadline = deadline or Deadline.none()

        if prefix:
            logger.info("Deleting all objects with prefix '%s' from %s", prefix, self.backend.name)
        else:
            logger.info("Deleting all objects from %s", self.backend.name)

        tasks = [DeletionTask(key=key) for key in self.lister.list(prefix)]
        deadline.check("delete-recursive")

        failures: dict[str, Exception] = {}
        executor = ThreadPoolExecutor(max_workers=max_concurrency)
        timed_out = False
        try:
            futures: dict[Future, DeletionTask] = {
                executor.submit(self._delete_one, task): task for task in tasks
            }
            done, not_done = wait(futures, timeout=deadline.remaining())
            if not_done:
                timed_out = True
                raise deadline.error("delete-recursive")
            for future in done:
                error = future.result()
                if error is not None:
                    failures[futures[future].key] = error
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)

        if failures:
            # Report failures in listing order
            ordered = {t.key: failures[t.key] for t in tasks if t.key in failures}
            raise PartialFailureError(ordered)

        logger.info("Deleted %d object(s)", len(tasks))
        return len(tasks)

    def _delete_one(self, task: DeletionTask) -> Optional[Exception]:
        logger.debug("Deleting object %s", task.key)
        try:
            self.backend.delete_object(task.key)
        except NotFoundError:
            return None
        except Exception as e:
            logger.error("Failed to delete object %s: %s", task.key, e)
            return e
        return None
