"""Paginated listing flattened into a single lazy sequence."""

import logging
from typing import Iterator, Optional

from storage_cli.backends.base import BlobBackend

logger = logging.getLogger(__name__)


class BulkLister:
    """Follows a backend's continuation cursor across pages.

    Keys are yielded in the order the backend returns them, page after
    page, without sorting or de-duplication. The cursor is never
    interpreted, only handed back on the next request.
    """

    def __init__(self, backend: BlobBackend):
        self.backend = backend

    def list(self, prefix: str = "") -> Iterator[str]:
        """Yield every key under ``prefix``.

        A backend error on any page propagates to the caller; keys
        already yielded from earlier pages remain valid. To start over,
        call ``list`` again.
        """
        cursor: Optional[str] = None
        pages = 0
        while True:
            page = self.backend.list_page(prefix, cursor)
            pages += 1
            yield from page.keys
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
        logger.debug("Listed %d page(s) for prefix '%s'", pages, prefix)
