"""Operation deadlines."""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Optional, TypeVar

from storage_cli.errors import TransferTimeoutError

T = TypeVar("T")


class Deadline:
    """A point in time after which an operation must give up.

    Args:
        timeout: Seconds from now. ``None`` means no deadline.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        """Seconds left, ``None`` if unbounded, never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str) -> None:
        """Raise TransferTimeoutError if the deadline has passed."""
        if self.expired:
            raise self.error(operation)

    def error(self, operation: str) -> TransferTimeoutError:
        return TransferTimeoutError(operation, self.timeout or 0.0)


def call_with_deadline(
    func: Callable[..., T],
    deadline: Optional[Deadline],
    operation: str,
    *args: Any,
) -> T:
    """Run a blocking backend call, giving up when the deadline passes.

    The call runs on a helper thread only when a deadline is set. On
    expiry the thread is abandoned, not joined.
    """
    remaining = deadline.remaining() if deadline is not None else None
    if remaining is None:
        return func(*args)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=remaining)
    except FuturesTimeoutError:
        if future.done():
            raise
        raise deadline.error(operation) from None
    finally:
        executor.shutdown(wait=False)
