"""Error classification and retry scheduling for backend calls.

A backend call either fails transiently, in which case the same request
may succeed if repeated after a pause, or permanently, in which case it is
raised to the caller untouched.

Transient:
- TransientBackendError raised by the backend adapters (throttling,
  5xx responses, dropped connections, bodies cut short)
- httpx connect/read timeouts and refused connections
- httpx status errors carrying 429 or a 5xx gateway status

Everything else is permanent: missing objects, capability errors,
checksum mismatches, deadlines and invalid arguments.
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx

from storage_cli.deadline import Deadline
from storage_cli.errors import TransientBackendError

logger = logging.getLogger(__name__)

# Statuses a repeated request can recover from
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Network failures raised before any response arrives
TRANSIENT_NETWORK_ERRORS = (
    TransientBackendError,
    ConnectionError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
)

# Per-part retry delays, in seconds
PART_RETRY_DELAYS = (1.0, 2.0, 4.0)


class RetryExhausted(Exception):
    """Every attempt failed with a transient error."""

    def __init__(self, message: str, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_error(error: Exception) -> bool:
    """Return True when repeating the failed call may succeed."""
    if isinstance(error, TRANSIENT_NETWORK_ERRORS):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in TRANSIENT_STATUS_CODES
    return False


def linear_delays(max_attempts: int, step: float = 1.0) -> tuple[float, ...]:
    """Delays of ``attempt * step`` seconds, one per retry."""
    return tuple(step * attempt for attempt in range(1, max_attempts))


def sleep_within(delay: float, deadline: Optional[Deadline], operation: str) -> None:
    """Sleep for ``delay`` seconds unless that would overrun the deadline."""
    if deadline is not None:
        remaining = deadline.remaining()
        if remaining is not None:
            if remaining <= delay:
                raise deadline.error(operation)
    time.sleep(delay)


def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    delays: Sequence[float] = PART_RETRY_DELAYS,
    args: tuple = (),
    kwargs: Optional[dict] = None,
    deadline: Optional[Deadline] = None,
    operation: str = "operation",
) -> Any:
    """Execute a function with retry logic and backoff.

    Args:
        func: The function to execute.
        max_attempts: Maximum number of attempts (including first try).
        delays: Sequence of delay times (seconds) between retries.
                delays[0] is used after first failure, etc.
        args: Positional arguments to pass to func.
        kwargs: Keyword arguments to pass to func.
        deadline: Optional deadline; no retry is scheduled past it.
        operation: Name used in log lines and error messages.

    Returns:
        The return value of func if successful.

    Raises:
        RetryExhausted: If all attempts fail with retryable errors.
        TransferTimeoutError: If the deadline expires between attempts.
        Exception: A non-retryable error, raised on first sight.
    """
    kwargs = kwargs or {}

    for attempt in range(1, max_attempts + 1):
        if deadline is not None:
            deadline.check(operation)
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_error(e):
                raise
            if attempt == max_attempts:
                raise RetryExhausted(
                    f"{operation} failed after {max_attempts} attempts: {e}",
                    attempts=max_attempts,
                    last_error=e,
                ) from e

            delay = delays[min(attempt, len(delays)) - 1]
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                operation, attempt, max_attempts, delay, e,
            )
            sleep_within(delay, deadline, operation)

    raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
