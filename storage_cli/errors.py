"""Error taxonomy shared by the transfer engine and backend adapters.

Backend adapters translate vendor SDK exceptions into these types so the
orchestrators can decide between retry, fallback, and failure without
knowing which provider they talk to.
"""

from typing import Optional


class StorageError(Exception):
    """Base class for all storage operation failures."""

    pass


class NotFoundError(StorageError):
    """Raised when an object or bucket does not exist."""

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(message or f"object does not exist: {key}")
        self.key = key


class CapabilityNotSupportedError(StorageError):
    """Raised when a backend lacks a feature, e.g. multipart copy."""

    pass


class TransientBackendError(StorageError):
    """Raised by adapters for throttling, 5xx and connection failures."""

    pass


class ReadOnlyError(StorageError):
    """Raised when a write is attempted with anonymous credentials."""

    def __init__(self, operation: str):
        super().__init__(
            f"cannot {operation}: the client operates in read only mode. "
            "Change 'credentials_source' parameter value"
        )
        self.operation = operation


class ChecksumMismatchError(StorageError):
    """Raised when the backend reports a checksum that differs from the local one."""

    def __init__(self, key: str, expected: bytes, actual: bytes):
        super().__init__(
            f"checksum mismatch for '{key}': expected {expected.hex()}, got {actual.hex()}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class TransferTimeoutError(StorageError, TimeoutError):
    """Raised when an operation's deadline expires."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class InvalidSizeError(StorageError, ValueError):
    """Raised for negative object sizes or non-positive part sizes."""

    pass


class SourceNotSeekableError(StorageError):
    """Raised when an upload source cannot be rewound for retry."""

    pass


class IncompleteTransferError(TransientBackendError):
    """Raised when a download wrote fewer bytes than the object holds.

    A connection that closes early yields a short body, so a short part is
    fetched again like any other transient failure.
    """

    def __init__(self, key: str, expected: int, actual: int):
        super().__init__(
            f"download of '{key}' incomplete: expected {expected} bytes, got {actual}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class PartialFailureError(StorageError):
    """Aggregate error for recursive delete, naming every failed key."""

    def __init__(self, failures: dict[str, Exception]):
        lines = [f"deleting object {key}: {err}" for key, err in failures.items()]
        super().__init__(
            f"failed to delete {len(failures)} object(s):\n" + "\n".join(lines)
        )
        self.failures = failures
