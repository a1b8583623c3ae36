"""Base reporter interface."""

from abc import ABC, abstractmethod


class Reporter(ABC):
    """Abstract base class for transfer progress reporters.

    Callbacks for a single transfer may arrive from several worker
    threads at once.
    """

    @abstractmethod
    def on_transfer_start(self, operation: str, key: str, total_bytes: int) -> None:
        """Called when an upload, download or copy starts."""
        pass

    @abstractmethod
    def on_bytes_transferred(self, key: str, num_bytes: int) -> None:
        """Called as parts (or whole single-shot bodies) finish."""
        pass

    @abstractmethod
    def on_transfer_complete(self, key: str, success: bool) -> None:
        """Called when the transfer finishes, successfully or not."""
        pass


class NullReporter(Reporter):
    """Reporter that ignores every callback."""

    def on_transfer_start(self, operation: str, key: str, total_bytes: int) -> None:
        pass

    def on_bytes_transferred(self, key: str, num_bytes: int) -> None:
        pass

    def on_transfer_complete(self, key: str, success: bool) -> None:
        pass
