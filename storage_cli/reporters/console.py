"""Console reporter using Rich library for transfer progress.

Draws one progress bar per transfer on stderr, so stdout stays clean for
command output such as ``list`` and ``sign``.
"""

import threading
from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from storage_cli.reporters.base import Reporter


class ConsoleReporter(Reporter):
    """Rich-based progress reporter for CLI output.

    Args:
        quiet: If True, suppress progress output entirely
        console: Console to draw on (defaults to stderr)
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = console or Console(stderr=True, legacy_windows=True)
        self.quiet = quiet
        self._progress: Optional[Progress] = None
        self._tasks: dict[str, TaskID] = {}
        self._lock = threading.Lock()

    def _new_progress(self) -> Progress:
        return Progress(
            TextColumn("[cyan]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
        )

    def on_transfer_start(self, operation: str, key: str, total_bytes: int) -> None:
        """Add a progress bar for the transfer."""
        if self.quiet:
            return
        with self._lock:
            if self._progress is None:
                self._progress = self._new_progress()
                self._progress.start()
            self._tasks[key] = self._progress.add_task(f"{operation} {key}", total=total_bytes)

    def on_bytes_transferred(self, key: str, num_bytes: int) -> None:
        """Advance the transfer's progress bar."""
        if self.quiet:
            return
        with self._lock:
            task_id = self._tasks.get(key)
            if self._progress is not None and task_id is not None:
                self._progress.advance(task_id, num_bytes)

    def on_transfer_complete(self, key: str, success: bool) -> None:
        """Remove the bar and print a one-line result."""
        if self.quiet:
            return
        with self._lock:
            task_id = self._tasks.pop(key, None)
            if self._progress is not None and task_id is not None:
                self._progress.remove_task(task_id)
            if self._progress is not None and not self._tasks:
                self._progress.stop()
                self._progress = None

        if success:
            self.console.print(f"[green][OK][/green] {key}")
        else:
            self.console.print(f"[red][FAILED][/red] {key}")
