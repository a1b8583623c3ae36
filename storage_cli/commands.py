"""Command dispatch for the storage CLI.

Each command validates its arguments, then hands off to an orchestrator
or a single backend call. Command output goes to ``stdout``; progress and
log lines go to stderr.
"""

import logging
import re
import sys
from datetime import timedelta
from typing import Callable, Optional, TextIO

from storage_cli.backends.base import BlobBackend
from storage_cli.copy import CopyOrchestrator
from storage_cli.deadline import Deadline
from storage_cli.delete import BoundedRecursiveDeleter
from storage_cli.download import DownloadOrchestrator, FileSink
from storage_cli.errors import NotFoundError, StorageError
from storage_cli.listing import BulkLister
from storage_cli.models import BlobProperties, TransferSettings
from storage_cli.reporters.base import NullReporter, Reporter
from storage_cli.upload import UploadOrchestrator

logger = logging.getLogger(__name__)


class UsageError(Exception):
    """Raised for unknown commands and wrong argument counts."""

    pass


class NotExistsError(StorageError):
    """Raised by ``exists`` when the object is absent."""

    def __init__(self):
        super().__init__("object does not exist")


# === Durations ===

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h``, ``60m``, ``3600s`` or ``1h30m``.

    Raises:
        ValueError: If ``text`` is not a valid duration.
    """
    value = text.strip()
    sign = 1
    if value[:1] in ("+", "-"):
        sign = -1 if value[0] == "-" else 1
        value = value[1:]
    if value == "0":
        return timedelta(0)
    if not value:
        raise ValueError(f"invalid duration: {text!r}")

    seconds = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART.match(value, position)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return timedelta(seconds=sign * seconds)


def _expect_args(command: str, args: list[str], count: int) -> None:
    if len(args) != count:
        noun = "argument" if count == 1 else "arguments"
        raise UsageError(f"{command} method expected {count} {noun} got {len(args)}")


def _optional_prefix(command: str, args: list[str]) -> str:
    if len(args) > 1:
        raise UsageError(f"{command} takes at most 1 argument (prefix) got {len(args)}")
    return args[0] if args else ""


class CommandExecutor:
    """Runs one CLI command against a backend.

    Args:
        backend: The storage backend.
        settings: Transfer settings for orchestrators.
        reporter: Progress reporter for transfers.
        stdout: Stream for command output.
    """

    def __init__(
        self,
        backend: BlobBackend,
        settings: Optional[TransferSettings] = None,
        reporter: Optional[Reporter] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.backend = backend
        self.settings = settings or TransferSettings()
        self.reporter = reporter or NullReporter()
        self.stdout = stdout or sys.stdout
        self._commands: dict[str, Callable[[list[str]], None]] = {
            "put": self.put,
            "get": self.get,
            "copy": self.copy,
            "delete": self.delete,
            "delete-recursive": self.delete_recursive,
            "exists": self.exists,
            "sign": self.sign,
            "list": self.list_keys,
            "properties": self.properties,
            "ensure-storage-exists": self.ensure_storage_exists,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._commands)

    def execute(self, command: str, args: list[str]) -> None:
        handler = self._commands.get(command)
        if handler is None:
            raise UsageError(f"unknown command: '{command}'")
        logger.debug("Executing %s with %d argument(s)", command, len(args))
        handler(args)

    def _deadline(self) -> Deadline:
        return Deadline(self.settings.timeout_seconds)

    def put(self, args: list[str]) -> None:
        _expect_args("put", args, 2)
        source_path, destination = args
        with open(source_path, "rb") as source:
            UploadOrchestrator(self.backend, self.settings, self.reporter).upload(
                source, destination, deadline=self._deadline()
            )

    def get(self, args: list[str]) -> None:
        _expect_args("get", args, 2)
        source, destination_path = args
        with FileSink(destination_path) as sink:
            DownloadOrchestrator(self.backend, self.settings, self.reporter).download(
                source, sink, deadline=self._deadline()
            )

    def copy(self, args: list[str]) -> None:
        _expect_args("copy", args, 2)
        source, destination = args
        CopyOrchestrator(self.backend, self.settings, self.reporter).copy(
            source, destination, deadline=self._deadline()
        )

    def delete(self, args: list[str]) -> None:
        _expect_args("delete", args, 1)
        self.backend.delete_object(args[0])

    def delete_recursive(self, args: list[str]) -> None:
        prefix = _optional_prefix("delete-recursive", args)
        BoundedRecursiveDeleter(self.backend).delete_all(
            prefix,
            max_concurrency=self.settings.delete_concurrency,
            deadline=self._deadline(),
        )

    def exists(self, args: list[str]) -> None:
        _expect_args("exists", args, 1)
        if not self.backend.exists(args[0]):
            raise NotExistsError()

    def sign(self, args: list[str]) -> None:
        if len(args) != 3:
            raise UsageError(f"sign method expects 3 arguments got {len(args)}")
        key, action, duration = args
        action = action.lower()
        if action not in ("get", "put"):
            raise UsageError(
                f"action not implemented: {action}. Available actions are 'get' and 'put'"
            )
        try:
            expiration = parse_duration(duration)
        except ValueError:
            raise UsageError(
                "expiration should be in the format of a duration i.e. 1h, 60m, 3600s. "
                f"Got: {duration}"
            ) from None

        url = self.backend.sign(key, action, expiration)
        self.stdout.write(url)

    def list_keys(self, args: list[str]) -> None:
        prefix = _optional_prefix("list", args)
        for key in BulkLister(self.backend).list(prefix):
            self.stdout.write(f"{key}\n")

    def properties(self, args: list[str]) -> None:
        _expect_args("properties", args, 1)
        try:
            info = self.backend.stat_object(args[0])
        except NotFoundError:
            self.stdout.write("{}\n")
            return
        self.stdout.write(BlobProperties.from_object_info(info).to_json() + "\n")

    def ensure_storage_exists(self, args: list[str]) -> None:
        if args:
            raise UsageError(f"ensure-storage-exists method expected 0 arguments got {len(args)}")
        self.backend.ensure_storage_exists()
