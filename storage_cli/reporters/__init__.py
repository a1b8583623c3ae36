"""Reporter modules for transfer progress output."""

from .base import NullReporter, Reporter
from .console import ConsoleReporter

__all__ = ["Reporter", "NullReporter", "ConsoleReporter"]
