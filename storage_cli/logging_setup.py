"""Logging configuration for the CLI.

Log lines go to stderr through Rich so stdout stays reserved for command
output. ``--log-file`` adds a JSON-lines file handler.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.config import dictConfig
from typing import Optional

from rich.console import Console

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

DEFAULT_LOG_LEVEL = "warn"

# Chatty SDK loggers that only follow the CLI level in debug mode
SDK_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer", "azure", "google", "httpx", "httpcore")


def parse_log_level(name: Optional[str]) -> int:
    """Map a level name to a logging level. Unknown names mean warn."""
    return LOG_LEVELS.get((name or DEFAULT_LOG_LEVEL).lower(), logging.WARNING)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    Args:
        level: Level name (debug, info, warn, error). Defaults to warn.
        log_file: Optional path for JSON-lines output.
    """
    numeric_level = parse_log_level(level)
    handlers = ["console"]
    handler_config = {
        "console": {
            "()": "rich.logging.RichHandler",
            "console": Console(stderr=True, legacy_windows=True),
            "show_path": False,
            "rich_tracebacks": False,
        },
    }
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append("file")
        handler_config["file"] = {
            "class": "logging.FileHandler",
            "filename": log_file,
            "encoding": "utf-8",
            "formatter": "json",
        }

    sdk_level = numeric_level if numeric_level == logging.DEBUG else max(numeric_level, logging.WARNING)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": handler_config,
            "root": {
                "level": numeric_level,
                "handlers": handlers,
            },
            "loggers": {name: {"level": sdk_level} for name in SDK_LOGGERS},
        }
    )


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)
