"""Command-line interface for the storage CLI.

Provides argument parsing and the main entry point. Exit codes:
0 success, 1 operation error, 2 configuration or usage error,
3 object does not exist (``exists`` only).
"""

import argparse
import logging
import sys
from typing import Optional

from storage_cli import __version__
from storage_cli.backends import build_backend
from storage_cli.commands import CommandExecutor, NotExistsError, UsageError
from storage_cli.config import (
    STORAGE_TYPES,
    ConfigError,
    load_config,
    resolve_config_path,
    resolve_storage_type,
)
from storage_cli.logging_setup import DEFAULT_LOG_LEVEL, configure_logging
from storage_cli.reporters import ConsoleReporter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_NOT_EXISTS = 3


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="storage-cli",
        description="Upload, download, copy, list and delete objects in cloud blob storage",
    )

    parser.add_argument(
        "-c", "--config",
        metavar="PATH",
        help="Path to configuration file (default: $STORAGE_CLI_CONFIG)",
    )

    parser.add_argument(
        "-s", "--storage-type",
        choices=STORAGE_TYPES,
        help="Storage type (default: $STORAGE_CLI_STORAGE_TYPE or s3)",
    )

    parser.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        help="Log level: debug|info|warn|error (default: warn)",
    )

    parser.add_argument(
        "--log-file",
        metavar="PATH",
        help="Also write JSON log lines to this file",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress progress output",
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"version {__version__}",
    )

    parser.add_argument(
        "command",
        nargs="?",
        help="put, get, copy, delete, delete-recursive, exists, list, sign, "
             "properties or ensure-storage-exists",
    )

    parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Command arguments",
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 for success, 1 for operation errors, 2 for
        configuration or usage errors, 3 if the object does not exist
    """
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    if not args.command:
        print("Expected at least 1 argument (command) got 0", file=sys.stderr)
        return EXIT_USAGE

    # Load configuration
    try:
        storage_type = resolve_storage_type(args.storage_type)
        backend_config, settings = load_config(resolve_config_path(args.config), storage_type)
        backend = build_backend(storage_type, backend_config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except Exception as e:
        logger.error("creating %s client: %s", args.storage_type or "storage", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    executor = CommandExecutor(backend, settings, reporter=ConsoleReporter(quiet=args.quiet))

    try:
        executor.execute(args.command, args.args)
    except UsageError as e:
        print(f"Usage error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except NotExistsError as e:
        logger.info("performing operation %s: %s", args.command, e)
        return EXIT_NOT_EXISTS
    except Exception as e:
        logger.error("performing operation %s: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        backend.close()

    return EXIT_OK


def main_entry() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
