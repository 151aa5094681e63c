"""Command-line interface for tmbackup.

Usage:
    tmbackup [options] SOURCE DESTINATION [EXCLUSION_FILE]

Exit status is 0 on success and 1 on any failure.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from tmbackup import __version__
from tmbackup.backup import EXIT_FAILURE, EXIT_SUCCESS, BackupRunController
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    DEFAULT_CONFIG_PATH,
)
from tmbackup.logger import LoggingError, get_logger, setup_logging


# Characters that may not appear in any positional argument
FORBIDDEN_CHARACTERS = ("'", '"')


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog='tmbackup',
        description='Time-Machine style incremental backups with rsync'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output (includes rsync item list)'
    )
    parser.add_argument(
        '--no-auto-expire',
        action='store_true',
        help='Fail instead of expiring old backups when the destination is full'
    )
    parser.add_argument(
        '--max-retries',
        type=int,
        metavar='N',
        help='Give up after N destination-full retries (0 = no limit)'
    )
    parser.add_argument('source', help='Directory to back up')
    parser.add_argument('destination', help='Backup destination (must contain backup.marker)')
    parser.add_argument(
        'exclusion_file',
        nargs='?',
        help='File of rsync exclude patterns'
    )
    return parser


def find_unsafe_argument(values: List[Optional[str]]) -> Optional[str]:
    """Return the first argument containing a quote character, if any."""
    for value in values:
        if value and any(ch in value for ch in FORBIDDEN_CHARACTERS):
            return value
    return None


def load_config(config_path: Optional[Path]) -> Optional[Configuration]:
    """
    Load configuration from file.

    Returns None and prints error on failure.
    """
    try:
        return parse_config(config_path)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if find_unsafe_argument([args.source, args.destination, args.exclusion_file]):
        print("tmbackup: [ERROR] Arguments may not have any quote characters.", file=sys.stderr)
        return EXIT_FAILURE

    config = load_config(args.config)
    if config is None:
        return EXIT_FAILURE

    if args.no_auto_expire:
        config.sync.auto_expire = False
    if args.max_retries is not None:
        if args.max_retries < 0:
            print("tmbackup: [ERROR] --max-retries must not be negative.", file=sys.stderr)
            return EXIT_FAILURE
        config.sync.max_exhaustion_retries = args.max_retries

    try:
        setup_logging(config.logging, level="DEBUG" if args.verbose else None)
    except LoggingError as e:
        # Continue with console-only logging
        logger = get_logger()
        logger.warning(f"Failed to set up logging: {e}")

    try:
        controller = BackupRunController(
            args.source,
            args.destination,
            exclusion_file=args.exclusion_file,
            config=config,
        )
        result = controller.run()
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    return EXIT_SUCCESS if result.success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
