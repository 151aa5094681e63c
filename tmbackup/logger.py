"""Logging configuration for tmbackup.

Two rotating files are written: the main log at the configured level and an
error log that only receives ERROR records. Rotated files are gzipped. The
console gets short ``tmbackup: message`` lines, tagged for warnings and
errors the way the run summary reads them.
"""

import gzip
import logging
import os
import shutil
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from tmbackup.config import LoggingConfig


LOGGER_NAME = "tmbackup"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler whose backups are stored as ``<name>.N.gz``."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        if not os.path.exists(source):
            return
        try:
            _gzip_file(source, dest)
        except OSError:
            # Keep the old records uncompressed rather than lose them
            os.replace(source, dest.removesuffix(".gz"))


def _gzip_file(source: str, dest: str) -> None:
    with open(source, "rb") as plain, gzip.open(dest, "wb") as packed:
        shutil.copyfileobj(plain, packed)
    os.remove(source)


class ConsoleFormatter(logging.Formatter):
    """Formats console lines as ``tmbackup: [LEVEL] message``."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.levelno >= logging.ERROR:
            return f"{LOGGER_NAME}: [ERROR] {message}"
        if record.levelno >= logging.WARNING:
            return f"{LOGGER_NAME}: [WARNING] {message}"
        return f"{LOGGER_NAME}: {message}"


def _resolve_level(name: str) -> int:
    try:
        return LEVELS[name.upper()]
    except KeyError:
        raise LoggingError(
            f"Invalid log level '{name}'. Must be one of: {', '.join(LEVELS)}"
        )


def _rotating_handler(
    path: Path,
    config: LoggingConfig,
    level: int,
) -> GzipRotatingFileHandler:
    """Create a rotating handler, creating the parent directory first."""
    path = Path(os.path.expanduser(str(path)))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LoggingError(f"Failed to create log directory {path.parent}: {e}")

    handler = GzipRotatingFileHandler(
        path,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    return handler


def setup_logging(
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``tmbackup`` logger.

    Calling this again replaces the handlers installed by the previous call.

    Args:
        config: Paths and rotation settings; defaults when None
        level: Overrides the configured level (``--verbose`` passes "DEBUG")

    Returns:
        The configured logger

    Raises:
        LoggingError: If the level is unknown or a log directory cannot be
            created
    """
    config = config or LoggingConfig()
    log_level = _resolve_level(level or config.level)

    handlers = [
        _rotating_handler(config.log_file, config, log_level),
        _rotating_handler(config.error_log_file, config, logging.ERROR),
    ]
    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(ConsoleFormatter())
    handlers.append(console)

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        old.close()
        logger.removeHandler(old)
    # Handlers do the filtering
    logger.setLevel(logging.DEBUG)
    for handler in handlers:
        logger.addHandler(handler)

    return logger


def get_logger() -> logging.Logger:
    """Return the ``tmbackup`` logger, configured or not."""
    return logging.getLogger(LOGGER_NAME)


def log_backup_start(
    logger: logging.Logger,
    source: Path,
    snapshot_path: Path,
) -> None:
    logger.info("Starting backup...")
    logger.info(f"From: {source}")
    logger.info(f"To:   {snapshot_path}")


def log_backup_completion(
    logger: logging.Logger,
    duration_seconds: float,
    snapshot_path: Optional[Path] = None,
    attempts: int = 1,
) -> None:
    """
    Log the summary of a successful run.

    Args:
        logger: Logger to write to
        duration_seconds: Wall time of the run
        snapshot_path: The snapshot the run produced
        attempts: rsync attempts needed; only reported when above one
    """
    logger.info(f"Backup completed at {datetime.now():%Y-%m-%d %H:%M:%S}")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    if attempts > 1:
        logger.info(f"Sync attempts: {attempts}")
    if snapshot_path is not None:
        logger.info(f"Snapshot: {snapshot_path}")


def log_backup_error(
    logger: logging.Logger,
    error: Exception,
    context: Optional[str] = None,
) -> None:
    """Log why a run failed, naming the state it failed in when known."""
    where = f" during {context}" if context else ""
    logger.error(f"Backup failed{where}: {error}")


def log_rsync_output(logger: logging.Logger, line: str) -> None:
    """Log one line of rsync output at DEBUG."""
    line = line.rstrip()
    if line:
        logger.debug(f"rsync: {line}")
