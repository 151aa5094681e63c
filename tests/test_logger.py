"""Tests for logging setup."""

import gzip
import logging

import pytest

from tmbackup.config import LoggingConfig
from tmbackup.logger import (
    ConsoleFormatter,
    GzipRotatingFileHandler,
    LoggingError,
    get_logger,
    log_backup_completion,
    log_backup_error,
    log_backup_start,
    log_rsync_output,
    setup_logging,
)


pytestmark = pytest.mark.usefixtures("reset_logging_handlers")


def make_record(level: int, message: str) -> logging.LogRecord:
    return logging.LogRecord("tmbackup", level, __file__, 1, message, None, None)


@pytest.fixture
def logging_config(tmp_path):
    return LoggingConfig(
        level="INFO",
        log_file=tmp_path / "logs" / "tmbackup.log",
        error_log_file=tmp_path / "logs" / "tmbackup.err",
    )


class TestConsoleFormatter:

    @pytest.mark.parametrize("level,expected", [
        (logging.INFO, "tmbackup: Starting backup..."),
        (logging.WARNING, "tmbackup: [WARNING] Starting backup..."),
        (logging.ERROR, "tmbackup: [ERROR] Starting backup..."),
    ])
    def test_prefixes(self, level, expected):
        assert ConsoleFormatter().format(make_record(level, "Starting backup...")) == expected


class TestSetupLogging:

    def test_creates_log_files(self, logging_config):
        logger = setup_logging(logging_config)
        logger.info("hello")
        logger.error("broken")
        for handler in logger.handlers:
            handler.flush()

        assert "hello" in logging_config.log_file.read_text()
        error_text = logging_config.error_log_file.read_text()
        assert "broken" in error_text
        assert "hello" not in error_text

    def test_handlers_not_duplicated(self, logging_config):
        setup_logging(logging_config)
        logger = setup_logging(logging_config)
        assert len(logger.handlers) == 3

    def test_level_override(self, logging_config):
        logger = setup_logging(logging_config, level="DEBUG")
        assert logger.handlers[0].level == logging.DEBUG

    def test_invalid_level(self, logging_config):
        logging_config.level = "LOUD"
        with pytest.raises(LoggingError, match="Invalid log level"):
            setup_logging(logging_config)

    def test_unwritable_log_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config = LoggingConfig(
            log_file=blocker / "sub" / "a.log",
            error_log_file=blocker / "sub" / "a.err",
        )
        with pytest.raises(LoggingError):
            setup_logging(config)

    def test_get_logger(self):
        assert get_logger().name == "tmbackup"


class TestGzipRotation:

    def test_rotated_file_is_compressed(self, tmp_path):
        log_file = tmp_path / "rotate.log"
        handler = GzipRotatingFileHandler(log_file, maxBytes=100, backupCount=2)
        handler.setFormatter(logging.Formatter("%(message)s"))
        for i in range(20):
            handler.emit(make_record(logging.INFO, f"line number {i}"))
        handler.close()

        rotated = tmp_path / "rotate.log.1.gz"
        assert rotated.exists()
        with gzip.open(rotated, "rt") as f:
            assert "line number" in f.read()


class TestLogHelpers:

    def test_backup_start(self, caplog, tmp_path):
        with caplog.at_level(logging.INFO, logger="tmbackup"):
            log_backup_start(get_logger(), tmp_path / "src", tmp_path / "dest")
        assert "Starting backup..." in caplog.text
        assert f"From: {tmp_path / 'src'}" in caplog.text

    def test_backup_completion_reports_attempts(self, caplog):
        with caplog.at_level(logging.INFO, logger="tmbackup"):
            log_backup_completion(get_logger(), 1.5, attempts=3)
        assert "Duration: 1.50 seconds" in caplog.text
        assert "Sync attempts: 3" in caplog.text

    def test_backup_error_with_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger="tmbackup"):
            log_backup_error(get_logger(), ValueError("boom"), "sync")
        assert "Backup failed during sync: boom" in caplog.text

    def test_rsync_output_is_debug_only(self, caplog):
        with caplog.at_level(logging.INFO, logger="tmbackup"):
            log_rsync_output(get_logger(), ">f+++++++++ file.txt")
        assert "file.txt" not in caplog.text
        with caplog.at_level(logging.DEBUG, logger="tmbackup"):
            log_rsync_output(get_logger(), ">f+++++++++ file.txt")
        assert "rsync: >f+++++++++ file.txt" in caplog.text
