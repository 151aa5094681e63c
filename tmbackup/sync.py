"""rsync driver for tmbackup.

This module provides the SyncDriver class that runs rsync once per attempt
and classifies the outcome. rsync is always started with an argument list,
never through a shell.

The per-run log written by ``rsync --log-file`` is the classification
channel: exhaustion, engine errors and warnings are recognised by their
signatures in that file.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional
import logging
import re
import subprocess
import threading
import time

from tmbackup.catalog import Snapshot
from tmbackup.logger import log_rsync_output


logger = logging.getLogger(__name__)


# Destination full, or a write that could not fit
EXHAUSTION_SIGNATURES = (
    "No space left on device (28)",
    "Result too large (34)",
)
FATAL_SIGNATURE = "rsync error:"
WARNING_SIGNATURE = "rsync:"

# Lines worth echoing: deletions and anything that is not a bare directory
OUTPUT_FILTER = re.compile(r"^deleting|[^/]$")


class SyncOutcome(Enum):
    """Classification of one rsync attempt."""
    CLEAN = "clean"
    WARNING = "warning"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"

    @property
    def succeeded(self) -> bool:
        return self in (SyncOutcome.CLEAN, SyncOutcome.WARNING)


@dataclass
class SyncResult:
    """Result of one rsync attempt."""
    outcome: SyncOutcome
    return_code: Optional[int]
    log_path: Path
    duration_seconds: float
    error_message: Optional[str] = None


def classify_log(log_path: Path, offset: int = 0) -> SyncOutcome:
    """
    Classify an rsync log by its signatures.

    Precedence is exhaustion, then fatal error, then warning.

    Args:
        log_path: Path to the log written by ``rsync --log-file``
        offset: Byte position where the attempt being classified started.
            rsync appends to its log file, so earlier attempts of the same
            run sit before this point.

    Returns:
        SyncOutcome for the attempt; a missing log is CLEAN
    """
    try:
        with open(log_path, "rb") as f:
            f.seek(offset)
            content = f.read().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return SyncOutcome.CLEAN

    if any(signature in content for signature in EXHAUSTION_SIGNATURES):
        return SyncOutcome.EXHAUSTED
    if FATAL_SIGNATURE in content:
        return SyncOutcome.FATAL
    if WARNING_SIGNATURE in content:
        return SyncOutcome.WARNING
    return SyncOutcome.CLEAN


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0


class SyncDriver:
    """
    Runs rsync from a source tree into one snapshot directory.

    Unchanged files are hard-linked from the incremental base when one is
    given, so every snapshot looks like a full copy.
    """

    BASE_FLAGS = [
        "--compress",
        "--numeric-ids",
        "--links",
        "--hard-links",
        "--one-file-system",
        "--archive",
        "--itemize-changes",
        "--verbose",
    ]

    def __init__(
        self,
        rsync_path: str = "rsync",
        extra_flags: Optional[List[str]] = None,
        timeout_seconds: int = 0,
    ):
        """
        Initialize the driver.

        Args:
            rsync_path: rsync executable name or path
            extra_flags: Additional flags appended after the standard set
            timeout_seconds: Kill rsync after this long; 0 disables the limit
        """
        self.rsync_path = rsync_path
        self.extra_flags = list(extra_flags or [])
        self.timeout_seconds = timeout_seconds

    def build_command(
        self,
        source: Path,
        snapshot_path: Path,
        log_path: Path,
        incremental_base: Optional[Snapshot] = None,
        exclusion_file: Optional[Path] = None,
    ) -> List[str]:
        """
        Build the rsync argument list.

        Args:
            source: Source directory; its contents are copied
            snapshot_path: Snapshot directory receiving the copy
            log_path: File rsync writes its itemized log to
            incremental_base: Previous snapshot to hard-link unchanged files from
            exclusion_file: Optional file of exclude patterns

        Returns:
            List of command arguments for subprocess
        """
        cmd = [self.rsync_path, *self.BASE_FLAGS, "--log-file", str(log_path)]

        if exclusion_file is not None:
            cmd += ["--exclude-from", str(exclusion_file)]

        if incremental_base is not None:
            # rsync resolves relative link-dest paths against the destination
            cmd += ["--link-dest", str(incremental_base.path.resolve())]

        cmd += self.extra_flags

        # Trailing slashes copy contents, not the directory itself
        cmd += ["--", f"{str(source).rstrip('/')}/", f"{str(snapshot_path).rstrip('/')}/"]
        return cmd

    def run(
        self,
        source: Path,
        snapshot_path: Path,
        log_path: Path,
        incremental_base: Optional[Snapshot] = None,
        exclusion_file: Optional[Path] = None,
        signal_handler: Optional[Any] = None,
    ) -> SyncResult:
        """
        Run rsync once and classify the attempt.

        Args:
            source: Source directory
            snapshot_path: Snapshot directory owned by the current run
            log_path: Per-run log file
            incremental_base: Previous snapshot used for hard links
            exclusion_file: Optional exclusion list
            signal_handler: SignalHandler told about the child process so an
                interruption can terminate it

        Returns:
            SyncResult with the attempt's outcome
        """
        cmd = self.build_command(
            source, snapshot_path, log_path, incremental_base, exclusion_file
        )
        logger.info("Running command:")
        logger.info(" ".join(cmd))

        log_offset = _file_size(log_path)
        start_time = time.time()
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            return SyncResult(
                outcome=SyncOutcome.FATAL,
                return_code=None,
                log_path=log_path,
                duration_seconds=time.time() - start_time,
                error_message=f"Failed to start {self.rsync_path}: {e}",
            )

        if signal_handler is not None:
            signal_handler.set_rsync_process(process)

        try:
            timed_out = self._stream_output(process)
        finally:
            if signal_handler is not None:
                signal_handler.set_rsync_process(None)

        duration = time.time() - start_time

        if timed_out:
            return SyncResult(
                outcome=SyncOutcome.FATAL,
                return_code=process.returncode,
                log_path=log_path,
                duration_seconds=duration,
                error_message=f"rsync timed out after {self.timeout_seconds} seconds",
            )

        outcome = classify_log(log_path, log_offset)
        error_message = None
        if outcome is SyncOutcome.CLEAN and process.returncode != 0:
            outcome = SyncOutcome.FATAL
            error_message = f"rsync exited with code {process.returncode}"

        return SyncResult(
            outcome=outcome,
            return_code=process.returncode,
            log_path=log_path,
            duration_seconds=duration,
            error_message=error_message,
        )

    def _stream_output(self, process: subprocess.Popen) -> bool:
        """
        Forward rsync output to the logger until it exits.

        Returns:
            True if the timeout expired and rsync was stopped
        """
        def read_output():
            for line_bytes in process.stdout:
                line = line_bytes.decode("utf-8", errors="replace").rstrip("\n")
                if OUTPUT_FILTER.search(line):
                    log_rsync_output(logger, line)

        reader_thread = threading.Thread(target=read_output, daemon=True)
        reader_thread.start()
        reader_thread.join(timeout=self.timeout_seconds or None)

        if reader_thread.is_alive():
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            return True

        process.wait()
        return False
