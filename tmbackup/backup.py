"""Backup run controller for tmbackup.

This module drives one backup run through an explicit state machine:

    START -> PRUNE -> SYNC -> FINISH
                       |  ^
                       v  |
                      RETRY ----> FAIL

- START: check preconditions, resume an interrupted run, pick the
  incremental base
- PRUNE: apply the retention policy once, before the new snapshot is synced
- SYNC: (re)claim the lock and run rsync
- RETRY: the destination filled up; expire the oldest snapshot and sync again
- FINISH: update the latest links and clear the lock
- FAIL: stop, leaving the lock so the next run resumes

All mutable run state lives in a RunContext value passed between states.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union
import logging
import time

from tmbackup.catalog import Snapshot, SnapshotCatalog
from tmbackup.config import Configuration
from tmbackup.destination import (
    BackupDestination,
    DestinationError,
    MarkerMissingError,
    get_available_space,
    is_writable,
)
from tmbackup.expire import ExpireError, SnapshotExpirer
from tmbackup.lock import InProgressLock, LockError
from tmbackup.logger import log_backup_completion, log_backup_error, log_backup_start
from tmbackup.resume import ResumeManager
from tmbackup.retention import RetentionEvaluator
from tmbackup.signal_handler import SignalHandler
from tmbackup.sync import SyncDriver, SyncOutcome, SyncResult
from tmbackup.timestamps import format_timestamp


logger = logging.getLogger(__name__)


EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class BackupError(Exception):
    """Raised when a run cannot proceed."""
    pass


class RunState(Enum):
    """States of a backup run."""
    START = "start"
    PRUNE = "prune"
    SYNC = "sync"
    RETRY = "retry"
    FINISH = "finish"
    FAIL = "fail"


@dataclass
class RunContext:
    """Mutable state of one backup run."""
    source: Path
    snapshot: Snapshot
    started_at: datetime
    exclusion_file: Optional[Path] = None
    incremental_base: Optional[Snapshot] = None
    resumed_from: Optional[str] = None
    attempts: int = 0
    exhaustion_retries: int = 0
    expired: List[Snapshot] = field(default_factory=list)
    last_sync: Optional[SyncResult] = None
    error_message: Optional[str] = None


@dataclass
class BackupResult:
    """Result of a backup run."""
    success: bool
    exit_code: int
    snapshot_path: Optional[Path] = None
    attempts: int = 0
    expired_snapshots: List[Snapshot] = field(default_factory=list)
    resumed_from: Optional[str] = None
    warnings: bool = False
    error_message: Optional[str] = None
    sync_result: Optional[SyncResult] = None


class BackupRunController:
    """
    Runs one backup of a source directory into a destination.

    The controller is the only component holding run state; the catalog,
    evaluator, expirer, resume manager and sync driver it drives are
    stateless between calls.
    """

    def __init__(
        self,
        source: Union[str, Path],
        destination: Union[str, Path],
        exclusion_file: Optional[Union[str, Path]] = None,
        config: Optional[Configuration] = None,
        sync_driver: Optional[SyncDriver] = None,
        clock: Optional[Callable[[], datetime]] = None,
        handle_signals: bool = True,
    ):
        """
        Initialize the controller.

        Args:
            source: Directory to back up
            destination: Backup destination holding the marker file
            exclusion_file: Optional rsync exclude-from file
            config: Configuration; defaults are used when None
            sync_driver: Driver used for rsync attempts. Built from the
                configuration when None.
            clock: Returns the current local time; names the new snapshot
            handle_signals: Install SIGINT/SIGTERM handlers for the run
        """
        self.config = config or Configuration()
        self.source = Path(source)
        self.exclusion_file = Path(exclusion_file) if exclusion_file else None

        self.destination = BackupDestination(destination)
        self.catalog = SnapshotCatalog(self.destination)
        self.lock = InProgressLock(self.destination.lock_path)
        self.evaluator = RetentionEvaluator(
            keep_all_days=self.config.retention.keep_all_days,
            keep_daily_days=self.config.retention.keep_daily_days,
        )
        self.expirer = SnapshotExpirer(self.destination)
        self.resume_manager = ResumeManager(self.destination, self.catalog, self.lock)
        self.sync_driver = sync_driver or SyncDriver(
            rsync_path=self.config.sync.rsync_path,
            extra_flags=self.config.sync.extra_flags,
            timeout_seconds=self.config.sync.timeout_seconds,
        )
        self.clock = clock or datetime.now
        self.signal_handler = SignalHandler(exit_code=EXIT_FAILURE) if handle_signals else None

    def run(self) -> BackupResult:
        """
        Run the backup to completion.

        Returns:
            BackupResult; exit_code is EXIT_SUCCESS or EXIT_FAILURE
        """
        started_at = self.clock()
        ctx = RunContext(
            source=self.source,
            snapshot=self.catalog.snapshot(format_timestamp(started_at)),
            started_at=started_at,
            exclusion_file=self.exclusion_file,
        )

        handlers = {
            RunState.START: self._start,
            RunState.PRUNE: self._prune,
            RunState.SYNC: self._sync,
            RunState.RETRY: self._retry,
        }

        if self.signal_handler is not None:
            self.signal_handler.register()

        start_time = time.time()
        try:
            state = RunState.START
            while state not in (RunState.FINISH, RunState.FAIL):
                try:
                    state = handlers[state](ctx)
                except (BackupError, DestinationError, LockError, ExpireError, OSError) as e:
                    self._report_failure(e, state)
                    ctx.error_message = str(e)
                    state = RunState.FAIL

            if state is RunState.FINISH:
                try:
                    return self._finish(ctx, time.time() - start_time)
                except OSError as e:
                    self._report_failure(e, state)
                    ctx.error_message = str(e)
            return self._fail(ctx)
        finally:
            if self.signal_handler is not None:
                self.signal_handler.unregister()

    def _start(self, ctx: RunContext) -> RunState:
        if not self.source.is_dir():
            raise BackupError(f"Source directory does not exist: {self.source}")
        if self.exclusion_file is not None and not self.exclusion_file.is_file():
            raise BackupError(f"Exclusion file does not exist: {self.exclusion_file}")

        self.destination.check_marker()

        resume = self.resume_manager.prepare(ctx.snapshot.name)
        ctx.resumed_from = resume.resumed_from
        ctx.incremental_base = resume.incremental_base

        if not resume.resumed and ctx.snapshot.path.exists():
            raise BackupError(
                f"Snapshot {ctx.snapshot.name} already exists - "
                f"another backup started within the same second."
            )

        if not is_writable(self.destination.root):
            raise DestinationError(f"Destination not writable: {self.destination.root}")
        self.destination.ensure_log_dir()

        return RunState.PRUNE

    def _prune(self, ctx: RunContext) -> RunState:
        result = self.evaluator.apply(
            self.catalog, self.expirer, now=ctx.started_at.timestamp()
        )
        ctx.expired.extend(result.expired_snapshots)

        base = ctx.incremental_base
        if base is not None and any(s.name == base.name for s in result.expired_snapshots):
            logger.warning(f"Incremental base {base.name} was expired - doing a full backup")
            ctx.incremental_base = None

        return RunState.SYNC

    def _sync(self, ctx: RunContext) -> RunState:
        if ctx.incremental_base is None:
            logger.info("No previous backup - creating new one.")
        else:
            logger.info(
                f"Previous backup found - doing incremental backup from {ctx.incremental_base.path}"
            )

        if not ctx.snapshot.path.is_dir():
            logger.info(f"Creating destination {ctx.snapshot.path}")
            try:
                ctx.snapshot.path.mkdir(parents=True)
            except OSError as e:
                raise BackupError(f"creation of directory {ctx.snapshot.path} failed: {e}")

        log_backup_start(logger, ctx.source, ctx.snapshot.path)

        self.lock.claim()
        ctx.attempts += 1
        result = self.sync_driver.run(
            ctx.source,
            ctx.snapshot.path,
            ctx.snapshot.log_path,
            incremental_base=ctx.incremental_base,
            exclusion_file=ctx.exclusion_file,
            signal_handler=self.signal_handler,
        )
        ctx.last_sync = result

        if result.outcome is SyncOutcome.EXHAUSTED:
            return RunState.RETRY

        if not result.outcome.succeeded:
            message = (
                f"Rsync reported an error, please check '{result.log_path}' for more details."
            )
            if result.error_message:
                message = f"{message} ({result.error_message})"
            raise BackupError(message)

        if result.outcome is SyncOutcome.WARNING:
            logger.warning(
                f"Rsync reported a warning, please check '{result.log_path}' for more details."
            )

        return RunState.FINISH

    def _retry(self, ctx: RunContext) -> RunState:
        logger.warning("No space left on device.")
        try:
            free_bytes = get_available_space(self.destination.root)
            logger.debug(f"{free_bytes} bytes free at {self.destination.root}")
        except DestinationError as e:
            logger.debug(str(e))

        if not self.config.sync.auto_expire:
            raise BackupError("No space left on device, and automatic expiry is disabled.")

        cap = self.config.sync.max_exhaustion_retries
        if cap and ctx.exhaustion_retries >= cap:
            raise BackupError(
                f"No space left on device after {ctx.exhaustion_retries} retries - giving up."
            )

        # The run's own snapshot is never a candidate
        oldest = self.catalog.oldest(exclude=ctx.snapshot.name)
        if oldest is None:
            raise BackupError("No space left on device, and no old backup to delete.")

        logger.warning("Removing oldest backup and resuming.")
        self.expirer.expire(oldest)
        ctx.expired.append(oldest)
        ctx.exhaustion_retries += 1

        if ctx.incremental_base is not None and ctx.incremental_base.name == oldest.name:
            logger.warning(f"Incremental base {oldest.name} was expired - continuing as a full backup")
            ctx.incremental_base = None

        return RunState.SYNC

    def _finish(self, ctx: RunContext, duration_seconds: float) -> BackupResult:
        self.destination.update_latest_links(ctx.snapshot.name)
        self.lock.clear()

        warnings = ctx.last_sync is not None and ctx.last_sync.outcome is SyncOutcome.WARNING
        log_backup_completion(
            logger,
            duration_seconds=duration_seconds,
            snapshot_path=ctx.snapshot.path,
            attempts=ctx.attempts,
        )
        if not warnings:
            logger.info("Backup completed without errors.")

        return BackupResult(
            success=True,
            exit_code=EXIT_SUCCESS,
            snapshot_path=ctx.snapshot.path,
            attempts=ctx.attempts,
            expired_snapshots=list(ctx.expired),
            resumed_from=ctx.resumed_from,
            warnings=warnings,
            sync_result=ctx.last_sync,
        )

    def _fail(self, ctx: RunContext) -> BackupResult:
        # The lock stays so the next run can resume this snapshot
        return BackupResult(
            success=False,
            exit_code=EXIT_FAILURE,
            snapshot_path=ctx.snapshot.path if ctx.attempts else None,
            attempts=ctx.attempts,
            expired_snapshots=list(ctx.expired),
            resumed_from=ctx.resumed_from,
            error_message=ctx.error_message,
            sync_result=ctx.last_sync,
        )

    def _report_failure(self, error: Exception, state: RunState) -> None:
        log_backup_error(logger, error, state.value)
        if isinstance(error, MarkerMissingError):
            logger.info(
                "If it is indeed a backup folder, you may add the marker file "
                "by running the following command:"
            )
            logger.info("")
            logger.info(error.remediation)
            logger.info("")


def run_backup(
    source: Union[str, Path],
    destination: Union[str, Path],
    exclusion_file: Optional[Union[str, Path]] = None,
    config: Optional[Configuration] = None,
    sync_driver: Optional[SyncDriver] = None,
) -> BackupResult:
    """
    Run a complete backup of source into destination.

    Args:
        source: Directory to back up
        destination: Backup destination holding the marker file
        exclusion_file: Optional rsync exclude-from file
        config: Configuration; defaults are used when None
        sync_driver: Optional pre-built SyncDriver

    Returns:
        BackupResult with success status and exit code
    """
    controller = BackupRunController(
        source,
        destination,
        exclusion_file=exclusion_file,
        config=config,
        sync_driver=sync_driver,
    )
    return controller.run()
