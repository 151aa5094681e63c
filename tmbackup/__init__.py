"""tmbackup - Time-Machine style incremental backups with rsync."""

__version__ = "0.1.0"

from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    format_config,
    create_default_config,
)
from tmbackup.timestamps import format_timestamp, parse_timestamp
from tmbackup.destination import (
    BackupDestination,
    DestinationError,
    MarkerMissingError,
)
from tmbackup.catalog import Snapshot, SnapshotCatalog, list_snapshots
from tmbackup.retention import RetentionEvaluator, RetentionResult
from tmbackup.expire import ExpireError, SnapshotExpirer
from tmbackup.lock import InProgressLock, LockError
from tmbackup.resume import ResumeManager, ResumeResult
from tmbackup.sync import SyncDriver, SyncOutcome, SyncResult, classify_log
from tmbackup.logger import LoggingError, setup_logging, get_logger
from tmbackup.backup import (
    BackupError,
    BackupResult,
    BackupRunController,
    RunContext,
    RunState,
    run_backup,
    EXIT_SUCCESS,
    EXIT_FAILURE,
)

__all__ = [
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "format_config",
    "create_default_config",
    "format_timestamp",
    "parse_timestamp",
    "BackupDestination",
    "DestinationError",
    "MarkerMissingError",
    "Snapshot",
    "SnapshotCatalog",
    "list_snapshots",
    "RetentionEvaluator",
    "RetentionResult",
    "ExpireError",
    "SnapshotExpirer",
    "InProgressLock",
    "LockError",
    "ResumeManager",
    "ResumeResult",
    "SyncDriver",
    "SyncOutcome",
    "SyncResult",
    "classify_log",
    "LoggingError",
    "setup_logging",
    "get_logger",
    "BackupError",
    "BackupResult",
    "BackupRunController",
    "RunContext",
    "RunState",
    "run_backup",
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
]
