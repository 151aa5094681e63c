"""Snapshot removal for tmbackup.

Snapshots share unchanged files through hard links, so removal only ever
unlinks this snapshot's own directory entries. Content still referenced by
other snapshots stays on disk.
"""

from pathlib import Path
import logging
import os

from tmbackup.catalog import Snapshot
from tmbackup.destination import BackupDestination


logger = logging.getLogger(__name__)


class ExpireError(Exception):
    """Raised when a snapshot cannot be removed."""
    pass


class SnapshotExpirer:
    """Removes one snapshot and its log from a destination."""

    def __init__(self, destination: BackupDestination):
        self.destination = destination

    def expire(self, snapshot: Snapshot) -> None:
        """
        Remove a snapshot directory and its associated log.

        The backup marker is checked again first, so a destination that was
        swapped out or unmounted since the run started is never touched.

        Raises:
            MarkerMissingError: If the marker file is absent
            ExpireError: If the directory or log cannot be removed
        """
        self.destination.check_marker()

        logger.info(f"Expiring {snapshot.path}")
        try:
            if snapshot.path.exists():
                _empty_directory(snapshot.path)
                snapshot.path.rmdir()
        except OSError as e:
            raise ExpireError(f"Failed to expire {snapshot.path}: {e}")

        logger.info(f"Expiring {snapshot.log_path}")
        try:
            snapshot.log_path.unlink(missing_ok=True)
        except OSError as e:
            raise ExpireError(f"Failed to remove log {snapshot.log_path}: {e}")


def _empty_directory(path: Path) -> None:
    """Unlink everything below path without following symlinks."""
    with os.scandir(path) as entries:
        for entry in entries:
            child = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                # Read-only directories cannot have entries removed
                if not os.access(child, os.W_OK | os.X_OK):
                    child.chmod(0o700)
                _empty_directory(child)
                child.rmdir()
            else:
                child.unlink()
