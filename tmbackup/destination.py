"""Backup destination layout and validation for tmbackup.

This module provides the BackupDestination class that knows where every
piece of state lives on the destination volume:

    <dest>/backup.marker       sentinel, required, never written by tmbackup
    <dest>/backup.inprogress   lock file holding the owning PID
    <dest>/latest              symlink to the newest successful snapshot
    <dest>/latest.log          symlink to that snapshot's log
    <dest>/log/<name>.log      one log per run
    <dest>/<name>/             one directory per snapshot
"""

import logging
import os
from pathlib import Path
from typing import Union


logger = logging.getLogger(__name__)


MARKER_FILENAME = "backup.marker"
INPROGRESS_FILENAME = "backup.inprogress"
LOG_DIRNAME = "log"
LATEST_LINK = "latest"
LATEST_LOG_LINK = "latest.log"
LOG_SUFFIX = ".log"


class DestinationError(Exception):
    """Raised when the backup destination is unusable."""
    pass


class MarkerMissingError(DestinationError):
    """Raised when the destination lacks the backup marker file."""

    def __init__(self, destination: Path, marker_path: Path):
        super().__init__(
            "Safety check failed - the destination does not appear to be a "
            "backup folder or drive (marker file not found)."
        )
        self.destination = destination
        self.marker_path = marker_path

    @property
    def remediation(self) -> str:
        """Shell command that turns the destination into a backup target."""
        return f'mkdir -p -- "{self.destination}" ; touch "{self.marker_path}"'


class BackupDestination:
    """
    Paths and housekeeping for one backup destination.

    The destination is a plain directory; nothing here decides which
    snapshots exist or survive, that is left to the catalog and the
    retention evaluator.
    """

    def __init__(self, root: Union[str, Path]):
        """
        Initialize the destination.

        Args:
            root: Destination directory. A trailing slash is ignored.
        """
        self.root = Path(root)

    @property
    def marker_path(self) -> Path:
        return self.root / MARKER_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.root / INPROGRESS_FILENAME

    @property
    def log_dir(self) -> Path:
        return self.root / LOG_DIRNAME

    def snapshot_path(self, name: str) -> Path:
        """Return the directory path for a snapshot name."""
        return self.root / name

    def log_path(self, name: str) -> Path:
        """Return the per-run log path for a snapshot name."""
        return self.log_dir / f"{name}{LOG_SUFFIX}"

    def has_marker(self) -> bool:
        return self.marker_path.is_file()

    def check_marker(self) -> None:
        """
        Verify the destination is a genuine backup target.

        Raises:
            MarkerMissingError: If the marker file is absent
        """
        if not self.has_marker():
            raise MarkerMissingError(self.root, self.marker_path)

    def ensure_log_dir(self) -> Path:
        """
        Create the log directory if needed.

        Raises:
            DestinationError: If the directory cannot be created
        """
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationError(
                f"creation of directory {self.log_dir} failed: {e}"
            )
        return self.log_dir

    def update_latest_links(self, name: str) -> None:
        """
        Point latest and latest.log at the given snapshot.

        Links are relative so the destination can be mounted elsewhere.
        """
        self._replace_symlink(self.root / LATEST_LINK, Path(name))
        self._replace_symlink(
            self.root / LATEST_LOG_LINK,
            Path(LOG_DIRNAME) / f"{name}{LOG_SUFFIX}",
        )

    def _replace_symlink(self, link: Path, target: Path) -> None:
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(target)


def is_writable(path: Path) -> bool:
    """
    Check if path is writable.

    Uses os.access, then attempts to create a temporary file as a more
    reliable check.
    """
    if isinstance(path, str):
        path = Path(path)

    if not os.access(path, os.W_OK):
        return False

    test_file = path / ".tmbackup_write_test"
    try:
        test_file.touch()
        test_file.unlink()
        return True
    except OSError:
        return False


def get_available_space(path: Path) -> int:
    """
    Return available space in bytes at path.

    Raises:
        DestinationError: If unable to determine available space
    """
    if isinstance(path, str):
        path = Path(path)

    try:
        stat_result = os.statvfs(path)
        # f_bavail = free blocks available to non-superuser
        return stat_result.f_bavail * stat_result.f_frsize
    except OSError as e:
        raise DestinationError(
            f"Unable to determine available space at {path}: {e}"
        )
