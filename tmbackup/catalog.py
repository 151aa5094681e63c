"""Snapshot catalog for tmbackup.

This module enumerates snapshot directories on a destination. Names are
matched by shape only; turning a name into a timestamp is deferred to the
caller so one malformed directory never aborts a scan.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from tmbackup.destination import BackupDestination
from tmbackup.timestamps import is_timestamp_name, to_epoch


@dataclass(frozen=True)
class Snapshot:
    """One timestamped backup directory."""
    name: str
    path: Path
    log_path: Path

    @property
    def timestamp(self) -> Optional[float]:
        """Seconds since epoch, or None if the name does not parse."""
        return to_epoch(self.name)

    @property
    def day(self) -> str:
        """YYYY-MM-DD portion of the name."""
        return self.name[:10]

    @property
    def month(self) -> str:
        """YYYY-MM portion of the name."""
        return self.name[:7]


class SnapshotCatalog:
    """
    Lists the snapshots stored on a backup destination.

    Ordering is strictly descending: lexicographic order of the fixed-width
    names equals chronological order at one-second resolution.
    """

    def __init__(self, destination: Union[BackupDestination, str, Path]):
        if not isinstance(destination, BackupDestination):
            destination = BackupDestination(destination)
        self.destination = destination

    def snapshot(self, name: str) -> Snapshot:
        """Build the Snapshot value for a name on this destination."""
        return Snapshot(
            name=name,
            path=self.destination.snapshot_path(name),
            log_path=self.destination.log_path(name),
        )

    def list_snapshots(self) -> List[Snapshot]:
        """
        Return all snapshots, newest first.

        Only top-level directories with a YYYY-MM-DD-HHMMSS shaped name are
        considered; symlinks such as ``latest`` are skipped.

        Raises:
            MarkerMissingError: If the destination is not a backup target
        """
        self.destination.check_marker()

        snapshots = []
        for entry in self.destination.root.iterdir():
            if entry.is_symlink() or not entry.is_dir():
                continue
            if not is_timestamp_name(entry.name):
                continue
            snapshots.append(self.snapshot(entry.name))

        snapshots.sort(key=lambda s: s.name, reverse=True)
        return snapshots

    def oldest(self, exclude: Optional[str] = None) -> Optional[Snapshot]:
        """Return the oldest snapshot, skipping the one named ``exclude``."""
        snapshots = [s for s in self.list_snapshots() if s.name != exclude]
        return snapshots[-1] if snapshots else None


def list_snapshots(destination: Union[BackupDestination, str, Path]) -> List[Snapshot]:
    """List snapshots on a destination, newest first."""
    return SnapshotCatalog(destination).list_snapshots()
