"""Crash-resume handling for tmbackup.

When a previous run was interrupted, its partially transferred snapshot is
renamed to the new run's name so rsync can continue from where it stopped.
The snapshot before it becomes the incremental base.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from tmbackup.catalog import Snapshot, SnapshotCatalog
from tmbackup.destination import BackupDestination
from tmbackup.lock import InProgressLock, LockError


logger = logging.getLogger(__name__)


@dataclass
class ResumeResult:
    """Outcome of the start-of-run resume check."""
    resumed: bool
    resumed_from: Optional[str]
    incremental_base: Optional[Snapshot]


class ResumeManager:
    """Decides whether a run starts fresh or resumes an interrupted one."""

    def __init__(
        self,
        destination: BackupDestination,
        catalog: SnapshotCatalog,
        lock: InProgressLock,
    ):
        self.destination = destination
        self.catalog = catalog
        self.lock = lock

    def prepare(self, new_name: str) -> ResumeResult:
        """
        Inspect the lock and set up the resume target if needed.

        Args:
            new_name: Snapshot name for the run being started

        Returns:
            ResumeResult with the incremental base to use

        Raises:
            LockError: If the lock is owned by a running process. Nothing
                on the destination is modified in that case.
        """
        snapshots = self.catalog.list_snapshots()

        if not self.lock.exists():
            return ResumeResult(
                resumed=False,
                resumed_from=None,
                incremental_base=snapshots[0] if snapshots else None,
            )

        if self.lock.owner_alive():
            raise LockError(
                f"Previous backup task is still active (pid {self.lock.read_pid()}) - aborting."
            )

        if not snapshots:
            logger.info(
                f"{self.lock.path} already exists but there is no snapshot to resume."
            )
            return ResumeResult(resumed=False, resumed_from=None, incremental_base=None)

        logger.info(
            f"{self.lock.path} already exists - the previous backup failed or "
            f"was interrupted. Backup will resume from there."
        )

        previous = snapshots[0]
        target = self.catalog.snapshot(new_name)
        if previous.name != new_name:
            # The interrupted run keeps its own log; the new run starts a fresh one
            previous.path.rename(target.path)
            logger.debug(f"Moved {previous.path} to {target.path}")

        # Claim ownership before anything else can look at the lock
        self.lock.claim()

        return ResumeResult(
            resumed=True,
            resumed_from=previous.name,
            incremental_base=snapshots[1] if len(snapshots) > 1 else None,
        )
