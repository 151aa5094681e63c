"""In-progress lock for tmbackup.

This module provides the InProgressLock class: a file at the destination
root holding the PID of the run that currently owns the destination.

The lock is advisory. Liveness is checked by signalling the recorded PID,
so a PID reused by an unrelated process after a crash looks like a live
owner, and two runs creating the file in the same instant are not detected.
Callers needing stronger guarantees should coordinate externally.
"""

import logging
import os
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when another live run owns the destination."""
    pass


def is_process_running(pid: int) -> bool:
    """Check if a process with given PID is running."""
    if pid <= 0:
        return False
    try:
        # Signal 0 checks for existence without delivering anything
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to someone else
        return True


class InProgressLock:
    """
    Lock file recording which process owns a backup destination.

    A present lock with a live owner means another run is active. A present
    lock with a dead owner means the previous run crashed or was interrupted.
    """

    def __init__(self, path: Path):
        """
        Initialize the lock.

        Args:
            path: Path to the lock file (``<dest>/backup.inprogress``)
        """
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read_pid(self) -> Optional[int]:
        """Return the recorded PID, or None if missing or unreadable."""
        try:
            content = self.path.read_text().strip()
            if content:
                return int(content)
        except (OSError, ValueError):
            pass
        return None

    def owner_alive(self) -> bool:
        """Return True if the lock exists and its recorded PID is running."""
        if not self.exists():
            return False
        pid = self.read_pid()
        if pid is None:
            return False
        return is_process_running(pid)

    def claim(self) -> None:
        """Write the current PID into the lock file."""
        self.path.write_text(str(os.getpid()))
        logger.debug(f"Lock {self.path} claimed by {os.getpid()}")

    def clear(self) -> None:
        """Remove the lock file."""
        self.path.unlink(missing_ok=True)
        logger.debug(f"Lock {self.path} cleared")
