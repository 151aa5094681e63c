"""Signal handling for interrupted backup runs.

SIGINT and SIGTERM stop the running rsync and exit. Nothing is cleaned up:
the in-progress lock and the partial snapshot stay where they are, and the
next run resumes from them.
"""

import logging
import signal
import subprocess
import sys
import threading
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _in_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


class SignalHandler:
    """
    Installs interruption handlers for the duration of one backup run.

    Usage:
        handler = SignalHandler()
        handler.register()
        try:
            handler.set_rsync_process(process)
            ...
        finally:
            handler.unregister()
    """

    def __init__(self, exit_code: int = 1):
        """
        Args:
            exit_code: Status the process exits with when interrupted
        """
        self.exit_code = exit_code
        self._rsync_process: Optional[subprocess.Popen] = None
        self._previous: Dict[int, Any] = {}
        self._registered = False

    @property
    def is_registered(self) -> bool:
        return self._registered

    def register(self) -> None:
        """
        Install handlers for SIGTERM and SIGINT.

        Python only allows this from the main thread. Elsewhere the handler
        is marked registered without touching the process signal table.
        """
        self._registered = True
        if not _in_main_thread():
            logger.debug("Not in main thread - signal handlers left unchanged")
            return

        for sig in HANDLED_SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handle_signal)
        logger.debug("Signal handlers registered")

    def unregister(self) -> None:
        """Put back whatever handlers were installed before register()."""
        if not self._registered:
            return

        if self._previous and _in_main_thread():
            for sig, previous in self._previous.items():
                signal.signal(sig, previous)

        self._previous.clear()
        self._rsync_process = None
        self._registered = False
        logger.debug("Signal handlers restored")

    def set_rsync_process(self, process: Optional[subprocess.Popen]) -> None:
        """Track the rsync child to stop on interruption, or None once it exits."""
        self._rsync_process = process

    def terminate_rsync(self) -> bool:
        """
        Stop the tracked rsync, escalating to SIGKILL after five seconds.

        Returns:
            True if a process was stopped
        """
        process, self._rsync_process = self._rsync_process, None
        if process is None:
            return False

        try:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        except OSError as e:
            logger.warning(f"Error terminating rsync process: {e}")
            return False

        logger.debug("rsync terminated")
        return True

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info(f"{signal.Signals(signum).name} caught.")
        self.terminate_rsync()
        sys.exit(self.exit_code)
