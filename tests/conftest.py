"""Pytest configuration and fixtures for tmbackup tests."""

import logging
import os

import pytest
from hypothesis import settings, Phase

from tmbackup.catalog import SnapshotCatalog
from tmbackup.destination import BackupDestination, MARKER_FILENAME

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=10,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=100, deadline=10000)

# Use the fast profile by default
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture
def destination(tmp_path):
    """A destination directory carrying the backup marker."""
    root = tmp_path / "dest"
    root.mkdir()
    (root / MARKER_FILENAME).touch()
    return BackupDestination(root)


@pytest.fixture
def source_dir(tmp_path):
    """A small source tree to back up."""
    source = tmp_path / "source"
    source.mkdir()
    (source / "file.txt").write_text("content")
    (source / "sub").mkdir()
    (source / "sub" / "nested.txt").write_text("nested")
    return source


@pytest.fixture
def make_snapshot(destination):
    """Factory creating a snapshot directory (and optionally its log)."""
    catalog = SnapshotCatalog(destination)

    def _make(name: str, with_log: bool = False, content: str = "data"):
        snapshot = catalog.snapshot(name)
        snapshot.path.mkdir()
        (snapshot.path / "file.txt").write_text(content)
        if with_log:
            destination.ensure_log_dir()
            snapshot.log_path.write_text(f"log for {name}\n")
        return snapshot

    return _make


@pytest.fixture
def dead_pid():
    """PID of a process that has already exited and been reaped."""
    import subprocess
    process = subprocess.Popen(["true"])
    process.wait()
    return process.pid


@pytest.fixture
def reset_logging_handlers():
    """Drop handlers installed by setup_logging so tests stay independent."""
    yield
    logger = logging.getLogger("tmbackup")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def scripted_rsync(tmp_path):
    """
    Factory for an rsync stand-in driven by a list of (log text, exit code).

    Call N appends the Nth log text to ``--log-file``, the way rsync does,
    and exits with the Nth code; the last entry repeats.
    """
    def _make(*attempts):
        script_dir = tmp_path / "scripted-rsync"
        script_dir.mkdir()
        for number, (log_text, exit_code) in enumerate(attempts, start=1):
            (script_dir / f"{number}.log").write_text(f"{log_text}\n")
            (script_dir / f"{number}.exit").write_text(str(exit_code))
        script = script_dir / "rsync"
        script.write_text(
            "#!/bin/sh\n"
            f"DIR='{script_dir}'\n"
            f"LAST={len(attempts)}\n"
            "LOG=''\n"
            "while [ $# -gt 0 ]; do\n"
            '  if [ "$1" = "--log-file" ]; then shift; LOG="$1"; fi\n'
            "  shift\n"
            "done\n"
            'N=$(( $(cat "$DIR/calls" 2>/dev/null || echo 0) + 1 ))\n'
            'echo "$N" > "$DIR/calls"\n'
            'if [ "$N" -gt "$LAST" ]; then N=$LAST; fi\n'
            'cat "$DIR/$N.log" >> "$LOG"\n'
            'exit "$(cat "$DIR/$N.exit")"\n'
        )
        script.chmod(0o755)
        return script

    return _make
