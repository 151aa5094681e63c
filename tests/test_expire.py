"""Tests for snapshot expiry."""

import os

import pytest

from tmbackup.catalog import SnapshotCatalog
from tmbackup.destination import MARKER_FILENAME, MarkerMissingError
from tmbackup.expire import ExpireError, SnapshotExpirer


class TestExpire:

    def test_removes_directory_and_log(self, destination, make_snapshot):
        snapshot = make_snapshot("2025-03-01-000000", with_log=True)
        (snapshot.path / "deep" / "tree").mkdir(parents=True)
        (snapshot.path / "deep" / "tree" / "leaf.txt").write_text("leaf")

        SnapshotExpirer(destination).expire(snapshot)

        assert not snapshot.path.exists()
        assert not snapshot.log_path.exists()

    def test_missing_log_is_fine(self, destination, make_snapshot):
        snapshot = make_snapshot("2025-03-01-000000")
        SnapshotExpirer(destination).expire(snapshot)
        assert not snapshot.path.exists()

    def test_hard_linked_content_survives(self, destination, make_snapshot):
        """Content shared with another snapshot stays readable there."""
        older = make_snapshot("2025-03-01-000000", content="shared")
        newer = make_snapshot("2025-03-02-000000", content="ignored")
        (newer.path / "file.txt").unlink()
        os.link(older.path / "file.txt", newer.path / "file.txt")
        assert os.stat(newer.path / "file.txt").st_nlink == 2

        SnapshotExpirer(destination).expire(older)

        assert (newer.path / "file.txt").read_text() == "shared"
        assert os.stat(newer.path / "file.txt").st_nlink == 1

    def test_symlinks_are_not_followed(self, destination, make_snapshot, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        snapshot = make_snapshot("2025-03-01-000000")
        (snapshot.path / "link").symlink_to(outside)

        SnapshotExpirer(destination).expire(snapshot)

        assert (outside / "keep.txt").read_text() == "keep"

    def test_read_only_directories_are_removed(self, destination, make_snapshot):
        snapshot = make_snapshot("2025-03-01-000000")
        locked = snapshot.path / "locked"
        locked.mkdir()
        (locked / "inner.txt").write_text("x")
        locked.chmod(0o500)

        SnapshotExpirer(destination).expire(snapshot)

        assert not snapshot.path.exists()

    def test_other_snapshots_untouched(self, destination, make_snapshot):
        keep = make_snapshot("2025-03-02-000000")
        drop = make_snapshot("2025-03-01-000000")

        SnapshotExpirer(destination).expire(drop)

        names = [s.name for s in SnapshotCatalog(destination).list_snapshots()]
        assert names == [keep.name]

    def test_marker_rechecked(self, destination, make_snapshot):
        snapshot = make_snapshot("2025-03-01-000000")
        (destination.root / MARKER_FILENAME).unlink()

        with pytest.raises(MarkerMissingError):
            SnapshotExpirer(destination).expire(snapshot)
        assert snapshot.path.is_dir()

    def test_unremovable_log_raises(self, destination, make_snapshot):
        snapshot = make_snapshot("2025-03-01-000000")
        destination.ensure_log_dir()
        snapshot.log_path.mkdir()
        (snapshot.log_path / "child").write_text("x")

        with pytest.raises(ExpireError):
            SnapshotExpirer(destination).expire(snapshot)
