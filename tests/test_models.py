"""Tests for data models."""

import pytest
from pathlib import Path

from lhbackup.models import (
    BackupReport,
    ChangeEvent,
    ChangeKind,
    PendingWorkItem,
    PRIORITIES,
)


class TestChangeEvent:
    """Tests for ChangeEvent class."""

    def test_create(self):
        event = ChangeEvent(kind=ChangeKind.ADDED, path=Path("/data/a.txt"), timestamp=1.0)
        assert event.kind == ChangeKind.ADDED
        assert event.path == Path("/data/a.txt")
        assert event.timestamp == 1.0

    def test_relative_path_rejected(self):
        with pytest.raises(ValueError):
            ChangeEvent(kind=ChangeKind.ADDED, path=Path("a.txt"))

    def test_priority(self):
        assert ChangeEvent(ChangeKind.ADDED, Path("/a")).priority == 1
        assert ChangeEvent(ChangeKind.MODIFIED, Path("/a")).priority == 0
        assert ChangeEvent(ChangeKind.REMOVED, Path("/a")).priority == 0
        assert set(PRIORITIES) == set(ChangeKind)


class TestPendingWorkItem:
    """Tests for PendingWorkItem ordering."""

    def make(self, kind, sequence):
        event = ChangeEvent(kind, Path(f"/data/{sequence}"))
        return PendingWorkItem(priority=event.priority, sequence=sequence, event=event)

    def test_higher_priority_first(self):
        modified = self.make(ChangeKind.MODIFIED, 0)
        added = self.make(ChangeKind.ADDED, 1)
        assert added < modified

    def test_fifo_within_priority(self):
        first = self.make(ChangeKind.MODIFIED, 0)
        second = self.make(ChangeKind.REMOVED, 1)
        assert first < second
        assert sorted([second, first]) == [first, second]


class TestBackupReport:
    """Tests for BackupReport class."""

    def test_kept(self):
        report = BackupReport(persisted=3, skipped=4, failed=1)
        assert report.kept == 7
        assert report.failed_roots == []
        assert report.interrupted is False
