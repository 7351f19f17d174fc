"""Tests for persist daemon module."""

import os
import tarfile
import threading
import time
import pytest
from pathlib import Path

from lhbackup.daemon import PersistDaemon
from lhbackup import daemon as daemon_module
from lhbackup.exceptions import RootError, RootNotFoundError
from lhbackup.models import ChangeEvent, ChangeKind, DaemonState
from lhbackup.objects import ObjectStore, object_id
from lhbackup.patterns import scope_pattern


def wait_for(condition, timeout=10.0, interval=0.05):
    """Poll ``condition`` until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture
def root(tmp_path):
    root = tmp_path / "root"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("A")
    (root / "sub" / "b.txt").write_text("B")
    return root


@pytest.fixture
def store(tmp_path):
    store = ObjectStore(tmp_path / "objects")
    store.ensure()
    return store


class Recorder:
    """Collects daemon callbacks from worker threads."""

    def __init__(self):
        self.persisted = []
        self.skipped = []
        self.failed = []
        self._lock = threading.Lock()

    def on_persisted(self, name, path):
        with self._lock:
            self.persisted.append(path)

    def on_skipped(self, name, path):
        with self._lock:
            self.skipped.append(path)

    def on_failed(self, name, path, error):
        with self._lock:
            self.failed.append((path, error))

    def callbacks(self):
        return {
            "on_persisted": self.on_persisted,
            "on_skipped": self.on_skipped,
            "on_failed": self.on_failed,
        }


class TestPersistDaemon:
    """Tests for PersistDaemon class."""

    def test_initial_scan_persists_files(self, root, store):
        recorder = Recorder()
        with PersistDaemon(root, store, **recorder.callbacks()) as daemon:
            assert daemon.wait_quiescent(timeout=10) is True
            assert daemon.state == DaemonState.QUIESCENT
            expected = {object_id(root / "a.txt"), object_id(root / "sub" / "b.txt")}
            assert daemon.touched == expected

        assert store.list_objects() == sorted(expected)
        assert sorted(recorder.persisted) == sorted([root / "a.txt", root / "sub" / "b.txt"])
        assert recorder.failed == []

    def test_object_mtime_matches_source(self, root, store):
        os.utime(root / "a.txt", (1_600_000_000, 1_600_000_000))
        with PersistDaemon(root, store) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        obj = store.path_for(root / "a.txt")
        assert obj.stat().st_mtime_ns == (root / "a.txt").stat().st_mtime_ns
        with tarfile.open(obj, "r:gz") as tar:
            assert tar.getnames() == [str(root / "a.txt").lstrip("/")]

    def test_second_run_skips_up_to_date_files(self, root, store):
        with PersistDaemon(root, store) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        recorder = Recorder()
        with PersistDaemon(root, store, **recorder.callbacks()) as daemon:
            assert daemon.wait_quiescent(timeout=10)
            assert len(daemon.touched) == 2

        assert recorder.persisted == []
        assert len(recorder.skipped) == 2

    def test_changed_file_is_rewritten(self, root, store):
        with PersistDaemon(root, store) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        (root / "a.txt").write_text("A2")
        os.utime(root / "a.txt", (1_700_000_000, 1_700_000_000))

        recorder = Recorder()
        with PersistDaemon(root, store, **recorder.callbacks()) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        assert recorder.persisted == [root / "a.txt"]
        assert recorder.skipped == [root / "sub" / "b.txt"]

    def test_ignored_files_have_no_object(self, root, store):
        (root / "debug.log").write_text("noise")
        with PersistDaemon(root, store, ignore_patterns=[scope_pattern("*.log")]) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        assert object_id(root / "debug.log") not in store.list_objects()
        assert len(store.list_objects()) == 2

    def test_oversize_file_gives_empty_object(self, root, store):
        (root / "big.bin").write_bytes(b"0" * 64)
        with PersistDaemon(root, store, max_file_size=16) as daemon:
            assert daemon.wait_quiescent(timeout=10)

        with tarfile.open(store.path_for(root / "big.bin"), "r:gz") as tar:
            assert tar.getnames() == []

    def test_missing_root(self, tmp_path, store):
        daemon = PersistDaemon(tmp_path / "missing", store)
        with pytest.raises(RootNotFoundError):
            daemon.start()

    def test_relative_root_is_made_absolute(self, root, store, monkeypatch):
        monkeypatch.chdir(root.parent)
        with PersistDaemon(Path(root.name), store) as daemon:
            assert daemon.root.is_absolute()
            assert daemon.root.samefile(root)
            assert daemon.wait_quiescent(timeout=10) is True

        assert object_id(daemon.root / "a.txt") in store

    def test_unexpected_scan_error_is_surfaced(self, root, store, monkeypatch):
        def broken_scan(*args, **kwargs):
            yield root / "a.txt"
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(daemon_module, "scan_tree", broken_scan)
        with PersistDaemon(root, store) as daemon:
            with pytest.raises(RootError, match="disk on fire"):
                daemon.wait_quiescent(timeout=10)
            assert daemon.state == DaemonState.SCANNING

    def test_failed_writes_are_reported(self, root, tmp_path):
        store = ObjectStore(tmp_path / "not-created")
        recorder = Recorder()
        with PersistDaemon(root, store, **recorder.callbacks()) as daemon:
            assert daemon.wait_quiescent(timeout=10) is True
            assert daemon.touched == frozenset()

        assert len(recorder.failed) == 2
        assert recorder.persisted == []

    def test_unlink_keeps_object_when_file_exists(self, root, store):
        daemon = PersistDaemon(root, store)
        name = object_id(root / "a.txt")
        store.path_for(root / "a.txt").write_bytes(b"")

        daemon._unlink(ChangeEvent(ChangeKind.REMOVED, root / "a.txt"))

        assert name in store

    def test_unlink_removes_object(self, root, store):
        daemon = PersistDaemon(root, store)
        gone = root / "gone.txt"
        store.path_for(gone).write_bytes(b"")

        daemon._unlink(ChangeEvent(ChangeKind.REMOVED, gone))
        daemon._unlink(ChangeEvent(ChangeKind.REMOVED, gone))

        assert object_id(gone) not in store

    def test_persist_vanished_file(self, root, store):
        recorder = Recorder()
        daemon = PersistDaemon(root, store, **recorder.callbacks())

        daemon._persist(ChangeEvent(ChangeKind.ADDED, root / "vanished.txt"))

        assert recorder.persisted == []
        assert recorder.failed == []
        assert store.list_objects() == []

    def test_stop(self, root, store):
        daemon = PersistDaemon(root, store)
        daemon.start()
        assert daemon.wait_quiescent(timeout=10)
        assert daemon.is_watching

        daemon.stop()

        assert daemon.state == DaemonState.STOPPED
        assert daemon.is_watching is False
        assert daemon.wait_quiescent(timeout=1) is False

    def test_live_changes(self, root, store):
        with PersistDaemon(root, store) as daemon:
            assert daemon.wait_quiescent(timeout=10)

            new_file = root / "sub" / "new.txt"
            new_file.write_text("fresh")
            assert wait_for(lambda: store.is_up_to_date(object_id(new_file), new_file.stat()))

            (root / "a.txt").write_text("changed")
            os.utime(root / "a.txt", (1_700_000_000, 1_700_000_000))
            assert wait_for(
                lambda: store.is_up_to_date(object_id(root / "a.txt"), (root / "a.txt").stat())
            )

            (root / "sub" / "b.txt").unlink()
            assert wait_for(lambda: object_id(root / "sub" / "b.txt") not in store)
            assert object_id(root / "sub" / "b.txt") not in daemon.touched
