"""Watch-and-persist daemon for a single tracked root."""

import logging
import os
import stat
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, Optional, Set

from watchdog.observers import Observer

from .archive import archive_entry
from .exceptions import (
    ArchiveCancelledError,
    ArchiveError,
    BackupError,
    RootError,
    RootNotFoundError,
)
from .fs_watcher import ChangeEventHandler, scan_tree
from .models import ChangeEvent, ChangeKind, DaemonState
from .objects import ObjectStore, object_id
from .patterns import PatternMatcher
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 42 * 1024 * 1024

ObjectCallback = Callable[[str, Path], None]
FailureCallback = Callable[[str, Path, Exception], None]


class PersistDaemon:
    """
    Mirrors one tracked root into the object store.

    Watches the root for changes, walks it once on start, and feeds every
    file through a priority work queue that archives stale files. Removed
    files have their objects deleted through a second queue.

    Lifecycle: STARTING -> SCANNING -> DRAINING -> QUIESCENT, then keeps
    watching until ``stop`` is called.
    """

    def __init__(
        self,
        root: Path,
        store: ObjectStore,
        ignore_patterns: Iterable[str] = (),
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        on_persisted: Optional[ObjectCallback] = None,
        on_skipped: Optional[ObjectCallback] = None,
        on_failed: Optional[FailureCallback] = None,
        persist_concurrency: int = 10,
        unlink_concurrency: int = 10,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        """
        Initialize the daemon.

        Args:
            root: Absolute path of the tracked directory
            store: Object store shared by all daemons of a session
            ignore_patterns: Scoped patterns excluding paths from the mirror
            max_file_size: Largest file archived, in bytes
            on_persisted: Called with (object name, source path) after a write
            on_skipped: Called when a file's object is already up to date
            on_failed: Called with the error when a file could not be archived
            persist_concurrency: Worker threads archiving files
            unlink_concurrency: Worker threads deleting objects
            observer_factory: Creates the watchdog observer
        """
        self.root = Path(root).absolute()
        self.store = store
        self.matcher = PatternMatcher(ignore_patterns)
        self.max_file_size = max_file_size
        self.on_persisted = on_persisted
        self.on_skipped = on_skipped
        self.on_failed = on_failed
        self._observer_factory = observer_factory

        self._persist_queue = WorkQueue(self._persist, persist_concurrency, name=f"persist:{self.root.name}")
        self._unlink_queue = WorkQueue(self._unlink, unlink_concurrency, name=f"unlink:{self.root.name}")

        self._state = DaemonState.STARTING
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._settled = threading.Event()
        self._failure: Optional[BackupError] = None
        self._observer: Optional[Observer] = None
        self._scan_thread: Optional[threading.Thread] = None

        self._touched: Set[str] = set()
        self._touched_lock = threading.Lock()
        self._in_flight: Set[str] = set()
        self._in_flight_cond = threading.Condition()

    @property
    def state(self) -> DaemonState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: DaemonState) -> None:
        with self._state_lock:
            if self._state is DaemonState.STOPPED:
                return
            self._state = state
        logger.debug(f"{self.root}: {state.value}")

    @property
    def touched(self) -> FrozenSet[str]:
        """Object names persisted or confirmed up to date since start."""
        with self._touched_lock:
            return frozenset(self._touched)

    def start(self) -> None:
        """
        Start watching and scanning the root in the background.

        Raises:
            RootNotFoundError: If the root is missing or not a directory
        """
        if not self.root.is_dir():
            raise RootNotFoundError(f"Tracked root is not a directory: {self.root}")

        self._persist_queue.start()
        self._unlink_queue.start()
        self._start_observer()

        self._set_state(DaemonState.SCANNING)
        self._scan_thread = threading.Thread(
            target=self._scan,
            name=f"scan:{self.root.name}",
            daemon=True,
        )
        self._scan_thread.start()

    def _start_observer(self) -> None:
        handler = ChangeEventHandler(self._dispatch, self.root, self.matcher)
        observer = self._observer_factory()
        try:
            observer.schedule(handler, str(self.root), recursive=True)
            observer.start()
        except OSError as e:
            logger.error(f"Cannot watch {self.root}, live changes will be missed: {e}")
            return
        self._observer = observer

    def _scan(self) -> None:
        """Walk the root once, then wait for the queues to drain."""
        count = 0
        try:
            for path in scan_tree(self.root, self.matcher, self._stop_event):
                self._persist_queue.push(ChangeEvent(ChangeKind.ADDED, path))
                count += 1

            logger.debug(f"Complete scan of {self.root}, {count} file(s) queued")
            self._set_state(DaemonState.DRAINING)
            if self._persist_queue.join() and self._unlink_queue.join():
                self._set_state(DaemonState.QUIESCENT)
        except RootError as e:
            logger.error(f"Scan of {self.root} failed: {e}")
            self._failure = e
        except Exception as e:
            logger.exception(f"Scan of {self.root} failed")
            self._failure = RootError(f"Scan of {self.root} failed: {e}")
        finally:
            self._settled.set()

    def _dispatch(self, event: ChangeEvent) -> None:
        """Route a change notification to its queue."""
        if event.kind is ChangeKind.REMOVED:
            self._unlink_queue.push(event)
        else:
            self._persist_queue.push(event)

    @contextmanager
    def _claim(self, name: str):
        """Serialize work on one object name across worker threads."""
        with self._in_flight_cond:
            self._in_flight_cond.wait_for(lambda: name not in self._in_flight)
            self._in_flight.add(name)
        try:
            yield
        finally:
            with self._in_flight_cond:
                self._in_flight.discard(name)
                self._in_flight_cond.notify_all()

    def _mark_touched(self, name: str) -> None:
        with self._touched_lock:
            self._touched.add(name)

    def _persist(self, event: ChangeEvent) -> None:
        path = event.path
        name = object_id(path)

        with self._claim(name):
            started = time.perf_counter()
            try:
                source_stat = os.stat(path)
            except FileNotFoundError:
                logger.debug(f"{path} vanished before it could be archived")
                return
            except OSError as e:
                self._report_failure(name, path, e)
                return
            if not stat.S_ISREG(source_stat.st_mode):
                return

            if self.store.is_up_to_date(name, source_stat):
                self._mark_touched(name)
                if self.on_skipped:
                    self.on_skipped(name, path)
                logger.debug(f"in {(time.perf_counter() - started) * 1000:.3f}ms skip {name}")
                return

            try:
                archive_entry(
                    path,
                    self.store.path_for(path),
                    self.matcher,
                    self.max_file_size,
                    cancel_event=self._stop_event,
                )
                # The object's mtime is the fingerprint for the next staleness check.
                self.store.stamp(name, source_stat)
            except ArchiveCancelledError:
                logger.debug(f"Archiving {path} cancelled")
                return
            except (ArchiveError, OSError) as e:
                self._report_failure(name, path, e)
                return

            self._mark_touched(name)
            if self.on_persisted:
                self.on_persisted(name, path)
            logger.debug(
                f"in {(time.perf_counter() - started) * 1000:.3f}ms gzipped {name} {path.name}"
            )

    def _unlink(self, event: ChangeEvent) -> None:
        path = event.path
        name = object_id(path)

        with self._claim(name):
            # A quick delete-then-recreate (editor save) leaves the file in place.
            if os.path.lexists(path):
                logger.debug(f"{path} exists again, keeping {name}")
                return
            with self._touched_lock:
                self._touched.discard(name)
            if self.store.remove(name):
                logger.debug(f"Removed {name} for deleted {path}")

    def _report_failure(self, name: str, path: Path, error: Exception) -> None:
        logger.warning(f"Failed to persist {path}: {error}")
        if self.on_failed:
            self.on_failed(name, path, error)

    def wait_quiescent(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the initial scan is done and both queues have drained.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Returns:
            True once quiescent, False on timeout or if stopped first

        Raises:
            RootError: If the root could not be scanned
        """
        if not self._settled.wait(timeout):
            return False
        if self._failure is not None:
            raise self._failure
        return self.state is DaemonState.QUIESCENT

    def stop(self, timeout: float = 5.0) -> None:
        """Stop watching, cancel in-flight archives and shut down the queues."""
        self._stop_event.set()
        self._set_state(DaemonState.STOPPED)

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=timeout)
            self._observer = None

        self._persist_queue.stop(timeout)
        self._unlink_queue.stop(timeout)

        if self._scan_thread is not None and self._scan_thread is not threading.current_thread():
            self._scan_thread.join(timeout=timeout)
        self._settled.set()

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
