"""Backup and restore sessions over all tracked roots."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from .archive import extract_object
from .config import OBJECTS_DIR_NAME, BackupConfig
from .daemon import ObjectCallback, PersistDaemon
from .exceptions import ArchiveError, RootError
from .ignore import resolve_ignore_patterns
from .models import BackupReport, DaemonState, RestoreReport
from .objects import ObjectStore
from .patterns import exact_pattern

logger = logging.getLogger(__name__)

WAIT_INTERVAL = 0.5


class BackupSession:
    """
    One full run of "scan every tracked root to quiescence".

    Starts a PersistDaemon per root, waits for all of them, then deletes
    every stored object that was neither written nor confirmed up to date
    during the run. With ``keep_watching`` the daemons stay alive for live
    changes until ``stop`` is called.
    """

    def __init__(
        self,
        config: BackupConfig,
        on_persisted: Optional[ObjectCallback] = None,
        on_skipped: Optional[ObjectCallback] = None,
        observer_factory: Optional[Callable] = None,
    ):
        self.config = config
        self.on_persisted = on_persisted
        self.on_skipped = on_skipped
        self.store = ObjectStore(config.objects_dir)
        self._observer_factory = observer_factory
        self._daemons: List[PersistDaemon] = []
        self._report = BackupReport()
        self._lock = threading.Lock()
        self._interrupted = False

    @property
    def daemons(self) -> List[PersistDaemon]:
        return list(self._daemons)

    def _persisted(self, name: str, path: Path) -> None:
        with self._lock:
            self._report.persisted += 1
        if self.on_persisted:
            self.on_persisted(name, path)

    def _skipped(self, name: str, path: Path) -> None:
        with self._lock:
            self._report.skipped += 1
        if self.on_skipped:
            self.on_skipped(name, path)

    def _failed(self, name: str, path: Path, error: Exception) -> None:
        with self._lock:
            self._report.failed += 1

    def _start_root(self, root: Path) -> PersistDaemon:
        patterns = resolve_ignore_patterns(root, self.config.ignore_from, self.config.ignore_patterns)
        # Never mirror the backup itself when it lives inside a tracked root.
        patterns = patterns | {exact_pattern(self.config.backup_dir.absolute())}

        kwargs = {}
        if self._observer_factory is not None:
            kwargs["observer_factory"] = self._observer_factory
        daemon = PersistDaemon(
            root,
            self.store,
            ignore_patterns=patterns,
            max_file_size=self.config.max_file_size,
            on_persisted=self._persisted,
            on_skipped=self._skipped,
            on_failed=self._failed,
            persist_concurrency=self.config.persist_concurrency,
            unlink_concurrency=self.config.unlink_concurrency,
            **kwargs,
        )
        daemon.start()
        return daemon

    def _wait_quiescent(
        self,
        daemon: PersistDaemon,
        timeout: Optional[float],
        should_stop: Optional[Callable[[], bool]],
    ) -> bool:
        """Wait for one daemon in short slices so a stop request is noticed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if should_stop is not None and should_stop():
                self._interrupted = True
                return False
            remaining = WAIT_INTERVAL if deadline is None else deadline - time.monotonic()
            if remaining <= 0:
                return False
            if daemon.wait_quiescent(min(remaining, WAIT_INTERVAL)):
                return True
            if daemon.state is DaemonState.STOPPED:
                return False

    def run(
        self,
        keep_watching: bool = False,
        timeout: Optional[float] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> BackupReport:
        """
        Back up every tracked root and remove orphaned objects.

        Orphans are only removed when every root reached quiescence; a
        root that failed or timed out would otherwise have all of its
        objects mistaken for orphans.

        Args:
            keep_watching: Leave the daemons running after the scan
            timeout: Seconds to wait for each root, or None to wait forever
            should_stop: Polled while waiting; returning True stops every
                daemon and ends the run early

        Returns:
            Counts for the run

        Raises:
            ObjectStoreError: If the object store cannot be created or listed
        """
        self.store.ensure()
        self.store.discard_temporary()

        for root in self.config.track_paths:
            try:
                self._daemons.append(self._start_root(root))
            except RootError as e:
                logger.error(f"Skipping tracked root {root}: {e}")
                self._report.failed_roots.append(root)

        quiescent: List[PersistDaemon] = []
        for daemon in self._daemons:
            try:
                if self._wait_quiescent(daemon, timeout, should_stop):
                    logger.info(f"Complete scan of {daemon.root}")
                    quiescent.append(daemon)
                elif self._interrupted:
                    break
                else:
                    logger.error(f"Tracked root {daemon.root} did not finish scanning")
                    self._report.failed_roots.append(daemon.root)
            except RootError as e:
                logger.error(f"Tracked root {daemon.root} failed: {e}")
                self._report.failed_roots.append(daemon.root)

        if self._interrupted:
            logger.warning("Stop requested before the scan finished, not removing outdated objects")
            self._report.interrupted = True
            self.stop()
            return self._report

        if self._report.failed_roots:
            logger.warning(
                f"{len(self._report.failed_roots)} tracked root(s) failed, "
                f"not removing outdated objects this run"
            )
        else:
            self._report.orphans_removed = self._remove_orphans(quiescent)

        if not keep_watching:
            self.stop()
        else:
            for daemon in self._daemons:
                if daemon not in quiescent:
                    daemon.stop()

        logger.info(
            f"Indexation is complete, kept {self._report.kept} object(s), "
            f"removed {self._report.orphans_removed} outdated, "
            f"{self._report.failed} failed"
        )
        return self._report

    def _remove_orphans(self, daemons: List[PersistDaemon]) -> int:
        touched = set()
        for daemon in daemons:
            touched |= daemon.touched

        orphans = [name for name in self.store.list_objects() if name not in touched]
        removed = 0
        for name in orphans:
            try:
                if self.store.remove(name):
                    removed += 1
            except OSError as e:
                logger.warning(f"Could not remove outdated object {name}: {e}")
        logger.debug(f"Removed {removed} outdated object(s)")
        return removed

    def stop(self) -> None:
        """Stop all daemons."""
        for daemon in self._daemons:
            daemon.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class RestoreSession:
    """Unpacks every stored object of a backup into an output directory."""

    def __init__(
        self,
        backup_dir: Path,
        output_dir: Path,
        on_extracted: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize the restore session.

        Args:
            backup_dir: Directory containing the ``objects`` store
            output_dir: Directory to unpack into
            on_extracted: Called with the object name after each success
        """
        self.backup_dir = Path(backup_dir)
        self.output_dir = Path(output_dir)
        self.on_extracted = on_extracted
        self.store = ObjectStore(self.backup_dir / OBJECTS_DIR_NAME)

    def run(self) -> RestoreReport:
        """
        Extract all objects, continuing past individual failures.

        Raises:
            ObjectStoreError: If the object store cannot be listed
        """
        report = RestoreReport()
        names = self.store.list_objects()
        self.output_dir.mkdir(parents=True, exist_ok=True)

        for name in names:
            try:
                extract_object(self.store.root / name, self.output_dir)
            except ArchiveError as e:
                logger.warning(f"Could not extract {name}: {e}")
                report.failed += 1
                continue
            report.extracted += 1
            logger.debug(f"Extract object {name}")
            if self.on_extracted:
                self.on_extracted(name)

        logger.info(f"Restored {report.extracted} object(s) into {self.output_dir}, {report.failed} failed")
        return report
