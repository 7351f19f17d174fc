"""Filesystem change notification using the watchdog library."""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, Optional

from watchdog.events import FileSystemEventHandler

from .exceptions import RootNotFoundError
from .models import ChangeEvent, ChangeKind
from .patterns import PatternMatcher

logger = logging.getLogger(__name__)


def scan_tree(
    root: Path,
    matcher: Optional[PatternMatcher] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[Path]:
    """
    Walk ``root`` and yield every regular file that is not excluded.
    
    Excluded directories are pruned. Symlinked files are yielded,
    symlinked directories are not descended into.
    
    Raises:
        RootNotFoundError: If ``root`` itself cannot be listed
    """
    root = Path(root)
    matcher = matcher or PatternMatcher()
    stack = [root]

    while stack:
        if cancel_event is not None and cancel_event.is_set():
            return
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda entry: entry.name, reverse=True)
        except OSError as e:
            if current == root:
                raise RootNotFoundError(f"Cannot scan {root}: {e}") from e
            logger.warning(f"Skipping unreadable directory {current}: {e}")
            continue

        for entry in entries:
            path = Path(entry.path)
            if matcher.matches(path):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(path)
                elif entry.is_file():
                    yield path
            except OSError as e:
                logger.debug(f"Skipping {path}: {e}")


class ChangeEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog events to ChangeEvents for one root."""

    def __init__(
        self,
        callback: Callable[[ChangeEvent], None],
        root: Path,
        matcher: Optional[PatternMatcher] = None,
    ):
        super().__init__()
        self.callback = callback
        self.root = root
        self.matcher = matcher or PatternMatcher()

    def _should_ignore(self, path: str) -> bool:
        """Check if the path should be ignored."""
        return self.matcher.matches(path)

    def _emit(self, kind: ChangeKind, path) -> None:
        """Emit a ChangeEvent to the callback."""
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if self._should_ignore(path):
            return
        self.callback(ChangeEvent(kind=kind, path=Path(path), timestamp=time.time()))

    def _emit_directory(self, path) -> None:
        # Some backends report a moved-in directory without its contents.
        path = os.fsdecode(path)
        if self._should_ignore(path):
            return
        try:
            for file_path in scan_tree(Path(path), self.matcher):
                self._emit(ChangeKind.ADDED, file_path)
        except RootNotFoundError as e:
            logger.debug(f"New directory vanished before scan: {e}")

    def on_created(self, event):
        if event.is_directory:
            self._emit_directory(event.src_path)
        else:
            self._emit(ChangeKind.ADDED, event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._emit(ChangeKind.MODIFIED, event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._emit(ChangeKind.REMOVED, event.src_path)

    def on_moved(self, event):
        # Objects under the old directory name are left to the orphan sweep.
        if event.is_directory:
            self._emit_directory(event.dest_path)
            return
        self._emit(ChangeKind.REMOVED, event.src_path)
        self._emit(ChangeKind.ADDED, event.dest_path)
