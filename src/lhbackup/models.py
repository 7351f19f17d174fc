"""Data models for the backup package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import time


class ChangeKind(Enum):
    """Types of change notifications for a tracked file."""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


# Added entries outrank modified ones so new files win on a cold start.
PRIORITIES = {
    ChangeKind.ADDED: 1,
    ChangeKind.MODIFIED: 0,
    ChangeKind.REMOVED: 0,
}


class DaemonState(Enum):
    """Lifecycle of a watch-and-persist daemon for one tracked root."""
    STARTING = "starting"
    SCANNING = "scanning"
    DRAINING = "draining"
    QUIESCENT = "quiescent"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ChangeEvent:
    """
    A filesystem change for a single tracked file.
    
    Attributes:
        kind: What happened to the file
        path: Absolute path of the affected file
        timestamp: Unix timestamp when the event was observed
    """
    kind: ChangeKind
    path: Path
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.path.is_absolute():
            raise ValueError(f"path must be absolute: {self.path}")

    @property
    def priority(self) -> int:
        return PRIORITIES[self.kind]


@dataclass(order=True)
class PendingWorkItem:
    """
    A queued change event.
    
    Ordering puts higher priorities first and keeps arrival order
    among items with equal priority.
    """
    sort_key: tuple = field(init=False, repr=False)
    priority: int = field(compare=False)
    sequence: int = field(compare=False)
    event: ChangeEvent = field(compare=False)

    def __post_init__(self):
        self.sort_key = (-self.priority, self.sequence)


@dataclass
class BackupReport:
    """Outcome of one backup session."""
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    orphans_removed: int = 0
    failed_roots: List[Path] = field(default_factory=list)
    interrupted: bool = False

    @property
    def kept(self) -> int:
        """Objects written or confirmed up to date during the run."""
        return self.persisted + self.skipped


@dataclass
class RestoreReport:
    """Outcome of one restore session."""
    extracted: int = 0
    failed: int = 0
