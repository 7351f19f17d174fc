"""
lh-backup

Incrementally mirrors tracked folders into a flat store of compressed
objects, one per file, and restores them again.

Features:
- Initial scan plus live watching of every tracked root
- Nested .gitignore-style rule files merged per directory
- Modification-time staleness check instead of content hashing
- Atomic object writes, newer-wins restore
- Orphaned objects removed after each full scan
"""

from .models import (
    ChangeKind,
    ChangeEvent,
    PendingWorkItem,
    DaemonState,
    BackupReport,
    RestoreReport,
)

from .config import BackupConfig, load_config, parse_size

from .exceptions import (
    BackupError,
    ConfigError,
    RootError,
    RootNotFoundError,
    ArchiveError,
    ArchiveCancelledError,
    ObjectStoreError,
)

from .patterns import PatternMatcher, matches, normalize_pattern, scope_pattern
from .ignore import collect_ignore_patterns, resolve_ignore_patterns
from .objects import ObjectStore, object_id, is_up_to_date
from .archive import archive_entry, extract_object
from .work_queue import WorkQueue
from .daemon import PersistDaemon
from .session import BackupSession, RestoreSession


__all__ = [
    # Models
    "ChangeKind",
    "ChangeEvent",
    "PendingWorkItem",
    "DaemonState",
    "BackupReport",
    "RestoreReport",
    # Config
    "BackupConfig",
    "load_config",
    "parse_size",
    # Exceptions
    "BackupError",
    "ConfigError",
    "RootError",
    "RootNotFoundError",
    "ArchiveError",
    "ArchiveCancelledError",
    "ObjectStoreError",
    # Components
    "PatternMatcher",
    "matches",
    "normalize_pattern",
    "scope_pattern",
    "collect_ignore_patterns",
    "resolve_ignore_patterns",
    "ObjectStore",
    "object_id",
    "is_up_to_date",
    "archive_entry",
    "extract_object",
    "WorkQueue",
    "PersistDaemon",
    # Sessions
    "BackupSession",
    "RestoreSession",
]

__version__ = "0.1.0"
