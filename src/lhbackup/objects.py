"""Object naming, staleness checks and the flat object store directory."""

import hashlib
import logging
import os
from pathlib import Path
from typing import List, Union

from .exceptions import ObjectStoreError

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".gz"
TEMP_SUFFIX = ".tmp"

NS_PER_SECOND = 1_000_000_000
# FAT stores modification times in two-second steps.
COARSE_MTIME_TOLERANCE_NS = 2 * NS_PER_SECOND


def object_id(source_path: Union[str, os.PathLike]) -> str:
    """
    Derive the object filename for a source path.
    
    The name is the SHA-1 of the absolute path string, not of the file
    contents, so every version of one path maps to the same object.
    
    Args:
        source_path: Absolute path of the tracked entry
        
    Returns:
        ``<40 hex chars>.gz``
    """
    digest = hashlib.sha1(os.fspath(source_path).encode("utf-8")).hexdigest()
    return f"{digest}{ARCHIVE_EXTENSION}"


def is_up_to_date(source_stat: os.stat_result, object_path: Path) -> bool:
    """
    Check whether a stored object already reflects the source file.
    
    The object's modification time is used as the fingerprint: it is
    copied from the source after every write. Any error reading the
    object, including it not existing, means "not up to date".
    
    Stores on filesystems with coarse timestamps (FAT, exFAT, some
    network mounts) drop the sub-second part when the object is stamped.
    An object with a whole-second mtime is therefore compared with a
    tolerance of ``COARSE_MTIME_TOLERANCE_NS`` when the source has a
    sub-second part.
    """
    try:
        object_stat = os.stat(object_path)
    except OSError:
        return False
    object_ns = object_stat.st_mtime_ns
    source_ns = source_stat.st_mtime_ns
    if object_ns == source_ns:
        return True
    if object_ns % NS_PER_SECOND == 0 and source_ns % NS_PER_SECOND != 0:
        return abs(source_ns - object_ns) < COARSE_MTIME_TOLERANCE_NS
    return False


class ObjectStore:
    """
    Flat directory holding one compressed archive per tracked path.
    
    Safe to share between daemons: names derive from full source paths,
    so different roots never write the same object.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def ensure(self) -> Path:
        """Create the store directory if needed."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ObjectStoreError(f"Cannot create object store {self.root}: {e}") from e
        return self.root

    def path_for(self, source_path: Union[str, os.PathLike]) -> Path:
        return self.root / object_id(source_path)

    def list_objects(self, include_all: bool = False) -> List[str]:
        """
        List object filenames in the store.
        
        Args:
            include_all: Also return files without the archive extension
            
        Raises:
            ObjectStoreError: If the store directory cannot be listed
        """
        try:
            with os.scandir(self.root) as it:
                names = [entry.name for entry in it if entry.is_file(follow_symlinks=False)]
        except OSError as e:
            raise ObjectStoreError(f"Cannot list object store {self.root}: {e}") from e
        if not include_all:
            names = [name for name in names if name.endswith(ARCHIVE_EXTENSION)]
        return sorted(names)

    def remove(self, name: str) -> bool:
        """
        Delete an object by filename.
        
        Returns:
            True if a file was removed, False if it was already absent
        """
        try:
            (self.root / name).unlink()
        except FileNotFoundError:
            return False
        return True

    def stamp(self, name: str, source_stat: os.stat_result) -> None:
        """Copy the source's access and modification times onto an object."""
        os.utime(self.root / name, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))

    def is_up_to_date(self, name: str, source_stat: os.stat_result) -> bool:
        return is_up_to_date(source_stat, self.root / name)

    def discard_temporary(self) -> int:
        """
        Remove partial writes left behind by an interrupted run.
        
        Returns:
            Number of temporary files removed
        """
        removed = 0
        for name in self.list_objects(include_all=True):
            if name.startswith(".") and name.endswith(TEMP_SUFFIX):
                if self.remove(name):
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} leftover temporary object(s) from {self.root}")
        return removed

    def __contains__(self, name: str) -> bool:
        return (self.root / name).is_file()
