"""Packing tracked entries into compressed objects and unpacking them.

Objects are gzip-compressed tar streams. Member names are the absolute
source paths without the leading separator, so extracting into a
directory recreates the original layout beneath it.
"""

import logging
import os
import tarfile
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from .exceptions import ArchiveCancelledError, ArchiveError
from .objects import TEMP_SUFFIX
from .patterns import PatternMatcher, as_matcher

logger = logging.getLogger(__name__)


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def _include(path: Path, info: tarfile.TarInfo, matcher: PatternMatcher, max_entry_size: Optional[int]) -> bool:
    if max_entry_size is not None and info.isreg() and info.size > max_entry_size:
        logger.debug(f"Skipping {path} because it's larger than {max_entry_size} bytes")
        return False
    if matcher.matches(path):
        logger.debug(f"Skipping {path} because it matches an ignore pattern")
        return False
    return True


def _add_tree(
    tar: tarfile.TarFile,
    source: Path,
    matcher: PatternMatcher,
    max_entry_size: Optional[int],
    cancel_event: Optional[threading.Event],
) -> int:
    """Add ``source`` and everything below it; returns the member count."""
    count = 0
    visited_dirs = set()
    stack = [source]

    while stack:
        path = stack.pop()
        is_source = path == source
        if cancel_event is not None and cancel_event.is_set():
            raise ArchiveCancelledError(f"Archiving {source} was cancelled")

        try:
            # The archive is opened with dereference=True, so links are followed.
            info = tar.gettarinfo(str(path))
        except OSError as e:
            if is_source:
                raise
            logger.warning(f"Skipping {path}: {e}")
            continue

        if info is None or not (info.isdir() or info.isreg()):
            logger.debug(f"Skipping special file {path}")
            continue
        if not _include(path, info, matcher, max_entry_size):
            continue

        if info.isdir():
            try:
                st = os.stat(path)
                children = sorted(os.listdir(path), reverse=True)
            except OSError as e:
                if is_source:
                    raise
                logger.warning(f"Skipping unreadable directory {path}: {e}")
                continue
            # Followed links can loop back into an ancestor.
            if (st.st_dev, st.st_ino) in visited_dirs:
                logger.debug(f"Skipping already archived directory {path}")
                continue
            visited_dirs.add((st.st_dev, st.st_ino))
            tar.addfile(info)
            count += 1
            stack.extend(path / name for name in children)
        else:
            try:
                f = open(path, "rb")
            except OSError as e:
                if is_source:
                    raise
                logger.warning(f"Skipping unreadable file {path}: {e}")
                continue
            with f:
                tar.addfile(info, f)
            count += 1

    return count


def archive_entry(
    source_path: Union[str, os.PathLike],
    destination: Union[str, os.PathLike],
    ignore_patterns: Union[PatternMatcher, Iterable[str], None] = None,
    max_entry_size: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """
    Write a file or directory subtree into a compressed object.
    
    Entries larger than ``max_entry_size`` or matching ``ignore_patterns``
    are left out. The object is written to a temporary file next to
    ``destination`` and renamed into place, so a failed or cancelled write
    never leaves a truncated object behind.
    
    Args:
        source_path: File or directory to archive
        destination: Final object path
        ignore_patterns: Scoped patterns, or a compiled matcher
        max_entry_size: Largest regular file to include, in bytes
        cancel_event: Checked between entries; aborts the write when set
        
    Returns:
        Number of entries written into the object
        
    Raises:
        ArchiveCancelledError: If ``cancel_event`` was set mid-write
        ArchiveError: If the source or destination could not be accessed
    """
    source = Path(source_path)
    destination = Path(destination)
    matcher = as_matcher(ignore_patterns)

    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=destination.parent,
            prefix=f".{destination.name}.",
            suffix=TEMP_SUFFIX,
        )
    except OSError as e:
        raise ArchiveError(f"Cannot create temporary object for {destination}: {e}") from e

    committed = False
    try:
        with os.fdopen(fd, "wb") as raw:
            with tarfile.open(fileobj=raw, mode="w:gz", dereference=True) as tar:
                count = _add_tree(tar, source, matcher, max_entry_size, cancel_event)
            raw.flush()
            os.fsync(raw.fileno())
        os.replace(tmp_name, destination)
        committed = True
    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(f"Failed to archive {source} into {destination}: {e}") from e
    finally:
        if not committed:
            _discard(tmp_name)

    return count


def _member_target(output_dir: Path, member: tarfile.TarInfo) -> Optional[Path]:
    target = (output_dir / member.name).resolve()
    if target != output_dir and output_dir not in target.parents:
        return None
    return target


def _is_current(target: Path, member: tarfile.TarInfo) -> bool:
    """True if an existing file at ``target`` is at least as new as ``member``."""
    try:
        return target.stat().st_mtime >= member.mtime
    except OSError:
        return False


def extract_object(
    object_path: Union[str, os.PathLike],
    output_dir: Union[str, os.PathLike],
) -> int:
    """
    Unpack a compressed object into ``output_dir``.
    
    Existing files are overwritten only when the archived entry is
    strictly newer; equal timestamps leave the existing file alone.
    Members whose path would land outside ``output_dir`` are skipped.
    
    Returns:
        Number of files written
        
    Raises:
        ArchiveError: If the object cannot be read or unpacked
    """
    output_dir = Path(output_dir).resolve()
    written = 0

    try:
        with tarfile.open(object_path, mode="r:gz") as tar:
            for member in tar:
                target = _member_target(output_dir, member)
                if target is None:
                    logger.warning(f"Skipping suspicious path {member.name} in {object_path}")
                    continue
                if member.isfile() and _is_current(target, member):
                    logger.debug(f"Keeping newer existing file {target}")
                    continue
                tar.extract(member, path=output_dir, filter="data")
                if member.isfile():
                    written += 1
    except (OSError, tarfile.TarError, EOFError) as e:
        raise ArchiveError(f"Failed to extract {object_path}: {e}") from e

    return written
