"""Resolution of nested ignore-rule files across a directory tree."""

import logging
import os
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional

from .exceptions import RootNotFoundError
from .patterns import PatternMatcher, scope_pattern

logger = logging.getLogger(__name__)

COMMON_IGNORE_FILE = Path(__file__).parent / "assets" / "common-ignore"


def parse_ignore_content(content: str) -> List[str]:
    """
    Parse the text of an ignore-rule file into raw patterns.
    
    Blank lines and ``#`` comments are skipped. Negated (``!``) rules are
    not supported and are dropped.
    """
    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.debug(f"Ignoring unsupported negated rule: {line}")
            continue
        patterns.append(line)
    return patterns


def read_ignore_file(path: Path) -> List[str]:
    """
    Read raw patterns from one rule file.
    
    A missing file yields no patterns. An unreadable file is logged and
    also yields no patterns so the rest of the scan can proceed.
    """
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"Could not read ignore file {path}: {e}")
        return []
    return parse_ignore_content(content)


def _scoped_rules(directory: Path, rule_files: Iterable[str]) -> FrozenSet[str]:
    scoped = set()
    for name in rule_files:
        for line in read_ignore_file(directory / name):
            pattern = scope_pattern(line, directory)
            if pattern:
                scoped.add(pattern)
    return frozenset(scoped)


def collect_ignore_patterns(
    directory: Path,
    rule_files: Iterable[str],
    inherited: Iterable[str] = (),
) -> FrozenSet[str]:
    """
    Collect rule-file patterns from ``directory`` and all its subdirectories.
    
    Each directory's rules are scoped to that directory and passed down to
    its children together with everything inherited. A subdirectory that
    is already excluded by those patterns is never descended into, so its
    own rule files are never read.
    
    Args:
        directory: Directory to start from
        rule_files: Names of rule files to look for in every directory
        inherited: Already-scoped patterns that apply from above
        
    Returns:
        Set of scoped patterns found below ``directory`` (not including
        ``inherited``)
        
    Raises:
        RootNotFoundError: If ``directory`` itself cannot be listed
    """
    rule_files = list(rule_files)
    start = Path(directory)
    collected = set()
    stack = [(start, frozenset(inherited))]

    while stack:
        current, above = stack.pop()
        own = _scoped_rules(current, rule_files) if rule_files else frozenset()
        collected |= own
        effective = above | own

        try:
            with os.scandir(current) as it:
                subdirs = sorted(
                    Path(entry.path) for entry in it
                    if entry.is_dir(follow_symlinks=False)
                )
        except OSError as e:
            if current == start:
                raise RootNotFoundError(f"Cannot list directory {current}: {e}") from e
            logger.warning(f"Skipping unreadable directory {current}: {e}")
            continue

        matcher = PatternMatcher(effective)
        for subdir in reversed(subdirs):
            if matcher.matches(subdir):
                logger.debug(f"Not descending into ignored directory {subdir}")
                continue
            stack.append((subdir, effective))

    return frozenset(collected)


def resolve_ignore_patterns(
    root: Path,
    rule_files: Iterable[str],
    base_patterns: Iterable[str] = (),
) -> FrozenSet[str]:
    """
    Compute the full exclude set for a tracked root.
    
    Configured ``base_patterns`` are scoped below ``root``, so a rule
    never matches a directory above the tracked root, and unioned with
    the patterns collected from rule files under ``root``.
    """
    base = frozenset(p for p in (scope_pattern(raw, root) for raw in base_patterns) if p)
    collected = collect_ignore_patterns(root, rule_files, base)
    logger.debug(
        f"Resolved {len(base)} configured and {len(collected)} collected "
        f"ignore patterns for {root}"
    )
    return base | collected


def load_common_patterns(path: Optional[Path] = None) -> List[str]:
    """Load the bundled common rules, scoped to any directory."""
    content = (path or COMMON_IGNORE_FILE).read_text(encoding="utf-8")
    return sorted({scope_pattern(line) for line in parse_ignore_content(content)} - {""})
