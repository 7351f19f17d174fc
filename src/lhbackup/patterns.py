"""Glob-style exclude patterns.

Patterns use gitignore wildcard semantics (via ``pathspec``): ``*`` stays
inside one path segment and ``**`` spans any number of segments. Every
pattern is scoped so it excludes matching names anywhere below the
directory that defined it, or anywhere at all when it has no directory.
"""

import os
from pathlib import PurePath
from typing import Iterable, Optional, Union

import pathspec

# Prefix that anchors a pattern at "any ancestor directory".
ANY_DIRECTORY = "*/**"

_GLOB_SPECIAL = set("\\*?[]!#")

PathLike = Union[str, os.PathLike]


def normalize_pattern(pattern: str) -> str:
    """
    Strip redundant separators and trailing wildcard segments.
    
    ``"foo/"``, ``"foo/*"``, ``"foo/**"`` and ``"/foo"`` all normalize to
    ``"foo"``. Wildcards inside a segment (``"*.log"``) are kept.
    """
    result = pattern.strip()
    while True:
        trimmed = result.rstrip("/")
        for suffix in ("/**", "/*"):
            if trimmed.endswith(suffix):
                trimmed = trimmed[: -len(suffix)]
                break
        if trimmed == result:
            break
        result = trimmed
    return result.lstrip("/")


def escape_glob(text: str) -> str:
    """Escape characters that would otherwise be read as wildcards."""
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in text)


def _posix(path: PathLike) -> str:
    return PurePath(os.fspath(path)).as_posix()


def scope_pattern(pattern: str, directory: Optional[PathLike] = None) -> str:
    """
    Anchor a pattern below ``directory``, or below any directory.
    
    Args:
        pattern: Raw pattern as written in a rule file or config
        directory: Directory the pattern was defined in
        
    Returns:
        The scoped pattern, or an empty string for an empty pattern
    """
    normalized = normalize_pattern(pattern)
    if not normalized:
        return ""
    scoped = normalized.startswith(ANY_DIRECTORY + "/")
    if directory is None:
        return normalized if scoped else f"{ANY_DIRECTORY}/{normalized}"
    if scoped:
        # Re-anchor an any-directory pattern below the given directory.
        normalized = normalized[len(ANY_DIRECTORY) + 1:]
    prefix = escape_glob(_posix(directory).strip("/"))
    if not prefix:
        return f"**/{normalized}"
    return f"{prefix}/**/{normalized}"


def exact_pattern(path: PathLike) -> str:
    """Pattern matching ``path`` itself and everything below it."""
    return escape_glob(_posix(path).strip("/"))


class PatternMatcher:
    """Compiled set of scoped patterns, matched against absolute paths."""

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = frozenset(p for p in patterns if p)
        self._spec = pathspec.GitIgnoreSpec.from_lines(sorted(self.patterns))

    def matches(self, path: PathLike) -> bool:
        candidate = _posix(path).lstrip("/")
        if not candidate or not self.patterns:
            return False
        return self._spec.match_file(candidate)

    def __len__(self) -> int:
        return len(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)


def matches(path: PathLike, patterns: Iterable[str]) -> bool:
    """Return True if ``path`` satisfies any of ``patterns``."""
    return PatternMatcher(patterns).matches(path)


def as_matcher(patterns: Union[PatternMatcher, Iterable[str], None]) -> PatternMatcher:
    if isinstance(patterns, PatternMatcher):
        return patterns
    return PatternMatcher(patterns or ())
