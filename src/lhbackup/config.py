"""Configuration for the backup package."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LH_CONFIG"
BACKUP_DIR_NAME = ".lh-backup"
OBJECTS_DIR_NAME = "objects"
DEFAULT_MAX_FILE_SIZE = "42mb"
DEFAULT_IGNORE_FROM = [".gitignore"]

_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
}
_SIZE_RE = re.compile(r"^(\d+)\s*([a-z]+)?$")


def default_config_path() -> Path:
    """Config file location, overridable through ``LH_CONFIG``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".lh-config.yaml"


def parse_size(value) -> int:
    """
    Convert a human size string such as ``"42mb"`` to bytes.

    Bare integers and digit-only strings are taken as bytes.

    Raises:
        ConfigError: If the string is not a valid size
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = _SIZE_RE.match(str(value).strip().lower())
    if not match:
        raise ConfigError(f"Invalid size string: {value!r}")
    amount, unit = match.groups()
    unit = unit or "b"
    if unit not in _UNITS:
        raise ConfigError(f"Invalid size unit in {value!r}, expected one of {', '.join(_UNITS)}")
    return int(amount) * _UNITS[unit]


def resolve_track_paths(values: Iterable[str]) -> List[Path]:
    """
    Expand configured track entries into directories.

    An entry ending in ``/*`` stands for every immediate subdirectory of
    that directory. Any other entry must itself be a directory.

    Raises:
        ConfigError: If an entry does not refer to a directory
    """
    resolved: List[Path] = []
    for value in values:
        value = str(value).strip()
        if value.endswith("/*"):
            parent = Path(value[:-2] or "/").expanduser()
            if not parent.is_dir():
                raise ConfigError(f"Track path should refer to a directory: {parent}")
            resolved.extend(sorted(child for child in parent.iterdir() if child.is_dir()))
            continue

        path = Path(value).expanduser()
        if not path.is_dir():
            raise ConfigError(f"Track path should refer to a directory: {path}")
        resolved.append(path)
    return [path.absolute() for path in resolved]


@dataclass
class BackupConfig:
    """
    Configuration for one backup or restore run.

    Attributes:
        track_paths: Directories to mirror
        backup_dir: Directory holding the ``objects`` store
        ignore_patterns: Exclude patterns applied to every tracked root
        ignore_from: Rule file names read in every directory
        max_file_size: Largest file archived, in bytes
        persist_concurrency: Concurrent archive writes per root
        unlink_concurrency: Concurrent object deletions per root
    """
    track_paths: List[Path] = field(default_factory=list)
    backup_dir: Path = field(default_factory=lambda: Path(BACKUP_DIR_NAME))
    ignore_patterns: List[str] = field(default_factory=list)
    ignore_from: List[str] = field(default_factory=list)
    max_file_size: int = field(default_factory=lambda: parse_size(DEFAULT_MAX_FILE_SIZE))
    persist_concurrency: int = 10
    unlink_concurrency: int = 10

    def __post_init__(self):
        self.track_paths = [Path(p) for p in self.track_paths]
        if isinstance(self.backup_dir, str):
            self.backup_dir = Path(self.backup_dir)

    @property
    def objects_dir(self) -> Path:
        return self.backup_dir / OBJECTS_DIR_NAME

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "BackupConfig":
        """
        Build a config from the raw YAML mapping.

        Raises:
            ConfigError: If a required key is missing or a value is invalid
        """
        if not isinstance(raw, dict):
            raise ConfigError("Config file must contain a mapping")
        for key in ("cloudFolder", "track"):
            if not raw.get(key):
                raise ConfigError(f"Missing config key: {key}")

        return cls(
            track_paths=resolve_track_paths(raw["track"]),
            backup_dir=Path(raw["cloudFolder"]).expanduser() / BACKUP_DIR_NAME,
            ignore_patterns=list(raw.get("ignore") or []),
            ignore_from=list(raw.get("ignoreFrom") or []),
            max_file_size=parse_size(raw.get("maxFileSize") or DEFAULT_MAX_FILE_SIZE),
        )


def read_raw_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the raw mapping, or an empty one if the file does not exist."""
    path = path or default_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return raw or {}


def load_config(path: Optional[Path] = None) -> BackupConfig:
    """
    Load and validate the config file.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    path = path or default_config_path()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}, run `lh-backup init` first")
    config = BackupConfig.from_raw(read_raw_config(path))
    logger.debug(f"Loaded config from {path}: {config}")
    return config


def save_raw_config(raw: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Write the raw mapping as YAML and return the file path."""
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(raw, f, default_flow_style=False, sort_keys=False)
    return path


def upsert_config(updates: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """
    Merge ``updates`` into the stored config.

    ``track`` entries are appended to the existing list instead of
    replacing it; ``None`` values are not written.
    """
    raw = read_raw_config(path)
    for key, value in updates.items():
        if value is None:
            continue
        if key == "track":
            existing = list(raw.get("track") or [])
            raw["track"] = existing + [v for v in value if v not in existing]
        else:
            raw[key] = value
    return save_raw_config(raw, path)
