"""Custom exceptions for the backup package."""


class BackupError(Exception):
    """Base exception for all backup errors."""
    pass


class ConfigError(BackupError):
    """Configuration is missing or invalid."""
    pass


class RootError(BackupError):
    """Error related to a tracked root folder."""
    pass


class RootNotFoundError(RootError):
    """Tracked root folder does not exist or is not a directory."""
    pass


class ArchiveError(BackupError):
    """Archive could not be written or extracted."""
    pass


class ArchiveCancelledError(ArchiveError):
    """Archive write was interrupted by a stop request."""
    pass


class ObjectStoreError(BackupError):
    """Object store directory is missing or unreadable."""
    pass
