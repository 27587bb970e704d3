"""Exception hierarchy for folder backup."""

from typing import Any, Optional


class FolderBackupError(Exception):
    """
    Base exception for folder backup.

    Attributes:
        details: Optional structured information (folder name, exit code, ...).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class ConfigError(FolderBackupError):
    """Raised when the session cannot start (bad config, unusable destination root)."""


class SourceNotFound(FolderBackupError):
    """Raised when a folder's source does not exist."""


class DestinationUnwritable(FolderBackupError):
    """Raised when a destination cannot be written."""


class TransientCopyFailure(FolderBackupError):
    """Raised when a retryable copy failure persists after all retries."""


class LedgerCorrupt(FolderBackupError):
    """Raised when a ledger log holds no valid records."""


class ConflictAborted(FolderBackupError):
    """Raised when the user aborts conflict review for a folder."""
