"""Error taxonomy for the restore pipeline."""
from __future__ import annotations

from pathlib import Path

from .exit_codes import ExitCode


class RestoreError(RuntimeError):
    """Base class for restore-domain errors."""

    exit_code: ExitCode = ExitCode.PROVIDER


class InvalidArguments(RestoreError):
    """Raised when the instance or backup name is missing or malformed."""

    exit_code = ExitCode.USAGE


class InstanceCheckFailed(RestoreError):
    """Raised when the pre-restore instance check reports a problem."""

    exit_code = ExitCode.VALIDATION


class ObjectNotFound(RestoreError):
    """Raised when the backup object does not exist in the bucket."""

    exit_code = ExitCode.VALIDATION


class TransferError(RestoreError):
    """Raised when the backup object cannot be statted, opened or fully read."""


class LocalWriteError(RestoreError):
    """Raised when the local archive cannot be created or written."""

    exit_code = ExitCode.ENVIRONMENT


class ExternalToolError(RestoreError):
    """Raised when an ``lxc`` invocation fails."""

    def __init__(self, operation: str, cause: str) -> None:
        """Record the failing *operation* and its *cause*."""
        normalized = cause.strip() or "unknown error"
        super().__init__(f"lxc {operation} failed: {normalized}")
        self.operation = operation
        self.cause = normalized


class CleanupError(RestoreError):
    """Raised when the staged archive cannot be removed after import."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, path: Path, cause: str) -> None:
        """Record the archive *path* that could not be removed."""
        super().__init__(f"Failed to remove staged archive {path}: {cause}")
        self.path = path


__all__ = [
    "CleanupError",
    "ExternalToolError",
    "InstanceCheckFailed",
    "InvalidArguments",
    "LocalWriteError",
    "ObjectNotFound",
    "RestoreError",
    "TransferError",
]
