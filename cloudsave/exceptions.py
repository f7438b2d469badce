"""Exception hierarchy for backup, restore and cloud operations."""

from __future__ import annotations

from pathlib import Path


class CloudSaveError(Exception):
    """Base exception for all backup/restore errors."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class ToolInvocationError(CloudSaveError):
    """The save tool could not be spawned, exited non-zero, timed out or
    printed output that could not be parsed."""

    def __init__(
        self,
        message: str,
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self) -> str:
        if self.stderr:
            return f"{self.message}\n{self.stderr.strip()}"
        return self.message


class ScanCancelledError(CloudSaveError):
    """Raised when a running whole-library scan is cancelled."""


class BackupNotFoundError(CloudSaveError):
    """A backup directory or cloud folder that should exist is missing."""

    def __init__(self, message: str | None = None, path: Path | str | None = None) -> None:
        if not message:
            message = f"Backup directory not found: {path}"
        super().__init__(message)
        self.path = path


class GameNotFoundError(CloudSaveError):
    """No registered game matches the given identifier."""


class GameAlreadyExistsError(CloudSaveError):
    """A game with the same name or platform id is already registered."""


class CloudNotEnabledError(CloudSaveError):
    """Cloud storage is disabled or has no credentials configured."""

    def __init__(self, message: str = "Cloud storage is not enabled") -> None:
        super().__init__(message)


class CloudAuthError(CloudSaveError):
    """The cloud token is invalid and could not be refreshed."""

    def __init__(self, message: str = "Not authenticated with cloud storage") -> None:
        super().__init__(message)


class DriveApiError(CloudSaveError):
    """Non-success response from the cloud object store."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
