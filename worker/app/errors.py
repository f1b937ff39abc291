"""Failures raised by the backup worker.

Pipelines catch every ``BackupError`` at their boundary and turn it into a
``failed`` job record, so the worker stays up for the next message.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for backup and restore failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(BackupError):
    """A job record or tenant does not exist."""


class InvalidStateError(BackupError):
    """A job cannot move to the requested state or lacks required data."""


class StorageError(BackupError):
    """Staging directory, file move, or device read/write failure."""


class ProcessError(BackupError):
    """An external tool exited non-zero, timed out, or could not start."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)
