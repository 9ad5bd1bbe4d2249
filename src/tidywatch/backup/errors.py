"""Backup errors."""

from __future__ import annotations


class BackupError(Exception):
    """Permanent upload failure; the task fails without further retries."""


class RemoteUnavailableError(BackupError):
    """Transient failure such as a network outage; the task is retried."""


__all__ = ["BackupError", "RemoteUnavailableError"]
