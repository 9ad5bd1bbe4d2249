"""Remote backup queue and stores."""

from __future__ import annotations

from .errors import BackupError, RemoteUnavailableError
from .queue import UNTRACKED_REASON, BackupQueue
from .remote import DirectoryRemoteStore, RemoteStore, S3RemoteStore, build_remote_store

__all__ = [
    "BackupError",
    "BackupQueue",
    "DirectoryRemoteStore",
    "RemoteStore",
    "RemoteUnavailableError",
    "S3RemoteStore",
    "UNTRACKED_REASON",
    "build_remote_store",
]
