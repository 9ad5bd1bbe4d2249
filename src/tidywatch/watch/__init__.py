"""Folder watching and notification debouncing."""

from __future__ import annotations

from .debounce import Debouncer, probe_size
from .errors import (
    AlreadyWatchingError,
    PathNotFoundError,
    PermissionDeniedError,
    SessionNotFoundError,
    WatchError,
)
from .models import RawKind, RawNotification, WatchEvent, WatchEventKind, WatchSession
from .service import EventSink, FolderWatcher

__all__ = [
    "AlreadyWatchingError",
    "Debouncer",
    "EventSink",
    "FolderWatcher",
    "PathNotFoundError",
    "PermissionDeniedError",
    "RawKind",
    "RawNotification",
    "SessionNotFoundError",
    "WatchError",
    "WatchEvent",
    "WatchEventKind",
    "WatchSession",
    "probe_size",
]
