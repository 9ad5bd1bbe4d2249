"""Folder watcher errors."""

from __future__ import annotations


class WatchError(Exception):
    """Base exception for watch session management."""


class AlreadyWatchingError(WatchError):
    """Raised when a root already has an active session."""


class PathNotFoundError(WatchError):
    """Raised when a root to watch does not exist or is not a folder."""


class PermissionDeniedError(WatchError):
    """Raised when a root cannot be read."""


class SessionNotFoundError(WatchError):
    """Raised when stopping a session that is not registered."""


__all__ = [
    "WatchError",
    "AlreadyWatchingError",
    "PathNotFoundError",
    "PermissionDeniedError",
    "SessionNotFoundError",
]
