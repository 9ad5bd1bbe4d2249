"""Watch session and notification models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class RawKind(str, Enum):
    """Kinds of raw filesystem notifications."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


class RawNotification(BaseModel):
    """Undebounced filesystem notification.

    Attributes:
        kind: Reported change.
        path: Affected path (the source for moves).
        dest_path: Destination of a move.
    """

    kind: RawKind
    path: Path
    dest_path: Optional[Path] = None


class WatchEventKind(str, Enum):
    """Debounced events emitted by a session."""

    APPEARED = "appeared"
    DISAPPEARED = "disappeared"
    WATCH_LOST = "watch_lost"


class WatchEvent(BaseModel):
    """Settled event delivered to the organization coordinator.

    Attributes:
        kind: Event kind.
        path: Affected path; the root for ``watch_lost``.
        session_id: Session that produced the event, if any.
        root: Watched root the path belongs to.
        reason: Why the session ended, for ``watch_lost``.
    """

    kind: WatchEventKind
    path: Path
    session_id: Optional[str] = None
    root: Optional[Path] = None
    reason: Optional[str] = None


class WatchSession(BaseModel):
    """Snapshot of one watch session.

    Attributes:
        session_id: Opaque identifier.
        root_path: Folder being watched.
        is_active: Whether notifications are still being forwarded.
    """

    session_id: str
    root_path: Path
    is_active: bool = True


__all__ = [
    "RawKind",
    "RawNotification",
    "WatchEvent",
    "WatchEventKind",
    "WatchSession",
]
