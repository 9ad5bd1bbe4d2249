"""Two-phase buffer that turns raw notifications into settled events.

Notifications are collected per path. When a path has been quiet for the
window, it is probed: a missing path settles as ``disappeared``; a present path
whose size has not changed since the last notification settles as
``appeared``; a size change re-arms the window so files still being written are
not picked up half-way.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .models import RawKind, RawNotification, WatchEventKind

SizeProbe = Callable[[Path], Optional[int]]


def probe_size(path: Path) -> Optional[int]:
    """Return the size of a regular file, or ``None`` if it is not there."""
    try:
        stat = os.stat(path)
    except OSError:
        return None
    if not os.path.isfile(path):
        return None
    return stat.st_size


@dataclass(slots=True)
class _Pending:
    deadline: float
    size: Optional[int]
    modify_only: bool


class Debouncer:
    """Coalesce notifications per path over a fixed quiet window."""

    def __init__(self, window: float, probe: SizeProbe = probe_size) -> None:
        """Initialize the buffer.

        Args:
            window: Quiet period in seconds before a path settles.
            probe: Returns the current size of a path, ``None`` when missing.
        """
        if window <= 0:
            raise ValueError("Debounce window must be positive.")
        self._window = window
        self._probe = probe
        self._pending: Dict[Path, _Pending] = {}
        self._last_appeared: Dict[Path, int] = {}

    @property
    def window(self) -> float:
        return self._window

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, notification: RawNotification, now: float) -> None:
        """Buffer a raw notification observed at monotonic time ``now``."""
        if notification.kind is RawKind.MOVED:
            self._touch(notification.path, now, RawKind.DELETED)
            if notification.dest_path is not None:
                self._touch(notification.dest_path, now, RawKind.CREATED)
            return
        self._touch(notification.path, now, notification.kind)

    def next_deadline(self) -> Optional[float]:
        """Return the earliest time at which a buffered path may settle."""
        if not self._pending:
            return None
        return min(entry.deadline for entry in self._pending.values())

    def flush(self, now: float) -> List[Tuple[WatchEventKind, Path]]:
        """Settle every path whose window closed at or before ``now``.

        Returns:
            List[Tuple[WatchEventKind, Path]]: Settled events in the order their
            windows closed.
        """
        due = sorted(
            (entry.deadline, path)
            for path, entry in self._pending.items()
            if entry.deadline <= now
        )
        settled: List[Tuple[WatchEventKind, Path]] = []
        for _, path in due:
            entry = self._pending[path]
            size = self._probe(path)
            if size is None:
                del self._pending[path]
                self._last_appeared.pop(path, None)
                settled.append((WatchEventKind.DISAPPEARED, path))
                continue
            if size != entry.size:
                entry.size = size
                entry.deadline = now + self._window
                continue
            del self._pending[path]
            if entry.modify_only and self._last_appeared.get(path) == size:
                continue
            self._last_appeared[path] = size
            settled.append((WatchEventKind.APPEARED, path))
        return settled

    def clear(self) -> None:
        """Discard every buffered notification."""
        self._pending.clear()
        self._last_appeared.clear()

    def _touch(self, path: Path, now: float, kind: RawKind) -> None:
        size = self._probe(path)
        entry = self._pending.get(path)
        if entry is None:
            self._pending[path] = _Pending(
                deadline=now + self._window,
                size=size,
                modify_only=kind is RawKind.MODIFIED,
            )
            return
        entry.deadline = now + self._window
        entry.size = size
        entry.modify_only = entry.modify_only and kind is RawKind.MODIFIED


__all__ = ["Debouncer", "SizeProbe", "probe_size"]
