"""Outbound channel of file events for any number of subscribers.

Publishing never blocks: each subscriber owns a bounded queue and, when it is
full, the oldest queued event is discarded to make room. Delivery is
at-least-once from the consumer's point of view, so handlers must tolerate
duplicates.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)


class FileEventKind(str, Enum):
    """Kinds of events published on the channel."""

    CREATED = "created"
    MOVED = "moved"
    TAGGED = "tagged"
    UNTAGGED = "untagged"
    REMOVED = "removed"
    ORGANIZE_FAILED = "organize_failed"
    WATCH_LOST = "watch_lost"
    BACKUP_DONE = "backup_done"
    BACKUP_FAILED = "backup_failed"


class FileEvent(BaseModel):
    """Domain event describing a change to tracked state.

    Attributes:
        kind: What happened.
        file_id: Affected record, when one exists.
        path: Current (or last known) location.
        previous_path: Location before a move.
        tag_id: Tag involved in tag changes.
        session_id: Watch session involved in ``watch_lost``.
        reason: Failure reason for ``organize_failed``, ``watch_lost``, and
            ``backup_failed``.
        timestamp: When the event was published.
    """

    kind: FileEventKind
    file_id: Optional[int] = None
    path: Optional[str] = None
    previous_path: Optional[str] = None
    tag_id: Optional[int] = None
    session_id: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventSubscription:
    """Bounded queue of events delivered to one consumer."""

    def __init__(self, channel: "EventChannel", subscription_id: int, maxsize: int) -> None:
        self._channel = channel
        self._id = subscription_id
        self._queue: queue.Queue[FileEvent] = queue.Queue(maxsize=maxsize)
        self._dropped = 0

    @property
    def subscription_id(self) -> int:
        return self._id

    @property
    def dropped(self) -> int:
        """Return how many events were discarded because the queue was full."""
        return self._dropped

    def get(self, timeout: Optional[float] = None) -> Optional[FileEvent]:
        """Return the next event, or ``None`` if none arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[FileEvent]:
        """Return every queued event without waiting."""
        events: List[FileEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __iter__(self) -> Iterator[FileEvent]:
        return iter(self.drain())

    def close(self) -> None:
        """Stop receiving events."""
        self._channel.unsubscribe(self)

    def _offer(self, event: FileEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    discarded = self._queue.get_nowait()
                except queue.Empty:
                    continue
                self._dropped += 1
                LOGGER.warning(
                    "Subscriber %s is lagging; dropped %s event for %s",
                    self._id,
                    discarded.kind.value,
                    discarded.path,
                )


class EventChannel:
    """Fan out published events to every live subscription."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = max(1, queue_size)
        self._lock = threading.Lock()
        self._subscriptions: dict[int, EventSubscription] = {}
        self._ids = itertools.count(1)

    def subscribe(self) -> EventSubscription:
        """Register a new subscriber and return its subscription."""
        with self._lock:
            subscription = EventSubscription(self, next(self._ids), self._queue_size)
            self._subscriptions[subscription.subscription_id] = subscription
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.subscription_id, None)

    def publish(self, event: FileEvent) -> None:
        """Deliver ``event`` to every subscriber without blocking."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        LOGGER.debug("Publishing %s event for %s", event.kind.value, event.path)
        for subscription in subscriptions:
            subscription._offer(event)


__all__ = ["EventChannel", "EventSubscription", "FileEvent", "FileEventKind"]
