"""Filesystem watch sessions backed by watchdog."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tidywatch.config.models import WatchSettings
from tidywatch.ingestion.discovery import DirectoryScanner

from .debounce import Debouncer, SizeProbe, probe_size
from .errors import PathNotFoundError, PermissionDeniedError, WatchError
from .models import RawKind, RawNotification, WatchEvent, WatchEventKind, WatchSession

LOGGER = logging.getLogger(__name__)

EventSink = Callable[[WatchEvent], None]


class FolderWatcher:
    """Monitor one root folder and forward settled events to a sink.

    A watchdog observer thread feeds raw notifications into a bounded queue; a
    consumer thread runs them through a ``Debouncer`` and delivers settled
    events in the order their windows close.
    """

    def __init__(
        self,
        root: Path,
        settings: WatchSettings,
        sink: EventSink,
        *,
        debounce_override: Optional[float] = None,
        recursive_override: Optional[bool] = None,
        probe: SizeProbe = probe_size,
        observer_factory: Callable[[], object] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the watcher without starting it.

        Args:
            root: Folder to watch.
            settings: Watch section of the configuration.
            sink: Callable receiving settled events.
            debounce_override: Optional debounce window in seconds.
            recursive_override: Optional override of ``settings.recursive``.
            probe: Size probe used by the debouncer.
            observer_factory: Factory for the watchdog observer.
            clock: Monotonic clock.
        """
        self._root = root.expanduser().absolute()
        self._settings = settings
        self._sink = sink
        window = debounce_override if debounce_override and debounce_override > 0 else settings.debounce_seconds
        self._recursive = settings.recursive if recursive_override is None else recursive_override
        self._debouncer = Debouncer(window, probe=probe)
        self._scanner = DirectoryScanner(
            recursive=self._recursive,
            include_hidden=settings.include_hidden,
            ignore_patterns=settings.ignore_patterns,
        )
        self._observer_factory = observer_factory
        self._clock = clock
        self._queue: queue.Queue[RawNotification | None] = queue.Queue(maxsize=settings.queue_size)
        self._stop_event = threading.Event()
        self._observer: Optional[object] = None
        self._thread: Optional[threading.Thread] = None
        self._session = WatchSession(session_id=uuid.uuid4().hex, root_path=self._root, is_active=False)
        self._state_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def session(self) -> WatchSession:
        """Return a snapshot of the session."""
        with self._state_lock:
            return self._session.model_copy()

    @property
    def is_active(self) -> bool:
        with self._state_lock:
            return self._session.is_active

    def start(self) -> WatchSession:
        """Begin watching the root.

        Returns:
            WatchSession: The now-active session.

        Raises:
            PathNotFoundError: If the root is missing or not a folder.
            PermissionDeniedError: If the root cannot be listed.
            WatchError: If the subscription cannot be established.
        """
        if self._thread is not None:
            raise WatchError(f"Watcher for {self._root} was already started.")
        if not self._root.is_dir():
            raise PathNotFoundError(f"Folder not found: {self._root}")
        if not os.access(self._root, os.R_OK | os.X_OK):
            raise PermissionDeniedError(f"Cannot read folder: {self._root}")

        observer = self._observer_factory()
        try:
            observer.schedule(_WatchEventHandler(self), str(self._root), recursive=self._recursive)
            observer.start()
        except PermissionError as exc:
            raise PermissionDeniedError(f"Cannot watch {self._root}: {exc}") from exc
        except FileNotFoundError as exc:
            raise PathNotFoundError(f"Folder not found: {self._root}") from exc
        except OSError as exc:
            raise WatchError(f"Cannot watch {self._root}: {exc}") from exc

        self._observer = observer
        with self._state_lock:
            self._session = self._session.model_copy(update={"is_active": True})
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"tidywatch-watch-{self._session.session_id[:8]}",
            daemon=True,
        )
        self._thread.start()
        LOGGER.info("Watching %s (session %s)", self._root, self._session.session_id)
        return self.session

    def stop(self) -> None:
        """Stop forwarding events and discard buffered notifications."""
        self._stop_event.set()
        self._deactivate()
        self._stop_observer()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._debouncer.clear()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run_loop(self) -> None:
        """Consume raw notifications and deliver settled events."""
        health_interval = self._settings.health_check_seconds
        next_health = self._clock() + health_interval

        while not self._stop_event.is_set():
            now = self._clock()
            wake_at = next_health
            deadline = self._debouncer.next_deadline()
            if deadline is not None:
                wake_at = min(wake_at, deadline)

            try:
                item = self._queue.get(timeout=max(0.0, wake_at - now))
            except queue.Empty:
                pass
            else:
                if item is None:
                    break
                self._debouncer.feed(item, self._clock())

            now = self._clock()
            for kind, path in self._debouncer.flush(now):
                if self._stop_event.is_set():
                    return
                self._deliver(WatchEvent(kind=kind, path=path, session_id=self._session.session_id, root=self._root))

            if now >= next_health:
                reason = self._health_problem()
                if reason is not None:
                    self._lose(reason)
                    return
                next_health = now + health_interval

    def _health_problem(self) -> Optional[str]:
        if not self._root.is_dir():
            return f"Watched folder {self._root} is gone."
        observer = self._observer
        if observer is not None and not observer.is_alive():
            return f"Subscription for {self._root} stopped unexpectedly."
        return None

    def _lose(self, reason: str) -> None:
        LOGGER.warning("Lost watch on %s: %s", self._root, reason)
        self._stop_event.set()
        self._deactivate()
        self._debouncer.clear()
        self._stop_observer()
        self._deliver(
            WatchEvent(
                kind=WatchEventKind.WATCH_LOST,
                path=self._root,
                session_id=self._session.session_id,
                root=self._root,
                reason=reason,
            )
        )

    def _deliver(self, event: WatchEvent) -> None:
        LOGGER.debug("Settled %s for %s", event.kind.value, event.path)
        try:
            self._sink(event)
        except Exception:  # pragma: no cover - sink failures must not kill the session
            LOGGER.exception("Event sink failed for %s", event.path)

    def _deactivate(self) -> None:
        with self._state_lock:
            self._session = self._session.model_copy(update={"is_active": False})

    def _stop_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer is not threading.current_thread():
            observer.join(timeout=5)

    def _accepts(self, path: Path) -> bool:
        return self._scanner.accepts(path, self._root)

    def _enqueue(self, notification: RawNotification) -> None:
        while not self._stop_event.is_set():
            try:
                self._queue.put(notification, timeout=0.5)
                return
            except queue.Full:
                LOGGER.warning("Notification buffer for %s is full; waiting", self._root)


class _WatchEventHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into raw notifications."""

    def __init__(self, watcher: FolderWatcher) -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        self._forward(RawKind.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        self._forward(RawKind.MODIFIED, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle a filesystem delete event."""
        self._forward(RawKind.DELETED, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle a filesystem move event."""
        if event.is_directory:
            return
        source = Path(os.fsdecode(event.src_path))
        dest = Path(os.fsdecode(event.dest_path))
        keep_source = self._watcher._accepts(source)
        keep_dest = self._watcher._accepts(dest)
        if keep_source and keep_dest:
            self._watcher._enqueue(RawNotification(kind=RawKind.MOVED, path=source, dest_path=dest))
        elif keep_source:
            self._watcher._enqueue(RawNotification(kind=RawKind.DELETED, path=source))
        elif keep_dest:
            self._watcher._enqueue(RawNotification(kind=RawKind.CREATED, path=dest))

    def _forward(self, kind: RawKind, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(os.fsdecode(event.src_path))
        if not self._watcher._accepts(path):
            return
        self._watcher._enqueue(RawNotification(kind=kind, path=path))


__all__ = ["EventSink", "FolderWatcher"]
