"""Organization coordinator driving files from detection to indexed state."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Deque, Dict, List, Optional, Set

from tidywatch.config.models import OrganizationOptions, StoreSettings, WatchSettings
from tidywatch.events import EventChannel, FileEvent, FileEventKind
from tidywatch.ingestion import (
    AttributeExtractor,
    DirectoryScanner,
    FileAttributes,
    TypeDetector,
    normalize_path,
)
from tidywatch.state import StateRepository, StoreUnavailableError
from tidywatch.watch import (
    AlreadyWatchingError,
    FolderWatcher,
    SessionNotFoundError,
    WatchEvent,
    WatchEventKind,
    WatchSession,
)

from .errors import OrganizationError, SourceMissingError
from .executor import MoveOperator
from .models import OrganizationOutcome, OrganizationState
from .resolver import NO_MATCH, RuleResolver, fallback_rule

LOGGER = logging.getLogger(__name__)

_DISPATCH_POLL_SECONDS = 0.25


def _folder_key(folder: Path) -> str:
    return os.path.normcase(os.path.abspath(folder))


class OrganizationCoordinator:
    """Own watch sessions and run organization work for their events.

    Settled watcher events arrive through ``submit`` and are dispatched from a
    single thread to a bounded worker pool. Moves into the same destination
    folder are serialized so name disambiguation cannot race; moves into
    different folders run concurrently.
    """

    def __init__(
        self,
        repository: StateRepository,
        options: OrganizationOptions,
        *,
        store_settings: Optional[StoreSettings] = None,
        watch_settings: Optional[WatchSettings] = None,
        events: Optional[EventChannel] = None,
        extractor: Optional[AttributeExtractor] = None,
        resolver: Optional[RuleResolver] = None,
        operator: Optional[MoveOperator] = None,
    ) -> None:
        """Initialize the coordinator and start its dispatcher.

        Args:
            repository: Metadata store.
            options: Organization section of the configuration.
            store_settings: Store section; drives commit retries and recovery probes.
            watch_settings: Watch section used for new sessions and scans.
            events: Channel receiving outcome events.
            extractor: Attribute extractor; built from ``options`` by default.
            resolver: Rule resolver.
            operator: Move operator; built from the settings by default.
        """
        self._repository = repository
        self._options = options
        self._store_settings = store_settings or StoreSettings()
        self._watch_settings = watch_settings or WatchSettings()
        self._events = events or EventChannel()
        self._extractor = extractor or AttributeExtractor(
            TypeDetector(options.categories, options.default_category)
        )
        self._resolver = resolver or RuleResolver()
        self._operator = operator or MoveOperator(
            repository,
            max_disambiguation=options.max_disambiguation,
            write_retry_attempts=self._store_settings.write_retry_attempts,
            write_retry_delay=self._store_settings.write_retry_delay_seconds,
        )

        self._queue: queue.Queue[WatchEvent | None] = queue.Queue(maxsize=options.queue_size)
        self._executor = ThreadPoolExecutor(
            max_workers=options.max_workers, thread_name_prefix="tidywatch-organize"
        )
        self._folder_locks: Dict[str, threading.Lock] = {}
        self._folder_locks_guard = threading.Lock()
        self._in_flight: Set[Path] = set()
        self._in_flight_lock = threading.Lock()
        self._outstanding = 0
        self._idle = threading.Condition()

        self._healthy = True
        self._next_probe = 0.0
        self._buffer: Deque[WatchEvent] = deque()
        self._health_lock = threading.Lock()

        self._watchers: Dict[Path, FolderWatcher] = {}
        self._sessions_lock = threading.Lock()

        self._closed = threading.Event()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="tidywatch-dispatch", daemon=True
        )
        self._dispatcher.start()

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def healthy(self) -> bool:
        """Return whether the store is currently accepting organization work."""
        with self._health_lock:
            return self._healthy

    # ------------------------------------------------------------------ #
    # Watch sessions                                                     #
    # ------------------------------------------------------------------ #

    def start_watching(
        self,
        root: Path,
        *,
        debounce_seconds: Optional[float] = None,
        recursive: Optional[bool] = None,
    ) -> WatchSession:
        """Start a watch session on ``root``.

        Raises:
            AlreadyWatchingError: If ``root`` already has an active session.
            PathNotFoundError: If ``root`` is missing.
            PermissionDeniedError: If ``root`` cannot be read.
        """
        resolved = Path(root).expanduser().resolve()
        with self._sessions_lock:
            existing = self._watchers.get(resolved)
            if existing is not None and existing.is_active:
                raise AlreadyWatchingError(f"Already watching {resolved}.")
            watcher = FolderWatcher(
                resolved,
                self._watch_settings,
                self.submit,
                debounce_override=debounce_seconds,
                recursive_override=recursive,
            )
            session = watcher.start()
            self._watchers[resolved] = watcher

        try:
            self._repository.set_watched_folder(resolved, True)
        except StoreUnavailableError:
            self._discard_watcher(resolved, watcher)
            raise

        if self._watch_settings.scan_on_start:
            self._scan_into_queue(resolved, session.session_id, recursive)
        return session

    def stop_watching(self, session_id: str) -> WatchSession:
        """Stop the session with ``session_id``.

        Raises:
            SessionNotFoundError: If no such session is registered.
        """
        with self._sessions_lock:
            match = next(
                (
                    (root, watcher)
                    for root, watcher in self._watchers.items()
                    if watcher.session.session_id == session_id
                ),
                None,
            )
            if match is None:
                raise SessionNotFoundError(f"Unknown watch session {session_id}.")
            root, watcher = match
            del self._watchers[root]
        watcher.stop()
        try:
            self._repository.set_watched_folder(root, False)
        except StoreUnavailableError as exc:
            LOGGER.warning("Could not record that %s is no longer watched: %s", root, exc)
        LOGGER.info("Stopped watching %s", root)
        return watcher.session

    def sessions(self) -> List[WatchSession]:
        """Return snapshots of the registered sessions."""
        with self._sessions_lock:
            return [watcher.session for watcher in self._watchers.values()]

    # ------------------------------------------------------------------ #
    # Work intake                                                        #
    # ------------------------------------------------------------------ #

    def submit(self, event: WatchEvent) -> None:
        """Accept a settled watcher event, blocking while the inbox is full."""
        with self._idle:
            self._outstanding += 1
        while not self._closed.is_set():
            try:
                self._queue.put(event, timeout=_DISPATCH_POLL_SECONDS)
                return
            except queue.Full:
                continue
        self._task_done()

    def organize_file(self, path: Path, destination_folder: Optional[Path] = None) -> OrganizationOutcome:
        """Organize one file synchronously.

        Args:
            path: File to organize.
            destination_folder: Explicit destination; rules decide when omitted.
                Relative folders are anchored to ``destination_root`` or to the
                file's current folder.

        Returns:
            OrganizationOutcome: The indexed outcome.

        Raises:
            OrganizationError: If the file cannot be organized.
            StoreUnavailableError: If the metadata store is unavailable; organization
                pauses until it recovers.
        """
        if not self.healthy:
            raise StoreUnavailableError("Metadata store is unavailable; organization is paused.")
        source = normalize_path(path)
        base = self._base_folder(None, source)
        target = None
        if destination_folder is not None:
            target = Path(destination_folder).expanduser()
            if not target.is_absolute():
                target = base / target
            target = target.resolve()
        try:
            return self._organize(source, base=base, destination_folder=target)
        except StoreUnavailableError as exc:
            self._mark_unhealthy(exc)
            raise

    def process_once(self, root: Path, *, recursive: Optional[bool] = None) -> List[OrganizationOutcome]:
        """Organize every eligible file currently under ``root``.

        Failures are returned as failed outcomes rather than raised.

        Raises:
            StoreUnavailableError: If the metadata store is unavailable.
        """
        resolved = Path(root).expanduser().resolve()
        scanner = self._scanner(recursive)
        futures: List[Future[OrganizationOutcome]] = []
        for path in scanner.scan(resolved):
            futures.append(
                self._executor.submit(self._organize_contained, path, self._base_folder(resolved, path))
            )
        return [future.result() for future in futures]

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted event has been handled.

        Returns:
            bool: False when ``timeout`` elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def close(self) -> None:
        """Stop every session, then finish in-flight work."""
        if self._closed.is_set():
            return
        with self._sessions_lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for watcher in watchers:
            watcher.stop()
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        self._dispatcher.join(timeout=5)
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------ #
    # Dispatch                                                           #
    # ------------------------------------------------------------------ #

    def _dispatch_loop(self) -> None:
        while True:
            try:
                event = self._queue.get(timeout=_DISPATCH_POLL_SECONDS)
            except queue.Empty:
                if self._closed.is_set():
                    return
                self._maybe_recover()
                continue
            if event is None:
                return
            if not self.healthy:
                self._hold(event)
                self._task_done()
                self._maybe_recover()
                continue
            self._dispatch(event)

    def _dispatch(self, event: WatchEvent) -> None:
        if event.kind is WatchEventKind.WATCH_LOST:
            self._handle_watch_lost(event)
            self._task_done()
            return

        if event.kind is WatchEventKind.DISAPPEARED:
            self._executor.submit(self._run_disappeared, event)
            return

        with self._in_flight_lock:
            if event.path in self._in_flight:
                LOGGER.debug("Ignoring duplicate event for in-flight %s", event.path)
                self._task_done()
                return
            self._in_flight.add(event.path)
        self._executor.submit(self._run_appeared, event)

    def _run_appeared(self, event: WatchEvent) -> None:
        try:
            self._organize(event.path, base=self._base_folder(event.root, event.path))
        except StoreUnavailableError as exc:
            self._mark_unhealthy(exc)
            self._hold(event)
        except OrganizationError:
            pass
        except Exception:  # pragma: no cover - keep the worker pool alive
            LOGGER.exception("Unexpected failure organizing %s", event.path)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(event.path)
            self._task_done()

    def _run_disappeared(self, event: WatchEvent) -> None:
        try:
            removed = self._repository.remove_missing_path(event.path)
        except StoreUnavailableError as exc:
            self._mark_unhealthy(exc)
            self._hold(event)
        else:
            if removed is not None:
                self._publish(FileEventKind.REMOVED, file_id=removed.id, path=removed.path)
        finally:
            self._task_done()

    def _handle_watch_lost(self, event: WatchEvent) -> None:
        root = event.root or event.path
        with self._sessions_lock:
            watcher = self._watchers.get(root)
            if watcher is not None and watcher.session.session_id == event.session_id:
                del self._watchers[root]
        self._publish(
            FileEventKind.WATCH_LOST,
            path=str(root),
            session_id=event.session_id,
            reason=event.reason,
        )

    # ------------------------------------------------------------------ #
    # Organization                                                       #
    # ------------------------------------------------------------------ #

    def _organize_contained(self, path: Path, base: Path) -> OrganizationOutcome:
        with self._in_flight_lock:
            if path in self._in_flight:
                return OrganizationOutcome(
                    path=path, state=OrganizationState.FAILED, reason="already being organized"
                )
            self._in_flight.add(path)
        try:
            return self._organize(path, base=base)
        except OrganizationError as exc:
            return OrganizationOutcome(path=path, state=OrganizationState.FAILED, reason=exc.reason)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(path)

    def _organize(
        self,
        path: Path,
        *,
        base: Path,
        destination_folder: Optional[Path] = None,
    ) -> OrganizationOutcome:
        state = OrganizationState.DETECTED
        try:
            attributes = self._extractor.describe(path)
        except FileNotFoundError as exc:
            self._report_untracked_failure(path, f"File is missing: {path}")
            raise SourceMissingError(f"File is missing: {path}", path=path) from exc
        except OSError as exc:
            reason = f"Cannot read {path}: {exc}"
            self._report_untracked_failure(path, reason)
            raise OrganizationError(reason, path=path) from exc

        record, created = self._repository.upsert_file(attributes)
        if created:
            self._publish(FileEventKind.CREATED, file_id=record.id, path=record.path)

        rule_name: Optional[str] = None
        try:
            state = OrganizationState.RESOLVING
            if destination_folder is None:
                destination_folder, rule_name = self._resolve(attributes, base)
            else:
                rule_name = "manual"
            state = OrganizationState.MOVING
            with self._folder_lock(destination_folder):
                operation = self._operator.relocate(record.id, destination_folder)
        except OrganizationError as exc:
            LOGGER.warning("Organizing %s failed while %s: %s", path, state.value, exc.reason)
            self._repository.record_failure(record.id, exc.reason)
            self._publish(
                FileEventKind.ORGANIZE_FAILED, file_id=record.id, path=str(path), reason=exc.reason
            )
            raise

        if operation.moved:
            self._publish(
                FileEventKind.MOVED,
                file_id=record.id,
                path=str(operation.destination),
                previous_path=str(operation.source),
            )
        elif record.last_error:
            self._repository.record_failure(record.id, None)
        self._auto_tag(record.id, attributes, operation.destination)
        return OrganizationOutcome(
            path=path,
            state=OrganizationState.INDEXED,
            file_id=record.id,
            destination=operation.destination,
            rule_name=rule_name,
            conflict_applied=operation.conflict_applied,
        )

    def _resolve(self, attributes: FileAttributes, base: Path) -> tuple[Path, str]:
        rules = self._repository.list_rules()
        destination = self._resolver.resolve(attributes, rules, base)
        if destination is not NO_MATCH:
            rule = self._resolver.match(attributes, rules)
            return destination, rule.name if rule is not None else "none"
        if not self._options.fallback_enabled:
            return attributes.path.parent, "none"
        rule = fallback_rule(self._options.fallback_template)
        return self._resolver.destination_for(rule, attributes, base), rule.name

    def _auto_tag(self, file_id: int, attributes: FileAttributes, path: Path) -> None:
        if not self._options.auto_tag_categories:
            return
        tag = self._repository.get_tag_by_name(attributes.category)
        if tag is None:
            return
        if self._repository.assign_tag(file_id, tag.id):
            self._publish(FileEventKind.TAGGED, file_id=file_id, path=str(path), tag_id=tag.id)

    def _report_untracked_failure(self, path: Path, reason: str) -> None:
        LOGGER.warning("Cannot organize %s: %s", path, reason)
        record = self._repository.get_file_by_path(path)
        if record is not None:
            self._repository.record_failure(record.id, reason)
        self._publish(
            FileEventKind.ORGANIZE_FAILED,
            file_id=record.id if record is not None else None,
            path=str(path),
            reason=reason,
        )

    def _base_folder(self, root: Optional[Path], path: Path) -> Path:
        if self._options.destination_root:
            return Path(self._options.destination_root).expanduser().resolve()
        return root if root is not None else path.parent

    def _folder_lock(self, folder: Path) -> threading.Lock:
        key = _folder_key(folder)
        with self._folder_locks_guard:
            lock = self._folder_locks.get(key)
            if lock is None:
                lock = self._folder_locks[key] = threading.Lock()
            return lock

    def _scanner(self, recursive: Optional[bool]) -> DirectoryScanner:
        return DirectoryScanner(
            recursive=self._watch_settings.recursive if recursive is None else recursive,
            include_hidden=self._watch_settings.include_hidden,
            ignore_patterns=self._watch_settings.ignore_patterns,
        )

    def _scan_into_queue(self, root: Path, session_id: str, recursive: Optional[bool]) -> None:
        for path in self._scanner(recursive).scan(root):
            self.submit(
                WatchEvent(kind=WatchEventKind.APPEARED, path=path, session_id=session_id, root=root)
            )

    def _discard_watcher(self, root: Path, watcher: FolderWatcher) -> None:
        with self._sessions_lock:
            if self._watchers.get(root) is watcher:
                del self._watchers[root]
        watcher.stop()

    # ------------------------------------------------------------------ #
    # Store availability                                                 #
    # ------------------------------------------------------------------ #

    def _mark_unhealthy(self, exc: StoreUnavailableError) -> None:
        with self._health_lock:
            if self._healthy:
                LOGGER.error("Metadata store unavailable; pausing organization: %s", exc)
            self._healthy = False
            self._next_probe = time.monotonic() + self._store_settings.recovery_probe_seconds

    def _hold(self, event: WatchEvent) -> None:
        with self._health_lock:
            if len(self._buffer) >= self._options.buffered_events_limit:
                dropped = self._buffer.popleft()
                LOGGER.warning("Event buffer full; dropping %s for %s", dropped.kind.value, dropped.path)
            self._buffer.append(event)

    def _maybe_recover(self) -> None:
        with self._health_lock:
            if self._healthy or time.monotonic() < self._next_probe:
                return
            self._next_probe = time.monotonic() + self._store_settings.recovery_probe_seconds
        try:
            self._repository.ping()
            self._repository.reconcile()
        except StoreUnavailableError as exc:
            LOGGER.debug("Metadata store still unavailable: %s", exc)
            return

        with self._health_lock:
            self._healthy = True
            held = list(self._buffer)
            self._buffer.clear()
        LOGGER.warning("Metadata store recovered; replaying %d held event(s)", len(held))
        for event in held:
            with self._idle:
                self._outstanding += 1
            self._dispatch(event)

    def _task_done(self) -> None:
        with self._idle:
            self._outstanding -= 1
            if self._outstanding <= 0:
                self._outstanding = 0
                self._idle.notify_all()

    def _publish(self, kind: FileEventKind, **fields: object) -> None:
        self._events.publish(FileEvent(kind=kind, **fields))


__all__ = ["OrganizationCoordinator"]
