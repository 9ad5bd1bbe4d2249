"""Folder watcher tests using a stand-in observer."""

from __future__ import annotations

import shutil
import threading
import time
from pathlib import Path
from typing import List, Optional

import pytest
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from tidywatch.config.models import WatchSettings
from tidywatch.watch import FolderWatcher, PathNotFoundError, WatchEvent, WatchEventKind


class _FakeObserver:
    """Records the scheduled handler instead of subscribing to the OS."""

    def __init__(self) -> None:
        self.handler = None
        self.alive = False

    def schedule(self, handler, path: str, recursive: bool = False) -> None:
        self.handler = handler
        self.path = path
        self.recursive = recursive

    def start(self) -> None:
        self.alive = True

    def stop(self) -> None:
        self.alive = False

    def join(self, timeout: Optional[float] = None) -> None:
        return None

    def is_alive(self) -> bool:
        return self.alive


class _Sink:
    def __init__(self) -> None:
        self.events: List[WatchEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: WatchEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> List[WatchEventKind]:
        with self._lock:
            return [event.kind for event in self.events]


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _settings(**overrides) -> WatchSettings:
    values = {"debounce_seconds": 0.05, "health_check_seconds": 0.05}
    values.update(overrides)
    return WatchSettings(**values)


def _watcher(root: Path, sink: _Sink, observer: _FakeObserver, **overrides) -> FolderWatcher:
    return FolderWatcher(root, _settings(**overrides), sink, observer_factory=lambda: observer)


def test_start_requires_existing_folder(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path / "missing", _Sink(), _FakeObserver())

    with pytest.raises(PathNotFoundError):
        watcher.start()


def test_notifications_settle_into_events(tmp_path: Path) -> None:
    sink = _Sink()
    observer = _FakeObserver()
    watcher = _watcher(tmp_path, sink, observer)
    session = watcher.start()
    try:
        assert session.is_active
        assert observer.path == str(tmp_path)
        assert observer.recursive is False

        target = tmp_path / "report.pdf"
        target.write_text("pdf", encoding="utf-8")
        observer.handler.dispatch(FileCreatedEvent(str(target)))
        observer.handler.dispatch(FileModifiedEvent(str(target)))
        (tmp_path / "junk.tmp").write_text("x", encoding="utf-8")
        observer.handler.dispatch(FileCreatedEvent(str(tmp_path / "junk.tmp")))

        assert _wait_for(lambda: sink.kinds() == [WatchEventKind.APPEARED])
        event = sink.events[0]
        assert event.path == target
        assert event.session_id == session.session_id
        assert event.root == tmp_path

        renamed = tmp_path / "renamed.pdf"
        target.rename(renamed)
        observer.handler.dispatch(FileMovedEvent(str(target), str(renamed)))
        assert _wait_for(lambda: len(sink.events) == 3)
        settled = {(event.kind, event.path) for event in sink.events[1:]}
        assert settled == {
            (WatchEventKind.DISAPPEARED, target),
            (WatchEventKind.APPEARED, renamed),
        }

        renamed.unlink()
        observer.handler.dispatch(FileDeletedEvent(str(renamed)))
        assert _wait_for(lambda: len(sink.events) == 4)
        assert sink.events[-1].kind is WatchEventKind.DISAPPEARED
    finally:
        watcher.stop()

    assert watcher.is_active is False


def test_debounce_override_and_hidden_files(tmp_path: Path) -> None:
    sink = _Sink()
    observer = _FakeObserver()
    watcher = FolderWatcher(
        tmp_path,
        _settings(),
        sink,
        debounce_override=0.3,
        recursive_override=True,
        observer_factory=lambda: observer,
    )
    watcher.start()
    try:
        assert observer.recursive is True
        hidden = tmp_path / ".secret"
        hidden.write_text("x", encoding="utf-8")
        observer.handler.dispatch(FileCreatedEvent(str(hidden)))
        visible = tmp_path / "seen.txt"
        visible.write_text("x", encoding="utf-8")
        started = time.monotonic()
        observer.handler.dispatch(FileCreatedEvent(str(visible)))

        assert _wait_for(lambda: len(sink.events) == 1)
        assert time.monotonic() - started >= 0.25
        assert sink.events[0].path == visible
    finally:
        watcher.stop()


def test_removed_root_ends_session(tmp_path: Path) -> None:
    root = tmp_path / "volatile"
    root.mkdir()
    sink = _Sink()
    watcher = _watcher(root, sink, _FakeObserver())
    watcher.start()

    shutil.rmtree(root)

    assert _wait_for(lambda: sink.kinds() == [WatchEventKind.WATCH_LOST])
    assert sink.events[0].reason
    assert watcher.is_active is False
    watcher.stop()


def test_dead_subscription_ends_session(tmp_path: Path) -> None:
    sink = _Sink()
    observer = _FakeObserver()
    watcher = _watcher(tmp_path, sink, observer)
    watcher.start()

    observer.alive = False

    assert _wait_for(lambda: sink.kinds() == [WatchEventKind.WATCH_LOST])
    assert "stopped unexpectedly" in sink.events[0].reason
    watcher.stop()
