"""Organization coordinator scenarios."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

from tidywatch.config.models import OrganizationOptions, StoreSettings, WatchSettings
from tidywatch.events import EventChannel, FileEventKind
from tidywatch.organization import OrganizationCoordinator, OrganizationState
from tidywatch.state import StateRepository, StoreUnavailableError
from tidywatch.watch import AlreadyWatchingError, SessionNotFoundError, WatchEvent, WatchEventKind


class _OutageRepository(StateRepository):
    """Store that can be switched into an unavailable state."""

    down = False

    def upsert_file(self, attributes):
        if self.down:
            raise StoreUnavailableError("database is locked")
        return super().upsert_file(attributes)

    def ping(self) -> None:
        if self.down:
            raise StoreUnavailableError("database is locked")
        super().ping()


def _write(path: Path, content: str = "content") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel(queue_size=64)


@pytest.fixture
def coordinator_factory(
    repository: StateRepository, channel: EventChannel
) -> Iterator[Callable[..., OrganizationCoordinator]]:
    created: list[OrganizationCoordinator] = []

    def _build(
        repo: StateRepository | None = None, *, scan_on_start: bool = False, **options
    ) -> OrganizationCoordinator:
        coordinator = OrganizationCoordinator(
            repo or repository,
            OrganizationOptions(**options),
            store_settings=StoreSettings(recovery_probe_seconds=0.05, write_retry_delay_seconds=0),
            watch_settings=WatchSettings(
                debounce_seconds=0.1, health_check_seconds=0.2, scan_on_start=scan_on_start
            ),
            events=channel,
        )
        created.append(coordinator)
        return coordinator

    yield _build
    for coordinator in created:
        coordinator.close()


def test_organize_file_applies_default_rules(
    coordinator_factory, repository: StateRepository, channel: EventChannel, tmp_path: Path
) -> None:
    subscription = channel.subscribe()
    source = _write(tmp_path / "inbox" / "report.pdf")

    outcome = coordinator_factory().organize_file(source)

    target = tmp_path / "inbox" / "Documents" / "report.pdf"
    assert outcome.state is OrganizationState.INDEXED
    assert outcome.destination == target
    assert outcome.rule_name == "Documents"
    assert target.exists() and not source.exists()

    record = repository.get_file(outcome.file_id)
    assert record.path == str(target)
    assert [tag.name for tag in record.tags] == ["Documents"]

    kinds = [event.kind for event in subscription.drain()]
    assert kinds == [FileEventKind.CREATED, FileEventKind.MOVED, FileEventKind.TAGGED]


def test_explicit_destination_overrides_rules(coordinator_factory, tmp_path: Path) -> None:
    source = _write(tmp_path / "inbox" / "photo.png")

    outcome = coordinator_factory().organize_file(source, Path("Keep"))

    assert outcome.destination == tmp_path / "inbox" / "Keep" / "photo.png"
    assert outcome.rule_name == "manual"


def test_unmatched_files_use_fallback_category(coordinator_factory, tmp_path: Path) -> None:
    source = _write(tmp_path / "inbox" / "mystery.xyz")

    outcome = coordinator_factory().organize_file(source)

    assert outcome.destination == tmp_path / "inbox" / "Other" / "mystery.xyz"
    assert outcome.rule_name == "fallback"


def test_fallback_can_be_disabled(coordinator_factory, tmp_path: Path) -> None:
    source = _write(tmp_path / "inbox" / "mystery.xyz")

    outcome = coordinator_factory(fallback_enabled=False).organize_file(source)

    assert outcome.destination == source
    assert source.exists()


def test_destination_root_anchors_relative_rules(coordinator_factory, tmp_path: Path) -> None:
    source = _write(tmp_path / "inbox" / "song.mp3")
    library = tmp_path / "library"

    outcome = coordinator_factory(destination_root=str(library)).organize_file(source)

    assert outcome.destination == library / "Music" / "song.mp3"


def test_failed_resolution_leaves_file_and_records_reason(
    coordinator_factory, repository: StateRepository, channel: EventChannel, tmp_path: Path
) -> None:
    repository.add_rule("broken", "txt", "{nonsense}", priority=1)
    subscription = channel.subscribe()
    source = _write(tmp_path / "inbox" / "notes.txt")

    outcomes = coordinator_factory().process_once(tmp_path / "inbox")

    assert len(outcomes) == 1
    assert outcomes[0].state is OrganizationState.FAILED
    assert "nonsense" in outcomes[0].reason
    assert source.exists()
    record = repository.get_file_by_path(source)
    assert record is not None and "nonsense" in record.last_error
    assert FileEventKind.ORGANIZE_FAILED in [event.kind for event in subscription.drain()]


def test_same_name_collisions_never_overwrite(
    coordinator_factory, repository: StateRepository, tmp_path: Path
) -> None:
    root = tmp_path / "drop"
    for folder in ("a", "b", "c", "d"):
        _write(root / folder / "report.pdf", folder)
    library = tmp_path / "library"

    coordinator = coordinator_factory(destination_root=str(library), max_workers=4)
    outcomes = coordinator.process_once(root, recursive=True)

    assert all(outcome.state is OrganizationState.INDEXED for outcome in outcomes)
    documents = library / "Documents"
    names = sorted(path.name for path in documents.iterdir())
    assert names == ["report (1).pdf", "report (2).pdf", "report (3).pdf", "report.pdf"]
    contents = sorted(path.read_text(encoding="utf-8") for path in documents.iterdir())
    assert contents == ["a", "b", "c", "d"]
    assert {record.path for record in repository.list_files()} == {
        str(path) for path in documents.iterdir()
    }


def test_rerun_after_restart_creates_no_duplicates(
    coordinator_factory, repository: StateRepository, tmp_path: Path
) -> None:
    root = tmp_path / "inbox"
    _write(root / "one.pdf")
    _write(root / "two.jpg")
    coordinator_factory().process_once(root)
    before = {record.id: record.path for record in repository.list_files()}

    restarted = coordinator_factory()
    outcomes = restarted.process_once(root, recursive=True)

    assert all(outcome.destination == Path(before[outcome.file_id]) for outcome in outcomes)
    assert {record.id: record.path for record in repository.list_files()} == before


def test_submitted_events_are_processed(
    coordinator_factory, repository: StateRepository, channel: EventChannel, tmp_path: Path
) -> None:
    root = tmp_path / "inbox"
    source = _write(root / "clip.mp4")
    coordinator = coordinator_factory()
    subscription = channel.subscribe()

    coordinator.submit(WatchEvent(kind=WatchEventKind.APPEARED, path=source, root=root))
    assert coordinator.wait_idle(timeout=5)

    moved = root / "Videos" / "clip.mp4"
    assert moved.exists()

    moved.unlink()
    coordinator.submit(WatchEvent(kind=WatchEventKind.DISAPPEARED, path=moved, root=root))
    assert coordinator.wait_idle(timeout=5)

    assert repository.list_files() == []
    kinds = [event.kind for event in subscription.drain()]
    assert kinds[-1] is FileEventKind.REMOVED


def test_events_are_held_while_store_is_unavailable(
    coordinator_factory, tmp_path: Path
) -> None:
    repository = _OutageRepository(tmp_path / "outage.db")
    repository.initialize()
    coordinator = coordinator_factory(repository)
    root = tmp_path / "inbox"
    source = _write(root / "paper.pdf")

    repository.down = True
    coordinator.submit(WatchEvent(kind=WatchEventKind.APPEARED, path=source, root=root))
    assert coordinator.wait_idle(timeout=5)
    assert not coordinator.healthy
    assert source.exists()
    with pytest.raises(StoreUnavailableError):
        coordinator.organize_file(source)

    repository.down = False
    assert _wait_for(lambda: (root / "Documents" / "paper.pdf").exists())
    assert coordinator.wait_idle(timeout=5)
    assert coordinator.healthy
    coordinator.close()
    repository.close()


def test_watch_sessions_lifecycle(
    coordinator_factory, repository: StateRepository, tmp_path: Path
) -> None:
    root = (tmp_path / "watched").resolve()
    root.mkdir()
    coordinator = coordinator_factory()

    session = coordinator.start_watching(root)
    assert session.is_active
    assert [Path(folder.path) for folder in repository.list_watched_folders()] == [root]
    with pytest.raises(AlreadyWatchingError):
        coordinator.start_watching(root)

    stopped = coordinator.stop_watching(session.session_id)
    assert stopped.is_active is False
    assert coordinator.sessions() == []
    assert repository.list_watched_folders() == []
    with pytest.raises(SessionNotFoundError):
        coordinator.stop_watching(session.session_id)


def test_watched_folder_organizes_new_files(
    coordinator_factory, channel: EventChannel, tmp_path: Path
) -> None:
    root = (tmp_path / "live").resolve()
    root.mkdir()
    coordinator = coordinator_factory()
    subscription = channel.subscribe()
    coordinator.start_watching(root)

    _write(root / "song.mp3", "la la la")

    target = root / "Music" / "song.mp3"
    assert _wait_for(lambda: target.exists(), timeout=10)
    assert coordinator.wait_idle(timeout=5)
    moved = [event for event in subscription.drain() if event.kind is FileEventKind.MOVED]
    assert [event.path for event in moved] == [str(target)]


def test_dotted_paths_map_to_a_single_record(
    coordinator_factory, repository: StateRepository, tmp_path: Path
) -> None:
    root = (tmp_path / "inbox").resolve()
    _write(root / "invoice.pdf")
    (root / "sub").mkdir()
    coordinator = coordinator_factory()

    outcome = coordinator.organize_file(root / "sub" / ".." / "invoice.pdf")
    coordinator.process_once(root, recursive=True)

    target = root / "Documents" / "invoice.pdf"
    assert outcome.destination == target
    assert [record.path for record in repository.list_files()] == [str(target)]


def test_dotted_manual_destination_is_normalized(coordinator_factory, tmp_path: Path) -> None:
    root = (tmp_path / "inbox").resolve()
    source = _write(root / "photo.png")

    outcome = coordinator_factory().organize_file(source, Path("Keep") / ".." / "Shots")

    assert outcome.destination == root / "Shots" / "photo.png"


def test_manual_store_failure_pauses_organization(coordinator_factory, tmp_path: Path) -> None:
    repository = _OutageRepository(tmp_path / "manual-outage.db")
    repository.initialize()
    coordinator = coordinator_factory(repository)
    source = _write(tmp_path / "inbox" / "paper.pdf")

    repository.down = True
    with pytest.raises(StoreUnavailableError):
        coordinator.organize_file(source)
    assert not coordinator.healthy
    assert source.exists()

    repository.down = False
    assert _wait_for(lambda: coordinator.healthy)
    outcome = coordinator.organize_file(source)
    assert outcome.destination == (tmp_path / "inbox" / "Documents" / "paper.pdf").resolve()
    coordinator.close()
    repository.close()


def test_restarted_session_rescans_without_duplicates(
    coordinator_factory, repository: StateRepository, tmp_path: Path
) -> None:
    root = (tmp_path / "watched").resolve()
    _write(root / "one.pdf")
    coordinator = coordinator_factory(scan_on_start=True)

    session = coordinator.start_watching(root, recursive=True)
    assert _wait_for(lambda: (root / "Documents" / "one.pdf").exists())
    assert coordinator.wait_idle(timeout=5)
    coordinator.stop_watching(session.session_id)
    before = {record.id: record.path for record in repository.list_files()}

    _write(root / "two.jpg")
    resumed = coordinator.start_watching(root, recursive=True)
    assert resumed.session_id != session.session_id
    assert _wait_for(lambda: (root / "Images" / "two.jpg").exists())
    assert coordinator.wait_idle(timeout=5)

    after = {record.id: record.path for record in repository.list_files()}
    assert len(after) == 2
    assert {file_id: after[file_id] for file_id in before} == before
    assert set(after.values()) == {
        str(root / "Documents" / "one.pdf"),
        str(root / "Images" / "two.jpg"),
    }
