"""Metadata store tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tidywatch.ingestion import AttributeExtractor
from tidywatch.state import (
    DEFAULT_RULES,
    DEFAULT_TAGS,
    BackupStatus,
    DuplicateTagError,
    FileRecord,
    MissingRecordError,
    StateRepository,
    StoreUnavailableError,
)


def _track(repository: StateRepository, extractor: AttributeExtractor, path: Path) -> FileRecord:
    """Write ``path`` if needed and index it.

    Args:
        repository: Store under test.
        extractor: Attribute extractor.
        path: File to index.

    Returns:
        FileRecord: The stored record.
    """
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(path.name, encoding="utf-8")
    record, _ = repository.upsert_file(extractor.describe(path))
    return record


def test_initialize_seeds_defaults_once(tmp_path: Path) -> None:
    """Default tags and rules are created on first use only."""
    db_path = tmp_path / "db" / "tidywatch.db"
    repo = StateRepository(db_path)
    repo.initialize()

    assert {tag.name for tag in repo.list_tags()} == {name for name, _ in DEFAULT_TAGS}
    rules = repo.list_rules()
    assert [rule.priority for rule in rules] == sorted(priority for *_, priority in DEFAULT_RULES)

    doomed = repo.get_tag_by_name("Music")
    assert doomed is not None
    repo.delete_tag(doomed.id)
    repo.close()

    reopened = StateRepository(db_path)
    reopened.initialize()
    try:
        assert reopened.get_tag_by_name("Music") is None
        assert len(reopened.list_rules()) == len(DEFAULT_RULES)
    finally:
        reopened.close()


def test_upsert_file_reports_creation(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    path = tmp_path / "inbox" / "notes.txt"
    path.parent.mkdir()
    path.write_text("first", encoding="utf-8")

    record, created = repository.upsert_file(extractor.describe(path))
    assert created is True
    assert record.path == str(path)
    assert record.extension == "txt"

    path.write_text("second version", encoding="utf-8")
    again, created_again = repository.upsert_file(extractor.describe(path))
    assert created_again is False
    assert again.id == record.id
    assert again.size_bytes == len("second version")


def test_update_file_location_replaces_stale_row(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    first = _track(repository, extractor, tmp_path / "a" / "one.txt")
    second = _track(repository, extractor, tmp_path / "b" / "two.txt")
    repository.set_pending_path(first.id, second.path)

    moved = repository.update_file_location(
        first.id, second.path, size_bytes=3, modified_at=datetime.now(timezone.utc)
    )

    assert moved.path == second.path
    assert moved.name == "two.txt"
    assert moved.pending_path is None
    assert repository.get_file(second.id) is None


def test_tag_lifecycle(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "report.pdf")
    tag = repository.create_tag("Urgent", "#ff0000")

    with pytest.raises(DuplicateTagError):
        repository.create_tag("urgent")
    with pytest.raises(ValueError):
        repository.create_tag("   ")

    assert repository.assign_tag(record.id, tag.id) is True
    assert repository.assign_tag(record.id, tag.id) is False
    assert [t.name for t in repository.get_file(record.id).tags] == ["Urgent"]

    assert repository.unassign_tag(record.id, tag.id) is True
    assert repository.unassign_tag(record.id, tag.id) is False

    repository.assign_tag(record.id, tag.id)
    repository.delete_tag(tag.id)
    assert repository.get_file(record.id).tags == []

    with pytest.raises(MissingRecordError):
        repository.delete_tag(tag.id)
    with pytest.raises(MissingRecordError):
        repository.assign_tag(record.id, tag.id)


def test_removing_file_drops_tag_associations(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "photo.png")
    tag = repository.get_tag_by_name("images")
    assert tag is not None
    repository.assign_tag(record.id, tag.id)

    assert repository.remove_file(record.id) is True
    assert repository.remove_file(record.id) is False
    assert repository.get_tag(tag.id) is not None


def test_search_filters_are_combined(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    invoice = _track(repository, extractor, tmp_path / "Invoice-March.pdf")
    receipt = _track(repository, extractor, tmp_path / "receipt.pdf")
    photo = _track(repository, extractor, tmp_path / "invoice-scan.png")
    finance = repository.create_tag("Finance")
    scans = repository.create_tag("Scans")
    repository.assign_tag(invoice.id, finance.id)
    repository.assign_tag(photo.id, scans.id)

    by_name = repository.search_files("INVOICE")
    assert {record.id for record in by_name} == {invoice.id, photo.id}

    by_tags = repository.search_files(tag_ids=[finance.id, scans.id])
    assert {record.id for record in by_tags} == {invoice.id, photo.id}

    combined = repository.search_files("invoice", [finance.id, scans.id], ".PDF")
    assert [record.id for record in combined] == [invoice.id]

    assert repository.search_files(tag_ids=[]) == []
    assert {r.id for r in repository.search_files()} == {invoice.id, receipt.id, photo.id}
    assert len(repository.search_files(limit=2)) == 2


def test_search_reconciles_missing_files(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    kept = _track(repository, extractor, tmp_path / "kept.txt")
    gone = _track(repository, extractor, tmp_path / "gone.txt")
    Path(gone.path).unlink()

    results = repository.search_files("txt")

    assert [record.id for record in results] == [kept.id]
    assert repository.get_file(gone.id) is None


def test_reconcile_repaths_interrupted_move(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "inbox" / "draft.txt")
    target = tmp_path / "Documents" / "draft.txt"
    target.parent.mkdir()
    repository.set_pending_path(record.id, target)
    os.replace(record.path, target)

    report = repository.reconcile()

    assert report.repathed == [record.id]
    refreshed = repository.get_file(record.id)
    assert refreshed.path == str(target)
    assert refreshed.pending_path is None


def test_reconcile_finishes_linked_move(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "inbox" / "linked.txt")
    target = tmp_path / "Documents" / "linked.txt"
    target.parent.mkdir()
    repository.set_pending_path(record.id, target)
    os.link(record.path, target)

    report = repository.reconcile()

    assert report.repathed == [record.id]
    assert not Path(record.path).exists()
    assert target.exists()
    assert repository.get_file(record.id).path == str(target)


def test_reconcile_removes_and_clears(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    gone = _track(repository, extractor, tmp_path / "gone.txt")
    stayed = _track(repository, extractor, tmp_path / "stayed.txt")
    repository.set_pending_path(stayed.id, tmp_path / "never" / "stayed.txt")
    Path(gone.path).unlink()

    report = repository.reconcile()

    assert report.checked == 2
    assert report.removed == [gone.id]
    assert report.repathed == []
    assert repository.get_file(stayed.id).pending_path is None


def test_remove_missing_path_ignores_present_files(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "here.txt")

    assert repository.remove_missing_path(record.path) is None
    assert repository.remove_missing_path(tmp_path / "unknown.txt") is None

    Path(record.path).unlink()
    removed = repository.remove_missing_path(record.path)
    assert removed is not None and removed.id == record.id


def test_rules_are_ordered_and_filtered(bare_repository: StateRepository) -> None:
    late = bare_repository.add_rule("late", "pdf", "Late", priority=50)
    early = bare_repository.add_rule("early", "pdf", "Early", priority=5)
    tied = bare_repository.add_rule("tied", "txt", "Tied", priority=50)
    bare_repository.set_rule_active(early.id, False)

    assert [rule.id for rule in bare_repository.list_rules()] == [late.id, tied.id]
    assert [rule.id for rule in bare_repository.list_rules(include_inactive=True)] == [
        early.id,
        late.id,
        tied.id,
    ]

    bare_repository.remove_rule(late.id)
    with pytest.raises(MissingRecordError):
        bare_repository.remove_rule(late.id)
    with pytest.raises(ValueError):
        bare_repository.add_rule("blank", " ", "Somewhere")


def test_watched_folders_round_trip(bare_repository: StateRepository, tmp_path: Path) -> None:
    bare_repository.set_watched_folder(tmp_path / "a", True)
    bare_repository.set_watched_folder(tmp_path / "b", True)
    bare_repository.set_watched_folder(tmp_path / "a", False)

    active = bare_repository.list_watched_folders()
    assert [folder.path for folder in active] == [str(tmp_path / "b")]
    assert len(bare_repository.list_watched_folders(active_only=False)) == 2


def test_backup_task_transitions(
    repository: StateRepository, extractor: AttributeExtractor, tmp_path: Path
) -> None:
    record = _track(repository, extractor, tmp_path / "archive.zip")
    now = datetime.now(timezone.utc)

    task = repository.upsert_backup_task(record.id, f"backups/{record.id}")
    assert task.status is BackupStatus.PENDING

    claimed = repository.claim_due_backup(now)
    assert claimed.status is BackupStatus.IN_FLIGHT
    assert repository.claim_due_backup(now) is None

    later = now + timedelta(seconds=30)
    retried = repository.retry_backup(record.id, attempt_count=1, next_attempt_at=later, reason="x")
    assert retried.status is BackupStatus.PENDING
    assert repository.claim_due_backup(now) is None
    assert repository.next_backup_due_at() == later

    claimed = repository.claim_due_backup(later)
    assert claimed is not None
    assert repository.requeue_in_flight() == 1

    done = repository.complete_backup(record.id, f"backups/{record.id}")
    assert done.status is BackupStatus.DONE
    assert done.last_error is None

    rearmed = repository.upsert_backup_task(record.id, f"backups/{record.id}")
    assert rearmed.status is BackupStatus.PENDING
    assert rearmed.attempt_count == 0

    with pytest.raises(MissingRecordError):
        repository.upsert_backup_task(record.id + 100, "missing")


def test_unreadable_database_is_unavailable(tmp_path: Path) -> None:
    db_path = tmp_path / "broken.db"
    db_path.write_bytes(b"this is not a sqlite database" * 100)
    repo = StateRepository(db_path)

    with pytest.raises(StoreUnavailableError):
        repo.initialize()
    repo.close()
