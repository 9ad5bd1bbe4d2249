"""Engine facade wiring the store, coordinator, backup queue, and events."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from tidywatch.backup import BackupQueue, RemoteStore, build_remote_store
from tidywatch.config.models import TidyConfig
from tidywatch.events import EventChannel, EventSubscription, FileEvent, FileEventKind
from tidywatch.organization import OrganizationCoordinator, OrganizationOutcome
from tidywatch.state import (
    DEFAULT_TAG_COLOR,
    BackupTask,
    FileRecord,
    ReconcileReport,
    Rule,
    StateRepository,
    Tag,
)
from tidywatch.watch import WatchSession

LOGGER = logging.getLogger(__name__)


class Engine:
    """Entry point exposing every operation of the organization engine.

    The engine owns its components; use it as a context manager (or call
    ``close``) so watch sessions and worker threads shut down cleanly.
    """

    def __init__(
        self,
        config: TidyConfig,
        *,
        repository: Optional[StateRepository] = None,
        remote: Optional[RemoteStore] = None,
        start_backup_worker: Optional[bool] = None,
    ) -> None:
        """Build and start the engine.

        Args:
            config: Effective configuration.
            repository: Optional pre-built store; created from ``config.store`` otherwise.
            remote: Optional remote store; built from ``config.backup`` when needed.
            start_backup_worker: Whether the backup worker thread runs; defaults
                to ``config.backup.enabled``.
        """
        self._config = config
        self._events = EventChannel(config.events.queue_size)
        if remote is None and config.backup.enabled:
            remote = build_remote_store(config.backup)
        self._repository = repository or StateRepository(
            config.store.path,
            busy_timeout=config.store.busy_timeout_seconds,
            seed_defaults=config.store.seed_defaults,
        )
        coordinator: Optional[OrganizationCoordinator] = None
        try:
            self._repository.initialize()
            coordinator = self._coordinator = OrganizationCoordinator(
                self._repository,
                config.organization,
                store_settings=config.store,
                watch_settings=config.watch,
                events=self._events,
            )
            self._backup = BackupQueue(self._repository, remote, config.backup, events=self._events)

            run_worker = config.backup.enabled if start_backup_worker is None else start_backup_worker
            if run_worker:
                self._backup.start()
        except Exception:
            if coordinator is not None:
                coordinator.close()
            self._repository.close()
            raise

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def config(self) -> TidyConfig:
        return self._config

    @property
    def repository(self) -> StateRepository:
        return self._repository

    @property
    def coordinator(self) -> OrganizationCoordinator:
        return self._coordinator

    # ------------------------------------------------------------------ #
    # Watching and organizing                                            #
    # ------------------------------------------------------------------ #

    def start_watching(
        self,
        path: Path,
        *,
        debounce_seconds: Optional[float] = None,
        recursive: Optional[bool] = None,
    ) -> WatchSession:
        return self._coordinator.start_watching(
            Path(path), debounce_seconds=debounce_seconds, recursive=recursive
        )

    def stop_watching(self, session_id: str) -> WatchSession:
        return self._coordinator.stop_watching(session_id)

    def sessions(self) -> List[WatchSession]:
        return self._coordinator.sessions()

    def watched_folders(self) -> List[Path]:
        """Return the roots that were being watched when the last run ended."""
        return [Path(folder.path) for folder in self._repository.list_watched_folders()]

    def organize(self, path: Path, destination_folder: Optional[Path] = None) -> OrganizationOutcome:
        """Organize one file and return the full outcome."""
        return self._coordinator.organize_file(Path(path), destination_folder)

    def organize_file(self, path: Path, destination_folder: Optional[Path] = None) -> Path:
        """Organize one file and return its new location.

        Raises:
            OrganizationError: If the file cannot be organized.
            StoreUnavailableError: If the metadata store is unavailable.
        """
        outcome = self.organize(path, destination_folder)
        return outcome.destination or Path(path)

    def process_once(self, root: Path, *, recursive: Optional[bool] = None) -> List[OrganizationOutcome]:
        return self._coordinator.process_once(Path(root), recursive=recursive)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return self._coordinator.wait_idle(timeout)

    # ------------------------------------------------------------------ #
    # Tags                                                               #
    # ------------------------------------------------------------------ #

    def get_tags(self) -> List[Tag]:
        return self._repository.list_tags()

    def create_tag(self, name: str, color: str = DEFAULT_TAG_COLOR) -> Tag:
        return self._repository.create_tag(name, color)

    def delete_tag(self, tag_id: int) -> None:
        self._repository.delete_tag(tag_id)
        self._events.publish(FileEvent(kind=FileEventKind.UNTAGGED, tag_id=tag_id))

    def assign_tag(self, file_id: int, tag_id: int) -> bool:
        """Attach a tag, publishing ``tagged`` when the association is new."""
        created = self._repository.assign_tag(file_id, tag_id)
        if created:
            record = self._repository.get_file(file_id)
            self._events.publish(
                FileEvent(
                    kind=FileEventKind.TAGGED,
                    file_id=file_id,
                    tag_id=tag_id,
                    path=record.path if record else None,
                )
            )
        return created

    def unassign_tag(self, file_id: int, tag_id: int) -> bool:
        removed = self._repository.unassign_tag(file_id, tag_id)
        if removed:
            self._events.publish(FileEvent(kind=FileEventKind.UNTAGGED, file_id=file_id, tag_id=tag_id))
        return removed

    # ------------------------------------------------------------------ #
    # Search, rules, reconciliation                                      #
    # ------------------------------------------------------------------ #

    def search_files(
        self,
        query: Optional[str] = None,
        tag_ids: Optional[Iterable[int]] = None,
        extension: Optional[str] = None,
        *,
        limit: Optional[int] = None,
    ) -> List[FileRecord]:
        return self._repository.search_files(query, tag_ids, extension, limit=limit)

    def list_rules(self, *, include_inactive: bool = False) -> tuple[Rule, ...]:
        return self._repository.list_rules(include_inactive=include_inactive)

    def add_rule(
        self,
        pattern: str,
        destination_template: str,
        *,
        name: Optional[str] = None,
        priority: int = 100,
        is_active: bool = True,
    ) -> Rule:
        return self._repository.add_rule(
            name or pattern,
            pattern,
            destination_template,
            priority=priority,
            is_active=is_active,
        )

    def remove_rule(self, rule_id: int) -> None:
        self._repository.remove_rule(rule_id)

    def reconcile(self) -> ReconcileReport:
        """Repair every stale record and publish what changed."""
        report = self._repository.reconcile()
        for file_id in report.removed:
            self._events.publish(FileEvent(kind=FileEventKind.REMOVED, file_id=file_id))
        for file_id in report.repathed:
            record = self._repository.get_file(file_id)
            self._events.publish(
                FileEvent(kind=FileEventKind.MOVED, file_id=file_id, path=record.path if record else None)
            )
        return report

    # ------------------------------------------------------------------ #
    # Backup                                                             #
    # ------------------------------------------------------------------ #

    def enqueue_backup(self, file_id: int) -> BackupTask:
        return self._backup.enqueue(file_id)

    def backup_status(self, file_id: int) -> BackupTask:
        return self._backup.status(file_id)

    def list_backups(self) -> List[BackupTask]:
        return self._repository.list_backup_tasks()

    def run_backups(self, now: Optional[datetime] = None) -> List[BackupTask]:
        """Attempt every due backup once in the calling thread.

        Raises:
            BackupError: If no backup destination is configured.
        """
        return self._queue_with_remote().run_pending(now)

    def restore_backup(self, file_id: int, destination_folder: Optional[Path] = None) -> Path:
        """Download the backup of ``file_id``; see ``BackupQueue.restore``.

        Raises:
            MissingRecordError: If the file is not tracked or was never enqueued.
            BackupError: If no destination is configured or the download fails.
        """
        return self._queue_with_remote().restore(file_id, destination_folder)

    def _queue_with_remote(self) -> BackupQueue:
        if self._backup.remote is None:
            self._backup = BackupQueue(
                self._repository,
                build_remote_store(self._config.backup),
                self._config.backup,
                events=self._events,
            )
        return self._backup

    # ------------------------------------------------------------------ #
    # Events and lifecycle                                               #
    # ------------------------------------------------------------------ #

    def subscribe(self) -> EventSubscription:
        return self._events.subscribe()

    @property
    def events(self) -> EventChannel:
        return self._events

    def close(self) -> None:
        """Stop sessions and workers, then close the store."""
        try:
            self._backup.stop(timeout=5)
            self._coordinator.close()
        finally:
            self._repository.close()


__all__ = ["Engine"]
