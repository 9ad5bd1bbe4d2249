"""Durable, retrying backup queue."""

from __future__ import annotations

import logging
import os
import random
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from tidywatch.config.models import BackupSettings
from tidywatch.events import EventChannel, FileEvent, FileEventKind
from tidywatch.organization import disambiguate
from tidywatch.state import (
    BackupStatus,
    BackupTask,
    MissingRecordError,
    StateRepository,
    StoreUnavailableError,
)

from .errors import BackupError, RemoteUnavailableError
from .remote import RemoteStore

LOGGER = logging.getLogger(__name__)

UNTRACKED_REASON = "file is no longer tracked"
_MAX_RESTORE_NAMES = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupQueue:
    """Mirror tracked files to a remote store from a single worker thread.

    Tasks live in the metadata store, so they survive restarts: tasks found
    in flight at start-up were interrupted and return to pending.
    """

    def __init__(
        self,
        repository: StateRepository,
        remote: Optional[RemoteStore],
        settings: BackupSettings,
        *,
        events: Optional[EventChannel] = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the queue.

        Args:
            repository: Store holding backup tasks and file records.
            remote: Destination of uploads; tasks can be enqueued without one
                but are only attempted once it is set.
            settings: Backup section of the configuration.
            events: Optional channel receiving ``backup_done``/``backup_failed``.
            clock: Returns the current UTC time.
            rng: Returns a float in ``[0, 1)`` used for jitter.
        """
        self._repository = repository
        self._remote = remote
        self._settings = settings
        self._events = events
        self._clock = clock
        self._rng = rng
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stranded = False

    @property
    def remote(self) -> Optional[RemoteStore]:
        return self._remote

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def key_for(self, file_id: int) -> str:
        """Return the remote object key of a file, independent of its path."""
        prefix = self._settings.prefix.strip("/")
        return f"{prefix}/{file_id}" if prefix else str(file_id)

    def enqueue(self, file_id: int) -> BackupTask:
        """Schedule a backup of ``file_id``.

        Re-enqueuing a done or failed task resets it to pending; pending and
        in-flight tasks are left alone.

        Raises:
            MissingRecordError: If the file is not tracked.
        """
        task = self._repository.upsert_backup_task(file_id, self.key_for(file_id))
        self._wake.set()
        return task

    def status(self, file_id: int) -> BackupTask:
        """Return the backup task of ``file_id``.

        Raises:
            MissingRecordError: If the file was never enqueued.
        """
        task = self._repository.get_backup_task(file_id)
        if task is None:
            raise MissingRecordError(f"No backup task for file {file_id}.")
        return task

    def restore(self, file_id: int, destination_folder: Optional[Path] = None) -> Path:
        """Download the completed backup of ``file_id`` into a folder.

        The copy keeps the tracked file name and never replaces an existing
        file; a taken name becomes ``name (n).ext``. The download lands under a
        hidden staging name first, so a partial copy never carries the real
        name.

        Args:
            file_id: Record whose backup is restored.
            destination_folder: Folder receiving the copy; defaults to the
                folder the file is tracked in.

        Returns:
            Path: Location of the restored copy.

        Raises:
            MissingRecordError: If the file is not tracked or was never enqueued.
            BackupError: If the backup is not complete or cannot be downloaded.
        """
        remote = self._require_remote()
        task = self.status(file_id)
        if task.status is not BackupStatus.DONE:
            raise BackupError(f"Backup of file {file_id} is {task.status.value}; nothing to restore.")
        record = self._repository.get_file(file_id)
        if record is None:
            raise MissingRecordError(f"File {file_id} is not tracked.")

        tracked = Path(record.path)
        folder = (Path(destination_folder).expanduser() if destination_folder else tracked.parent).resolve()
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Cannot create restore folder {folder}: {exc}") from exc

        staging = folder / f".{tracked.name}.restoring"
        try:
            remote.download(task.remote_key or self.key_for(file_id), staging)
            restored = _claim_free_name(staging, folder / tracked.name)
        except OSError as exc:
            raise BackupError(f"Cannot write restored copy into {folder}: {exc}") from exc
        finally:
            staging.unlink(missing_ok=True)
        LOGGER.info("Restored file %s from %s to %s", file_id, remote.describe(), restored)
        return restored

    def delay_for(self, attempt: int) -> float:
        """Return the retry delay after ``attempt`` failures (equal jitter)."""
        exponent = max(0, attempt - 1)
        capped = min(self._settings.max_delay_seconds, self._settings.base_delay_seconds * (2**exponent))
        half = capped / 2
        return half + self._rng() * half

    def run_pending(self, now: Optional[datetime] = None) -> List[BackupTask]:
        """Attempt every task that is due at ``now``.

        Each task is attempted at most once per call. Stop requests are honoured
        between attempts.

        Returns:
            List[BackupTask]: Task states after their attempts.
        """
        remote = self._require_remote()
        moment = now or self._clock()
        results: List[BackupTask] = []
        while not self._stop_event.is_set():
            task = self._repository.claim_due_backup(moment)
            if task is None:
                break
            results.append(self._attempt(remote, task, moment))
        return results

    def start(self) -> None:
        """Recover interrupted tasks and start the worker thread."""
        if self.running:
            return
        self._require_remote()
        recovered = self._repository.requeue_in_flight()
        if recovered:
            LOGGER.info("Returned %d interrupted backup task(s) to pending", recovered)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="tidywatch-backup", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the worker after its current attempt."""
        self._stop_event.set()
        self._wake.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=timeout)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run_loop(self) -> None:
        poll = self._settings.poll_seconds
        while not self._stop_event.is_set():
            wait = poll
            try:
                if self._stranded:
                    self._repository.requeue_in_flight()
                    self._stranded = False
                self.run_pending()
                due = self._repository.next_backup_due_at()
            except StoreUnavailableError as exc:
                LOGGER.warning("Backup worker waiting for the metadata store: %s", exc)
                due = None
            if due is not None:
                wait = min(poll, max(0.0, (due - self._clock()).total_seconds()))
            self._wake.wait(timeout=wait)
            self._wake.clear()

    def _attempt(self, remote: RemoteStore, task: BackupTask, now: datetime) -> BackupTask:
        try:
            return self._transfer(remote, task, now)
        except StoreUnavailableError:
            self._release(task)
            raise

    def _release(self, task: BackupTask) -> None:
        try:
            self._repository.release_backup(task.file_id)
        except StoreUnavailableError as exc:
            LOGGER.warning("Backup of file %s left in flight until the store recovers: %s", task.file_id, exc)
            self._stranded = True

    def _transfer(self, remote: RemoteStore, task: BackupTask, now: datetime) -> BackupTask:
        key = task.remote_key or self.key_for(task.file_id)
        record = self._repository.get_file(task.file_id)
        if record is None:
            return self._fail(task, UNTRACKED_REASON, attempts=task.attempt_count)

        try:
            remote.upload(Path(record.path), key)
        except RemoteUnavailableError as exc:
            return self._retry_or_fail(task, str(exc), now)
        except BackupError as exc:
            return self._fail(task, str(exc), attempts=task.attempt_count + 1)
        except OSError as exc:
            return self._retry_or_fail(task, f"Cannot read {record.path}: {exc}", now)

        done = self._repository.complete_backup(task.file_id, key)
        LOGGER.info("Backed up file %s to %s/%s", task.file_id, remote.describe(), key)
        self._publish(FileEventKind.BACKUP_DONE, done, record.path)
        return done

    def _require_remote(self) -> RemoteStore:
        if self._remote is None:
            raise BackupError("No backup destination is configured.")
        return self._remote

    def _retry_or_fail(self, task: BackupTask, reason: str, now: datetime) -> BackupTask:
        attempts = task.attempt_count + 1
        if attempts >= self._settings.max_attempts:
            return self._fail(task, reason, attempts=attempts)
        delay = self.delay_for(attempts)
        LOGGER.info(
            "Backup of file %s failed (attempt %d/%d), retrying in %.1fs: %s",
            task.file_id,
            attempts,
            self._settings.max_attempts,
            delay,
            reason,
        )
        return self._repository.retry_backup(
            task.file_id,
            attempt_count=attempts,
            next_attempt_at=now + timedelta(seconds=delay),
            reason=reason,
        )

    def _fail(self, task: BackupTask, reason: str, *, attempts: int) -> BackupTask:
        LOGGER.warning("Backup of file %s failed permanently: %s", task.file_id, reason)
        failed = self._repository.fail_backup(task.file_id, attempt_count=attempts, reason=reason)
        self._publish(FileEventKind.BACKUP_FAILED, failed, None)
        return failed

    def _publish(self, kind: FileEventKind, task: BackupTask, path: Optional[str]) -> None:
        if self._events is None:
            return
        self._events.publish(
            FileEvent(kind=kind, file_id=task.file_id, path=path, reason=task.last_error)
        )


def _claim_free_name(staging: Path, candidate: Path) -> Path:
    for counter in range(_MAX_RESTORE_NAMES):
        target = disambiguate(candidate, counter)
        try:
            os.link(staging, target)
        except FileExistsError:
            continue
        except OSError:
            # Hard links are unavailable on some mounts.
            if os.path.lexists(target):
                continue
            os.rename(staging, target)
        return target
    raise BackupError(f"No free name left for {candidate} in {candidate.parent}.")


__all__ = ["BackupQueue", "UNTRACKED_REASON"]
