"""SQLite-backed metadata store.

The store is the single source of truth for tracked files, tags, rules, watched
folders, and backup tasks. Every thread gets its own connection; the database
runs in WAL mode so readers observe a consistent snapshot while one writer at a
time commits inside a ``BEGIN IMMEDIATE`` transaction.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from tidywatch.ingestion.models import FileAttributes

from .errors import DuplicateTagError, MissingRecordError, StateError, StoreUnavailableError
from .models import (
    BackupStatus,
    BackupTask,
    FileRecord,
    ReconcileReport,
    Rule,
    Tag,
    WatchedFolder,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_TAG_COLOR = "#808080"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    extension TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    modified_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    indexed_at TEXT NOT NULL,
    last_error TEXT,
    pending_path TEXT
);
CREATE INDEX IF NOT EXISTS idx_files_extension ON files(extension);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    color TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS file_tags (
    file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (file_id, tag_id)
);
CREATE INDEX IF NOT EXISTS idx_file_tags_tag ON file_tags(tag_id);

CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    pattern TEXT NOT NULL,
    destination_template TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 100,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS watched_folders (
    path TEXT PRIMARY KEY,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS backup_tasks (
    file_id INTEGER PRIMARY KEY,
    status TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT,
    next_attempt_at TEXT,
    last_error TEXT,
    remote_key TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_backup_status ON backup_tasks(status, next_attempt_at);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

DEFAULT_TAGS: Sequence[tuple[str, str]] = (
    ("Documents", "#4287f5"),
    ("Images", "#42f54e"),
    ("Videos", "#f54242"),
    ("Music", "#f5a742"),
    ("Archives", "#8342f5"),
)

DEFAULT_RULES: Sequence[tuple[str, str, str, int]] = (
    ("Documents", "pdf,doc,docx,txt,rtf,odt", "Documents", 10),
    ("Images", "jpg,jpeg,png,gif,bmp,webp,svg", "Images", 20),
    ("Videos", "mp4,avi,mov,wmv,mkv,webm", "Videos", 30),
    ("Music", "mp3,wav,flac,ogg,aac", "Music", 40),
    ("Archives", "zip,rar,7z,tar,gz", "Archives", 50),
)


class _Presence(Enum):
    PRESENT = "present"
    MISSING = "missing"
    UNKNOWN = "unknown"


def _probe(path: Path) -> _Presence:
    """Classify a path as present, missing, or unknown (transient I/O error)."""
    try:
        os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return _Presence.MISSING
    except OSError:
        return _Presence.UNKNOWN
    return _Presence.PRESENT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _casefold(value: object) -> object:
    return value.casefold() if isinstance(value, str) else value


def normalize_extension(value: str) -> str:
    """Return an extension lower-cased and without its leading dot."""
    return value.strip().lstrip(".").lower()


class StateRepository:
    """Persist and query organization state in a local SQLite database."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        busy_timeout: float = 5.0,
        seed_defaults: bool = True,
    ) -> None:
        """Initialize the repository.

        Args:
            db_path: Location of the SQLite database file.
            busy_timeout: Seconds SQLite waits for a competing writer.
            seed_defaults: Whether default tags and rules are created once.
        """
        self._db_path = Path(db_path).expanduser()
        self._busy_timeout = busy_timeout
        self._seed_defaults = seed_defaults
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._connections_lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._initialized = False

    @property
    def db_path(self) -> Path:
        """Return the database location."""
        return self._db_path

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def initialize(self) -> Path:
        """Create the schema and seed defaults on first use.

        Returns:
            Path: Location of the database file.

        Raises:
            StoreUnavailableError: If the database cannot be opened or migrated.
        """
        conn = self._connection()
        with self._write_lock, self._guard():
            conn.executescript(_SCHEMA)
        with self._write() as conn:
            seeded = conn.execute("SELECT value FROM meta WHERE key = 'seeded'").fetchone()
            if seeded is None:
                if self._seed_defaults:
                    conn.executemany(
                        "INSERT OR IGNORE INTO tags (name, color) VALUES (?, ?)", DEFAULT_TAGS
                    )
                    conn.executemany(
                        "INSERT INTO rules (name, pattern, destination_template, priority) "
                        "VALUES (?, ?, ?, ?)",
                        DEFAULT_RULES,
                    )
                conn.execute("INSERT INTO meta (key, value) VALUES ('seeded', ?)", (_iso(_utcnow()),))
        self._initialized = True
        return self._db_path

    def ping(self) -> None:
        """Raise ``StoreUnavailableError`` unless the database answers a trivial query."""
        with self._read() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        """Close every connection opened by this repository."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error:  # pragma: no cover - closing a broken handle
                LOGGER.debug("Ignoring error while closing a connection", exc_info=True)
        self._local = threading.local()

    # ------------------------------------------------------------------ #
    # Files                                                              #
    # ------------------------------------------------------------------ #

    def upsert_file(self, attributes: FileAttributes) -> tuple[FileRecord, bool]:
        """Insert or refresh the record stored for ``attributes.path``.

        Returns:
            tuple[FileRecord, bool]: Current record and whether it was created.
        """
        path = str(attributes.path)
        now = _iso(_utcnow())
        with self._write() as conn:
            row = conn.execute("SELECT id FROM files WHERE path = ?", (path,)).fetchone()
            if row is None:
                cursor = conn.execute(
                    "INSERT INTO files (path, name, extension, size_bytes, modified_at, "
                    "created_at, indexed_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        path,
                        attributes.name,
                        attributes.extension,
                        attributes.size_bytes,
                        _iso(attributes.modified_at),
                        now,
                        now,
                    ),
                )
                file_id = int(cursor.lastrowid)
                created = True
            else:
                file_id = int(row["id"])
                conn.execute(
                    "UPDATE files SET name = ?, extension = ?, size_bytes = ?, modified_at = ?, "
                    "indexed_at = ? WHERE id = ?",
                    (
                        attributes.name,
                        attributes.extension,
                        attributes.size_bytes,
                        _iso(attributes.modified_at),
                        now,
                        file_id,
                    ),
                )
                created = False
            record = self._load_record(conn, file_id)
        return record, created

    def update_file_location(
        self,
        file_id: int,
        path: Path | str,
        *,
        size_bytes: int,
        modified_at: datetime,
    ) -> FileRecord:
        """Point a record at its new location and clear move bookkeeping.

        Any other record claiming ``path`` is stale (the file there is now this
        one) and is removed.

        Raises:
            MissingRecordError: If ``file_id`` is unknown.
        """
        target = Path(path)
        with self._write() as conn:
            self._require_file(conn, file_id)
            conn.execute("DELETE FROM files WHERE path = ? AND id != ?", (str(target), file_id))
            conn.execute(
                "UPDATE files SET path = ?, name = ?, extension = ?, size_bytes = ?, "
                "modified_at = ?, indexed_at = ?, pending_path = NULL, last_error = NULL "
                "WHERE id = ?",
                (
                    str(target),
                    target.name,
                    normalize_extension(target.suffix),
                    size_bytes,
                    _iso(modified_at),
                    _iso(_utcnow()),
                    file_id,
                ),
            )
            return self._load_record(conn, file_id)

    def set_pending_path(self, file_id: int, pending_path: Path | str | None) -> None:
        """Record (or clear) the destination of a move about to happen."""
        value = str(pending_path) if pending_path is not None else None
        with self._write() as conn:
            self._require_file(conn, file_id)
            conn.execute("UPDATE files SET pending_path = ? WHERE id = ?", (value, file_id))

    def record_failure(self, file_id: int, reason: str | None) -> None:
        """Store (or clear) the reason of the last failed organization attempt."""
        with self._write() as conn:
            self._require_file(conn, file_id)
            conn.execute("UPDATE files SET last_error = ? WHERE id = ?", (reason, file_id))

    def get_file(self, file_id: int) -> Optional[FileRecord]:
        """Return the record for ``file_id`` if it exists."""
        with self._read() as conn:
            row = conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
            if row is None:
                return None
            return self._record_from_row(conn, row)

    def get_file_by_path(self, path: Path | str) -> Optional[FileRecord]:
        """Return the record stored for ``path`` if any."""
        with self._read() as conn:
            row = conn.execute("SELECT * FROM files WHERE path = ?", (str(path),)).fetchone()
            if row is None:
                return None
            return self._record_from_row(conn, row)

    def list_files(self) -> list[FileRecord]:
        """Return every record without reconciliation."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM files ORDER BY id").fetchall()
            return [self._record_from_row(conn, row) for row in rows]

    def remove_file(self, file_id: int) -> bool:
        """Delete a record; tag associations go with it.

        Returns:
            bool: Whether a record was removed.
        """
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            return cursor.rowcount > 0

    def search_files(
        self,
        query: str | None = None,
        tag_ids: Iterable[int] | None = None,
        extension: str | None = None,
        *,
        limit: int | None = None,
    ) -> list[FileRecord]:
        """Return records matching every provided filter, ordered by name.

        Stale records encountered along the way are reconciled first, so the
        result only contains records whose path exists (or whose existence
        could not be determined because of a transient error).

        Args:
            query: Case-insensitive substring of the file name.
            tag_ids: Records carrying any of these tags match.
            extension: Exact extension, with or without the leading dot.
            limit: Optional maximum number of results.

        Returns:
            list[FileRecord]: Matching records.
        """
        tag_list = sorted(set(tag_ids)) if tag_ids is not None else None
        if tag_list is not None and not tag_list:
            return []

        records = self._run_search(query, tag_list, extension, limit)
        stale = [record for record in records if _probe(Path(record.path)) is _Presence.MISSING]
        if not stale:
            return records

        self.reconcile(stale)
        return [
            record
            for record in self._run_search(query, tag_list, extension, limit)
            if _probe(Path(record.path)) is not _Presence.MISSING
        ]

    def reconcile(self, records: Iterable[FileRecord] | None = None) -> ReconcileReport:
        """Repair records whose path no longer matches the filesystem.

        A record with a missing path is re-pathed to ``pending_path`` when that
        file exists (a move whose commit was interrupted) and removed otherwise.
        A record whose path still exists but also has a hard-linked
        ``pending_path`` finishes the interrupted move. Paths that cannot be
        probed because of a transient error are skipped.

        Args:
            records: Records to check; defaults to every record.

        Returns:
            ReconcileReport: Identifiers grouped by action taken.
        """
        targets = list(records) if records is not None else self.list_files()
        report = ReconcileReport(checked=len(targets))
        for record in targets:
            current = Path(record.path)
            pending = Path(record.pending_path) if record.pending_path else None
            presence = _probe(current)

            if presence is _Presence.UNKNOWN:
                report.skipped.append(record.id)
                continue

            if presence is _Presence.PRESENT:
                if pending is None:
                    continue
                if _probe(pending) is _Presence.PRESENT and _same_file(current, pending):
                    try:
                        current.unlink()
                    except OSError as exc:
                        LOGGER.warning("Cannot finish move of %s: %s", current, exc)
                        report.skipped.append(record.id)
                        continue
                    self._repath(record.id, pending)
                    report.repathed.append(record.id)
                else:
                    self.set_pending_path(record.id, None)
                continue

            if pending is not None and _probe(pending) is _Presence.PRESENT:
                self._repath(record.id, pending)
                report.repathed.append(record.id)
                LOGGER.info("Re-pathed record %s to %s", record.id, pending)
            elif self.remove_file(record.id):
                report.removed.append(record.id)
                LOGGER.info("Removed stale record %s for %s", record.id, current)
        return report

    def remove_missing_path(self, path: Path | str) -> Optional[FileRecord]:
        """Reconcile the record stored for a path reported as gone.

        Returns:
            Optional[FileRecord]: The removed record, or ``None`` when nothing was
            removed (unknown path, file still present, or re-pathed).
        """
        record = self.get_file_by_path(path)
        if record is None:
            return None
        report = self.reconcile([record])
        return record if record.id in report.removed else None

    # ------------------------------------------------------------------ #
    # Tags                                                               #
    # ------------------------------------------------------------------ #

    def list_tags(self) -> list[Tag]:
        """Return every tag ordered by name."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM tags ORDER BY name COLLATE NOCASE").fetchall()
            return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        return Tag(id=row["id"], name=row["name"], color=row["color"]) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM tags WHERE name = ?", (name.strip(),)).fetchone()
        return Tag(id=row["id"], name=row["name"], color=row["color"]) if row else None

    def create_tag(self, name: str, color: str = DEFAULT_TAG_COLOR) -> Tag:
        """Create a tag.

        Raises:
            ValueError: If the name is blank.
            DuplicateTagError: If a tag with the same name (ignoring case) exists.
        """
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Tag name must not be empty.")
        try:
            with self._write() as conn:
                cursor = conn.execute(
                    "INSERT INTO tags (name, color) VALUES (?, ?)", (cleaned, color)
                )
                return Tag(id=int(cursor.lastrowid), name=cleaned, color=color)
        except sqlite3.IntegrityError as exc:
            raise DuplicateTagError(f"Tag '{cleaned}' already exists.") from exc

    def delete_tag(self, tag_id: int) -> None:
        """Delete a tag and its associations; files are untouched.

        Raises:
            MissingRecordError: If the tag does not exist.
        """
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
            if cursor.rowcount == 0:
                raise MissingRecordError(f"Tag {tag_id} does not exist.")

    def assign_tag(self, file_id: int, tag_id: int) -> bool:
        """Attach a tag to a file.

        Returns:
            bool: Whether a new association was created.

        Raises:
            MissingRecordError: If the file or tag does not exist.
        """
        with self._write() as conn:
            self._require_file(conn, file_id)
            if conn.execute("SELECT 1 FROM tags WHERE id = ?", (tag_id,)).fetchone() is None:
                raise MissingRecordError(f"Tag {tag_id} does not exist.")
            cursor = conn.execute(
                "INSERT OR IGNORE INTO file_tags (file_id, tag_id) VALUES (?, ?)",
                (file_id, tag_id),
            )
            return cursor.rowcount > 0

    def unassign_tag(self, file_id: int, tag_id: int) -> bool:
        """Detach a tag from a file, returning whether an association existed."""
        with self._write() as conn:
            cursor = conn.execute(
                "DELETE FROM file_tags WHERE file_id = ? AND tag_id = ?", (file_id, tag_id)
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------ #
    # Rules                                                              #
    # ------------------------------------------------------------------ #

    def list_rules(self, *, include_inactive: bool = False) -> tuple[Rule, ...]:
        """Return an immutable snapshot of rules ordered by priority."""
        sql = "SELECT * FROM rules"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY priority, id"
        with self._read() as conn:
            rows = conn.execute(sql).fetchall()
        return tuple(self._rule_from_row(row) for row in rows)

    def add_rule(
        self,
        name: str,
        pattern: str,
        destination_template: str,
        *,
        priority: int = 100,
        is_active: bool = True,
    ) -> Rule:
        """Persist a new rule.

        Raises:
            ValueError: If the pattern or destination is blank.
        """
        if not pattern.strip():
            raise ValueError("Rule pattern must not be empty.")
        if not destination_template.strip():
            raise ValueError("Rule destination must not be empty.")
        with self._write() as conn:
            cursor = conn.execute(
                "INSERT INTO rules (name, pattern, destination_template, priority, is_active) "
                "VALUES (?, ?, ?, ?, ?)",
                (name.strip() or pattern.strip(), pattern.strip(), destination_template.strip(),
                 priority, int(is_active)),
            )
            row = conn.execute("SELECT * FROM rules WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return self._rule_from_row(row)

    def remove_rule(self, rule_id: int) -> None:
        """Delete a rule.

        Raises:
            MissingRecordError: If the rule does not exist.
        """
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise MissingRecordError(f"Rule {rule_id} does not exist.")

    def set_rule_active(self, rule_id: int, active: bool) -> None:
        with self._write() as conn:
            cursor = conn.execute(
                "UPDATE rules SET is_active = ? WHERE id = ?", (int(active), rule_id)
            )
            if cursor.rowcount == 0:
                raise MissingRecordError(f"Rule {rule_id} does not exist.")

    # ------------------------------------------------------------------ #
    # Watched folders                                                    #
    # ------------------------------------------------------------------ #

    def set_watched_folder(self, path: Path | str, active: bool) -> None:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO watched_folders (path, is_active) VALUES (?, ?) "
                "ON CONFLICT(path) DO UPDATE SET is_active = excluded.is_active",
                (str(path), int(active)),
            )

    def list_watched_folders(self, *, active_only: bool = True) -> list[WatchedFolder]:
        sql = "SELECT * FROM watched_folders"
        if active_only:
            sql += " WHERE is_active = 1"
        with self._read() as conn:
            rows = conn.execute(sql + " ORDER BY path").fetchall()
        return [WatchedFolder(path=row["path"], is_active=bool(row["is_active"])) for row in rows]

    # ------------------------------------------------------------------ #
    # Backup tasks                                                       #
    # ------------------------------------------------------------------ #

    def upsert_backup_task(self, file_id: int, remote_key: str) -> BackupTask:
        """Create a pending task, or re-arm a terminal one.

        Pending and in-flight tasks are returned unchanged.

        Raises:
            MissingRecordError: If the file is not tracked.
        """
        with self._write() as conn:
            self._require_file(conn, file_id)
            row = conn.execute(
                "SELECT * FROM backup_tasks WHERE file_id = ?", (file_id,)
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO backup_tasks (file_id, status, remote_key, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (file_id, BackupStatus.PENDING.value, remote_key, _iso(_utcnow())),
                )
            elif row["status"] in (BackupStatus.DONE.value, BackupStatus.FAILED.value):
                conn.execute(
                    "UPDATE backup_tasks SET status = ?, attempt_count = 0, last_error = NULL, "
                    "next_attempt_at = NULL, remote_key = ? WHERE file_id = ?",
                    (BackupStatus.PENDING.value, remote_key, file_id),
                )
            return self._load_backup(conn, file_id)

    def get_backup_task(self, file_id: int) -> Optional[BackupTask]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM backup_tasks WHERE file_id = ?", (file_id,)
            ).fetchone()
        return self._backup_from_row(row) if row else None

    def list_backup_tasks(self, status: BackupStatus | None = None) -> list[BackupTask]:
        with self._read() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM backup_tasks ORDER BY file_id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM backup_tasks WHERE status = ? ORDER BY file_id",
                    (status.value,),
                ).fetchall()
        return [self._backup_from_row(row) for row in rows]

    def claim_due_backup(self, now: datetime) -> Optional[BackupTask]:
        """Move the oldest due pending task to in-flight and return it."""
        with self._write() as conn:
            row = conn.execute(
                "SELECT file_id FROM backup_tasks WHERE status = ? "
                "AND (next_attempt_at IS NULL OR next_attempt_at <= ?) "
                "ORDER BY COALESCE(next_attempt_at, ''), created_at, file_id LIMIT 1",
                (BackupStatus.PENDING.value, _iso(now)),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE backup_tasks SET status = ?, last_attempt_at = ? WHERE file_id = ?",
                (BackupStatus.IN_FLIGHT.value, _iso(now), row["file_id"]),
            )
            return self._load_backup(conn, int(row["file_id"]))

    def next_backup_due_at(self) -> Optional[datetime]:
        """Return when the earliest pending task becomes due, if any."""
        with self._read() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS waiting, MIN(COALESCE(next_attempt_at, '')) AS due "
                "FROM backup_tasks WHERE status = ?",
                (BackupStatus.PENDING.value,),
            ).fetchone()
        if not row["waiting"]:
            return None
        return _parse(row["due"]) or datetime.min.replace(tzinfo=timezone.utc)

    def complete_backup(self, file_id: int, remote_key: str) -> BackupTask:
        return self._update_backup(
            file_id,
            status=BackupStatus.DONE,
            remote_key=remote_key,
            last_error=None,
            next_attempt_at=None,
        )

    def retry_backup(
        self, file_id: int, *, attempt_count: int, next_attempt_at: datetime, reason: str
    ) -> BackupTask:
        return self._update_backup(
            file_id,
            status=BackupStatus.PENDING,
            attempt_count=attempt_count,
            next_attempt_at=next_attempt_at,
            last_error=reason,
        )

    def fail_backup(self, file_id: int, *, attempt_count: int, reason: str) -> BackupTask:
        return self._update_backup(
            file_id,
            status=BackupStatus.FAILED,
            attempt_count=attempt_count,
            next_attempt_at=None,
            last_error=reason,
        )

    def release_backup(self, file_id: int) -> BackupTask:
        """Return an in-flight task to pending without counting an attempt."""
        return self._update_backup(file_id, status=BackupStatus.PENDING)

    def requeue_in_flight(self) -> int:
        """Return every in-flight task to pending."""
        with self._write() as conn:
            cursor = conn.execute(
                "UPDATE backup_tasks SET status = ? WHERE status = ?",
                (BackupStatus.PENDING.value, BackupStatus.IN_FLIGHT.value),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            return conn
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.create_function("casefold", 1, _casefold, deterministic=True)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except (sqlite3.Error, OSError) as exc:
            raise StoreUnavailableError(f"Cannot open metadata store {self._db_path}: {exc}") from exc
        self._local.connection = conn
        with self._connections_lock:
            self._connections.append(conn)
        return conn

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except (sqlite3.IntegrityError, sqlite3.ProgrammingError):
            raise
        except sqlite3.DatabaseError as exc:
            raise StoreUnavailableError(f"Metadata store unavailable: {exc}") from exc

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        with self._guard():
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            conn = self._connection()
            with self._guard():
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")

    def _require_file(self, conn: sqlite3.Connection, file_id: int) -> None:
        if conn.execute("SELECT 1 FROM files WHERE id = ?", (file_id,)).fetchone() is None:
            raise MissingRecordError(f"File {file_id} is not tracked.")

    def _repath(self, file_id: int, path: Path) -> None:
        stat = path.stat()
        self.update_file_location(
            file_id,
            path,
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def _run_search(
        self,
        query: str | None,
        tag_ids: list[int] | None,
        extension: str | None,
        limit: int | None,
    ) -> list[FileRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if query:
            clauses.append("instr(casefold(f.name), ?) > 0")
            params.append(query.casefold())
        if tag_ids:
            placeholders = ", ".join("?" for _ in tag_ids)
            clauses.append(
                f"f.id IN (SELECT file_id FROM file_tags WHERE tag_id IN ({placeholders}))"
            )
            params.extend(tag_ids)
        if extension:
            clauses.append("f.extension = ?")
            params.append(normalize_extension(extension))

        sql = "SELECT f.* FROM files f"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY f.name COLLATE NOCASE, f.id"
        if limit is not None and limit > 0:
            sql += " LIMIT ?"
            params.append(limit)

        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._record_from_row(conn, row) for row in rows]

    def _load_record(self, conn: sqlite3.Connection, file_id: int) -> FileRecord:
        row = conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        if row is None:
            raise MissingRecordError(f"File {file_id} is not tracked.")
        return self._record_from_row(conn, row)

    def _record_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> FileRecord:
        tag_rows = conn.execute(
            "SELECT t.id, t.name, t.color FROM tags t JOIN file_tags ft ON t.id = ft.tag_id "
            "WHERE ft.file_id = ? ORDER BY t.name COLLATE NOCASE",
            (row["id"],),
        ).fetchall()
        return FileRecord(
            id=row["id"],
            path=row["path"],
            name=row["name"],
            extension=row["extension"],
            size_bytes=row["size_bytes"],
            modified_at=_parse(row["modified_at"]),
            created_at=_parse(row["created_at"]),
            indexed_at=_parse(row["indexed_at"]),
            tags=[Tag(id=t["id"], name=t["name"], color=t["color"]) for t in tag_rows],
            last_error=row["last_error"],
            pending_path=row["pending_path"],
        )

    def _rule_from_row(self, row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"],
            name=row["name"],
            pattern=row["pattern"],
            destination_template=row["destination_template"],
            priority=row["priority"],
            is_active=bool(row["is_active"]),
        )

    def _load_backup(self, conn: sqlite3.Connection, file_id: int) -> BackupTask:
        row = conn.execute("SELECT * FROM backup_tasks WHERE file_id = ?", (file_id,)).fetchone()
        if row is None:
            raise MissingRecordError(f"No backup task for file {file_id}.")
        return self._backup_from_row(row)

    def _backup_from_row(self, row: sqlite3.Row) -> BackupTask:
        return BackupTask(
            file_id=row["file_id"],
            status=BackupStatus(row["status"]),
            attempt_count=row["attempt_count"],
            last_attempt_at=_parse(row["last_attempt_at"]),
            next_attempt_at=_parse(row["next_attempt_at"]),
            last_error=row["last_error"],
            remote_key=row["remote_key"],
            created_at=_parse(row["created_at"]),
        )

    def _update_backup(self, file_id: int, **changes: object) -> BackupTask:
        assignments: list[str] = []
        params: list[object] = []
        for column, value in changes.items():
            assignments.append(f"{column} = ?")
            if isinstance(value, BackupStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _iso(value)
            params.append(value)
        params.append(file_id)
        with self._write() as conn:
            cursor = conn.execute(
                f"UPDATE backup_tasks SET {', '.join(assignments)} WHERE file_id = ?", params
            )
            if cursor.rowcount == 0:
                raise MissingRecordError(f"No backup task for file {file_id}.")
            return self._load_backup(conn, file_id)


def _same_file(first: Path, second: Path) -> bool:
    try:
        return os.path.samefile(first, second)
    except OSError:
        return False


__all__ = [
    "StateRepository",
    "StateError",
    "DEFAULT_TAGS",
    "DEFAULT_RULES",
    "DEFAULT_TAG_COLOR",
    "normalize_extension",
]
