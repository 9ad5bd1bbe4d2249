"""Data models persisted by the metadata store."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Tag(BaseModel):
    """User-defined label attached to files."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    color: str


class FileRecord(BaseModel):
    """Metadata describing one tracked file.

    Attributes:
        id: Stable surrogate key assigned on first sight.
        path: Current absolute location of the file.
        name: File name, cached for search.
        extension: Lower-case extension without the leading dot.
        size_bytes: Size reported by the filesystem at the last observation.
        modified_at: Modification time reported at the last observation.
        created_at: When the record was created.
        indexed_at: When the record was last written.
        tags: Tags assigned to the file.
        last_error: Reason of the most recent failed organization attempt.
        pending_path: Destination of a move whose commit has not been confirmed.
    """

    id: int
    path: str
    name: str
    extension: str
    size_bytes: int
    modified_at: datetime
    created_at: datetime
    indexed_at: datetime
    tags: List[Tag] = Field(default_factory=list)
    last_error: Optional[str] = None
    pending_path: Optional[str] = None


class Rule(BaseModel):
    """Ordered predicate mapping matching files to a destination template.

    Attributes:
        id: Store identifier, ``None`` for synthesized rules such as the fallback.
        name: Human readable label.
        pattern: Comma-separated extensions and/or name globs.
        destination_template: Folder template expanded against file attributes.
        priority: Evaluation order, lower values first.
        is_active: Inactive rules are skipped during resolution.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str
    pattern: str
    destination_template: str
    priority: int = 100
    is_active: bool = True


class BackupStatus(str, Enum):
    """Lifecycle of a backup task."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


class BackupTask(BaseModel):
    """Durable record of a file's remote backup.

    Attributes:
        file_id: Tracked file to mirror.
        status: Current lifecycle state.
        attempt_count: Number of failed attempts so far.
        last_attempt_at: When the last upload attempt started.
        next_attempt_at: Earliest time the worker may try again.
        last_error: Failure reason for failed tasks, last transient error otherwise.
        remote_key: Object key written on success.
        created_at: When the task was first enqueued.
    """

    file_id: int
    status: BackupStatus = BackupStatus.PENDING
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    remote_key: Optional[str] = None
    created_at: datetime


class WatchedFolder(BaseModel):
    """Root folder remembered across runs."""

    path: str
    is_active: bool = True


class ReconcileReport(BaseModel):
    """Outcome of a reconciliation pass."""

    checked: int = 0
    removed: List[int] = Field(default_factory=list)
    repathed: List[int] = Field(default_factory=list)
    skipped: List[int] = Field(default_factory=list)


__all__ = [
    "Tag",
    "FileRecord",
    "Rule",
    "BackupStatus",
    "BackupTask",
    "WatchedFolder",
    "ReconcileReport",
]
