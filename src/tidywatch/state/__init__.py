"""Metadata store for tracked files, tags, rules, and backup tasks."""

from __future__ import annotations

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
from .repository import (
    DEFAULT_RULES,
    DEFAULT_TAG_COLOR,
    DEFAULT_TAGS,
    StateRepository,
    normalize_extension,
)

__all__ = [
    "StateRepository",
    "DEFAULT_RULES",
    "DEFAULT_TAGS",
    "DEFAULT_TAG_COLOR",
    "normalize_extension",
    "BackupStatus",
    "BackupTask",
    "FileRecord",
    "ReconcileReport",
    "Rule",
    "Tag",
    "WatchedFolder",
    "StateError",
    "MissingRecordError",
    "DuplicateTagError",
    "StoreUnavailableError",
]
