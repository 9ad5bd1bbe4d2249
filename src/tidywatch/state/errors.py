"""Metadata store errors."""


class StateError(Exception):
    """Base exception for metadata store operations."""


class MissingRecordError(StateError):
    """Raised when a file, tag, rule, or backup task does not exist."""


class DuplicateTagError(StateError):
    """Raised when a tag name is already taken (names compare case-insensitively)."""


class StoreUnavailableError(StateError):
    """Raised when the local database cannot be opened, is locked, or is corrupt."""
