"""Attribute extraction for files entering the organization pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from .detectors import TypeDetector
from .discovery import normalize_path
from .models import FileAttributes


class AttributeExtractor:
    """Read filesystem attributes and derive the category of a file."""

    def __init__(self, detector: TypeDetector | None = None) -> None:
        self._detector = detector or TypeDetector()

    @property
    def detector(self) -> TypeDetector:
        return self._detector

    def describe(self, path: Path, observed_at: datetime | None = None) -> FileAttributes:
        """Return the attributes of ``path`` as currently reported by the filesystem.

        Args:
            path: File to inspect.
            observed_at: Observation time used for date-based templates; defaults
                to the current UTC time.

        Returns:
            FileAttributes: Snapshot of the file's attributes.

        Raises:
            FileNotFoundError: If the file vanished.
            IsADirectoryError: If the path names a directory.
            OSError: For other I/O failures.
        """
        path = normalize_path(path)
        stat = path.stat()
        if path.is_dir():
            raise IsADirectoryError(str(path))
        mime_type, category = self._detector.detect(path)
        return FileAttributes(
            path=path,
            name=path.name,
            extension=path.suffix.lstrip(".").lower(),
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            category=category,
            mime_type=mime_type,
            observed_at=observed_at or datetime.now(timezone.utc),
        )


__all__ = ["AttributeExtractor"]
