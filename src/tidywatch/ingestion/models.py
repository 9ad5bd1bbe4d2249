"""Models describing files observed on disk."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class FileAttributes(BaseModel):
    """Filesystem-reported attributes of a file at one point in time.

    Attributes:
        path: Absolute location of the file.
        name: File name including the extension.
        extension: Lower-case extension without the leading dot.
        size_bytes: Size in bytes.
        modified_at: Last modification time (UTC).
        category: Extension-derived category used by rules and the fallback bucket.
        mime_type: MIME type guessed from the extension.
        observed_at: When the attributes were read; drives date-based templates.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    extension: str
    size_bytes: int
    modified_at: datetime
    category: str
    mime_type: str = "application/octet-stream"
    observed_at: datetime


__all__ = ["FileAttributes"]
