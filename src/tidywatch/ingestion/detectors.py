"""File type detection helpers."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Mapping, Sequence, Tuple

from tidywatch.config.models import DEFAULT_CATEGORIES


def _normalize(extension: str) -> str:
    return extension.strip().lstrip(".").lower()


class TypeDetector:
    """Map file extensions to MIME types and organization categories."""

    def __init__(
        self,
        categories: Mapping[str, Sequence[str]] | None = None,
        default_category: str = "Other",
    ) -> None:
        """Build the extension lookup table.

        Args:
            categories: Mapping of category name to the extensions it covers.
                The first category listing an extension wins.
            default_category: Category returned for unknown extensions.
        """
        self._default_category = default_category
        self._lookup: dict[str, str] = {}
        for category, extensions in (categories or DEFAULT_CATEGORIES).items():
            for extension in extensions:
                self._lookup.setdefault(_normalize(extension), category)

    @property
    def default_category(self) -> str:
        return self._default_category

    def category_for(self, extension: str) -> str:
        """Return the category of an extension, or the default bucket."""
        return self._lookup.get(_normalize(extension), self._default_category)

    def detect(self, path: Path) -> Tuple[str, str]:
        """Return MIME type and category for ``path`` based on its extension."""
        mime_type, _ = mimetypes.guess_type(path.name, strict=False)
        return mime_type or "application/octet-stream", self.category_for(path.suffix)


__all__ = ["TypeDetector"]
