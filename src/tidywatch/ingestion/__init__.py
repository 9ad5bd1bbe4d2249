"""Discovery and attribute extraction for files entering the pipeline."""

from __future__ import annotations

from .detectors import TypeDetector
from .discovery import DirectoryScanner, is_hidden, is_ignored, normalize_path
from .extractors import AttributeExtractor
from .models import FileAttributes

__all__ = [
    "AttributeExtractor",
    "DirectoryScanner",
    "FileAttributes",
    "TypeDetector",
    "is_hidden",
    "is_ignored",
    "normalize_path",
]
