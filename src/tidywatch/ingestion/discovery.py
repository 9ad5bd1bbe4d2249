"""File discovery utilities."""

from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Iterator, Sequence


def is_hidden(path: Path) -> bool:
    """Return True when any component of ``path`` is a dot-file."""
    return any(part.startswith(".") for part in path.parts if part not in (".", ".."))


def is_ignored(name: str, patterns: Sequence[str]) -> bool:
    """Return True when ``name`` matches one of the ignore globs."""
    lowered = name.lower()
    return any(fnmatch(lowered, pattern.lower()) for pattern in patterns)


def normalize_path(path: Path) -> Path:
    """Return the absolute form of ``path`` that identifies a tracked file.

    Parent folders are resolved, which removes ``..`` segments and follows
    symlinked folders. The final component is kept as-is so a symlinked file
    is not replaced by its target.
    """
    path = Path(path).expanduser()
    if path.name in ("", ".", ".."):
        return path.resolve()
    return path.parent.resolve() / path.name


class DirectoryScanner:
    """Discover regular files within a directory subject to watch filters."""

    def __init__(
        self,
        *,
        recursive: bool = False,
        include_hidden: bool = False,
        ignore_patterns: Sequence[str] = (),
    ) -> None:
        self.recursive = recursive
        self.include_hidden = include_hidden
        self.ignore_patterns = tuple(ignore_patterns)

    def accepts(self, path: Path, root: Path | None = None) -> bool:
        """Return whether ``path`` passes the hidden and ignore filters.

        Args:
            path: Candidate file path.
            root: Root the path is relative to; hidden checks only consider
                components below it.

        Returns:
            bool: True when the path should produce work.
        """
        relative = Path(path.name)
        if root is not None:
            try:
                relative = path.relative_to(root)
            except ValueError:
                pass
        if not self.include_hidden and is_hidden(relative):
            return False
        return not is_ignored(path.name, self.ignore_patterns)

    def scan(self, root: Path) -> Iterator[Path]:
        """Yield regular files under ``root`` in a stable order."""
        root = root.expanduser().resolve()
        if not root.exists():
            return

        for path in sorted(self._iter_paths(root)):
            try:
                if path.is_symlink() or not path.is_file():
                    continue
            except OSError:
                continue
            if self.accepts(path, root):
                yield path

    def _iter_paths(self, root: Path) -> Iterable[Path]:
        if root.is_file():
            yield root
            return

        if self.recursive:
            yield from root.rglob("*")
        else:
            yield from root.iterdir()


__all__ = ["DirectoryScanner", "is_hidden", "is_ignored", "normalize_path"]
