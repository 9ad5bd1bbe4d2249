"""Errors raised while organizing a single file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class OrganizationError(Exception):
    """Base class for failures contained to one file's organization attempt.

    Attributes:
        path: File the failure relates to, when known.
    """

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path

    @property
    def reason(self) -> str:
        """Return the human readable failure reason."""
        return str(self)


class SourceMissingError(OrganizationError):
    """Raised when the file to organize no longer exists."""


class DestinationUnwritableError(OrganizationError):
    """Raised when the destination folder cannot be created or written."""


class NameCollisionError(OrganizationError):
    """Raised when no free ``name (n).ext`` variant is found within the limit."""


class RuleTemplateError(OrganizationError):
    """Raised when a rule's destination template cannot be expanded."""


__all__ = [
    "OrganizationError",
    "SourceMissingError",
    "DestinationUnwritableError",
    "NameCollisionError",
    "RuleTemplateError",
]
