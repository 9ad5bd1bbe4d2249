"""Organization data models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class MoveOperation(BaseModel):
    """Represents a completed relocation of a tracked file.

    Attributes:
        file_id: Identifier of the relocated record.
        source: File path before the move.
        destination: File path after the move; equals ``source`` for no-ops.
        reasoning: Optional explanation for the move.
        conflict_applied: Indicates whether the name had to be disambiguated.
        cross_device: Indicates whether the move copied across filesystems.
    """

    file_id: int
    source: Path
    destination: Path
    reasoning: Optional[str] = None
    conflict_applied: bool = False
    cross_device: bool = False

    @property
    def moved(self) -> bool:
        """Return whether the file actually changed location."""
        return self.source != self.destination


class OrganizationState(str, Enum):
    """Lifecycle of one organization attempt."""

    DETECTED = "detected"
    RESOLVING = "resolving"
    MOVING = "moving"
    INDEXED = "indexed"
    FAILED = "failed"


class OrganizationOutcome(BaseModel):
    """Terminal result of organizing one file.

    Attributes:
        path: Path the attempt started from.
        state: Terminal state, ``indexed`` or ``failed``.
        file_id: Record identifier, when a record exists.
        destination: Final location for indexed files.
        rule_name: Name of the rule that chose the destination.
        reason: Failure reason for failed attempts.
        conflict_applied: Indicates whether the name had to be disambiguated.
    """

    path: Path
    state: OrganizationState
    file_id: Optional[int] = None
    destination: Optional[Path] = None
    rule_name: Optional[str] = None
    reason: Optional[str] = None
    conflict_applied: bool = False


__all__ = ["MoveOperation", "OrganizationState", "OrganizationOutcome"]
