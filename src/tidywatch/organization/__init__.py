"""Rule resolution, relocation, and coordination of organization work."""

from __future__ import annotations

from .coordinator import OrganizationCoordinator
from .errors import (
    DestinationUnwritableError,
    NameCollisionError,
    OrganizationError,
    RuleTemplateError,
    SourceMissingError,
)
from .executor import MoveOperator, disambiguate
from .models import MoveOperation, OrganizationOutcome, OrganizationState
from .resolver import NO_MATCH, NoMatch, RuleResolver, fallback_rule

__all__ = [
    "DestinationUnwritableError",
    "MoveOperation",
    "MoveOperator",
    "NO_MATCH",
    "NameCollisionError",
    "NoMatch",
    "OrganizationCoordinator",
    "OrganizationError",
    "OrganizationOutcome",
    "OrganizationState",
    "RuleResolver",
    "RuleTemplateError",
    "SourceMissingError",
    "disambiguate",
    "fallback_rule",
]
