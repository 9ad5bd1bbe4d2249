"""Rule matching and destination resolution.

Resolution is a pure function of the file attributes, the rule snapshot, and
the base folder: nothing here touches the filesystem, the clock, or the store.
"""

from __future__ import annotations

import string
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path, PurePath
from typing import Iterable, Optional, Sequence

from tidywatch.ingestion.models import FileAttributes
from tidywatch.state.models import Rule

from .errors import RuleTemplateError

FALLBACK_PRIORITY = 2**31 - 1
TEMPLATE_FIELDS = frozenset({"category", "extension", "name", "stem", "year", "month", "day"})
_GLOB_CHARS = frozenset("*?[")


class NoMatch(Enum):
    """Sentinel type returned when no rule applies."""

    NO_MATCH = "no_match"


NO_MATCH = NoMatch.NO_MATCH


def fallback_rule(template: str = "{category}") -> Rule:
    """Return the catch-all rule applied when nothing else matches."""
    return Rule(
        name="fallback",
        pattern="*",
        destination_template=template,
        priority=FALLBACK_PRIORITY,
    )


def pattern_tokens(pattern: str) -> list[str]:
    """Split a rule pattern into its non-empty comma-separated tokens."""
    return [token.strip() for token in pattern.split(",") if token.strip()]


def rule_matches(rule: Rule, attributes: FileAttributes) -> bool:
    """Return whether any token of ``rule.pattern`` matches the file.

    Tokens containing glob characters are matched case-insensitively against the
    file name; plain tokens are compared with the extension.
    """
    name = attributes.name.lower()
    for token in pattern_tokens(rule.pattern):
        lowered = token.lower()
        if _GLOB_CHARS.intersection(lowered):
            if fnmatchcase(name, lowered):
                return True
        elif attributes.extension and lowered.lstrip(".") == attributes.extension:
            return True
    return False


def ordered_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Return active rules in evaluation order, ties broken by id."""
    active = [rule for rule in rules if rule.is_active]
    return sorted(
        active,
        key=lambda rule: (rule.priority, rule.id if rule.id is not None else FALLBACK_PRIORITY),
    )


def expand_template(template: str, attributes: FileAttributes) -> PurePath:
    """Expand a destination template against the file attributes.

    Args:
        template: ``str.format`` template using the fields in ``TEMPLATE_FIELDS``.
        attributes: File attributes; date fields come from ``observed_at``.

    Returns:
        PurePath: Expanded relative or absolute folder.

    Raises:
        RuleTemplateError: If the template is malformed, references unknown
            fields, expands to nothing, or escapes upward with ``..``.
    """
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as exc:
        raise RuleTemplateError(f"Malformed destination template '{template}': {exc}") from exc

    for _, field_name, _, _ in parsed:
        if field_name is None:
            continue
        if field_name not in TEMPLATE_FIELDS:
            raise RuleTemplateError(
                f"Unknown field '{{{field_name}}}' in destination template '{template}'."
            )

    observed = attributes.observed_at
    values = {
        "category": attributes.category,
        "extension": attributes.extension or "noext",
        "name": attributes.name,
        "stem": PurePath(attributes.name).stem,
        "year": f"{observed.year:04d}",
        "month": f"{observed.month:02d}",
        "day": f"{observed.day:02d}",
    }
    try:
        rendered = template.format(**values).strip()
    except (ValueError, IndexError, KeyError) as exc:
        raise RuleTemplateError(f"Cannot expand destination template '{template}': {exc}") from exc

    if not rendered:
        raise RuleTemplateError(f"Destination template '{template}' expanded to an empty path.")
    folder = PurePath(rendered)
    if ".." in folder.parts:
        raise RuleTemplateError(f"Destination template '{template}' must not contain '..'.")
    return folder


class RuleResolver:
    """Select the destination folder for a file from an ordered rule snapshot."""

    def match(self, attributes: FileAttributes, rules: Sequence[Rule]) -> Optional[Rule]:
        """Return the first active rule matching ``attributes``."""
        for rule in ordered_rules(rules):
            if rule_matches(rule, attributes):
                return rule
        return None

    def resolve(
        self,
        attributes: FileAttributes,
        rules: Sequence[Rule],
        base: Path,
    ) -> Path | NoMatch:
        """Return the destination folder for a file.

        Args:
            attributes: Attributes of the file being organized.
            rules: Rule snapshot; inactive rules are ignored.
            base: Folder relative destinations are joined to.

        Returns:
            Path | NoMatch: Destination folder, the file's own folder when there
            are no rules at all, or ``NO_MATCH``.

        Raises:
            RuleTemplateError: If the matching rule's template is invalid.
        """
        if not rules:
            return attributes.path.parent
        rule = self.match(attributes, rules)
        if rule is None:
            return NO_MATCH
        return self.destination_for(rule, attributes, base)

    def destination_for(self, rule: Rule, attributes: FileAttributes, base: Path) -> Path:
        """Expand ``rule`` for ``attributes`` and anchor it to ``base``."""
        folder = Path(expand_template(rule.destination_template, attributes))
        return folder if folder.is_absolute() else base / folder


__all__ = [
    "FALLBACK_PRIORITY",
    "NO_MATCH",
    "NoMatch",
    "RuleResolver",
    "TEMPLATE_FIELDS",
    "expand_template",
    "fallback_rule",
    "ordered_rules",
    "pattern_tokens",
    "rule_matches",
]
