"""Rule resolution tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from tidywatch.ingestion import FileAttributes
from tidywatch.organization import NO_MATCH, RuleResolver, RuleTemplateError, fallback_rule
from tidywatch.organization.resolver import expand_template, rule_matches
from tidywatch.state import Rule


def _attributes(name: str, category: str = "Documents") -> FileAttributes:
    """Return attributes for a file named ``name`` under ``/inbox``.

    Args:
        name: File name including the extension.
        category: Category assigned to the file.

    Returns:
        FileAttributes: Synthetic attributes.
    """
    path = Path("/inbox") / name
    return FileAttributes(
        path=path,
        name=name,
        extension=path.suffix.lstrip(".").lower(),
        size_bytes=10,
        modified_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        category=category,
        observed_at=datetime(2024, 7, 4, 9, 30, tzinfo=timezone.utc),
    )


def _rule(rule_id: int, pattern: str, template: str, priority: int = 100, active: bool = True) -> Rule:
    return Rule(
        id=rule_id,
        name=f"rule-{rule_id}",
        pattern=pattern,
        destination_template=template,
        priority=priority,
        is_active=active,
    )


def test_rule_matches_extensions_and_globs() -> None:
    assert rule_matches(_rule(1, "pdf, docx", "Docs"), _attributes("Report.PDF"))
    assert rule_matches(_rule(1, ".docx", "Docs"), _attributes("letter.docx"))
    assert rule_matches(_rule(1, "invoice*", "Bills"), _attributes("Invoice-2024.pdf"))
    assert not rule_matches(_rule(1, "pdf", "Docs"), _attributes("notes.txt"))
    assert not rule_matches(_rule(1, "pdf", "Docs"), _attributes("README"))


def test_first_match_by_priority_then_id() -> None:
    resolver = RuleResolver()
    rules = [
        _rule(3, "pdf", "Late", priority=20),
        _rule(2, "pdf", "Second", priority=10),
        _rule(1, "pdf", "First", priority=10),
    ]

    assert resolver.resolve(_attributes("a.pdf"), rules, Path("/base")) == Path("/base/First")
    assert resolver.resolve(_attributes("a.pdf"), list(reversed(rules)), Path("/base")) == Path(
        "/base/First"
    )


def test_inactive_rules_are_skipped() -> None:
    resolver = RuleResolver()
    rules = [_rule(1, "pdf", "Off", active=False), _rule(2, "pdf", "On", priority=200)]

    assert resolver.resolve(_attributes("a.pdf"), rules, Path("/base")) == Path("/base/On")
    assert resolver.resolve(_attributes("a.pdf"), rules[:1], Path("/base")) is NO_MATCH


def test_empty_rule_set_keeps_file_in_place() -> None:
    assert RuleResolver().resolve(_attributes("a.pdf"), [], Path("/base")) == Path("/inbox")


def test_unmatched_files_return_no_match() -> None:
    rules = [_rule(1, "pdf", "Docs")]

    assert RuleResolver().resolve(_attributes("song.mp3", "Music"), rules, Path("/b")) is NO_MATCH


def test_resolution_is_deterministic() -> None:
    resolver = RuleResolver()
    rules = [_rule(1, "*", "{category}/{year}"), _rule(2, "pdf", "Docs", priority=1)]
    attributes = _attributes("scan.png", "Images")

    results = {resolver.resolve(attributes, rules, Path("/base")) for _ in range(5)}

    assert results == {Path("/base/Images/2024")}


def test_fallback_rule_groups_by_category() -> None:
    resolver = RuleResolver()
    rule = fallback_rule()

    photo = resolver.destination_for(rule, _attributes("a.png", "Images"), Path("/base"))
    other = resolver.destination_for(rule, _attributes("b.xyz", "Other"), Path("/base"))

    assert photo == Path("/base/Images")
    assert other == Path("/base/Other")


def test_absolute_templates_ignore_base() -> None:
    rule = _rule(1, "pdf", "/archive/{extension}/{month}")

    destination = RuleResolver().destination_for(rule, _attributes("a.pdf"), Path("/base"))

    assert destination == Path("/archive/pdf/07")


def test_template_fields_expand() -> None:
    folder = expand_template("{category}/{stem}-{day}/{extension}", _attributes("README"))

    assert folder.as_posix() == "Documents/README-04/noext"


@pytest.mark.parametrize(
    "template",
    ["{unknown}", "{category", "../escape", "   ", "{0}"],
)
def test_invalid_templates_raise(template: str) -> None:
    with pytest.raises(RuleTemplateError):
        expand_template(template, _attributes("a.pdf"))
