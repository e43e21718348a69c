"""
RuleVault - Rule set diffing.

Rules are matched by ``rule_id`` only. A rule whose id survives but whose
name, category or threshold changed is "modified"; there is no fuzzy
matching, so a rule that was both renamed and re-keyed shows up as one
removal plus one addition.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import ChangeSummary, RuleRecord


@dataclass
class RuleDiff:
    """Identifiers classified by how they changed between two rule lists."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def summary(self) -> ChangeSummary:
        return ChangeSummary(
            added=len(self.added),
            removed=len(self.removed),
            modified=len(self.modified),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": list(self.modified),
            "unchanged": list(self.unchanged),
            "summary": self.summary().to_dict(),
        }


def is_modified(old: RuleRecord, new: RuleRecord) -> bool:
    """Whether two rules sharing an id differ in a way that counts as a change.

    Confidence and provenance are extraction metadata and are ignored.
    """
    return (
        old.threshold.strip() != new.threshold.strip()
        or old.category != new.category
        or old.name.strip() != new.name.strip()
    )


def _index(rules: Iterable[RuleRecord]) -> dict[str, RuleRecord]:
    indexed: dict[str, RuleRecord] = {}
    for rule in rules:
        indexed.setdefault(rule.rule_id, rule)
    return indexed


def diff_rules(old: Iterable[RuleRecord], new: Iterable[RuleRecord]) -> RuleDiff:
    """Classify every rule id across ``old`` and ``new``.

    Output lists follow the order ids appear in ``new`` (added, modified,
    unchanged) or ``old`` (removed), so the result is deterministic.
    """
    old_index = _index(old)
    new_index = _index(new)

    result = RuleDiff()
    for rule_id, rule in new_index.items():
        previous = old_index.get(rule_id)
        if previous is None:
            result.added.append(rule_id)
        elif is_modified(previous, rule):
            result.modified.append(rule_id)
        else:
            result.unchanged.append(rule_id)

    for rule_id in old_index:
        if rule_id not in new_index:
            result.removed.append(rule_id)

    return result
