"""
RuleVault - Read-side helpers for presenting versions.
"""

from enum import Enum
from typing import Any, Iterable, Optional, Union

from .models import BreachRecord, RuleCategory, RuleRecord, VersionRecord


class ComplianceBand(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


GOOD_THRESHOLD = 80.0
WARNING_THRESHOLD = 60.0


def compliance_band(score: Optional[float]) -> Optional[ComplianceBand]:
    if score is None:
        return None
    if score >= GOOD_THRESHOLD:
        return ComplianceBand.GOOD
    if score >= WARNING_THRESHOLD:
        return ComplianceBand.WARNING
    return ComplianceBand.CRITICAL


def filter_rules(
    rules: Iterable[RuleRecord],
    query: Optional[str] = None,
    category: Optional[Union[RuleCategory, str]] = None,
) -> list[RuleRecord]:
    """Match ``query`` against rule name or id (case-insensitive) and ``category`` exactly."""
    result = list(rules)
    if query and query.strip():
        needle = query.strip().lower()
        result = [r for r in result if needle in r.name.lower() or needle in r.rule_id.lower()]
    if category is not None and category != "all":
        wanted = RuleCategory.parse(category)
        result = [r for r in result if r.category == wanted]
    return result


def sort_breaches(breaches: Iterable[BreachRecord]) -> list[BreachRecord]:
    """High first, then Medium, Low and unrecognised; stable within a level."""
    return sorted(breaches, key=lambda b: -b.severity.rank)


def version_report(version: VersionRecord) -> dict[str, Any]:
    """Export a version as a self-contained, JSON-serializable report."""
    by_category: dict[str, list[dict[str, Any]]] = {}
    for rule in version.rules:
        by_category.setdefault(rule.category.value, []).append(rule.to_dict())

    breaches = sort_breaches(version.breaches)
    band = compliance_band(version.compliance_score)
    return {
        "version": version.label,
        "id": version.id,
        "filename": version.filename,
        "upload_date": version.upload_date.isoformat(),
        "status": version.status.value,
        "rule_count": version.rule_count,
        "changes": version.changes.to_dict(),
        "compliance_score": version.compliance_score,
        "compliance_band": band.value if band else None,
        "rules_by_category": by_category,
        "breaches": [b.to_dict() for b in breaches],
        "funds_in_breach": sorted({b.fund_name for b in breaches if b.fund_name}),
        "remediation": [
            {"fund_name": b.fund_name, "rule_violated": b.rule_name, "action": b.remediation}
            for b in breaches
            if b.remediation
        ],
    }
