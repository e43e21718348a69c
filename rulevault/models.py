"""
RuleVault - Data models for extracted rules, breaches, versions and the review conversation.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class RuleCategory(str, Enum):
    """Kind of compliance rule extracted from a guidelines document."""

    LIMIT = "limit"
    RESTRICTION = "restriction"
    REQUIREMENT = "requirement"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "RuleCategory":
        """Case-insensitive lookup; anything unrecognised becomes OTHER."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.OTHER


class Severity(str, Enum):
    """Severity of a detected breach."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Display emphasis: higher is more severe."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNKNOWN


_SEVERITY_RANK = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.UNKNOWN: 0,
}


class VersionStatus(str, Enum):
    """Lifecycle status of a committed version."""

    CURRENT = "current"
    ARCHIVED = "archived"


class DecisionPhase(str, Enum):
    """Phase of the approval state machine attached to a conversation entry."""

    NONE = "none"
    AWAITING_VALIDATION_APPROVAL = "awaiting-validation-approval"
    AWAITING_COMMIT_DECISION = "awaiting-commit-decision"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class SourceSection:
    """Where in the source document a rule was found."""

    page: Optional[int] = None
    paragraph: str = ""
    exact_quote: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "paragraph": self.paragraph,
            "exact_quote": self.exact_quote,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceSection":
        return cls(
            page=data.get("page"),
            paragraph=data.get("paragraph", ""),
            exact_quote=data.get("exact_quote", ""),
        )


@dataclass(frozen=True)
class RuleRecord:
    """
    A single extracted compliance rule.

    Identity is ``rule_id``; within one version identifiers are unique.
    """

    rule_id: str
    name: str
    category: RuleCategory = RuleCategory.OTHER
    threshold: str = ""
    confidence: Optional[float] = None
    source: Optional[SourceSection] = None
    exception_conditions: Optional[str] = None
    applicable_funds: list[str] = field(default_factory=list)

    def describe(self) -> str:
        """Short natural-language form used in validation requests."""
        return f"{self.name}: {self.threshold}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "rule_id": self.rule_id,
            "rule_name": self.name,
            "rule_type": self.category.value,
            "value_threshold": self.threshold,
            "confidence_score": self.confidence,
        }
        if self.source:
            result["source_section"] = self.source.to_dict()
        if self.exception_conditions:
            result["exception_conditions"] = self.exception_conditions
        if self.applicable_funds:
            result["applicable_funds"] = list(self.applicable_funds)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleRecord":
        source = data.get("source_section")
        return cls(
            rule_id=data["rule_id"],
            name=data.get("rule_name", ""),
            category=RuleCategory.parse(data.get("rule_type")),
            threshold=data.get("value_threshold", ""),
            confidence=data.get("confidence_score"),
            source=SourceSection.from_dict(source) if source else None,
            exception_conditions=data.get("exception_conditions"),
            applicable_funds=data.get("applicable_funds", []),
        )


@dataclass(frozen=True)
class BreachRecord:
    """
    A detected violation of a rule for one fund.

    The rule is referenced by name only; breaches are snapshots and are
    never linked back to a RuleRecord.
    """

    fund_name: str
    rule_name: str
    current_value: str = ""
    limit: str = ""
    severity: Severity = Severity.UNKNOWN
    remediation: Optional[str] = None
    variance: Optional[str] = None
    exception_applicability: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "fund_name": self.fund_name,
            "rule_violated": self.rule_name,
            "current_value": self.current_value,
            "limit": self.limit,
            "severity": self.severity.value,
        }
        if self.remediation:
            result["remediation_suggestion"] = self.remediation
        if self.variance:
            result["variance"] = self.variance
        if self.exception_applicability:
            result["exception_applicability"] = self.exception_applicability
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BreachRecord":
        return cls(
            fund_name=data.get("fund_name", ""),
            rule_name=data.get("rule_violated", ""),
            current_value=data.get("current_value", ""),
            limit=data.get("limit", ""),
            severity=Severity.parse(data.get("severity")),
            remediation=data.get("remediation_suggestion"),
            variance=data.get("variance"),
            exception_applicability=data.get("exception_applicability"),
        )


@dataclass(frozen=True)
class AmbiguityFlag:
    """An interpretation issue raised by the oracle during validation."""

    issue: str
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"issue": self.issue, "recommendation": self.recommendation}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AmbiguityFlag":
        return cls(
            issue=str(data.get("issue") or ""),
            recommendation=str(data.get("recommendation") or ""),
        )


@dataclass(frozen=True)
class ChangeSummary:
    """Added/removed/modified rule counts relative to the previous version."""

    added: int = 0
    removed: int = 0
    modified: int = 0

    @property
    def total(self) -> int:
        return self.added + self.removed + self.modified

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "removed": self.removed, "modified": self.modified}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeSummary":
        return cls(
            added=data.get("added", 0),
            removed=data.get("removed", 0),
            modified=data.get("modified", 0),
        )


@dataclass
class VersionRecord:
    """
    A committed snapshot of a rule set and its validation results.

    Only the ArtifactStore creates these, and only ``status`` ever changes
    after creation (current -> archived).
    """

    id: str
    ordinal: int
    label: str
    filename: str
    upload_date: date
    rule_count: int
    status: VersionStatus
    changes: ChangeSummary
    rules: list[RuleRecord] = field(default_factory=list)
    compliance_score: Optional[float] = None
    breaches: list[BreachRecord] = field(default_factory=list)

    @property
    def is_current(self) -> bool:
        return self.status == VersionStatus.CURRENT

    def snapshot(self) -> "VersionRecord":
        """Return a copy that shares no mutable state with this record."""
        return replace(self, rules=list(self.rules), breaches=list(self.breaches))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ordinal": self.ordinal,
            "version": self.label,
            "filename": self.filename,
            "upload_date": self.upload_date.isoformat(),
            "rule_count": self.rule_count,
            "status": self.status.value,
            "changes": self.changes.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
            "compliance_score": self.compliance_score,
            "breaches": [b.to_dict() for b in self.breaches],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionRecord":
        return cls(
            id=data["id"],
            ordinal=data["ordinal"],
            label=data.get("version", f"Version {data['ordinal']}.0"),
            filename=data.get("filename", ""),
            upload_date=date.fromisoformat(data["upload_date"]),
            rule_count=data.get("rule_count", len(data.get("rules", []))),
            status=VersionStatus(data.get("status", "archived")),
            changes=ChangeSummary.from_dict(data.get("changes", {})),
            rules=[RuleRecord.from_dict(r) for r in data.get("rules", [])],
            compliance_score=data.get("compliance_score"),
            breaches=[BreachRecord.from_dict(b) for b in data.get("breaches", [])],
        )


@dataclass
class ExtractionResult:
    """Canonical form of an oracle rule-extraction response."""

    rules: list[RuleRecord] = field(default_factory=list)
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Canonical form of an oracle portfolio-validation response."""

    compliance_score: Optional[float] = None
    breaches: list[BreachRecord] = field(default_factory=list)
    ambiguity_flags: list[AmbiguityFlag] = field(default_factory=list)
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingDecision:
    """
    Transient approval state bridging an oracle response and a user action.

    Instances are never mutated; advancing the phase produces a new object,
    which lets in-flight handlers detect that the decision they started
    from has since been replaced or cleared.
    """

    phase: DecisionPhase
    rules: list[RuleRecord] = field(default_factory=list)
    filename: str = ""
    compliance_score: Optional[float] = None
    breaches: list[BreachRecord] = field(default_factory=list)
    ambiguity_flags: list[AmbiguityFlag] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "rules": [r.to_dict() for r in self.rules],
            "filename": self.filename,
            "compliance_score": self.compliance_score,
            "breaches": [b.to_dict() for b in self.breaches],
            "ambiguity_flags": [f.to_dict() for f in self.ambiguity_flags],
        }


@dataclass
class ConversationEntry:
    """One turn of the review conversation."""

    id: str
    role: Role
    content: str
    timestamp: datetime
    payload: Optional[dict[str, Any]] = None
    pending_decision: Optional[PendingDecision] = None

    @property
    def phase(self) -> DecisionPhase:
        if self.pending_decision is None:
            return DecisionPhase.NONE
        return self.pending_decision.phase

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
            "pending_decision": (
                self.pending_decision.to_dict() if self.pending_decision else None
            ),
        }
