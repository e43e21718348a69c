"""
RuleVault - Human-in-the-loop review and versioning of extracted compliance rules.

Rules extracted by an external agent are held as pending decisions until a
reviewer approves them for portfolio validation, then commits them as a new
version of the rule set or discards them.
"""

from .approval import ApprovalTracker, DecisionEvent
from .conversation import ConversationLog
from .diff import RuleDiff, diff_rules
from .exceptions import (
    AuthenticationError,
    NotFoundError,
    OracleError,
    RuleVaultError,
    ValidationError,
)
from .models import (
    AmbiguityFlag,
    BreachRecord,
    ChangeSummary,
    ConversationEntry,
    DecisionPhase,
    ExtractionResult,
    PendingDecision,
    Role,
    RuleCategory,
    RuleRecord,
    Severity,
    SourceSection,
    ValidationResult,
    VersionRecord,
    VersionStatus,
)
from .normalize import normalize_extraction, normalize_validation
from .oracle import AsyncOracleClient
from .reporting import ComplianceBand, compliance_band, filter_rules, sort_breaches, version_report
from .store import ArtifactStore, PersistentArtifactStore
from .workflow import ReviewWorkflow


def get_server():
    """Lazy import for server components (requires server extras)."""
    try:
        from .server import RuleVaultServer, ServerConfig, create_app

        return RuleVaultServer, ServerConfig, create_app
    except ImportError:
        raise ImportError(
            "Server components require the 'server' extras. "
            "Install with: pip install rulevault[server]"
        )


__version__ = "0.1.0"
__all__ = [
    "ReviewWorkflow",
    "AsyncOracleClient",
    "ArtifactStore",
    "PersistentArtifactStore",
    "ConversationLog",
    "ApprovalTracker",
    "DecisionEvent",
    "RuleDiff",
    "diff_rules",
    "normalize_extraction",
    "normalize_validation",
    "RuleRecord",
    "RuleCategory",
    "SourceSection",
    "BreachRecord",
    "Severity",
    "AmbiguityFlag",
    "ChangeSummary",
    "VersionRecord",
    "VersionStatus",
    "PendingDecision",
    "DecisionPhase",
    "ConversationEntry",
    "Role",
    "ExtractionResult",
    "ValidationResult",
    "ComplianceBand",
    "compliance_band",
    "filter_rules",
    "sort_breaches",
    "version_report",
    "RuleVaultError",
    "NotFoundError",
    "ValidationError",
    "OracleError",
    "AuthenticationError",
    "get_server",
]
