"""
RuleVault - Approval state machine.

    none -> awaiting-validation-approval -> awaiting-commit-decision -> none

Phases only move forward or are cleared. Events that are not in the
transition table are reported back as rejected, never raised: stale or
duplicate UI actions are expected and harmless.
"""

import logging
from enum import Enum
from typing import Optional

from .models import DecisionPhase, ExtractionResult, PendingDecision, ValidationResult

logger = logging.getLogger("rulevault.approval")


class DecisionEvent(str, Enum):
    EXTRACTED = "extracted"
    APPROVED = "approved"
    COMMITTED = "committed"
    DISCARDED = "discarded"


TRANSITIONS: dict[tuple[DecisionPhase, DecisionEvent], DecisionPhase] = {
    (DecisionPhase.NONE, DecisionEvent.EXTRACTED): DecisionPhase.AWAITING_VALIDATION_APPROVAL,
    (
        DecisionPhase.AWAITING_VALIDATION_APPROVAL,
        DecisionEvent.APPROVED,
    ): DecisionPhase.AWAITING_COMMIT_DECISION,
    (DecisionPhase.AWAITING_VALIDATION_APPROVAL, DecisionEvent.DISCARDED): DecisionPhase.NONE,
    (DecisionPhase.AWAITING_COMMIT_DECISION, DecisionEvent.COMMITTED): DecisionPhase.NONE,
    (DecisionPhase.AWAITING_COMMIT_DECISION, DecisionEvent.DISCARDED): DecisionPhase.NONE,
}


def phase_of(decision: Optional[PendingDecision]) -> DecisionPhase:
    return decision.phase if decision is not None else DecisionPhase.NONE


class ApprovalTracker:
    """Enforces the transition table independently of any transport."""

    def next_phase(
        self, decision: Optional[PendingDecision], event: DecisionEvent
    ) -> Optional[DecisionPhase]:
        """Target phase for ``event``, or None when the event is not allowed."""
        return TRANSITIONS.get((phase_of(decision), event))

    def allows(self, decision: Optional[PendingDecision], event: DecisionEvent) -> bool:
        return self.next_phase(decision, event) is not None

    def open(
        self,
        current: Optional[PendingDecision],
        extraction: ExtractionResult,
        filename: str,
    ) -> Optional[PendingDecision]:
        """Start a decision from a successful extraction (any rule count, including zero)."""
        if not self.allows(current, DecisionEvent.EXTRACTED):
            logger.info("Ignoring extraction for entry already in phase %s", phase_of(current).value)
            return None
        return PendingDecision(
            phase=DecisionPhase.AWAITING_VALIDATION_APPROVAL,
            rules=list(extraction.rules),
            filename=filename,
        )

    def approve(
        self, current: Optional[PendingDecision], validation: ValidationResult
    ) -> Optional[PendingDecision]:
        """Advance to awaiting-commit-decision, keeping the original rules and filename."""
        if not self.allows(current, DecisionEvent.APPROVED):
            logger.info("Approve rejected in phase %s", phase_of(current).value)
            return None
        return PendingDecision(
            phase=DecisionPhase.AWAITING_COMMIT_DECISION,
            rules=list(current.rules),
            filename=current.filename,
            compliance_score=validation.compliance_score,
            breaches=list(validation.breaches),
            ambiguity_flags=list(validation.ambiguity_flags),
        )

    def can_approve(self, current: Optional[PendingDecision]) -> bool:
        return self.allows(current, DecisionEvent.APPROVED)

    def can_commit(self, current: Optional[PendingDecision]) -> bool:
        return self.allows(current, DecisionEvent.COMMITTED)

    def can_discard(self, current: Optional[PendingDecision]) -> bool:
        return self.allows(current, DecisionEvent.DISCARDED)
