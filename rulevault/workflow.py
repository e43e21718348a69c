"""
RuleVault - Review workflow orchestration.

Sequences the two-phase pipeline for a guidelines document:

    submit_document -> approve_for_validation -> commit | discard

Each step issues at most one oracle call, feeds the normalized result to the
ApprovalTracker and, on commit, to the ArtifactStore. Oracle failures end the
current turn with a generic assistant message; stale or duplicate actions
return None and change nothing.

Example:
    from rulevault import ReviewWorkflow, AsyncOracleClient

    async with AsyncOracleClient(url, api_key, agent_id) as oracle:
        workflow = ReviewWorkflow(oracle)
        entry = await workflow.submit_document("IMA.pdf", pdf_bytes)
        await workflow.approve_for_validation(entry.id)
        await workflow.commit(entry.id)
"""

import logging
from typing import Any, Optional, Protocol, Sequence

import httpx

from .approval import ApprovalTracker
from .conversation import ConversationLog
from .diff import RuleDiff
from .exceptions import OracleError, ValidationError
from .models import ConversationEntry, PendingDecision, Role, VersionRecord
from .normalize import (
    has_extraction_shape,
    is_success,
    normalize_extraction,
    normalize_validation,
    response_message,
    unwrap,
)
from .store import ArtifactStore

logger = logging.getLogger("rulevault.workflow")

UPLOAD_FAILED_MESSAGE = "Error processing file. Please try again."
QUERY_FAILED_MESSAGE = (
    "Sorry, I encountered an error processing your request. Please try again."
)
VALIDATION_FAILED_MESSAGE = (
    "Portfolio validation failed. The extracted rules are unchanged; please try again."
)
COMMIT_FAILED_MESSAGE = "The version could not be saved. Please try again."
VALIDATION_COMPLETE_MESSAGE = (
    "Portfolio validation complete. Review the compliance results below."
)
DISCARD_MESSAGE = "Rules extraction ignored. The document was not added to version control."
FREEFORM_SOURCE = "chat-query"


class Oracle(Protocol):
    """What the workflow needs from the external agent."""

    async def upload(self, filename: str, content: bytes, content_type: str = ...) -> dict: ...

    async def extract_rules(self, filename: str, asset_ids: Sequence[str] = ...) -> dict: ...

    async def validate_rules(
        self,
        rule_descriptions: Sequence[str],
        portfolio_context: Optional[dict[str, Any]] = ...,
    ) -> dict: ...

    async def query(self, text: str) -> dict: ...


def _require_success(payload: Any) -> dict:
    if not is_success(payload):
        status = unwrap(payload).get("status") if isinstance(payload, dict) else None
        raise OracleError(f"Agent reported status {status!r}", response=payload)
    return payload


def _payload_filename(payload: dict) -> str:
    result = unwrap(payload).get("result")
    if isinstance(result, dict):
        for key in ("filename", "source_document", "document_name"):
            value = result.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return FREEFORM_SOURCE


class ReviewWorkflow:
    """
    Drives extraction, validation and commit for one conversation.

    All user actions address a conversation entry by id. The pending
    decision lives on the entry that reported the extraction and stays
    there while it advances, so approve/commit/discard always take that
    same id.
    """

    def __init__(
        self,
        oracle: Oracle,
        store: Optional[ArtifactStore] = None,
        conversation: Optional[ConversationLog] = None,
        tracker: Optional[ApprovalTracker] = None,
        portfolio_context: Optional[dict[str, Any]] = None,
    ):
        self.oracle = oracle
        self.store = store if store is not None else ArtifactStore()
        self.conversation = conversation if conversation is not None else ConversationLog()
        self.tracker = tracker or ApprovalTracker()
        self.portfolio_context = portfolio_context
        self._in_flight: set[str] = set()

    # ==================== Submissions ====================

    async def submit_document(
        self,
        filename: str,
        content: bytes = b"",
        content_type: str = "application/pdf",
    ) -> ConversationEntry:
        """
        Upload a document and ask the oracle to extract rules only.

        Returns:
            The assistant entry: it carries a decision awaiting validation
            approval on success, or a failure notice without one.
        """
        if not filename or not filename.strip():
            raise ValidationError("filename is required")

        self.conversation.append(Role.USER, f"Uploaded file: {filename}")

        try:
            upload = await self.oracle.upload(filename, content, content_type)
            if not upload.get("success"):
                raise OracleError(f"Upload of {filename} failed", response=upload)
            payload = _require_success(
                await self.oracle.extract_rules(filename, upload.get("asset_ids") or [])
            )
        except (OracleError, httpx.HTTPError) as e:
            logger.warning("Rule extraction for %s failed: %s", filename, e)
            return self.conversation.append(Role.ASSISTANT, UPLOAD_FAILED_MESSAGE)

        extraction = normalize_extraction(payload)
        decision = self.tracker.open(None, extraction, filename)
        logger.info("Extracted %d rules from %s", len(extraction.rules), filename)
        return self.conversation.append(
            Role.ASSISTANT,
            f"I've extracted {len(extraction.rules)} compliance rules from {filename}. "
            "Please review the rules below.",
            payload=extraction.raw,
            pending_decision=decision,
        )

    async def submit_freeform_query(self, text: str) -> ConversationEntry:
        """
        Ask the oracle anything.

        The reply only opens a pending decision when the payload happens to
        have the extraction shape.
        """
        if not text or not text.strip():
            raise ValidationError("query text is required")

        self.conversation.append(Role.USER, text)

        try:
            payload = _require_success(await self.oracle.query(text))
        except (OracleError, httpx.HTTPError) as e:
            logger.warning("Query failed: %s", e)
            return self.conversation.append(Role.ASSISTANT, QUERY_FAILED_MESSAGE)

        decision: Optional[PendingDecision] = None
        if has_extraction_shape(payload):
            decision = self.tracker.open(
                None, normalize_extraction(payload), _payload_filename(payload)
            )

        return self.conversation.append(
            Role.ASSISTANT,
            response_message(payload, "Response received"),
            payload=unwrap(payload),
            pending_decision=decision,
        )

    # ==================== Decisions ====================

    def _decision(self, entry_id: str) -> Optional[PendingDecision]:
        entry = self.conversation.get(entry_id)
        return entry.pending_decision if entry is not None else None

    async def approve_for_validation(self, entry_id: str) -> Optional[ConversationEntry]:
        """
        Validate the pending rules against the portfolio.

        Returns:
            The "validation complete" (or failure) entry, or None when the
            action was stale, duplicated or overtaken by a discard.
        """
        decision = self._decision(entry_id)
        if not self.tracker.can_approve(decision):
            logger.info("Ignoring approve for entry %s: nothing awaiting validation", entry_id)
            return None
        if entry_id in self._in_flight:
            logger.info("Ignoring approve for entry %s: validation already in flight", entry_id)
            return None

        self._in_flight.add(entry_id)
        try:
            descriptions = [rule.describe() for rule in decision.rules]
            payload = _require_success(
                await self.oracle.validate_rules(descriptions, self.portfolio_context)
            )
        except (OracleError, httpx.HTTPError) as e:
            logger.warning("Validation for entry %s failed: %s", entry_id, e)
            if self._decision(entry_id) is not decision:
                return None
            return self.conversation.append(Role.ASSISTANT, VALIDATION_FAILED_MESSAGE)
        finally:
            self._in_flight.discard(entry_id)

        validation = normalize_validation(payload)
        advanced = self.tracker.approve(decision, validation)
        if not self.conversation.replace_decision(entry_id, decision, advanced):
            logger.info("Dropping validation result for entry %s: decision changed meanwhile", entry_id)
            return None

        logger.info(
            "Validated %d rules for entry %s: score=%s, %d breaches",
            len(decision.rules),
            entry_id,
            validation.compliance_score,
            len(validation.breaches),
        )
        return self.conversation.append(
            Role.ASSISTANT,
            VALIDATION_COMPLETE_MESSAGE,
            payload=validation.raw,
        )

    async def commit(self, entry_id: str) -> Optional[ConversationEntry]:
        """
        Commit a validated decision as the new current version.

        Only reachable once validation has run. Returns the confirmation
        entry, or None for a stale action.
        """
        decision = self._decision(entry_id)
        if not self.tracker.can_commit(decision):
            logger.info("Ignoring commit for entry %s: nothing awaiting commit", entry_id)
            return None
        if not self.conversation.replace_decision(entry_id, decision, None):
            return None

        try:
            version = self.store.commit_version(
                decision.rules,
                decision.filename,
                score=decision.compliance_score,
                breaches=decision.breaches,
            )
        except Exception:
            logger.exception("Commit for entry %s failed", entry_id)
            self.conversation.replace_decision(entry_id, None, decision)
            return self.conversation.append(Role.ASSISTANT, COMMIT_FAILED_MESSAGE)

        return self.conversation.append(
            Role.ASSISTANT,
            f"Successfully added {version.label} with {version.rule_count} rules. "
            "This version is now current.",
        )

    async def discard(self, entry_id: str) -> Optional[ConversationEntry]:
        """Drop the pending decision from either phase; the version history is untouched."""
        decision = self._decision(entry_id)
        if not self.tracker.can_discard(decision):
            logger.info("Ignoring discard for entry %s: no pending decision", entry_id)
            return None
        if not self.conversation.replace_decision(entry_id, decision, None):
            return None
        logger.info("Discarded pending rules for entry %s (%s)", entry_id, decision.filename)
        return self.conversation.append(Role.ASSISTANT, DISCARD_MESSAGE)

    # ==================== Versions ====================

    def list_versions(self) -> list[VersionRecord]:
        return self.store.list_versions()

    def select_current(self) -> Optional[VersionRecord]:
        return self.store.select_current()

    def get_version(self, version_id: str) -> VersionRecord:
        return self.store.get_version(version_id)

    def diff(self, old_version_id: str, new_version_id: str) -> RuleDiff:
        return self.store.diff(old_version_id, new_version_id)

    def entries(self) -> list[ConversationEntry]:
        return self.conversation.entries()
