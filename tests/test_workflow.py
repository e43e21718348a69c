"""
Tests for the review workflow.

Covers:
  - Extraction: pending decision creation, empty rule lists, failures
  - Validation: phase advance, duplicate approvals, lost updates
  - Commit/discard: version history effects and stale actions
  - Free-form queries and duck-typed extraction payloads
"""

import asyncio

import httpx
import pytest

from rulevault.exceptions import OracleError, ValidationError
from rulevault.models import DecisionPhase, Role, Severity, VersionStatus
from rulevault.store import ArtifactStore
from rulevault.workflow import (
    DISCARD_MESSAGE,
    FREEFORM_SOURCE,
    QUERY_FAILED_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    VALIDATION_COMPLETE_MESSAGE,
    VALIDATION_FAILED_MESSAGE,
    ReviewWorkflow,
)


def rule(rule_id, threshold="≤10%", name=None):
    return {
        "rule_id": rule_id,
        "rule_name": name or f"Rule {rule_id}",
        "rule_type": "Limit",
        "value_threshold": threshold,
        "confidence_score": 90,
    }


def extraction_payload(rules):
    return {"status": "success", "result": {"extracted_rules": rules}}


def validation_payload(score=82, breaches=None):
    return {
        "status": "success",
        "result": {
            "aggregated_analysis": {
                "overall_compliance_score": score,
                "breach_summary": breaches or [],
            }
        },
    }


class FakeOracle:
    """Scripted stand-in for the compliance agent."""

    def __init__(self):
        self.upload_response = {"success": True, "asset_ids": ["asset-1"]}
        self.extraction = extraction_payload([rule("R001"), rule("R002")])
        self.validation = validation_payload()
        self.query_response = {"status": "success", "message": "Cash is capped at 10%."}
        self.validation_gate = None
        self.calls = []

    async def upload(self, filename, content, content_type="application/pdf"):
        self.calls.append(("upload", filename))
        if isinstance(self.upload_response, Exception):
            raise self.upload_response
        return self.upload_response

    async def extract_rules(self, filename, asset_ids=()):
        self.calls.append(("extract", filename, list(asset_ids)))
        if isinstance(self.extraction, Exception):
            raise self.extraction
        return self.extraction

    async def validate_rules(self, rule_descriptions, portfolio_context=None):
        self.calls.append(("validate", list(rule_descriptions), portfolio_context))
        if self.validation_gate is not None:
            await self.validation_gate.wait()
        if isinstance(self.validation, Exception):
            raise self.validation
        return self.validation

    async def query(self, text):
        self.calls.append(("query", text))
        if isinstance(self.query_response, Exception):
            raise self.query_response
        return self.query_response

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def workflow(oracle):
    return ReviewWorkflow(oracle, store=ArtifactStore())


async def extracted_entry(workflow, filename="IMA_eg1.pdf"):
    entry = await workflow.submit_document(filename, b"%PDF-1.4")
    assert entry.phase == DecisionPhase.AWAITING_VALIDATION_APPROVAL
    return entry


async def validated_entry(workflow, filename="IMA_eg1.pdf"):
    entry = await extracted_entry(workflow, filename)
    assert await workflow.approve_for_validation(entry.id) is not None
    assert entry.phase == DecisionPhase.AWAITING_COMMIT_DECISION
    return entry


class TestSubmitDocument:
    @pytest.mark.asyncio
    async def test_creates_pending_decision(self, workflow, oracle):
        entry = await workflow.submit_document("IMA_eg1.pdf", b"%PDF")

        assert entry.role == Role.ASSISTANT
        assert "extracted 2 compliance rules from IMA_eg1.pdf" in entry.content
        decision = entry.pending_decision
        assert decision.phase == DecisionPhase.AWAITING_VALIDATION_APPROVAL
        assert [r.rule_id for r in decision.rules] == ["R001", "R002"]
        assert decision.filename == "IMA_eg1.pdf"
        assert decision.compliance_score is None

        entries = workflow.entries()
        assert entries[-2].role == Role.USER
        assert entries[-2].content == "Uploaded file: IMA_eg1.pdf"
        assert ("extract", "IMA_eg1.pdf", ["asset-1"]) in oracle.calls
        assert oracle.count("validate") == 0

    @pytest.mark.asyncio
    async def test_empty_rule_list_is_not_an_error(self, workflow, oracle):
        oracle.extraction = extraction_payload([])
        entry = await workflow.submit_document("empty.pdf")
        assert entry.pending_decision.phase == DecisionPhase.AWAITING_VALIDATION_APPROVAL
        assert entry.pending_decision.rules == []

    @pytest.mark.asyncio
    async def test_aggregated_shape(self, workflow, oracle):
        oracle.extraction = {
            "response": {
                "status": "success",
                "result": {"aggregated_analysis": {"rules_table": [rule("R010")]}},
            }
        }
        entry = await workflow.submit_document("IMA.pdf")
        assert [r.rule_id for r in entry.pending_decision.rules] == ["R010"]

    @pytest.mark.asyncio
    async def test_malformed_payload_degrades_to_zero_rules(self, workflow, oracle):
        oracle.extraction = {"status": "success", "result": "unexpected"}
        entry = await workflow.submit_document("IMA.pdf")
        assert entry.pending_decision.rules == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [
            {"status": "error", "message": "agent down"},
            OracleError("boom"),
            httpx.ConnectError("refused"),
        ],
    )
    async def test_extraction_failure(self, workflow, oracle, failure):
        oracle.extraction = failure
        before = len(workflow.entries())

        entry = await workflow.submit_document("IMA.pdf")

        assert entry.content == UPLOAD_FAILED_MESSAGE
        assert entry.pending_decision is None
        assert len(workflow.entries()) == before + 2
        assert workflow.list_versions() == []

    @pytest.mark.asyncio
    async def test_upload_failure_skips_extraction(self, workflow, oracle):
        oracle.upload_response = {"success": False}
        entry = await workflow.submit_document("IMA.pdf")
        assert entry.content == UPLOAD_FAILED_MESSAGE
        assert oracle.count("extract") == 0

    @pytest.mark.asyncio
    async def test_requires_filename(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.submit_document("  ")


class TestApproveForValidation:
    @pytest.mark.asyncio
    async def test_advances_phase(self, workflow, oracle):
        oracle.validation = validation_payload(
            score="67",
            breaches=[
                {
                    "fund_name": "China Growth Fund",
                    "rule_violated": "Cash Limit",
                    "current_value": "12%",
                    "limit": "10%",
                    "severity": "HIGH",
                }
            ],
        )
        entry = await extracted_entry(workflow)
        original_rules = entry.pending_decision.rules

        result = await workflow.approve_for_validation(entry.id)

        assert result.content == VALIDATION_COMPLETE_MESSAGE
        assert result.pending_decision is None
        decision = entry.pending_decision
        assert decision.phase == DecisionPhase.AWAITING_COMMIT_DECISION
        assert decision.rules == original_rules
        assert decision.filename == "IMA_eg1.pdf"
        assert decision.compliance_score == 67.0
        assert decision.breaches[0].severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_sends_rule_descriptions_and_context(self, oracle):
        workflow = ReviewWorkflow(oracle, portfolio_context={"funds": ["China Growth Fund"]})
        entry = await extracted_entry(workflow)
        await workflow.approve_for_validation(entry.id)
        call = [c for c in oracle.calls if c[0] == "validate"][0]
        assert call[1] == ["Rule R001: ≤10%", "Rule R002: ≤10%"]
        assert call[2] == {"funds": ["China Growth Fund"]}

    @pytest.mark.asyncio
    async def test_second_approve_is_noop(self, workflow, oracle):
        entry = await validated_entry(workflow)
        before = len(workflow.entries())

        assert await workflow.approve_for_validation(entry.id) is None
        assert len(workflow.entries()) == before
        assert oracle.count("validate") == 1

    @pytest.mark.asyncio
    async def test_unknown_entry_is_noop(self, workflow, oracle):
        assert await workflow.approve_for_validation("does-not-exist") is None
        assert oracle.count("validate") == 0

    @pytest.mark.asyncio
    async def test_entry_without_decision_is_noop(self, workflow, oracle):
        welcome = workflow.entries()[0]
        before = len(workflow.entries())
        assert await workflow.approve_for_validation(welcome.id) is None
        assert len(workflow.entries()) == before

    @pytest.mark.asyncio
    async def test_concurrent_approvals_issue_one_request(self, workflow, oracle):
        entry = await extracted_entry(workflow)
        oracle.validation_gate = asyncio.Event()

        first = asyncio.create_task(workflow.approve_for_validation(entry.id))
        await asyncio.sleep(0)
        second = await workflow.approve_for_validation(entry.id)
        assert second is None

        oracle.validation_gate.set()
        result = await first

        assert result is not None
        assert oracle.count("validate") == 1
        assert entry.phase == DecisionPhase.AWAITING_COMMIT_DECISION

    @pytest.mark.asyncio
    async def test_discard_while_validating_drops_result(self, workflow, oracle):
        entry = await extracted_entry(workflow)
        oracle.validation_gate = asyncio.Event()

        task = asyncio.create_task(workflow.approve_for_validation(entry.id))
        await asyncio.sleep(0)
        assert await workflow.discard(entry.id) is not None
        before = len(workflow.entries())

        oracle.validation_gate.set()
        assert await task is None
        assert entry.pending_decision is None
        assert len(workflow.entries()) == before

    @pytest.mark.asyncio
    async def test_validation_failure_keeps_phase(self, workflow, oracle):
        oracle.validation = {"status": "failed"}
        entry = await extracted_entry(workflow)
        decision = entry.pending_decision

        result = await workflow.approve_for_validation(entry.id)

        assert result.content == VALIDATION_FAILED_MESSAGE
        assert entry.pending_decision is decision

        # the decision can be retried once the agent recovers
        oracle.validation = validation_payload()
        assert await workflow.approve_for_validation(entry.id) is not None
        assert entry.phase == DecisionPhase.AWAITING_COMMIT_DECISION


class TestCommit:
    @pytest.mark.asyncio
    async def test_commit_creates_current_version(self, workflow):
        entry = await validated_entry(workflow)

        confirmation = await workflow.commit(entry.id)

        assert "Successfully added Version 1.0 with 2 rules" in confirmation.content
        assert entry.pending_decision is None
        current = workflow.select_current()
        assert current.id == "v1"
        assert current.filename == "IMA_eg1.pdf"
        assert current.compliance_score == 82.0
        assert current.changes.added == 2

    @pytest.mark.asyncio
    async def test_commit_archives_previous(self, workflow, oracle):
        first = await validated_entry(workflow, "IMA_eg1.pdf")
        await workflow.commit(first.id)

        oracle.extraction = extraction_payload(
            [rule("R002", "≤12%"), rule("R003"), rule("R004")]
        )
        second = await validated_entry(workflow, "IMA_eg2.pdf")
        await workflow.commit(second.id)

        versions = workflow.list_versions()
        assert [v.status for v in versions] == [VersionStatus.ARCHIVED, VersionStatus.CURRENT]
        assert versions[1].changes.to_dict() == {"added": 2, "removed": 1, "modified": 1}
        assert workflow.diff("v1", "v2").modified == ["R002"]

    @pytest.mark.asyncio
    async def test_commit_requires_validation(self, workflow):
        entry = await extracted_entry(workflow)
        before = len(workflow.entries())

        assert await workflow.commit(entry.id) is None
        assert entry.phase == DecisionPhase.AWAITING_VALIDATION_APPROVAL
        assert workflow.list_versions() == []
        assert len(workflow.entries()) == before

    @pytest.mark.asyncio
    async def test_double_commit_is_noop(self, workflow):
        entry = await validated_entry(workflow)
        await workflow.commit(entry.id)
        before = len(workflow.entries())

        assert await workflow.commit(entry.id) is None
        assert len(workflow.list_versions()) == 1
        assert len(workflow.entries()) == before

    @pytest.mark.asyncio
    async def test_store_failure_restores_decision(self, workflow):
        entry = await validated_entry(workflow)
        decision = entry.pending_decision

        def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        workflow.store.commit_version = broken
        result = await workflow.commit(entry.id)

        assert result is not None
        assert entry.pending_decision is decision
        assert workflow.list_versions() == []


class TestDiscard:
    @pytest.mark.asyncio
    async def test_discard_after_extraction(self, workflow):
        entry = await extracted_entry(workflow)
        confirmation = await workflow.discard(entry.id)
        assert confirmation.content == DISCARD_MESSAGE
        assert entry.pending_decision is None
        assert workflow.list_versions() == []

    @pytest.mark.asyncio
    async def test_discard_after_validation(self, workflow):
        first = await validated_entry(workflow)
        await workflow.commit(first.id)
        entry = await validated_entry(workflow, "IMA_eg2.pdf")

        assert await workflow.discard(entry.id) is not None
        assert entry.pending_decision is None
        assert [v.id for v in workflow.list_versions()] == ["v1"]
        assert workflow.select_current().id == "v1"

    @pytest.mark.asyncio
    async def test_discard_twice(self, workflow):
        entry = await extracted_entry(workflow)
        await workflow.discard(entry.id)
        before = len(workflow.entries())
        assert await workflow.discard(entry.id) is None
        assert len(workflow.entries()) == before

    @pytest.mark.asyncio
    async def test_actions_after_discard_are_noops(self, workflow, oracle):
        entry = await extracted_entry(workflow)
        await workflow.discard(entry.id)
        assert await workflow.approve_for_validation(entry.id) is None
        assert await workflow.commit(entry.id) is None
        assert oracle.count("validate") == 0


class TestFreeformQuery:
    @pytest.mark.asyncio
    async def test_plain_reply(self, workflow, oracle):
        entry = await workflow.submit_freeform_query("What are cash limits?")
        assert entry.content == "Cash is capped at 10%."
        assert entry.pending_decision is None
        assert workflow.entries()[-2].content == "What are cash limits?"

    @pytest.mark.asyncio
    async def test_reply_without_message(self, workflow, oracle):
        oracle.query_response = {"status": "success", "result": {"answer": "yes"}}
        entry = await workflow.submit_freeform_query("Anything?")
        assert entry.content == "Response received"
        assert entry.pending_decision is None

    @pytest.mark.asyncio
    async def test_extraction_shaped_reply_opens_decision(self, workflow, oracle):
        oracle.query_response = {
            "status": "success",
            "message": "Here are the rules.",
            "result": {"aggregated_analysis": {"rules_table": [rule("R001")]}},
        }
        entry = await workflow.submit_freeform_query("Extract all compliance rules")
        assert entry.phase == DecisionPhase.AWAITING_VALIDATION_APPROVAL
        assert entry.pending_decision.filename == FREEFORM_SOURCE

    @pytest.mark.asyncio
    async def test_failure(self, workflow, oracle):
        oracle.query_response = httpx.ReadTimeout("slow")
        entry = await workflow.submit_freeform_query("Check compliance")
        assert entry.content == QUERY_FAILED_MESSAGE
        assert entry.pending_decision is None

    @pytest.mark.asyncio
    async def test_requires_text(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.submit_freeform_query("")
