"""End-to-end tests for the document orchestrator with scripted providers."""

import asyncio
import json
import unittest

from docflow.services.ai.agent.session import AgentSession
from docflow.services.ai.common.providers import MockProvider, ToolCall
from docflow.services.ai.common.router import ResolvedConfig
from docflow.services.documents.orchestrator.collaborators import OrchestratorCollaborators
from docflow.services.documents.orchestrator.contracts import (
    ClassifiedDocumentType,
    DocumentContent,
    Failed,
    IntelligenceMode,
    NeedsReview,
    Success,
    TenantContext,
)
from docflow.services.documents.orchestrator.service import (
    NOT_PERSISTED_REASON,
    PARSE_FAILED_REASON,
    DocumentOrchestrator,
    OrchestratorConfig,
)

DOC = "0c7d5a8e-1f0b-4d2e-9a51-1d3c9b6a7e10"
TENANT = "5b1f8f52-8c8e-4f0c-a3d4-6a0f2f9e0c11"
INVOICE = {
    "invoiceNumber": "F-2026-001",
    "customerName": "ACME NV",
    "customerVatNumber": "BE0403170701",
    "totalAmount": "1234.56",
    "extractedText": "INVOICE F-2026-001 ACME NV",
}


def _config(provider):
    return ResolvedConfig(provider=provider, model="", temperature=0.0, max_tokens=1024, timeout_seconds=5)


def _call(name, **arguments):
    return ToolCall(id=f"call-{name}", name=name, arguments={"documentId": DOC, **arguments})


def _store_call(extraction=INVOICE):
    return ToolCall(
        id="call-store",
        name="store_extraction",
        arguments={
            "documentType": "INVOICE",
            "extraction": extraction,
            "description": "Consulting invoice",
            "keywords": ["consulting"],
            "confidence": 0.92,
        },
    )


def _final(**overrides):
    payload = {
        "status": "success",
        "documentType": "INVOICE",
        "extraction": INVOICE,
        "rawText": INVOICE["extractedText"],
        "description": "Consulting invoice",
        "keywords": ["consulting"],
        "confidence": 0.92,
    }
    payload.update(overrides)
    return json.dumps(payload)


class Harness:
    def __init__(self, agent_script, *, vision_script=(), repair_script=(), store_results=(True,), **collaborators):
        self.agent = MockProvider(agent_script)
        self.vision = MockProvider(vision_script)
        self.repair = MockProvider(repair_script)
        self.store_results = list(store_results)
        self.stored = []
        self.sessions = []
        self.collaborators = OrchestratorCollaborators(
            fetch_document=self.fetch_document,
            store_extraction=self.store_extraction,
            **collaborators,
        )

    async def fetch_document(self, document_id, tenant_id):
        return DocumentContent(data=b"%PDF-1.7 invoice", mime_type="application/pdf")

    async def store_extraction(self, payload):
        self.stored.append(payload)
        return self.store_results.pop(0) if len(self.store_results) > 1 else self.store_results[0]

    def session_factory(self, *args, **kwargs):
        session = AgentSession(*args, **kwargs)
        self.sessions.append(session)
        return session

    def run(self, mode=IntelligenceMode.AUTONOMOUS, **kwargs):
        config = OrchestratorConfig(
            orchestrator=_config(self.agent),
            vision=_config(self.vision),
            repair=_config(self.repair),
            mode=mode,
        )
        orchestrator = DocumentOrchestrator(config, self.collaborators, session_factory=self.session_factory)
        return asyncio.run(
            orchestrator.process(DOC, TENANT, TenantContext(vat_number="BE0987654321"), run_id="run-1", **kwargs)
        )


def _actions(result):
    return [step.action for step in result.trace]


class OrchestratorScenarioTests(unittest.TestCase):
    def test_clean_output_succeeds_without_repair(self):
        harness = Harness(
            [_call("get_document_images"), _call("extract_invoice"), _store_call(), _final()],
            vision_script=[json.dumps(INVOICE)],
        )

        result = harness.run()

        self.assertIsInstance(result, Success)
        self.assertEqual(result.document_type, ClassifiedDocumentType.INVOICE)
        self.assertEqual(result.confidence, 0.92)
        self.assertEqual(result.extraction, INVOICE)
        self.assertTrue(result.validation_passed)
        self.assertEqual(len(harness.stored), 1)
        self.assertNotIn("orchestrator_output_repair", _actions(result))
        self.assertEqual(harness.repair.calls, [])
        self.assertEqual(
            _actions(result),
            ["get_document_images", "extract_invoice", "store_extraction", "orchestrator_run_completed"],
        )
        usage = result.trace[-1].output
        self.assertEqual(usage["provider"], "mock")
        self.assertEqual(usage["mode"], "autonomous")
        self.assertEqual(usage["modelCalls"], 4)
        self.assertEqual(usage["toolCalls"], 3)

    def test_truncated_output_falls_back_to_trace_extraction(self):
        harness = Harness(
            [_call("get_document_images"), _call("extract_invoice"), '{"status": "success", "documentType": "INVO'],
            vision_script=[json.dumps(INVOICE)],
            repair_script=["Sorry, I cannot help with that."],
        )

        result = harness.run()

        self.assertIsInstance(result, NeedsReview)
        self.assertEqual(result.document_type, ClassifiedDocumentType.INVOICE)
        self.assertEqual(result.extraction, INVOICE)
        self.assertIn("fallback", result.reason)
        self.assertEqual(len(harness.repair.calls), 1)
        self.assertEqual(len(harness.stored), 1)
        self.assertEqual(harness.stored[0].document_type, "INVOICE")
        actions = _actions(result)
        self.assertIn("orchestrator_output_parse_failed", actions)
        self.assertEqual(actions[-2:], ["fallback_store_extraction", "fallback_store_extraction_result"])

    def test_placeholder_output_is_repaired_once(self):
        truncated = dict(INVOICE, totalAmount="1234.56...")
        harness = Harness(
            [_store_call(), _final(extraction=truncated)],
            repair_script=[_final(description="Repaired invoice")],
        )

        result = harness.run()

        self.assertIsInstance(result, Success)
        self.assertEqual(result.extraction["totalAmount"], "1234.56")
        self.assertEqual(result.description, "Repaired invoice")
        self.assertEqual(len(harness.repair.calls), 1)
        self.assertEqual(_actions(result).count("orchestrator_output_repair"), 1)
        self.assertEqual(len(harness.stored), 1)

    def test_unstored_success_is_stored_by_guard(self):
        harness = Harness([_final()])

        result = harness.run()

        self.assertIsInstance(result, Success)
        self.assertEqual(len(harness.stored), 1)
        self.assertIn("fallback_store_extraction", _actions(result))

    def test_failed_guard_store_fails_the_run(self):
        harness = Harness([_final()], store_results=(False,))

        result = harness.run()

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, NOT_PERSISTED_REASON)
        self.assertEqual(result.stage, "store_extraction")
        self.assertEqual(result.trace[-1].notes, "success=false")


class OrchestratorFailureTests(unittest.TestCase):
    def test_provider_error_fails_in_orchestrator_stage(self):
        harness = Harness([RuntimeError("provider down")])

        result = harness.run()

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, "provider down")
        self.assertEqual(result.stage, "orchestrator")
        self.assertEqual(_actions(result), ["orchestrator_run_failed"])
        self.assertTrue(harness.sessions[0].closed)

    def test_iteration_budget_follows_mode(self):
        harness = Harness([_call("get_peppol_data") for _ in range(10)])

        result = harness.run(mode=IntelligenceMode.ASSISTED)

        self.assertIsInstance(result, Failed)
        self.assertEqual(harness.sessions[0].max_iterations, 8)
        self.assertEqual(len(harness.agent.calls), 8)
        self.assertEqual(_actions(result)[-1], "orchestrator_run_failed")

    def test_unparseable_output_without_evidence_fails(self):
        harness = Harness(["I was unable to read the document."], repair_script=["no"])

        result = harness.run()

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, PARSE_FAILED_REASON)
        self.assertEqual(harness.stored, [])

    def test_unexpected_error_is_contained(self):
        harness = Harness([_final()])

        def broken_factory(*args, **kwargs):
            raise TypeError("bad session arguments")

        harness.session_factory = broken_factory
        result = harness.run()

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.stage, "orchestrator")
        self.assertEqual(result.reason, "bad session arguments")
        self.assertEqual(_actions(result), ["orchestrator_unexpected_error"])

    def test_session_closed_after_success(self):
        harness = Harness([_store_call(), _final()])
        harness.run()
        self.assertTrue(harness.sessions[0].closed)


class OrchestratorTraceTests(unittest.TestCase):
    def test_step_numbers_strictly_increase(self):
        harness = Harness(
            [_call("get_document_images"), _call("extract_invoice"), "{broken"],
            vision_script=[json.dumps(INVOICE)],
            repair_script=[_final(status="needs_review", issues=["Totals unclear"], documentType=None, extraction=None)],
        )

        result = harness.run()

        numbers = [step.step for step in result.trace]
        self.assertEqual(numbers, list(range(1, len(numbers) + 1)))
        self.assertIsInstance(result, NeedsReview)
        self.assertEqual(result.document_type, ClassifiedDocumentType.INVOICE)
        self.assertEqual(result.issues[-1], "Totals unclear")
        self.assertIn("orchestrator_output_incomplete", _actions(result))

    def test_tool_issues_do_not_flip_validation(self):
        async def failing_chunks(document_id, tenant_id, text):
            raise RuntimeError("vector store offline")

        harness = Harness(
            [
                _store_call(),
                ToolCall(id="chunks", name="store_chunks", arguments={"text": "INVOICE F-2026-001"}),
                _final(),
            ],
            store_chunks=failing_chunks,
        )

        result = harness.run()

        self.assertIsInstance(result, Success)
        self.assertTrue(result.validation_passed)
        chunk_step = [s for s in result.trace if s.action == "store_chunks"][0]
        self.assertEqual(chunk_step.output["success"], False)

    def test_tool_issues_reach_review_results(self):
        async def failing_status(document_id, tenant_id, status):
            raise RuntimeError("index unavailable")

        harness = Harness(
            [
                _store_call(),
                ToolCall(id="status", name="update_indexing_status", arguments={"status": "INDEXED"}),
                _final(status="needs_review", reason="Check VAT", issues=["VAT unreadable"]),
            ],
            update_indexing_status=failing_status,
        )

        result = harness.run()

        self.assertIsInstance(result, NeedsReview)
        self.assertEqual(result.issues, ("VAT unreadable", "Indexing status update failed: index unavailable"))

    def test_document_outside_run_is_refused(self):
        other = ToolCall(id="x", name="get_document_images", arguments={"documentId": "someone-else"})
        harness = Harness([other, _store_call(), _final()])

        result = harness.run()

        step = result.trace[0]
        self.assertIsNone(step.output)
        self.assertIn("outside this run", step.notes)
        tool_message = harness.agent.calls[1]["messages"][-1]
        self.assertIn("outside this run", json.loads(tool_message["content"])["error"])
