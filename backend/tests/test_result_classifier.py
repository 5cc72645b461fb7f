import uuid

import pytest

from docflow.services.documents.orchestrator.classifier import (
    DEFAULT_REVIEW_REASON,
    MISSING_STRUCTURE_REASON,
    classify,
    derive_validation_passed,
)
from docflow.services.documents.orchestrator.contracts import (
    AgentOutput,
    ClassifiedDocumentType,
    Failed,
    NeedsReview,
    Success,
)
from docflow.services.documents.orchestrator.trace import ProcessingTraceCollector


def _trace():
    trace = ProcessingTraceCollector()
    trace.record("extract_bill", tool="extract_bill", output={"supplierName": "ACME"})
    return trace.snapshot()


def test_success_derives_missing_fields_from_extraction():
    contact_id = uuid.uuid4()
    output = AgentOutput(
        status=" Success ",
        document_type="bill",
        extraction={"supplierName": "ACME", "confidence": 0.77, "extractedText": "ACME NV"},
        keywords=["office"],
        contact_id=str(contact_id).upper(),
    )

    result = classify(output, _trace())

    assert isinstance(result, Success)
    assert result.document_type == ClassifiedDocumentType.BILL
    assert result.confidence == 0.77
    assert result.raw_text == "ACME NV"
    assert result.description == ""
    assert result.keywords == ("office",)
    assert result.validation_passed is True
    assert result.corrections_applied == 0
    assert result.contact_id == str(contact_id)
    assert result.contact_created is False
    assert len(result.trace) == 1


def test_success_without_structure_fails():
    result = classify(AgentOutput(status="success", document_type="INVOICE"), ())
    assert isinstance(result, Failed)
    assert result.reason == MISSING_STRUCTURE_REASON
    assert result.stage == "orchestrator"


def test_unknown_document_type_cannot_succeed():
    result = classify(AgentOutput(status="success", document_type="MENU", extraction={}), ())
    assert isinstance(result, Failed)


def test_needs_review_keeps_partial_data():
    output = AgentOutput(status="needs_review", document_type="RECEIPT", extraction={"a": 1}, issues=["blurry"])
    result = classify(output, ())

    assert isinstance(result, NeedsReview)
    assert result.document_type == ClassifiedDocumentType.RECEIPT
    assert result.reason == DEFAULT_REVIEW_REASON
    assert result.issues == ("blurry",)


def test_needs_review_with_unrecognised_type():
    result = classify(AgentOutput(status="needs_review", document_type="??", reason="Unclear"), ())
    assert result.document_type is None
    assert result.reason == "Unclear"


@pytest.mark.parametrize(
    "status, reason",
    [
        ("failed", "Orchestrator reported failure"),
        ("done", "Unknown orchestrator status: done"),
    ],
)
def test_other_statuses_fail(status, reason):
    result = classify(AgentOutput(status=status), ())
    assert isinstance(result, Failed)
    assert result.reason == reason


def test_validation_passed_follows_issues_when_not_stated():
    assert derive_validation_passed(AgentOutput(status="success")) is True
    assert derive_validation_passed(AgentOutput(status="success", issues=["x"])) is False
    assert derive_validation_passed(AgentOutput(status="success", issues=["x"], validation_passed=True)) is True


def test_nested_confidence_and_text_are_coerced():
    output = AgentOutput(
        status="success",
        document_type="RECEIPT",
        extraction={"merchantName": "Tankstation", "confidence": "0.85", "extractedText": 1234},
    )

    result = classify(output, ())

    assert isinstance(result, Success)
    assert result.confidence == 0.85
    assert result.raw_text == "1234"


def test_unreadable_nested_confidence_defaults_to_zero():
    output = AgentOutput(status="success", document_type="RECEIPT", extraction={"confidence": "high"})
    assert classify(output, ()).confidence == 0.0
