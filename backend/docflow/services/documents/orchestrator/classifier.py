"""Maps a resolved agent output onto exactly one terminal result."""

from __future__ import annotations

from typing import Any

from .contracts import (
    AgentOutput,
    ClassifiedDocumentType,
    Failed,
    NeedsReview,
    OrchestratorResult,
    Success,
    parse_contact_id,
)
from .parsing import as_float, as_str
from .trace import ProcessingStep

ORCHESTRATOR_STAGE = "orchestrator"
DEFAULT_REVIEW_REASON = "Needs review"
MISSING_STRUCTURE_REASON = "Missing documentType or extraction in orchestrator output"


def _extraction_field(output: AgentOutput, name: str) -> Any:
    if isinstance(output.extraction, dict):
        return output.extraction.get(name)
    return None


def derive_confidence(output: AgentOutput) -> float:
    if output.confidence is not None:
        return output.confidence
    nested = as_float(_extraction_field(output, "confidence"))
    return nested if nested is not None else 0.0


def derive_raw_text(output: AgentOutput) -> str:
    if output.raw_text is not None:
        return output.raw_text
    nested = as_str(_extraction_field(output, "extractedText"))
    return nested if nested is not None else ""


def derive_validation_passed(output: AgentOutput) -> bool:
    if output.validation_passed is not None:
        return output.validation_passed
    return not output.issues


def classify(output: AgentOutput, trace: tuple[ProcessingStep, ...]) -> OrchestratorResult:
    status = output.status.strip().lower()
    document_type = ClassifiedDocumentType.parse(output.document_type)

    if status == "success":
        if document_type is None or output.extraction is None:
            return Failed(reason=MISSING_STRUCTURE_REASON, stage=ORCHESTRATOR_STAGE, trace=trace)
        return Success(
            document_type=document_type,
            extraction=output.extraction,
            confidence=derive_confidence(output),
            raw_text=derive_raw_text(output),
            description=output.description or "",
            keywords=tuple(output.keywords or ()),
            validation_passed=derive_validation_passed(output),
            corrections_applied=output.corrections_applied or 0,
            contact_id=parse_contact_id(output.contact_id),
            contact_created=bool(output.contact_created),
            trace=trace,
        )

    if status == "needs_review":
        return NeedsReview(
            document_type=document_type,
            extraction=output.extraction,
            reason=output.reason or DEFAULT_REVIEW_REASON,
            issues=tuple(output.issues or ()),
            trace=trace,
        )

    if status == "failed":
        return Failed(
            reason=output.reason or "Orchestrator reported failure",
            stage=ORCHESTRATOR_STAGE,
            trace=trace,
        )

    return Failed(reason=f"Unknown orchestrator status: {output.status}", stage=ORCHESTRATOR_STAGE, trace=trace)
