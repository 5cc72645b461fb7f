"""Rebuilds an agent output from the processing trace when the agent's answer is unusable."""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .contracts import AgentOutput, ContactEvidence, LinkDecisionType, parse_contact_id
from .link_policy import ContactLinkPolicy
from .parsing import as_float
from .tools.validation import check_vat
from .tools.vision import EXTRACTION_DOCUMENT_TYPES
from .trace import ProcessingStep, find_last

logger = logging.getLogger(__name__)

STORE_EXTRACTION_TOOL = "store_extraction"
LOOKUP_CONTACT_TOOL = "lookup_contact"


@dataclass(frozen=True)
class FallbackReconstruction:
    output: AgentOutput
    source_tool: str
    contact_id: str | None = None


def _step_tool_name(step: ProcessingStep) -> str:
    if step.tool in EXTRACTION_DOCUMENT_TYPES:
        return step.tool
    return step.action


def _lookup_contact_id(step: ProcessingStep, link_policy: ContactLinkPolicy) -> str | None:
    output = step.output
    contact_id = parse_contact_id(output.get("contactId"))
    if contact_id is None:
        return None
    vat_number = output.get("vatNumber") or (step.input or {}).get("vatNumber")
    evidence = ContactEvidence(
        vat_valid=check_vat(vat_number)["valid"],
        vat_matched=True,
        ambiguity_count=1,
    )
    decision = link_policy.decide(contact_id, evidence)
    if decision.decision_type != LinkDecisionType.AUTO_LINK:
        logger.info("Trace lookup contact %s rejected by %s", contact_id, link_policy.name.value)
        return None
    return contact_id


def find_contact_from_trace(steps: Sequence[ProcessingStep], link_policy: ContactLinkPolicy) -> str | None:
    """Confirmed contact id from the trace.

    A stored link (``linkedContactId``/``contactId``) wins over an exact VAT
    lookup. Suggested contacts are never used.
    """
    store_step = find_last(steps, names=[STORE_EXTRACTION_TOOL], with_output=True)
    if store_step is not None and isinstance(store_step.output, dict):
        stored = parse_contact_id(store_step.output.get("linkedContactId") or store_step.output.get("contactId"))
        if stored is not None:
            return stored

    for step in reversed(steps):
        if LOOKUP_CONTACT_TOOL not in (step.action, step.tool) or not isinstance(step.output, dict):
            continue
        if step.output.get("found") is True and step.output.get("matchType") == "EXACT":
            return _lookup_contact_id(step, link_policy)
    return None


def _fallback_confidence(extraction: Any) -> float | None:
    if isinstance(extraction, dict):
        return as_float(extraction.get("confidence"))
    return None


def reconstruct_from_trace(
    steps: Sequence[ProcessingStep], link_policy: ContactLinkPolicy
) -> FallbackReconstruction | None:
    step = find_last(steps, names=EXTRACTION_DOCUMENT_TYPES, with_output=True)
    if step is None:
        return None
    source_tool = _step_tool_name(step)
    extraction = copy.deepcopy(step.output)
    raw_text = extraction.get("extractedText") if isinstance(extraction, dict) else None
    contact_id = find_contact_from_trace(steps, link_policy)

    output = AgentOutput(
        status="needs_review",
        document_type=EXTRACTION_DOCUMENT_TYPES[source_tool].value,
        extraction=extraction,
        raw_text=raw_text if isinstance(raw_text, str) else None,
        keywords=[],
        confidence=_fallback_confidence(extraction),
        validation_passed=False,
        corrections_applied=0,
        contact_id=contact_id,
        contact_created=False,
        issues=[
            "Orchestrator output parse failed; persisted extraction output",
            f"Fallback source tool: {source_tool}",
        ],
        reason=f"Orchestrator output parse failed (fallback source: {source_tool})",
    )
    return FallbackReconstruction(output=output, source_tool=source_tool, contact_id=contact_id)


def merge_outputs(parsed: AgentOutput, fallback: AgentOutput) -> AgentOutput:
    """Fallback keeps the structure; the parsed answer's known fields win."""
    issues = list(dict.fromkeys([*(fallback.issues or []), *(parsed.issues or [])]))

    def pick(field: str) -> Any:
        value = getattr(parsed, field)
        return value if value is not None else getattr(fallback, field)

    return fallback.model_copy(
        update={
            "description": pick("description"),
            "keywords": pick("keywords"),
            "confidence": pick("confidence"),
            "raw_text": pick("raw_text"),
            "contact_id": pick("contact_id"),
            "contact_created": pick("contact_created"),
            "issues": issues or None,
        }
    )
