"""Typed contracts for document orchestration: agent output, link decisions, run results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .trace import ProcessingStep


class ClassifiedDocumentType(str, Enum):
    INVOICE = "INVOICE"
    BILL = "BILL"
    RECEIPT = "RECEIPT"
    EXPENSE = "EXPENSE"
    CREDIT_NOTE = "CREDIT_NOTE"
    PRO_FORMA = "PRO_FORMA"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> ClassifiedDocumentType | None:
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class IntelligenceMode(str, Enum):
    ASSISTED = "assisted"
    AUTONOMOUS = "autonomous"
    SOVEREIGN = "sovereign"

    @property
    def max_agent_iterations(self) -> int:
        return _MODE_ITERATIONS[self]


_MODE_ITERATIONS = {
    IntelligenceMode.ASSISTED: 8,
    IntelligenceMode.AUTONOMOUS: 12,
    IntelligenceMode.SOVEREIGN: 32,
}


class LinkDecisionType(str, Enum):
    AUTO_LINK = "AUTO_LINK"
    SUGGEST = "SUGGEST"
    NONE = "NONE"


class ContactLinkPolicyName(str, Enum):
    VAT_ONLY = "VAT_ONLY"
    VAT_OR_STRONG_SIGNALS = "VAT_OR_STRONG_SIGNALS"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentOutput(CamelModel):
    """What the orchestrator agent is asked to answer with. Only ``status`` is required."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    status: str
    document_type: str | None = None
    extraction: Any = None
    raw_text: str | None = None
    description: str | None = None
    keywords: list[str] | None = None
    confidence: float | None = None
    validation_passed: bool | None = None
    corrections_applied: int | None = None
    contact_id: str | None = None
    contact_created: bool | None = None
    issues: list[str] | None = None
    reason: str | None = None

    @property
    def has_document_type(self) -> bool:
        return self.document_type is not None and bool(self.document_type.strip())

    @property
    def is_complete(self) -> bool:
        return self.has_document_type and self.extraction is not None


class TenantContext(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    vat_number: str | None = None
    company_name: str | None = None


class ContactEvidence(CamelModel):
    vat_valid: bool | None = None
    vat_matched: bool | None = None
    cbe_exists: bool | None = None
    iban_matched: bool | None = None
    name_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    address_matched: bool | None = None
    ambiguity_count: int | None = Field(default=None, ge=0)


class LinkDecision(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    decision_type: LinkDecisionType
    contact_id: str | None = None
    reason: str = ""
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    evidence: ContactEvidence | None = None


class StoreExtractionPayload(CamelModel):
    document_id: str
    tenant_id: str
    run_id: str | None = None
    document_type: str
    extraction: Any
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    raw_text: str = ""
    contact_id: str | None = None
    contact_created: bool = False
    link_decision: LinkDecision | None = None


class ContactInfo(CamelModel):
    contact_id: str
    name: str
    vat_number: str | None = None
    address: str | None = None
    iban: str | None = None


class CreateContactResult(CamelModel):
    success: bool
    contact_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DocumentContent:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class OrchestrationRun:
    """One processing attempt; fixed at orchestration entry."""

    document_id: str
    tenant_id: str
    tenant_context: TenantContext
    mode: IntelligenceMode
    run_id: str | None = None
    max_pages: int | None = None
    dpi: int | None = None

    @property
    def max_iterations(self) -> int:
        return self.mode.max_agent_iterations


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    trace: tuple[ProcessingStep, ...] = ()


class Success(_Result):
    kind: Literal["success"] = "success"
    document_type: ClassifiedDocumentType
    extraction: Any
    confidence: float
    raw_text: str
    description: str
    keywords: tuple[str, ...] = ()
    validation_passed: bool
    corrections_applied: int = 0
    example_used: str | None = None
    contact_id: str | None = None
    contact_created: bool = False


class NeedsReview(_Result):
    kind: Literal["needs_review"] = "needs_review"
    document_type: ClassifiedDocumentType | None = None
    extraction: Any = None
    reason: str
    issues: tuple[str, ...] = ()


class Failed(_Result):
    kind: Literal["failed"] = "failed"
    reason: str
    stage: str


OrchestratorResult = Annotated[Union[Success, NeedsReview, Failed], Field(discriminator="kind")]


def parse_contact_id(value: Any) -> str | None:
    """Canonical UUID string, or None for anything that is not a UUID."""
    if value is None:
        return None
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        return None
