"""SQLAlchemy-backed collaborators for the document orchestrator."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docflow.core.storage import download_object
from docflow.models.document import (
    INDEXING_STATUSES,
    Contact,
    Document,
    DocumentChunk,
    DocumentDraft,
    ExtractionExample,
    Tenant,
)
from docflow.services.documents.orchestrator.collaborators import OrchestratorCollaborators
from docflow.services.documents.orchestrator.contracts import (
    ContactEvidence,
    ContactInfo,
    CreateContactResult,
    DocumentContent,
    LinkDecision,
    LinkDecisionType,
    StoreExtractionPayload,
    TenantContext,
)
from docflow.services.documents.orchestrator.link_policy import ContactLinkPolicy
from docflow.services.documents.orchestrator.tools.validation import check_vat, normalize_vat

logger = logging.getLogger(__name__)

CHUNK_MAX_CHARS = 1500

# Extraction keys holding the counterparty VAT number, per extraction tool.
COUNTERPARTY_VAT_KEYS = (
    "supplierVatNumber",
    "customerVatNumber",
    "merchantVatNumber",
    "vendorVatNumber",
)


def _counterparty_vat(extraction: Any) -> str | None:
    if not isinstance(extraction, dict):
        return None
    for key in COUNTERPARTY_VAT_KEYS:
        value = extraction.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def split_chunks(text: str, max_chars: int = CHUNK_MAX_CHARS) -> list[str]:
    """Paragraphs, packed together up to *max_chars*; longer paragraphs are cut."""
    chunks: list[str] = []
    current = ""
    for paragraph in re.split(r"\n\s*\n", text or ""):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        while len(paragraph) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:max_chars])
            paragraph = paragraph[max_chars:].strip()
        if not paragraph:
            continue
        if current and len(current) + 2 + len(paragraph) > max_chars:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks


def load_tenant_context(db: Session, tenant_id: str | uuid.UUID) -> TenantContext:
    tenant = db.get(Tenant, uuid.UUID(str(tenant_id)))
    if tenant is None:
        return TenantContext()
    return TenantContext(vat_number=tenant.vat_number, company_name=tenant.name)


class DocumentRepository:
    """One instance per processing run, bound to the run's database session."""

    def __init__(
        self,
        db: Session,
        *,
        link_policy: ContactLinkPolicy,
        downloader: Callable[[str], bytes] = download_object,
    ) -> None:
        self.db = db
        self.link_policy = link_policy
        self._downloader = downloader

    def collaborators(self) -> OrchestratorCollaborators:
        return OrchestratorCollaborators(
            fetch_document=self.fetch_document,
            store_extraction=self.store_extraction,
            fetch_peppol_data=self.fetch_peppol_data,
            lookup_contact=self.lookup_contact,
            create_contact=self.create_contact,
            update_indexing_status=self.update_indexing_status,
            store_chunks=self.store_chunks,
            index_example=self.index_example,
        )

    def _document(self, document_id: str, tenant_id: str | None = None) -> Document | None:
        document = self.db.get(Document, uuid.UUID(str(document_id)))
        if document is None:
            return None
        if tenant_id is not None and str(document.tenant_id) != str(tenant_id):
            return None
        return document

    # ─── Documents ──────────────────────────────────

    async def fetch_document(self, document_id: str, tenant_id: str) -> DocumentContent:
        document = self._document(document_id, tenant_id)
        if document is None:
            raise LookupError(f"Document {document_id} not found")
        data = await asyncio.to_thread(self._downloader, document.storage_key)
        return DocumentContent(data=data, mime_type=document.content_type or "application/pdf")

    async def fetch_peppol_data(self, document_id: str) -> dict[str, Any] | None:
        document = self._document(document_id)
        if document is None or not document.peppol_payload:
            return None
        return dict(document.peppol_payload)

    async def update_indexing_status(self, document_id: str, tenant_id: str, status: str) -> None:
        if status not in INDEXING_STATUSES:
            raise ValueError(f"Unknown indexing status: {status}")
        document = self._document(document_id, tenant_id)
        if document is None:
            raise LookupError(f"Document {document_id} not found")
        with self.db.begin_nested():
            document.indexing_status = status

    # ─── Contacts ──────────────────────────────────

    def _contacts_by_vat(self, tenant_id: str, vat_number: str) -> list[Contact]:
        return list(
            self.db.execute(
                select(Contact)
                .where(Contact.tenant_id == uuid.UUID(str(tenant_id)), Contact.vat_number == vat_number)
                .order_by(Contact.created_at)
            )
            .scalars()
            .all()
        )

    def count_contacts_by_vat(self, tenant_id: str, vat_number: str) -> int:
        return int(
            self.db.execute(
                select(func.count(Contact.id)).where(
                    Contact.tenant_id == uuid.UUID(str(tenant_id)),
                    Contact.vat_number == vat_number,
                )
            ).scalar_one()
        )

    async def lookup_contact(self, tenant_id: str, vat_number: str) -> ContactInfo | None:
        normalized = normalize_vat(vat_number)
        if normalized is None:
            return None
        matches = self._contacts_by_vat(tenant_id, normalized)
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning("VAT %s matches %d contacts for tenant %s", normalized, len(matches), tenant_id)
        contact = matches[0]
        return ContactInfo(
            contact_id=str(contact.id),
            name=contact.name,
            vat_number=contact.vat_number,
            address=contact.address,
            iban=contact.iban,
        )

    async def create_contact(
        self, tenant_id: str, name: str, vat_number: str | None, address: str | None
    ) -> CreateContactResult:
        normalized = normalize_vat(vat_number)
        if normalized is not None and self._contacts_by_vat(tenant_id, normalized):
            return CreateContactResult(success=False, error=f"Contact with VAT {normalized} already exists")
        contact = Contact(
            tenant_id=uuid.UUID(str(tenant_id)),
            name=name,
            vat_number=normalized,
            address=address,
        )
        try:
            # Savepoint: a failed insert must not discard earlier writes of the run.
            with self.db.begin_nested():
                self.db.add(contact)
        except SQLAlchemyError as exc:
            logger.exception("Contact creation failed for tenant %s", tenant_id)
            return CreateContactResult(success=False, error=str(exc.__class__.__name__))
        return CreateContactResult(success=True, contact_id=str(contact.id))

    # ─── Drafts ──────────────────────────────────

    def _tenant_contact(self, tenant_id: str, contact_id: str | None) -> Contact | None:
        if contact_id is None:
            return None
        contact = self.db.get(Contact, uuid.UUID(contact_id))
        if contact is None or str(contact.tenant_id) != str(tenant_id):
            return None
        return contact

    def _recompute_evidence(
        self, payload: StoreExtractionPayload, decision: LinkDecision, contact: Contact
    ) -> ContactEvidence:
        evidence = decision.evidence or ContactEvidence()
        vat_number = normalize_vat(_counterparty_vat(payload.extraction))
        if vat_number is None:
            return evidence.model_copy(update={"vat_valid": False, "vat_matched": False})
        return evidence.model_copy(
            update={
                "vat_valid": check_vat(vat_number)["valid"],
                "vat_matched": normalize_vat(contact.vat_number) == vat_number,
                "ambiguity_count": self.count_contacts_by_vat(payload.tenant_id, vat_number),
            }
        )

    def _enforced_decision(self, payload: StoreExtractionPayload) -> LinkDecision | None:
        decision = payload.link_decision
        if decision is None or decision.decision_type == LinkDecisionType.NONE:
            return decision
        contact = self._tenant_contact(payload.tenant_id, decision.contact_id)
        if contact is None:
            logger.warning("Link target %s is not a contact of tenant %s", decision.contact_id, payload.tenant_id)
            return LinkDecision(
                decision_type=LinkDecisionType.NONE,
                reason="Contact not found for tenant",
                evidence=decision.evidence,
            )
        checked = decision.model_copy(update={"evidence": self._recompute_evidence(payload, decision, contact)})
        enforced = self.link_policy.enforce(checked)
        if enforced.decision_type != decision.decision_type:
            logger.warning(
                "Link decision for document %s downgraded from %s to %s",
                payload.document_id,
                decision.decision_type.value,
                enforced.decision_type.value,
            )
        return enforced

    async def store_extraction(self, payload: StoreExtractionPayload) -> bool:
        try:
            decision = self._enforced_decision(payload)
            created = self._tenant_contact(payload.tenant_id, payload.contact_id) if payload.contact_created else None
            document_id = uuid.UUID(payload.document_id)
            with self.db.begin_nested():
                draft = self.db.execute(
                    select(DocumentDraft).where(DocumentDraft.document_id == document_id)
                ).scalar_one_or_none()
                if draft is None:
                    draft = DocumentDraft(document_id=document_id, tenant_id=uuid.UUID(payload.tenant_id))
                    self.db.add(draft)

                draft.run_id = uuid.UUID(payload.run_id) if payload.run_id else None
                draft.document_type = payload.document_type
                draft.extraction = payload.extraction
                draft.description = payload.description
                draft.keywords = list(payload.keywords)
                draft.confidence = payload.confidence
                draft.raw_text = payload.raw_text
                draft.contact_created = payload.contact_created
                draft.contact_id = created.id if created is not None else None
                draft.suggested_contact_id = None
                draft.link_decision_type = decision.decision_type.value if decision else None
                draft.link_decision_reason = decision.reason if decision else None
                draft.link_decision_confidence = decision.confidence if decision else None
                draft.link_evidence = (
                    decision.evidence.model_dump(by_alias=True, exclude_none=True)
                    if decision and decision.evidence
                    else None
                )
                if decision is not None and decision.decision_type == LinkDecisionType.AUTO_LINK:
                    draft.contact_id = uuid.UUID(decision.contact_id)
                elif decision is not None and decision.decision_type == LinkDecisionType.SUGGEST:
                    draft.suggested_contact_id = uuid.UUID(decision.contact_id)
        except SQLAlchemyError:
            logger.exception("Storing extraction failed for document %s", payload.document_id)
            return False
        logger.info(
            "Stored %s extraction for document %s (link=%s)",
            payload.document_type,
            payload.document_id,
            draft.link_decision_type or "none",
        )
        return True

    # ─── Indexing ──────────────────────────────────

    async def store_chunks(self, document_id: str, tenant_id: str, text: str) -> int:
        doc_uuid = uuid.UUID(str(document_id))
        chunks = split_chunks(text)
        with self.db.begin_nested():
            self.db.execute(delete(DocumentChunk).where(DocumentChunk.document_id == doc_uuid))
            for index, content in enumerate(chunks):
                self.db.add(
                    DocumentChunk(
                        document_id=doc_uuid,
                        tenant_id=uuid.UUID(str(tenant_id)),
                        chunk_index=index,
                        content=content,
                    )
                )
        return len(chunks)

    async def index_example(
        self,
        tenant_id: str,
        document_id: str,
        document_type: str,
        vendor_vat_number: str | None,
        extraction: dict[str, Any],
    ) -> None:
        with self.db.begin_nested():
            self.db.add(
                ExtractionExample(
                    tenant_id=uuid.UUID(str(tenant_id)),
                    document_id=uuid.UUID(str(document_id)),
                    vendor_vat_number=normalize_vat(vendor_vat_number),
                    document_type=document_type,
                    extraction=extraction,
                )
            )
