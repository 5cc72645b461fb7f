"""Function-shaped seams the orchestrator calls into. Implementations live outside the core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from .contracts import ContactInfo, CreateContactResult, DocumentContent, StoreExtractionPayload


class DocumentFetcher(Protocol):
    async def __call__(self, document_id: str, tenant_id: str) -> DocumentContent: ...


class PeppolDataFetcher(Protocol):
    async def __call__(self, document_id: str) -> dict[str, Any] | None: ...


class ContactLookup(Protocol):
    async def __call__(self, tenant_id: str, vat_number: str) -> ContactInfo | None: ...


class ContactCreator(Protocol):
    async def __call__(
        self, tenant_id: str, name: str, vat_number: str | None, address: str | None
    ) -> CreateContactResult: ...


class ExtractionStore(Protocol):
    async def __call__(self, payload: StoreExtractionPayload) -> bool: ...


class IndexingStatusUpdater(Protocol):
    async def __call__(self, document_id: str, tenant_id: str, status: str) -> None: ...


class ChunkStore(Protocol):
    async def __call__(self, document_id: str, tenant_id: str, text: str) -> int: ...


class ExampleIndexer(Protocol):
    async def __call__(
        self,
        tenant_id: str,
        document_id: str,
        document_type: str,
        vendor_vat_number: str | None,
        extraction: dict[str, Any],
    ) -> None: ...


class CompanyLookup(Protocol):
    async def __call__(self, vat_number: str) -> dict[str, Any] | None: ...


async def _no_peppol_data(document_id: str) -> dict[str, Any] | None:
    return None


async def _no_contact(tenant_id: str, vat_number: str) -> ContactInfo | None:
    return None


async def _cannot_create_contact(
    tenant_id: str, name: str, vat_number: str | None, address: str | None
) -> CreateContactResult:
    return CreateContactResult(success=False, error="Contact creation is not available")


async def _ignore_indexing_status(document_id: str, tenant_id: str, status: str) -> None:
    return None


async def _discard_chunks(document_id: str, tenant_id: str, text: str) -> int:
    return 0


async def _skip_example(
    tenant_id: str,
    document_id: str,
    document_type: str,
    vendor_vat_number: str | None,
    extraction: dict[str, Any],
) -> None:
    return None


async def _no_company(vat_number: str) -> dict[str, Any] | None:
    return None


@dataclass(frozen=True)
class OrchestratorCollaborators:
    """Everything one run may touch outside the agent. Supplied fresh per run."""

    fetch_document: DocumentFetcher
    store_extraction: ExtractionStore
    fetch_peppol_data: PeppolDataFetcher = field(default=_no_peppol_data)
    lookup_contact: ContactLookup = field(default=_no_contact)
    create_contact: ContactCreator = field(default=_cannot_create_contact)
    update_indexing_status: IndexingStatusUpdater = field(default=_ignore_indexing_status)
    store_chunks: ChunkStore = field(default=_discard_chunks)
    index_example: ExampleIndexer = field(default=_skip_example)
    lookup_company: CompanyLookup = field(default=_no_company)
