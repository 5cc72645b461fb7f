import asyncio
import json

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docflow.core.config import Settings
from docflow.models.document import (
    AuditLog,
    Base,
    Contact,
    Document,
    DocumentDraft,
    ExtractionExample,
    Tenant,
)
from docflow.services.ai.common.providers import MockProvider, ToolCall
from docflow.services.ai.common.router import ResolvedConfig
from docflow.services.documents.orchestrator.contracts import Failed, NeedsReview, Success
from docflow.services.documents.orchestrator.service import OrchestratorConfig
from docflow.services.documents.processing_service import (
    ProcessingConflictError,
    mark_run_failed,
    process_ingestion_run,
    queue_processing_run,
    queued_runs,
)
from docflow.services.documents.repositories import split_chunks
from docflow.utils.alerting import alert_tracker

ACME_VAT = "BE0403170701"


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def seeded(db):
    tenant = Tenant(name="Boekhouding BV", vat_number="BE0987654321")
    db.add(tenant)
    db.flush()
    contact = Contact(tenant_id=tenant.id, name="ACME NV", vat_number=ACME_VAT)
    document = Document(tenant_id=tenant.id, filename="acme.pdf", storage_key=f"{tenant.id}/acme.pdf")
    db.add_all([contact, document])
    db.commit()
    return tenant, contact, document


def _config(agent_script, repair_script=(), vision_script=()):
    def resolved(provider):
        return ResolvedConfig(provider=provider, model="", temperature=0.0, max_tokens=1024, timeout_seconds=5)

    return OrchestratorConfig(
        orchestrator=resolved(MockProvider(agent_script)),
        vision=resolved(MockProvider(vision_script)),
        repair=resolved(MockProvider(repair_script)),
    )


def _run(db, run, config):
    return asyncio.run(
        process_ingestion_run(
            db,
            run,
            settings=Settings(_env_file=None),
            config=config,
            downloader=lambda key: b"%PDF-1.7",
        )
    )


def _extraction(vat=ACME_VAT):
    return {"supplierName": "ACME NV", "supplierVatNumber": vat, "totalAmount": "121.00"}


def _store(contact_id, decision="AUTO_LINK", vat=ACME_VAT):
    return ToolCall(
        id="store",
        name="store_extraction",
        arguments={
            "documentType": "BILL",
            "extraction": _extraction(vat),
            "confidence": 0.9,
            "contactId": str(contact_id),
            "linkDecisionType": decision,
            "linkDecisionReason": "VAT number matches",
            "linkDecisionEvidence": {"vatValid": True, "vatMatched": True, "ambiguityCount": 1},
        },
    )


def _final(contact_id=None, **overrides):
    payload = {
        "status": "success",
        "documentType": "BILL",
        "extraction": _extraction(),
        "description": "ACME supplies",
        "confidence": 0.9,
        "contactId": str(contact_id) if contact_id else None,
    }
    payload.update(overrides)
    return json.dumps(payload)


def _draft(db, document):
    return db.execute(select(DocumentDraft).where(DocumentDraft.document_id == document.id)).scalar_one()


def test_queue_rejects_second_active_run(db, seeded):
    _, _, document = seeded
    run = queue_processing_run(db, document, max_pages=3)
    db.commit()

    assert run.status == "QUEUED"
    assert run.max_pages == 3
    with pytest.raises(ProcessingConflictError):
        queue_processing_run(db, document)


def test_successful_run_links_contact_and_audits(db, seeded):
    _, contact, document = seeded
    run = queue_processing_run(db, document)
    db.commit()
    lookup = ToolCall(id="lookup", name="lookup_contact", arguments={"vatNumber": "BE 0403.170.701"})

    result = _run(db, run, _config([lookup, _store(contact.id), _final(contact.id)]))

    assert isinstance(result, Success)
    db.refresh(run)
    assert run.status == "SUCCEEDED"
    assert run.result_kind == "success"
    assert run.document_type == "BILL"
    assert run.confidence == 0.9
    assert run.intelligence_mode == "autonomous"
    assert run.extraction_stored is True
    assert run.finished_at is not None
    assert [step["action"] for step in run.trace][:2] == ["lookup_contact", "store_extraction"]
    assert run.trace[0]["output"]["matchType"] == "EXACT"

    draft = _draft(db, document)
    assert draft.run_id == run.id
    assert draft.contact_id == contact.id
    assert draft.link_decision_type == "AUTO_LINK"
    assert draft.link_evidence["vatMatched"] is True
    assert draft.link_evidence["ambiguityCount"] == 1

    actions = set(db.execute(select(AuditLog.action)).scalars().all())
    assert {"DOCUMENT_PROCESSED", "AI_DOCUMENT_ORCHESTRATED"} <= actions


def test_unsupported_auto_link_is_stored_as_suggestion(db, seeded):
    _, contact, document = seeded
    run = queue_processing_run(db, document)
    db.commit()

    _run(db, run, _config([_store(contact.id, vat="BE0403170702"), _final(contact.id)]))

    draft = _draft(db, document)
    assert draft.link_decision_type == "SUGGEST"
    assert draft.contact_id is None
    assert draft.suggested_contact_id == contact.id
    assert draft.link_evidence["vatValid"] is False


def test_link_to_foreign_contact_is_dropped(db, seeded):
    _, _, document = seeded
    other_tenant = Tenant(name="Other BV")
    db.add(other_tenant)
    db.flush()
    stranger = Contact(tenant_id=other_tenant.id, name="ACME NV", vat_number=ACME_VAT)
    db.add(stranger)
    run = queue_processing_run(db, document)
    db.commit()

    _run(db, run, _config([_store(stranger.id), _final()]))

    draft = _draft(db, document)
    assert draft.link_decision_type == "NONE"
    assert draft.contact_id is None
    assert draft.suggested_contact_id is None


def test_failed_run_records_stage_and_alert(db, seeded):
    _, _, document = seeded
    run = queue_processing_run(db, document)
    db.commit()

    result = _run(db, run, _config([RuntimeError("provider down")]))

    assert isinstance(result, Failed)
    db.refresh(run)
    assert run.status == "FAILED"
    assert run.failure_stage == "orchestrator"
    assert run.failure_reason == "provider down"
    assert run.extraction_stored is False
    assert alert_tracker.count("DOCUMENT_PROCESSING_FAILED") == 1


def test_fallback_run_needs_review(db, seeded):
    _, _, document = seeded
    run = queue_processing_run(db, document)
    db.commit()
    extract = ToolCall(id="x", name="extract_bill", arguments={"documentId": str(document.id)})
    config = _config(
        [extract, "{truncated"],
        repair_script=["still nothing"],
        vision_script=[json.dumps(_extraction())],
    )

    result = _run(db, run, config)

    assert isinstance(result, NeedsReview)
    db.refresh(run)
    assert run.status == "NEEDS_REVIEW"
    assert run.document_type == "BILL"
    assert "Fallback source tool: extract_bill" in run.issues
    assert run.extraction_stored is True
    assert alert_tracker.count("ORCHESTRATOR_OUTPUT_FALLBACK") == 1


@pytest.fixture
def failing_insert():
    """Makes every INSERT of the given model fail with an IntegrityError."""
    installed = []

    def install(model):
        def _fail(mapper, connection, target):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        event.listen(model, "before_insert", _fail)
        installed.append((model, _fail))

    yield install
    for model, listener in installed:
        event.remove(model, "before_insert", listener)


def test_failed_contact_creation_keeps_stored_draft(db, seeded, failing_insert):
    _, contact, document = seeded
    run = queue_processing_run(db, document)
    db.commit()
    failing_insert(Contact)
    create = ToolCall(id="create", name="create_contact", arguments={"name": "Nieuwe Leverancier BV"})

    result = _run(db, run, _config([_store(contact.id), create, _final(contact.id)]))

    assert isinstance(result, Success)
    db.refresh(run)
    assert run.status == "SUCCEEDED"
    assert run.extraction_stored is True
    assert _draft(db, document).contact_id == contact.id
    create_step = next(step for step in run.trace if step["action"] == "create_contact")
    assert create_step["output"]["success"] is False
    assert db.execute(select(Contact).where(Contact.name == "Nieuwe Leverancier BV")).first() is None


def test_failed_indexing_write_does_not_lose_run(db, seeded, failing_insert):
    _, contact, document = seeded
    run = queue_processing_run(db, document)
    db.commit()
    failing_insert(ExtractionExample)
    index = ToolCall(
        id="index",
        name="index_example",
        arguments={"documentType": "BILL", "vendorVatNumber": ACME_VAT, "extraction": _extraction()},
    )
    status = ToolCall(id="status", name="update_indexing_status", arguments={"status": "INDEXED"})

    result = _run(db, run, _config([_store(contact.id), index, status, _final(contact.id)]))

    assert isinstance(result, Success)
    db.refresh(run)
    db.refresh(document)
    assert run.status == "SUCCEEDED"
    assert run.extraction_stored is True
    assert _draft(db, document).document_type == "BILL"
    assert document.indexing_status == "INDEXED"
    assert db.execute(select(ExtractionExample)).first() is None
    index_step = next(step for step in run.trace if step["action"] == "index_example")
    assert index_step["output"]["success"] is False


def test_mark_run_failed_and_queue_listing(db, seeded):
    _, _, document = seeded
    run = queue_processing_run(db, document)
    db.commit()

    assert queued_runs(db, limit=5) == [run]
    mark_run_failed(db, run, "RuntimeError: boom")

    assert run.status == "FAILED"
    assert run.failure_stage == "processing"
    assert queued_runs(db, limit=5) == []


def test_split_chunks_packs_paragraphs():
    text = "First paragraph.\n\nSecond paragraph.\n\n\n" + "x" * 25
    assert split_chunks(text, max_chars=40) == ["First paragraph.\n\nSecond paragraph.", "x" * 25]
    assert split_chunks("y" * 90, max_chars=40) == ["y" * 40, "y" * 40, "y" * 10]
    assert split_chunks("   ") == []
