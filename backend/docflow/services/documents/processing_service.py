"""Queues and executes document ingestion runs."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, assert_never

from sqlalchemy import select
from sqlalchemy.orm import Session

from docflow.core.auth import CurrentUser
from docflow.core.config import Settings, get_settings
from docflow.core.storage import download_object
from docflow.models.document import ACTIVE_RUN_STATUSES, Document, DocumentDraft, DocumentIngestionRun
from docflow.services.ai.common.audit import log_ai_run
from docflow.services.audit_service import SYSTEM_ACTOR_ID, create_audit_log
from docflow.services.documents.orchestrator.contracts import Failed, NeedsReview, OrchestratorResult, Success
from docflow.services.documents.orchestrator.driver import SessionFactory
from docflow.services.documents.orchestrator.link_policy import get_link_policy
from docflow.services.documents.orchestrator.service import STORE_STAGE, DocumentOrchestrator, OrchestratorConfig
from docflow.services.documents.orchestrator.trace import ProcessingStep, find_last, serialize_trace
from docflow.services.documents.repositories import DocumentRepository, load_tenant_context
from docflow.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

FALLBACK_STEPS = ("orchestrator_output_parse_failed", "orchestrator_output_incomplete", "fallback_store_extraction")


class ProcessingConflictError(Exception):
    """A run for the document is already queued or processing."""


def _now_utc() -> datetime:
    # SQLite stores timezone-aware datetimes as naive values.
    settings = get_settings()
    if (settings.database_url or "").startswith("sqlite"):
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc)


def active_run_for(db: Session, document_id: uuid.UUID) -> DocumentIngestionRun | None:
    return (
        db.execute(
            select(DocumentIngestionRun)
            .where(
                DocumentIngestionRun.document_id == document_id,
                DocumentIngestionRun.status.in_(ACTIVE_RUN_STATUSES),
            )
            .limit(1)
        )
        .scalars()
        .first()
    )


def queue_processing_run(
    db: Session,
    document: Document,
    actor: CurrentUser | None = None,
    *,
    max_pages: int | None = None,
    dpi: int | None = None,
) -> DocumentIngestionRun:
    if active_run_for(db, document.id) is not None:
        raise ProcessingConflictError(f"Document {document.id} already has an active run")
    run = DocumentIngestionRun(
        document_id=document.id,
        tenant_id=document.tenant_id,
        status="QUEUED",
        max_pages=max_pages,
        dpi=dpi,
        requested_by=uuid.UUID(actor.id) if actor and _is_uuid(actor.id) else None,
        queued_at=_now_utc(),
    )
    db.add(run)
    db.flush()
    logger.info("Queued ingestion run %s for document %s", run.id, document.id)
    return run


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _apply_result(run: DocumentIngestionRun, result: OrchestratorResult) -> None:
    run.result_kind = result.kind
    if isinstance(result, Success):
        run.status = "SUCCEEDED"
        run.document_type = result.document_type.value
        run.confidence = result.confidence
        run.issues = []
        run.failure_stage = None
        run.failure_reason = None
    elif isinstance(result, NeedsReview):
        run.status = "NEEDS_REVIEW"
        run.document_type = result.document_type.value if result.document_type else None
        run.issues = list(result.issues)
        run.failure_stage = None
        run.failure_reason = result.reason
    elif isinstance(result, Failed):
        run.status = "FAILED"
        run.failure_stage = result.stage
        run.failure_reason = result.reason
    else:
        assert_never(result)


def _run_usage(trace: tuple[ProcessingStep, ...]) -> dict[str, Any]:
    step = find_last(trace, names=["orchestrator_run_completed"], with_output=True)
    return dict(step.output) if step is not None and isinstance(step.output, dict) else {}


def _result_summary(result: OrchestratorResult) -> dict[str, Any]:
    summary: dict[str, Any] = {"kind": result.kind, "trace_steps": len(result.trace)}
    if isinstance(result, Success):
        summary.update(
            document_type=result.document_type.value,
            confidence=result.confidence,
            validation_passed=result.validation_passed,
            contact_id=result.contact_id,
        )
    elif isinstance(result, NeedsReview):
        summary.update(reason=result.reason, issues=list(result.issues))
    elif isinstance(result, Failed):
        summary.update(reason=result.reason, stage=result.stage)
    return summary


def _record_alerts(run: DocumentIngestionRun, result: OrchestratorResult) -> None:
    meta = {"run_id": str(run.id), "document_id": str(run.document_id)}
    if any(step.action in FALLBACK_STEPS for step in result.trace):
        alert_tracker.record("ORCHESTRATOR_OUTPUT_FALLBACK", meta)
    if isinstance(result, Failed):
        alert_tracker.record("DOCUMENT_PROCESSING_FAILED", {**meta, "stage": result.stage})
        if result.stage == STORE_STAGE:
            alert_tracker.record("EXTRACTION_PERSIST_FAILED", meta)


async def process_ingestion_run(
    db: Session,
    run: DocumentIngestionRun,
    *,
    settings: Settings | None = None,
    config: OrchestratorConfig | None = None,
    session_factory: SessionFactory | None = None,
    downloader: Callable[[str], bytes] = download_object,
) -> OrchestratorResult:
    """Execute one queued run and persist its outcome on the run row.

    The run is committed as PROCESSING before the orchestrator starts and
    committed again with the final status, trace and audit rows.
    """
    settings = settings or get_settings()
    config = config or OrchestratorConfig.from_settings(settings)

    run.status = "PROCESSING"
    run.started_at = _now_utc()
    run.intelligence_mode = config.mode.value
    db.commit()

    repository = DocumentRepository(db, link_policy=get_link_policy(config.link_policy), downloader=downloader)
    orchestrator = DocumentOrchestrator(config, repository.collaborators(), session_factory=session_factory)
    result = await orchestrator.process(
        str(run.document_id),
        str(run.tenant_id),
        tenant_context=load_tenant_context(db, run.tenant_id),
        run_id=str(run.id),
        max_pages=run.max_pages or settings.default_max_pages,
        dpi=run.dpi or settings.default_dpi,
    )

    _apply_result(run, result)
    run.trace = serialize_trace(result.trace)
    run.extraction_stored = (
        db.execute(select(DocumentDraft.id).where(DocumentDraft.run_id == run.id)).first() is not None
    )
    run.finished_at = _now_utc()

    actor_id = str(run.requested_by) if run.requested_by else SYSTEM_ACTOR_ID
    summary = _result_summary(result)
    create_audit_log(
        db,
        entity_type="document",
        entity_id=run.document_id,
        action="DOCUMENT_PROCESSED",
        old_value=None,
        new_value=summary,
        actor_type="SYSTEM",
        actor_id=actor_id,
        metadata={"run_id": str(run.id), "mode": config.mode.value, "link_policy": config.link_policy.value},
    )
    usage = _run_usage(result.trace)
    if usage:
        log_ai_run(
            db,
            scope="orchestrator",
            provider=str(usage.get("provider", config.orchestrator.provider.name)),
            model=str(usage.get("model", config.orchestrator.model)),
            prompt_tokens=int(usage.get("promptTokens", 0)),
            completion_tokens=int(usage.get("completionTokens", 0)),
            latency_ms=float(usage.get("latencyMs", 0.0)),
            parsed_output=summary,
            entity_id=run.id,
            actor_id=actor_id,
            extra_meta={"model_calls": usage.get("modelCalls", 0), "tool_calls": usage.get("toolCalls", 0)},
        )
    _record_alerts(run, result)
    db.commit()

    logger.info("Ingestion run %s finished: %s", run.id, run.status)
    return result


def mark_run_failed(db: Session, run: DocumentIngestionRun, reason: str) -> None:
    """Close a run whose processing crashed outside the orchestrator."""
    run.status = "FAILED"
    run.result_kind = "failed"
    run.failure_stage = "processing"
    run.failure_reason = reason
    run.finished_at = _now_utc()
    db.commit()
    alert_tracker.record("DOCUMENT_PROCESSING_FAILED", {"run_id": str(run.id), "stage": "processing"})


def queued_runs(db: Session, *, limit: int) -> list[DocumentIngestionRun]:
    return list(
        db.execute(
            select(DocumentIngestionRun)
            .where(DocumentIngestionRun.status == "QUEUED")
            .order_by(DocumentIngestionRun.queued_at)
            .limit(limit)
        )
        .scalars()
        .all()
    )
