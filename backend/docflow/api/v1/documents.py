"""Document processing API: trigger ingestion runs and inspect their traces."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from docflow.core.auth import CurrentUser, require_roles
from docflow.core.config import get_settings
from docflow.core.dependencies import get_db
from docflow.core.feature_flags import ensure_document_processing_enabled
from docflow.core.storage import download_object
from docflow.models.document import Document, DocumentIngestionRun
from docflow.schemas.documents import (
    IngestionRunDetail,
    IngestionRunListResponse,
    IngestionRunSummary,
    ProcessDocumentRequest,
)
from docflow.services.documents.orchestrator.service import OrchestratorConfig
from docflow.services.documents.processing_service import (
    ProcessingConflictError,
    mark_run_failed,
    process_ingestion_run,
    queue_processing_run,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_processing_roles = require_roles("ADMIN", "ACCOUNTANT")


def get_orchestrator_config() -> OrchestratorConfig:
    return OrchestratorConfig.from_settings(get_settings())


def get_document_downloader() -> Callable[[str], bytes]:
    return download_object


def _parse_id(value: str, not_found: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(404, not_found)


def _tenant_document(db: Session, document_id: str, current_user: CurrentUser) -> Document:
    document = db.get(Document, _parse_id(document_id, "Document not found"))
    if document is None or str(document.tenant_id) != current_user.tenant_id:
        raise HTTPException(404, "Document not found")
    return document


def _summary_fields(run: DocumentIngestionRun) -> dict:
    return dict(
        id=str(run.id),
        document_id=str(run.document_id),
        status=run.status,
        result_kind=run.result_kind,
        document_type=run.document_type,
        confidence=run.confidence,
        failure_stage=run.failure_stage,
        failure_reason=run.failure_reason,
        issues=list(run.issues or []),
        intelligence_mode=run.intelligence_mode,
        extraction_stored=bool(run.extraction_stored),
        queued_at=run.queued_at,
        started_at=run.started_at,
        finished_at=run.finished_at,
    )


def _run_detail(run: DocumentIngestionRun) -> IngestionRunDetail:
    return IngestionRunDetail(**_summary_fields(run), trace=list(run.trace or []))


@router.post(
    "/documents/{document_id}/process",
    response_model=IngestionRunDetail,
    response_model_by_alias=True,
)
async def process_document(
    document_id: str,
    payload: ProcessDocumentRequest | None = None,
    current_user: CurrentUser = Depends(_processing_roles),
    db: Session = Depends(get_db),
    config: OrchestratorConfig = Depends(get_orchestrator_config),
    downloader: Callable[[str], bytes] = Depends(get_document_downloader),
):
    ensure_document_processing_enabled()
    document = _tenant_document(db, document_id, current_user)
    payload = payload or ProcessDocumentRequest()

    try:
        run = queue_processing_run(db, document, current_user, max_pages=payload.max_pages, dpi=payload.dpi)
    except ProcessingConflictError:
        raise HTTPException(409, "Document is already being processed")
    db.commit()

    try:
        await process_ingestion_run(db, run, config=config, downloader=downloader)
    except Exception as exc:
        logger.exception("Ingestion run %s crashed", run.id)
        db.rollback()
        mark_run_failed(db, run, f"{exc.__class__.__name__}: {exc}")
    db.refresh(run)
    return _run_detail(run)


@router.get(
    "/documents/{document_id}/runs",
    response_model=IngestionRunListResponse,
    response_model_by_alias=True,
)
async def list_document_runs(
    document_id: str,
    limit: int = 20,
    current_user: CurrentUser = Depends(_processing_roles),
    db: Session = Depends(get_db),
):
    ensure_document_processing_enabled()
    document = _tenant_document(db, document_id, current_user)
    limit = max(1, min(100, limit))

    runs = (
        db.execute(
            select(DocumentIngestionRun)
            .where(DocumentIngestionRun.document_id == document.id)
            .order_by(DocumentIngestionRun.queued_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    total = db.execute(
        select(func.count(DocumentIngestionRun.id)).where(DocumentIngestionRun.document_id == document.id)
    ).scalar_one()
    return IngestionRunListResponse(
        items=[IngestionRunSummary(**_summary_fields(run)) for run in runs],
        total=int(total),
    )


@router.get(
    "/runs/{run_id}",
    response_model=IngestionRunDetail,
    response_model_by_alias=True,
)
async def get_run(
    run_id: str,
    current_user: CurrentUser = Depends(_processing_roles),
    db: Session = Depends(get_db),
):
    ensure_document_processing_enabled()
    run = db.get(DocumentIngestionRun, _parse_id(run_id, "Run not found"))
    if run is None or str(run.tenant_id) != current_user.tenant_id:
        raise HTTPException(404, "Run not found")
    return _run_detail(run)
