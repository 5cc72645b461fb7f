from __future__ import annotations

import asyncio
import logging

from docflow.core.config import get_settings
from docflow.core.dependencies import SessionLocal
from docflow.services.documents.processing_service import (
    mark_run_failed,
    process_ingestion_run,
    queued_runs,
)

logger = logging.getLogger(__name__)


async def process_queued_runs_once(db, *, batch_size: int) -> int:
    """Process up to *batch_size* QUEUED runs; a crash in one run does not stop the batch."""
    processed = 0
    for run in queued_runs(db, limit=batch_size):
        try:
            await process_ingestion_run(db, run)
        except Exception as exc:
            logger.exception("Ingestion run %s crashed", run.id)
            db.rollback()
            mark_run_failed(db, run, f"{exc.__class__.__name__}: {exc}")
        processed += 1
    return processed


async def _document_processing_loop(*, interval_seconds: int, batch_size: int) -> None:
    # Backoff on errors to avoid tight loops.
    error_sleep = max(10, min(60, interval_seconds))
    while True:
        try:
            settings = get_settings()
            if not settings.enable_processing_worker or not settings.enable_document_processing:
                await asyncio.sleep(interval_seconds)
                continue
            if SessionLocal is None:
                await asyncio.sleep(interval_seconds)
                continue

            db = SessionLocal()
            try:
                processed = await process_queued_runs_once(db, batch_size=batch_size)
                if processed:
                    logger.info("Processed queued ingestion runs: %s", processed)
            finally:
                db.close()
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Document processing worker error")
            await asyncio.sleep(error_sleep)


def start_document_processing_worker() -> asyncio.Task | None:
    """Starts the in-process polling loop; callers keep the task for cancellation."""
    settings = get_settings()
    interval = int(max(5, min(600, settings.processing_worker_interval_seconds or 30)))
    batch_size = int(max(1, min(50, settings.processing_worker_batch_size or 5)))
    return asyncio.create_task(_document_processing_loop(interval_seconds=interval, batch_size=batch_size))
