from fastapi import HTTPException

from docflow.core.config import get_settings


def ensure_document_processing_enabled() -> None:
    settings = get_settings()
    if not settings.enable_document_processing:
        raise HTTPException(status_code=404, detail="Not found")
