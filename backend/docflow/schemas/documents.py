"""Document processing schemas: process request, ingestion run views."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProcessDocumentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_pages: Optional[int] = Field(default=None, ge=1, le=200)
    dpi: Optional[int] = Field(default=None, ge=72, le=600)


class IngestionRunSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    document_id: str
    status: str
    result_kind: Optional[str] = None
    document_type: Optional[str] = None
    confidence: Optional[float] = None
    failure_stage: Optional[str] = None
    failure_reason: Optional[str] = None
    issues: list[str] = Field(default_factory=list)
    intelligence_mode: Optional[str] = None
    extraction_stored: bool = False
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class IngestionRunDetail(IngestionRunSummary):
    trace: list[dict[str, Any]] = Field(default_factory=list)


class IngestionRunListResponse(BaseModel):
    items: list[IngestionRunSummary]
    total: int
