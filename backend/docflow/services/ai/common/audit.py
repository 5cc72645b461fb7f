"""AI audit: writes scope-dependent audit entries to the audit_logs table."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from docflow.core.config import get_settings
from docflow.services.audit_service import create_audit_log

logger = logging.getLogger(__name__)

# Scope-dependent audit actions. Falls back to "AI_RUN" for unknown scopes.
SCOPE_ACTIONS: dict[str, str] = {
    "orchestrator": "AI_DOCUMENT_ORCHESTRATED",
    "vision": "AI_DOCUMENT_VISION",
    "repair": "AI_OUTPUT_REPAIRED",
}


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def log_ai_run(
    db: Session,
    *,
    scope: str,
    provider: str,
    model: str,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
    latency_ms: float = 0.0,
    prompt_text: str | None = None,
    response_text: str | None = None,
    parsed_output: dict[str, Any] | None = None,
    entity_id: str | uuid.UUID | None = None,
    actor_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    """Write an AI run audit entry.

    Prompt and response are stored as hashes; raw text is only kept when
    ``AI_DEBUG_STORE_RAW=true``.
    """
    settings = get_settings()

    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider,
        "model": model,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "latency_ms": latency_ms,
    }
    if prompt_text is not None:
        metadata["prompt_hash"] = _sha256(prompt_text)
    if response_text is not None:
        metadata["response_hash"] = _sha256(response_text)

    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = prompt_text
        metadata["response_raw"] = response_text

    if extra_meta:
        metadata.update(extra_meta)

    create_audit_log(
        db,
        entity_type="ai",
        entity_id=entity_id or uuid.uuid4(),
        action=SCOPE_ACTIONS.get(scope, "AI_RUN"),
        old_value=None,
        new_value=parsed_output,
        actor_type="SYSTEM",
        actor_id=actor_id,
        metadata=metadata,
    )
