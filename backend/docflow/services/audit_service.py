import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from docflow.core.config import get_settings
from docflow.models.document import AuditLog
from docflow.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

PII_REDACTION_FALLBACK_FIELDS = {
    "email",
    "phone",
    "address",
    "iban",
    "vat_number",
    "vatnumber",
}

SYSTEM_ACTOR_ID = "00000000-0000-0000-0000-000000000000"


def _redact_pii(value: Any, redact_keys: set[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in redact_keys:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_pii(item, redact_keys)
        return redacted
    if isinstance(value, (list, tuple)):
        return [_redact_pii(item, redact_keys) for item in value]
    return value


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str | uuid.UUID,
    action: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    actor_type: str,
    actor_id: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLog:
    settings = get_settings()
    if settings.pii_redaction_enabled:
        configured = {item.lower() for item in settings.pii_redaction_fields}
        redact_keys = configured or set(PII_REDACTION_FALLBACK_FIELDS)
        old_value = _redact_pii(old_value, redact_keys)
        new_value = _redact_pii(new_value, redact_keys)
        if metadata is not None:
            metadata = _redact_pii(metadata, redact_keys)

    log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_value=old_value,
        new_value=new_value,
        actor_type=actor_type,
        actor_id=actor_id,
        audit_meta=metadata,
    )
    db.add(log)
    try:
        alert_tracker.record(action, metadata)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)
    return log
