"""Strict and lenient decoding of the agent's final answer."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from docflow.services.ai.common.json_tools import extract_json

from .contracts import AgentOutput

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


def parse_strict(normalized: str) -> AgentOutput | None:
    try:
        return AgentOutput.model_validate_json(normalized)
    except ValidationError as exc:
        logger.debug("Strict parse rejected agent output: %s", exc.error_count())
        return None


def parse_lenient(normalized: str) -> AgentOutput | None:
    """Pull known fields out of any JSON object, coercing types where possible."""
    tree = extract_json(normalized)
    if not isinstance(tree, dict):
        return None
    status = tree.get("status")
    if not isinstance(status, str) or not status.strip():
        return None

    try:
        return AgentOutput(
            status=status,
            document_type=as_str(tree.get("documentType")),
            extraction=tree.get("extraction"),
            raw_text=as_str(tree.get("rawText")),
            description=as_str(tree.get("description")),
            keywords=_as_str_list(tree.get("keywords")),
            confidence=as_float(tree.get("confidence")),
            validation_passed=_as_bool(tree.get("validationPassed")),
            corrections_applied=_as_int(tree.get("correctionsApplied")),
            contact_id=as_str(tree.get("contactId")),
            contact_created=_as_bool(tree.get("contactCreated")),
            issues=_as_str_list(tree.get("issues")),
            reason=as_str(tree.get("reason")),
        )
    except ValidationError:
        logger.debug("Lenient parse could not build agent output", exc_info=True)
        return None


def normalize_extraction(value: Any) -> Any:
    """Objects and arrays pass through; a JSON string is decoded; anything else is dropped."""
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return None
        return decoded if isinstance(decoded, (dict, list)) else None
    return None


def as_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> list[str] | None:
    if isinstance(value, list):
        return [item for item in (as_str(v) for v in value) if item is not None and item.strip()]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return None
