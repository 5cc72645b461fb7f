"""JSON helpers for LLM responses: fence stripping, brace balancing, placeholder detection."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKENS = ("...", "…")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)


def normalize_json(text: str) -> str:
    """Strip markdown fences and surrounding prose around a single JSON object.

    Truncated output is returned as-is (minus an opening fence) so callers
    can still see that it fails to parse.
    """
    if not text:
        return ""
    stripped = text.strip()

    fenced = _FENCE_RE.search(stripped)
    if fenced:
        stripped = fenced.group(1).strip()
    elif stripped.startswith("```"):
        # Opening fence without a closing one: the model stopped mid-answer.
        stripped = stripped.split("\n", 1)[1].strip() if "\n" in stripped else ""

    if stripped.startswith("{") or stripped.startswith("["):
        return stripped

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start : end + 1]
    return stripped


def contains_placeholders(text: str | None) -> bool:
    """True when *text* carries an ellipsis-like token the model uses for omitted data."""
    if not text:
        return False
    return any(token in text for token in PLACEHOLDER_TOKENS)


def contains_placeholder_values(value: object) -> bool:
    """Like ``contains_placeholders`` but over decoded JSON, so ``\\u2026`` escapes count too."""
    if isinstance(value, str):
        return contains_placeholders(value)
    if isinstance(value, dict):
        return any(contains_placeholder_values(k) or contains_placeholder_values(v) for k, v in value.items())
    if isinstance(value, list):
        return any(contains_placeholder_values(item) for item in value)
    return False


def extract_json(text: str) -> dict | list | None:
    """Try to extract the first valid JSON object or array from *text*.

    Strategy:
    1. Attempt ``json.loads`` on the full text (fast path).
    2. Slide through the text looking for ``{`` or ``[`` and attempt
       brace-balanced extraction.
    3. Return ``None`` if nothing works.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()

    try:
        return json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        pass

    for i, ch in enumerate(stripped):
        if ch in "{[":
            result = _extract_balanced(stripped, i, ch, "}" if ch == "{" else "]")
            if result is not None:
                return result

    return None


def extract_json_object(text: str) -> dict | None:
    """Like ``extract_json`` but only accepts a top-level object."""
    parsed = extract_json(normalize_json(text))
    return parsed if isinstance(parsed, dict) else None


def _extract_balanced(text: str, start: int, open_ch: str, close_ch: str) -> dict | list | None:
    """Extract a brace-balanced substring starting at *start* and parse it."""
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except (json.JSONDecodeError, ValueError):
                    return None

    return None
