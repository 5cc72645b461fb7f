"""Deterministic checks for VAT numbers, IBANs, Belgian structured references and totals."""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from pydantic import Field

from docflow.services.ai.agent.tools import Tool

from .context import ToolArgs

TOTALS_TOLERANCE = Decimal("0.02")

_VAT_FORMAT = re.compile(r"^[A-Z]{2}[0-9A-Z]{2,12}$")
_IBAN_FORMAT = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")


def normalize_vat(value: str | None) -> str | None:
    if not value:
        return None
    normalized = re.sub(r"[\s.\-/]", "", value).upper()
    if normalized.isdigit() and len(normalized) in (9, 10):
        # Belgian enterprise numbers are often written without the country prefix.
        normalized = "BE" + normalized.zfill(10)
    return normalized or None


def is_valid_belgian_vat(normalized: str) -> bool:
    digits = normalized[2:]
    if not normalized.startswith("BE") or len(digits) != 10 or not digits.isdigit():
        return False
    if digits[0] not in "01":
        return False
    return 97 - (int(digits[:8]) % 97) == int(digits[8:])


def check_vat(value: str | None) -> dict[str, Any]:
    normalized = normalize_vat(value)
    if normalized is None or not _VAT_FORMAT.match(normalized):
        return {"valid": False, "normalized": normalized, "country": None, "checksumVerified": False}
    country = normalized[:2]
    if country == "BE":
        valid = is_valid_belgian_vat(normalized)
        return {"valid": valid, "normalized": normalized, "country": country, "checksumVerified": True}
    return {"valid": True, "normalized": normalized, "country": country, "checksumVerified": False}


def normalize_iban(value: str | None) -> str | None:
    if not value:
        return None
    return re.sub(r"\s", "", value).upper() or None


def is_valid_iban(value: str | None) -> bool:
    iban = normalize_iban(value)
    if iban is None or not _IBAN_FORMAT.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    numeric = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(numeric) % 97 == 1


def is_valid_ogm(value: str | None) -> bool:
    """Belgian structured communication, e.g. ``+++090/9337/55493+++``."""
    if not value:
        return False
    digits = re.sub(r"\D", "", value)
    if len(digits) != 12:
        return False
    remainder = int(digits[:10]) % 97
    return (remainder or 97) == int(digits[10:])


def check_totals(subtotal: Decimal, vat_amount: Decimal, total: Decimal) -> dict[str, Any]:
    difference = (subtotal + vat_amount - total).copy_abs()
    return {
        "valid": difference <= TOTALS_TOLERANCE,
        "expectedTotal": str(subtotal + vat_amount),
        "difference": str(difference),
    }


class VatArgs(ToolArgs):
    vat_number: str


class IbanArgs(ToolArgs):
    iban: str


class OgmArgs(ToolArgs):
    reference: str


class TotalsArgs(ToolArgs):
    subtotal: Decimal
    vat_amount: Decimal = Field(default=Decimal("0"))
    total: Decimal


def validation_tools() -> list[Tool]:
    async def validate_vat(args: VatArgs) -> dict[str, Any]:
        return check_vat(args.vat_number)

    async def validate_iban(args: IbanArgs) -> dict[str, Any]:
        return {"valid": is_valid_iban(args.iban), "normalized": normalize_iban(args.iban)}

    async def validate_ogm(args: OgmArgs) -> dict[str, Any]:
        return {"valid": is_valid_ogm(args.reference)}

    async def verify_totals(args: TotalsArgs) -> dict[str, Any]:
        return check_totals(args.subtotal, args.vat_amount, args.total)

    return [
        Tool("validate_vat", "Check a VAT number's format and, for Belgium, its checksum.", VatArgs, validate_vat),
        Tool("validate_iban", "Check an IBAN's format and mod-97 checksum.", IbanArgs, validate_iban),
        Tool("validate_ogm", "Check a Belgian structured payment reference (+++xxx/xxxx/xxxxx+++).", OgmArgs, validate_ogm),
        Tool("verify_totals", "Check that subtotal plus VAT equals the total within 0.02.", TotalsArgs, verify_totals),
    ]
