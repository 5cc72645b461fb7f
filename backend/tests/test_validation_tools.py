import asyncio
from decimal import Decimal

import pytest

from docflow.services.ai.agent.tools import ToolRegistry
from docflow.services.documents.orchestrator.tools.validation import (
    check_totals,
    check_vat,
    is_valid_iban,
    is_valid_ogm,
    normalize_vat,
    validation_tools,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("BE 0403.170.701", "BE0403170701"),
        ("0403170701", "BE0403170701"),
        ("403170701", "BE0403170701"),
        ("nl 8530.62.913.B01", "NL853062913B01"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_vat(raw, expected):
    assert normalize_vat(raw) == expected


def test_belgian_vat_checksum():
    assert check_vat("BE0403170701") == {
        "valid": True,
        "normalized": "BE0403170701",
        "country": "BE",
        "checksumVerified": True,
    }
    assert check_vat("BE0403170702")["valid"] is False
    assert check_vat("BE2403170701")["valid"] is False


def test_foreign_vat_is_format_checked_only():
    result = check_vat("DE123456789")
    assert result["valid"] is True
    assert result["checksumVerified"] is False
    assert check_vat("X")["valid"] is False


def test_iban():
    assert is_valid_iban("BE68 5390 0754 7034")
    assert is_valid_iban("GB82WEST12345698765432")
    assert not is_valid_iban("BE68539007547035")
    assert not is_valid_iban("")


def test_ogm():
    assert is_valid_ogm("+++090/9337/55493+++")
    assert is_valid_ogm("090933755493")
    assert not is_valid_ogm("+++090/9337/55494+++")
    assert not is_valid_ogm("+++090/9337+++")


def test_totals_tolerance():
    assert check_totals(Decimal("100.00"), Decimal("21.00"), Decimal("121.01"))["valid"] is True
    result = check_totals(Decimal("100.00"), Decimal("21.00"), Decimal("121.50"))
    assert result["valid"] is False
    assert result["expectedTotal"] == "121.00"
    assert result["difference"] == "0.50"


def test_tools_accept_camel_case_arguments():
    registry = ToolRegistry(validation_tools())

    vat = asyncio.run(registry.invoke("validate_vat", {"vatNumber": "BE0403170701"}))
    totals = asyncio.run(registry.invoke("verify_totals", {"subtotal": "50", "vatAmount": "10.5", "total": "60.50"}))
    ogm = asyncio.run(registry.invoke("validate_ogm", {"reference": "+++090/9337/55493+++"}))

    assert vat["valid"] is True
    assert totals["valid"] is True
    assert ogm == {"valid": True}
