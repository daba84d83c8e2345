from datetime import date
from decimal import Decimal

import pytest

from utils.validators import DateValidator, IdentifierValidator, MoneyValidator, TextValidator


@pytest.mark.parametrize("identifier", ["B1", "ISBN-1", "C101", "IS.2024:7"])
def test_valid_identifiers(identifier):
    assert IdentifierValidator.is_valid(identifier)


@pytest.mark.parametrize("identifier", ["", None, "-B1", "has space", "x" * 65])
def test_invalid_identifiers(identifier):
    assert not IdentifierValidator.is_valid(identifier)


def test_require_strips_and_raises():
    assert IdentifierValidator.require("  B1 ", "book id") == "B1"
    with pytest.raises(ValueError, match="Invalid book id"):
        IdentifierValidator.require("bad id", "book id")


def test_date_parse():
    assert DateValidator.parse("2024-02-29") == date(2024, 2, 29)
    assert DateValidator.parse(None) is None
    assert DateValidator.parse("  ") is None
    with pytest.raises(ValueError):
        DateValidator.parse("2023-02-29")


def test_money_parse():
    assert MoneyValidator.parse("2.50") == Decimal("2.50")
    with pytest.raises(ValueError, match="cannot be negative"):
        MoneyValidator.parse("-1", "rental price")
    with pytest.raises(ValueError):
        MoneyValidator.parse("abc")
    with pytest.raises(ValueError):
        MoneyValidator.parse("NaN")


def test_text_helpers():
    assert TextValidator.validate_name("Bob Reader")
    assert not TextValidator.validate_name("1234")
    assert TextValidator.sanitize_text("  <b>Dune</b> ") == "Dune"
