from datetime import date
from decimal import Decimal

import pytest

from circulation.models import (
    Availability,
    Book,
    IssueRecord,
    Member,
    ReturnCondition,
    ReturnRecord,
)


def test_return_condition_parse_is_case_insensitive():
    assert ReturnCondition.parse("Damaged") is ReturnCondition.DAMAGED
    assert ReturnCondition.parse(" LOST ") is ReturnCondition.LOST
    assert ReturnCondition.parse(ReturnCondition.GOOD) is ReturnCondition.GOOD


def test_return_condition_parse_rejects_unknown():
    with pytest.raises(ValueError, match="Unknown return condition"):
        ReturnCondition.parse("soggy")


def test_book_from_sqlite_row_maps_flag():
    row = {"book_id": "B1", "title": "Dune", "category": "Fiction", "rental_price": "2.50",
           "available": 0, "author": "Frank Herbert", "publisher": "Chilton"}
    book = Book.from_dict(row)
    assert book.availability is Availability.ON_LOAN
    assert not book.available
    assert book.rental_price == Decimal("2.50")


def test_book_to_dict_keeps_price_exact():
    book = Book("B1", "Dune", "Fiction", Decimal("2.50"), "Frank Herbert", "Chilton")
    data = book.to_dict()
    assert data["rental_price"] == "2.50"
    assert data["availability"] == "available"
    assert data["available"] is True


def test_records_parse_iso_dates():
    issue = IssueRecord("IS1", "C101", "E101", "B1", "Dune", "2024-01-01")
    assert issue.issue_date == date(2024, 1, 1)
    assert not issue.voided

    ret = ReturnRecord("R1", "IS1", "Dune", "2024-02-01", "damaged")
    assert ret.return_date == date(2024, 2, 1)
    assert ret.condition is ReturnCondition.DAMAGED

    member = Member("C101", "Bob", "", "2023-05-06")
    assert member.to_dict()["registration_date"] == "2023-05-06"
