from datetime import date
from decimal import Decimal

import pytest

from circulation.reports import book_issue_counts, rental_income_by_category


@pytest.fixture
def circulated(seeded):
    seeded.issue_book("B1", "C101", "E101", "IS1", date(2024, 1, 1))
    seeded.return_book("IS1", "R1", date(2024, 1, 10), "damaged")
    seeded.issue_book("B1", "C102", "E101", "IS2", date(2024, 1, 15))
    seeded.issue_book("B2", "C101", "E101", "IS3", date(2024, 2, 20))
    seeded.issue_book("B3", "C103", "E101", "IS4", date(2024, 2, 21))
    seeded.void_issue("IS4", "wrong book scanned", date(2024, 2, 21))
    return seeded


def test_issue_counts_and_income_skip_voided(circulated):
    issues = circulated.issues.list_all()
    assert book_issue_counts(issues) == {"B1": 2, "B2": 1}
    income = rental_income_by_category(issues, circulated.list_books())
    assert income == {"Fiction": Decimal("5.00"), "History": Decimal("1.75")}


def test_materialize_writes_summary_tables(circulated):
    written = circulated.materialize_reports(date(2024, 2, 29))
    assert written == {
        "summary_book_issue_counts": 2,
        "summary_rental_income": 2,
        "summary_active_members": 2,
        "summary_overdue_fines": 1,
    }

    counts = {r["book_id"]: r["issue_count"] for r in circulated.reports.read_table("summary_book_issue_counts")}
    assert counts == {"B1": 2, "B2": 1}

    overdue = circulated.reports.read_table("summary_overdue_fines")
    assert overdue[0]["issue_id"] == "IS2"
    assert overdue[0]["days_overdue"] == 15
    assert overdue[0]["fine"] == "7.50"

    active = [r["member_id"] for r in circulated.reports.read_table("summary_active_members")]
    assert active == ["C101", "C102"]


def test_materialize_is_rebuildable(circulated):
    circulated.materialize_reports(date(2024, 2, 29))
    circulated.return_book("IS2", "R2", date(2024, 2, 29))
    written = circulated.materialize_reports(date(2024, 2, 29))
    assert written["summary_overdue_fines"] == 0
    assert circulated.reports.read_table("summary_overdue_fines") == []


def test_read_table_before_materialize(seeded):
    assert seeded.reports.read_table("summary_rental_income") == []
    with pytest.raises(ValueError):
        seeded.reports.read_table("books")
