from datetime import date

import pytest

from circulation.errors import (
    AlreadyReturnedError,
    DuplicateIssueIdError,
    DuplicateReturnIdError,
    IssueNotFoundError,
    ReturnNotFoundError,
)
from circulation.models import IssueRecord, ReturnCondition, ReturnRecord


def _issue(issue_id, book_id="B1", member_id="C101", issue_date=date(2024, 1, 1)):
    return IssueRecord(issue_id, member_id, "E101", book_id, "Dune", issue_date)


def test_issue_ledger_append_and_query(seeded):
    ledger = seeded.issues
    ledger.append(_issue("IS1"))
    ledger.append(_issue("IS2", book_id="B2", member_id="C102"))

    assert ledger.get("IS1").book_id == "B1"
    assert ledger.exists("IS2")
    assert not ledger.exists("IS3")
    assert [i.issue_id for i in ledger.list_by_member("C102")] == ["IS2"]
    assert [i.issue_id for i in ledger.list_by_book("B1")] == ["IS1"]
    assert len(ledger.list_by_employee("E101")) == 2


def test_issue_ledger_rejects_duplicate_id(seeded):
    seeded.issues.append(_issue("IS1"))
    with pytest.raises(DuplicateIssueIdError):
        seeded.issues.append(_issue("IS1", book_id="B2"))
    assert seeded.issues.get("IS1").book_id == "B1"


def test_missing_issue(seeded):
    assert seeded.issues.find("NOPE") is None
    with pytest.raises(IssueNotFoundError):
        seeded.issues.get("NOPE")


def test_open_issues_exclude_returned_and_voided(seeded):
    seeded.issues.append(_issue("IS1"))
    seeded.issues.append(_issue("IS2", book_id="B2"))
    seeded.issues.append(_issue("IS3", book_id="B3"))
    seeded.returns.append(ReturnRecord("R1", "IS1", "Dune", date(2024, 1, 5)))
    seeded.issues.mark_void("IS2", "entered in error", date(2024, 1, 2))

    assert [i.issue_id for i in seeded.issues.list_open()] == ["IS3"]
    assert seeded.issues.list_open(book_id="B1") == []
    voided = seeded.issues.get("IS2")
    assert voided.voided
    assert voided.void_reason == "entered in error"


def test_return_ledger_one_return_per_issue(seeded):
    seeded.issues.append(_issue("IS1"))
    seeded.returns.append(ReturnRecord("R1", "IS1", "Dune", date(2024, 1, 5), ReturnCondition.DAMAGED))

    with pytest.raises(AlreadyReturnedError):
        seeded.returns.append(ReturnRecord("R2", "IS1", "Dune", date(2024, 1, 6)))
    assert seeded.returns.find_by_issue_id("IS1").return_id == "R1"
    assert seeded.returns.get("R1").condition is ReturnCondition.DAMAGED


def test_return_ledger_rejects_duplicate_return_id(seeded):
    seeded.issues.append(_issue("IS1"))
    seeded.issues.append(_issue("IS2", book_id="B2"))
    seeded.returns.append(ReturnRecord("R1", "IS1", "Dune", date(2024, 1, 5)))
    with pytest.raises(DuplicateReturnIdError):
        seeded.returns.append(ReturnRecord("R1", "IS2", "SPQR", date(2024, 1, 5)))


def test_missing_return(seeded):
    assert seeded.returns.find_by_issue_id("IS1") is None
    with pytest.raises(ReturnNotFoundError):
        seeded.returns.get("R404")
