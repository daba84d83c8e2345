from datetime import date, timedelta
from decimal import Decimal

import pytest

from circulation.errors import IssueNotFoundError, MemberNotFoundError
from circulation.fines import FineCalculator
from circulation.models import IssueRecord, ReturnRecord

JAN_1 = date(2024, 1, 1)


def _issue(issue_id="IS1", member_id="C101", issue_date=JAN_1, voided_on=None):
    return IssueRecord(issue_id, member_id, "E101", "B1", "Dune", issue_date, voided_on=voided_on)


def test_fine_for_unreturned_issue():
    calc = FineCalculator()
    issue = _issue()
    # 59 days after issue; 2024 is a leap year, so 2024-03-01 is already 60 days
    as_of = date(2024, 2, 29)
    assert calc.is_overdue(issue, None, as_of)
    assert calc.days_overdue(issue, None, as_of) == 29
    assert calc.fine(issue, None, as_of) == Decimal("14.50")
    assert calc.days_overdue(issue, None, date(2024, 3, 1)) == 30
    assert calc.fine(issue, None, date(2024, 3, 1)) == Decimal("15.00")


def test_no_fine_within_grace_period():
    calc = FineCalculator()
    issue = _issue()
    as_of = JAN_1 + timedelta(days=30)
    assert not calc.is_overdue(issue, None, as_of)
    assert calc.fine(issue, None, as_of) == Decimal("0.00")
    assert calc.is_overdue(issue, None, as_of + timedelta(days=1))


def test_fine_freezes_at_return_date():
    calc = FineCalculator()
    issue = _issue()
    returned = ReturnRecord("R1", "IS1", "Dune", date(2024, 2, 1))  # 31 days
    for as_of in (date(2024, 2, 1), date(2024, 3, 1), date(2025, 1, 1)):
        assert calc.fine(issue, returned, as_of) == Decimal("0.50")
        assert not calc.is_overdue(issue, returned, as_of)


def test_fine_is_monotonic_in_as_of():
    calc = FineCalculator()
    issue = _issue()
    previous = Decimal("0")
    for offset in range(0, 120):
        current = calc.fine(issue, None, JAN_1 + timedelta(days=offset))
        assert current >= previous
        previous = current


def test_voided_issue_never_overdue():
    calc = FineCalculator()
    issue = _issue(voided_on=date(2024, 1, 2))
    assert not calc.is_overdue(issue, None, date(2024, 6, 1))
    assert calc.fine(issue, None, date(2024, 6, 1)) == Decimal("0.00")


def test_custom_rules():
    calc = FineCalculator(grace_period_days=14, daily_rate=Decimal("0.25"))
    assert calc.fine(_issue(), None, date(2024, 1, 25)) == Decimal("2.50")
    with pytest.raises(ValueError):
        FineCalculator(grace_period_days=-1)


def test_overdue_report_orders_most_overdue_first():
    calc = FineCalculator()
    issues = [
        _issue("IS1", "C101", date(2024, 1, 20)),
        _issue("IS2", "C102", date(2024, 1, 1)),
        _issue("IS3", "C103", date(2024, 2, 20)),
        _issue("IS4", "C101", date(2023, 12, 1)),
    ]
    returns = [ReturnRecord("R4", "IS4", "Dune", date(2024, 1, 5))]
    report = calc.overdue_report(issues, returns, date(2024, 3, 1))
    assert [e.issue_id for e in report] == ["IS2", "IS1"]
    assert report[0].days_overdue == 30
    assert report[0].fine == Decimal("15.00")


def test_fines_by_member_includes_frozen_fines():
    calc = FineCalculator()
    issues = [_issue("IS1", "C101"), _issue("IS2", "C101"), _issue("IS3", "C102", date(2024, 2, 20))]
    returns = [ReturnRecord("R1", "IS1", "Dune", date(2024, 2, 1))]
    totals = calc.fines_by_member(issues, returns, date(2024, 2, 29))
    assert totals == {"C101": Decimal("15.00")}


def test_high_risk_threshold():
    calc = FineCalculator()
    issues = [_issue("IS1", "C101"), _issue("IS2", "C101"), _issue("IS3", "C102")]
    returns = [
        ReturnRecord("R1", "IS1", "Dune", date(2024, 1, 5), "damaged"),
        ReturnRecord("R2", "IS2", "Dune", date(2024, 1, 6), "damaged"),
        ReturnRecord("R3", "IS3", "Dune", date(2024, 1, 7), "damaged"),
    ]
    assert calc.high_risk_members(issues, returns) == ["C101"]
    assert calc.is_high_risk("C101", issues, returns)
    assert not calc.is_high_risk("C102", issues, returns)
    # lost and good returns don't count
    assert calc.high_risk_members(issues, [ReturnRecord("R9", "IS1", "Dune", JAN_1, "lost")]) == []


def test_active_members_window():
    calc = FineCalculator()
    as_of = date(2024, 3, 1)
    issues = [
        _issue("IS1", "C101", date(2024, 2, 15)),
        _issue("IS2", "C102", date(2023, 11, 1)),
        _issue("IS3", "C103", date(2024, 2, 20), voided_on=date(2024, 2, 21)),
        _issue("IS4", "C104", as_of - timedelta(days=60)),
    ]
    # the window is (as_of - 60 days, as_of]; IS4 sits exactly on the open end
    assert calc.active_members(issues, as_of) == {"C101"}
    assert calc.active_members(issues, as_of, window_days=200) == {"C101", "C102", "C104"}


def test_library_fine_view(seeded):
    seeded.issue_book("B1", "C101", "E101", "IS1", JAN_1)
    info = seeded.fine_for("IS1", date(2024, 2, 29))
    assert info == {
        "issue_id": "IS1",
        "returned": False,
        "overdue": True,
        "days_overdue": 29,
        "fine": Decimal("14.50"),
    }

    seeded.return_book("IS1", "R1", date(2024, 2, 1))
    frozen = seeded.fine_for("IS1", date(2024, 6, 1))
    assert frozen["returned"] is True
    assert frozen["fine"] == Decimal("0.50")

    with pytest.raises(IssueNotFoundError):
        seeded.fine_for("NOPE")


def test_library_high_risk_member(seeded):
    seeded.issue_book("B1", "C101", "E101", "IS1", JAN_1)
    seeded.return_book("IS1", "R1", date(2024, 1, 5), "damaged")
    assert not seeded.is_high_risk_member("C101")

    seeded.issue_book("B2", "C101", "E101", "IS2", date(2024, 1, 6))
    seeded.return_book("IS2", "R2", date(2024, 1, 9), "damaged")
    assert seeded.is_high_risk_member("C101")
    assert seeded.high_risk_members() == ["C101"]

    with pytest.raises(MemberNotFoundError):
        seeded.is_high_risk_member("NOPE")


def test_library_overdue_report(seeded):
    seeded.issue_book("B1", "C101", "E101", "IS1", JAN_1)
    seeded.issue_book("B2", "C102", "E101", "IS2", date(2024, 2, 25))
    report = seeded.overdue_report(date(2024, 2, 29))
    assert [e.issue_id for e in report] == ["IS1"]
    assert seeded.active_members(date(2024, 2, 29)) == ["C101", "C102"]
