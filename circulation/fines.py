"""Overdue status and fine accrual, computed from ledger snapshots.

Nothing here writes anywhere; every figure can be recomputed at any time
from the issue and return ledgers. Fines for returned books freeze at the
return date: a late return keeps the fine it had on the day it came back,
however much later the calculator is run.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

from circulation.models import IssueRecord, ReturnCondition, ReturnRecord

CENT = Decimal("0.01")

DEFAULT_GRACE_PERIOD_DAYS = 30
DEFAULT_DAILY_RATE = Decimal("0.50")
DEFAULT_DAMAGED_THRESHOLD = 2
DEFAULT_ACTIVE_WINDOW_DAYS = 60


@dataclass
class OverdueEntry:
    issue_id: str
    member_id: str
    book_id: str
    book_title: str
    issue_date: date
    days_overdue: int
    fine: Decimal

    def to_dict(self) -> dict:
        return {
            "issue_id": self.issue_id,
            "member_id": self.member_id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "issue_date": self.issue_date.isoformat(),
            "days_overdue": self.days_overdue,
            "fine": str(self.fine),
        }


def index_returns(returns: Iterable[ReturnRecord]) -> Dict[str, ReturnRecord]:
    """Map issue id -> return record."""
    return {r.issue_id: r for r in returns}


class FineCalculator:
    def __init__(
        self,
        grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
        daily_rate: Decimal = DEFAULT_DAILY_RATE,
        damaged_threshold: int = DEFAULT_DAMAGED_THRESHOLD,
        active_window_days: int = DEFAULT_ACTIVE_WINDOW_DAYS,
    ) -> None:
        if grace_period_days < 0:
            raise ValueError("Grace period cannot be negative.")
        if Decimal(daily_rate) < 0:
            raise ValueError("Daily fine rate cannot be negative.")
        self.grace_period_days = grace_period_days
        self.daily_rate = Decimal(daily_rate)
        self.damaged_threshold = damaged_threshold
        self.active_window_days = active_window_days

    # ------------------------- Per issue ------------------------- #
    def is_overdue(self, issue: IssueRecord, returned: Optional[ReturnRecord] = None,
                   as_of: Optional[date] = None) -> bool:
        """Unreturned, not voided, and held longer than the grace period."""
        if returned is not None or issue.voided:
            return False
        as_of = as_of or date.today()
        return (as_of - issue.issue_date).days > self.grace_period_days

    def days_overdue(self, issue: IssueRecord, returned: Optional[ReturnRecord] = None,
                     as_of: Optional[date] = None) -> int:
        if issue.voided:
            return 0
        end = as_of or date.today()
        if returned is not None:
            end = min(end, returned.return_date)
        return max(0, (end - issue.issue_date).days - self.grace_period_days)

    def fine(self, issue: IssueRecord, returned: Optional[ReturnRecord] = None,
             as_of: Optional[date] = None) -> Decimal:
        days = self.days_overdue(issue, returned, as_of)
        return (self.daily_rate * days).quantize(CENT, rounding=ROUND_HALF_UP)

    # ------------------------- Over the ledgers ------------------------- #
    def overdue_report(self, issues: Iterable[IssueRecord], returns: Iterable[ReturnRecord],
                       as_of: Optional[date] = None) -> List[OverdueEntry]:
        """Currently overdue, unreturned issues, most overdue first."""
        as_of = as_of or date.today()
        by_issue = index_returns(returns)
        entries = []
        for issue in issues:
            if not self.is_overdue(issue, by_issue.get(issue.issue_id), as_of):
                continue
            days = self.days_overdue(issue, None, as_of)
            entries.append(OverdueEntry(
                issue_id=issue.issue_id,
                member_id=issue.member_id,
                book_id=issue.book_id,
                book_title=issue.book_title,
                issue_date=issue.issue_date,
                days_overdue=days,
                fine=self.fine(issue, None, as_of),
            ))
        entries.sort(key=lambda e: (-e.days_overdue, e.issue_id))
        return entries

    def fines_by_member(self, issues: Iterable[IssueRecord], returns: Iterable[ReturnRecord],
                        as_of: Optional[date] = None) -> Dict[str, Decimal]:
        """Total accrued fine per member, returned (frozen) and outstanding alike."""
        as_of = as_of or date.today()
        by_issue = index_returns(returns)
        totals: Dict[str, Decimal] = {}
        for issue in issues:
            amount = self.fine(issue, by_issue.get(issue.issue_id), as_of)
            if amount > 0:
                totals[issue.member_id] = totals.get(issue.member_id, Decimal("0.00")) + amount
        return totals

    def damaged_return_counts(self, issues: Iterable[IssueRecord],
                              returns: Iterable[ReturnRecord]) -> Counter:
        """Count damaged returns per member (return -> issue -> member)."""
        member_of: Mapping[str, str] = {i.issue_id: i.member_id for i in issues}
        counts: Counter = Counter()
        for r in returns:
            if r.condition is ReturnCondition.DAMAGED and r.issue_id in member_of:
                counts[member_of[r.issue_id]] += 1
        return counts

    def high_risk_members(self, issues: Iterable[IssueRecord],
                          returns: Iterable[ReturnRecord]) -> List[str]:
        counts = self.damaged_return_counts(issues, returns)
        return sorted(m for m, n in counts.items() if n >= self.damaged_threshold)

    def is_high_risk(self, member_id: str, issues: Iterable[IssueRecord],
                     returns: Iterable[ReturnRecord]) -> bool:
        return self.damaged_return_counts(issues, returns)[member_id] >= self.damaged_threshold

    def active_members(self, issues: Iterable[IssueRecord], as_of: Optional[date] = None,
                       window_days: Optional[int] = None) -> Set[str]:
        """Members with at least one issue dated within the trailing window ending at as_of."""
        as_of = as_of or date.today()
        window = self.active_window_days if window_days is None else window_days
        start = as_of - timedelta(days=window)
        return {i.member_id for i in issues if not i.voided and start < i.issue_date <= as_of}
