import logging
import os
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from config import settings
from circulation import database
from circulation.availability import AvailabilityController
from circulation.catalog import CatalogStore
from circulation.directory import DirectoryStore
from circulation.engine import CirculationEngine, CirculationEvent, Listener
from circulation.fines import FineCalculator, OverdueEntry
from circulation.ledgers import IssueLedger, ReturnLedger
from circulation.models import (
    Availability,
    Book,
    Branch,
    Employee,
    IssueRecord,
    Member,
    ReturnCondition,
    ReturnRecord,
)
from circulation.reports import ReportSink

logger = logging.getLogger(__name__)


def log_return_notification(event: CirculationEvent) -> None:
    """Default observability hook: log every completed return."""
    if event.kind == "returned":
        logger.info(f"NOTICE: '{event.book_title}' returned for issue {event.issue_id} ({event.status})")


class Library:
    """Wires the stores, ledgers, engine and calculator for one database file."""

    def __init__(self, db_file: Optional[str] = None, calculator: Optional[FineCalculator] = None,
                 listeners: Optional[List[Listener]] = None) -> None:
        self.db_file = db_file or os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE
        database.initialize_database(self.db_file)

        self.catalog = CatalogStore(self.db_file)
        self.directory = DirectoryStore(self.db_file)
        self.issues = IssueLedger(self.db_file)
        self.returns = ReturnLedger(self.db_file)
        self.availability = AvailabilityController(self.catalog)
        self.calculator = calculator or FineCalculator(
            grace_period_days=settings.grace_period_days,
            daily_rate=settings.daily_fine_rate,
            damaged_threshold=settings.high_risk_damaged_threshold,
            active_window_days=settings.active_member_window_days,
        )
        self.engine = CirculationEngine(
            self.db_file,
            self.catalog,
            self.directory,
            self.issues,
            self.returns,
            self.availability,
            lock_timeout=settings.lock_timeout,
            listeners=listeners,
        )
        if settings.enable_return_notifications:
            self.engine.subscribe(log_return_notification)
        self.reports = ReportSink(self.db_file, self.catalog, self.issues, self.returns, self.calculator)

    # ------------------------- Catalog & directory ------------------------- #
    def add_book(self, book: Book) -> Book:
        return self.catalog.add_book(book)

    def find_book(self, book_id: str) -> Optional[Book]:
        return self.catalog.find_book(book_id)

    def list_books(self, category: Optional[str] = None) -> List[Book]:
        return self.catalog.list_books(category)

    def add_member(self, member: Member) -> Member:
        return self.directory.add_member(member)

    def add_branch(self, branch: Branch) -> Branch:
        return self.directory.add_branch(branch)

    def add_employee(self, employee: Employee) -> Employee:
        return self.directory.add_employee(employee)

    # ------------------------- Circulation ------------------------- #
    def issue_book(self, book_id: str, member_id: str, employee_id: str, issue_id: str,
                   issue_date: Optional[date] = None) -> IssueRecord:
        return self.engine.issue(book_id, member_id, employee_id, issue_id, issue_date)

    def return_book(self, issue_id: str, return_id: str, return_date: Optional[date] = None,
                    condition: "ReturnCondition | str" = ReturnCondition.GOOD) -> ReturnRecord:
        return self.engine.return_book(issue_id, return_id, return_date, condition)

    def delete_issue(self, issue_id: str) -> IssueRecord:
        return self.engine.delete_issue(issue_id)

    def void_issue(self, issue_id: str, reason: str, voided_on: Optional[date] = None) -> IssueRecord:
        return self.engine.void_issue(issue_id, reason, voided_on)

    # ------------------------- Calculator views ------------------------- #
    def overdue_report(self, as_of: Optional[date] = None) -> List[OverdueEntry]:
        return self.calculator.overdue_report(self.issues.list_all(), self.returns.list_all(), as_of)

    def fine_for(self, issue_id: str, as_of: Optional[date] = None) -> Dict[str, object]:
        """Overdue days and fine for a single issue, frozen at the return date if returned."""
        issue = self.issues.get(issue_id)
        returned = self.returns.find_by_issue_id(issue_id)
        return {
            "issue_id": issue_id,
            "returned": returned is not None,
            "overdue": self.calculator.is_overdue(issue, returned, as_of),
            "days_overdue": self.calculator.days_overdue(issue, returned, as_of),
            "fine": self.calculator.fine(issue, returned, as_of),
        }

    def fines_by_member(self, as_of: Optional[date] = None) -> Dict[str, Decimal]:
        return self.calculator.fines_by_member(self.issues.list_all(), self.returns.list_all(), as_of)

    def high_risk_members(self) -> List[str]:
        return self.calculator.high_risk_members(self.issues.list_all(), self.returns.list_all())

    def is_high_risk_member(self, member_id: str) -> bool:
        self.directory.get_member(member_id)
        return self.calculator.is_high_risk(member_id, self.issues.list_by_member(member_id),
                                            self.returns.list_all())

    def active_members(self, as_of: Optional[date] = None, window_days: Optional[int] = None) -> List[str]:
        return sorted(self.calculator.active_members(self.issues.list_all(), as_of, window_days))

    def materialize_reports(self, as_of: Optional[date] = None) -> Dict[str, int]:
        return self.reports.materialize(as_of)

    # ------------------------- Invariant check ------------------------- #
    def verify_availability(self) -> List[str]:
        """Book ids whose flag disagrees with the ledgers (empty when consistent)."""
        open_books = {i.book_id for i in self.issues.list_open()}
        mismatched = []
        for book in self.catalog.list_books():
            expected = Availability.ON_LOAN if book.book_id in open_books else Availability.AVAILABLE
            if book.availability is not expected:
                mismatched.append(book.book_id)
        if mismatched:
            logger.warning(f"Availability out of sync with ledgers for: {', '.join(mismatched)}")
        return mismatched

    def get_statistics(self) -> Dict[str, int]:
        books = self.catalog.list_books()
        return {
            "total_books": len(books),
            "on_loan": sum(1 for b in books if not b.available),
            "total_issues": len(self.issues.list_all()),
            "total_returns": len(self.returns.list_all()),
            "members": len(self.directory.list_members()),
        }

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
