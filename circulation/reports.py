"""Derived summaries and their materialized tables.

The summary tables are caches: ``ReportSink.materialize`` drops and
rebuilds them from the ledgers every time, and nothing in the engine or
the calculator reads them back.
"""

import logging
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from circulation.catalog import CatalogStore
from circulation.database import connection, transaction
from circulation.fines import FineCalculator
from circulation.ledgers import IssueLedger, ReturnLedger
from circulation.models import Book, IssueRecord

logger = logging.getLogger(__name__)


def book_issue_counts(issues: Iterable[IssueRecord]) -> Dict[str, int]:
    """Number of (non-voided) issues per book id."""
    return dict(Counter(i.book_id for i in issues if not i.voided))


def rental_income_by_category(issues: Iterable[IssueRecord], books: Iterable[Book]) -> Dict[str, Decimal]:
    """Rental price summed over every non-voided issue, grouped by book category."""
    by_id = {b.book_id: b for b in books}
    income: Dict[str, Decimal] = {}
    for issue in issues:
        book = by_id.get(issue.book_id)
        if issue.voided or book is None:
            continue
        income[book.category] = income.get(book.category, Decimal("0")) + book.rental_price
    return income


class ReportSink:
    """Writes calculator output into CTAS-style summary tables."""

    TABLES = (
        "summary_book_issue_counts",
        "summary_rental_income",
        "summary_active_members",
        "summary_overdue_fines",
    )

    def __init__(self, db_file: Optional[str], catalog: CatalogStore, issues: IssueLedger,
                 returns: ReturnLedger, calculator: FineCalculator) -> None:
        self.db_file = db_file
        self.catalog = catalog
        self.issues = issues
        self.returns = returns
        self.calculator = calculator

    def materialize(self, as_of: Optional[date] = None) -> Dict[str, int]:
        """Rebuild every summary table; returns the row count written per table."""
        as_of = as_of or date.today()
        issues = self.issues.list_all()
        returns = self.returns.list_all()
        books = self.catalog.list_books()
        titles = {b.book_id: b.title for b in books}

        counts = book_issue_counts(issues)
        income = rental_income_by_category(issues, books)
        active = sorted(self.calculator.active_members(issues, as_of))
        overdue = self.calculator.overdue_report(issues, returns, as_of)

        with transaction(self.db_file, lock_name="reports") as conn:
            for table in self.TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.execute(
                "CREATE TABLE summary_book_issue_counts (book_id TEXT PRIMARY KEY, title TEXT, issue_count INTEGER)"
            )
            conn.execute("CREATE TABLE summary_rental_income (category TEXT PRIMARY KEY, total_income TEXT)")
            conn.execute("CREATE TABLE summary_active_members (member_id TEXT PRIMARY KEY, as_of TEXT)")
            conn.execute(
                """
                CREATE TABLE summary_overdue_fines (
                    issue_id TEXT PRIMARY KEY, member_id TEXT, book_id TEXT, book_title TEXT,
                    days_overdue INTEGER, fine TEXT, as_of TEXT
                )
                """
            )
            conn.executemany(
                "INSERT INTO summary_book_issue_counts VALUES (?, ?, ?)",
                [(book_id, titles.get(book_id, ""), n) for book_id, n in sorted(counts.items())],
            )
            conn.executemany(
                "INSERT INTO summary_rental_income VALUES (?, ?)",
                [(category, str(total)) for category, total in sorted(income.items())],
            )
            conn.executemany(
                "INSERT INTO summary_active_members VALUES (?, ?)",
                [(member_id, as_of.isoformat()) for member_id in active],
            )
            conn.executemany(
                "INSERT INTO summary_overdue_fines VALUES (?, ?, ?, ?, ?, ?, ?)",
                [(e.issue_id, e.member_id, e.book_id, e.book_title, e.days_overdue, str(e.fine), as_of.isoformat())
                 for e in overdue],
            )

        written = {
            "summary_book_issue_counts": len(counts),
            "summary_rental_income": len(income),
            "summary_active_members": len(active),
            "summary_overdue_fines": len(overdue),
        }
        logger.info(f"Summary tables rebuilt as of {as_of}: {written}")
        return written

    def read_table(self, table: str) -> List[dict]:
        """Dump a summary table (for export and inspection only)."""
        if table not in self.TABLES:
            raise ValueError(f"Unknown summary table: {table}")
        with connection(self.db_file) as conn:
            exists = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
            ).fetchone()
            if not exists:
                return []
            return [dict(row) for row in conn.execute(f"SELECT * FROM {table}").fetchall()]
