"""Append-only issue and return ledgers.

Identifier uniqueness is enforced by the table keys, so a duplicate id is
rejected by the same statement that would have inserted it; two racing
writers can never both succeed or overwrite each other.
"""

import logging
import sqlite3
from datetime import date
from typing import List, Optional

from circulation.database import connection
from circulation.errors import (
    AlreadyReturnedError,
    DuplicateIssueIdError,
    DuplicateReturnIdError,
    IssueNotFoundError,
    ReturnNotFoundError,
)
from circulation.models import IssueRecord, ReturnRecord

logger = logging.getLogger(__name__)

_ISSUE_COLUMNS = "issue_id, member_id, employee_id, book_id, book_title, issue_date, voided_on, void_reason"
_RETURN_COLUMNS = "return_id, issue_id, book_title, return_date, condition"


class IssueLedger:
    """Source of truth for who holds what, since when."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def append(self, record: IssueRecord, conn: Optional[sqlite3.Connection] = None) -> IssueRecord:
        with connection(self.db_file, conn) as c:
            try:
                c.execute(
                    f"INSERT INTO issues ({_ISSUE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, NULL, NULL)",
                    (record.issue_id, record.member_id, record.employee_id, record.book_id,
                     record.book_title, record.issue_date.isoformat()),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateIssueIdError(record.issue_id) from e
                raise
        return record

    def find(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[IssueRecord]:
        with connection(self.db_file, conn) as c:
            row = c.execute(f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE issue_id = ?", (issue_id,)).fetchone()
            return IssueRecord.from_dict(dict(row)) if row else None

    def get(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> IssueRecord:
        record = self.find(issue_id, conn)
        if record is None:
            raise IssueNotFoundError(issue_id)
        return record

    def exists(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        with connection(self.db_file, conn) as c:
            return c.execute("SELECT 1 FROM issues WHERE issue_id = ?", (issue_id,)).fetchone() is not None

    def _select(self, where: str = "", params: tuple = (), conn: Optional[sqlite3.Connection] = None) -> List[IssueRecord]:
        with connection(self.db_file, conn) as c:
            rows = c.execute(
                f"SELECT {_ISSUE_COLUMNS} FROM issues {where} ORDER BY issue_date, issue_id", params
            ).fetchall()
            return [IssueRecord.from_dict(dict(row)) for row in rows]

    def list_all(self) -> List[IssueRecord]:
        return self._select()

    def list_by_member(self, member_id: str) -> List[IssueRecord]:
        return self._select("WHERE member_id = ?", (member_id,))

    def list_by_employee(self, employee_id: str) -> List[IssueRecord]:
        return self._select("WHERE employee_id = ?", (employee_id,))

    def list_by_book(self, book_id: str) -> List[IssueRecord]:
        return self._select("WHERE book_id = ?", (book_id,))

    def list_open(self, book_id: Optional[str] = None, conn: Optional[sqlite3.Connection] = None) -> List[IssueRecord]:
        """Issues with no return that have not been voided."""
        where = (
            "WHERE voided_on IS NULL "
            "AND NOT EXISTS (SELECT 1 FROM returns r WHERE r.issue_id = issues.issue_id)"
        )
        params: tuple = ()
        if book_id is not None:
            where += " AND book_id = ?"
            params = (book_id,)
        return self._select(where, params, conn)

    def mark_void(self, issue_id: str, reason: str, voided_on: date,
                  conn: Optional[sqlite3.Connection] = None) -> IssueRecord:
        with connection(self.db_file, conn) as c:
            cursor = c.execute(
                "UPDATE issues SET voided_on = ?, void_reason = ? WHERE issue_id = ? AND voided_on IS NULL",
                (voided_on.isoformat(), reason, issue_id),
            )
            if cursor.rowcount == 0:
                raise IssueNotFoundError(issue_id)
            return self.get(issue_id, c)

    def delete(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with connection(self.db_file, conn) as c:
            cursor = c.execute("DELETE FROM issues WHERE issue_id = ?", (issue_id,))
            if cursor.rowcount == 0:
                raise IssueNotFoundError(issue_id)


class ReturnLedger:
    """Return events; each one points at exactly one issue."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def append(self, record: ReturnRecord, conn: Optional[sqlite3.Connection] = None) -> ReturnRecord:
        with connection(self.db_file, conn) as c:
            try:
                c.execute(
                    f"INSERT INTO returns ({_RETURN_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (record.return_id, record.issue_id, record.book_title,
                     record.return_date.isoformat(), record.condition.value),
                )
            except sqlite3.IntegrityError as e:
                message = str(e)
                if "returns.issue_id" in message:
                    raise AlreadyReturnedError(record.issue_id) from e
                if "returns.return_id" in message or "PRIMARY KEY" in message:
                    raise DuplicateReturnIdError(record.return_id) from e
                raise
        return record

    def find_by_issue_id(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[ReturnRecord]:
        with connection(self.db_file, conn) as c:
            row = c.execute(f"SELECT {_RETURN_COLUMNS} FROM returns WHERE issue_id = ?", (issue_id,)).fetchone()
            return ReturnRecord.from_dict(dict(row)) if row else None

    def find(self, return_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[ReturnRecord]:
        with connection(self.db_file, conn) as c:
            row = c.execute(f"SELECT {_RETURN_COLUMNS} FROM returns WHERE return_id = ?", (return_id,)).fetchone()
            return ReturnRecord.from_dict(dict(row)) if row else None

    def get(self, return_id: str, conn: Optional[sqlite3.Connection] = None) -> ReturnRecord:
        record = self.find(return_id, conn)
        if record is None:
            raise ReturnNotFoundError(return_id)
        return record

    def list_all(self) -> List[ReturnRecord]:
        with connection(self.db_file) as c:
            rows = c.execute(f"SELECT {_RETURN_COLUMNS} FROM returns ORDER BY return_date, return_id").fetchall()
            return [ReturnRecord.from_dict(dict(row)) for row in rows]
