"""Issue and return as atomic units.

Every operation here follows the same shape:

1. take the in-process lock for the entity it changes (issue lock before
   book lock, always in that order),
2. open one BEGIN IMMEDIATE transaction,
3. validate against catalog, directory and ledgers,
4. append to the ledger and move the availability flag,
5. commit, then notify listeners.

A failure anywhere before the commit rolls back both the ledger write and
the flag change, so the flag can never disagree with the ledgers.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterator, List, Optional

from circulation.availability import AvailabilityController
from circulation.catalog import CatalogStore
from circulation.database import transaction
from circulation.directory import DirectoryStore
from circulation.errors import (
    AlreadyOnLoanError,
    AlreadyReturnedError,
    BookUnavailableError,
    ConcurrentModificationError,
    DuplicateIssueIdError,
    DuplicateReturnIdError,
    IssueVoidedError,
    ReferentialIntegrityError,
)
from circulation.ledgers import IssueLedger, ReturnLedger
from circulation.models import IssueRecord, ReturnCondition, ReturnRecord

logger = logging.getLogger(__name__)


@dataclass
class CirculationEvent:
    """Notification emitted after a committed circulation change."""

    kind: str  # issued, returned, voided, deleted
    issue_id: str
    book_id: str
    book_title: str
    status: str = "completed"
    details: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "issue_id": self.issue_id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "status": self.status,
            "details": dict(self.details),
        }


Listener = Callable[[CirculationEvent], None]


class KeyedLocks:
    """One lock per key, created on first use.

    Acquisition is bounded by ``timeout`` so no caller waits indefinitely.
    A key's lock is dropped once no caller holds or waits for it.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            if not lock.acquire(timeout=self.timeout):
                raise ConcurrentModificationError(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]


class CirculationEngine:
    def __init__(
        self,
        db_file: Optional[str],
        catalog: CatalogStore,
        directory: DirectoryStore,
        issues: IssueLedger,
        returns: ReturnLedger,
        availability: AvailabilityController,
        lock_timeout: float = 5.0,
        listeners: Optional[List[Listener]] = None,
    ) -> None:
        self.db_file = db_file
        self.catalog = catalog
        self.directory = directory
        self.issues = issues
        self.returns = returns
        self.availability = availability
        self.listeners: List[Listener] = list(listeners or [])
        self._book_locks = KeyedLocks(lock_timeout)
        self._issue_locks = KeyedLocks(lock_timeout)

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    # ------------------------- Issue ------------------------- #
    def issue(
        self,
        book_id: str,
        member_id: str,
        employee_id: str,
        issue_id: str,
        issue_date: Optional[date] = None,
    ) -> IssueRecord:
        """Lend a book to a member through an employee."""
        if not issue_id:
            raise ValueError("Issue id cannot be empty.")
        issue_date = issue_date or date.today()

        with self._book_locks.hold(f"book:{book_id}"):
            with transaction(self.db_file, lock_name=f"book:{book_id}") as conn:
                book = self.catalog.get_book(book_id, conn)
                self.directory.get_member(member_id, conn)
                self.directory.get_employee(employee_id, conn)
                if self.issues.exists(issue_id, conn):
                    raise DuplicateIssueIdError(issue_id)

                record = IssueRecord(
                    issue_id=issue_id,
                    member_id=member_id,
                    employee_id=employee_id,
                    book_id=book.book_id,
                    book_title=book.title,
                    issue_date=issue_date,
                )
                try:
                    self.availability.check_out(book_id, conn)
                except AlreadyOnLoanError as e:
                    logger.warning(f"Issue {issue_id} rejected: book {book_id} already on loan")
                    raise BookUnavailableError(book_id) from e
                self.issues.append(record, conn)

        logger.info(f"Issued {book_id} ({record.book_title}) to {member_id} by {employee_id} as {issue_id}")
        self._notify(CirculationEvent("issued", issue_id, book_id, record.book_title))
        return record

    # ------------------------- Return ------------------------- #
    def return_book(
        self,
        issue_id: str,
        return_id: str,
        return_date: Optional[date] = None,
        condition: ReturnCondition | str = ReturnCondition.GOOD,
    ) -> ReturnRecord:
        """Close an issue and put the book back on the shelf."""
        if not return_id:
            raise ValueError("Return id cannot be empty.")
        condition = ReturnCondition.parse(condition)
        return_date = return_date or date.today()

        with self._issue_locks.hold(f"issue:{issue_id}"):
            issue = self.issues.get(issue_id)
            with self._book_locks.hold(f"book:{issue.book_id}"):
                with transaction(self.db_file, lock_name=f"issue:{issue_id}") as conn:
                    issue = self.issues.get(issue_id, conn)
                    if self.returns.find_by_issue_id(issue_id, conn) is not None:
                        logger.warning(f"Return {return_id} rejected: issue {issue_id} already returned")
                        raise AlreadyReturnedError(issue_id)
                    if issue.voided:
                        raise IssueVoidedError(issue_id)
                    if self.returns.find(return_id, conn) is not None:
                        raise DuplicateReturnIdError(return_id)
                    if return_date < issue.issue_date:
                        raise ValueError(
                            f"Return date {return_date} is before issue date {issue.issue_date} for {issue_id}."
                        )

                    record = ReturnRecord(
                        return_id=return_id,
                        issue_id=issue_id,
                        book_title=issue.book_title,
                        return_date=return_date,
                        condition=condition,
                    )
                    self.returns.append(record, conn)
                    self.availability.check_in(issue.book_id, conn)

        logger.info(f"Returned {issue.book_id} ({issue.book_title}) for {issue_id} as {return_id}, condition={condition.value}")
        self._notify(CirculationEvent(
            "returned", issue_id, issue.book_id, issue.book_title,
            details={"return_id": return_id, "condition": condition.value},
        ))
        return record

    # ------------------------- Administrative corrections ------------------------- #
    def delete_issue(self, issue_id: str) -> IssueRecord:
        """Hard-delete an issue that no return references.

        Deleting an open issue also checks its book back in. Prefer
        :meth:`void_issue`, which keeps the record for audit.
        """
        with self._issue_locks.hold(f"issue:{issue_id}"):
            issue = self.issues.get(issue_id)
            with self._book_locks.hold(f"book:{issue.book_id}"):
                with transaction(self.db_file, lock_name=f"issue:{issue_id}") as conn:
                    issue = self.issues.get(issue_id, conn)
                    if self.returns.find_by_issue_id(issue_id, conn) is not None:
                        raise ReferentialIntegrityError(
                            f"Issue {issue_id} is referenced by a return and cannot be deleted.", issue_id
                        )
                    self.issues.delete(issue_id, conn)
                    if not issue.voided:
                        self.availability.check_in(issue.book_id, conn)

        logger.info(f"Issue {issue_id} deleted")
        self._notify(CirculationEvent("deleted", issue_id, issue.book_id, issue.book_title))
        return issue

    def void_issue(self, issue_id: str, reason: str, voided_on: Optional[date] = None) -> IssueRecord:
        """Cancel an unreturned issue without deleting it."""
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A reason is required to void an issue.")
        voided_on = voided_on or date.today()

        with self._issue_locks.hold(f"issue:{issue_id}"):
            issue = self.issues.get(issue_id)
            with self._book_locks.hold(f"book:{issue.book_id}"):
                with transaction(self.db_file, lock_name=f"issue:{issue_id}") as conn:
                    issue = self.issues.get(issue_id, conn)
                    if self.returns.find_by_issue_id(issue_id, conn) is not None:
                        raise ReferentialIntegrityError(
                            f"Issue {issue_id} has already been returned and cannot be voided.", issue_id
                        )
                    if issue.voided:
                        raise IssueVoidedError(issue_id)
                    voided = self.issues.mark_void(issue_id, reason, voided_on, conn)
                    self.availability.check_in(issue.book_id, conn)

        logger.info(f"Issue {issue_id} voided: {reason}")
        self._notify(CirculationEvent("voided", issue_id, issue.book_id, issue.book_title,
                                      details={"reason": reason}))
        return voided

    def _notify(self, event: CirculationEvent) -> None:
        # listeners observe committed changes only; their failures never reach the caller
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Circulation listener failed for {event.kind} event on {event.issue_id}")
