"""Per-book availability state machine.

Two states, two transitions::

    AVAILABLE --check_out--> ON_LOAN
    ON_LOAN   --check_in---> AVAILABLE

Each transition is a compare-and-swap on the book row, so a transition
from the wrong state changes nothing and raises instead.
"""

import logging
import sqlite3
from typing import Optional

from circulation.catalog import CatalogStore
from circulation.errors import AlreadyOnLoanError, BookNotFoundError, NotOnLoanError
from circulation.models import Availability

logger = logging.getLogger(__name__)


class AvailabilityController:
    """The only writer of a book's availability flag."""

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    def state(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Availability:
        return self.catalog.get_book(book_id, conn).availability

    def check_out(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        """AVAILABLE -> ON_LOAN; AlreadyOnLoanError if the book is already out."""
        self._transition(book_id, Availability.AVAILABLE, Availability.ON_LOAN, conn)

    def check_in(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        """ON_LOAN -> AVAILABLE; NotOnLoanError if the book is already in."""
        self._transition(book_id, Availability.ON_LOAN, Availability.AVAILABLE, conn)

    def _transition(self, book_id: str, source: Availability, target: Availability,
                    conn: Optional[sqlite3.Connection]) -> None:
        if self.catalog.set_availability(book_id, target, expected=source, conn=conn):
            logger.debug(f"Book {book_id}: {source.value} -> {target.value}")
            return
        # nothing swapped: either the book is missing or it is not in the source state
        if self.catalog.find_book(book_id, conn) is None:
            raise BookNotFoundError(book_id)
        if source is Availability.AVAILABLE:
            raise AlreadyOnLoanError(book_id)
        raise NotOnLoanError(book_id)
