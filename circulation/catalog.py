import logging
import sqlite3
from typing import List, Optional

from circulation.database import connection
from circulation.errors import BookNotFoundError, DuplicateBookIdError
from circulation.models import Availability, Book

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "book_id, title, category, rental_price, available, author, publisher"


class CatalogStore:
    """Book records keyed by id.

    The availability column is written only through :meth:`set_availability`,
    and only the availability controller calls it.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def add_book(self, book: Book, conn: Optional[sqlite3.Connection] = None) -> Book:
        """Add a new book. New books always start out available."""
        if not book.book_id:
            raise ValueError("Book id cannot be empty.")
        if not book.title:
            raise ValueError("Book title cannot be empty.")
        if book.rental_price < 0:
            raise ValueError(f"Rental price cannot be negative: {book.rental_price}")

        book.availability = Availability.AVAILABLE
        with connection(self.db_file, conn) as c:
            try:
                c.execute(
                    f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, 1, ?, ?)",
                    (book.book_id, book.title, book.category, str(book.rental_price),
                     book.author, book.publisher),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateBookIdError(book.book_id) from e
                raise
        logger.info(f"Book added: {book.book_id} ({book.title})")
        return book

    def find_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with connection(self.db_file, conn) as c:
            row = c.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books WHERE book_id = ?", (book_id,)
            ).fetchone()
            return Book.from_dict(dict(row)) if row else None

    def get_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Book:
        book = self.find_book(book_id, conn)
        if book is None:
            raise BookNotFoundError(book_id)
        return book

    def list_books(self, category: Optional[str] = None) -> List[Book]:
        with connection(self.db_file) as c:
            if category:
                rows = c.execute(
                    f"SELECT {_BOOK_COLUMNS} FROM books WHERE category = ? ORDER BY title",
                    (category,),
                ).fetchall()
            else:
                rows = c.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY title").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]

    def search_books(self, query: str) -> List[Book]:
        """Search by title, author or publisher."""
        pattern = f"%{query}%"
        with connection(self.db_file) as c:
            rows = c.execute(
                f"""
                SELECT {_BOOK_COLUMNS} FROM books
                WHERE title LIKE ? OR author LIKE ? OR publisher LIKE ?
                ORDER BY title
                """,
                (pattern, pattern, pattern),
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]

    def set_availability(
        self,
        book_id: str,
        flag: Availability,
        expected: Optional[Availability] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Write the availability flag.

        With ``expected`` this is a compare-and-swap: the row changes only if
        it currently holds ``expected``. Returns whether a row was changed.
        """
        new_value = 1 if Availability(flag) is Availability.AVAILABLE else 0
        with connection(self.db_file, conn) as c:
            if expected is None:
                cursor = c.execute("UPDATE books SET available = ? WHERE book_id = ?", (new_value, book_id))
            else:
                old_value = 1 if Availability(expected) is Availability.AVAILABLE else 0
                cursor = c.execute(
                    "UPDATE books SET available = ? WHERE book_id = ? AND available = ?",
                    (new_value, book_id, old_value),
                )
            return cursor.rowcount > 0
