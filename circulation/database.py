import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings
from circulation.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

# Default database file; LIBRARY_DB_FILE overrides it through settings
DATABASE_FILE = settings.data_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; multi-statement writes go through
    :func:`transaction`, which issues BEGIN IMMEDIATE explicitly.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def connection(db_file: Optional[str] = None, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
    """Yield the caller's connection if given, otherwise a fresh one closed on exit.

    Store methods use this so that they can run either standalone or inside
    an engine transaction.
    """
    if conn is not None:
        yield conn
        return
    own = get_db_connection(db_file)
    try:
        yield own
    finally:
        own.close()


@contextmanager
def transaction(db_file: Optional[str] = None, lock_name: str = "database") -> Iterator[sqlite3.Connection]:
    """Run a block as a single write transaction.

    BEGIN IMMEDIATE takes SQLite's reserved lock up front, so two writers
    never interleave between their checks and their writes. Any exception
    rolls the whole block back.
    """
    conn = get_db_connection(db_file)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise ConcurrentModificationError(lock_name) from e
            raise
        try:
            yield conn
        except BaseException:
            # SQLite may already have rolled back on its own (disk full, I/O error)
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the circulation tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets reporting reads run next to an open write transaction
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                book_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT '',
                rental_price TEXT NOT NULL DEFAULT '0',
                available INTEGER NOT NULL DEFAULT 1 CHECK(available IN (0, 1)),
                author TEXT NOT NULL DEFAULT '',
                publisher TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS members (
                member_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                address TEXT NOT NULL DEFAULT '',
                registration_date TEXT NOT NULL
            );

            -- manager_id is set in a second pass once the branch has employees
            CREATE TABLE IF NOT EXISTS branches (
                branch_id TEXT PRIMARY KEY,
                manager_id TEXT REFERENCES employees(employee_id),
                address TEXT NOT NULL DEFAULT '',
                contact TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS employees (
                employee_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                position TEXT NOT NULL DEFAULT '',
                salary TEXT NOT NULL DEFAULT '0',
                branch_id TEXT NOT NULL REFERENCES branches(branch_id),
                manager_id TEXT REFERENCES employees(employee_id)
            );

            CREATE TABLE IF NOT EXISTS issues (
                issue_id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL REFERENCES members(member_id),
                employee_id TEXT NOT NULL REFERENCES employees(employee_id),
                book_id TEXT NOT NULL REFERENCES books(book_id),
                book_title TEXT NOT NULL,
                issue_date TEXT NOT NULL,
                voided_on TEXT,
                void_reason TEXT
            );

            CREATE TABLE IF NOT EXISTS returns (
                return_id TEXT PRIMARY KEY,
                issue_id TEXT NOT NULL UNIQUE REFERENCES issues(issue_id),
                book_title TEXT NOT NULL,
                return_date TEXT NOT NULL,
                condition TEXT NOT NULL CHECK(condition IN ('good', 'damaged', 'lost'))
            );

            CREATE INDEX IF NOT EXISTS idx_issues_member ON issues(member_id);
            CREATE INDEX IF NOT EXISTS idx_issues_employee ON issues(employee_id);
            CREATE INDEX IF NOT EXISTS idx_issues_book ON issues(book_id);
            CREATE INDEX IF NOT EXISTS idx_issues_issue_date ON issues(issue_date);
            CREATE INDEX IF NOT EXISTS idx_returns_condition ON returns(condition);
            CREATE INDEX IF NOT EXISTS idx_employees_branch ON employees(branch_id);
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the schema for the given database file."""
    create_tables(db_file)
    logger.info(f"Database ready: {db_file or DATABASE_FILE}")
