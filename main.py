import logging
import os
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer
from rich.console import Console

from circulation import database
from circulation.errors import CirculationError
from circulation.library import Library
from circulation.models import Book, Branch, Employee, Member
from config import settings
from utils.ui_helpers import (
    print_error,
    print_record,
    print_records,
    print_stats_result,
    set_output_mode,
)
from utils.validators import DateValidator, IdentifierValidator, MoneyValidator, TextValidator

APP_NAME = "Circulation CLI"

logger = logging.getLogger(__name__)
console = Console()

BOOK_COLUMNS = ["book_id", "title", "author", "category", "rental_price", "availability"]
ISSUE_COLUMNS = ["issue_id", "member_id", "book_id", "book_title", "issue_date"]
OVERDUE_COLUMNS = ["issue_id", "member_id", "book_id", "book_title", "issue_date", "days_overdue", "fine"]


def _current_db_file() -> str:
    return os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE


class LibraryManager:
    """Process-wide Library, recreated when LIBRARY_DB_FILE points somewhere else."""

    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = _current_db_file()
        if cls._instance is not None and current_db != cls._db_file_snapshot:
            cls._instance.close()
            cls._instance = None
        if cls._instance is None:
            cls._instance = Library(db_file=current_db)
            cls._db_file_snapshot = current_db
            logger.debug(f"Library initialized on {current_db}")
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None
        cls._db_file_snapshot = None


def handle_errors(func):
    """Turn circulation and validation errors into 'Error: ...' plus exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CirculationError, ValueError) as e:
            print_error(str(e))
            raise typer.Exit(code=1)
    return wrapper


def configure_logging(level: str = settings.log_level) -> None:
    """Log to stderr for every entry point, installed console script included."""
    logging.basicConfig(level=level)
    # basicConfig is a no-op when the root logger already has handlers
    logging.getLogger("circulation").setLevel(level)


def _date_option(raw: Optional[str]):
    return DateValidator.parse(raw)


# --- Typer CLI ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode, logging)."""
    configure_logging()
    if output:
        set_output_mode(output)


@app.command("init")
def cli_init():
    """Create the database schema if it does not exist yet."""
    lib = LibraryManager.get_instance()
    print(f"Database ready: {lib.db_file}")


@app.command("add-book")
@handle_errors
def cli_add_book(
    book_id: str,
    title: str,
    author: str = typer.Option("", "--author", "-a"),
    category: str = typer.Option("", "--category", "-c"),
    publisher: str = typer.Option("", "--publisher", "-p"),
    price: str = typer.Option("0", "--price", help="Rental price"),
):
    """Add a book copy to the catalog."""
    lib = LibraryManager.get_instance()
    book = lib.add_book(Book(
        book_id=IdentifierValidator.require(book_id, "book id"),
        title=TextValidator.sanitize_text(title),
        category=TextValidator.sanitize_text(category),
        rental_price=MoneyValidator.parse(price, "rental price"),
        author=TextValidator.sanitize_text(author),
        publisher=TextValidator.sanitize_text(publisher),
    ))
    print(f"Added book: {book.title} ({book.book_id})")


@app.command("books")
def cli_books(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Search title or author"),
):
    """List catalog books with their availability."""
    lib = LibraryManager.get_instance()
    books = lib.catalog.search_books(query) if query else lib.list_books(category)
    if query and category:
        books = [b for b in books if b.category == category]
    print_records([b.to_dict() for b in books], BOOK_COLUMNS, "Books", "No books in the catalog.")


@app.command("add-member")
@handle_errors
def cli_add_member(
    member_id: str,
    name: str,
    address: str = typer.Option("", "--address"),
    registered: Optional[str] = typer.Option(None, "--registered", help="Registration date YYYY-MM-DD"),
):
    """Register a member."""
    if not TextValidator.validate_name(name):
        raise ValueError(f"Invalid member name: '{name}'")
    lib = LibraryManager.get_instance()
    member = lib.add_member(Member(
        member_id=IdentifierValidator.require(member_id, "member id"),
        name=TextValidator.sanitize_text(name),
        address=TextValidator.sanitize_text(address),
        registration_date=_date_option(registered),
    ))
    print(f"Added member: {member.name} ({member.member_id})")


@app.command("add-branch")
@handle_errors
def cli_add_branch(
    branch_id: str,
    address: str = typer.Option("", "--address"),
    contact: str = typer.Option("", "--contact"),
):
    """Add a branch; assign its manager later with set-branch-manager."""
    lib = LibraryManager.get_instance()
    branch = lib.add_branch(Branch(
        branch_id=IdentifierValidator.require(branch_id, "branch id"),
        address=TextValidator.sanitize_text(address),
        contact=TextValidator.sanitize_text(contact),
    ))
    print(f"Added branch: {branch.branch_id}")


@app.command("add-employee")
@handle_errors
def cli_add_employee(
    employee_id: str,
    name: str,
    branch_id: str,
    position: str = typer.Option("", "--position"),
    salary: str = typer.Option("0", "--salary"),
    manager: Optional[str] = typer.Option(None, "--manager", help="Manager's employee id"),
):
    """Add an employee to a branch."""
    lib = LibraryManager.get_instance()
    employee = lib.add_employee(Employee(
        employee_id=IdentifierValidator.require(employee_id, "employee id"),
        name=TextValidator.sanitize_text(name),
        position=TextValidator.sanitize_text(position),
        salary=MoneyValidator.parse(salary, "salary"),
        branch_id=branch_id,
        manager_id=manager,
    ))
    print(f"Added employee: {employee.name} ({employee.employee_id}) at {employee.branch_id}")


@app.command("set-branch-manager")
@handle_errors
def cli_set_branch_manager(branch_id: str, employee_id: str):
    """Make an employee of the branch its manager."""
    lib = LibraryManager.get_instance()
    branch = lib.directory.set_branch_manager(branch_id, employee_id)
    print(f"Branch {branch.branch_id} is now managed by {branch.manager_id}")


@app.command("issue")
@handle_errors
def cli_issue(
    issue_id: str,
    book_id: str,
    member_id: str,
    employee_id: str,
    issue_date: Optional[str] = typer.Option(None, "--date", help="Issue date YYYY-MM-DD (default: today)"),
):
    """Lend a book to a member."""
    lib = LibraryManager.get_instance()
    record = lib.issue_book(book_id, member_id, employee_id,
                            IdentifierValidator.require(issue_id, "issue id"), _date_option(issue_date))
    print(f"Issued {record.issue_id}: '{record.book_title}' ({record.book_id}) to {record.member_id}")


@app.command("return")
@handle_errors
def cli_return(
    issue_id: str,
    return_id: str,
    return_date: Optional[str] = typer.Option(None, "--date", help="Return date YYYY-MM-DD (default: today)"),
    condition: str = typer.Option("good", "--condition", help="good | damaged | lost"),
):
    """Return a book against its issue."""
    lib = LibraryManager.get_instance()
    record = lib.return_book(issue_id, IdentifierValidator.require(return_id, "return id"),
                             _date_option(return_date), condition)
    print(f"Returned {record.issue_id} as {record.return_id}: '{record.book_title}' ({record.condition.value})")


@app.command("delete-issue")
@handle_errors
def cli_delete_issue(issue_id: str):
    """Delete an issue that has no return."""
    lib = LibraryManager.get_instance()
    lib.delete_issue(issue_id)
    print(f"Deleted issue {issue_id}")


@app.command("void")
@handle_errors
def cli_void(
    issue_id: str,
    reason: str = typer.Option(..., "--reason", "-r"),
    voided_on: Optional[str] = typer.Option(None, "--date"),
):
    """Void an unreturned issue and put its book back on the shelf."""
    lib = LibraryManager.get_instance()
    record = lib.void_issue(issue_id, reason, _date_option(voided_on))
    print(f"Voided issue {record.issue_id}: {record.void_reason}")


@app.command("overdue")
@handle_errors
def cli_overdue(as_of: Optional[str] = typer.Option(None, "--as-of", help="Reference date YYYY-MM-DD")):
    """List overdue issues, most overdue first."""
    lib = LibraryManager.get_instance()
    entries = lib.overdue_report(_date_option(as_of))
    print_records([e.to_dict() for e in entries], OVERDUE_COLUMNS, "Overdue", "No overdue issues.")


@app.command("fine")
@handle_errors
def cli_fine(issue_id: str, as_of: Optional[str] = typer.Option(None, "--as-of")):
    """Show days overdue and the fine for one issue."""
    lib = LibraryManager.get_instance()
    info = lib.fine_for(issue_id, _date_option(as_of))
    print_record(info, f"Fine for {issue_id}")


@app.command("high-risk")
def cli_high_risk():
    """List members with too many damaged returns."""
    lib = LibraryManager.get_instance()
    rows = [{"member_id": m} for m in lib.high_risk_members()]
    print_records(rows, ["member_id"], "High-risk members", "No high-risk members.")


@app.command("active-members")
@handle_errors
def cli_active_members(
    as_of: Optional[str] = typer.Option(None, "--as-of"),
    window: Optional[int] = typer.Option(None, "--window", min=0, help="Window in days"),
):
    """List members with at least one issue in the recent window."""
    lib = LibraryManager.get_instance()
    rows = [{"member_id": m} for m in lib.active_members(_date_option(as_of), window)]
    print_records(rows, ["member_id"], "Active members", "No active members.")


@app.command("materialize")
@handle_errors
def cli_materialize(as_of: Optional[str] = typer.Option(None, "--as-of")):
    """Rebuild the summary report tables."""
    lib = LibraryManager.get_instance()
    print_stats_result(lib.materialize_reports(_date_option(as_of)))


@app.command("check")
def cli_check():
    """Compare every availability flag against the ledgers."""
    lib = LibraryManager.get_instance()
    mismatched = lib.verify_availability()
    if mismatched:
        print_error(f"Availability out of sync for: {', '.join(mismatched)}")
        raise typer.Exit(code=1)
    print("Availability consistent with ledgers.")


@app.command("stats")
def cli_stats():
    """Show circulation counts."""
    lib = LibraryManager.get_instance()
    print_stats_result(lib.get_statistics())


@app.command("serve")
def cli_serve(timeout: int = typer.Option(0, "--timeout", help="Seconds to run before stopping (0 = no timeout)")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    console.print(f"[green]Starting API on http://{host}:{port}/[/]")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    try:
        if timeout and timeout > 0:
            proc = subprocess.Popen(args, start_new_session=(os.name != "nt"))
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
        else:
            subprocess.run(args)
    except FileNotFoundError:
        print_error("uvicorn was not found; install it in this environment.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
