import os
from datetime import date
from decimal import Decimal

import pytest

from circulation.library import Library
from circulation.models import Book, Branch, Employee, Member


@pytest.fixture
def lib(tmp_path, request, monkeypatch):
    # Unique database file per test; the CLI resolves the same file through the env var
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    lib = Library(db_file=db_file)
    yield lib
    lib.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def seeded(lib):
    """One branch with one employee, three members and three books."""
    lib.add_branch(Branch("BR1", "1 Main St", "555-0100"))
    lib.add_employee(Employee("E101", "Alice Clerk", "Librarian", Decimal("3200"), "BR1"))
    for member_id, name in (("C101", "Bob Reader"), ("C102", "Carol Reader"), ("C103", "Dan Reader")):
        lib.add_member(Member(member_id, name, "2 Side St", date(2023, 1, 1)))
    lib.add_book(Book("B1", "Dune", "Fiction", Decimal("2.50"), "Frank Herbert", "Chilton"))
    lib.add_book(Book("B2", "SPQR", "History", Decimal("1.75"), "Mary Beard", "Profile"))
    lib.add_book(Book("B3", "Emma", "Fiction", Decimal("3.00"), "Jane Austen", "Murray"))
    return lib
