import json
import logging
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from main import LibraryManager, app

runner = CliRunner()


@pytest.fixture(autouse=True)
def fresh_cli(monkeypatch):
    # Plain output and a Library bound to this test's database
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    LibraryManager.reset()
    yield
    LibraryManager.reset()


def test_books_empty(lib):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in the catalog." in result.stdout


def test_add_book_and_list(lib):
    result = runner.invoke(app, ["add-book", "B1", "Dune", "--author", "Frank Herbert",
                                 "--category", "Fiction", "--price", "2.50"])
    assert result.exit_code == 0
    assert "Added book: Dune (B1)" in result.stdout

    result = runner.invoke(app, ["books"])
    assert "book_id=B1" in result.stdout
    assert "availability=available" in result.stdout
    assert lib.find_book("B1").rental_price == Decimal("2.50")


def test_add_book_with_bad_price(lib):
    result = runner.invoke(app, ["add-book", "B1", "Dune", "--price=-3"])
    assert result.exit_code == 1
    assert "Error:" in result.stdout
    assert lib.find_book("B1") is None


def test_directory_commands(lib):
    assert runner.invoke(app, ["add-branch", "BR1", "--address", "1 Main St"]).exit_code == 0
    result = runner.invoke(app, ["add-employee", "E101", "Alice Clerk", "BR1", "--salary", "3000"])
    assert result.exit_code == 0
    assert "Added employee: Alice Clerk (E101) at BR1" in result.stdout

    result = runner.invoke(app, ["set-branch-manager", "BR1", "E101"])
    assert result.exit_code == 0
    assert "managed by E101" in result.stdout

    result = runner.invoke(app, ["add-member", "C101", "Bob Reader", "--registered", "2023-01-01"])
    assert result.exit_code == 0
    assert lib.directory.get_member("C101").name == "Bob Reader"


def test_issue_and_return(seeded):
    result = runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "2024-01-01"])
    assert result.exit_code == 0
    assert "Issued IS1: 'Dune' (B1) to C101" in result.stdout
    assert not seeded.find_book("B1").available

    result = runner.invoke(app, ["issue", "IS2", "B1", "C102", "E101"])
    assert result.exit_code == 1
    assert "Error: Book B1 is not available for issue." in result.stdout

    result = runner.invoke(app, ["return", "IS1", "R1", "--date", "2024-01-05", "--condition", "damaged"])
    assert result.exit_code == 0
    assert "Returned IS1 as R1: 'Dune' (damaged)" in result.stdout
    assert seeded.find_book("B1").available

    result = runner.invoke(app, ["check"])
    assert result.exit_code == 0
    assert "consistent" in result.stdout


def test_issue_with_bad_date(seeded):
    result = runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "01/02/2024"])
    assert result.exit_code == 1
    assert "Invalid date" in result.stdout
    assert seeded.issues.list_all() == []


def test_void_and_delete(seeded):
    runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "2024-01-01"])
    result = runner.invoke(app, ["void", "IS1", "--reason", "wrong member"])
    assert result.exit_code == 0
    assert "Voided issue IS1: wrong member" in result.stdout

    result = runner.invoke(app, ["delete-issue", "IS1"])
    assert result.exit_code == 0
    assert seeded.issues.find("IS1") is None

    result = runner.invoke(app, ["delete-issue", "IS1"])
    assert result.exit_code == 1
    assert "Issue IS1 not found." in result.stdout


def test_overdue_and_fine(seeded):
    runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "2024-01-01"])

    result = runner.invoke(app, ["overdue", "--as-of", "2024-02-29"])
    assert result.exit_code == 0
    assert "issue_id=IS1" in result.stdout
    assert "days_overdue=29" in result.stdout
    assert "fine=14.50" in result.stdout

    result = runner.invoke(app, ["fine", "IS1", "--as-of", "2024-02-29"])
    assert result.exit_code == 0
    assert "fine: 14.50" in result.stdout


def test_json_output(seeded):
    runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "2024-01-01"])
    result = runner.invoke(app, ["--output", "json", "active-members", "--as-of", "2024-01-15"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == [{"member_id": "C101"}]


def test_high_risk_and_materialize(seeded):
    for n, book_id in enumerate(("B1", "B2"), start=1):
        runner.invoke(app, ["issue", f"IS{n}", book_id, "C101", "E101", "--date", "2024-01-01"])
        runner.invoke(app, ["return", f"IS{n}", f"R{n}", "--date", "2024-01-03", "--condition", "damaged"])

    result = runner.invoke(app, ["high-risk"])
    assert result.exit_code == 0
    assert "member_id=C101" in result.stdout

    result = runner.invoke(app, ["materialize", "--as-of", "2024-01-15"])
    assert result.exit_code == 0
    assert "Summary Book Issue Counts: 2" in result.stdout


def test_stats(seeded):
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 3" in result.stdout


def test_return_notice_is_logged_from_cli(seeded, caplog):
    # start from an unconfigured package logger, as the installed console script does
    logging.getLogger("circulation").setLevel(logging.NOTSET)
    runner.invoke(app, ["issue", "IS1", "B1", "C101", "E101", "--date", "2024-01-01"])
    result = runner.invoke(app, ["return", "IS1", "R1", "--date", "2024-01-05"])
    assert result.exit_code == 0
    assert "'Dune' returned for issue IS1" in caplog.text
