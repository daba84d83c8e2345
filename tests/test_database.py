import pytest

from circulation.database import connection, initialize_database, transaction


@pytest.fixture
def db_file(tmp_path):
    path = str(tmp_path / "tx.db")
    initialize_database(path)
    return path


def test_transaction_rolls_back_on_error(db_file):
    with pytest.raises(RuntimeError):
        with transaction(db_file) as conn:
            conn.execute("INSERT INTO members (member_id, name, registration_date) VALUES ('C1', 'Bob', '2024-01-01')")
            raise RuntimeError("abort")
    with connection(db_file) as conn:
        assert conn.execute("SELECT COUNT(*) FROM members").fetchone()[0] == 0


def test_original_error_survives_an_earlier_rollback(db_file):
    # SQLite ends the transaction itself on some failures; the caller's error must still surface
    with pytest.raises(RuntimeError, match="disk full"):
        with transaction(db_file) as conn:
            conn.execute("ROLLBACK")
            raise RuntimeError("disk full")


def test_transaction_commits(db_file):
    with transaction(db_file) as conn:
        conn.execute("INSERT INTO members (member_id, name, registration_date) VALUES ('C1', 'Bob', '2024-01-01')")
    with connection(db_file) as conn:
        assert conn.execute("SELECT name FROM members").fetchone()["name"] == "Bob"
