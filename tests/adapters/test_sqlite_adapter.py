import sqlite3

import pytest

from dbscope.adapters import (
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    SQLiteAdapter,
)
from dbscope.dialects import IsolationLevel


@pytest.fixture
def adapter(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'test.db'}")
    adapter.connect(config)
    yield adapter
    adapter.close()


def test_connect_creates_database(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'connect.db'}")
    connection = adapter.connect(config)
    assert isinstance(connection, sqlite3.Connection)
    assert (tmp_path / "connect.db").exists()
    adapter.close()
    assert not adapter.connected


def test_execute_and_last_insert_id(adapter):
    adapter.execute("CREATE TABLE example (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    cursor = adapter.execute("INSERT INTO example (name) VALUES (?)", ("Alice",))
    inserted_id = adapter.last_insert_id(cursor, "example", "id")
    assert inserted_id == 1
    rows = adapter.execute("SELECT name FROM example WHERE id = ?", (inserted_id,)).fetchall()
    assert rows[0]["name"] == "Alice"


def test_driver_errors_are_wrapped(adapter):
    with pytest.raises(AdapterExecutionError) as excinfo:
        adapter.execute("SELECT * FROM missing_table")
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)


def test_transaction_commit_and_rollback(adapter):
    adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, value INTEGER)")

    adapter.begin()
    assert adapter.in_transaction
    adapter.execute("INSERT INTO item (value) VALUES (?)", (10,))
    adapter.commit()
    assert not adapter.in_transaction
    count = adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0]
    assert count == 1

    adapter.begin(IsolationLevel.READ_COMMITTED)
    adapter.execute("INSERT INTO item (value) VALUES (?)", (20,))
    adapter.rollback()
    count_after = adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0]
    assert count_after == 1


def test_begin_twice_raises(adapter):
    adapter.begin()
    with pytest.raises(AdapterTransactionError):
        adapter.begin()
    adapter.rollback()


def test_savepoint_rollback_keeps_outer_transaction(adapter):
    adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, value INTEGER)")

    adapter.begin()
    adapter.execute("INSERT INTO item (value) VALUES (?)", (1,))
    adapter.savepoint("batch")
    adapter.execute("INSERT INTO item (value) VALUES (?)", (2,))
    adapter.rollback_to_savepoint("batch")
    assert adapter.in_transaction
    adapter.savepoint("batch")
    adapter.execute("INSERT INTO item (value) VALUES (?)", (3,))
    adapter.release_savepoint("batch")
    adapter.commit()

    values = [row["value"] for row in adapter.execute("SELECT value FROM item ORDER BY id").fetchall()]
    assert values == [1, 3]


def test_release_unknown_savepoint_raises(adapter):
    adapter.begin()
    with pytest.raises(AdapterTransactionError):
        adapter.release_savepoint("missing")
    adapter.rollback()


def test_commit_without_transaction_is_noop(adapter):
    adapter.commit()
    adapter.rollback()
    assert not adapter.in_transaction


def test_in_memory_database():
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url="sqlite:///:memory:")
    adapter.connect(config)
    adapter.execute("CREATE TABLE sample (value TEXT)")
    adapter.execute("INSERT INTO sample (value) VALUES (?)", ("hello",))
    row = adapter.execute("SELECT value FROM sample").fetchone()
    assert row[0] == "hello"
    adapter.close()
