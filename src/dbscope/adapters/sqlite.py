"""
SQLite adapter over the standard library ``sqlite3`` driver.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Optional, Sequence

from ..dialects.base import IsolationLevel
from ..dialects.sqlite import SQLiteDialect
from ..utils import get_logger, redact_params
from .base import (
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
)

DEFAULT_TIMEOUT = 5.0


class SQLiteAdapter:
    """
    One ``sqlite3`` connection in autocommit mode.

    ``check_same_thread`` is disabled so async session methods can run the
    driver in worker threads; a connection is still used by one flow at a time.
    """

    def __init__(self) -> None:
        self.dialect = SQLiteDialect()
        self._connection: Optional[sqlite3.Connection] = None
        self.logger = get_logger("adapters.sqlite")

    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        database = config.database
        try:
            connection = sqlite3.connect(
                database,
                isolation_level=None,
                timeout=config.timeout if config.timeout is not None else DEFAULT_TIMEOUT,
                check_same_thread=False,
                uri=database.startswith("file:"),
                **(config.options or {}),
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(f"Could not open SQLite database {config.descriptive_label()}") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        self._connection = connection
        self.logger.debug("Connected to %s", config.descriptive_label())
        return connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self.connection.in_transaction

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        params = params or ()
        try:
            cursor = self.connection.execute(sql, params)
        except sqlite3.Error as exc:
            raise AdapterExecutionError(f"SQLite execution failed: {exc}") from exc
        self.logger.debug("SQL executed", extra={"sql": sql, "params": redact_params(params)})
        return cursor

    def begin(self, isolation_level: IsolationLevel | None = None) -> None:
        if self.in_transaction:
            raise AdapterTransactionError("A transaction is already open on this connection.")
        self._run_control(self.dialect.begin_statements(isolation_level), "begin")

    def commit(self) -> None:
        if self.in_transaction:
            self._run_control(["COMMIT"], "commit")

    def rollback(self) -> None:
        if self.in_transaction:
            self._run_control(["ROLLBACK"], "roll back")

    def savepoint(self, name: str) -> None:
        self._run_control([self.dialect.savepoint_statement(name)], f"open savepoint {name} in")

    def rollback_to_savepoint(self, name: str) -> None:
        self._run_control(self.dialect.rollback_to_savepoint_statements(name), f"roll back to savepoint {name} in")

    def release_savepoint(self, name: str) -> None:
        self._run_control([self.dialect.release_savepoint_statement(name)], f"release savepoint {name} in")

    def _run_control(self, statements: Sequence[str], action: str) -> None:
        try:
            for statement in statements:
                self.connection.execute(statement)
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"Could not {action} transaction: {exc}") from exc

    def last_insert_id(self, cursor: sqlite3.Cursor, table: str, pk_column: str) -> Any:
        return cursor.lastrowid
