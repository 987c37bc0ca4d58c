"""
Session management coordinating the adapter, change tracker and transactions.
"""

from __future__ import annotations

import asyncio
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

from ..adapters.base import AdapterError, ConnectionConfig, DatabaseAdapter
from ..adapters.sqlite import SQLiteAdapter
from ..core.model import KeyValues, Model
from ..dialects.base import Dialect, IsolationLevel
from ..schema import SchemaBuilder
from ..utils import get_logger, redact_params, time_call
from .change_tracker import ChangeTracker, EntityEntry, EntityState
from .errors import (
    ConcurrencyConflictError,
    EntityLookupError,
    SessionClosedError,
    SessionError,
    TransactionError,
)
from .transaction import Transaction

TModel = TypeVar("TModel", bound=Model)

SAVE_SAVEPOINT = "dbscope_save"


class Session:
    """
    Unit of work over a single database connection.

    Subclasses may set ``connection_config`` at class level so that they can
    be constructed without arguments, which is what scope registries do when
    no session factory is configured.
    """

    connection_config: ClassVar[Optional[ConnectionConfig]] = None

    def __init__(
        self,
        adapter: Optional[DatabaseAdapter] = None,
        *,
        connection_config: Optional[ConnectionConfig] = None,
    ) -> None:
        self.adapter: DatabaseAdapter = adapter or SQLiteAdapter()
        self.dialect: Dialect = self.adapter.dialect
        self.config = (
            connection_config
            or type(self).connection_config
            or ConnectionConfig(url="sqlite:///:memory:")
        )
        self.change_tracker = ChangeTracker()
        self.schema = SchemaBuilder(self.dialect)
        self.logger = get_logger("persistence.session")
        self._transaction: Optional[Transaction] = None
        self._closed = False
        self.adapter.connect(self.config)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{self.__class__.__name__} {self.config.descriptive_label()} {state}>"

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        if self._transaction is not None:
            self._transaction.close()
        self.adapter.close()
        self.change_tracker.clear()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def auto_detect_changes(self) -> bool:
        return self.change_tracker.auto_detect_changes

    @auto_detect_changes.setter
    def auto_detect_changes(self, value: bool) -> None:
        self.change_tracker.auto_detect_changes = value

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def add(self, instance: Model) -> EntityEntry:
        self._ensure_open()
        entry = self.change_tracker.entry_for(instance)
        if entry is not None and entry.state is EntityState.DELETED:
            entry.state = EntityState.UNCHANGED
            entry.detect_changes()
            return entry
        if entry is not None:
            return entry
        return self.change_tracker.track(self, instance, EntityState.ADDED)

    def add_all(self, instances: Iterable[Model]) -> None:
        for instance in instances:
            self.add(instance)

    def attach(self, instance: Model) -> EntityEntry:
        self._ensure_open()
        return self.change_tracker.track(self, instance, EntityState.UNCHANGED)

    def remove(self, instance: Model) -> None:
        self._ensure_open()
        entry = self.change_tracker.entry_for(instance)
        if entry is not None and entry.state is EntityState.ADDED:
            self.change_tracker.untrack(instance)
            return
        self.change_tracker.track(self, instance, EntityState.DELETED)

    # ------------------------------------------------------------------ #
    # Tracking metadata
    # ------------------------------------------------------------------ #
    def entry(self, instance: Model) -> EntityEntry:
        """
        Entry for ``instance``; a detached entry when the session does not track it.
        """
        tracked = self.change_tracker.entry_for(instance)
        if tracked is not None:
            return tracked
        return EntityEntry(self, instance, EntityState.DETACHED)

    def entries(self) -> List[EntityEntry]:
        if self.auto_detect_changes:
            self.change_tracker.detect_changes()
        return self.change_tracker.entries()

    def detect_changes(self) -> None:
        self.change_tracker.detect_changes()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def get(self, model: Type[TModel], **key: Any) -> Optional[TModel]:
        """
        Fetch by primary key; composite keys are passed as one keyword per key field.
        """
        self._ensure_open()
        key_values = model._meta.key_from_filters(key)
        if key_values is None:
            expected = ", ".join(f.require_name() for f in model._meta.primary_keys)
            raise ValueError(f"Session.get expects exactly the key field(s) of {model.__name__}: {expected}")
        tracked = self.change_tracker.find(model, key_values)
        if tracked is not None:
            return tracked.instance  # type: ignore[return-value]
        row = self._fetch_row(model, key_values)
        if row is None:
            return None
        return self._materialize(model, row)

    def query(self, model: Type[TModel], **filters: Any) -> List[TModel]:
        """
        Equality-filtered SELECT ordered by primary key.
        """
        self._ensure_open()
        clauses = []
        params: List[Any] = []
        for name, value in filters.items():
            field = model._meta.get_field(name)
            column = self.dialect.quote_identifier(field.column_name())
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = {self.dialect.parameter_placeholder()}")
                params.append(field.to_db(field.to_python(value)))
        where_sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        order_sql = ", ".join(
            self.dialect.quote_identifier(f.column_name()) for f in model._meta.primary_keys
        )
        sql = f"SELECT {self._select_list(model)} FROM {self._table(model)}{where_sql} ORDER BY {order_sql}"
        rows = self.execute(sql, params).fetchall()
        return [self._materialize(model, row) for row in rows]

    def single(self, model: Type[TModel], **filters: Any) -> TModel:
        results = self.query(model, **filters)
        if len(results) != 1:
            raise EntityLookupError(
                f"Expected exactly one {model.__name__} matching {filters!r}, found {len(results)}"
            )
        return results[0]

    def get_database_values(self, instance: Model) -> Optional[Dict[str, Any]]:
        self._ensure_open()
        model = type(instance)
        row = self._fetch_row(model, self._require_key(instance))
        if row is None:
            return None
        return self._row_values(model, row)

    def reload(self, instance: Model) -> None:
        """
        Overwrite ``instance`` in place with the values currently stored.
        """
        values = self.get_database_values(instance)
        entry = self.change_tracker.entry_for(instance)
        if values is None:
            if entry is not None:
                self.change_tracker.untrack(instance)
            return
        instance._field_values.update(values)
        instance._initial_state = dict(instance._field_values)
        if entry is not None:
            entry.state = EntityState.UNCHANGED
        self.logger.debug("Reloaded %r", instance)

    async def reload_async(self, instance: Model) -> None:
        await asyncio.to_thread(self.reload, instance)

    def execute(self, sql: str, params: Iterable[Any] | None = None):
        param_list = list(params or [])
        with time_call("session.execute", self.logger, sql=sql, params=redact_params(param_list), threshold_ms=200):
            return self.adapter.execute(sql, param_list)

    def create_tables(self, *models: Type[Model]) -> None:
        for model in models:
            self.execute(self.schema.create_table_sql(model))

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    @property
    def current_transaction(self) -> Optional[Transaction]:
        return self._transaction

    def begin_transaction(self, isolation_level: Optional[IsolationLevel] = None) -> Transaction:
        self._ensure_open()
        if self._transaction is not None:
            raise TransactionError("A transaction is already active on this session.")
        self.adapter.begin(isolation_level)
        self._transaction = Transaction(self, isolation_level)
        self.logger.debug("Began transaction", extra={"isolation_level": isolation_level})
        return self._transaction

    def _transaction_finished(self, transaction: Transaction) -> None:
        if self._transaction is transaction:
            self._transaction = None

    # ------------------------------------------------------------------ #
    # Saving
    # ------------------------------------------------------------------ #
    def save_changes(self) -> int:
        """
        Write every pending entry and return the number of affected records.

        Without an explicit transaction the writes are committed atomically.
        Inside one they run under a savepoint: a failed save leaves the
        transaction as it was before the call, and a successful one is left
        for the transaction owner to commit.
        """
        self._ensure_open()
        pending = self._pending_entries()
        if not pending:
            return 0
        owns_transaction = self._transaction is None
        if owns_transaction:
            self.adapter.begin()
        else:
            self._open_savepoint()
        generated: List[EntityEntry] = []
        try:
            affected = 0
            for entry in pending:
                affected += self._write_entry(entry, generated)
            if owns_transaction:
                self.adapter.commit()
            else:
                self.adapter.release_savepoint(SAVE_SAVEPOINT)
        except BaseException:
            self._abort_save(owns_transaction, generated)
            raise
        self._accept(pending)
        return affected

    async def save_changes_async(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        """
        Asynchronous :meth:`save_changes`; blocking driver calls run in a worker thread.

        A set ``cancel_event`` aborts before the next write with
        :class:`asyncio.CancelledError`.
        """
        self._ensure_open()
        self._check_cancelled(cancel_event)
        pending = self._pending_entries()
        if not pending:
            return 0
        owns_transaction = self._transaction is None
        if owns_transaction:
            await asyncio.to_thread(self.adapter.begin)
        else:
            await asyncio.to_thread(self._open_savepoint)
        generated: List[EntityEntry] = []
        try:
            affected = 0
            for entry in pending:
                self._check_cancelled(cancel_event)
                affected += await asyncio.to_thread(self._write_entry, entry, generated)
            if owns_transaction:
                await asyncio.to_thread(self.adapter.commit)
            else:
                await asyncio.to_thread(self.adapter.release_savepoint, SAVE_SAVEPOINT)
        except BaseException:
            self._abort_save(owns_transaction, generated)
            raise
        self._accept(pending)
        return affected

    def _pending_entries(self) -> List[EntityEntry]:
        if self.auto_detect_changes:
            self.change_tracker.detect_changes()
        return self.change_tracker.pending()

    def _accept(self, entries: Sequence[EntityEntry]) -> None:
        for entry in entries:
            if entry.state is EntityState.DELETED:
                self.change_tracker.untrack(entry.instance)
            else:
                entry.accept_changes()
                self.change_tracker.reindex(entry)

    def _open_savepoint(self) -> None:
        if not self.dialect.capabilities.supports_savepoints:
            raise TransactionError(
                "Saving inside an explicit transaction requires savepoint support from the dialect."
            )
        self.adapter.savepoint(SAVE_SAVEPOINT)

    def _abort_save(self, owns_transaction: bool, generated: Sequence[EntityEntry]) -> None:
        try:
            if owns_transaction:
                self.adapter.rollback()
            else:
                self.adapter.rollback_to_savepoint(SAVE_SAVEPOINT)
        except AdapterError:
            self.logger.warning("Rollback after failed save raised", exc_info=True)
        for entry in generated:
            pk_field = entry.model._meta.primary_key
            if pk_field is not None:
                entry.instance._field_values[pk_field.require_name()] = None


    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError("save_changes cancelled")

    def _write_entry(self, entry: EntityEntry, generated: List[EntityEntry]) -> int:
        if entry.state is EntityState.ADDED:
            return self._insert(entry, generated)
        if entry.state is EntityState.MODIFIED:
            return self._update(entry)
        if entry.state is EntityState.DELETED:
            return self._delete(entry)
        return 0

    # ------------------------------------------------------------------ #
    # Persistence helpers
    # ------------------------------------------------------------------ #
    def _insert(self, entry: EntityEntry, generated: List[EntityEntry]) -> int:
        instance = entry.instance
        meta = entry.model._meta
        columns = []
        params = []
        for field in meta.get_fields():
            value = instance._field_values.get(field.require_name())
            if field.primary_key and value is None:
                continue
            columns.append(self.dialect.quote_identifier(field.column_name()))
            params.append(field.to_db(getattr(instance, field.require_name())))

        placeholders = ", ".join(self.dialect.parameter_placeholder() for _ in columns)
        sql = f"INSERT INTO {self._table(entry.model)} ({', '.join(columns)}) VALUES ({placeholders})"
        cursor = self.execute(sql, params)

        pk_field = meta.primary_key
        if pk_field is not None and getattr(instance, pk_field.require_name()) is None:
            pk_value = self.adapter.last_insert_id(cursor, meta.table_name, pk_field.column_name())
            setattr(instance, pk_field.require_name(), pk_value)
            generated.append(entry)
        return cursor.rowcount

    def _update(self, entry: EntityEntry) -> int:
        instance = entry.instance
        meta = entry.model._meta
        set_clauses = []
        params: List[Any] = []
        for name in instance.changed_fields():
            field = meta.get_field(name)
            if field.primary_key:
                continue
            set_clauses.append(
                f"{self.dialect.quote_identifier(field.column_name())} = {self.dialect.parameter_placeholder()}"
            )
            params.append(field.to_db(getattr(instance, name)))

        if not set_clauses:
            return 0

        where_sql, where_params = self._identity_clause(entry)
        sql = f"UPDATE {self._table(entry.model)} SET {', '.join(set_clauses)} WHERE {where_sql}"
        cursor = self.execute(sql, params + where_params)
        if cursor.rowcount == 0:
            raise ConcurrencyConflictError(
                f"Update of {entry.model.__name__} {entry.key} matched no row; "
                "it was changed or deleted since it was loaded.",
                [entry],
            )
        return cursor.rowcount

    def _delete(self, entry: EntityEntry) -> int:
        where_sql, where_params = self._identity_clause(entry)
        sql = f"DELETE FROM {self._table(entry.model)} WHERE {where_sql}"
        cursor = self.execute(sql, where_params)
        if cursor.rowcount == 0:
            raise ConcurrencyConflictError(
                f"Delete of {entry.model.__name__} {entry.key} matched no row; "
                "it was changed or deleted since it was loaded.",
                [entry],
            )
        return cursor.rowcount

    def _identity_clause(self, entry: EntityEntry) -> tuple[str, List[Any]]:
        """
        WHERE clause matching the entry's key and its original concurrency tokens.
        """
        meta = entry.model._meta
        placeholder = self.dialect.parameter_placeholder()
        clauses = []
        params: List[Any] = []
        for name, value in self._require_key(entry.instance):
            field = meta.get_field(name)
            clauses.append(f"{self.dialect.quote_identifier(field.column_name())} = {placeholder}")
            params.append(field.to_db(value))
        for field in meta.concurrency_fields():
            original = entry.original_values.get(field.require_name())
            column = self.dialect.quote_identifier(field.column_name())
            if original is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = {placeholder}")
                params.append(field.to_db(original))
        return " AND ".join(clauses), params

    def _fetch_row(self, model: Type[Model], key: KeyValues):
        meta = model._meta
        placeholder = self.dialect.parameter_placeholder()
        clauses = []
        params = []
        for name, value in key:
            field = meta.get_field(name)
            clauses.append(f"{self.dialect.quote_identifier(field.column_name())} = {placeholder}")
            params.append(field.to_db(value))
        sql = f"SELECT {self._select_list(model)} FROM {self._table(model)} WHERE {' AND '.join(clauses)} LIMIT 1"
        rows = self.execute(sql, params).fetchall()
        return rows[0] if rows else None

    def _materialize(self, model: Type[TModel], row) -> TModel:
        values = self._row_values(model, row)
        key = tuple((f.require_name(), values.get(f.require_name())) for f in model._meta.primary_keys)
        tracked = self.change_tracker.find(model, key)
        if tracked is not None:
            return tracked.instance  # type: ignore[return-value]
        instance = model(**values)
        self.change_tracker.track(self, instance, EntityState.UNCHANGED)
        return instance

    @staticmethod
    def _row_values(model: Type[Model], row) -> Dict[str, Any]:
        return {
            field.require_name(): field.to_python(row[field.column_name()])
            for field in model._meta.get_fields()
        }

    def _require_key(self, instance: Model) -> KeyValues:
        model = type(instance)
        key = model._meta.primary_key_values(instance)
        if not key:
            raise SessionError(f"Model '{model.__name__}' lacks a primary key.")
        if any(value is None for _, value in key):
            raise SessionError(f"{model.__name__} instance has no primary key value yet.")
        return key

    def _select_list(self, model: Type[Model]) -> str:
        return ", ".join(self.dialect.quote_identifier(f.column_name()) for f in model._meta.get_fields())

    def _table(self, model: Type[Model]) -> str:
        return self.dialect.format_table(model._meta.table_name)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"{self.__class__.__name__} has been closed.")
