"""Fluent database facade bound to one named connection."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Sequence, TypeVar

from .config import DatabaseSettings, load_settings
from .connection import Connection
from .errors import ConfigurationError, DatabaseError
from .manager import NOT_INITIALIZED, ConnectionManager
from .query import DeleteBuilder, InsertBuilder, SelectBuilder, UpdateBuilder
from .querylog import QueryRecorder
from .result import Result
from .sql import ColumnSpec, Raw, Sql

LOG = logging.getLogger(__name__)

T = TypeVar("T")

_default_manager: ConnectionManager | None = None
_default_lock = threading.Lock()


def default_manager() -> ConnectionManager:
    """Process default manager used when no explicit manager is passed."""

    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = ConnectionManager()
        return _default_manager


class Database:
    """Entry point for building and running statements on a named connection.

    Two call surfaces exist. Builders, the table shortcuts, ``raw`` and
    ``transaction`` raise ``DatabaseError``. Table maintenance,
    ``database_exists``, ``get_table_name`` and the ``try_*`` helpers never
    raise; they log and return a safe default instead.
    """

    def __init__(self, manager: ConnectionManager, name: str = "default") -> None:
        self._manager = manager
        self._connection = manager.get_connection(name)

    @staticmethod
    def config(settings: DatabaseSettings | Mapping[str, Any]) -> ConnectionManager:
        """Configure the default manager."""

        manager = default_manager()
        manager.configure(settings)
        return manager

    @classmethod
    def create(cls, name: str = "default", manager: ConnectionManager | None = None) -> Database:
        """Facade for connection ``name``.

        Without an explicit manager the default one is used; if it has not
        been configured the settings file is loaded first.
        """

        if manager is None:
            manager = default_manager()
            if not manager.is_configured():
                settings = load_settings()
                if settings is None:
                    raise ConfigurationError(NOT_INITIALIZED)
                manager.configure(settings)
        return cls(manager, name)

    @staticmethod
    def reset() -> None:
        """Drop the default manager and close its connections."""

        global _default_manager
        with _default_lock:
            if _default_manager is not None:
                _default_manager.close_all()
            _default_manager = None

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    def connection(self, name: str) -> Database:
        """Rebind this facade to connection ``name``."""

        self._connection = self._manager.get_connection(name)
        return self

    def get_connection(self) -> Connection:
        return self._connection

    # Builders

    def select(self, *columns: Any) -> SelectBuilder:
        return SelectBuilder(self._connection, ColumnSpec.of(*columns))

    def select_raw(self, sql: str, bindings: Sequence[Any] = ()) -> SelectBuilder:
        return SelectBuilder(self._connection, ColumnSpec((Raw(sql, bindings),)))

    def table(self, name: str, alias: str | None = None) -> SelectBuilder:
        return self.select().from_(name, alias)

    def insert(self, table: str) -> InsertBuilder:
        return InsertBuilder(self._connection, table)

    def update(self, table: str) -> UpdateBuilder:
        return UpdateBuilder(self._connection, table)

    def delete(self, table: str) -> DeleteBuilder:
        return DeleteBuilder(self._connection, table)

    # Table shortcuts

    def first(self, table: str, where: Any = None, columns: Any = "*") -> dict[str, Any] | None:
        return self.select(columns).from_(table).where(where).first()

    def all(self, table: str, columns: Any = "*") -> list[dict[str, Any]]:
        return self.select(columns).from_(table).fetch_all()

    def get(self, table: str, where: Any = None, columns: Any = "*") -> list[dict[str, Any]]:
        """Rows of ``table`` matching ``where`` (a mapping or any ``where()`` form)."""

        return self.select(columns).from_(table).where(where).fetch_all()

    def exists(self, table: str, where: Any = None) -> bool:
        return self.select().from_(table).where(where).exists()

    def count(self, table: str, where: Any = None) -> int:
        return self.select().from_(table).where(where).count()

    def next_id(self, table: str, where: Any = None, column: str = "id") -> int:
        """One past the largest ``column`` value of the matching rows, or 1 for none."""

        highest = self.select(Sql.max(column, "id")).from_(table).where(where).value()
        return int(highest or 0) + 1

    def raw(self, sql: str, params: Sequence[Any] = ()) -> Result:
        """Run hand-written SQL; parameters are marked with ``?``."""

        try:
            return self._connection.raw(sql, params)
        except DatabaseError as exc:
            raise exc.with_context(sql, params)

    # Transactions

    def begin_transaction(self) -> bool:
        return self._connection.begin_transaction()

    def commit(self) -> bool:
        return self._connection.commit()

    def rollback(self) -> bool:
        return self._connection.rollback()

    def in_transaction(self) -> bool:
        return self._connection.in_transaction()

    def transaction(self, callback: Callable[[Database], T]) -> T:
        """Run ``callback`` inside a transaction.

        Commits when the callback returns. Any exception rolls back and is
        re-raised unchanged.
        """

        self.begin_transaction()
        try:
            result = callback(self)
        except BaseException:
            try:
                self.rollback()
            except DatabaseError:
                LOG.error(
                    "Rollback failed after transaction error",
                    extra={"connection": self._connection.name},
                    exc_info=True,
                )
            raise
        self.commit()
        return result

    # Table helpers

    def get_table_name(self, logical: str) -> str:
        """Physical name for ``logical``; falls back to ``logical`` on any error."""

        try:
            return self._connection.table_name(logical)
        except Exception as exc:
            self._manager.get_logger().error(
                "Failed to resolve table name",
                extra={"connection": self._connection.name, "table": logical, "error": str(exc)},
            )
            return logical

    def last_insert_id(self, name: str | None = None) -> str:
        return self._connection.last_insert_id(name)

    def empty_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool:
        """Remove every row of ``table``; logs and returns ``False`` on failure."""

        return self._maintenance(
            "empty_table", "Failed to empty table", table, lambda: self._connection.empty_table(table, options)
        )

    def optimize_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool:
        """Reclaim space and rebuild indexes of ``table``; logs and returns ``False`` on failure."""

        return self._maintenance(
            "optimize_table", "Failed to optimize table", table, lambda: self._connection.optimize_table(table, options)
        )

    def database_exists(self, name: str) -> bool:
        """Whether the server knows a database called ``name``; ``False`` on failure."""

        def lookup() -> bool:
            sql, params = self._connection.sql_builder.database_exists_query(name)
            return not self._connection.execute(sql, params).is_empty()

        return self._best_effort("database_exists", name, False, lookup)

    def try_insert_row(self, table: str, row: Mapping[str, Any]) -> str:
        """Insert one row and return its id, or ``""`` on failure."""

        def insert() -> str:
            result = self.insert(table).values(row).execute()
            if result.last_insert_id:
                return str(result.last_insert_id)
            return self._connection.last_insert_id() or ""

        return self._best_effort("insert_row", table, "", insert)

    def try_field_exists(self, table: str, column: str) -> bool:
        """Whether ``column`` can be selected from ``table``."""

        def select_column() -> bool:
            self.select(column).from_(table).limit(1).execute()
            return True

        return self._best_effort("field_exists", table, False, select_column)

    # Diagnostics

    def last_query(self) -> str | None:
        return self._connection.last_query

    def last_error(self) -> str | None:
        return self._connection.get_last_error()

    def create_query_recorder(self) -> QueryRecorder:
        """Attach a recorder to the manager's logger; detach it with ``removeHandler``."""

        logger = self._manager.get_logger()
        if isinstance(logger, logging.LoggerAdapter):
            logger = logger.logger
        recorder = QueryRecorder()
        logger.addHandler(recorder)
        if logger.getEffectiveLevel() > logging.DEBUG:
            logger.setLevel(logging.DEBUG)
        return recorder

    def _failure(self, message: str, table: str) -> str:
        error = self._connection.get_last_error()
        return f"{message} '{table}': {error}" if error else f"{message} '{table}'"

    def _maintenance(self, action: str, message: str, table: str, call: Callable[[], bool]) -> bool:
        def run() -> bool:
            if not call():
                raise DatabaseError(self._failure(message, table))
            return True

        return self._best_effort(action, table, False, run)

    def _best_effort(self, action: str, table: str, default: T, call: Callable[[], T]) -> T:
        try:
            return call()
        except Exception as exc:
            self._manager.get_logger().warning(
                "%s failed",
                action,
                extra={"connection": self._connection.name, "table": table, "error": str(exc)},
            )
            return default


__all__ = ["Database", "default_manager"]
