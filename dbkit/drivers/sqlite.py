"""SQLite driver on the standard library ``sqlite3`` module."""

from __future__ import annotations

import sqlite3

from ..config import ConnectionConfig
from ..dialects import Dialect
from ..errors import DatabaseError
from .base import DbApiDriver


class SQLiteDriver(DbApiDriver):
    """Runs in autocommit mode; transactions are explicit BEGIN/COMMIT."""

    dialect = Dialect.SQLITE
    name = "sqlite"
    error_types = (sqlite3.Error,)
    EMPTY_TABLE_DEFAULTS = {"use_truncate": False}

    def _open(self, config: ConnectionConfig) -> None:
        database = config.database or ":memory:"
        connection = sqlite3.connect(
            database,
            timeout=float(config.option("timeout", 5.0)),
            isolation_level=None,
            check_same_thread=False,
        )
        if config.option("foreign_keys", True):
            connection.execute("PRAGMA foreign_keys = ON")
        self._connection = connection

    def _optimize_sql(self, quoted: str) -> str:
        return "VACUUM"

    def _after_delete(self, table: str) -> None:
        # Only tables declared AUTOINCREMENT have a sqlite_sequence row.
        try:
            self._execute("DELETE FROM sqlite_sequence WHERE name = ?", (table,))
        except DatabaseError:
            self._last_error = None


__all__ = ["SQLiteDriver"]
