"""Driver contract and the shared DB-API implementation."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Protocol, Sequence, runtime_checkable

from ..config import ConnectionConfig
from ..dialects import Dialect
from ..errors import DatabaseError
from ..result import Result
from ..sql import sql_builder_for

LOG = logging.getLogger(__name__)

_INSERT = re.compile(r"^\s*(insert|replace)\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Statement:
    """Prepared SQL bound to the driver that will run it."""

    sql: str
    runner: Callable[[str, Sequence[Any]], Result]

    def execute(self, params: Sequence[Any] = ()) -> Result:
        return self.runner(self.sql, params)


@runtime_checkable
class Driver(Protocol):
    """Blocking adapter over one database client library."""

    dialect: Dialect
    name: str

    def connect(self, config: ConnectionConfig) -> None:
        """Open the native connection; raises ``DatabaseError`` on failure."""

    def disconnect(self) -> None:
        """Close the native connection if open."""

    def is_connected(self) -> bool: ...

    def shutdown(self) -> None:
        """Disconnect and release every resource the driver owns."""

    def prepare(self, sql: str) -> Statement: ...

    def begin_transaction(self) -> bool: ...

    def commit(self) -> bool: ...

    def rollback(self) -> bool: ...

    def in_transaction(self) -> bool: ...

    def last_insert_id(self, name: str | None = None) -> str: ...

    def empty_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool: ...

    def optimize_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool: ...

    def get_last_error(self) -> str | None: ...


class BaseDriver:
    """Bookkeeping and table maintenance shared by the concrete drivers.

    Subclasses provide ``_open``, ``_close``, ``_run`` and the transaction
    primitives; every native failure surfaces as ``DatabaseError``.
    """

    dialect: ClassVar[Dialect]
    name: ClassVar[str]
    EMPTY_TABLE_DEFAULTS: ClassVar[Mapping[str, Any]] = {"use_truncate": True}

    def __init__(self) -> None:
        self._config: ConnectionConfig | None = None
        self._last_error: str | None = None
        self._transaction_active = False
        self._quote = sql_builder_for(self.dialect).quote_identifier

    def connect(self, config: ConnectionConfig) -> None:
        if self.is_connected():
            return
        try:
            self._open(config)
        except DatabaseError:
            raise
        except Exception as exc:
            self._last_error = str(exc)
            raise DatabaseError(f"Failed to connect to {self.name} database: {exc}") from exc
        self._config = config
        self._last_error = None

    def disconnect(self) -> None:
        if self.is_connected():
            self._close()
        self._transaction_active = False

    def is_connected(self) -> bool:
        raise NotImplementedError

    def shutdown(self) -> None:
        self.disconnect()

    def prepare(self, sql: str) -> Statement:
        if not sql.strip():
            raise DatabaseError("Provide SQL to execute.", query=sql)
        return Statement(sql, self._execute)

    def begin_transaction(self) -> bool:
        if self._transaction_active:
            raise DatabaseError("A transaction is already active on this connection.")
        self._guard("BEGIN", self._begin)
        self._transaction_active = True
        return True

    def commit(self) -> bool:
        if not self._transaction_active:
            return False
        try:
            self._guard("COMMIT", self._commit)
        finally:
            self._transaction_active = False
        return True

    def rollback(self) -> bool:
        if not self._transaction_active:
            return False
        try:
            self._guard("ROLLBACK", self._rollback)
        finally:
            self._transaction_active = False
        return True

    def in_transaction(self) -> bool:
        return self._transaction_active

    def last_insert_id(self, name: str | None = None) -> str:
        raise NotImplementedError

    def get_last_error(self) -> str | None:
        return self._last_error

    def empty_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool:
        """Remove every row, preferring TRUNCATE and falling back to DELETE."""

        settings = {**self.EMPTY_TABLE_DEFAULTS, **self._config_options(), **(options or {})}
        quoted = self._quote(table)
        if settings.get("use_truncate"):
            try:
                self._execute(self._truncate_sql(quoted, settings), ())
                return True
            except DatabaseError:
                LOG.debug("TRUNCATE failed, falling back to DELETE", extra={"table": table})
        try:
            self._execute(f"DELETE FROM {quoted}", ())
        except DatabaseError:
            return False
        self._after_delete(table)
        return True

    def optimize_table(self, table: str, options: Mapping[str, Any] | None = None) -> bool:
        try:
            self._execute(self._optimize_sql(self._quote(table)), ())
        except DatabaseError:
            return False
        return True

    # Hooks

    def _open(self, config: ConnectionConfig) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError

    def _execute(self, sql: str, params: Sequence[Any]) -> Result:
        raise NotImplementedError

    def _begin(self) -> None:
        raise NotImplementedError

    def _commit(self) -> None:
        raise NotImplementedError

    def _rollback(self) -> None:
        raise NotImplementedError

    def _truncate_sql(self, quoted: str, settings: Mapping[str, Any]) -> str:
        return f"TRUNCATE TABLE {quoted}"

    def _optimize_sql(self, quoted: str) -> str:
        raise NotImplementedError

    def _after_delete(self, table: str) -> None:
        return None

    def _config_options(self) -> Mapping[str, Any]:
        return self._config.options if self._config is not None else {}

    def _guard(self, label: str, action: Callable[[], None]) -> None:
        try:
            action()
        except DatabaseError:
            raise
        except Exception as exc:
            self._last_error = str(exc)
            raise DatabaseError(f"{label} failed: {exc}", query=label) from exc


class DbApiDriver(BaseDriver):
    """Driver over a PEP 249 client library."""

    error_types: ClassVar[tuple[type[BaseException], ...]] = (Exception,)
    BEGIN_SQL: ClassVar[str] = "BEGIN"
    COMMIT_SQL: ClassVar[str] = "COMMIT"
    ROLLBACK_SQL: ClassVar[str] = "ROLLBACK"

    def __init__(self) -> None:
        super().__init__()
        self._connection: Any = None
        self._last_insert_id: Any = None

    @property
    def native(self) -> Any:
        """The underlying DB-API connection object."""

        return self._connection

    def is_connected(self) -> bool:
        return self._connection is not None

    def last_insert_id(self, name: str | None = None) -> str:
        return "" if self._last_insert_id is None else str(self._last_insert_id)

    def _close(self) -> None:
        try:
            self._connection.close()
        finally:
            self._connection = None

    def _require(self) -> Any:
        if self._connection is None:
            raise DatabaseError(f"The {self.name} connection is not open.")
        return self._connection

    def _bind(self, params: Sequence[Any]) -> Any:
        return tuple(params)

    def _execute(self, sql: str, params: Sequence[Any]) -> Result:
        connection = self._require()
        inserting = _INSERT.match(sql) is not None
        started = time.perf_counter()
        cursor = connection.cursor()
        try:
            cursor.execute(sql, self._bind(params))
            if cursor.description:
                rows = cursor.fetchall()
                result_rows, description, row_count = rows, cursor.description, None
            else:
                result_rows, description, row_count = (), None, max(cursor.rowcount, 0)
                lastrowid = getattr(cursor, "lastrowid", None) if inserting else None
                if lastrowid:
                    self._last_insert_id = lastrowid
        except self.error_types as exc:
            self._last_error = str(exc)
            raise DatabaseError(str(exc), query=sql, bindings=params) from exc
        finally:
            cursor.close()
        self._last_error = None
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        extra: dict[str, Any] = {"elapsed_ms": elapsed_ms}
        if row_count is not None:
            extra["row_count"] = row_count
            extra["last_insert_id"] = (self.last_insert_id() or None) if inserting else None
        return Result.from_cursor(description, result_rows, **extra)

    def _begin(self) -> None:
        self._execute(self.BEGIN_SQL, ())

    def _commit(self) -> None:
        self._execute(self.COMMIT_SQL, ())

    def _rollback(self) -> None:
        self._execute(self.ROLLBACK_SQL, ())


__all__ = ["BaseDriver", "DbApiDriver", "Driver", "Statement"]
