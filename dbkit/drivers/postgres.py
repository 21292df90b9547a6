"""PostgreSQL driver on asyncpg, exposed through a blocking API."""

from __future__ import annotations

import asyncio
import re
import threading
import time
from typing import Any, Coroutine, Mapping, Sequence

import asyncpg

from ..config import ConnectionConfig
from ..dialects import Dialect
from ..errors import DatabaseError
from ..result import Result
from .base import BaseDriver

_RETURNING = re.compile(r"\breturning\b", re.IGNORECASE)
_STATUS_COUNT = re.compile(r"(\d+)\s*$")


class PostgresDriver(BaseDriver):
    """Runs asyncpg on a private event loop thread and blocks on each call."""

    dialect = Dialect.POSTGRESQL
    name = "postgresql"
    EMPTY_TABLE_DEFAULTS = {"use_truncate": True, "restart_identity": True, "cascade": False}

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        super().__init__()
        self._connect_timeout = connect_timeout
        self._connection: Any = None
        self._transaction: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None

    def is_connected(self) -> bool:
        return self._connection is not None

    def shutdown(self) -> None:
        """Close the connection and stop the background event loop."""

        try:
            if self.is_connected():
                self.disconnect()
        finally:
            self._stop_loop()

    def last_insert_id(self, name: str | None = None) -> str:
        sql = "SELECT currval($1)" if name else "SELECT lastval()"
        params = (name,) if name else ()
        try:
            value = self._execute(sql, params).scalar()
        except DatabaseError:
            return ""
        return "" if value is None else str(value)

    def _open(self, config: ConnectionConfig) -> None:
        self._connection = self._call(asyncpg.connect(**self._connect_kwargs(config)))

    def _close(self) -> None:
        try:
            self._call(self._connection.close())
        finally:
            self._connection = None
            self._transaction = None

    def _execute(self, sql: str, params: Sequence[Any]) -> Result:
        if self._connection is None:
            raise DatabaseError("The postgresql connection is not open.", query=sql, bindings=params)
        started = time.perf_counter()
        try:
            result = self._call(self._execute_async(sql, tuple(params)))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            self._last_error = str(exc)
            raise DatabaseError(str(exc), query=sql, bindings=params) from exc
        self._last_error = None
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return Result(
            columns=result.columns,
            rows=result.rows,
            row_count=result.row_count,
            elapsed_ms=elapsed_ms,
        )

    async def _execute_async(self, sql: str, params: tuple[Any, ...]) -> Result:
        if _returns_rows(sql):
            records = await self._connection.fetch(sql, *params)
            return Result.from_mappings(records)
        status = await self._connection.execute(sql, *params)
        return Result(row_count=_status_count(status))

    def _begin(self) -> None:
        self._transaction = self._connection.transaction()
        self._call(self._transaction.start())

    def _commit(self) -> None:
        try:
            self._call(self._transaction.commit())
        finally:
            self._transaction = None

    def _rollback(self) -> None:
        try:
            self._call(self._transaction.rollback())
        finally:
            self._transaction = None

    def _truncate_sql(self, quoted: str, settings: Mapping[str, Any]) -> str:
        sql = f"TRUNCATE TABLE {quoted}"
        if settings.get("restart_identity"):
            sql += " RESTART IDENTITY"
        if settings.get("cascade"):
            sql += " CASCADE"
        return sql

    def _optimize_sql(self, quoted: str) -> str:
        return f"VACUUM FULL {quoted}"

    def _connect_kwargs(self, config: ConnectionConfig) -> dict[str, object]:
        kwargs: dict[str, object] = {}
        dsn = config.option("dsn")
        if dsn:
            kwargs["dsn"] = dsn
        else:
            kwargs["host"] = config.host or "localhost"
            if config.port is not None:
                kwargs["port"] = config.port
            if config.username:
                kwargs["user"] = config.username
            if config.password:
                kwargs["password"] = config.password
            if config.database:
                kwargs["database"] = config.database
        kwargs["timeout"] = float(config.option("timeout", self._connect_timeout))
        return kwargs

    def _call(self, coro: Coroutine[Any, Any, Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        return future.result()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        """Start the background loop on first use."""

        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="dbkit-asyncpg-driver", daemon=True)
            thread.start()
            self._loop, self._loop_thread = loop, thread
        return self._loop

    def _stop_loop(self) -> None:
        loop, thread = self._loop, self._loop_thread
        self._loop = None
        self._loop_thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=1)
        if not loop.is_running():
            loop.close()


def _returns_rows(statement: str) -> bool:
    token = statement.lstrip().split(None, 1)
    if not token:
        return False
    head = token[0].lower()
    if head in {"select", "with", "show", "values", "explain", "table"}:
        return True
    return bool(_RETURNING.search(statement))


def _status_count(status: str) -> int:
    match = _STATUS_COUNT.search(status or "")
    return int(match.group(1)) if match else 0


__all__ = ["PostgresDriver"]
