"""SQL Server driver on pymssql."""

from __future__ import annotations

from typing import Any, Sequence

import pymssql

from ..config import ConnectionConfig
from ..dialects import Dialect
from .base import DbApiDriver


class SqlServerDriver(DbApiDriver):
    dialect = Dialect.SQLSERVER
    name = "sqlserver"
    error_types = (pymssql.Error,)
    BEGIN_SQL = "BEGIN TRANSACTION"
    COMMIT_SQL = "COMMIT TRANSACTION"
    ROLLBACK_SQL = "ROLLBACK TRANSACTION"

    def __init__(self, *, connect_timeout: int = 5) -> None:
        super().__init__()
        self._connect_timeout = connect_timeout

    def _open(self, config: ConnectionConfig) -> None:
        kwargs: dict[str, Any] = {
            "server": config.host or "localhost",
            "user": config.username,
            "password": config.password,
            "database": config.database or "",
            "charset": config.charset or "UTF-8",
            "autocommit": True,
            "login_timeout": int(config.option("timeout", self._connect_timeout)),
        }
        if config.port is not None:
            kwargs["port"] = str(config.port)
        self._connection = pymssql.connect(**kwargs)

    def last_insert_id(self, name: str | None = None) -> str:
        """Identity of the last insert, or the current identity of table ``name``."""

        if name is None:
            return super().last_insert_id()
        value = self._execute("SELECT IDENT_CURRENT(%s)", (name,)).scalar()
        return "" if value is None else str(value)

    def _bind(self, params: Sequence[Any]) -> Any:
        return tuple(params) if params else None

    def _optimize_sql(self, quoted: str) -> str:
        return f"ALTER INDEX ALL ON {quoted} REBUILD"


__all__ = ["SqlServerDriver"]
