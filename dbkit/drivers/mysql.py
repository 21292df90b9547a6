"""MySQL / MariaDB driver on PyMySQL."""

from __future__ import annotations

from typing import Any, Sequence

import pymysql

from ..config import ConnectionConfig
from ..dialects import Dialect
from .base import DbApiDriver


class MySQLDriver(DbApiDriver):
    dialect = Dialect.MYSQL
    name = "mysql"
    error_types = (pymysql.MySQLError,)

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        super().__init__()
        self._connect_timeout = connect_timeout

    def _open(self, config: ConnectionConfig) -> None:
        self._connection = pymysql.connect(
            host=config.host or "localhost",
            port=config.port or 3306,
            user=config.username,
            password=config.password or "",
            database=config.database,
            charset=config.charset or "utf8mb4",
            autocommit=True,
            connect_timeout=float(config.option("timeout", self._connect_timeout)),
        )

    def _bind(self, params: Sequence[Any]) -> Any:
        # PyMySQL only interpolates (and unescapes %%) when arguments are given.
        return tuple(params) if params else None

    def _begin(self) -> None:
        self._require().begin()

    def _commit(self) -> None:
        self._require().commit()

    def _rollback(self) -> None:
        self._require().rollback()

    def _optimize_sql(self, quoted: str) -> str:
        return f"OPTIMIZE TABLE {quoted}"


__all__ = ["MySQLDriver"]
