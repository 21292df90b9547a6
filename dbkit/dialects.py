"""Supported SQL dialects and driver name resolution."""

from __future__ import annotations

from enum import Enum

from .errors import ConfigurationError


class Dialect(str, Enum):
    """Closed set of SQL dialects the builders can target."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"
    SQLSERVER = "sqlserver"

    @property
    def sqlglot_name(self) -> str:
        """Dialect name understood by sqlglot."""

        return _SQLGLOT_NAMES[self]

    @classmethod
    def from_driver(cls, driver: str) -> Dialect:
        """Resolve a configured driver name (including aliases) to a dialect."""

        key = driver.strip().lower()
        if not key:
            raise ConfigurationError("Driver not specified in connection configuration.")
        try:
            return _DRIVER_ALIASES[key]
        except KeyError:
            raise ConfigurationError(f"Driver '{driver}' is not supported.") from None


_DRIVER_ALIASES: dict[str, Dialect] = {
    "mysql": Dialect.MYSQL,
    "mysqli": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "pgsql": Dialect.POSTGRESQL,
    "postgres": Dialect.POSTGRESQL,
    "postgresql": Dialect.POSTGRESQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "sqlsrv": Dialect.SQLSERVER,
    "mssql": Dialect.SQLSERVER,
    "sqlserver": Dialect.SQLSERVER,
}

_SQLGLOT_NAMES: dict[Dialect, str] = {
    Dialect.MYSQL: "mysql",
    Dialect.POSTGRESQL: "postgres",
    Dialect.SQLITE: "sqlite",
    Dialect.SQLSERVER: "tsql",
}


def supported_drivers() -> tuple[str, ...]:
    """Return every accepted driver name."""

    return tuple(sorted(_DRIVER_ALIASES))


__all__ = ["Dialect", "supported_drivers"]
