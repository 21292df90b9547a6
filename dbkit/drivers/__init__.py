"""Database drivers and the dialect to driver registry."""

from __future__ import annotations

from importlib import import_module
from typing import Callable

from ..dialects import Dialect
from .base import BaseDriver, DbApiDriver, Driver, Statement

DriverFactory = Callable[[], Driver]

# Client libraries are imported on first use.
_DRIVER_PATHS: dict[Dialect, str] = {
    Dialect.MYSQL: "dbkit.drivers.mysql:MySQLDriver",
    Dialect.POSTGRESQL: "dbkit.drivers.postgres:PostgresDriver",
    Dialect.SQLITE: "dbkit.drivers.sqlite:SQLiteDriver",
    Dialect.SQLSERVER: "dbkit.drivers.mssql:SqlServerDriver",
}

if set(_DRIVER_PATHS) != set(Dialect):  # pragma: no cover - import-time guard
    raise RuntimeError("Every dialect needs a driver")


def driver_class(dialect: Dialect) -> type[BaseDriver]:
    module_name, _, attr = _DRIVER_PATHS[Dialect(dialect)].partition(":")
    return getattr(import_module(module_name), attr)


def create_driver(dialect: Dialect) -> Driver:
    """Instantiate the default driver for ``dialect``."""

    return driver_class(dialect)()


__all__ = [
    "BaseDriver",
    "DbApiDriver",
    "Driver",
    "DriverFactory",
    "Statement",
    "create_driver",
    "driver_class",
]
