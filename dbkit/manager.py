"""Registry of named connections, the shared cache and the shared logger."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

from .cache import DEFAULT_TTL, CacheBackend, CacheSettings, QueryCache, create_cache
from .config import DatabaseSettings, load_settings
from .connection import Connection, LoggerLike
from .dialects import Dialect
from .drivers import Driver, create_driver
from .errors import ConfigurationError
from .tables import TableConfiguration

NOT_INITIALIZED = "Connection manager is not initialized. Call Database.config() first."


class ConnectionManager:
    """Context object owning configuration, connections, cache and logger.

    Connections are created on first request and reused for the manager's
    lifetime; creating one opens no database resources.
    """

    def __init__(
        self,
        settings: DatabaseSettings | Mapping[str, Any] | None = None,
        *,
        driver_factory: Callable[[Dialect], Driver] = create_driver,
        logger: LoggerLike | None = None,
    ) -> None:
        self._settings: DatabaseSettings | None = None
        self._connections: dict[str, Connection] = {}
        self._driver_factory = driver_factory
        self._logger: LoggerLike = logger or logging.getLogger("dbkit")
        self._cache: QueryCache | None = None
        self._lock = threading.RLock()
        if settings is not None:
            self.configure(settings)

    @classmethod
    def from_settings_file(cls, path: Path | None = None, **kwargs: Any) -> ConnectionManager:
        """Build a manager from the settings file; unconfigured when it is missing."""

        return cls(load_settings(path), **kwargs)

    @property
    def settings(self) -> DatabaseSettings | None:
        return self._settings

    def is_configured(self) -> bool:
        return self._settings is not None

    def configure(self, settings: DatabaseSettings | Mapping[str, Any]) -> None:
        """Validate and install configuration; existing connections are closed."""

        if not isinstance(settings, DatabaseSettings):
            settings = DatabaseSettings.from_mapping(settings)
        with self._lock:
            self.close_all()
            self._settings = settings
        self._logger.debug("Database configured", extra={"connections": list(settings.names())})

    def connection_names(self) -> tuple[str, ...]:
        return self._settings.names() if self._settings is not None else ()

    def has_connection(self, name: str) -> bool:
        return name in self.connection_names()

    def get_connection(self, name: str = "default") -> Connection:
        with self._lock:
            if self._settings is None:
                raise ConfigurationError(NOT_INITIALIZED)
            connection = self._connections.get(name)
            if connection is not None:
                return connection
            config = self._settings.get(name)
            if config is None:
                raise ConfigurationError(f"Connection configuration '{name}' not found.")
            if not config.driver:
                raise ConfigurationError(f"Driver not specified for connection '{name}'.")
            dialect = Dialect.from_driver(config.driver)
            connection = Connection(
                name,
                config,
                self._driver_factory(dialect),
                tables=self.load_table_configuration(name),
                cache=self._cache,
                logger=self._logger,
            )
            self._connections[name] = connection
            return connection

    def load_table_configuration(self, name: str) -> TableConfiguration:
        """Table configuration for ``name``: its prefix plus global and own mappings."""

        if self._settings is None:
            raise ConfigurationError(NOT_INITIALIZED)
        config = self._settings.get(name)
        prefix = config.prefix if config is not None else ""
        tables = TableConfiguration(prefix, self._settings.tables_for(name), logger=self._logger)
        self._logger.info(
            "Table configuration loaded",
            extra={
                "connection": name,
                "has_prefix": bool(tables.prefix),
                "table_count": len(tables.tables),
                "is_valid": tables.is_valid(),
            },
        )
        return tables

    def configure_cache(
        self,
        options: Mapping[str, Any] | CacheSettings | None = None,
        default_ttl: int | None = DEFAULT_TTL,
    ) -> QueryCache:
        return self.set_cache(create_cache(options), default_ttl)

    def set_cache(self, cache: CacheBackend | QueryCache, default_ttl: int | None = DEFAULT_TTL) -> QueryCache:
        """Install a shared cache; existing connections start using it."""

        query_cache = cache if isinstance(cache, QueryCache) else QueryCache(cache, default_ttl)
        with self._lock:
            self._cache = query_cache
            for connection in self._connections.values():
                connection.cache = query_cache
        return query_cache

    def get_cache(self) -> QueryCache | None:
        return self._cache

    def set_logger(self, logger: LoggerLike) -> None:
        with self._lock:
            self._logger = logger
            for connection in self._connections.values():
                connection.logger = logger

    def get_logger(self) -> LoggerLike:
        return self._logger

    def close_all(self) -> None:
        with self._lock:
            for connection in self._connections.values():
                connection.close()
            self._connections.clear()


__all__ = ["ConnectionManager", "NOT_INITIALIZED"]
