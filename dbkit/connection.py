"""A named connection: driver, table names and dialect bound together."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Sequence, TypeVar

from .cache import QueryCache
from .config import ConnectionConfig
from .dialects import Dialect
from .drivers import Driver
from .errors import DatabaseError
from .querylog import QUERY_MESSAGE
from .result import Result
from .sql import QueryDescriptor, SqlBuilder, sql_builder_for
from .sqlintel import DiagnosticSeverity, SqlIntelService, StatementKind
from .tables import TableConfiguration

T = TypeVar("T")

LoggerLike = logging.Logger | logging.LoggerAdapter


class Connection:
    """Executes statements for one configured connection name.

    The driver is connected lazily on the first statement. Select results may
    be served from the shared ``QueryCache``; writes invalidate the cached
    results of the tables they touch.
    """

    def __init__(
        self,
        name: str,
        config: ConnectionConfig,
        driver: Driver,
        *,
        tables: TableConfiguration | None = None,
        cache: QueryCache | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        self._name = name
        self._config = config
        self._dialect = Dialect.from_driver(config.driver)
        self._driver = driver
        self._logger: LoggerLike = logger or logging.getLogger("dbkit")
        self._tables = tables or TableConfiguration(config.prefix, config.tables, logger=self._logger)
        self._cache = cache
        self._sql_builder = sql_builder_for(self._dialect)
        self._intel = SqlIntelService(self._dialect)
        self.last_query: str | None = None
        self.last_bindings: list[Any] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def sql_builder(self) -> SqlBuilder:
        return self._sql_builder

    @property
    def table_configuration(self) -> TableConfiguration:
        return self._tables

    @property
    def cache(self) -> QueryCache | None:
        return self._cache

    @cache.setter
    def cache(self, cache: QueryCache | None) -> None:
        self._cache = cache

    @property
    def logger(self) -> LoggerLike:
        return self._logger

    @logger.setter
    def logger(self, logger: LoggerLike) -> None:
        self._logger = logger

    def connect(self) -> None:
        if self._driver.is_connected():
            return
        self._logger.debug("Connecting to database", extra={"connection": self._name, "driver": self._driver.name})
        try:
            self._driver.connect(self._config)
        except DatabaseError:
            self._logger.error(
                "Failed to connect to database",
                extra={"connection": self._name, "error": self._driver.get_last_error()},
            )
            raise

    def disconnect(self) -> None:
        self._driver.disconnect()

    def close(self) -> None:
        """Disconnect and release the driver for good."""

        self._driver.shutdown()

    def is_connected(self) -> bool:
        return self._driver.is_connected()

    def table_name(self, logical: str) -> str:
        return self._tables.get_table_name(logical)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> Result:
        """Run dialect-ready SQL through the driver."""

        self.last_query = sql
        self.last_bindings = list(params)
        self.connect()
        started = time.perf_counter()
        try:
            result = self._driver.prepare(sql).execute(params)
        except DatabaseError as exc:
            self._logger.error(
                "Query failed: %s",
                exc.args[0] if exc.args else exc,
                extra={"connection": self._name, "query": sql, "bindings": list(params)},
            )
            raise exc.with_context(sql, params)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        self._logger.debug(
            QUERY_MESSAGE,
            extra={
                "connection": self._name,
                "query": sql,
                "bindings": list(params),
                "elapsed_ms": elapsed_ms,
                "row_count": result.row_count,
            },
        )
        return result

    def select(
        self,
        descriptor: QueryDescriptor,
        *,
        use_cache: bool = False,
        ttl: int | None = None,
        save_cache: bool = True,
    ) -> Result:
        sql, params = self._sql_builder.build(descriptor)
        key: str | None = None
        if use_cache and self._cache_usable():
            key = QueryCache.make_key(self._name, descriptor.tables(), sql, params)
            cached = self._cache_get(key)
            if cached is not None:
                self._logger.debug(
                    QUERY_MESSAGE,
                    extra={
                        "connection": self._name,
                        "query": sql,
                        "bindings": params,
                        "elapsed_ms": 0,
                        "row_count": cached.row_count,
                        "cached": True,
                    },
                )
                return cached
        result = self.execute(sql, params)
        if key is not None and save_cache:
            self._cache_set(key, result, ttl)
        return result

    def save_to_cache(self, descriptor: QueryDescriptor, result: Result, ttl: int | None = None) -> bool:
        if not self._cache_usable():
            return False
        sql, params = self._sql_builder.build(descriptor)
        return self._cache_set(QueryCache.make_key(self._name, descriptor.tables(), sql, params), result, ttl)

    def write(self, descriptor: QueryDescriptor) -> Result:
        sql, params = self._sql_builder.build(descriptor)
        result = self.execute(sql, params)
        self.invalidate(descriptor.tables())
        return result

    def raw(self, sql: str, params: Sequence[Any] = ()) -> Result:
        """Run hand-written SQL whose bindings are marked with ``?``."""

        try:
            compiled, bound = self._sql_builder.compile_raw(sql, params)
        except ValueError as exc:
            raise DatabaseError(str(exc), query=sql, bindings=params) from exc
        analysis = self._intel.analyze(sql)
        for diagnostic in self._intel.lint(analysis):
            if diagnostic.severity is DiagnosticSeverity.WARNING:
                self._logger.warning(diagnostic.message, extra={"connection": self._name, "query": sql})
        result = self.execute(compiled, bound)
        if analysis.kind is not StatementKind.READ:
            self.invalidate(analysis.written_tables or None)
        return result

    def invalidate(self, tables: Sequence[str] | None) -> int:
        """Drop cached results for ``tables`` (``None`` for all of them)."""

        if self._cache is None:
            return 0
        try:
            return self._cache.invalidate_tables(self._name, tables)
        except Exception:
            self._logger.warning("Cache invalidation failed", extra={"connection": self._name}, exc_info=True)
            return 0

    def begin_transaction(self) -> bool:
        self.connect()
        return self._transaction_call("BEGIN", self._driver.begin_transaction)

    def commit(self) -> bool:
        return self._transaction_call("COMMIT", self._driver.commit)

    def rollback(self) -> bool:
        return self._transaction_call("ROLLBACK", self._driver.rollback)

    def in_transaction(self) -> bool:
        return self._driver.in_transaction()

    def last_insert_id(self, name: str | None = None) -> str:
        return self._driver.last_insert_id(name)

    def empty_table(self, logical: str, options: Mapping[str, Any] | None = None) -> bool:
        table = self.table_name(logical)
        self.connect()
        emptied = self._driver.empty_table(table, options)
        if emptied:
            self.invalidate([table])
        return emptied

    def optimize_table(self, logical: str, options: Mapping[str, Any] | None = None) -> bool:
        self.connect()
        return self._driver.optimize_table(self.table_name(logical), options)

    def get_last_error(self) -> str | None:
        return self._driver.get_last_error()

    def _transaction_call(self, label: str, action: Callable[[], T]) -> T:
        try:
            return action()
        except DatabaseError as exc:
            self._logger.error("%s failed", label, extra={"connection": self._name, "error": str(exc)})
            raise

    def _cache_usable(self) -> bool:
        # Rows read inside a transaction may still be rolled back.
        return self._cache is not None and self._cache.is_enabled() and not self._driver.in_transaction()

    def _cache_get(self, key: str) -> Result | None:
        try:
            return self._cache.get(key) if self._cache is not None else None
        except Exception:
            self._logger.warning("Cache read failed", extra={"connection": self._name, "key": key}, exc_info=True)
            return None

    def _cache_set(self, key: str, result: Result, ttl: int | None) -> bool:
        try:
            return self._cache.set(key, result, ttl) if self._cache is not None else False
        except Exception:
            self._logger.warning("Cache write failed", extra={"connection": self._name, "key": key}, exc_info=True)
            return False


__all__ = ["Connection"]
