"""Tests for the database drivers."""

from __future__ import annotations

import threading
from typing import Any

import pymysql
import pytest

from dbkit.config import ConnectionConfig
from dbkit.dialects import Dialect
from dbkit.drivers import Driver, create_driver, driver_class
from dbkit.drivers.mssql import SqlServerDriver
from dbkit.drivers.mysql import MySQLDriver
from dbkit.drivers.postgres import PostgresDriver
from dbkit.drivers.sqlite import SQLiteDriver
from dbkit.errors import DatabaseError
from dbkit.manager import ConnectionManager


@pytest.fixture
def sqlite_driver() -> SQLiteDriver:
    driver = SQLiteDriver()
    driver.connect(ConnectionConfig(driver="sqlite", database=":memory:"))
    driver.prepare("CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL)").execute()
    yield driver
    driver.disconnect()


def test_registry_covers_every_dialect() -> None:
    assert driver_class(Dialect.SQLITE) is SQLiteDriver
    assert driver_class(Dialect.MYSQL) is MySQLDriver
    assert driver_class(Dialect.SQLSERVER) is SqlServerDriver
    assert isinstance(create_driver(Dialect.SQLITE), Driver)


def test_sqlite_executes_and_reports_insert_id(sqlite_driver: SQLiteDriver) -> None:
    inserted = sqlite_driver.prepare("INSERT INTO items (name) VALUES (?)").execute(["apple"])
    rows = sqlite_driver.prepare("SELECT id, name FROM items WHERE name = ?").execute(["apple"])

    assert inserted.row_count == 1
    assert inserted.last_insert_id == "1"
    assert sqlite_driver.last_insert_id() == "1"
    assert rows.columns == ("id", "name")
    assert rows.fetch_all() == [{"id": 1, "name": "apple"}]


def test_only_inserts_report_an_insert_id(sqlite_driver: SQLiteDriver) -> None:
    sqlite_driver.prepare("INSERT INTO items (name) VALUES (?)").execute(["apple"])

    updated = sqlite_driver.prepare("UPDATE items SET name = ? WHERE id = ?").execute(["pear", 1])
    deleted = sqlite_driver.prepare("DELETE FROM items WHERE id = ?").execute([1])

    assert updated.row_count == 1
    assert updated.last_insert_id is None
    assert deleted.last_insert_id is None
    assert sqlite_driver.last_insert_id() == "1"


def test_sqlite_errors_carry_query_context(sqlite_driver: SQLiteDriver) -> None:
    with pytest.raises(DatabaseError) as excinfo:
        sqlite_driver.prepare("SELECT * FROM missing WHERE id = ?").execute([3])

    assert excinfo.value.get_query() == "SELECT * FROM missing WHERE id = ?"
    assert excinfo.value.get_bindings() == [3]
    assert "no such table" in (sqlite_driver.get_last_error() or "")
    assert isinstance(excinfo.value.__cause__, Exception)


def test_sqlite_last_error_clears_after_success(sqlite_driver: SQLiteDriver) -> None:
    with pytest.raises(DatabaseError):
        sqlite_driver.prepare("SELECT nope FROM items").execute()

    sqlite_driver.prepare("SELECT 1").execute()

    assert sqlite_driver.get_last_error() is None


def test_prepare_rejects_blank_sql(sqlite_driver: SQLiteDriver) -> None:
    with pytest.raises(DatabaseError, match="Provide SQL"):
        sqlite_driver.prepare("   ")


def test_sqlite_transaction_rollback(sqlite_driver: SQLiteDriver) -> None:
    assert sqlite_driver.begin_transaction()
    sqlite_driver.prepare("INSERT INTO items (name) VALUES (?)").execute(["pear"])
    assert sqlite_driver.in_transaction()

    assert sqlite_driver.rollback()

    count = sqlite_driver.prepare("SELECT COUNT(*) FROM items").execute().scalar()
    assert count == 0
    assert not sqlite_driver.in_transaction()


def test_nested_transactions_are_rejected(sqlite_driver: SQLiteDriver) -> None:
    sqlite_driver.begin_transaction()

    with pytest.raises(DatabaseError, match="already active"):
        sqlite_driver.begin_transaction()

    assert sqlite_driver.commit()
    assert sqlite_driver.commit() is False


def test_sqlite_empty_table_resets_sequence(sqlite_driver: SQLiteDriver) -> None:
    statement = sqlite_driver.prepare("INSERT INTO items (name) VALUES (?)")
    statement.execute(["a"])
    statement.execute(["b"])

    assert sqlite_driver.empty_table("items")

    statement.execute(["c"])
    assert sqlite_driver.prepare("SELECT id FROM items").execute().scalar() == 1


def test_sqlite_empty_table_reports_failure(sqlite_driver: SQLiteDriver) -> None:
    assert sqlite_driver.empty_table("missing") is False
    assert sqlite_driver.get_last_error() is not None


def test_sqlite_optimize_table(sqlite_driver: SQLiteDriver) -> None:
    assert sqlite_driver.optimize_table("items")


def test_execute_requires_open_connection() -> None:
    driver = SQLiteDriver()

    with pytest.raises(DatabaseError, match="not open"):
        driver.prepare("SELECT 1").execute()


class _FakeCursor:
    def __init__(self, connection: _FakeDbApiConnection) -> None:
        self.connection = connection
        self.description: Any = None
        self.rowcount = -1
        self.lastrowid: Any = None
        self._rows: list[tuple[Any, ...]] = []

    def execute(self, sql: str, args: Any = None) -> None:
        self.connection.executed.append((sql, args))
        if self.connection.fail_with is not None:
            raise self.connection.fail_with
        if sql.lstrip().upper().startswith("SELECT"):
            self.description = (("value", None),)
            self._rows = list(self.connection.rows)
        else:
            self.rowcount = 1
            self.lastrowid = 42

    def fetchall(self) -> list[tuple[Any, ...]]:
        return self._rows

    def close(self) -> None:
        pass


class _FakeDbApiConnection:
    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.rows: list[tuple[Any, ...]] = [(7,)]
        self.fail_with: BaseException | None = None
        self.calls: list[str] = []
        self.closed = False

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def begin(self) -> None:
        self.calls.append("begin")

    def commit(self) -> None:
        self.calls.append("commit")

    def rollback(self) -> None:
        self.calls.append("rollback")

    def close(self) -> None:
        self.closed = True


def test_mysql_driver_connects_with_config(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    seen: dict[str, Any] = {}

    def _connect(**kwargs: Any) -> _FakeDbApiConnection:
        seen.update(kwargs)
        return connection

    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", _connect)
    driver = MySQLDriver()

    driver.connect(
        ConnectionConfig.from_record({"driver": "mysql", "host": "db", "username": "app", "database": "shop", "timeout": 2})
    )
    result = driver.prepare("INSERT INTO t (a) VALUES (%s)").execute([1])
    driver.prepare("SELECT 1").execute()

    assert seen["host"] == "db"
    assert seen["port"] == 3306
    assert seen["charset"] == "utf8mb4"
    assert seen["autocommit"] is True
    assert seen["connect_timeout"] == 2.0
    assert result.last_insert_id == "42"
    assert connection.executed == [("INSERT INTO t (a) VALUES (%s)", (1,)), ("SELECT 1", None)]


def test_mysql_driver_transactions_use_native_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", lambda **kwargs: connection)
    driver = MySQLDriver()
    driver.connect(ConnectionConfig(driver="mysql"))

    driver.begin_transaction()
    driver.rollback()

    assert connection.calls == ["begin", "rollback"]


def test_mysql_driver_wraps_native_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    connection.fail_with = pymysql.err.OperationalError(2006, "server has gone away")
    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", lambda **kwargs: connection)
    driver = MySQLDriver()
    driver.connect(ConnectionConfig(driver="mysql"))

    with pytest.raises(DatabaseError) as excinfo:
        driver.prepare("SELECT 1").execute()

    assert "server has gone away" in str(excinfo.value)
    assert excinfo.value.get_query() == "SELECT 1"


def test_mysql_driver_wraps_connect_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def _connect(**kwargs: Any) -> None:
        raise pymysql.err.OperationalError(2003, "can't connect")

    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", _connect)
    driver = MySQLDriver()

    with pytest.raises(DatabaseError, match="Failed to connect to mysql"):
        driver.connect(ConnectionConfig(driver="mysql"))
    assert not driver.is_connected()


def test_mysql_empty_table_falls_back_to_delete(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", lambda **kwargs: connection)
    driver = MySQLDriver()
    driver.connect(ConnectionConfig(driver="mysql"))
    original = _FakeCursor.execute

    def _execute(self: _FakeCursor, sql: str, args: Any = None) -> None:
        if sql.startswith("TRUNCATE"):
            connection.executed.append((sql, args))
            raise pymysql.err.OperationalError(1701, "foreign key")
        original(self, sql, args)

    monkeypatch.setattr(_FakeCursor, "execute", _execute)

    assert driver.empty_table("orders")
    assert [sql for sql, _ in connection.executed] == ["TRUNCATE TABLE `orders`", "DELETE FROM `orders`"]


def test_mysql_optimize_table(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    monkeypatch.setattr("dbkit.drivers.mysql.pymysql.connect", lambda **kwargs: connection)
    driver = MySQLDriver()
    driver.connect(ConnectionConfig(driver="mysql"))

    assert driver.optimize_table("orders")
    assert connection.executed[-1] == ("OPTIMIZE TABLE `orders`", None)


def test_sqlserver_driver_connects_and_rebuilds_indexes(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    seen: dict[str, Any] = {}

    def _connect(**kwargs: Any) -> _FakeDbApiConnection:
        seen.update(kwargs)
        return connection

    monkeypatch.setattr("dbkit.drivers.mssql.pymssql.connect", _connect)
    driver = SqlServerDriver()
    driver.connect(ConnectionConfig(driver="sqlsrv", host="mssql", port=1433, username="sa", password="pw"))

    assert driver.optimize_table("orders")
    driver.begin_transaction()
    driver.commit()

    assert seen["server"] == "mssql"
    assert seen["port"] == "1433"
    assert seen["autocommit"] is True
    assert [sql for sql, _ in connection.executed] == [
        "ALTER INDEX ALL ON [orders] REBUILD",
        "BEGIN TRANSACTION",
        "COMMIT TRANSACTION",
    ]


def test_sqlserver_last_insert_id_for_named_table(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = _FakeDbApiConnection()
    connection.rows = [(15,)]
    monkeypatch.setattr("dbkit.drivers.mssql.pymssql.connect", lambda **kwargs: connection)
    driver = SqlServerDriver()
    driver.connect(ConnectionConfig(driver="mssql"))

    assert driver.last_insert_id("orders") == "15"
    assert connection.executed[-1] == ("SELECT IDENT_CURRENT(%s)", ("orders",))


class _FakeTransaction:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    async def start(self) -> None:
        self.log.append("start")

    async def commit(self) -> None:
        self.log.append("commit")

    async def rollback(self) -> None:
        self.log.append("rollback")


class _FakeAsyncpgConnection:
    def __init__(self) -> None:
        self.log: list[str] = []
        self.fetched: list[tuple[str, tuple[Any, ...]]] = []
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.fetched.append((sql, args))
        if "lastval" in sql:
            return [{"lastval": 9}]
        return [{"id": 1, "email": "ada@example.com"}]

    async def execute(self, sql: str, *args: Any) -> str:
        self.executed.append((sql, args))
        return "UPDATE 3"

    def transaction(self) -> _FakeTransaction:
        return _FakeTransaction(self.log)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def postgres_driver(monkeypatch: pytest.MonkeyPatch) -> tuple[PostgresDriver, _FakeAsyncpgConnection]:
    connection = _FakeAsyncpgConnection()
    seen: dict[str, Any] = {}

    async def _connect(**kwargs: Any) -> _FakeAsyncpgConnection:
        seen.update(kwargs)
        return connection

    monkeypatch.setattr("dbkit.drivers.postgres.asyncpg.connect", _connect)
    driver = PostgresDriver()
    driver.connect(ConnectionConfig(driver="pgsql", host="pg", port=5433, username="app", database="crm"))
    connection.connect_kwargs = seen  # type: ignore[attr-defined]
    yield driver, connection
    driver.shutdown()


def test_postgres_driver_fetches_rows(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, connection = postgres_driver

    result = driver.prepare("SELECT * FROM users WHERE id = $1").execute([1])

    assert result.columns == ("id", "email")
    assert result.row_count == 1
    assert connection.fetched == [("SELECT * FROM users WHERE id = $1", (1,))]
    assert connection.connect_kwargs["host"] == "pg"  # type: ignore[attr-defined]
    assert connection.connect_kwargs["port"] == 5433  # type: ignore[attr-defined]


def test_postgres_driver_parses_command_status(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, connection = postgres_driver

    result = driver.prepare("UPDATE users SET active = $1").execute([True])

    assert result.row_count == 3
    assert result.columns == ()
    assert connection.executed == [("UPDATE users SET active = $1", (True,))]


def test_postgres_driver_uses_returning_for_rows(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, connection = postgres_driver

    driver.prepare("INSERT INTO users (email) VALUES ($1) RETURNING id").execute(["x"])

    assert connection.fetched[-1][0].endswith("RETURNING id")


def test_postgres_driver_transactions(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, connection = postgres_driver

    driver.begin_transaction()
    driver.commit()
    driver.begin_transaction()
    driver.rollback()

    assert connection.log == ["start", "commit", "start", "rollback"]


def test_postgres_driver_last_insert_id(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, _ = postgres_driver

    assert driver.last_insert_id() == "9"


def test_postgres_empty_table_truncates(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, connection = postgres_driver

    assert driver.empty_table("orders", {"cascade": True})

    assert connection.executed[-1][0] == 'TRUNCATE TABLE "orders" RESTART IDENTITY CASCADE'


def test_postgres_disconnect_closes_native_connection(
    postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection],
) -> None:
    driver, connection = postgres_driver

    driver.disconnect()

    assert connection.closed is True
    assert not driver.is_connected()


def test_postgres_connection_starts_no_thread_until_used() -> None:
    before = threading.active_count()
    manager = ConnectionManager({"default": {"driver": "pgsql", "host": "pg", "database": "crm"}})

    connection = manager.get_connection()

    assert not connection.is_connected()
    assert threading.active_count() == before
    manager.close_all()
    assert threading.active_count() == before


def test_postgres_shutdown_stops_loop_thread(postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection]) -> None:
    driver, _ = postgres_driver
    loop, thread = driver._loop, driver._loop_thread

    driver.shutdown()

    assert thread is not None and not thread.is_alive()
    assert loop is not None and loop.is_closed()


def test_postgres_shutdown_stops_loop_when_close_fails(
    postgres_driver: tuple[PostgresDriver, _FakeAsyncpgConnection],
) -> None:
    driver, connection = postgres_driver
    thread = driver._loop_thread

    async def _failing_close() -> None:
        raise OSError("socket already gone")

    connection.close = _failing_close  # type: ignore[method-assign]

    with pytest.raises(OSError):
        driver.shutdown()

    assert thread is not None and not thread.is_alive()
    assert not driver.is_connected()
