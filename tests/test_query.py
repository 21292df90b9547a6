"""Tests for the fluent query builders against SQLite."""

from __future__ import annotations

import logging
from typing import Iterator

import pytest

from dbkit.cache import MemoryCache
from dbkit.database import Database
from dbkit.errors import DatabaseError
from dbkit.manager import ConnectionManager
from dbkit.sql import Raw, Sql


@pytest.fixture
def db() -> Iterator[Database]:
    manager = ConnectionManager({"default": {"driver": "sqlite", "database": ":memory:", "prefix": "app_"}})
    database = Database.create(manager=manager)
    database.raw("CREATE TABLE app_users (id INTEGER PRIMARY KEY, name TEXT UNIQUE, age INTEGER, team TEXT)")
    database.raw("CREATE TABLE app_orders (id INTEGER PRIMARY KEY, user_id INTEGER, total INTEGER)")
    database.insert("users").values(
        [
            {"name": "ada", "age": 36, "team": "core"},
            {"name": "alan", "age": 41, "team": "core"},
            {"name": "grace", "age": 29, "team": "ops"},
        ]
    ).execute()
    database.insert("orders").values(
        [{"user_id": 1, "total": 120}, {"user_id": 1, "total": 80}, {"user_id": 3, "total": 300}]
    ).execute()
    yield database
    manager.close_all()


def test_select_resolves_prefixed_table(db: Database) -> None:
    sql, params = db.select("*").from_("users").where("id", 1).to_sql()

    assert sql == 'SELECT * FROM "app_users" WHERE "id" = ?'
    assert params == [1]


def test_select_column_forms_are_equivalent(db: Database) -> None:
    star = [db.select(*args).from_("users").to_sql() for args in [(), ("*",), (["*"],), ([],)]]
    named = [db.select(*args).from_("users").to_sql() for args in [("id", "name"), (["id", "name"],)]]

    assert len(set(sql for sql, _ in star)) == 1
    assert named[0] == named[1] == ('SELECT "id", "name" FROM "app_users"', [])


def test_select_alias_mapping(db: Database) -> None:
    sql, _ = db.select({"who": "name"}).from_("users").to_sql()

    assert sql == 'SELECT "name" AS "who" FROM "app_users"'


def test_empty_where_leaves_query_unfiltered(db: Database) -> None:
    sql, params = db.select().from_("users").where().where({}).to_sql()

    assert sql == 'SELECT * FROM "app_users"'
    assert params == []


def test_where_argument_forms(db: Database) -> None:
    sql, params = (
        db.select()
        .from_("users")
        .where({"team": "core", "age": 36})
        .where([("name", "ada"), ("id", ">=", 1)])
        .or_where("name", "LIKE", "g%")
        .to_sql()
    )

    assert sql == (
        'SELECT * FROM "app_users" WHERE "team" = ? AND "age" = ? AND "name" = ? AND "id" >= ? OR "name" LIKE ?'
    )
    assert params == ["core", 36, "ada", 1, "g%"]


def test_where_callable_opens_group(db: Database) -> None:
    query = db.select("name").from_("users").where("team", "core").where(
        lambda q: q.where("age", "<", 30).or_where("age", ">", 40)
    )

    sql, params = query.to_sql()

    assert sql == 'SELECT "name" FROM "app_users" WHERE "team" = ? AND ("age" < ? OR "age" > ?)'
    assert params == ["core", 30, 40]
    assert query.fetch_all() == [{"name": "alan"}]


def test_where_rejects_unknown_operator(db: Database) -> None:
    with pytest.raises(ValueError, match="Unsupported comparison operator"):
        db.select().from_("users").where("id", "===", 1)


def test_where_helpers(db: Database) -> None:
    sql, params = (
        db.select("id")
        .from_("users")
        .where_in("id", [1, 2])
        .where_not_in("team", [])
        .where_null("deleted")
        .where_not_null("name")
        .where_between("age", 20, 40)
        .where_raw("LENGTH(name) > ?", [2])
        .to_sql()
    )

    assert sql == (
        'SELECT "id" FROM "app_users" WHERE "id" IN (?, ?) AND 1 = 1 AND "deleted" IS NULL'
        ' AND "name" IS NOT NULL AND "age" BETWEEN ? AND ? AND LENGTH(name) > ?'
    )
    assert params == [1, 2, 20, 40, 2]


def test_where_with_subquery_builder(db: Database) -> None:
    buyers = db.select("user_id").from_("orders").where("total", ">", 100)

    query = db.select("name").from_("users").where("id", "IN", buyers).order_by("name")

    assert query.to_sql()[0] == (
        'SELECT "name" FROM "app_users" WHERE "id" IN '
        '(SELECT "user_id" FROM "app_orders" WHERE "total" > ?) ORDER BY "name" ASC'
    )
    assert [row["name"] for row in query.fetch_all()] == ["ada", "grace"]


def test_join_resolves_both_tables(db: Database) -> None:
    query = (
        db.select("u.name", Sql.sum("o.total", "spent"))
        .from_("users u")
        .join("orders o", "o.user_id", "=", "u.id")
        .group_by("u.name")
        .having(Raw("SUM(o.total) > ?", [250]))
        .order_by("spent", "desc")
    )

    sql, params = query.to_sql()

    assert sql == (
        'SELECT "u"."name", SUM("o"."total") AS "spent" FROM "app_users" AS "u"'
        ' INNER JOIN "app_orders" AS "o" ON "o"."user_id" = "u"."id"'
        ' GROUP BY "u"."name" HAVING SUM(o.total) > ? ORDER BY "spent" DESC'
    )
    assert params == [250]
    assert query.fetch_all() == [{"name": "grace", "spent": 300}]


def test_left_join_with_clause_callback(db: Database) -> None:
    query = (
        db.select("u.name")
        .from_("users", "u")
        .left_join("orders o", lambda join: join.on("o.user_id", "u.id").where("o.total", ">", 100))
        .where_null("o.id")
        .order_by("u.name")
    )

    assert [row["name"] for row in query.fetch_all()] == ["alan"]


def test_order_by_direction_is_normalized(db: Database) -> None:
    inline, _ = db.select("id").from_("users").order_by("age desc").to_sql()
    unknown, _ = db.select("id").from_("users").order_by("age", "sideways").to_sql()

    assert inline.endswith('ORDER BY "age" DESC')
    assert unknown.endswith('ORDER BY "age" ASC')


def test_limit_and_offset_are_clamped(db: Database) -> None:
    sql, _ = db.select().from_("users").limit(-5).offset(-2).to_sql()

    assert sql == 'SELECT * FROM "app_users" LIMIT 0'


def test_terminal_methods(db: Database) -> None:
    users = db.select().from_("users")

    assert len(users.fetch_all()) == 3
    assert db.select("name").from_("users").order_by("age").first() == {"name": "grace"}
    assert db.select().from_("users").where("id", 2).value("name") == "alan"
    assert db.select().from_("users").where("team", "core").count() == 2
    assert db.select().from_("users").where("team", "nobody").exists() is False
    assert db.select().from_("users").where("name", "ada").exists() is True
    assert db.select().from_("users").where("id", 99).first() is None


def test_count_wraps_grouped_and_distinct_queries(db: Database) -> None:
    grouped = db.select("team").from_("users").group_by("team")
    distinct = db.select("team").from_("users").distinct()

    assert grouped.count() == 2
    assert distinct.count() == 2
    assert db.select().from_("users").limit(1).count() == 1


def test_select_from_subquery(db: Database) -> None:
    inner = db.select("user_id", Sql.sum("total", "spent")).from_("orders").group_by("user_id")

    query = db.select("spent").from_(inner, "totals").where("spent", ">", 150).order_by("spent")

    assert query.to_sql()[0].startswith('SELECT "spent" FROM (SELECT "user_id", SUM("total") AS "spent"')
    assert query.fetch_all() == [{"spent": 200}, {"spent": 300}]


def test_select_raw(db: Database) -> None:
    query = db.select_raw("COUNT(*) AS n, ? AS label", ["x"]).from_("users")

    assert query.first() == {"n": 3, "label": "x"}


def test_insert_ignore_skips_duplicates(db: Database) -> None:
    result = db.insert("users").values({"name": "ada", "age": 1, "team": "x"}).ignore().execute()

    assert result.row_count == 0
    assert db.select().from_("users").count() == 3


def test_insert_reports_last_insert_id(db: Database) -> None:
    result = db.insert("users").values({"name": "linus", "age": 54, "team": "kernel"}).execute()

    assert result.last_insert_id == "4"
    assert db.last_insert_id() == "4"


def test_insert_requires_rows(db: Database) -> None:
    with pytest.raises(ValueError):
        db.insert("users").values([{}])


def test_update_and_increment(db: Database) -> None:
    updated = db.update("users").set({"team": "infra"}).where("team", "ops").execute()
    db.update("users").increment("age", 2).where("id", 1).execute()

    assert updated.row_count == 1
    assert db.select().from_("users").where("id", 1).value("age") == 38
    assert db.update("users").set("age", 1).where("id", 1).to_sql() == (
        'UPDATE "app_users" SET "age" = ? WHERE "id" = ?',
        [1, 1],
    )


def test_delete(db: Database) -> None:
    result = db.delete("orders").where("user_id", 1).execute()

    assert result.row_count == 2
    assert db.select().from_("orders").count() == 1


def test_unfiltered_write_logs_warning(db: Database, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="dbkit"):
        db.delete("orders").execute()

    assert "no WHERE clause" in caplog.text


def test_execution_errors_carry_sql_and_bindings(db: Database) -> None:
    with pytest.raises(DatabaseError) as excinfo:
        db.select().from_("missing").where("id", 5).fetch_all()

    assert excinfo.value.get_query() == 'SELECT * FROM "app_missing" WHERE "id" = ?'
    assert excinfo.value.get_bindings() == [5]


def test_cached_select_is_invalidated_by_writes(db: Database) -> None:
    cache = db.manager.set_cache(MemoryCache())

    def query():  # type: ignore[no-untyped-def]
        return db.select("name").from_("users").where("team", "core").cache(60)

    assert len(query().fetch_all()) == 2
    assert len(query().fetch_all()) == 2
    assert (cache.hits, cache.misses) == (1, 1)

    db.insert("users").values({"name": "linus", "age": 54, "team": "core"}).execute()

    assert len(query().fetch_all()) == 3
    assert (cache.hits, cache.misses) == (1, 2)


def test_uncached_select_skips_cache(db: Database) -> None:
    cache = db.manager.set_cache(MemoryCache())

    db.select().from_("users").cache().no_cache().fetch_all()
    db.select().from_("users").fetch_all()

    assert (cache.hits, cache.misses) == (0, 0)


def test_cache_without_auto_save(db: Database) -> None:
    cache = db.manager.set_cache(MemoryCache())
    query = db.select().from_("users").cache(auto_save=False)

    result = query.execute()
    query.execute()
    assert cache.hits == 0

    assert query.save_cache(result)
    query.execute()
    assert cache.hits == 1


def test_rolled_back_rows_never_reach_the_cache(db: Database) -> None:
    cache = db.manager.set_cache(MemoryCache())

    db.begin_transaction()
    db.insert("users").values({"name": "ghost", "age": 1, "team": "none"}).execute()
    inside = db.select("name").from_("users").where("team", "none").cache().fetch_all()
    db.rollback()

    assert inside == [{"name": "ghost"}]
    assert db.select("name").from_("users").where("team", "none").cache().fetch_all() == []
    assert (cache.hits, cache.misses) == (0, 1)


def test_where_in_accepts_select_builder(db: Database) -> None:
    buyers = db.select("user_id").from_("orders")

    query = db.select("name").from_("users").where_in("id", buyers).order_by("name")

    assert query.to_sql()[0] == (
        'SELECT "name" FROM "app_users" WHERE "id" IN (SELECT "user_id" FROM "app_orders") ORDER BY "name" ASC'
    )
    assert [row["name"] for row in query.fetch_all()] == ["ada", "grace"]
    assert db.select("name").from_("users").where_not_in("id", buyers).fetch_all() == [{"name": "alan"}]
