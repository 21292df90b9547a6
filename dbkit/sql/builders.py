"""Dialect SQL builders: ``QueryDescriptor`` in, ``(sql, params)`` out."""

from __future__ import annotations

import re
from typing import Any, Callable, ClassVar, Sequence

from ..dialects import Dialect
from .descriptor import (
    BetweenCondition,
    Condition,
    ConditionGroup,
    ConditionNode,
    Join,
    JoinType,
    Operation,
    QueryDescriptor,
    RawCondition,
    TableRef,
)
from .expressions import Column, ColumnSpec, Func, Raw, Value
from .functions import FunctionBuilder, function_builder_for

# Stands in for a positional parameter until the statement is finalized.
_MARK = "\x00"

_ALIAS_SPLIT = re.compile(r"\s+as\s+", re.IGNORECASE)
_QUOTES = "'\"`"

MYSQL_MAX_ROWS = 18446744073709551615


def mark_placeholders(sql: str) -> str:
    """Replace ``?`` outside quoted literals with the internal parameter marker."""

    out: list[str] = []
    quote: str | None = None
    for char in sql:
        if quote is not None:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == "?":
            out.append(_MARK)
            continue
        out.append(char)
    return "".join(out)


class SqlBuilder:
    """Renders descriptors for one dialect.

    Quoting, placeholder style, paging and insert-ignore syntax are class
    level hooks; the rendering walk itself is shared.
    """

    dialect: ClassVar[Dialect]
    quote_open: ClassVar[str] = '"'
    quote_close: ClassVar[str] = '"'
    # "qmark", "format" or "numeric"
    paramstyle: ClassVar[str] = "qmark"
    _database_lookup: ClassVar[str] = "SELECT 1 FROM pragma_database_list WHERE name = ?"

    def __init__(self) -> None:
        self.functions: FunctionBuilder = function_builder_for(self.dialect)
        self._compilers: dict[Operation, Callable[[QueryDescriptor, list[Any]], str]] = {
            Operation.SELECT: self._compile_select,
            Operation.INSERT: self._compile_insert,
            Operation.UPDATE: self._compile_update,
            Operation.DELETE: self._compile_delete,
        }

    def build(self, descriptor: QueryDescriptor) -> tuple[str, list[Any]]:
        """Return the statement text and its ordered parameters."""

        params: list[Any] = []
        sql = self._compile(descriptor, params)
        return self._finalize(sql, params), params

    def compile_raw(self, sql: str, bindings: Sequence[Any] = ()) -> tuple[str, list[Any]]:
        """Convert hand-written SQL using ``?`` bindings into this dialect's style."""

        params = list(bindings)
        return self._finalize(mark_placeholders(sql), params), params

    def database_exists_query(self, name: str) -> tuple[str, list[Any]]:
        """Statement returning a row when the server has a database called ``name``."""

        return self.compile_raw(self._database_lookup, [name])

    def placeholder(self, index: int) -> str:
        return "?"

    def quote_identifier(self, name: str) -> str:
        """Quote a possibly qualified and aliased identifier.

        Strings containing parentheses are treated as SQL expressions and are
        emitted unchanged.
        """

        name = name.strip()
        if name == "*":
            return name
        parts = _ALIAS_SPLIT.split(name)
        if len(parts) == 2:
            return f"{self.quote_identifier(parts[0])} AS {self._quote_part(parts[1])}"
        if "(" in name:
            return name
        return ".".join("*" if part == "*" else self._quote_part(part) for part in name.split("."))

    def _quote_part(self, part: str) -> str:
        part = part.strip().strip('`"[]')
        escaped = part.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    # Dialect hooks

    def _top(self, descriptor: QueryDescriptor) -> str | None:
        return None

    def _paging(self, descriptor: QueryDescriptor) -> list[str]:
        clauses: list[str] = []
        if descriptor.limit is not None:
            clauses.append(f"LIMIT {descriptor.limit}")
        if descriptor.offset:
            if descriptor.limit is None:
                clauses.append(self._offset_without_limit(descriptor.offset))
            else:
                clauses.append(f"OFFSET {descriptor.offset}")
        return clauses

    def _offset_without_limit(self, offset: int) -> str:
        return f"OFFSET {offset}"

    def _insert_verb(self, descriptor: QueryDescriptor) -> str:
        return "INSERT INTO"

    def _insert_suffix(self, descriptor: QueryDescriptor) -> list[str]:
        return []

    def _write_top(self, descriptor: QueryDescriptor) -> str | None:
        return None

    def _write_tail(self, descriptor: QueryDescriptor, params: list[Any]) -> list[str]:
        # UPDATE/DELETE ordering and limits are ignored unless a dialect supports them.
        return []

    # Statement compilers

    def _compile(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        return self._compilers[descriptor.operation](descriptor, params)

    def _compile_select(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        parts = ["SELECT"]
        if descriptor.distinct:
            parts.append("DISTINCT")
        top = self._top(descriptor)
        if top:
            parts.append(top)
        parts.append(self._columns(descriptor.columns, params))
        if descriptor.table is not None:
            parts.append(f"FROM {self._table(descriptor.table, params)}")
        for join in descriptor.joins:
            parts.append(self._join(join, params))
        where = self._conditions(descriptor.conditions, params)
        if where:
            parts.append(f"WHERE {where}")
        if descriptor.groups:
            parts.append("GROUP BY " + ", ".join(self._operand(group, params) for group in descriptor.groups))
        having = self._conditions(descriptor.havings, params)
        if having:
            parts.append(f"HAVING {having}")
        order = self._order_by(descriptor, params)
        if order:
            parts.append(order)
        parts.extend(self._paging(descriptor))
        return " ".join(parts)

    def _compile_insert(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        if not descriptor.rows:
            raise ValueError("INSERT requires at least one row of values")
        columns = [column for column, _ in descriptor.rows[0]]
        tuples: list[str] = []
        for row in descriptor.rows:
            if [column for column, _ in row] != columns:
                raise ValueError("Every inserted row must provide the same columns")
            tuples.append("(" + ", ".join(self._value(value, params) for _, value in row) + ")")
        parts = [
            self._insert_verb(descriptor),
            self._table_name(descriptor.table),
            "(" + ", ".join(self.quote_identifier(column) for column in columns) + ")",
            "VALUES",
            ", ".join(tuples),
        ]
        parts.extend(self._insert_suffix(descriptor))
        return " ".join(parts)

    def _compile_update(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        if not descriptor.assignments:
            raise ValueError("UPDATE requires at least one column assignment")
        parts = ["UPDATE"]
        top = self._write_top(descriptor)
        if top:
            parts.append(top)
        parts.append(self._table_name(descriptor.table))
        assignments = ", ".join(
            f"{self.quote_identifier(column)} = {self._value(value, params)}"
            for column, value in descriptor.assignments
        )
        parts.append(f"SET {assignments}")
        where = self._conditions(descriptor.conditions, params)
        if where:
            parts.append(f"WHERE {where}")
        parts.extend(self._write_tail(descriptor, params))
        return " ".join(parts)

    def _compile_delete(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        parts = ["DELETE"]
        top = self._write_top(descriptor)
        if top:
            parts.append(top)
        parts.append(f"FROM {self._table_name(descriptor.table)}")
        where = self._conditions(descriptor.conditions, params)
        if where:
            parts.append(f"WHERE {where}")
        parts.extend(self._write_tail(descriptor, params))
        return " ".join(parts)

    # Fragments

    def _columns(self, spec: ColumnSpec, params: list[Any]) -> str:
        if spec.is_all:
            return "*"
        return ", ".join(self._select_item(item, params) for item in spec.items)

    def _select_item(self, item: Any, params: list[Any]) -> str:
        if isinstance(item, Func):
            rendered = self._func(item, params)
            if item.alias:
                return f"{rendered} AS {self._quote_part(item.alias)}"
            return rendered
        return self._operand(item, params)

    def _table_name(self, ref: TableRef | None) -> str:
        if ref is None or not ref.name:
            raise ValueError("Statement has no target table")
        return self.quote_identifier(ref.name)

    def _table(self, ref: TableRef, params: list[Any]) -> str:
        if ref.subquery is not None:
            return f"({self._compile(ref.subquery, params)}) AS {self._quote_part(ref.alias or 'sub')}"
        rendered = self.quote_identifier(ref.name)
        if ref.alias:
            return f"{rendered} AS {self._quote_part(ref.alias)}"
        return rendered

    def _join(self, join: Join, params: list[Any]) -> str:
        table = self._table(join.table, params)
        if join.kind is JoinType.CROSS or not join.conditions:
            return f"{join.kind.value} JOIN {table}"
        return f"{join.kind.value} JOIN {table} ON {self._conditions(join.conditions, params)}"

    def _order_by(self, descriptor: QueryDescriptor, params: list[Any]) -> str:
        if not descriptor.orders:
            return ""
        return "ORDER BY " + ", ".join(
            f"{self._operand(order.column, params)} {order.direction}" for order in descriptor.orders
        )

    def _conditions(self, nodes: Sequence[ConditionNode], params: list[Any]) -> str:
        rendered: list[str] = []
        for node in nodes:
            sql = self._condition(node, params)
            if not sql:
                continue
            rendered.append(sql if not rendered else f"{node.boolean} {sql}")
        return " ".join(rendered)

    def _condition(self, node: ConditionNode, params: list[Any]) -> str:
        if isinstance(node, Condition):
            return self._comparison(node, params)
        if isinstance(node, BetweenCondition):
            column = self._operand(node.column, params)
            low = self._value(node.low, params)
            high = self._value(node.high, params)
            keyword = "NOT BETWEEN" if node.negate else "BETWEEN"
            return f"{column} {keyword} {low} AND {high}"
        if isinstance(node, RawCondition):
            return self._raw(node.sql, node.bindings, params)
        if isinstance(node, ConditionGroup):
            inner = self._conditions(node.conditions, params)
            return f"({inner})" if inner else ""
        raise TypeError(f"Unsupported condition: {node!r}")

    def _comparison(self, node: Condition, params: list[Any]) -> str:
        column = self._operand(node.column, params)
        operator = node.operator.upper()
        value = node.value
        if value is None:
            if operator in ("=", "IS"):
                return f"{column} IS NULL"
            if operator in ("!=", "<>", "IS NOT"):
                return f"{column} IS NOT NULL"
            raise ValueError(f"Operator {operator} cannot compare against NULL")
        if isinstance(value, (list, tuple)):
            negate = operator in ("!=", "<>", "NOT IN")
            if not value:
                return "1 = 1" if negate else "1 = 0"
            items = ", ".join(self._value(item, params) for item in value)
            return f"{column} {'NOT IN' if negate else 'IN'} ({items})"
        return f"{column} {operator} {self._value(value, params)}"

    def _operand(self, value: Any, params: list[Any]) -> str:
        """Render something in column position; bare strings are identifiers."""

        if isinstance(value, str):
            return self.quote_identifier(value)
        if isinstance(value, Column):
            return self.quote_identifier(value.name)
        return self._value(value, params)

    def _value(self, value: Any, params: list[Any]) -> str:
        """Render something in value position; plain values become parameters."""

        if isinstance(value, Column):
            return self.quote_identifier(value.name)
        if isinstance(value, Raw):
            return self._raw(value.sql, value.bindings, params)
        if isinstance(value, Func):
            return self._func(value, params)
        if isinstance(value, QueryDescriptor):
            return f"({self._compile(value, params)})"
        if isinstance(value, Value):
            value = value.value
        if value is None:
            return "NULL"
        params.append(value)
        return _MARK

    def _func(self, func: Func, params: list[Any]) -> str:
        args = [self._operand(arg, params) for arg in func.args]
        return self.functions.render(func, args)

    def _raw(self, sql: str, bindings: Sequence[Any], params: list[Any]) -> str:
        marked = mark_placeholders(sql)
        if marked.count(_MARK) != len(bindings):
            raise ValueError(f"Raw SQL expects {marked.count(_MARK)} binding(s), got {len(bindings)}: {sql}")
        params.extend(bindings)
        return marked

    def _finalize(self, sql: str, params: Sequence[Any]) -> str:
        pieces = sql.split(_MARK)
        if len(pieces) - 1 != len(params):
            raise ValueError(f"Statement expects {len(pieces) - 1} parameter(s), got {len(params)}")
        escape = self.paramstyle == "format" and bool(params)
        out = [pieces[0].replace("%", "%%") if escape else pieces[0]]
        for index, piece in enumerate(pieces[1:], start=1):
            out.append(self.placeholder(index))
            out.append(piece.replace("%", "%%") if escape else piece)
        return "".join(out)


class MySQLSqlBuilder(SqlBuilder):
    dialect = Dialect.MYSQL
    quote_open = "`"
    quote_close = "`"
    paramstyle = "format"
    _database_lookup = "SELECT 1 FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = ?"

    def placeholder(self, index: int) -> str:
        return "%s"

    def _paging(self, descriptor: QueryDescriptor) -> list[str]:
        limit, offset = descriptor.limit, descriptor.offset
        if limit is None and not offset:
            return []
        if not offset:
            return [f"LIMIT {limit}"]
        return [f"LIMIT {offset}, {limit if limit is not None else MYSQL_MAX_ROWS}"]

    def _insert_verb(self, descriptor: QueryDescriptor) -> str:
        return "INSERT IGNORE INTO" if descriptor.ignore else "INSERT INTO"

    def _write_tail(self, descriptor: QueryDescriptor, params: list[Any]) -> list[str]:
        clauses: list[str] = []
        order = self._order_by(descriptor, params)
        if order:
            clauses.append(order)
        if descriptor.limit is not None:
            clauses.append(f"LIMIT {descriptor.limit}")
        return clauses


class PostgresSqlBuilder(SqlBuilder):
    dialect = Dialect.POSTGRESQL
    paramstyle = "numeric"
    _database_lookup = "SELECT 1 FROM pg_database WHERE datname = ?"

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def _insert_suffix(self, descriptor: QueryDescriptor) -> list[str]:
        return ["ON CONFLICT DO NOTHING"] if descriptor.ignore else []


class SQLiteSqlBuilder(SqlBuilder):
    dialect = Dialect.SQLITE

    def _offset_without_limit(self, offset: int) -> str:
        return f"LIMIT -1 OFFSET {offset}"

    def _insert_verb(self, descriptor: QueryDescriptor) -> str:
        return "INSERT OR IGNORE INTO" if descriptor.ignore else "INSERT INTO"


class SqlServerSqlBuilder(SqlBuilder):
    dialect = Dialect.SQLSERVER
    quote_open = "["
    quote_close = "]"
    paramstyle = "format"
    _database_lookup = "SELECT 1 FROM sys.databases WHERE name = ?"

    def placeholder(self, index: int) -> str:
        return "%s"

    def _top(self, descriptor: QueryDescriptor) -> str | None:
        if descriptor.limit is not None and not descriptor.offset:
            return f"TOP {descriptor.limit}"
        return None

    def _paging(self, descriptor: QueryDescriptor) -> list[str]:
        if not descriptor.offset:
            return []
        clauses: list[str] = []
        if not descriptor.orders:
            if descriptor.distinct:
                raise ValueError("SQL Server paging of a DISTINCT query requires order_by()")
            clauses.append("ORDER BY (SELECT NULL)")
        clauses.append(f"OFFSET {descriptor.offset} ROWS")
        if descriptor.limit is not None:
            clauses.append(f"FETCH NEXT {descriptor.limit} ROWS ONLY")
        return clauses

    def _insert_verb(self, descriptor: QueryDescriptor) -> str:
        if descriptor.ignore:
            raise ValueError("SQL Server does not support INSERT IGNORE")
        return "INSERT INTO"

    def _write_top(self, descriptor: QueryDescriptor) -> str | None:
        if descriptor.limit is not None:
            return f"TOP ({descriptor.limit})"
        return None


_SQL_BUILDERS: dict[Dialect, type[SqlBuilder]] = {
    Dialect.MYSQL: MySQLSqlBuilder,
    Dialect.POSTGRESQL: PostgresSqlBuilder,
    Dialect.SQLITE: SQLiteSqlBuilder,
    Dialect.SQLSERVER: SqlServerSqlBuilder,
}

if set(_SQL_BUILDERS) != set(Dialect):  # pragma: no cover - import-time guard
    raise RuntimeError("Every dialect needs a SQL builder")


def sql_builder_for(dialect: Dialect) -> SqlBuilder:
    """Return the builder for ``dialect``."""

    return _SQL_BUILDERS[Dialect(dialect)]()


__all__ = [
    "MySQLSqlBuilder",
    "PostgresSqlBuilder",
    "SQLiteSqlBuilder",
    "SqlBuilder",
    "SqlServerSqlBuilder",
    "mark_placeholders",
    "sql_builder_for",
]
