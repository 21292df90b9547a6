"""Fluent query builders that accumulate a ``QueryDescriptor`` and run it."""

from __future__ import annotations

import dataclasses
import re
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Iterable, Mapping, Self, Sequence

from .result import Result
from .sql import (
    BetweenCondition,
    Column,
    ColumnSpec,
    Condition,
    ConditionGroup,
    Func,
    Join,
    JoinType,
    Operation,
    Order,
    QueryDescriptor,
    Raw,
    RawCondition,
    TableRef,
)
from .sql.descriptor import OPERATORS, ConditionNode

if TYPE_CHECKING:
    from .connection import Connection

_TABLE_ALIAS = re.compile(r"^\s*(\S+)\s+(?:as\s+)?(\S+)\s*$", re.IGNORECASE)
_ORDER_SUFFIX = re.compile(r"^(.*\S)\s+(asc|desc)$", re.IGNORECASE)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, SelectBuilder):
        return value.descriptor()
    if isinstance(value, (set, frozenset)):
        return tuple(sorted(value, key=repr))
    if isinstance(value, list):
        return tuple(value)
    return value


def _in_values(values: Any) -> Any:
    if isinstance(values, SelectBuilder):
        return values.descriptor()
    return _normalize_value(list(values))


def _normalize_operator(operator: Any) -> str:
    op = " ".join(str(operator).split()).upper()
    if op not in OPERATORS:
        raise ValueError(f"Unsupported comparison operator: {operator!r}")
    return op


def _split_alias(table: str, alias: str | None) -> tuple[str, str | None]:
    if alias is None:
        match = _TABLE_ALIAS.match(table)
        if match:
            return match.group(1), match.group(2)
    return table.strip(), alias


class ConditionCollector:
    """WHERE-style condition accumulation shared by builders and nested groups."""

    def __init__(self) -> None:
        self._conditions: list[ConditionNode] = []

    @property
    def conditions(self) -> tuple[ConditionNode, ...]:
        return tuple(self._conditions)

    def where(self, *args: Any) -> Self:
        """Add AND conditions.

        Accepted forms: ``where(column, value)``, ``where(column, operator, value)``,
        ``where({column: value, ...})``, ``where([(column, value), ...])``,
        ``where(raw_sql)``, ``where(Raw(...))`` and ``where(callable)`` for a
        parenthesized group. ``where()`` with nothing adds no condition.
        """

        self._conditions.extend(_parse_conditions(args, "AND"))
        return self

    def or_where(self, *args: Any) -> Self:
        self._conditions.extend(_parse_conditions(args, "OR"))
        return self

    def where_in(self, column: Any, values: Iterable[Any] | SelectBuilder, *, boolean: str = "AND") -> Self:
        self._conditions.append(Condition(column, "IN", _in_values(values), boolean))
        return self

    def where_not_in(self, column: Any, values: Iterable[Any] | SelectBuilder, *, boolean: str = "AND") -> Self:
        self._conditions.append(Condition(column, "NOT IN", _in_values(values), boolean))
        return self

    def where_null(self, column: Any, *, boolean: str = "AND") -> Self:
        self._conditions.append(Condition(column, "IS", None, boolean))
        return self

    def where_not_null(self, column: Any, *, boolean: str = "AND") -> Self:
        self._conditions.append(Condition(column, "IS NOT", None, boolean))
        return self

    def where_between(self, column: Any, low: Any, high: Any, *, boolean: str = "AND") -> Self:
        self._conditions.append(BetweenCondition(column, low, high, False, boolean))
        return self

    def where_not_between(self, column: Any, low: Any, high: Any, *, boolean: str = "AND") -> Self:
        self._conditions.append(BetweenCondition(column, low, high, True, boolean))
        return self

    def where_raw(self, sql: str, bindings: Sequence[Any] = (), *, boolean: str = "AND") -> Self:
        self._conditions.append(RawCondition(sql, tuple(bindings), boolean))
        return self

    def where_column(self, first: str, operator: str, second: str | None = None, *, boolean: str = "AND") -> Self:
        if second is None:
            operator, second = "=", operator
        self._conditions.append(Condition(first, _normalize_operator(operator), Column(second), boolean))
        return self


def _parse_conditions(args: Sequence[Any], boolean: str) -> list[ConditionNode]:
    if not args:
        return []
    if len(args) == 1:
        return _parse_single(args[0], boolean)
    if len(args) == 2:
        column, value = args
        return [Condition(column, "=", _normalize_value(value), boolean)]
    if len(args) == 3:
        column, operator, value = args
        return [Condition(column, _normalize_operator(operator), _normalize_value(value), boolean)]
    raise TypeError(f"where() takes at most 3 arguments ({len(args)} given)")


def _parse_single(arg: Any, boolean: str) -> list[ConditionNode]:
    if arg is None:
        return []
    if isinstance(arg, str):
        return [RawCondition(arg, (), boolean)] if arg.strip() else []
    if isinstance(arg, Raw):
        return [RawCondition(arg.sql, arg.bindings, boolean)]
    if isinstance(arg, Mapping):
        return [Condition(column, "=", _normalize_value(value), boolean) for column, value in arg.items()]
    if isinstance(arg, (list, tuple)):
        nodes: list[ConditionNode] = []
        for item in arg:
            if not isinstance(item, (list, tuple)):
                raise TypeError(f"Condition lists must contain tuples, got {item!r}")
            nodes.extend(_parse_conditions(tuple(item), boolean))
        return nodes
    if callable(arg):
        group = ConditionCollector()
        arg(group)
        return [ConditionGroup(group.conditions, boolean)] if group.conditions else []
    raise TypeError(f"Unsupported where() argument: {arg!r}")


class JoinClause(ConditionCollector):
    """ON conditions of a join; ``on`` compares two columns."""

    def on(self, first: str, operator: str, second: str | None = None) -> JoinClause:
        return self.where_column(first, operator, second)

    def or_on(self, first: str, operator: str, second: str | None = None) -> JoinClause:
        return self.where_column(first, operator, second, boolean="OR")


class QueryBuilder(ConditionCollector):
    """Base of the statement builders; bound to one ``Connection``."""

    operation: ClassVar[Operation]

    def __init__(self, connection: Connection, table: str | None = None, alias: str | None = None) -> None:
        super().__init__()
        self._connection = connection
        self._table: tuple[str, str | None] | None = None
        self._orders: list[Order] = []
        self._limit: int | None = None
        self._offset: int | None = None
        if table is not None:
            self._set_table(table, alias)

    @property
    def connection(self) -> Connection:
        return self._connection

    def order_by(self, column: Any, direction: str = "ASC") -> Self:
        if isinstance(column, str) and direction.upper() == "ASC":
            match = _ORDER_SUFFIX.match(column.strip())
            if match:
                column, direction = match.group(1), match.group(2)
        normalized = str(direction).strip().upper()
        self._orders.append(Order(column, normalized if normalized in ("ASC", "DESC") else "ASC"))
        return self

    def limit(self, count: int, offset: int | None = None) -> Self:
        self._limit = max(0, int(count))
        if offset is not None:
            self.offset(offset)
        return self

    def offset(self, count: int) -> Self:
        self._offset = max(0, int(count))
        return self

    def descriptor(self) -> QueryDescriptor:
        """Snapshot of the accumulated intent with physical table names."""

        raise NotImplementedError

    def to_sql(self) -> tuple[str, list[Any]]:
        return self._connection.sql_builder.build(self.descriptor())

    def get_bindings(self) -> list[Any]:
        return self.to_sql()[1]

    def _set_table(self, table: str, alias: str | None) -> None:
        name, alias = _split_alias(table, alias)
        if not name:
            raise ValueError("Table name must not be empty")
        self._table = (name, alias)

    def _table_ref(self) -> TableRef | None:
        if self._table is None:
            return None
        logical, alias = self._table
        return TableRef(self._connection.table_name(logical), alias)

    def _warn_unfiltered(self, verb: str) -> None:
        if not self._conditions:
            self._connection.logger.warning(
                "%s statement has no WHERE clause and affects every row.",
                verb,
                extra={"connection": self._connection.name, "table": self._table[0] if self._table else None},
            )


class SelectBuilder(QueryBuilder):
    operation = Operation.SELECT

    def __init__(self, connection: Connection, columns: ColumnSpec | None = None) -> None:
        super().__init__(connection)
        self._columns = columns or ColumnSpec.all()
        self._distinct = False
        self._subquery: tuple[QueryDescriptor, str] | None = None
        self._joins: list[tuple[JoinType, str, str | None, tuple[ConditionNode, ...]]] = []
        self._groups: list[Any] = []
        self._having = ConditionCollector()
        self._use_cache = False
        self._cache_ttl: int | None = None
        self._auto_save = True

    def select(self, *columns: Any) -> SelectBuilder:
        self._columns = ColumnSpec.of(*columns)
        return self

    def add_select(self, *columns: Any) -> SelectBuilder:
        self._columns = self._columns.extend(*columns)
        return self

    def select_raw(self, sql: str, bindings: Sequence[Any] = ()) -> SelectBuilder:
        return self.add_select(Raw(sql, bindings))

    def distinct(self, flag: bool = True) -> SelectBuilder:
        self._distinct = flag
        return self

    def from_(self, table: str | SelectBuilder, alias: str | None = None) -> SelectBuilder:
        if isinstance(table, SelectBuilder):
            self._subquery = (table.descriptor(), alias or "sub")
            self._table = None
        else:
            self._subquery = None
            self._set_table(table, alias)
        return self

    def join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
        *,
        kind: JoinType | str = JoinType.INNER,
        alias: str | None = None,
    ) -> SelectBuilder:
        """Join ``table`` on ``first operator second`` or on a ``JoinClause`` callback."""

        name, alias = _split_alias(table, alias)
        clause = JoinClause()
        if callable(first):
            first(clause)
        elif first is not None:
            if operator is None:
                raise ValueError("join() needs both columns of the ON condition")
            clause.on(first, operator, second)
        self._joins.append((JoinType(str(getattr(kind, "value", kind)).upper()), name, alias, clause.conditions))
        return self

    def inner_join(self, table: str, *args: Any, **kwargs: Any) -> SelectBuilder:
        return self.join(table, *args, kind=JoinType.INNER, **kwargs)

    def left_join(self, table: str, *args: Any, **kwargs: Any) -> SelectBuilder:
        return self.join(table, *args, kind=JoinType.LEFT, **kwargs)

    def right_join(self, table: str, *args: Any, **kwargs: Any) -> SelectBuilder:
        return self.join(table, *args, kind=JoinType.RIGHT, **kwargs)

    def cross_join(self, table: str, alias: str | None = None) -> SelectBuilder:
        return self.join(table, kind=JoinType.CROSS, alias=alias)

    def group_by(self, *columns: Any) -> SelectBuilder:
        for column in columns:
            if isinstance(column, (list, tuple)):
                self._groups.extend(column)
            else:
                self._groups.append(column)
        return self

    def having(self, *args: Any) -> SelectBuilder:
        self._having.where(*args)
        return self

    def or_having(self, *args: Any) -> SelectBuilder:
        self._having.or_where(*args)
        return self

    def cache(self, ttl: int | None = None, *, auto_save: bool = True) -> SelectBuilder:
        """Serve this query from the shared cache when possible.

        With ``auto_save=False`` misses are not stored; call ``save_cache``.
        """

        self._use_cache = True
        self._cache_ttl = ttl
        self._auto_save = auto_save
        return self

    def no_cache(self) -> SelectBuilder:
        self._use_cache = False
        self._cache_ttl = None
        self._auto_save = True
        return self

    def save_cache(self, result: Result) -> bool:
        return self._connection.save_to_cache(self.descriptor(), result, self._cache_ttl)

    def descriptor(self) -> QueryDescriptor:
        if self._subquery is not None:
            table: TableRef | None = TableRef(alias=self._subquery[1], subquery=self._subquery[0])
        else:
            table = self._table_ref()
        joins = tuple(
            Join(kind, TableRef(self._connection.table_name(name), alias), conditions)
            for kind, name, alias, conditions in self._joins
        )
        return QueryDescriptor(
            operation=Operation.SELECT,
            table=table,
            columns=self._columns,
            distinct=self._distinct,
            conditions=self.conditions,
            joins=joins,
            groups=tuple(self._groups),
            havings=self._having.conditions,
            orders=tuple(self._orders),
            limit=self._limit,
            offset=self._offset,
        )

    def execute(self) -> Result:
        return self._run(self.descriptor())

    def fetch_all(self) -> list[dict[str, Any]]:
        return self.execute().fetch_all()

    def first(self) -> dict[str, Any] | None:
        return self._run(dataclasses.replace(self.descriptor(), limit=1)).first()

    def value(self, column: Any | None = None) -> Any:
        """First column of the first row, optionally selecting ``column`` only."""

        descriptor = dataclasses.replace(self.descriptor(), limit=1)
        if column is not None:
            descriptor = dataclasses.replace(descriptor, columns=ColumnSpec.of(column))
        return self._run(descriptor).scalar()

    def count(self, column: Any = "*") -> int:
        descriptor = self.descriptor()
        aggregate = Func("count", (column,), alias="aggregate")
        if descriptor.groups or descriptor.distinct or descriptor.limit is not None or descriptor.offset:
            inner = dataclasses.replace(descriptor, orders=())
            counted = QueryDescriptor(
                operation=Operation.SELECT,
                table=TableRef(alias="aggregate_table", subquery=inner),
                columns=ColumnSpec((Func("count", ("*",), alias="aggregate"),)),
            )
        else:
            counted = dataclasses.replace(
                descriptor, columns=ColumnSpec((aggregate,)), orders=(), limit=None, offset=None
            )
        return int(self._run(counted).scalar() or 0)

    def exists(self) -> bool:
        descriptor = dataclasses.replace(self.descriptor(), columns=ColumnSpec((Raw("1"),)), limit=1)
        return not self._run(descriptor).is_empty()

    def _run(self, descriptor: QueryDescriptor) -> Result:
        return self._connection.select(
            descriptor,
            use_cache=self._use_cache,
            ttl=self._cache_ttl,
            save_cache=self._auto_save,
        )


class InsertBuilder(QueryBuilder):
    operation = Operation.INSERT

    def __init__(self, connection: Connection, table: str) -> None:
        super().__init__(connection, table)
        self._rows: list[tuple[tuple[str, Any], ...]] = []
        self._ignore = False

    def values(self, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> InsertBuilder:
        """Add one row (a mapping) or several rows (an iterable of mappings)."""

        batch = [rows] if isinstance(rows, Mapping) else list(rows)
        for row in batch:
            if not isinstance(row, Mapping) or not row:
                raise ValueError("Each inserted row must be a non-empty mapping")
            self._rows.append(tuple((str(column), _normalize_value(value)) for column, value in row.items()))
        return self

    def ignore(self, flag: bool = True) -> InsertBuilder:
        self._ignore = flag
        return self

    def descriptor(self) -> QueryDescriptor:
        return QueryDescriptor(
            operation=Operation.INSERT,
            table=self._table_ref(),
            rows=tuple(self._rows),
            ignore=self._ignore,
        )

    def execute(self) -> Result:
        return self._connection.write(self.descriptor())


class UpdateBuilder(QueryBuilder):
    operation = Operation.UPDATE

    def __init__(self, connection: Connection, table: str) -> None:
        super().__init__(connection, table)
        self._assignments: dict[str, Any] = {}

    def set(self, column: str | Mapping[str, Any], value: Any = None) -> UpdateBuilder:
        """Assign ``column = value`` or every pair of a mapping."""

        pairs = column.items() if isinstance(column, Mapping) else [(column, value)]
        for name, assigned in pairs:
            self._assignments[str(name)] = _normalize_value(assigned)
        return self

    def increment(self, column: str, amount: int | float = 1) -> UpdateBuilder:
        quoted = self._connection.sql_builder.quote_identifier(column)
        return self.set(column, Raw(f"{quoted} + ?", (amount,)))

    def decrement(self, column: str, amount: int | float = 1) -> UpdateBuilder:
        quoted = self._connection.sql_builder.quote_identifier(column)
        return self.set(column, Raw(f"{quoted} - ?", (amount,)))

    def descriptor(self) -> QueryDescriptor:
        return QueryDescriptor(
            operation=Operation.UPDATE,
            table=self._table_ref(),
            assignments=tuple(self._assignments.items()),
            conditions=self.conditions,
            orders=tuple(self._orders),
            limit=self._limit,
        )

    def execute(self) -> Result:
        self._warn_unfiltered("UPDATE")
        return self._connection.write(self.descriptor())


class DeleteBuilder(QueryBuilder):
    operation = Operation.DELETE

    def __init__(self, connection: Connection, table: str) -> None:
        super().__init__(connection, table)

    def descriptor(self) -> QueryDescriptor:
        return QueryDescriptor(
            operation=Operation.DELETE,
            table=self._table_ref(),
            conditions=self.conditions,
            orders=tuple(self._orders),
            limit=self._limit,
        )

    def execute(self) -> Result:
        self._warn_unfiltered("DELETE")
        return self._connection.write(self.descriptor())


__all__ = [
    "ConditionCollector",
    "DeleteBuilder",
    "InsertBuilder",
    "JoinClause",
    "QueryBuilder",
    "SelectBuilder",
    "UpdateBuilder",
]
