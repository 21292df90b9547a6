"""Per-dialect SQL function rendering and the ``Sql`` expression factory."""

from __future__ import annotations

from typing import Any, ClassVar, Iterable, Sequence

from ..dialects import Dialect
from .expressions import Column, Func, Raw, Value

FUNCTION_NAMES = frozenset(
    {
        "count",
        "sum",
        "avg",
        "min",
        "max",
        "round",
        "ceil",
        "floor",
        "abs",
        "null_if",
        "coalesce",
        "concat",
        "substring",
        "now",
        "date_format",
        "date_add",
        "date_sub",
        "rand",
        "conditional",
        "if_null",
        "json_extract",
        "group_concat",
    }
)

_UNITS = {
    "second": "SECOND",
    "minute": "MINUTE",
    "hour": "HOUR",
    "day": "DAY",
    "week": "WEEK",
    "month": "MONTH",
    "quarter": "QUARTER",
    "year": "YEAR",
}


def quote_literal(text: Any) -> str:
    """Render ``text`` as a single-quoted SQL string literal."""

    return "'" + str(text).replace("'", "''") + "'"


def normalize_unit(unit: str) -> str:
    key = str(unit).strip().lower()
    if key.endswith("s"):
        key = key[:-1]
    try:
        return _UNITS[key]
    except KeyError:
        raise ValueError(f"Unsupported interval unit: {unit!r}") from None


def _json_path(path: str) -> str:
    path = str(path).strip()
    return path if path.startswith("$") else f"$.{path}"


def _translate(fmt: str, table: Sequence[tuple[str, str]]) -> str:
    out: list[str] = []
    index = 0
    lookup = dict(table)
    while index < len(fmt):
        token = fmt[index : index + 2]
        if token in lookup:
            out.append(lookup[token])
            index += 2
        else:
            out.append(fmt[index])
            index += 1
    return "".join(out)


class FunctionBuilder:
    """Shared SQL function spellings; dialects override what differs.

    Operand arguments arrive already rendered as SQL fragments. Keyword
    arguments are literal options taken from ``Func.options``.
    """

    dialect: ClassVar[Dialect]

    def render(self, func: Func, args: Sequence[str]) -> str:
        if func.name not in FUNCTION_NAMES:
            raise ValueError(f"Unknown SQL function: {func.name!r}")
        method = getattr(self, func.name)
        return method(*args, **dict(func.options))

    def count(self, column: str = "*", *, distinct: bool = False) -> str:
        prefix = "DISTINCT " if distinct else ""
        return f"COUNT({prefix}{column})"

    def sum(self, column: str) -> str:
        return f"SUM({column})"

    def avg(self, column: str) -> str:
        return f"AVG({column})"

    def min(self, column: str) -> str:
        return f"MIN({column})"

    def max(self, column: str) -> str:
        return f"MAX({column})"

    def round(self, column: str, *, precision: int = 0) -> str:
        return f"ROUND({column}, {int(precision)})"

    def ceil(self, column: str) -> str:
        return f"CEIL({column})"

    def floor(self, column: str) -> str:
        return f"FLOOR({column})"

    def abs(self, column: str) -> str:
        return f"ABS({column})"

    def null_if(self, first: str, second: str) -> str:
        return f"NULLIF({first}, {second})"

    def coalesce(self, *values: str) -> str:
        return f"COALESCE({', '.join(values)})"

    def conditional(self, condition: str, true_value: str, false_value: str) -> str:
        return f"CASE WHEN {condition} THEN {true_value} ELSE {false_value} END"

    def concat(self, *parts: str, separator: str | None = None) -> str:
        joiner = " || "
        if separator is not None:
            joiner = f" || {quote_literal(separator)} || "
        return joiner.join(parts)

    def substring(self, column: str, *, start: int, length: int | None = None) -> str:
        if length is None:
            return f"SUBSTRING({column} FROM {int(start)})"
        return f"SUBSTRING({column} FROM {int(start)} FOR {int(length)})"

    def now(self) -> str:
        return "NOW()"

    def rand(self) -> str:
        return "RANDOM()"

    def if_null(self, column: str, default: str) -> str:
        return f"COALESCE({column}, {default})"

    def date_format(self, column: str, *, format: str) -> str:
        raise NotImplementedError

    def date_add(self, column: str, *, amount: int, unit: str) -> str:
        raise NotImplementedError

    def date_sub(self, column: str, *, amount: int, unit: str) -> str:
        return self.date_add(column, amount=-int(amount), unit=unit)

    def json_extract(self, column: str, *, path: str) -> str:
        return f"JSON_EXTRACT({column}, {quote_literal(_json_path(path))})"

    def group_concat(self, column: str, *, separator: str = ",", distinct: bool = False) -> str:
        prefix = "DISTINCT " if distinct else ""
        return f"GROUP_CONCAT({prefix}{column}, {quote_literal(separator)})"


class MySQLFunctionBuilder(FunctionBuilder):
    dialect = Dialect.MYSQL

    def concat(self, *parts: str, separator: str | None = None) -> str:
        if separator is not None:
            return f"CONCAT_WS({quote_literal(separator)}, {', '.join(parts)})"
        return f"CONCAT({', '.join(parts)})"

    def rand(self) -> str:
        return "RAND()"

    def conditional(self, condition: str, true_value: str, false_value: str) -> str:
        return f"IF({condition}, {true_value}, {false_value})"

    def if_null(self, column: str, default: str) -> str:
        return f"IFNULL({column}, {default})"

    def date_format(self, column: str, *, format: str) -> str:
        return f"DATE_FORMAT({column}, {quote_literal(format)})"

    def date_add(self, column: str, *, amount: int, unit: str) -> str:
        return f"DATE_ADD({column}, INTERVAL {int(amount)} {normalize_unit(unit)})"

    def date_sub(self, column: str, *, amount: int, unit: str) -> str:
        return f"DATE_SUB({column}, INTERVAL {int(amount)} {normalize_unit(unit)})"

    def group_concat(self, column: str, *, separator: str = ",", distinct: bool = False) -> str:
        prefix = "DISTINCT " if distinct else ""
        return f"GROUP_CONCAT({prefix}{column} SEPARATOR {quote_literal(separator)})"


class PostgresFunctionBuilder(FunctionBuilder):
    dialect = Dialect.POSTGRESQL

    FORMAT_TOKENS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("%Y", "YYYY"),
        ("%y", "YY"),
        ("%m", "MM"),
        ("%d", "DD"),
        ("%H", "HH24"),
        ("%i", "MI"),
        ("%s", "SS"),
        ("%M", "Month"),
        ("%b", "Mon"),
        ("%W", "Day"),
        ("%a", "Dy"),
    )

    def date_format(self, column: str, *, format: str) -> str:
        return f"TO_CHAR({column}, {quote_literal(_translate(format, self.FORMAT_TOKENS))})"

    def date_add(self, column: str, *, amount: int, unit: str) -> str:
        amount = int(amount)
        sign = "-" if amount < 0 else "+"
        interval = quote_literal(f"{abs(amount)} {normalize_unit(unit).lower()}")
        return f"({column} {sign} INTERVAL {interval})"

    def json_extract(self, column: str, *, path: str) -> str:
        parts = [part for part in _json_path(path)[2:].split(".") if part]
        if len(parts) == 1:
            return f"{column}->>{quote_literal(parts[0])}"
        return f"{column}#>>{quote_literal('{' + ','.join(parts) + '}')}"

    def group_concat(self, column: str, *, separator: str = ",", distinct: bool = False) -> str:
        prefix = "DISTINCT " if distinct else ""
        return f"STRING_AGG({prefix}CAST({column} AS TEXT), {quote_literal(separator)})"


class SQLiteFunctionBuilder(FunctionBuilder):
    dialect = Dialect.SQLITE

    FORMAT_TOKENS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("%Y", "%Y"),
        ("%y", "%y"),
        ("%m", "%m"),
        ("%d", "%d"),
        ("%H", "%H"),
        ("%i", "%M"),
        ("%s", "%S"),
        ("%M", "%B"),
        ("%b", "%b"),
        ("%W", "%A"),
        ("%a", "%a"),
    )

    _MODIFIERS: ClassVar[dict[str, tuple[str, int]]] = {
        "SECOND": ("seconds", 1),
        "MINUTE": ("minutes", 1),
        "HOUR": ("hours", 1),
        "DAY": ("days", 1),
        "WEEK": ("days", 7),
        "MONTH": ("months", 1),
        "QUARTER": ("months", 3),
        "YEAR": ("years", 1),
    }

    def substring(self, column: str, *, start: int, length: int | None = None) -> str:
        if length is None:
            return f"SUBSTR({column}, {int(start)})"
        return f"SUBSTR({column}, {int(start)}, {int(length)})"

    def now(self) -> str:
        return "DATETIME('now')"

    def if_null(self, column: str, default: str) -> str:
        return f"IFNULL({column}, {default})"

    def date_format(self, column: str, *, format: str) -> str:
        return f"STRFTIME({quote_literal(_translate(format, self.FORMAT_TOKENS))}, {column})"

    def date_add(self, column: str, *, amount: int, unit: str) -> str:
        modifier, factor = self._MODIFIERS[normalize_unit(unit)]
        value = int(amount) * factor
        sign = "+" if value >= 0 else ""
        return f"DATETIME({column}, {quote_literal(f'{sign}{value} {modifier}')})"


class SqlServerFunctionBuilder(FunctionBuilder):
    dialect = Dialect.SQLSERVER

    FORMAT_TOKENS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("%Y", "yyyy"),
        ("%y", "yy"),
        ("%m", "MM"),
        ("%d", "dd"),
        ("%H", "HH"),
        ("%i", "mm"),
        ("%s", "ss"),
        ("%M", "MMMM"),
        ("%b", "MMM"),
        ("%W", "dddd"),
        ("%a", "ddd"),
    )

    def ceil(self, column: str) -> str:
        return f"CEILING({column})"

    def concat(self, *parts: str, separator: str | None = None) -> str:
        joiner = " + "
        if separator is not None:
            joiner = f" + {quote_literal(separator)} + "
        return joiner.join(parts)

    def substring(self, column: str, *, start: int, length: int | None = None) -> str:
        if length is None:
            return f"SUBSTRING({column}, {int(start)}, LEN({column}))"
        return f"SUBSTRING({column}, {int(start)}, {int(length)})"

    def now(self) -> str:
        return "GETDATE()"

    def rand(self) -> str:
        return "RAND()"

    def if_null(self, column: str, default: str) -> str:
        return f"ISNULL({column}, {default})"

    def date_format(self, column: str, *, format: str) -> str:
        return f"FORMAT({column}, {quote_literal(_translate(format, self.FORMAT_TOKENS))})"

    def date_add(self, column: str, *, amount: int, unit: str) -> str:
        return f"DATEADD({normalize_unit(unit)}, {int(amount)}, {column})"

    def json_extract(self, column: str, *, path: str) -> str:
        return f"JSON_VALUE({column}, {quote_literal(_json_path(path))})"

    def group_concat(self, column: str, *, separator: str = ",", distinct: bool = False) -> str:
        if distinct:
            raise ValueError("SQL Server STRING_AGG does not support DISTINCT")
        return f"STRING_AGG({column}, {quote_literal(separator)})"


_FUNCTION_BUILDERS: dict[Dialect, type[FunctionBuilder]] = {
    Dialect.MYSQL: MySQLFunctionBuilder,
    Dialect.POSTGRESQL: PostgresFunctionBuilder,
    Dialect.SQLITE: SQLiteFunctionBuilder,
    Dialect.SQLSERVER: SqlServerFunctionBuilder,
}

if set(_FUNCTION_BUILDERS) != set(Dialect):  # pragma: no cover - import-time guard
    raise RuntimeError("Every dialect needs a function builder")


def function_builder_for(dialect: Dialect) -> FunctionBuilder:
    return _FUNCTION_BUILDERS[Dialect(dialect)]()


def _func(name: str, args: Iterable[Any], alias: str | None, **options: Any) -> Func:
    return Func(name, tuple(args), tuple((key, value) for key, value in options.items() if value is not None), alias)


class Sql:
    """Factory for expressions usable in select lists, conditions and assignments."""

    @staticmethod
    def raw(sql: str, bindings: Iterable[Any] = ()) -> Raw:
        return Raw(sql, bindings)

    @staticmethod
    def column(name: str) -> Column:
        return Column(name)

    @staticmethod
    def value(value: Any) -> Value:
        return Value(value)

    @staticmethod
    def count(column: Any = "*", alias: str | None = None, *, distinct: bool = False) -> Func:
        return _func("count", (column,), alias, distinct=distinct or None)

    @staticmethod
    def sum(column: Any, alias: str | None = None) -> Func:
        return _func("sum", (column,), alias)

    @staticmethod
    def avg(column: Any, alias: str | None = None) -> Func:
        return _func("avg", (column,), alias)

    @staticmethod
    def min(column: Any, alias: str | None = None) -> Func:
        return _func("min", (column,), alias)

    @staticmethod
    def max(column: Any, alias: str | None = None) -> Func:
        return _func("max", (column,), alias)

    @staticmethod
    def round(column: Any, precision: int = 0, alias: str | None = None) -> Func:
        return _func("round", (column,), alias, precision=precision)

    @staticmethod
    def ceil(column: Any, alias: str | None = None) -> Func:
        return _func("ceil", (column,), alias)

    @staticmethod
    def floor(column: Any, alias: str | None = None) -> Func:
        return _func("floor", (column,), alias)

    @staticmethod
    def abs(column: Any, alias: str | None = None) -> Func:
        return _func("abs", (column,), alias)

    @staticmethod
    def null_if(first: Any, second: Any, alias: str | None = None) -> Func:
        return _func("null_if", (first, second), alias)

    @staticmethod
    def coalesce(*values: Any, alias: str | None = None) -> Func:
        return _func("coalesce", values, alias)

    @staticmethod
    def concat(*parts: Any, separator: str | None = None, alias: str | None = None) -> Func:
        return _func("concat", parts, alias, separator=separator)

    @staticmethod
    def substring(column: Any, start: int, length: int | None = None, alias: str | None = None) -> Func:
        return _func("substring", (column,), alias, start=start, length=length)

    @staticmethod
    def now(alias: str | None = None) -> Func:
        return _func("now", (), alias)

    @staticmethod
    def date_format(column: Any, format: str, alias: str | None = None) -> Func:
        return _func("date_format", (column,), alias, format=format)

    @staticmethod
    def date_add(column: Any, amount: int, unit: str = "day", alias: str | None = None) -> Func:
        return _func("date_add", (column,), alias, amount=amount, unit=unit)

    @staticmethod
    def date_sub(column: Any, amount: int, unit: str = "day", alias: str | None = None) -> Func:
        return _func("date_sub", (column,), alias, amount=amount, unit=unit)

    @staticmethod
    def rand(alias: str | None = None) -> Func:
        return _func("rand", (), alias)

    @staticmethod
    def conditional(condition: Any, true_value: Any, false_value: Any, alias: str | None = None) -> Func:
        return _func("conditional", (condition, true_value, false_value), alias)

    @staticmethod
    def if_null(column: Any, default: Any, alias: str | None = None) -> Func:
        return _func("if_null", (column, default), alias)

    @staticmethod
    def json_extract(column: Any, path: str, alias: str | None = None) -> Func:
        return _func("json_extract", (column,), alias, path=path)

    @staticmethod
    def group_concat(
        column: Any, separator: str = ",", alias: str | None = None, *, distinct: bool = False
    ) -> Func:
        return _func("group_concat", (column,), alias, separator=separator, distinct=distinct or None)


__all__ = [
    "FUNCTION_NAMES",
    "FunctionBuilder",
    "MySQLFunctionBuilder",
    "PostgresFunctionBuilder",
    "SQLiteFunctionBuilder",
    "Sql",
    "SqlServerFunctionBuilder",
    "function_builder_for",
    "normalize_unit",
    "quote_literal",
]
