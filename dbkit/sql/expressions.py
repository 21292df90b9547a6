"""Dialect-neutral expression values accepted by the query builders."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union


@dataclass(frozen=True, slots=True)
class Raw:
    """SQL text inserted verbatim; ``?`` marks positional bindings."""

    sql: str
    bindings: tuple[Any, ...] = ()

    def __init__(self, sql: str, bindings: Iterable[Any] = ()) -> None:
        object.__setattr__(self, "sql", sql)
        object.__setattr__(self, "bindings", tuple(bindings))


@dataclass(frozen=True, slots=True)
class Column:
    """Reference to a column used where a value is expected."""

    name: str


@dataclass(frozen=True, slots=True)
class Value:
    """Literal bound as a parameter where a column name would be assumed."""

    value: Any


@dataclass(frozen=True, slots=True)
class Func:
    """Call to a SQL function whose text is chosen by the connection's dialect.

    ``args`` are operands (column names, ``Raw``, ``Value``, nested ``Func``),
    ``options`` are literal settings such as a date format or JSON path.
    """

    name: str
    args: tuple[Any, ...] = ()
    options: tuple[tuple[str, Any], ...] = ()
    alias: str | None = None

    def as_(self, alias: str) -> Func:
        return Func(self.name, self.args, self.options, alias)

    def option(self, key: str, default: Any = None) -> Any:
        for name, value in self.options:
            if name == key:
                return value
        return default


ColumnItem = Union[str, Raw, Func]


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """Normalized select list: empty ``items`` means every column."""

    items: tuple[ColumnItem, ...] = field(default=())

    @property
    def is_all(self) -> bool:
        return not self.items

    @classmethod
    def all(cls) -> ColumnSpec:
        return cls(())

    @classmethod
    def of(cls, *columns: Any) -> ColumnSpec:
        """Normalize any call style into one column specification.

        ``of()``, ``of("*")`` and ``of([])`` select everything; ``of("a", "b")``
        and ``of(["a", "b"])`` produce the same list.
        """

        items: list[ColumnItem] = []
        for column in _flatten(columns):
            if isinstance(column, str):
                column = column.strip()
                if not column:
                    continue
            elif not isinstance(column, (Raw, Func)):
                raise TypeError(f"Unsupported column specification: {column!r}")
            items.append(column)
        if items == ["*"]:
            return cls.all()
        return cls(tuple(items))

    def extend(self, *columns: Any) -> ColumnSpec:
        extra = ColumnSpec.of(*columns)
        if extra.is_all:
            return self
        return ColumnSpec(self.items + extra.items)


def _flatten(values: Iterable[Any]) -> Iterable[Any]:
    for value in values:
        if isinstance(value, (list, tuple)):
            yield from _flatten(value)
        elif isinstance(value, Mapping):
            # {"alias": column} selects column AS alias
            for alias, column in value.items():
                if isinstance(column, Func):
                    yield column.as_(str(alias))
                else:
                    yield f"{column} AS {alias}"
        else:
            yield value


__all__ = ["Column", "ColumnItem", "ColumnSpec", "Func", "Raw", "Value"]
