"""Immutable description of a query handed to a dialect SQL builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .expressions import ColumnSpec


class Operation(str, Enum):
    """Statement kind produced by a descriptor."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    CROSS = "CROSS"


OPERATORS = frozenset(
    {"=", "!=", "<>", "<", ">", "<=", ">=", "LIKE", "NOT LIKE", "IN", "NOT IN", "IS", "IS NOT"}
)


@dataclass(frozen=True, slots=True)
class Condition:
    """``column operator value`` joined to its predecessor with ``boolean``."""

    column: Any
    operator: str
    value: Any
    boolean: str = "AND"


@dataclass(frozen=True, slots=True)
class BetweenCondition:
    column: Any
    low: Any
    high: Any
    negate: bool = False
    boolean: str = "AND"


@dataclass(frozen=True, slots=True)
class RawCondition:
    sql: str
    bindings: tuple[Any, ...] = ()
    boolean: str = "AND"


@dataclass(frozen=True, slots=True)
class ConditionGroup:
    """Parenthesized group of conditions."""

    conditions: tuple[ConditionNode, ...]
    boolean: str = "AND"


ConditionNode = Union[Condition, BetweenCondition, RawCondition, ConditionGroup]


@dataclass(frozen=True, slots=True)
class TableRef:
    """Physical table name or derived table with an optional alias."""

    name: str = ""
    alias: str | None = None
    subquery: QueryDescriptor | None = None


@dataclass(frozen=True, slots=True)
class Join:
    kind: JoinType
    table: TableRef
    conditions: tuple[ConditionNode, ...] = ()


@dataclass(frozen=True, slots=True)
class Order:
    column: Any
    direction: str = "ASC"


@dataclass(frozen=True, slots=True)
class QueryDescriptor:
    """Everything a dialect needs to render one statement."""

    operation: Operation
    table: TableRef | None = None
    columns: ColumnSpec = field(default_factory=ColumnSpec.all)
    distinct: bool = False
    rows: tuple[tuple[tuple[str, Any], ...], ...] = ()
    assignments: tuple[tuple[str, Any], ...] = ()
    conditions: tuple[ConditionNode, ...] = ()
    joins: tuple[Join, ...] = ()
    groups: tuple[Any, ...] = ()
    havings: tuple[ConditionNode, ...] = ()
    orders: tuple[Order, ...] = ()
    limit: int | None = None
    offset: int | None = None
    ignore: bool = False

    def tables(self) -> tuple[str, ...]:
        """Physical tables read or written, in first-seen order."""

        names: list[str] = []
        refs = [self.table] if self.table is not None else []
        refs.extend(join.table for join in self.joins)
        for ref in refs:
            if ref.subquery is not None:
                candidates = ref.subquery.tables()
            else:
                candidates = (ref.name,)
            for name in candidates:
                if name and name not in names:
                    names.append(name)
        for nested in _subqueries(self.conditions + self.havings):
            for name in nested.tables():
                if name not in names:
                    names.append(name)
        return tuple(names)


def _subqueries(nodes: tuple[ConditionNode, ...]) -> list[QueryDescriptor]:
    found: list[QueryDescriptor] = []
    for node in nodes:
        if isinstance(node, ConditionGroup):
            found.extend(_subqueries(node.conditions))
        elif isinstance(node, Condition) and isinstance(node.value, QueryDescriptor):
            found.append(node.value)
    return found


__all__ = [
    "BetweenCondition",
    "Condition",
    "ConditionGroup",
    "ConditionNode",
    "Join",
    "JoinType",
    "OPERATORS",
    "Operation",
    "Order",
    "QueryDescriptor",
    "RawCondition",
    "TableRef",
]
