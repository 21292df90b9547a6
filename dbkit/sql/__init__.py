"""Dialect-neutral query descriptions and their per-dialect SQL rendering."""

from __future__ import annotations

from .builders import SqlBuilder, mark_placeholders, sql_builder_for
from .descriptor import (
    BetweenCondition,
    Condition,
    ConditionGroup,
    Join,
    JoinType,
    Operation,
    Order,
    QueryDescriptor,
    RawCondition,
    TableRef,
)
from .expressions import Column, ColumnSpec, Func, Raw, Value
from .functions import FunctionBuilder, Sql, function_builder_for

__all__ = [
    "BetweenCondition",
    "Column",
    "ColumnSpec",
    "Condition",
    "ConditionGroup",
    "Func",
    "FunctionBuilder",
    "Join",
    "JoinType",
    "Operation",
    "Order",
    "QueryDescriptor",
    "Raw",
    "RawCondition",
    "Sql",
    "SqlBuilder",
    "TableRef",
    "Value",
    "function_builder_for",
    "mark_placeholders",
    "sql_builder_for",
]
