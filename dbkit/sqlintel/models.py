"""Dataclasses shared by the statement analysis service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlglot import exp


class StatementKind(str, Enum):
    """Broad effect of a statement on stored data."""

    READ = "read"
    WRITE = "write"
    DDL = "ddl"
    OTHER = "other"


class DiagnosticSeverity(str, Enum):
    """Severity levels for lint feedback."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class Diagnostic:
    """Represents an issue discovered while linting."""

    message: str
    severity: DiagnosticSeverity


@dataclass(slots=True)
class StatementAnalysis:
    """Details derived from parsing one statement."""

    statement: str
    kind: StatementKind
    tables: tuple[str, ...]
    written_tables: tuple[str, ...]
    ast: exp.Expression | None
    errors: tuple[str, ...]

    @property
    def parsed(self) -> bool:
        return self.ast is not None


__all__ = ["Diagnostic", "DiagnosticSeverity", "StatementAnalysis", "StatementKind"]
