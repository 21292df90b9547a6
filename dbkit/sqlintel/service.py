"""Statement analysis for hand-written SQL, built on sqlglot."""

from __future__ import annotations

from typing import Iterable

from sqlglot import exp, parse_one
from sqlglot.errors import SqlglotError

from ..dialects import Dialect
from .models import Diagnostic, DiagnosticSeverity, StatementAnalysis, StatementKind

_READ_KEYS = frozenset({"select", "union", "intersect", "except", "values", "show", "describe"})
_WRITE_KEYS = frozenset({"insert", "update", "delete", "merge", "truncatetable"})
_DDL_KEYS = frozenset({"create", "drop", "alter", "altertable"})


class SqlIntelService:
    """Parses raw statements to classify them and find the tables they touch."""

    def __init__(self, dialect: Dialect = Dialect.POSTGRESQL) -> None:
        self._dialect = Dialect(dialect)

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def analyze(self, statement: str) -> StatementAnalysis:
        """Parse ``statement`` and derive its kind and tables."""

        stripped = statement.strip().rstrip(";")
        ast: exp.Expression | None = None
        errors: list[str] = []
        tables: tuple[str, ...] = ()
        written: tuple[str, ...] = ()
        kind = StatementKind.OTHER
        if stripped:
            try:
                ast = parse_one(stripped, read=self._dialect.sqlglot_name)
            except SqlglotError as exc:
                errors.append(str(exc).strip())
            else:
                kind = _classify(ast)
                tables = tuple(_collect_tables(ast))
                written = tuple(_written_tables(ast)) if kind is not StatementKind.READ else ()
        if ast is None:
            kind = _classify_by_keyword(stripped)
        return StatementAnalysis(
            statement=statement,
            kind=kind,
            tables=tables,
            written_tables=written,
            ast=ast,
            errors=tuple(errors),
        )

    def lint(self, statement: str | StatementAnalysis) -> list[Diagnostic]:
        """Run lightweight lint rules on a statement or an existing analysis of one."""

        analysis = statement if isinstance(statement, StatementAnalysis) else self.analyze(statement)
        diagnostics: list[Diagnostic] = []
        for error in analysis.errors:
            diagnostics.append(Diagnostic(message=error, severity=DiagnosticSeverity.ERROR))

        if not analysis.ast:
            return diagnostics

        expr = analysis.ast
        if isinstance(expr, exp.Delete) and not expr.args.get("where"):
            diagnostics.append(
                Diagnostic(
                    message="DELETE statement is missing a WHERE clause.",
                    severity=DiagnosticSeverity.WARNING,
                )
            )
        if isinstance(expr, exp.Update) and not expr.args.get("where"):
            diagnostics.append(
                Diagnostic(
                    message="UPDATE statement is missing a WHERE clause.",
                    severity=DiagnosticSeverity.WARNING,
                )
            )
        return diagnostics


def _classify(expression: exp.Expression) -> StatementKind:
    key = expression.key.lower()
    if key in _READ_KEYS:
        return StatementKind.READ
    if key in _WRITE_KEYS:
        return StatementKind.WRITE
    if key in _DDL_KEYS:
        return StatementKind.DDL
    return StatementKind.OTHER


def _classify_by_keyword(statement: str) -> StatementKind:
    token = statement.lstrip().split(None, 1)
    head = token[0].lower() if token else ""
    if head in {"select", "with", "show", "values", "explain", "pragma", "describe"}:
        return StatementKind.READ
    if head in {"insert", "update", "delete", "replace", "merge", "truncate", "upsert"}:
        return StatementKind.WRITE
    if head in {"create", "drop", "alter", "rename"}:
        return StatementKind.DDL
    return StatementKind.OTHER


def _table_label(table: exp.Table) -> str:
    schema = table.db
    name = table.name or ""
    return f"{schema}.{name}" if schema and name else name


def _collect_tables(expression: exp.Expression) -> Iterable[str]:
    tables: list[str] = []
    seen: set[str] = set()
    for table in expression.find_all(exp.Table):
        label = _table_label(table)
        norm = label.lower()
        if norm and norm not in seen:
            tables.append(label)
            seen.add(norm)
    return tables


def _written_tables(expression: exp.Expression) -> Iterable[str]:
    targets: list[exp.Expression] = []
    if isinstance(expression, exp.TruncateTable):
        targets.extend(expression.expressions)
    else:
        target = expression.this
        if isinstance(target, exp.Schema):
            target = target.this
        if target is not None:
            targets.append(target)
    labels: list[str] = []
    for target in targets:
        if isinstance(target, exp.Table):
            label = _table_label(target)
            if label and label not in labels:
                labels.append(label)
    return labels


__all__ = ["SqlIntelService"]
