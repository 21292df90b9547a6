"""Unit tests for raw statement analysis."""

from __future__ import annotations

import pytest

from dbkit.dialects import Dialect
from dbkit.sqlintel import DiagnosticSeverity, SqlIntelService, StatementKind


def test_analyze_classifies_select_and_collects_tables() -> None:
    service = SqlIntelService(Dialect.SQLITE)

    analysis = service.analyze("SELECT u.id FROM users u JOIN orders o ON o.user_id = u.id WHERE u.id = ?")

    assert analysis.parsed
    assert analysis.kind is StatementKind.READ
    assert set(analysis.tables) == {"users", "orders"}
    assert analysis.written_tables == ()


@pytest.mark.parametrize(
    ("sql", "written"),
    [
        ("INSERT INTO app_users (name) VALUES ('x')", ("app_users",)),
        ("UPDATE app_users SET name = 'y' WHERE id = 1", ("app_users",)),
        ("DELETE FROM app_orders WHERE id = 2", ("app_orders",)),
    ],
)
def test_analyze_finds_written_tables(sql: str, written: tuple[str, ...]) -> None:
    analysis = SqlIntelService(Dialect.MYSQL).analyze(sql)

    assert analysis.kind is StatementKind.WRITE
    assert analysis.written_tables == written


def test_analyze_marks_ddl() -> None:
    analysis = SqlIntelService(Dialect.POSTGRESQL).analyze("CREATE TABLE audit (id INT)")

    assert analysis.kind is StatementKind.DDL
    assert analysis.written_tables == ("audit",)


def test_analyze_falls_back_to_keywords_on_parse_errors() -> None:
    analysis = SqlIntelService(Dialect.SQLITE).analyze("UPDATE users SET name = (")

    assert not analysis.parsed
    assert analysis.errors
    assert analysis.kind is StatementKind.WRITE


def test_lint_flags_update_without_where() -> None:
    service = SqlIntelService(Dialect.POSTGRESQL)

    diagnostics = service.lint("UPDATE accounts SET active = false")

    assert [entry.severity for entry in diagnostics] == [DiagnosticSeverity.WARNING]
    assert "WHERE" in diagnostics[0].message


def test_lint_flags_delete_without_where() -> None:
    diagnostics = SqlIntelService(Dialect.SQLSERVER).lint("DELETE FROM sessions")

    assert diagnostics[0].message == "DELETE statement is missing a WHERE clause."


def test_lint_accepts_filtered_statements() -> None:
    assert SqlIntelService(Dialect.MYSQL).lint("DELETE FROM sessions WHERE expired = 1") == []


def test_lint_reports_parse_errors() -> None:
    diagnostics = SqlIntelService(Dialect.SQLITE).lint("SELECT * FROM users WHERE id = (")

    assert diagnostics
    assert diagnostics[0].severity is DiagnosticSeverity.ERROR


def test_lint_reuses_an_existing_analysis(monkeypatch: pytest.MonkeyPatch) -> None:
    service = SqlIntelService(Dialect.SQLITE)
    analysis = service.analyze("DELETE FROM sessions")

    def _no_reparse(statement: str) -> None:
        raise AssertionError("statement parsed twice")

    monkeypatch.setattr(service, "analyze", _no_reparse)

    assert [entry.message for entry in service.lint(analysis)] == ["DELETE statement is missing a WHERE clause."]
