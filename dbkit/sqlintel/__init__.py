"""SQL statement analysis helpers."""

from __future__ import annotations

from .models import Diagnostic, DiagnosticSeverity, StatementAnalysis, StatementKind
from .service import SqlIntelService

__all__ = [
    "Diagnostic",
    "DiagnosticSeverity",
    "SqlIntelService",
    "StatementAnalysis",
    "StatementKind",
]
