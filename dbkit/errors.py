"""Exception types raised by the database layer."""

from __future__ import annotations

from typing import Any, Sequence


class ConfigurationError(RuntimeError):
    """Raised when connection or table configuration is missing or malformed."""


class ValidationError(ConfigurationError):
    """Raised when a table mapping or cache option has the wrong shape."""


class DatabaseError(RuntimeError):
    """Raised when a driver fails to prepare, execute or commit a statement.

    The failing SQL text and its bound parameters are attached when known so the
    error can be diagnosed without re-running the statement.
    """

    def __init__(
        self,
        message: str,
        *,
        query: str | None = None,
        bindings: Sequence[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.query = query
        self.bindings = list(bindings) if bindings is not None else None

    def get_query(self) -> str | None:
        return self.query

    def get_bindings(self) -> list[Any] | None:
        return self.bindings

    def with_context(self, query: str | None, bindings: Sequence[Any] | None = None) -> DatabaseError:
        """Fill in missing query context and return the same error."""

        if self.query is None:
            self.query = query
        if self.bindings is None and bindings is not None:
            self.bindings = list(bindings)
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.query:
            return f"{message} [SQL: {self.query}]"
        return message


__all__ = ["ConfigurationError", "DatabaseError", "ValidationError"]
