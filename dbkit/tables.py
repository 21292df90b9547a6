"""Logical to physical table name resolution."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

LOG = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_]")


class TableConfigurationError(ValueError):
    """Internal signal for a malformed prefix or mapping."""


class TableConfiguration:
    """Resolves logical table names through an explicit mapping and a prefix.

    A malformed configuration never raises: it is replaced by the identity
    configuration (no prefix, no mapping) and ``is_valid()`` reports ``False``.
    """

    def __init__(
        self,
        prefix: Any = "",
        tables: Any = None,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._logger = logger or LOG
        self._valid = True
        try:
            self._prefix, self._tables = _validate(prefix, tables if tables is not None else {})
        except TableConfigurationError as exc:
            self._valid = False
            self._prefix, self._tables = "", {}
            self._logger.error(
                "Table configuration error, using identity configuration: %s",
                exc,
                extra={"prefix": repr(prefix)[:100]},
            )
        self._physical_names = frozenset(self._tables.values())

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def tables(self) -> dict[str, str]:
        return dict(self._tables)

    def is_valid(self) -> bool:
        return self._valid

    def has_table(self, logical: str) -> bool:
        return logical in self._tables

    def get_table_name(self, logical: str) -> str:
        """Return the physical name for ``logical``.

        Mapped names win over the prefix. Names that are already physical (a
        mapped value, or already carrying the prefix) are returned unchanged.
        """

        if not isinstance(logical, str) or not _is_valid_name(logical):
            self._logger.warning("Invalid table name provided", extra={"table": repr(logical)})
            logical = sanitize_table_name(logical)
        mapped = self._tables.get(logical)
        if mapped is not None:
            return mapped
        if logical in self._physical_names:
            return logical
        if self._prefix and not logical.startswith(self._prefix):
            return self._prefix + logical
        return logical


def sanitize_table_name(name: Any) -> str:
    """Coerce arbitrary input into a safe identifier."""

    text = "" if name is None else str(name)
    if not text:
        return "unknown_table"
    sanitized = _UNSAFE_CHARS.sub("_", text)
    if sanitized[0].isdigit():
        sanitized = f"table_{sanitized}"
    return sanitized


def _is_valid_name(name: str) -> bool:
    return bool(name) and not _CONTROL_CHARS.search(name)


def _validate(prefix: Any, tables: Any) -> tuple[str, dict[str, str]]:
    if prefix is None:
        prefix = ""
    if not isinstance(prefix, str):
        raise TableConfigurationError(f"Table prefix must be a string, {type(prefix).__name__} given")
    if _CONTROL_CHARS.search(prefix):
        raise TableConfigurationError(f"Invalid table prefix {prefix!r}: contains control characters")
    if not isinstance(tables, Mapping):
        raise TableConfigurationError(f"Tables configuration must be a mapping, {type(tables).__name__} given")
    mapping: dict[str, str] = {}
    for logical, physical in tables.items():
        if isinstance(logical, int):
            logical = str(logical)
        if not isinstance(logical, str) or not isinstance(physical, str):
            raise TableConfigurationError(f"Table mappings must be string to string: {logical!r} => {physical!r}")
        if not _is_valid_name(logical):
            raise TableConfigurationError(f"Invalid logical table name: {logical!r}")
        if not _is_valid_name(physical):
            raise TableConfigurationError(f"Invalid physical table name: {physical!r}")
        mapping[logical] = physical
    return prefix, mapping


__all__ = ["TableConfiguration", "sanitize_table_name"]
