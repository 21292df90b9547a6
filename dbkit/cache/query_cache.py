"""Result cache keyed by connection, tables and statement text."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Iterable, Sequence

from .backends import CacheBackend

LOG = logging.getLogger(__name__)

DEFAULT_TTL = 3600
KEY_PREFIX = "query:"


class QueryCache:
    """Caches select results in a backend and invalidates them by table.

    Keys look like ``query:<connection>:<table,table>:<md5>`` so every entry
    that read a table can be found again when that table is written.
    """

    def __init__(self, backend: CacheBackend, default_ttl: int | None = DEFAULT_TTL) -> None:
        self._backend = backend
        self._default_ttl = default_ttl
        self._enabled = True
        self.hits = 0
        self.misses = 0

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def default_ttl(self) -> int | None:
        return self._default_ttl

    @default_ttl.setter
    def default_ttl(self, ttl: int | None) -> None:
        self._default_ttl = ttl

    def enable(self) -> QueryCache:
        self._enabled = True
        return self

    def disable(self) -> QueryCache:
        self._enabled = False
        return self

    def is_enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def make_key(connection: str, tables: Iterable[str], sql: str, params: Sequence[Any] = ()) -> str:
        payload = sql + json.dumps(list(params), default=repr)
        digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
        return f"{KEY_PREFIX}{connection}:{','.join(tables)}:{digest}"

    def get(self, key: str) -> Any | None:
        if not self._enabled:
            return None
        value = self._backend.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self._enabled:
            return False
        return self._backend.set(key, value, ttl if ttl is not None else self._default_ttl)

    def invalidate(self, key_or_prefix: str) -> int:
        """Delete the exact key and every key that starts with it."""

        removed = 0
        for key in list(self._backend.keys(key_or_prefix)):
            if self._backend.delete(key):
                removed += 1
        return removed

    def invalidate_tables(self, connection: str, tables: Iterable[str] | None = None) -> int:
        """Drop cached results of ``connection`` that read any of ``tables``.

        ``None`` drops every cached result of the connection.
        """

        prefix = f"{KEY_PREFIX}{connection}:"
        if tables is None:
            return self.invalidate(prefix)
        targets = set(tables)
        removed = 0
        for key in list(self._backend.keys(prefix)):
            segment = key[len(prefix) :].rsplit(":", 1)[0]
            if targets.intersection(segment.split(",")) and self._backend.delete(key):
                removed += 1
        if removed:
            LOG.debug(
                "Invalidated cached queries",
                extra={"connection": connection, "tables": sorted(targets), "removed": removed},
            )
        return removed

    def flush(self) -> bool:
        self.hits = 0
        self.misses = 0
        return self._backend.clear()


__all__ = ["DEFAULT_TTL", "QueryCache"]
