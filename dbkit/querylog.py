"""Logging handler that records executed statements and their timings."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

QUERY_MESSAGE = "Query executed"


@dataclass(frozen=True, slots=True)
class QueryRecord:
    """One executed statement as seen by the logger."""

    connection: str
    query: str
    bindings: tuple[Any, ...]
    elapsed_ms: int
    row_count: int | None
    cached: bool = False


class QueryRecorder(logging.Handler):
    """Collects ``Query executed`` log records emitted by connections."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._records: list[QueryRecord] = []
        self._records_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        query = getattr(record, "query", None)
        if query is None or record.getMessage() != QUERY_MESSAGE:
            return
        entry = QueryRecord(
            connection=str(getattr(record, "connection", "")),
            query=str(query),
            bindings=tuple(getattr(record, "bindings", None) or ()),
            elapsed_ms=int(getattr(record, "elapsed_ms", 0) or 0),
            row_count=getattr(record, "row_count", None),
            cached=bool(getattr(record, "cached", False)),
        )
        with self._records_lock:
            self._records.append(entry)

    @property
    def queries(self) -> list[QueryRecord]:
        with self._records_lock:
            return list(self._records)

    @property
    def query_count(self) -> int:
        with self._records_lock:
            return len(self._records)

    @property
    def total_time_ms(self) -> int:
        return sum(entry.elapsed_ms for entry in self.queries)

    @property
    def average_time_ms(self) -> float:
        queries = self.queries
        if not queries:
            return 0.0
        return sum(entry.elapsed_ms for entry in queries) / len(queries)

    def slow_queries(self, threshold_ms: int) -> list[QueryRecord]:
        return [entry for entry in self.queries if entry.elapsed_ms >= threshold_ms]

    def clear(self) -> None:
        with self._records_lock:
            self._records.clear()

    @classmethod
    @contextmanager
    def attach(cls, logger: logging.Logger) -> Iterator[QueryRecorder]:
        """Record queries logged to ``logger`` for the duration of the block."""

        recorder = cls()
        previous_level = logger.level
        logger.addHandler(recorder)
        if logger.getEffectiveLevel() > logging.DEBUG:
            logger.setLevel(logging.DEBUG)
        try:
            yield recorder
        finally:
            logger.removeHandler(recorder)
            logger.setLevel(previous_level)


__all__ = ["QUERY_MESSAGE", "QueryRecord", "QueryRecorder"]
