"""Materialized statement results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Sequence


@dataclass(frozen=True, slots=True)
class Result:
    """Rows and counters returned by a driver statement.

    Rows are kept as tuples aligned with ``columns`` so results stay cheap to
    cache and pickle; ``fetch_all`` and ``first`` expose them as dicts.
    """

    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    row_count: int = 0
    elapsed_ms: int = 0
    last_insert_id: str | None = None

    @classmethod
    def from_mappings(cls, records: Iterable[Mapping[str, Any]], **kwargs: Any) -> Result:
        columns: tuple[str, ...] = ()
        rows: list[tuple[Any, ...]] = []
        for record in records:
            if not columns:
                columns = tuple(str(key) for key in record.keys())
            rows.append(tuple(record[key] for key in columns))
        kwargs.setdefault("row_count", len(rows))
        return cls(columns=columns, rows=tuple(rows), **kwargs)

    @classmethod
    def from_cursor(
        cls, description: Sequence[Sequence[Any]] | None, rows: Iterable[Sequence[Any]], **kwargs: Any
    ) -> Result:
        columns = tuple(str(column[0]) for column in description or ())
        materialized = tuple(tuple(row) for row in rows)
        kwargs.setdefault("row_count", len(materialized))
        return cls(columns=columns, rows=materialized, **kwargs)

    def fetch_all(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def first(self) -> dict[str, Any] | None:
        if not self.rows:
            return None
        return dict(zip(self.columns, self.rows[0]))

    def fetch_column(self, column: int | str = 0) -> list[Any]:
        index = self.columns.index(column) if isinstance(column, str) else column
        return [row[index] for row in self.rows]

    def scalar(self) -> Any:
        """First column of the first row, or ``None``."""

        if not self.rows or not self.rows[0]:
            return None
        return self.rows[0][0]

    def is_empty(self) -> bool:
        return not self.rows

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for row in self.rows:
            yield dict(zip(self.columns, row))


__all__ = ["Result"]
