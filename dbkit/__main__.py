"""Run one SQL statement against a configured connection: ``python -m dbkit``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .database import Database
from .errors import ConfigurationError, DatabaseError
from .manager import NOT_INITIALIZED, ConnectionManager
from .result import Result


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dbkit", description=__doc__)
    parser.add_argument("--settings", type=Path, default=None, help="Path to database.toml")
    parser.add_argument("--connection", default="default", help="Connection name to use")
    parser.add_argument("--verbose", action="store_true", help="Log executed statements")
    parser.add_argument("sql", help="SQL statement to run")
    return parser.parse_args(argv)


def render(result: Result) -> list[str]:
    if not result.columns:
        return [f"{result.row_count} row(s) affected"]
    lines = ["\t".join(result.columns)]
    lines.extend("\t".join("" if value is None else str(value) for value in row) for row in result.rows)
    return lines


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    manager = ConnectionManager.from_settings_file(args.settings)
    try:
        if not manager.is_configured():
            raise ConfigurationError(NOT_INITIALIZED)
        result = Database.create(args.connection, manager).raw(args.sql)
    except (ConfigurationError, DatabaseError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        manager.close_all()
    for line in render(result):
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
