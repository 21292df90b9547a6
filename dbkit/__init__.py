"""Dialect-aware database access: connections, query builders and a result cache."""

from __future__ import annotations

from .cache import FileCache, MemoryCache, QueryCache, RedisCache, create_cache
from .config import ConnectionConfig, DatabaseSettings, load_settings
from .connection import Connection
from .database import Database
from .dialects import Dialect
from .errors import ConfigurationError, DatabaseError, ValidationError
from .manager import ConnectionManager
from .querylog import QueryRecorder
from .result import Result
from .sql import Column, Raw, Sql, Value
from .tables import TableConfiguration

__version__ = "0.1.0"

__all__ = [
    "Column",
    "ConfigurationError",
    "Connection",
    "ConnectionConfig",
    "ConnectionManager",
    "Database",
    "DatabaseError",
    "DatabaseSettings",
    "Dialect",
    "FileCache",
    "MemoryCache",
    "QueryCache",
    "QueryRecorder",
    "RedisCache",
    "Raw",
    "Result",
    "Sql",
    "TableConfiguration",
    "ValidationError",
    "Value",
    "create_cache",
    "load_settings",
]
