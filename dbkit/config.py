"""Connection configuration models and settings file loading."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import tomllib
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError, ValidationError

LOG = logging.getLogger(__name__)

SETTINGS_FILE = Path.cwd() / "settings" / "database.toml"

TABLES_KEY = "tables"

# Presence of any of these keys marks an entry as a connection record.
CONNECTION_KEYS = frozenset(
    {"driver", "dbdriver", "host", "hostname", "username", "password", "database", "dbname"}
)

LEGACY_RENAMES: tuple[tuple[str, str], ...] = (
    ("dbdriver", "driver"),
    ("hostname", "host"),
    ("dbname", "database"),
)


class ConnectionConfig(BaseModel):
    """Settings for one named database connection."""

    model_config = ConfigDict(frozen=True)

    driver: str = ""
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    database: str | None = None
    charset: str | None = None
    prefix: str = ""
    tables: dict[str, str] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], *, name: str = "default") -> ConnectionConfig:
        """Build a config from a raw mapping, collecting unknown keys into ``options``."""

        data = normalize_connection(record)
        known: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, value in data.items():
            if key in cls.model_fields:
                known[key] = value
            else:
                extras[key] = value
        if TABLES_KEY in known:
            known[TABLES_KEY] = validate_tables(known[TABLES_KEY], f"{name}.{TABLES_KEY}")
        options = dict(known.pop("options", None) or {})
        options.update(extras)
        if known.get("prefix") is None:
            known.pop("prefix", None)
        try:
            return cls(**known, options=options)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid configuration for connection '{name}': {exc}") from exc

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


class DatabaseSettings(BaseModel):
    """Normalized registry of named connections plus the global table mapping."""

    model_config = ConfigDict(frozen=True)

    connections: dict[str, ConnectionConfig] = Field(default_factory=dict)
    tables: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> DatabaseSettings:
        """Validate and normalize a raw ``{name: record}`` configuration mapping.

        Entries that do not look like connection records are ignored. When no
        ``default`` entry exists the first connection record is registered again
        under ``default``, taking the global tables when it declares none.
        """

        if not isinstance(raw, Mapping):
            raise ConfigurationError("Database configuration must be a mapping of connection names.")
        global_tables: dict[str, str] = {}
        if TABLES_KEY in raw:
            global_tables = validate_tables(raw[TABLES_KEY], TABLES_KEY)
        connections: dict[str, ConnectionConfig] = {}
        for name, entry in raw.items():
            if name == TABLES_KEY:
                continue
            if not isinstance(entry, Mapping) or not is_connection_record(entry):
                LOG.debug("Ignoring non-connection configuration entry", extra={"entry": name})
                continue
            connections[str(name)] = ConnectionConfig.from_record(entry, name=str(name))
        if "default" not in connections and connections:
            first_name, first = next(iter(connections.items()))
            if not first.tables and global_tables:
                first = first.model_copy(update={"tables": dict(global_tables)})
            connections["default"] = first
            LOG.debug("Promoted first connection to default", extra={"connection": first_name})
        return cls(connections=connections, tables=global_tables)

    def names(self) -> tuple[str, ...]:
        return tuple(self.connections)

    def get(self, name: str) -> ConnectionConfig | None:
        return self.connections.get(name)

    def tables_for(self, name: str) -> dict[str, str]:
        """Global mapping overlaid with the connection's own entries."""

        merged = dict(self.tables)
        config = self.connections.get(name)
        if config is not None:
            merged.update(config.tables)
        return merged


def is_connection_record(entry: Mapping[str, Any]) -> bool:
    return any(key in entry for key in CONNECTION_KEYS)


def normalize_connection(record: Mapping[str, Any]) -> dict[str, Any]:
    """Rename legacy keys; the new key wins when both are present."""

    data = dict(record)
    for legacy, current in LEGACY_RENAMES:
        if legacy not in data:
            continue
        value = data.pop(legacy)
        data.setdefault(current, value)
    return data


def validate_tables(value: Any, where: str = TABLES_KEY) -> dict[str, str]:
    """Return ``value`` as a table mapping or raise ``ValidationError``."""

    if not isinstance(value, Mapping):
        raise ValidationError(f"Table configuration '{where}' must be a mapping of names.")
    tables: dict[str, str] = {}
    for logical, physical in value.items():
        if not isinstance(logical, str) or not logical:
            raise ValidationError(f"Table configuration '{where}' has an invalid logical name: {logical!r}")
        if not isinstance(physical, str) or not physical:
            raise ValidationError(
                f"Table configuration '{where}' maps '{logical}' to an invalid name: {physical!r}"
            )
        tables[logical] = physical
    return tables


def load_settings(path: Path | None = None) -> DatabaseSettings | None:
    """Load the settings file; return ``None`` when it does not exist."""

    target = path or SETTINGS_FILE
    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return None
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Unable to read database settings from {target}: {exc}") from exc
    LOG.debug("Loaded database settings", extra={"path": str(target)})
    return DatabaseSettings.from_mapping(raw)


__all__ = [
    "CONNECTION_KEYS",
    "ConnectionConfig",
    "DatabaseSettings",
    "SETTINGS_FILE",
    "is_connection_record",
    "load_settings",
    "normalize_connection",
    "validate_tables",
]
