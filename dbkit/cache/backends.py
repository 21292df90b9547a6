"""Key/value cache backends with per-entry expiry."""

from __future__ import annotations

import hashlib
import logging
import os
import pickle
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Literal, Mapping, Protocol, runtime_checkable

import redis
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

LOG = logging.getLogger(__name__)

Clock = Callable[[], float]


@runtime_checkable
class CacheBackend(Protocol):
    """Storage contract shared by every cache implementation.

    ``set`` and ``get`` must be atomic per key: readers never observe a
    partially written value.
    """

    def get(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` when absent or expired."""

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store ``value``; ``ttl`` of ``None`` means no expiry."""

    def has(self, key: str) -> bool:
        """Whether a live entry exists for ``key``."""

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether anything was deleted."""

    def clear(self) -> bool:
        """Remove every entry owned by this backend."""

    def keys(self, prefix: str = "") -> Iterator[str]:
        """Iterate live keys starting with ``prefix``."""


def _expires_at(ttl: int | None, clock: Clock) -> float | None:
    return None if ttl is None else clock() + ttl


def _is_live(expires_at: float | None, clock: Clock) -> bool:
    return expires_at is None or clock() < expires_at


class MemoryCache:
    """In-process cache; expired entries are dropped lazily on access."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if not _is_live(expires_at, self._clock):
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        with self._lock:
            self._entries[key] = (value, _expires_at(ttl, self._clock))
        return True

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> bool:
        with self._lock:
            self._entries.clear()
        return True

    def keys(self, prefix: str = "") -> Iterator[str]:
        with self._lock:
            snapshot = [
                key
                for key, (_, expires_at) in self._entries.items()
                if key.startswith(prefix) and _is_live(expires_at, self._clock)
            ]
        return iter(snapshot)


class FileCache:
    """One pickle file per key under ``directory``, replaced atomically."""

    SUFFIX = ".cache"

    def __init__(self, directory: str | os.PathLike[str], *, clock: Clock = time.time) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, key: str) -> Any | None:
        entry = self._read(self._path(key))
        if entry is None:
            return None
        if not _is_live(entry["expires_at"], self._clock):
            self.delete(key)
            return None
        return entry["value"]

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        payload = {"key": key, "value": value, "expires_at": _expires_at(ttl, self._clock)}
        target = self._path(key)
        handle, temp_name = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(handle, "wb") as stream:
                pickle.dump(payload, stream, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(temp_name, target)
        except OSError:
            LOG.warning("Failed to write cache file", extra={"path": str(target)}, exc_info=True)
            Path(temp_name).unlink(missing_ok=True)
            return False
        return True

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def clear(self) -> bool:
        for path in self._directory.glob(f"*{self.SUFFIX}"):
            path.unlink(missing_ok=True)
        return True

    def keys(self, prefix: str = "") -> Iterator[str]:
        for path in sorted(self._directory.glob(f"*{self.SUFFIX}")):
            entry = self._read(path)
            if entry is None or not _is_live(entry["expires_at"], self._clock):
                continue
            if entry["key"].startswith(prefix):
                yield entry["key"]

    def _path(self, key: str) -> Path:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self._directory / f"{digest}{self.SUFFIX}"

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            with path.open("rb") as stream:
                entry = pickle.load(stream)
        except FileNotFoundError:
            return None
        except (OSError, pickle.UnpicklingError, EOFError):
            LOG.warning("Discarding unreadable cache file", extra={"path": str(path)})
            path.unlink(missing_ok=True)
            return None
        if not isinstance(entry, dict) or "key" not in entry:
            return None
        return entry


class RedisCache:
    """Cache stored in Redis under a key prefix; expiry is delegated to Redis."""

    def __init__(self, client: redis.Redis, *, prefix: str = "db_cache:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> RedisCache:
        if settings.url:
            client = redis.Redis.from_url(settings.url)
        else:
            client = redis.Redis(
                host=settings.host,
                port=settings.port,
                db=settings.database,
                password=settings.password,
                socket_timeout=settings.timeout,
            )
        return cls(client, prefix=settings.prefix)

    @property
    def client(self) -> redis.Redis:
        return self._client

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._prefix + key)
        if raw is None:
            return None
        return pickle.loads(raw)

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        payload = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        if ttl is None:
            return bool(self._client.set(self._prefix + key, payload))
        if ttl <= 0:
            self.delete(key)
            return True
        return bool(self._client.setex(self._prefix + key, ttl, payload))

    def has(self, key: str) -> bool:
        return bool(self._client.exists(self._prefix + key))

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(self._prefix + key))

    def clear(self) -> bool:
        stale = list(self._client.scan_iter(match=f"{self._prefix}*"))
        if stale:
            self._client.delete(*stale)
        return True

    def keys(self, prefix: str = "") -> Iterator[str]:
        for raw in self._client.scan_iter(match=f"{self._prefix}{prefix}*"):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            yield name[len(self._prefix) :]


class CacheSettings(BaseModel):
    """Options accepted by ``create_cache``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["memory", "file", "redis"] = "memory"
    directory: str | None = None
    url: str | None = None
    host: str = "localhost"
    port: int = 6379
    database: int = 0
    password: str | None = None
    timeout: float | None = None
    prefix: str = "db_cache:"


def create_cache(options: Mapping[str, Any] | CacheSettings | None = None) -> CacheBackend:
    """Build a backend from ``{"type": "memory" | "file" | "redis", ...}``."""

    try:
        settings = options if isinstance(options, CacheSettings) else CacheSettings(**dict(options or {}))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid cache configuration: {exc}") from exc
    if settings.type == "file":
        if not settings.directory:
            raise ValidationError("File cache requires a 'directory' option.")
        return FileCache(settings.directory)
    if settings.type == "redis":
        return RedisCache.from_settings(settings)
    return MemoryCache()


__all__ = [
    "CacheBackend",
    "CacheSettings",
    "FileCache",
    "MemoryCache",
    "RedisCache",
    "create_cache",
]
