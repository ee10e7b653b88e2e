"""Simple cache abstractions."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Cache(Protocol):
    """Cache interface for simple key-value data."""

    def get(self, key: str) -> object | None:
        """Return a cached value if present and not expired."""

    def get_stale(self, key: str) -> object | None:
        """Return a cached value even if it has expired."""

    def set(self, key: str, value: object, ttl_seconds: float) -> None:
        """Store a cached value with a TTL in seconds."""

    def stored_at(self, key: str) -> datetime | None:
        """Return when a value was stored, if present."""

    def clear(self) -> None:
        """Drop every entry."""


@dataclass
class _CacheEntry:
    value: object
    stored_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class InMemoryCache(Cache):
    """In-memory cache that keeps expired entries for stale reads."""

    _entries: dict[str, _CacheEntry]
    _now: Callable[[], datetime]

    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self._entries = {}
        self._now = now

    def get(self, key: str) -> object | None:
        """Return a cached value if it hasn't expired."""
        entry = self._entries.get(key)
        if entry is None or self._now() >= entry.expires_at:
            return None
        return entry.value

    def get_stale(self, key: str) -> object | None:
        """Return the last stored value regardless of expiry."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: object, ttl_seconds: float) -> None:
        """Store a cached value with a TTL."""
        now = self._now()
        self._entries[key] = _CacheEntry(
            value=value,
            stored_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def stored_at(self, key: str) -> datetime | None:
        """Return the time a value was stored."""
        entry = self._entries.get(key)
        return entry.stored_at if entry is not None else None

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
