"""
Key-value cache abstraction for HTTP response caching.

Supports an in-memory store for tests/local runs and a Redis-backed
implementation for production. Misses and backend failures are both raised
as ``CacheError`` so callers can fall back to live computation with a single
``except`` clause, while ``CacheMiss`` keeps a miss distinguishable.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class CacheError(Exception):
    """The cache could not serve or store a value."""


class CacheMiss(CacheError):
    def __init__(self, key: str):
        super().__init__(f"no cache entry for {key!r}")
        self.key = key


class CacheStore(Protocol):
    """Minimal byte cache interface used by the response cache."""

    def get(self, key: str) -> bytes:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def set_with_expiry(self, key: str, value: bytes, ttl_seconds: float) -> None:
        ...

    def ping(self) -> bool:
        ...


@dataclass
class InMemoryCacheStore:
    """Thread-safe dict cache with per-entry expiry, for testing/dev."""

    clock: Callable[[], float] = time.monotonic
    entries: dict[str, tuple[bytes, Optional[float]]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes:
        with self._lock:
            entry = self.entries.get(key)
            if entry is None:
                raise CacheMiss(key)
            value, expires_at = entry
            if expires_at is not None and self.clock() >= expires_at:
                del self.entries[key]
                raise CacheMiss(key)
            return value

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self.entries[key] = (bytes(value), None)

    def set_with_expiry(self, key: str, value: bytes, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise CacheError(f"ttl must be positive, got {ttl_seconds}")
        with self._lock:
            now = self.clock()
            if key not in self.entries:
                self._prune(now)
            self.entries[key] = (bytes(value), now + ttl_seconds)

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (_, expires_at) in self.entries.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self.entries[key]

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()


@dataclass
class RedisCacheStore:
    """Redis-backed cache using plain GET/SET with optional expiry."""

    url: str

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def get(self, key: str) -> bytes:
        try:
            value = self.client.get(key)
        except redis_exceptions.RedisError as exc:
            raise CacheError(f"redis GET {key!r} failed: {exc}") from exc
        if value is None:
            raise CacheMiss(key)
        return value

    def set(self, key: str, value: bytes) -> None:
        try:
            self.client.set(key, value)
        except redis_exceptions.RedisError as exc:
            raise CacheError(f"redis SET {key!r} failed: {exc}") from exc

    def set_with_expiry(self, key: str, value: bytes, ttl_seconds: float) -> None:
        try:
            # px keeps sub-second TTLs exact; redis rejects a zero expiry.
            self.client.set(key, value, px=max(1, int(ttl_seconds * 1000)))
        except redis_exceptions.RedisError as exc:
            raise CacheError(f"redis SET {key!r} failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis_exceptions.RedisError:
            return False
