"""Key/value cache with per-entry TTL.

Two backends:
- InMemoryTTLCache: process-local, lock-guarded (dev/tests, single worker)
- RedisCache: shared across workers, values stored as JSON

get_cache() picks Redis when REDIS_URL is set.
"""

from __future__ import annotations

import json
import os
import threading
import time
from typing import Any, Callable, Protocol

import redis

from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)


class Cache(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryTTLCache:
    """Dict-backed cache. Entries expire lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisCache:
    """Redis-backed cache. Values must be JSON-serializable."""

    def __init__(self, client: redis.Redis, prefix: str = "jarvis:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        client = redis.Redis.from_url(url, socket_timeout=2, decode_responses=True)
        return cls(client)

    def get(self, key: str) -> Any | None:
        try:
            raw = self._client.get(self._prefix + key)
        except redis.RedisError as e:
            # A cache outage degrades to a miss
            logger.warning(
                "cache read failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._client.set(self._prefix + key, json.dumps(value), ex=ttl_seconds)
        except redis.RedisError as e:
            logger.warning(
                "cache write failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._prefix + key)
        except redis.RedisError as e:
            logger.warning(
                "cache delete failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )


def get_cache() -> Cache:
    """Build the cache backend from environment."""
    url = os.environ.get("REDIS_URL", "")
    if url:
        return RedisCache.from_url(url)
    return InMemoryTTLCache()
