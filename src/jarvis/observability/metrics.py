"""Metrics sink injected into pipeline components.

Components receive a MetricsSink instead of touching module-level counters,
so a test (or a worker process) owns its own counters.
"""

from __future__ import annotations

import threading
from typing import Protocol


class MetricsSink(Protocol):
    """Counter/gauge abstraction."""

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        ...

    def gauge(self, name: str, value: float, **tags: str) -> None:
        ...


def _series_key(name: str, tags: dict[str, str]) -> str:
    if not tags:
        return name
    labels = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}{{{labels}}}"


class NullMetrics:
    """Discards everything."""

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        return None

    def gauge(self, name: str, value: float, **tags: str) -> None:
        return None


class InMemoryMetrics:
    """Thread-safe in-process counters and gauges."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        key = _series_key(name, tags)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def gauge(self, name: str, value: float, **tags: str) -> None:
        key = _series_key(name, tags)
        with self._lock:
            self._gauges[key] = value

    def counter(self, name: str, **tags: str) -> int:
        """Current value of one counter series (0 if never incremented)."""
        with self._lock:
            return self._counters.get(_series_key(name, tags), 0)

    def snapshot(self) -> dict[str, dict]:
        """Copy of all series, plus derived cache-hit and fallback rates."""
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)

        hits = counters.get("crm.cache.hit", 0)
        misses = counters.get("crm.cache.miss", 0)
        calls = counters.get("nlu.calls", 0)
        fallbacks = sum(v for k, v in counters.items() if k.startswith("nlu.fallbacks"))

        derived = {
            "cache_hit_rate": round(hits / (hits + misses), 4) if hits + misses else 0.0,
            "nlu_fallback_rate": round(fallbacks / calls, 4) if calls else 0.0,
        }
        return {"counters": counters, "gauges": gauges, "derived": derived}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
