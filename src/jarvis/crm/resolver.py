"""Contract status resolution: cache-aside, bounded retry, overall deadline.

resolve() flow:
1. Cache hit -> return snapshot, no provider call
2. Miss -> join the in-flight lookup for this contract, or start one
3. The lookup retries retryable errors with exponential backoff
4. The caller waits at most deadline_seconds; past that it gets
   CrmTimeoutError and the late result is dropped (not cached)
5. A result received in time is cached for ttl_seconds

Not-found is terminal: never retried, never cached.
"""

from __future__ import annotations

import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable

from jarvis.crm.provider import ContractStatusProvider
from jarvis.domain.errors import CrmLookupError, CrmTimeoutError
from jarvis.domain.models import ContractStatus
from jarvis.infra.cache import Cache
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import MetricsSink, NullMetrics
from jarvis.observability.redaction import mask_contract, safe_log_context

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "crm:contract:"

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
DEFAULT_MAX_DELAY = 10.0
DEFAULT_DEADLINE_SECONDS = 50.0


def cache_key(contract_number: str) -> str:
    return f"{CACHE_KEY_PREFIX}{contract_number}"


@dataclass(frozen=True)
class Resolution:
    status: ContractStatus
    from_cache: bool
    latency_ms: int


class ContractStatusResolver:
    """Resolves contract numbers to status snapshots.

    Thread-safe. Concurrent misses for the same contract share a single
    provider lookup.
    """

    def __init__(
        self,
        provider: ContractStatusProvider,
        cache: Cache,
        metrics: MetricsSink | None = None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 8,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._provider = provider
        self._cache = cache
        self._metrics = metrics or NullMetrics()
        self._ttl_seconds = ttl_seconds
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._deadline_seconds = deadline_seconds
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="crm-lookup"
        )
        self._inflight_lock = threading.Lock()
        self._inflight: dict[str, Future[ContractStatus]] = {}

    @classmethod
    def from_env(
        cls,
        provider: ContractStatusProvider,
        cache: Cache,
        metrics: MetricsSink | None = None,
    ) -> "ContractStatusResolver":
        """Build with settings from environment.

        Optional env:
        - CACHE_TTL_CRM (seconds, default 300)
        - CRM_MAX_ATTEMPTS (default 3)
        - CRM_RETRY_BASE_DELAY / CRM_RETRY_MAX_DELAY (seconds, default 2 / 10)
        - CRM_TIMEOUT (overall deadline in seconds, default 50)
        """
        return cls(
            provider,
            cache,
            metrics,
            ttl_seconds=int(os.environ.get("CACHE_TTL_CRM", DEFAULT_TTL_SECONDS)),
            max_attempts=int(os.environ.get("CRM_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            base_delay=float(os.environ.get("CRM_RETRY_BASE_DELAY", DEFAULT_BASE_DELAY)),
            max_delay=float(os.environ.get("CRM_RETRY_MAX_DELAY", DEFAULT_MAX_DELAY)),
            deadline_seconds=float(os.environ.get("CRM_TIMEOUT", DEFAULT_DEADLINE_SECONDS)),
        )

    def resolve(self, contract_number: str, force_refresh: bool = False) -> Resolution:
        """Return the status of a contract.

        Args:
            contract_number: Normalized contract number (F\\d{7}D).
            force_refresh: Skip the cache read (the result is still cached).

        Raises:
            ContractNotFoundError: The contract does not exist.
            CrmTimeoutError: Deadline exceeded, or last attempt timed out.
            CrmAuthError / CrmError: Retries exhausted.
        """
        started = time.monotonic()
        key = cache_key(contract_number)

        if not force_refresh:
            cached = self._read_cache(key)
            if cached is not None:
                self._metrics.increment("crm.cache.hit")
                return Resolution(status=cached, from_cache=True, latency_ms=_elapsed_ms(started))

        self._metrics.increment("crm.cache.miss")
        future = self._join_or_start(key, contract_number)

        try:
            status = future.result(timeout=self._deadline_seconds)
        except FutureTimeoutError:
            self._metrics.increment("crm.lookups", outcome="deadline")
            logger.warning(
                "crm lookup deadline exceeded",
                extra={
                    "extra_fields": safe_log_context(
                        contract=mask_contract(contract_number),
                        deadline_seconds=self._deadline_seconds,
                    )
                },
            )
            raise CrmTimeoutError("CRM lookup exceeded overall deadline") from None
        except CrmLookupError as e:
            self._metrics.increment("crm.lookups", outcome=e.code)
            raise

        self._cache.set(key, status.to_dict(), self._ttl_seconds)
        latency_ms = _elapsed_ms(started)
        self._metrics.increment("crm.lookups", outcome="ok")
        self._metrics.gauge("crm.latency_ms", latency_ms)
        return Resolution(status=status, from_cache=False, latency_ms=latency_ms)

    def invalidate(self, contract_number: str) -> None:
        self._cache.delete(cache_key(contract_number))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _read_cache(self, key: str) -> ContractStatus | None:
        raw = self._cache.get(key)
        if raw is None:
            return None
        try:
            return ContractStatus.from_dict(raw)
        except (TypeError, AttributeError):
            # Unreadable entry: drop it and treat as a miss
            self._cache.delete(key)
            return None

    def _join_or_start(self, key: str, contract_number: str) -> Future[ContractStatus]:
        with self._inflight_lock:
            future = self._inflight.get(key)
            if future is not None:
                self._metrics.increment("crm.lookups.coalesced")
                return future
            future = self._executor.submit(self._lookup_with_retry, contract_number)
            self._inflight[key] = future

        def _release(done: Future[ContractStatus]) -> None:
            with self._inflight_lock:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

        future.add_done_callback(_release)
        return future

    def _lookup_with_retry(self, contract_number: str) -> ContractStatus:
        stop_at = time.monotonic() + self._deadline_seconds
        log_ctx = safe_log_context(contract=mask_contract(contract_number))

        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._provider.lookup(contract_number)
            except CrmLookupError as e:
                if not e.retryable or attempt == self._max_attempts:
                    raise
                delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
                if time.monotonic() + delay >= stop_at:
                    # No caller will still be waiting after the sleep
                    raise
                self._metrics.increment("crm.retries", error=e.code)
                logger.warning(
                    "crm lookup failed, retrying",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "attempt": str(attempt),
                            "error_code": e.code,
                            "delay_seconds": str(delay),
                        }
                    },
                )
                self._sleep(delay)

        raise AssertionError("unreachable")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
