# src/api/rate_limit.py — v1
"""Per-caller sliding-window rate limiting over an external counter store.

The window is approximated with two fixed buckets: the current bucket's
count plus the previous bucket's count weighted by how much of it still
overlaps the sliding window. Counters live behind ``BaseCounterStore`` so
limits hold across restarts and processes when backed by Redis.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from factgraph.core.errors import RateLimitExceededError

if TYPE_CHECKING:
    from factgraph.config.settings import Settings

logger = logging.getLogger(__name__)

_KEY_PREFIX = "factgraph:ratelimit:"


class BaseCounterStore(ABC):
    """Key-value counters with TTL."""

    @abstractmethod
    def incr(self, key: str, ttl_s: int) -> int:
        """Increment ``key`` and return the new value. Sets TTL on creation."""

    @abstractmethod
    def get(self, key: str) -> int:
        """Current value, 0 if missing or expired."""


class MemoryCounterStore(BaseCounterStore):
    """In-process counters. Single-process deployments and tests only."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> int:
        entry = self._counters.get(key)
        if entry is None or entry[1] <= now:
            self._counters.pop(key, None)
            return 0
        return entry[0]

    def incr(self, key: str, ttl_s: int) -> int:
        with self._lock:
            now = self._clock()
            value = self._live(key, now) + 1
            expires = self._counters[key][1] if value > 1 else now + ttl_s
            self._counters[key] = (value, expires)
            return value

    def get(self, key: str) -> int:
        with self._lock:
            return self._live(key, self._clock())


class RedisCounterStore(BaseCounterStore):
    """Redis-backed counters (RATE_LIMIT_BACKEND=redis).

    Requires 'redis' package: pip install redis.
    """

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)

    def incr(self, key: str, ttl_s: int) -> int:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.expire(key, ttl_s, nx=True)
        value, _ = pipe.execute()
        return int(value)

    def get(self, key: str) -> int:
        value = self._client.get(key)
        return int(value) if value is not None else 0

    def close(self) -> None:
        self._client.close()


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per ``window_s`` per identity.

    Args:
        store: Counter store.
        max_requests: Requests allowed per window.
        window_s: Window length in seconds.
        clock: Wall clock in seconds.
    """

    def __init__(
        self,
        store: BaseCounterStore,
        max_requests: int = 10,
        window_s: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests <= 0 or window_s <= 0:
            raise ValueError("max_requests and window_s must be > 0")
        self._store = store
        self._max = max_requests
        self._window = window_s
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> SlidingWindowRateLimiter:
        store: BaseCounterStore
        if settings.rate_limit_backend == "redis":
            store = RedisCounterStore(settings.rate_limit_redis_url)
        else:
            store = MemoryCounterStore()
        return cls(store, settings.rate_limit_requests, settings.rate_limit_window_s)

    def _key(self, identity: str, bucket: int) -> str:
        return f"{_KEY_PREFIX}{identity}:{bucket}"

    def current_usage(self, identity: str) -> float:
        """Weighted request count in the sliding window ending now."""
        now = self._clock()
        bucket = int(now // self._window)
        elapsed_fraction = (now % self._window) / self._window
        previous = self._store.get(self._key(identity, bucket - 1))
        current = self._store.get(self._key(identity, bucket))
        return previous * (1.0 - elapsed_fraction) + current

    def check(self, identity: str) -> None:
        """Count one request for ``identity``.

        Raises:
            RateLimitExceededError: If the request would exceed the limit.
        """
        now = self._clock()
        if self.current_usage(identity) + 1 > self._max:
            retry_after = self._window - (now % self._window)
            logger.warning("Rate limit exceeded for %s", identity)
            raise RateLimitExceededError(identity, math.ceil(retry_after))
        bucket = int(now // self._window)
        # Two windows so the bucket is still readable as "previous".
        self._store.incr(self._key(identity, bucket), ttl_s=2 * self._window)
