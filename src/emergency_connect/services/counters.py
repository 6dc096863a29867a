"""Counter storage shared by the rate limiter, the analyzer quota and credential replay checks.

Two backends implement the same contract: a process-local store guarded by a
lock (single instance deployments and tests) and a Redis store for deployments
running several API processes behind one address.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable
from threading import Lock

import redis

from emergency_connect.core.settings import settings

logger = logging.getLogger(__name__)


class CounterStore(ABC):
    """Key/value primitives needed by the in-memory counters of the service."""

    @abstractmethod
    def timestamps(self, key: str) -> list[float]:
        """Return the recorded timestamps for `key`, oldest first."""

    @abstractmethod
    def replace_timestamps(self, key: str, values: Iterable[float]) -> None:
        """Overwrite the timestamps for `key`."""

    @abstractmethod
    def append_timestamp(self, key: str, value: float) -> None:
        """Append a timestamp to `key`."""

    @abstractmethod
    def locked_until(self, key: str) -> float | None:
        """Return the lock expiry for `key`, if any."""

    @abstractmethod
    def set_locked_until(self, key: str, value: float | None) -> None:
        """Set or clear the lock expiry for `key`."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return a scalar value."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a scalar value."""

    @abstractmethod
    def incr(self, key: str) -> int:
        """Increment an integer counter and return the new value."""

    @abstractmethod
    def claim_once(self, key: str, ttl_seconds: int) -> bool:
        """Mark `key` as used for `ttl_seconds`; return False if already marked."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove every value stored under `key`."""

    @abstractmethod
    def sweep(self, now: float) -> int:
        """Drop idle entries and return how many were removed."""


class InMemoryCounterStore(CounterStore):
    """Process-local counter store."""

    def __init__(self) -> None:
        self._timestamps: dict[str, list[float]] = defaultdict(list)
        self._locks: dict[str, float] = {}
        self._values: dict[str, str] = {}
        self._claims: dict[str, float] = {}
        self._lock = Lock()

    def timestamps(self, key: str) -> list[float]:
        with self._lock:
            return list(self._timestamps.get(key, ()))

    def replace_timestamps(self, key: str, values: Iterable[float]) -> None:
        with self._lock:
            self._timestamps[key] = list(values)

    def append_timestamp(self, key: str, value: float) -> None:
        with self._lock:
            self._timestamps[key].append(value)

    def locked_until(self, key: str) -> float | None:
        with self._lock:
            return self._locks.get(key)

    def set_locked_until(self, key: str, value: float | None) -> None:
        with self._lock:
            if value is None:
                self._locks.pop(key, None)
            else:
                self._locks[key] = value

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def incr(self, key: str) -> int:
        with self._lock:
            current = int(self._values.get(key, "0")) + 1
            self._values[key] = str(current)
            return current

    def claim_once(self, key: str, ttl_seconds: int) -> bool:
        now = time.time()
        with self._lock:
            expiry = self._claims.get(key)
            if expiry is not None and expiry > now:
                return False
            self._claims[key] = now + max(int(ttl_seconds), 1)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._timestamps.pop(key, None)
            self._locks.pop(key, None)
            self._values.pop(key, None)
            self._claims.pop(key, None)

    def sweep(self, now: float) -> int:
        removed = 0
        with self._lock:
            for key in list(self._timestamps):
                lock = self._locks.get(key)
                if not self._timestamps[key] and (lock is None or lock < now):
                    del self._timestamps[key]
                    self._locks.pop(key, None)
                    removed += 1
            for key in [k for k, expiry in self._claims.items() if expiry <= now]:
                del self._claims[key]
                removed += 1
        return removed


class RedisCounterStore(CounterStore):
    """Counter store shared between processes through Redis.

    Timestamps live in a Redis list, lock expiries and scalars in plain keys.
    Claimed credential ids expire through Redis TTLs, so `sweep` has nothing
    to do.
    """

    def __init__(self, client: redis.Redis, prefix: str = "ec") -> None:
        self._redis = client
        self._prefix = prefix

    def _key(self, kind: str, key: str) -> str:
        return f"{self._prefix}:{kind}:{key}"

    def timestamps(self, key: str) -> list[float]:
        return [float(v) for v in self._redis.lrange(self._key("ts", key), 0, -1)]

    def replace_timestamps(self, key: str, values: Iterable[float]) -> None:
        name = self._key("ts", key)
        items = [repr(v) for v in values]
        pipe = self._redis.pipeline()
        pipe.delete(name)
        if items:
            pipe.rpush(name, *items)
        pipe.execute()

    def append_timestamp(self, key: str, value: float) -> None:
        self._redis.rpush(self._key("ts", key), repr(value))

    def locked_until(self, key: str) -> float | None:
        raw = self._redis.get(self._key("lock", key))
        return float(raw) if raw is not None else None

    def set_locked_until(self, key: str, value: float | None) -> None:
        name = self._key("lock", key)
        if value is None:
            self._redis.delete(name)
        else:
            self._redis.set(name, repr(value))

    def get(self, key: str) -> str | None:
        raw = self._redis.get(self._key("val", key))
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    def set(self, key: str, value: str) -> None:
        self._redis.set(self._key("val", key), value)

    def incr(self, key: str) -> int:
        return int(self._redis.incr(self._key("val", key)))

    def claim_once(self, key: str, ttl_seconds: int) -> bool:
        return bool(
            self._redis.set(self._key("claim", key), "1", nx=True, ex=max(int(ttl_seconds), 1))
        )

    def delete(self, key: str) -> None:
        self._redis.delete(
            self._key("ts", key),
            self._key("lock", key),
            self._key("val", key),
            self._key("claim", key),
        )

    def sweep(self, now: float) -> int:
        return 0


_STORE: CounterStore | None = None


def build_counter_store(backend: str, redis_url: str | None = None) -> CounterStore:
    """Create a counter store for the configured backend name."""
    if backend == "memory":
        return InMemoryCounterStore()
    if backend == "redis":
        if not redis_url:
            raise ValueError("COUNTER_BACKEND=redis requires REDIS_URL")
        logger.info("Using Redis counter store")
        return RedisCounterStore(redis.from_url(redis_url))
    raise ValueError(f"Unknown counter backend: {backend}")


def get_counter_store() -> CounterStore:
    """Return the process-wide counter store."""
    global _STORE
    if _STORE is None:
        _STORE = build_counter_store(settings.counter_backend, settings.redis_url)
    return _STORE
