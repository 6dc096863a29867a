"""Sliding-window attempt limiter with lockout.

Guards the covert entry point against phrase guessing. `check` and `record`
are separate calls: callers record an attempt only after `check` allowed it.
The pair is not atomic, so concurrent callers sharing a key may overshoot the
ceiling slightly.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import redis

from emergency_connect.core.settings import settings
from emergency_connect.services.counters import CounterStore, get_counter_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits applied to one key."""

    attempts_per_window: int = 5
    window_seconds: int = 300
    lock_seconds: int = 600


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    locked_until: float | None


@dataclass(frozen=True)
class RateLimitEntry:
    """Snapshot of the state tracked for one key."""

    key: str
    timestamps: tuple[float, ...]
    locked_until: float | None


class RateLimiter:
    """Sliding-window limiter; denies, never raises."""

    def __init__(
        self,
        store: CounterStore,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 300.0,
    ) -> None:
        self._store = store
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def _key(self, key: str) -> str:
        return f"rl:{key}"

    def check(self, key: str) -> RateLimitResult:
        """Return whether another attempt for `key` is allowed right now.

        An unreachable counter store denies the attempt.
        """
        try:
            return self._check(key)
        except redis.RedisError as e:
            logger.warning("Rate limit store unavailable; denying %s: %s", key, e)
            return RateLimitResult(allowed=False, remaining=0, locked_until=None)

    def _check(self, key: str) -> RateLimitResult:
        now = self._clock()
        self._maybe_sweep(now)
        name = self._key(key)

        locked_until = self._store.locked_until(name)
        if locked_until is not None and locked_until > now:
            return RateLimitResult(allowed=False, remaining=0, locked_until=locked_until)

        if locked_until is not None:
            self._store.set_locked_until(name, None)
            self._store.replace_timestamps(name, [])

        window_start = now - self.config.window_seconds
        recent = [t for t in self._store.timestamps(name) if t > window_start]
        self._store.replace_timestamps(name, recent)

        remaining = self.config.attempts_per_window - len(recent)
        if remaining <= 0:
            locked_until = now + self.config.lock_seconds
            self._store.set_locked_until(name, locked_until)
            return RateLimitResult(allowed=False, remaining=0, locked_until=locked_until)

        return RateLimitResult(allowed=True, remaining=remaining, locked_until=None)

    def record(self, key: str) -> None:
        """Record an attempt; call only after `check` allowed it."""
        try:
            self._store.append_timestamp(self._key(key), self._clock())
        except redis.RedisError as e:
            logger.warning("Could not record attempt for %s: %s", key, e)

    def reset(self, key: str) -> None:
        """Forget everything tracked for `key`."""
        self._store.delete(self._key(key))

    def entry(self, key: str) -> RateLimitEntry:
        """Return the current state for `key` (monitoring and tests)."""
        name = self._key(key)
        return RateLimitEntry(
            key=key,
            timestamps=tuple(self._store.timestamps(name)),
            locked_until=self._store.locked_until(name),
        )

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self._sweep_interval:
            self._last_sweep = now
            self._store.sweep(now)


_LIMITER: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the shared limiter for covert entry attempts."""
    global _LIMITER
    if _LIMITER is None:
        _LIMITER = RateLimiter(
            get_counter_store(),
            RateLimitConfig(**settings.rate_limit_defaults),
            sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
        )
    return _LIMITER
