from __future__ import annotations

import pytest
import redis

from emergency_connect.services.counters import InMemoryCounterStore
from emergency_connect.services.rate_limit import RateLimitConfig, RateLimiter


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(
        InMemoryCounterStore(),
        RateLimitConfig(attempts_per_window=5, window_seconds=300, lock_seconds=600),
        clock=clock,
    )


def _attempt(limiter: RateLimiter, key: str) -> bool:
    result = limiter.check(key)
    if result.allowed:
        limiter.record(key)
    return result.allowed


def test_allows_up_to_the_window_ceiling(limiter: RateLimiter) -> None:
    remaining = []
    for _ in range(5):
        result = limiter.check("ip-1")
        assert result.allowed
        remaining.append(result.remaining)
        limiter.record("ip-1")

    assert remaining == [5, 4, 3, 2, 1]


def test_sixth_check_locks_the_key(limiter: RateLimiter, clock: FakeClock) -> None:
    for _ in range(5):
        assert _attempt(limiter, "ip-1")

    result = limiter.check("ip-1")
    assert not result.allowed
    assert result.remaining == 0
    assert result.locked_until == clock.now + 600


def test_lock_holds_for_lock_seconds_from_triggering_check(
    limiter: RateLimiter, clock: FakeClock
) -> None:
    for _ in range(5):
        _attempt(limiter, "ip-1")
    triggered = limiter.check("ip-1")

    clock.advance(599)
    still_locked = limiter.check("ip-1")
    assert not still_locked.allowed
    assert still_locked.locked_until == triggered.locked_until

    clock.advance(2)
    after = limiter.check("ip-1")
    assert after.allowed
    assert after.remaining == 5


def test_expired_lock_clears_window(limiter: RateLimiter, clock: FakeClock) -> None:
    for _ in range(5):
        _attempt(limiter, "ip-1")
    limiter.check("ip-1")
    clock.advance(601)

    limiter.check("ip-1")
    entry = limiter.entry("ip-1")
    assert entry.timestamps == ()
    assert entry.locked_until is None


def test_old_attempts_slide_out_of_the_window(limiter: RateLimiter, clock: FakeClock) -> None:
    for _ in range(4):
        _attempt(limiter, "ip-1")
    clock.advance(301)

    result = limiter.check("ip-1")
    assert result.allowed
    assert result.remaining == 5


def test_keys_are_independent(limiter: RateLimiter) -> None:
    for _ in range(5):
        _attempt(limiter, "ip-1")
    assert not limiter.check("ip-1").allowed
    assert limiter.check("ip-2").allowed


def test_never_more_than_ceiling_in_any_window(limiter: RateLimiter, clock: FakeClock) -> None:
    accepted: list[float] = []
    for _ in range(200):
        if _attempt(limiter, "ip-1"):
            accepted.append(clock.now)
        clock.advance(7)

    for start in accepted:
        in_window = [t for t in accepted if start <= t < start + 300]
        assert len(in_window) <= 5


def test_reset_forgets_key(limiter: RateLimiter) -> None:
    for _ in range(5):
        _attempt(limiter, "ip-1")
    limiter.check("ip-1")

    limiter.reset("ip-1")

    assert limiter.check("ip-1").allowed


def test_sweep_removes_idle_entries(clock: FakeClock) -> None:
    store = InMemoryCounterStore()
    limiter = RateLimiter(store, clock=clock, sweep_interval_seconds=300)
    store.replace_timestamps("rl:idle", [])
    store.append_timestamp("rl:busy", clock.now)

    clock.advance(301)
    limiter.check("other")

    assert "rl:idle" not in store._timestamps
    assert store.timestamps("rl:busy") == [1_000.0]


def test_unreachable_store_denies_without_raising(clock: FakeClock, mocker) -> None:
    store = InMemoryCounterStore()
    limiter = RateLimiter(store, clock=clock)
    mocker.patch.object(store, "locked_until", side_effect=redis.ConnectionError("redis down"))
    mocker.patch.object(
        store, "append_timestamp", side_effect=redis.ConnectionError("redis down")
    )

    result = limiter.check("ip-1")
    limiter.record("ip-1")

    assert result.allowed is False
    assert result.remaining == 0
