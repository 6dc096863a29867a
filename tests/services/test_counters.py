from __future__ import annotations

import time

import pytest

from emergency_connect.services.counters import (
    InMemoryCounterStore,
    RedisCounterStore,
    build_counter_store,
)


def test_in_memory_claim_once() -> None:
    store = InMemoryCounterStore()

    assert store.claim_once("jti:abc", 60)
    assert not store.claim_once("jti:abc", 60)
    assert store.claim_once("jti:other", 60)


def test_in_memory_sweep_drops_expired_claims() -> None:
    store = InMemoryCounterStore()
    store.claim_once("jti:abc", 1)

    assert store.sweep(time.time() + 5) == 1
    assert store.claim_once("jti:abc", 1)


def test_in_memory_scalars() -> None:
    store = InMemoryCounterStore()

    assert store.get("count") is None
    assert store.incr("count") == 1
    assert store.incr("count") == 2
    store.set("day", "2026-01-01")
    assert store.get("day") == "2026-01-01"

    store.delete("count")
    assert store.get("count") is None


def test_redis_store_uses_prefixed_keys(mocker) -> None:
    client = mocker.MagicMock()
    client.set.return_value = True
    client.lrange.return_value = [b"1.5", b"2.5"]
    client.get.return_value = None
    store = RedisCounterStore(client)

    assert store.claim_once("jti:abc", 30)
    client.set.assert_called_with("ec:claim:jti:abc", "1", nx=True, ex=30)
    assert store.timestamps("rl:ip") == [1.5, 2.5]
    client.lrange.assert_called_with("ec:ts:rl:ip", 0, -1)
    assert store.locked_until("rl:ip") is None


def test_redis_claim_once_reports_existing_key(mocker) -> None:
    client = mocker.MagicMock()
    client.set.return_value = None

    assert not RedisCounterStore(client).claim_once("jti:abc", 30)


def test_build_counter_store() -> None:
    assert isinstance(build_counter_store("memory"), InMemoryCounterStore)
    with pytest.raises(ValueError):
        build_counter_store("redis", None)
    with pytest.raises(ValueError):
        build_counter_store("memcached")
