"""Distributed lock tests."""

import asyncio

import pytest

from mentionops.coordination import DistributedLock, record_scope, thread_scope
from mentionops.utils import retry


@pytest.mark.asyncio
async def test_with_exclusive_runs_body_and_releases(lock, store):
    async def body():
        assert await store.get("lock:thread:T:1") is not None
        return 42

    result = await lock.with_exclusive(thread_scope("T", "1"), body)
    assert result.ok is True
    assert result.value == 42
    assert await store.get("lock:thread:T:1") is None


@pytest.mark.asyncio
async def test_concurrent_bodies_never_overlap(store):
    lock = DistributedLock(store, retry_interval_ms=1, max_attempts=200, growth=1.0)
    active = 0
    max_active = 0

    async def body():
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        return True

    results = await asyncio.gather(
        lock.with_exclusive("thread:T:2", body),
        lock.with_exclusive("thread:T:2", body),
    )
    assert all(r.ok for r in results)
    assert max_active == 1


@pytest.mark.asyncio
async def test_loser_exhausts_attempts_without_running_body(lock):
    holder_inside = asyncio.Event()
    finish = asyncio.Event()
    calls = []

    async def holder():
        holder_inside.set()
        await finish.wait()
        return "first"

    async def loser():
        calls.append("loser")
        return "second"

    first = asyncio.create_task(lock.with_exclusive("thread:T:3", holder))
    await holder_inside.wait()
    second = await lock.with_exclusive("thread:T:3", loser)
    finish.set()

    assert second.ok is False
    assert second.value is None
    assert calls == []
    assert (await first).ok


@pytest.mark.asyncio
async def test_backoff_grows_between_attempts(lock, monkeypatch):
    delays = []

    async def fake_sleep(attempt, interval=1.0, growth=1.5, jitter=0.0):
        delays.append(retry.compute_backoff(attempt, interval=interval, growth=growth))

    monkeypatch.setattr(retry, "sleep_backoff", fake_sleep)
    assert await lock.acquire("thread:T:4") is not None

    async def body():
        return None

    result = await lock.with_exclusive("thread:T:4", body, max_attempts=4)
    assert not result.ok
    # no sleep after the final attempt
    assert len(delays) == 3
    assert delays[0] < delays[1] < delays[2]


@pytest.mark.asyncio
async def test_stale_holder_cannot_delete_new_lease(lock, store, clock):
    stale = await lock.acquire("record:deal:9", ttl_ms=1000)
    assert stale is not None

    clock.advance(2)
    fresh = await lock.acquire("record:deal:9", ttl_ms=1000)
    assert fresh is not None

    assert await stale.release() is False
    assert await store.get("lock:record:deal:9") == fresh.token
    assert await stale.renew() is False
    assert await fresh.release() is True


@pytest.mark.asyncio
async def test_renew_extends_lease(lock, clock):
    lease = await lock.acquire("thread:T:5", ttl_ms=1000)
    clock.advance(0.8)
    assert await lease.renew()
    clock.advance(0.8)
    assert await lock.acquire("thread:T:5") is None


@pytest.mark.asyncio
async def test_body_error_propagates_and_releases(lock, store):
    async def body():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await lock.with_exclusive("thread:T:6", body)
    assert await store.get("lock:thread:T:6") is None


def test_scope_helpers():
    assert thread_scope("T", "123.4") == "thread:T:123.4"
    assert record_scope("deal", "77") == "record:deal:77"


def test_compute_backoff_growth():
    assert retry.compute_backoff(0, interval=0.2, growth=1.5) == pytest.approx(0.2)
    assert retry.compute_backoff(2, interval=0.2, growth=1.5) == pytest.approx(0.45)


@pytest.mark.asyncio
async def test_lease_is_renewed_while_body_runs(store, clock):
    lock = DistributedLock(store, ttl_ms=30_000, retry_interval_ms=1, max_attempts=1, renew_interval_ms=1)
    second = {}

    async def long_body():
        clock.advance(20)
        # let the background renewal run before the original TTL would lapse
        await asyncio.sleep(0.05)
        clock.advance(20)

        async def intruder():
            return "second"

        second["result"] = await lock.with_exclusive("thread:T:7", intruder)
        return "first"

    result = await lock.with_exclusive("thread:T:7", long_body)

    assert result.ok and result.value == "first"
    assert second["result"].ok is False
    assert await store.get("lock:thread:T:7") is None


@pytest.mark.asyncio
async def test_renewal_stops_after_release(store, clock):
    lock = DistributedLock(store, ttl_ms=1000, renew_interval_ms=1)

    async def body():
        return None

    await lock.with_exclusive("thread:T:8", body)
    await asyncio.sleep(0.01)
    assert await store.get("lock:thread:T:8") is None
