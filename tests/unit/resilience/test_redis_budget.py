"""Redis-backed budget store tests.

Uses fakeredis for Redis simulation.
"""

import asyncio

import fakeredis.aioredis
import redis.exceptions
import pytest

from teamleader_client.core.config import Settings
from teamleader_client.models.budget import ServerUsage
from teamleader_client.resilience.budget_store import InMemoryBudgetStore
from teamleader_client.resilience.rate_budget import Admitted, Delay, RateBudgetTracker
from teamleader_client.resilience.redis_budget import RedisBudgetStore, create_budget_store


@pytest.fixture()
def fake_redis():
    """Provide a fresh fakeredis async client."""
    return fakeredis.aioredis.FakeRedis()


@pytest.fixture()
def store(fake_redis) -> RedisBudgetStore:
    return RedisBudgetStore(fake_redis, key="test:budget")


# ── Atomic counter ─────────────────────────────────────────────────────


class TestAcquire:
    """Atomic compare-and-increment in Redis."""

    async def test_first_acquire_opens_window(self, store, fake_redis) -> None:
        acquisition = await store.acquire(capacity=3, window_seconds=60)
        assert acquisition.granted
        assert acquisition.consumed == 1
        assert 0 < acquisition.reset_in <= 60
        assert 0 < await fake_redis.pttl("test:budget") <= 60_000

    async def test_denies_past_capacity(self, store, fake_redis) -> None:
        for _ in range(3):
            assert (await store.acquire(3, 60)).granted
        denied = await store.acquire(3, 60)
        assert not denied.granted
        assert denied.consumed == 3
        # A denial leaves the counter untouched.
        assert int(await fake_redis.get("test:budget")) == 3

    async def test_concurrent_acquire_never_oversubscribes(self, store) -> None:
        results = await asyncio.gather(*(store.acquire(10, 60) for _ in range(25)))
        assert sum(1 for r in results if r.granted) == 10

    async def test_denial_keeps_window_ttl(self, store, fake_redis) -> None:
        for _ in range(2):
            await store.acquire(2, 60)
        denied = await store.acquire(2, 60)
        assert not denied.granted
        assert int(await fake_redis.get("test:budget")) == 2
        assert 0 < await fake_redis.pttl("test:budget") <= 60_000

    async def test_counter_without_ttl_gets_window_back(self, store, fake_redis) -> None:
        await fake_redis.set("test:budget", 2)
        denied = await store.acquire(2, 60)
        assert not denied.granted
        assert 0 < await fake_redis.pttl("test:budget") <= 60_000

    async def test_expired_window_admits_again(self, store, fake_redis) -> None:
        for _ in range(2):
            await store.acquire(2, 60)
        await fake_redis.delete("test:budget")
        acquisition = await store.acquire(2, 60)
        assert acquisition.granted
        assert acquisition.consumed == 1
        assert int(await fake_redis.get("test:budget")) == 1


# ── Redis outage ───────────────────────────────────────────────────────


class UnreachableRedis:
    """Client whose every command fails like a refused connection."""

    def __init__(self) -> None:
        self.closed = False

    def _fail(self):
        raise redis.exceptions.ConnectionError("Error 111 connecting to redis")

    async def eval(self, *args, **kwargs):
        self._fail()

    def pipeline(self, *args, **kwargs):
        self._fail()

    async def pttl(self, key):
        self._fail()

    async def set(self, *args, **kwargs):
        self._fail()

    async def delete(self, key):
        self._fail()

    async def aclose(self) -> None:
        self.closed = True


class TestRedisUnavailable:
    """Redis errors fall back to a process-local budget."""

    async def test_acquire_falls_back_to_local_budget(self) -> None:
        store = RedisBudgetStore(UnreachableRedis(), key="down")
        results = [await store.acquire(2, 60) for _ in range(3)]
        assert [r.granted for r in results] == [True, True, False]
        assert store.degraded

    async def test_apply_snapshot_and_clear_do_not_raise(self) -> None:
        store = RedisBudgetStore(UnreachableRedis(), key="down")
        await store.apply(150, 20.0, 60)
        snapshot = await store.snapshot(200, 60)
        assert snapshot.consumed == 150
        await store.clear()
        assert (await store.snapshot(200, 60)).consumed == 0

    async def test_tracker_admits_while_redis_is_down(self) -> None:
        tracker = RateBudgetTracker(capacity=200, store=RedisBudgetStore(UnreachableRedis(), key="down"))
        assert isinstance(await tracker.try_admit(), Admitted)
        stats = await tracker.stats()
        assert stats.consumed == 1

    async def test_recovers_when_redis_answers(self, fake_redis) -> None:
        store = RedisBudgetStore(UnreachableRedis(), key="test:budget")
        await store.acquire(200, 60)
        assert store.degraded

        store.redis_client = fake_redis
        acquisition = await store.acquire(200, 60)
        assert acquisition.granted
        assert not store.degraded
        assert int(await fake_redis.get("test:budget")) == 1

    async def test_close_closes_client(self) -> None:
        client = UnreachableRedis()
        await RedisBudgetStore(client).close()
        assert client.closed


# ── Server resync ──────────────────────────────────────────────────────


class TestApply:
    """Server usage written back to Redis."""

    async def test_apply_overwrites_count_and_ttl(self, store, fake_redis) -> None:
        await store.acquire(200, 60)
        await store.apply(150, 20.0, 60)
        assert int(await fake_redis.get("test:budget")) == 150
        assert 0 < await fake_redis.pttl("test:budget") <= 20_000

    async def test_apply_without_reset_keeps_ttl(self, store, fake_redis) -> None:
        await store.acquire(200, 60)
        await store.apply(42, None, 60)
        snapshot = await store.snapshot(200, 60)
        assert snapshot.consumed == 42
        assert 0 < snapshot.seconds_until_reset <= 60

    async def test_apply_zero_reset_deletes(self, store, fake_redis) -> None:
        await store.acquire(200, 60)
        await store.apply(5, 0.0, 60)
        assert await fake_redis.get("test:budget") is None


class TestSnapshot:
    """Read-only view of the shared counter."""

    async def test_empty_snapshot(self, store) -> None:
        snapshot = await store.snapshot(200, 60)
        assert snapshot.consumed == 0
        assert snapshot.seconds_until_reset == 0.0

    async def test_clear(self, store, fake_redis) -> None:
        await store.acquire(200, 60)
        await store.clear()
        assert await fake_redis.exists("test:budget") == 0


# ── Shared budget across trackers ──────────────────────────────────────


class TestSharedBudget:
    """Trackers on one key share one budget."""

    async def test_trackers_share_one_budget(self, fake_redis) -> None:
        first = RateBudgetTracker(capacity=4, store=RedisBudgetStore(fake_redis, key="shared"))
        second = RateBudgetTracker(capacity=4, store=RedisBudgetStore(fake_redis, key="shared"))

        for _ in range(2):
            assert isinstance(await first.try_admit(), Admitted)
            assert isinstance(await second.try_admit(), Admitted)

        assert isinstance(await first.try_admit(), Delay)
        assert isinstance(await second.try_admit(), Delay)

    async def test_server_usage_visible_to_other_tracker(self, fake_redis) -> None:
        first = RateBudgetTracker(capacity=200, store=RedisBudgetStore(fake_redis, key="shared"))
        second = RateBudgetTracker(capacity=200, store=RedisBudgetStore(fake_redis, key="shared"))

        await first.record(ServerUsage(remaining=0, reset_in=30.0))
        result = await second.try_admit()
        assert isinstance(result, Delay)
        assert 0 < result.seconds <= 30.0


class TestCreateBudgetStore:
    """Store chosen from settings."""

    def test_in_memory_without_redis_url(self) -> None:
        assert isinstance(create_budget_store(Settings()), InMemoryBudgetStore)

    def test_redis_with_url(self) -> None:
        store = create_budget_store(Settings(REDIS_URL="redis://localhost:6379/0", REDIS_KEY_PREFIX="tl:test"))
        assert isinstance(store, RedisBudgetStore)
        assert store.key == "tl:test"
