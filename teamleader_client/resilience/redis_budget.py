"""Redis-backed budget store for budgets shared across processes.

The counter lives in one key whose TTL *is* the window.  Admission is one
Lua script, so the compare, the increment and the TTL check happen as a
single atomic step on the server:

    SET key 0 PX window NX   → open a window if none is running
    GET key                  → compare against capacity
    INCR key                 → take a slot (only below capacity)
    PTTL key                 → time left in the window

When Redis cannot be reached the store degrades to a process-local
``InMemoryBudgetStore`` and goes back to Redis as soon as it answers.
"""

from __future__ import annotations

import logging
import math
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.core.config import Settings
from teamleader_client.models.budget import BudgetSnapshot
from teamleader_client.resilience.budget_store import Acquisition, BudgetStore, InMemoryBudgetStore

logger = logging.getLogger(__name__)

# KEYS[1] counter; ARGV[1] capacity; ARGV[2] window in ms.
# Returns {granted, consumed, pttl_ms}.
_ACQUIRE_SCRIPT = """
redis.call('SET', KEYS[1], 0, 'PX', ARGV[2], 'NX')
local pttl = redis.call('PTTL', KEYS[1])
if pttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
    pttl = tonumber(ARGV[2])
end
local count = tonumber(redis.call('GET', KEYS[1])) or 0
if count >= tonumber(ARGV[1]) then
    return {0, count, pttl}
end
count = redis.call('INCR', KEYS[1])
return {1, count, pttl}
"""


def _ms(seconds: float) -> int:
    return max(1, math.ceil(seconds * 1000))


class RedisBudgetStore:
    """Budget counter kept in Redis.

    Args:
        redis_client: A ``redis.asyncio.Redis`` (or compatible) client.
        key:          Counter key; processes sharing a budget share a key.
        clock:        Clock for the in-memory fallback.
    """

    def __init__(self, redis_client: Any, key: str = "teamleader:ratelimit", clock: Clock = SYSTEM_CLOCK) -> None:
        self.redis_client = redis_client
        self.key = key
        self._fallback = InMemoryBudgetStore(clock)
        self._degraded = False

    @property
    def degraded(self) -> bool:
        """``True`` while Redis is unreachable and the local fallback counts."""
        return self._degraded

    def _redis_failed(self, operation: str, exc: RedisError) -> None:
        if not self._degraded:
            logger.warning("Redis %s failed (%s), using process-local rate budget", operation, exc)
        self._degraded = True

    def _redis_ok(self) -> None:
        if self._degraded:
            logger.info("Redis reachable again, shared rate budget restored")
        self._degraded = False

    def _reset_in(self, pttl_ms: int, window_seconds: float) -> float:
        # PTTL is -2 for a missing key and -1 for a key without expiry.
        if pttl_ms is None or pttl_ms < 0:
            return window_seconds
        return pttl_ms / 1000.0

    async def acquire(self, capacity: int, window_seconds: float) -> Acquisition:
        try:
            granted, count, pttl = await self.redis_client.eval(
                _ACQUIRE_SCRIPT, 1, self.key, capacity, _ms(window_seconds)
            )
        except RedisError as exc:
            self._redis_failed("acquire", exc)
            return await self._fallback.acquire(capacity, window_seconds)
        self._redis_ok()

        count = int(count)
        reset_in = self._reset_in(int(pttl), window_seconds)
        if not int(granted):
            logger.debug("Shared budget exhausted (%d/%d), window resets in %.1fs", count, capacity, reset_in)
            return Acquisition(False, count, reset_in)
        return Acquisition(True, count, reset_in)

    async def apply(self, consumed: int, reset_in: float | None, window_seconds: float) -> None:
        try:
            if reset_in is None:
                pttl = await self.redis_client.pttl(self.key)
                reset_in = self._reset_in(pttl, window_seconds)
            if reset_in <= 0:
                await self.redis_client.delete(self.key)
            else:
                await self.redis_client.set(self.key, max(0, consumed), px=_ms(reset_in))
        except RedisError as exc:
            self._redis_failed("apply", exc)
            await self._fallback.apply(consumed, reset_in, window_seconds)
            return
        self._redis_ok()

    async def snapshot(self, capacity: int, window_seconds: float) -> BudgetSnapshot:
        try:
            pipe = self.redis_client.pipeline(transaction=True)
            pipe.get(self.key)
            pipe.pttl(self.key)
            raw, pttl = await pipe.execute()
        except RedisError as exc:
            self._redis_failed("snapshot", exc)
            return await self._fallback.snapshot(capacity, window_seconds)
        self._redis_ok()

        consumed = int(raw) if raw is not None else 0
        return BudgetSnapshot(
            consumed=min(consumed, capacity),
            capacity=capacity,
            window_seconds=window_seconds,
            seconds_until_reset=self._reset_in(pttl, window_seconds) if raw is not None else 0.0,
        )

    async def clear(self) -> None:
        await self._fallback.clear()
        try:
            await self.redis_client.delete(self.key)
        except RedisError as exc:
            self._redis_failed("clear", exc)
            return
        self._redis_ok()

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.redis_client.aclose()


def create_budget_store(settings: Settings, clock: Clock = SYSTEM_CLOCK) -> BudgetStore:
    """Pick the budget store for *settings*.

    ``REDIS_URL`` set → ``RedisBudgetStore`` on that server (budget shared
    by every process using the same key); empty → ``InMemoryBudgetStore``.
    """
    if not settings.REDIS_URL:
        return InMemoryBudgetStore(clock)
    client = aioredis.from_url(settings.REDIS_URL)
    logger.info("Using shared rate budget in Redis (key %s)", settings.REDIS_KEY_PREFIX)
    return RedisBudgetStore(client, key=settings.REDIS_KEY_PREFIX, clock=clock)
