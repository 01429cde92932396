"""Rate budget tracker — admission decisions against a rolling window.

Teamleader allows a fixed number of requests per sliding minute.  The
tracker admits requests while the budget has headroom, starts pacing them
once usage crosses the throttle threshold, and returns a ``Delay`` when
the window is exhausted.  Usage headers on every response resynchronise
the local estimate: the server is ground truth, since several processes
may draw from the same remote budget.

    usage < threshold            →  Admitted()
    threshold ≤ usage < capacity →  Admitted(approaching_limit=True, pacing_delay=…)
    usage ≥ capacity             →  Delay(window_end - now)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass

from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.models.budget import BudgetStats, ServerUsage, throttle_level
from teamleader_client.resilience.budget_store import BudgetStore, InMemoryBudgetStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admitted:
    """The request may proceed now.

    Attributes:
        approaching_limit: Usage was at or above the throttle threshold.
        pacing_delay:      Suggested pause (seconds) before sending.
    """

    approaching_limit: bool = False
    pacing_delay: float = 0.0


@dataclass(frozen=True)
class Delay:
    """The window is exhausted; retry admission after *seconds*."""

    seconds: float


class ThrottleCurve:
    """Pacing delay as a function of budget usage.

    *tiers* maps a usage fraction to a delay in seconds; the highest tier
    not above the current usage applies.  Up to ``jitter_fraction`` of the
    delay is added at random so paced callers do not fire in lockstep.
    """

    DEFAULT_TIERS: dict[float, float] = {
        0.70: 0.2,
        0.80: 0.5,
        0.90: 1.0,
        0.95: 2.0,
    }

    def __init__(
        self,
        tiers: dict[float, float] | None = None,
        jitter_fraction: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        self.tiers = sorted((tiers if tiers is not None else self.DEFAULT_TIERS).items())
        self.jitter_fraction = jitter_fraction
        self._rng = rng or random.Random()

    def delay_for(self, usage_fraction: float) -> float:
        delay = 0.0
        for threshold, tier_delay in self.tiers:
            if usage_fraction >= threshold:
                delay = tier_delay
        if delay <= 0:
            return 0.0
        return delay + self._rng.uniform(0, delay * self.jitter_fraction)


class RateBudgetTracker:
    """Shared request budget for one remote API account.

    Args:
        capacity:           Requests allowed per window.
        window_seconds:     Window length.
        throttle_threshold: Fraction of capacity at which pacing starts.
        store:              Atomic counter backend (in-memory by default).
        clock:              Time source.
        curve:              Pacing policy between threshold and capacity;
                            ``None`` disables pacing.
    """

    def __init__(
        self,
        capacity: int = 200,
        window_seconds: float = 60.0,
        throttle_threshold: float = 0.7,
        store: BudgetStore | None = None,
        clock: Clock = SYSTEM_CLOCK,
        curve: ThrottleCurve | None = None,
    ) -> None:
        if capacity <= 0 or window_seconds <= 0:
            raise ValueError("capacity and window_seconds must be positive")
        if not 0 < throttle_threshold <= 1:
            raise ValueError("throttle_threshold must be in (0, 1]")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.throttle_threshold = throttle_threshold
        self._clock = clock
        self._store: BudgetStore = store if store is not None else InMemoryBudgetStore(clock)
        self._curve = curve

        # Metrics
        self._metrics_lock = asyncio.Lock()
        self.total_admitted = 0
        self.total_delayed = 0
        self.last_server_usage: ServerUsage | None = None

    @property
    def store(self) -> BudgetStore:
        return self._store

    async def try_admit(self) -> Admitted | Delay:
        """Decide, without waiting, whether a request may be sent now.

        An admission takes a slot atomically; a ``Delay`` takes nothing.
        """
        acquisition = await self._store.acquire(self.capacity, self.window_seconds)

        if not acquisition.granted:
            async with self._metrics_lock:
                self.total_delayed += 1
            logger.info(
                "Rate budget exhausted (%d/%d), delaying %.2fs",
                acquisition.consumed,
                self.capacity,
                acquisition.reset_in,
            )
            return Delay(acquisition.reset_in)

        async with self._metrics_lock:
            self.total_admitted += 1

        # Usage as seen before this admission took its slot.
        prior = acquisition.consumed - 1
        if prior < self.capacity * self.throttle_threshold:
            return Admitted()

        usage = prior / self.capacity
        pacing = self._curve.delay_for(usage) if self._curve is not None else 0.0
        logger.debug(
            "Rate budget at %.1f%% (%s), pacing %.3fs",
            usage * 100,
            throttle_level(usage * 100),
            pacing,
        )
        return Admitted(approaching_limit=True, pacing_delay=pacing)

    async def record(self, usage: ServerUsage | None) -> None:
        """Fold server-reported usage into the budget.

        Server values replace the local estimate.  A ``retry_after`` marks
        the budget exhausted until ``now + retry_after``.  ``None`` (no
        headers, e.g. after a network failure) keeps the local count.
        """
        if usage is None:
            return

        async with self._metrics_lock:
            self.last_server_usage = usage

        if usage.retry_after is not None:
            logger.warning("Server rate limit hit, budget blocked for %.1fs", usage.retry_after)
            await self._store.apply(self.capacity, usage.retry_after, self.window_seconds)
            return

        if usage.remaining is None:
            if usage.reset_in is not None:
                snapshot = await self._store.snapshot(self.capacity, self.window_seconds)
                await self._store.apply(snapshot.consumed, usage.reset_in, self.window_seconds)
            return

        consumed = self.capacity - min(max(usage.remaining, 0), self.capacity)
        logger.debug(
            "Rate limit headers processed: remaining=%d reset_in=%s -> consumed=%d",
            usage.remaining,
            usage.reset_in,
            consumed,
        )
        await self._store.apply(consumed, usage.reset_in, self.window_seconds)

    async def stats(self) -> BudgetStats:
        """Return a read-only snapshot for observability callers."""
        snapshot = await self._store.snapshot(self.capacity, self.window_seconds)
        usage_percentage = round(snapshot.consumed / self.capacity * 100, 1)
        return BudgetStats(
            consumed=snapshot.consumed,
            capacity=self.capacity,
            reset_at=self._clock.time() + snapshot.seconds_until_reset,
            remaining=max(0, self.capacity - snapshot.consumed),
            usage_percentage=usage_percentage,
            throttle_level=throttle_level(usage_percentage),
            seconds_until_reset=round(snapshot.seconds_until_reset, 3),
            total_admitted=self.total_admitted,
            total_delayed=self.total_delayed,
            last_server_usage=self.last_server_usage,
        )

    async def reset(self) -> None:
        """Clear counters and metrics (manual reset or tests)."""
        await self._store.clear()
        async with self._metrics_lock:
            self.total_admitted = 0
            self.total_delayed = 0
            self.last_server_usage = None

    async def close(self) -> None:
        """Release the store's connections."""
        await self._store.close()
