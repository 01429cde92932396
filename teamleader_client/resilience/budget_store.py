"""Budget stores — the atomic counter behind ``RateBudgetTracker``.

A store owns ``consumed`` and the window boundary and exposes them only
through atomic operations, so two concurrent admissions can never both
take the last slot.  ``InMemoryBudgetStore`` serves one process;
``RedisBudgetStore`` (see ``redis_budget``) serves several processes
sharing one remote budget.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.models.budget import BudgetSnapshot


@dataclass(frozen=True)
class Acquisition:
    """Result of one compare-and-increment on the budget counter.

    Attributes:
        granted:  ``True`` if a slot was taken.
        consumed: Counter value after the operation (including this slot).
        reset_in: Seconds until the current window ends.
    """

    granted: bool
    consumed: int
    reset_in: float


class BudgetStore(Protocol):
    async def acquire(self, capacity: int, window_seconds: float) -> Acquisition: ...

    async def apply(self, consumed: int, reset_in: float | None, window_seconds: float) -> None: ...

    async def snapshot(self, capacity: int, window_seconds: float) -> BudgetSnapshot: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryBudgetStore:
    """Process-local rolling-window counter.

    The window restarts (``consumed → 0``, ``start → now``) once
    ``window_seconds`` have elapsed since its start.  The lock guards only
    the in-memory transition.
    """

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._consumed = 0
        self._window_start = clock.monotonic()
        self._lock = asyncio.Lock()

    def _roll(self, now: float, window_seconds: float) -> None:
        if now - self._window_start >= window_seconds:
            self._consumed = 0
            self._window_start = now

    def _reset_in(self, now: float, window_seconds: float) -> float:
        return max(0.0, self._window_start + window_seconds - now)

    async def acquire(self, capacity: int, window_seconds: float) -> Acquisition:
        async with self._lock:
            now = self._clock.monotonic()
            self._roll(now, window_seconds)
            if self._consumed >= capacity:
                return Acquisition(False, self._consumed, self._reset_in(now, window_seconds))
            self._consumed += 1
            return Acquisition(True, self._consumed, self._reset_in(now, window_seconds))

    async def apply(self, consumed: int, reset_in: float | None, window_seconds: float) -> None:
        """Overwrite the counter with server-reported usage.

        When *reset_in* is known the window is re-anchored so that it ends
        ``reset_in`` seconds from now; otherwise the current boundary stays.
        """
        async with self._lock:
            now = self._clock.monotonic()
            self._roll(now, window_seconds)
            self._consumed = max(0, consumed)
            if reset_in is not None:
                self._window_start = now + reset_in - window_seconds

    async def snapshot(self, capacity: int, window_seconds: float) -> BudgetSnapshot:
        async with self._lock:
            now = self._clock.monotonic()
            self._roll(now, window_seconds)
            return BudgetSnapshot(
                consumed=min(self._consumed, capacity),
                capacity=capacity,
                window_seconds=window_seconds,
                seconds_until_reset=self._reset_in(now, window_seconds),
            )

    async def clear(self) -> None:
        async with self._lock:
            self._consumed = 0
            self._window_start = self._clock.monotonic()

    async def close(self) -> None:
        pass
