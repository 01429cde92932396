"""Shared fixtures: a deterministic clock and seeded jitter source."""

from __future__ import annotations

import asyncio
import random

import pytest

from teamleader_client.core.clock import Clock

WALL_EPOCH = 1_700_000_000.0


class FakeClock(Clock):
    """Clock whose ``sleep`` advances time instead of waiting.

    ``sleep`` still yields to the event loop once so concurrent tasks
    interleave the way they would with real suspension.
    """

    def __init__(self, start: float = 1000.0, wall: float = WALL_EPOCH) -> None:
        self._mono = start
        self._wall_offset = wall - start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._mono

    def time(self) -> float:
        return self._mono + self._wall_offset

    def advance(self, seconds: float) -> None:
        self._mono += seconds

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleeps.append(seconds)
            self._mono += seconds
        await asyncio.sleep(0)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(42)
