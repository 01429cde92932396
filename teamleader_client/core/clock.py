"""Time source shared by the budget tracker, backoff loop and credential store."""

from __future__ import annotations

import asyncio
import time


class Clock:
    """Monotonic time, wall time and suspension in one injectable object.

    ``monotonic()`` drives windows and deadlines; ``time()`` is only used
    where an absolute instant must be reported or persisted (token expiry,
    budget reset instants).
    """

    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
