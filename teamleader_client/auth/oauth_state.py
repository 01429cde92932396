"""Pending OAuth2 ``state`` values for the authorization-code flow.

Each ``/oauth/authorize`` redirect issues one random state; the callback
must present it within ``ttl`` seconds and may use it once.  At most
``max_pending`` states are held; issuing past the cap evicts the oldest.
"""

from __future__ import annotations

import logging
import secrets

from teamleader_client.core.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


class OAuthStateRegistry:
    """Single-use, expiring CSRF states.

    Args:
        ttl:         Seconds a state stays valid.
        max_pending: Upper bound on outstanding states.
        clock:       Monotonic time source.
    """

    def __init__(self, ttl: float = 600.0, max_pending: int = 100, clock: Clock = SYSTEM_CLOCK) -> None:
        self.ttl = ttl
        self.max_pending = max_pending
        self._clock = clock
        # Insertion order is issue order, so the first key is the oldest.
        self._issued: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._issued)

    def __contains__(self, state: str) -> bool:
        issued_at = self._issued.get(state)
        return issued_at is not None and self._clock.monotonic() - issued_at < self.ttl

    def _prune(self, now: float) -> None:
        while self._issued:
            oldest, issued_at = next(iter(self._issued.items()))
            if now - issued_at < self.ttl:
                break
            del self._issued[oldest]

    def issue(self) -> str:
        now = self._clock.monotonic()
        self._prune(now)
        while len(self._issued) >= self.max_pending:
            oldest = next(iter(self._issued))
            del self._issued[oldest]
            logger.debug("Pending OAuth states at cap (%d), evicted the oldest", self.max_pending)
        state = secrets.token_urlsafe(16)
        self._issued[state] = now
        return state

    def consume(self, state: str) -> bool:
        """Remove *state*; ``True`` if it was issued and has not expired."""
        valid = state in self
        self._issued.pop(state, None)
        self._prune(self._clock.monotonic())
        return valid
