"""Retry/backoff controller — the per-request retry state machine.

Transitions are a pure function of (outcome, attempt record), so the
policy is testable without a network:

    Attempting ──success/terminal──────────▶ Return(outcome)
    Attempting ──retryable, under bound────▶ Waiting ──▶ Attempting
    Attempting ──retryable, bound reached──▶ Return(AttemptsExhausted)
    Attempting ──401, first time───────────▶ Refreshing ──▶ Attempting
    Attempting ──401, after refresh────────▶ Return(Unauthenticated)

The refresh loop is entered at most once per logical request and does not
consume a retry slot.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from teamleader_client.core.config import Settings
from teamleader_client.models.outcome import (
    AttemptsExhausted,
    Outcome,
    OutcomeKind,
    RateLimited,
)


@dataclass
class AttemptRecord:
    """Book-keeping for one logical request.

    Attributes:
        attempt:        Backoff attempt index (0 for the first send).
        sends:          Physical sends made so far.
        elapsed_delay:  Seconds spent waiting on backoff.
        last_kind:      Kind of the most recent outcome.
        auth_recovered: The one-time refresh-and-resend has been used.
    """

    attempt: int = 0
    sends: int = 0
    elapsed_delay: float = 0.0
    last_kind: OutcomeKind | None = None
    auth_recovered: bool = False


@dataclass(frozen=True)
class Return:
    outcome: Outcome


@dataclass(frozen=True)
class RetryAfter:
    delay: float


@dataclass(frozen=True)
class RefreshThenRetry:
    pass


Step = Return | RetryAfter | RefreshThenRetry


class RetryPolicy:
    """Exponential backoff with jitter, capped.

    Args:
        base_delay:   Seconds for attempt 0; doubles per attempt.
        max_delay:    Cap on the computed delay.
        max_attempts: Total sends the backoff loop may make.
        rng:          Jitter source.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 4,
        rng: random.Random | None = None,
    ) -> None:
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("require 0 < base_delay <= max_delay")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings, rng: random.Random | None = None) -> RetryPolicy:
        return cls(
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            max_attempts=settings.max_attempts,
            rng=rng,
        )

    def compute_delay(self, attempt: int) -> float:
        """``min(base * 2**attempt + U[0, base), max_delay)``."""
        jitter = self._rng.uniform(0, self.base_delay)
        if jitter >= self.base_delay:
            jitter = 0.0
        return min(self.base_delay * (2**attempt) + jitter, self.max_delay)

    def next_step(self, outcome: Outcome, record: AttemptRecord) -> Step:
        """Decide what follows *outcome* for the request tracked by *record*."""
        if outcome.kind == OutcomeKind.UNAUTHENTICATED and not record.auth_recovered:
            return RefreshThenRetry()

        if not outcome.retryable:
            return Return(outcome)

        if record.attempt + 1 >= self.max_attempts:
            return Return(AttemptsExhausted(last=outcome, attempts=record.sends))

        if isinstance(outcome, RateLimited) and outcome.from_server:
            return RetryAfter(outcome.retry_after)
        return RetryAfter(self.compute_delay(record.attempt))
