"""Resilience patterns — rate budget, error classification and retry.

Provides the shared rate budget tracker (in-process or Redis-backed), the
total classifier from transport results to outcomes, and the
exponential-backoff retry policy the orchestrator drives.
"""

from teamleader_client.resilience.backoff import (
    AttemptRecord,
    RefreshThenRetry,
    RetryAfter,
    RetryPolicy,
    Return,
)
from teamleader_client.resilience.budget_store import InMemoryBudgetStore
from teamleader_client.resilience.classifier import classify
from teamleader_client.resilience.rate_budget import (
    Admitted,
    Delay,
    RateBudgetTracker,
    ThrottleCurve,
)
from teamleader_client.resilience.redis_budget import RedisBudgetStore, create_budget_store

__all__ = [
    "Admitted",
    "AttemptRecord",
    "Delay",
    "InMemoryBudgetStore",
    "RateBudgetTracker",
    "RedisBudgetStore",
    "RefreshThenRetry",
    "RetryAfter",
    "RetryPolicy",
    "Return",
    "ThrottleCurve",
    "classify",
    "create_budget_store",
]
