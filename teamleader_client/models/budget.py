"""Rate budget data — server usage headers, snapshots and statistics."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

# Values above this are absolute epoch seconds, below it seconds-from-now.
_EPOCH_CUTOFF = 1_000_000_000

_LIMIT_HEADER = "x-ratelimit-limit"
_REMAINING_HEADER = "x-ratelimit-remaining"
_RESET_HEADER = "x-ratelimit-reset"
_RETRY_AFTER_HEADER = "retry-after"


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(k).lower(): str(v) for k, v in headers.items()}


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value.strip()))
    except ValueError:
        return None


def parse_reset(value: str | None, now_wall: float) -> float | None:
    """Convert an ``X-RateLimit-Reset`` value into seconds from now."""
    number = _parse_int(value)
    if number is None:
        return None
    if number > _EPOCH_CUTOFF:
        return max(0.0, number - now_wall)
    return float(max(0, number))


def parse_retry_after(value: str | None, now_wall: float) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if value is None or not value.strip():
        return None
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now_wall)


@dataclass(frozen=True)
class ServerUsage:
    """Budget usage reported by the server on one response.

    Attributes:
        limit:       ``X-RateLimit-Limit`` value, if sent.
        remaining:   ``X-RateLimit-Remaining`` value, if sent.
        reset_in:    Seconds until the server's window resets, if known.
        retry_after: Seconds the server asked us to back off (429 only).
    """

    limit: int | None = None
    remaining: int | None = None
    reset_in: float | None = None
    retry_after: float | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        status_code: int,
        now_wall: float,
        default_retry_after: float,
    ) -> ServerUsage | None:
        """Extract usage data from response headers.

        Returns ``None`` when the response carries no usage information.
        A 429 always yields a ``retry_after``, falling back to
        *default_retry_after* when the header is absent.
        """
        lowered = _lower_headers(headers)
        limit = _parse_int(lowered.get(_LIMIT_HEADER))
        remaining = _parse_int(lowered.get(_REMAINING_HEADER))
        reset_in = parse_reset(lowered.get(_RESET_HEADER), now_wall)

        retry_after = None
        if status_code == 429:
            retry_after = parse_retry_after(lowered.get(_RETRY_AFTER_HEADER), now_wall)
            if retry_after is None:
                retry_after = default_retry_after

        if limit is None and remaining is None and reset_in is None and retry_after is None:
            return None
        return cls(limit=limit, remaining=remaining, reset_in=reset_in, retry_after=retry_after)


@dataclass(frozen=True)
class BudgetSnapshot:
    """Raw counter state as held by a budget store."""

    consumed: int
    capacity: int
    window_seconds: float
    seconds_until_reset: float


def throttle_level(usage_percentage: float) -> str:
    """Describe how close the budget is to exhaustion."""
    if usage_percentage >= 95:
        return "critical"
    if usage_percentage >= 90:
        return "high"
    if usage_percentage >= 80:
        return "moderate"
    if usage_percentage >= 70:
        return "low"
    return "none"


@dataclass(frozen=True)
class BudgetStats:
    """Read-only budget snapshot for monitoring callers."""

    consumed: int
    capacity: int
    reset_at: float
    remaining: int
    usage_percentage: float
    throttle_level: str
    seconds_until_reset: float
    total_admitted: int = 0
    total_delayed: int = 0
    last_server_usage: ServerUsage | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["reset_at_iso"] = datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()
        return data
