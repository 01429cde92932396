"""Classified outcomes — the closed result taxonomy of a logical request.

Everything downstream of the classifier (backoff policy, orchestrator,
callers) works on these variants; no raw status codes or transport
exceptions leak past ``classify()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class OutcomeKind(str, Enum):
    """Closed set of outcome kinds."""

    SUCCESS = "success"
    INVALID = "invalid"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_FAILURE = "server_failure"
    CONNECTION_FAILURE = "connection_failure"
    REFRESH_FAILED = "refresh_failed"
    TIMEOUT = "timeout"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


RETRYABLE_KINDS: frozenset[OutcomeKind] = frozenset(
    {
        OutcomeKind.RATE_LIMITED,
        OutcomeKind.SERVER_FAILURE,
        OutcomeKind.CONNECTION_FAILURE,
    }
)


@dataclass(frozen=True)
class Outcome:
    """Base class of every outcome variant."""

    kind: ClassVar[OutcomeKind]

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


@dataclass(frozen=True)
class Success(Outcome):
    """2xx response; *payload* is the decoded JSON body or ``None``."""

    kind: ClassVar[OutcomeKind] = OutcomeKind.SUCCESS

    payload: Any = None
    status_code: int = 200


@dataclass(frozen=True)
class Invalid(Outcome):
    """Request rejected as malformed (400, 422, or an unmapped status).

    *errors* keeps the field-level messages reported by the API.
    """

    kind: ClassVar[OutcomeKind] = OutcomeKind.INVALID

    status_code: int = 400
    message: str = ""
    errors: tuple[str, ...] = ()
    details: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class Unauthenticated(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.UNAUTHENTICATED

    message: str = ""


@dataclass(frozen=True)
class Forbidden(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.FORBIDDEN

    message: str = ""


@dataclass(frozen=True)
class NotFound(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.NOT_FOUND

    message: str = ""


@dataclass(frozen=True)
class RateLimited(Outcome):
    """429 response.

    Attributes:
        retry_after: Seconds to wait before the next send.
        from_server: ``True`` when *retry_after* came from a ``Retry-After``
                     header rather than the configured default.
    """

    kind: ClassVar[OutcomeKind] = OutcomeKind.RATE_LIMITED

    retry_after: float = 0.0
    from_server: bool = False


@dataclass(frozen=True)
class ServerFailure(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.SERVER_FAILURE

    status_code: int = 500


@dataclass(frozen=True)
class ConnectionFailure(Outcome):
    """No response was obtained (DNS, TLS, reset, transport timeout)."""

    kind: ClassVar[OutcomeKind] = OutcomeKind.CONNECTION_FAILURE

    reason: str = ""


@dataclass(frozen=True)
class RefreshFailed(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.REFRESH_FAILED

    reason: str = ""


@dataclass(frozen=True)
class Timeout(Outcome):
    """The logical request's deadline passed while waiting.

    *stage* is ``"admission"``, ``"pacing"`` or ``"backoff"``.
    """

    kind: ClassVar[OutcomeKind] = OutcomeKind.TIMEOUT

    stage: str = ""
    elapsed: float = 0.0


@dataclass(frozen=True)
class AttemptsExhausted(Outcome):
    """Retry bound reached; *last* is the final retryable failure."""

    kind: ClassVar[OutcomeKind] = OutcomeKind.ATTEMPTS_EXHAUSTED

    last: Outcome | None = None
    attempts: int = 0
