"""Exception hierarchy and caller-facing error mapping.

Exceptions are used only at seams: the transport, the authorization
server, and the optional conversion of a classified outcome into an
exception for callers that prefer ``try/except`` over inspecting
``ExecutionResult.outcome``.
"""

from __future__ import annotations

from pydantic import BaseModel

from teamleader_client.models.outcome import Outcome, OutcomeKind


class TeamleaderClientError(Exception):
    """Base exception for all teamleader-client errors."""


class TransportError(TeamleaderClientError):
    """Raised by a transport when no HTTP response was obtained.

    Attributes:
        kind:   ``"timeout"``, ``"connect"`` or ``"network"``.
        detail: Free-form description of the underlying failure.
    """

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        msg = f"Transport {kind} failure"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class AuthorizationRejectedError(TeamleaderClientError):
    """The authorization server refused a token exchange or refresh."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        msg = f"Authorization server rejected the request (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class AuthorizationUnavailableError(TeamleaderClientError):
    """The authorization server could not be reached."""


class RefreshFailedError(TeamleaderClientError):
    """Credential refresh failed; re-authentication is required."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Credential refresh failed: {reason}")


# ── Outcome → exception mapping ─────────────────────────────────────────


class ApiError(TeamleaderClientError):
    """A logical request ended in a non-success outcome.

    Attributes:
        outcome:  The classified outcome.
        attempts: Number of physical sends made for the logical request.
    """

    code = "API_ERROR"

    def __init__(self, outcome: Outcome, attempts: int = 0) -> None:
        self.outcome = outcome
        self.attempts = attempts
        super().__init__(user_message(outcome))


class InvalidRequestError(ApiError):
    code = "INVALID"

    @property
    def errors(self) -> tuple[str, ...]:
        return getattr(self.outcome, "errors", ())


class AuthenticationError(ApiError):
    code = "UNAUTHENTICATED"


class PermissionDeniedError(ApiError):
    code = "FORBIDDEN"


class NotFoundError(ApiError):
    code = "NOT_FOUND"


class RateLimitExceededError(ApiError):
    code = "RATE_LIMITED"


class ServerError(ApiError):
    code = "SERVER_FAILURE"


class ConnectionFailedError(ApiError):
    code = "CONNECTION_FAILURE"


class CredentialsRefreshError(ApiError):
    code = "REFRESH_FAILED"


class RequestTimeoutError(ApiError):
    code = "TIMEOUT"


class AttemptsExhaustedError(ApiError):
    code = "ATTEMPTS_EXHAUSTED"


_ERROR_CLASSES: dict[OutcomeKind, type[ApiError]] = {
    OutcomeKind.INVALID: InvalidRequestError,
    OutcomeKind.UNAUTHENTICATED: AuthenticationError,
    OutcomeKind.FORBIDDEN: PermissionDeniedError,
    OutcomeKind.NOT_FOUND: NotFoundError,
    OutcomeKind.RATE_LIMITED: RateLimitExceededError,
    OutcomeKind.SERVER_FAILURE: ServerError,
    OutcomeKind.CONNECTION_FAILURE: ConnectionFailedError,
    OutcomeKind.REFRESH_FAILED: CredentialsRefreshError,
    OutcomeKind.TIMEOUT: RequestTimeoutError,
    OutcomeKind.ATTEMPTS_EXHAUSTED: AttemptsExhaustedError,
}


def error_for_outcome(outcome: Outcome, attempts: int = 0) -> ApiError:
    """Build the ``ApiError`` subclass matching *outcome*.

    Raises ``ValueError`` for a success outcome, which has no error.
    """
    cls = _ERROR_CLASSES.get(outcome.kind)
    if cls is None:
        raise ValueError(f"No error for outcome kind {outcome.kind.value!r}")
    return cls(outcome, attempts)


def user_message(outcome: Outcome) -> str:
    """Human-readable description of *outcome*, safe to show to end users."""
    kind = outcome.kind
    if kind == OutcomeKind.INVALID:
        errors = getattr(outcome, "errors", ())
        detail = ", ".join(errors) if errors else getattr(outcome, "message", "")
        return f"The provided data is invalid: {detail}" if detail else "The provided data is invalid."
    if kind == OutcomeKind.ATTEMPTS_EXHAUSTED:
        last = getattr(outcome, "last", None)
        suffix = f" Last error: {user_message(last)}" if last is not None else ""
        return "The request kept failing and was abandoned." + suffix
    return _MESSAGES.get(kind.value, "An unexpected error occurred.")


_MESSAGES: dict[str, str] = {
    "success": "The request succeeded.",
    "unauthenticated": "Authentication with Teamleader failed. Please reconnect.",
    "forbidden": "You do not have permission to perform this action.",
    "not_found": "The requested resource was not found.",
    "rate_limited": "API rate limit exceeded. Please try again later.",
    "server_failure": "Teamleader server error. Please try again later.",
    "connection_failure": "Connection to Teamleader failed. Please check your internet connection.",
    "refresh_failed": "The Teamleader connection expired. Please reconnect.",
    "timeout": "The request did not complete in time.",
}


class ErrorResponse(BaseModel):
    """Structured error body returned by the HTTP surface.

    Returns ``{"error": str, "code": str, "attempts": int}`` and never
    carries response payloads or credentials.
    """

    error: str
    code: str
    attempts: int = 0

    @classmethod
    def from_outcome(cls, outcome: Outcome, attempts: int = 0) -> ErrorResponse:
        return cls(
            error=user_message(outcome),
            code=outcome.kind.name,
            attempts=attempts,
        )
