"""Error classifier — maps one transport result to exactly one outcome.

``classify()`` is a pure, total function:

    2xx (JSON or empty body)  →  Success
    2xx (non-JSON body)       →  Invalid
    400, 422                  →  Invalid (field-level errors kept)
    401                       →  Unauthenticated
    403                       →  Forbidden
    404                       →  NotFound
    429                       →  RateLimited(Retry-After | default)
    500, 502, 503, 504        →  ServerFailure
    any other status          →  Invalid (not retried)
    TransportError            →  ConnectionFailure
"""

from __future__ import annotations

import time
from typing import Any

from teamleader_client.core.errors import TransportError
from teamleader_client.models.budget import parse_retry_after
from teamleader_client.models.outcome import (
    ConnectionFailure,
    Forbidden,
    Invalid,
    NotFound,
    Outcome,
    RateLimited,
    ServerFailure,
    Success,
    Unauthenticated,
)
from teamleader_client.transport import TransportResponse

SERVER_FAILURE_STATUSES = frozenset({500, 502, 503, 504})


def _decode(response: TransportResponse) -> tuple[bool, Any]:
    """Return ``(parsed_ok, payload)``; an empty body parses to ``None``."""
    if not response.body or not response.body.strip():
        return True, None
    try:
        return True, response.json()
    except ValueError:
        return False, None


def parse_error_messages(payload: Any) -> list[str]:
    """Extract error messages from a Teamleader error body.

    Handles ``{"errors": [{"title": ...}, ...]}``, OAuth-style
    ``{"error": ..., "error_description": ...}`` and ``{"message": ...}``.
    """
    if not isinstance(payload, dict):
        return []
    errors = payload.get("errors")
    if isinstance(errors, list):
        messages = []
        for error in errors:
            if isinstance(error, dict) and error.get("title"):
                messages.append(str(error["title"]))
            elif isinstance(error, str):
                messages.append(error)
        return messages
    if payload.get("error"):
        return [str(payload.get("error_description") or payload["error"])]
    if payload.get("message"):
        return [str(payload["message"])]
    return []


def _header(headers: dict[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def classify(
    result: TransportResponse | TransportError,
    default_retry_after: float = 60.0,
    now_wall: float | None = None,
) -> Outcome:
    """Classify *result* into the closed outcome taxonomy."""
    if isinstance(result, TransportError):
        return ConnectionFailure(reason=str(result))

    status = result.status_code
    parsed, payload = _decode(result)

    if 200 <= status < 300:
        if parsed:
            return Success(payload=payload, status_code=status)
        return Invalid(status_code=status, message="Response body is not valid JSON")

    messages = parse_error_messages(payload) if parsed else []
    message = messages[0] if messages else f"HTTP {status}"

    if status == 401:
        return Unauthenticated(message=message)
    if status == 403:
        return Forbidden(message=message)
    if status == 404:
        return NotFound(message=message)
    if status == 429:
        now = time.time() if now_wall is None else now_wall
        retry_after = parse_retry_after(_header(result.headers, "retry-after"), now)
        if retry_after is None:
            return RateLimited(retry_after=default_retry_after, from_server=False)
        return RateLimited(retry_after=retry_after, from_server=True)
    if status in SERVER_FAILURE_STATUSES:
        return ServerFailure(status_code=status)
    return Invalid(
        status_code=status,
        message=message,
        errors=tuple(messages),
        details=payload if parsed else None,
    )


def is_retryable(outcome: Outcome) -> bool:
    return outcome.retryable
