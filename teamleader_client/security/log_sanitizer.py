"""Log sanitization — keeps credentials out of log records.

Recursively redacts values stored under sensitive keys and ``Bearer``
tokens embedded in strings.  The structure of the data is preserved so
the log line stays useful.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "***REDACTED***"

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        # OAuth & authentication
        "access_token",
        "refresh_token",
        "token",
        "bearer",
        "authorization",
        "api_key",
        "apikey",
        "api_secret",
        "secret",
        "client_secret",
        "code",
        "auth_code",
        # Passwords & credentials
        "password",
        "passwd",
        "pwd",
        "passphrase",
        "secret_key",
        "private_key",
        # Payment & banking
        "credit_card",
        "card_number",
        "cvv",
        "cvc",
        "iban",
        "account_number",
        "routing_number",
        # Other
        "pin",
        "otp",
        "verification_code",
    }
)

_SENSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"\b\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{4}\b"),
)

_MAX_DEPTH = 10


class LogSanitizer:
    """Redacts sensitive data before it reaches a log handler.

    Args:
        active: When ``False`` data passes through unchanged (local
                debugging only).
    """

    def __init__(self, active: bool = True) -> None:
        self.active = active

    @staticmethod
    def _is_sensitive_key(key: Any) -> bool:
        return str(key).lower().replace("-", "_") in _SENSITIVE_KEYS

    def _sanitize_string(self, value: str) -> str:
        for pattern in _SENSITIVE_PATTERNS:
            value = pattern.sub(REDACTED, value)
        return value

    def sanitize(self, data: Any, _depth: int = 0) -> Any:
        """Return a redacted copy of *data*."""
        if not self.active:
            return data
        if _depth > _MAX_DEPTH:
            return "[max depth reached]"
        if isinstance(data, dict):
            return {
                key: REDACTED if self._is_sensitive_key(key) else self.sanitize(value, _depth + 1)
                for key, value in data.items()
            }
        if isinstance(data, (list, tuple)):
            return type(data)(self.sanitize(item, _depth + 1) for item in data)
        if isinstance(data, str):
            return self._sanitize_string(data)
        return data


_default_sanitizer = LogSanitizer()


def sanitize_for_log(data: Any) -> Any:
    return _default_sanitizer.sanitize(data)
