"""Configuration validation for deployment checks.

``Settings`` already rejects impossible numeric limits at construction.
``validate_settings()`` covers what pydantic cannot judge on its own:
missing OAuth2 application credentials, malformed endpoint URLs and
settings that are legal but suspicious.  Errors make the report invalid;
warnings are advisory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from teamleader_client.core.config import Settings

_MIN_CLIENT_ID_LENGTH = 10
_MIN_CLIENT_SECRET_LENGTH = 20
_AGGRESSIVE_THRESHOLD = 0.9


@dataclass
class ValidationReport:
    """Errors and warnings found in one ``Settings`` instance."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        if self.is_valid and not self.warnings:
            return "Configuration is valid"
        if self.is_valid:
            return f"Configuration is valid with {len(self.warnings)} warning(s)"
        return f"Configuration has {len(self.errors)} error(s) and {len(self.warnings)} warning(s)"


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_settings(settings: Settings) -> ValidationReport:
    """Check *settings* for problems that would break or weaken the client."""
    report = ValidationReport()

    # Required OAuth2 application credentials
    for name in ("CLIENT_ID", "CLIENT_SECRET", "REDIRECT_URI"):
        if not getattr(settings, name):
            report.errors.append(f"TEAMLEADER_{name} is required")

    if settings.CLIENT_ID and len(settings.CLIENT_ID) < _MIN_CLIENT_ID_LENGTH:
        report.warnings.append("TEAMLEADER_CLIENT_ID seems unusually short")
    if settings.CLIENT_SECRET and len(settings.CLIENT_SECRET) < _MIN_CLIENT_SECRET_LENGTH:
        report.warnings.append("TEAMLEADER_CLIENT_SECRET seems unusually short")

    # Endpoint URLs
    for name in ("BASE_URL", "AUTH_URL"):
        if not _is_http_url(getattr(settings, name)):
            report.errors.append(f"TEAMLEADER_{name} must be an absolute http(s) URL")

    if settings.REDIRECT_URI:
        if not _is_http_url(settings.REDIRECT_URI):
            report.errors.append("TEAMLEADER_REDIRECT_URI must be an absolute http(s) URL")
        elif settings.ENVIRONMENT == "production" and settings.REDIRECT_URI.startswith("http://"):
            report.warnings.append("TEAMLEADER_REDIRECT_URI should use HTTPS in production")

    if settings.THROTTLE_THRESHOLD > _AGGRESSIVE_THRESHOLD:
        report.warnings.append(
            f"TEAMLEADER_THROTTLE_THRESHOLD={settings.THROTTLE_THRESHOLD} leaves little room before the hard limit"
        )

    return report
