"""Settings for the Teamleader client core.

Centralized configuration loaded once at startup.  Every field can be
overridden by an environment variable with the ``TEAMLEADER_`` prefix,
e.g. ``TEAMLEADER_RATE_LIMIT_CAPACITY=100``.

Defaults follow the Teamleader Focus API: 200 requests per sliding
minute, proactive throttling from 70% usage.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Teamleader client configuration.

    Numeric limits are validated on construction; a bad value raises
    ``pydantic.ValidationError`` because it is a deployment error, not a
    runtime condition.
    """

    # ── Service identity ────────────────────────────────────────────
    SERVICE_NAME: str = "teamleader-client"
    SERVICE_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # ── OAuth2 application credentials ──────────────────────────────
    CLIENT_ID: str = ""
    CLIENT_SECRET: str = ""
    REDIRECT_URI: str = ""

    # ── Remote API ──────────────────────────────────────────────────
    BASE_URL: str = "https://api.focus.teamleader.eu"
    AUTH_URL: str = "https://focus.teamleader.eu"
    API_VERSION: str = "2023-09-26"

    # ── Rate budget ─────────────────────────────────────────────────
    RATE_LIMIT_CAPACITY: int = Field(default=200, gt=0)  # Requests per window
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0)
    THROTTLE_THRESHOLD: float = Field(default=0.7, gt=0, le=1.0)  # Fraction of capacity
    THROTTLE_PACING_ENABLED: bool = True
    RATE_LIMIT_DEFAULT_RETRY_AFTER: float = Field(default=60.0, ge=0)  # 429 without Retry-After

    # ── Retry / backoff ─────────────────────────────────────────────
    RETRY_BASE_DELAY: float = Field(default=1.0, gt=0)  # Seconds
    RETRY_MAX_DELAY: float = Field(default=30.0, gt=0)
    MAX_RETRY_ATTEMPTS: int = Field(default=3, ge=0)  # Extra sends beyond the first

    # ── Timeouts ────────────────────────────────────────────────────
    REQUEST_TIMEOUT: float = Field(default=30.0, gt=0)  # Deadline per logical request
    CONNECT_TIMEOUT: float = Field(default=10.0, gt=0)
    READ_TIMEOUT: float = Field(default=25.0, gt=0)

    # ── Credentials ─────────────────────────────────────────────────
    TOKEN_REFRESH_MARGIN_SECONDS: float = Field(default=300.0, ge=0)
    TOKEN_STORAGE_PATH: str = ""  # Empty keeps tokens in memory only
    OAUTH_STATE_TTL_SECONDS: float = Field(default=600.0, gt=0)  # Authorize → callback window
    OAUTH_STATE_MAX_PENDING: int = Field(default=100, gt=0)

    # ── Shared budget store ─────────────────────────────────────────
    REDIS_URL: str = ""  # Empty keeps the budget in-process
    REDIS_KEY_PREFIX: str = "teamleader:ratelimit"

    # ── Health ──────────────────────────────────────────────────────
    HEALTH_PROBE_PATH: str = "/users.me"

    model_config = {
        "env_prefix": "TEAMLEADER_",
    }

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> Settings:
        if self.RETRY_MAX_DELAY < self.RETRY_BASE_DELAY:
            raise ValueError("RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY")
        return self

    @property
    def max_attempts(self) -> int:
        """Total sends allowed by the backoff loop for one logical request."""
        return self.MAX_RETRY_ATTEMPTS + 1
