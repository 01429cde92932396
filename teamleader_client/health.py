"""Health checks over configuration, credentials, rate budget and the API.

Each check reports one status from ``healthy < caution < warning <
critical < error``; ``skipped`` checks do not affect the result.  The
overall status is the worst individual status.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import BaseModel, Field

from teamleader_client.core.config import Settings
from teamleader_client.core.errors import user_message
from teamleader_client.core.validation import validate_settings
from teamleader_client.orchestrator import RequestOrchestrator, RequestSpec

logger = logging.getLogger(__name__)

STATUS_SEVERITY = {
    "skipped": 0,
    "healthy": 0,
    "caution": 1,
    "warning": 2,
    "critical": 3,
    "error": 4,
}

# Seconds; slower probes are reported as degraded.
_SLOW_PROBE = 3.0
_MODERATE_PROBE = 1.0
_PROBE_TIMEOUT = 10.0


class CheckResult(BaseModel):
    """Result of one health check."""

    status: str
    details: dict[str, Any] = Field(default_factory=dict)


class HealthReport(BaseModel):
    """Aggregated health of the client."""

    status: str
    service: str
    version: str
    checked_at: float
    checks: dict[str, CheckResult]


def rate_limit_status(usage_percentage: float) -> str:
    if usage_percentage >= 95:
        return "critical"
    if usage_percentage >= 85:
        return "warning"
    if usage_percentage >= 70:
        return "caution"
    return "healthy"


def worst_status(statuses: list[str]) -> str:
    worst = "healthy"
    for status in statuses:
        if STATUS_SEVERITY.get(status, 4) > STATUS_SEVERITY[worst]:
            worst = status
    return worst


class HealthCheckService:
    """Runs all health checks against one orchestrator.

    Args:
        settings:     Configuration to validate.
        orchestrator: Supplies credentials, budget stats and the API probe.
        probe:        Run the live ``api_connectivity`` probe.
    """

    def __init__(self, settings: Settings, orchestrator: RequestOrchestrator, probe: bool = True) -> None:
        self.settings = settings
        self.orchestrator = orchestrator
        self.probe = probe

    async def check(self) -> HealthReport:
        checks = {
            "configuration": self.check_configuration(),
            "authentication": self.check_authentication(),
            "rate_limits": await self.check_rate_limits(),
            "api_connectivity": await self.check_api_connectivity(),
        }
        status = worst_status([c.status for c in checks.values()])
        if status != "healthy":
            logger.warning(
                "Health check %s: %s",
                status,
                {name: c.status for name, c in checks.items() if c.status not in ("healthy", "skipped")},
            )
        return HealthReport(
            status=status,
            service=self.settings.SERVICE_NAME,
            version=self.settings.SERVICE_VERSION,
            checked_at=time.time(),
            checks=checks,
        )

    def check_configuration(self) -> CheckResult:
        report = validate_settings(self.settings)
        details: dict[str, Any] = {"summary": report.summary()}
        if report.errors:
            details["errors"] = report.errors
        if report.warnings:
            details["warnings"] = report.warnings
        return CheckResult(status="healthy" if report.is_valid else "error", details=details)

    def check_authentication(self) -> CheckResult:
        info = self.orchestrator.credentials.info()
        if not info["has_access_token"]:
            status = "warning"
            info["message"] = "Not authenticated, authorization required"
        elif info["needs_refresh"]:
            status = "warning"
            info["message"] = "Access token expires soon or was rejected"
        else:
            status = "healthy"
        return CheckResult(status=status, details=info)

    async def check_rate_limits(self) -> CheckResult:
        stats = await self.orchestrator.budget_stats()
        details = {
            "consumed": stats.consumed,
            "capacity": stats.capacity,
            "remaining": stats.remaining,
            "usage_percentage": stats.usage_percentage,
            "seconds_until_reset": stats.seconds_until_reset,
        }
        return CheckResult(status=rate_limit_status(stats.usage_percentage), details=details)

    async def check_api_connectivity(self) -> CheckResult:
        if not self.probe:
            return CheckResult(status="skipped", details={"reason": "Probe disabled"})
        if not self.orchestrator.credentials.is_authenticated:
            return CheckResult(status="skipped", details={"reason": "Not authenticated"})

        result = await self.orchestrator.execute(
            RequestSpec(method="POST", path=self.settings.HEALTH_PROBE_PATH, timeout=_PROBE_TIMEOUT)
        )
        details: dict[str, Any] = {
            "endpoint": self.settings.HEALTH_PROBE_PATH,
            "outcome": result.outcome.kind.value,
            "attempts": result.attempts,
            "response_time": result.elapsed,
        }
        if not result.ok:
            details["error"] = user_message(result.outcome)
            return CheckResult(status="error", details=details)
        if result.elapsed > _SLOW_PROBE:
            details["warning"] = "API response time is slow (>3s)"
            return CheckResult(status="warning", details=details)
        if result.elapsed > _MODERATE_PROBE:
            details["warning"] = "API response time is moderate (>1s)"
            return CheckResult(status="caution", details=details)
        return CheckResult(status="healthy", details=details)
