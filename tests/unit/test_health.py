"""Health check service tests."""

import json
from unittest.mock import AsyncMock

import pytest

from teamleader_client.core.config import Settings
from teamleader_client.health import HealthCheckService, rate_limit_status, worst_status
from teamleader_client.models.budget import ServerUsage
from teamleader_client.models.credentials import CredentialPair
from teamleader_client.orchestrator import RequestOrchestrator
from teamleader_client.transport import TransportResponse


class StaticTransport:
    def __init__(self, status: int, body=None) -> None:
        self.status = status
        self.body = json.dumps(body).encode() if body is not None else b""
        self.paths: list[str] = []

    async def send(self, method, path, body, headers, timeout) -> TransportResponse:
        self.paths.append(path)
        return TransportResponse(status_code=self.status, body=self.body)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        CLIENT_ID="client-id-0123456789",
        CLIENT_SECRET="client-secret-0123456789abcdef",
        REDIRECT_URI="https://example.com/oauth/callback",
    )


def _orchestrator(settings, clock, transport) -> RequestOrchestrator:
    return RequestOrchestrator.from_settings(settings, transport=transport, authorizer=AsyncMock(), clock=clock)


async def _authenticate(orch: RequestOrchestrator, clock) -> None:
    await orch.credentials.replace(CredentialPair("access", "refresh", clock.time() + 3600))


# ── Helpers ─────────────────────────────────────────────────────────────


class TestStatusHelpers:
    """Status thresholds and the worst-status fold."""

    @pytest.mark.parametrize(
        "pct,status",
        [(0, "healthy"), (69.9, "healthy"), (70, "caution"), (85, "warning"), (95, "critical")],
    )
    def test_rate_limit_status(self, pct, status) -> None:
        assert rate_limit_status(pct) == status

    def test_worst_status(self) -> None:
        assert worst_status(["healthy", "skipped", "caution"]) == "caution"
        assert worst_status(["warning", "error", "critical"]) == "error"
        assert worst_status(["skipped"]) == "healthy"


# ── Checks ──────────────────────────────────────────────────────────────


class TestHealthCheckService:
    """Aggregated health report across the four checks."""

    async def test_unauthenticated_skips_probe(self, settings, clock) -> None:
        transport = StaticTransport(200, {"data": {}})
        service = HealthCheckService(settings, _orchestrator(settings, clock, transport))

        report = await service.check()
        assert report.checks["configuration"].status == "healthy"
        assert report.checks["authentication"].status == "warning"
        assert report.checks["api_connectivity"].status == "skipped"
        assert report.status == "warning"
        assert transport.paths == []

    async def test_all_healthy(self, settings, clock) -> None:
        transport = StaticTransport(200, {"data": {"id": "user-1"}})
        orch = _orchestrator(settings, clock, transport)
        await _authenticate(orch, clock)

        report = await HealthCheckService(settings, orch).check()
        assert report.status == "healthy"
        assert transport.paths == ["/users.me"]
        assert report.checks["api_connectivity"].details["outcome"] == "success"

    async def test_probe_failure_is_error(self, settings, clock) -> None:
        transport = StaticTransport(404, {"errors": [{"title": "Not found"}]})
        orch = _orchestrator(settings, clock, transport)
        await _authenticate(orch, clock)

        report = await HealthCheckService(settings, orch).check()
        assert report.checks["api_connectivity"].status == "error"
        assert report.status == "error"

    async def test_invalid_configuration(self, clock) -> None:
        settings = Settings()
        report = await HealthCheckService(settings, _orchestrator(settings, clock, StaticTransport(200)), probe=False).check()
        assert report.checks["configuration"].status == "error"
        assert "errors" in report.checks["configuration"].details

    async def test_rate_limit_usage_reported(self, settings, clock) -> None:
        orch = _orchestrator(settings, clock, StaticTransport(200))
        await orch.tracker.record(ServerUsage(remaining=20))

        check = await HealthCheckService(settings, orch).check_rate_limits()
        assert check.status == "warning"
        assert check.details["usage_percentage"] == 90.0

    async def test_token_material_not_in_report(self, settings, clock) -> None:
        orch = _orchestrator(settings, clock, StaticTransport(200, {}))
        await _authenticate(orch, clock)
        report = await HealthCheckService(settings, orch).check()
        assert '"access"' not in report.model_dump_json()
