"""Tests for the FastAPI status surface.

Verifies that:
- GET /health returns the aggregated report
- GET /status returns budget stats and token diagnostics without tokens
- The OAuth2 authorization-code flow stores the exchanged pair
- POST /oauth/logout clears credentials
"""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from teamleader_client.auth.token_client import AuthorizationClient
from teamleader_client.core.config import Settings
from teamleader_client.main import create_app
from teamleader_client.orchestrator import RequestOrchestrator
from teamleader_client.transport import TransportResponse


class OkTransport:
    async def send(self, method, path, body, headers, timeout) -> TransportResponse:
        return TransportResponse(status_code=200, body=b'{"data": {}}')


def _token_endpoint(request: httpx.Request) -> httpx.Response:
    form = parse_qs(request.content.decode())
    if form.get("code") == ["good-code"]:
        return httpx.Response(
            200,
            json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600},
        )
    return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"})


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        CLIENT_ID="client-id-0123456789",
        CLIENT_SECRET="client-secret-0123456789abcdef",
        REDIRECT_URI="https://example.com/oauth/callback",
    )


@pytest.fixture()
def app(settings, clock):
    authorizer = AuthorizationClient(
        settings,
        client=httpx.AsyncClient(transport=httpx.MockTransport(_token_endpoint)),
        clock=clock,
    )
    orchestrator = RequestOrchestrator.from_settings(
        settings, transport=OkTransport(), authorizer=authorizer, clock=clock
    )
    return create_app(settings, orchestrator=orchestrator, authorizer=authorizer, clock=clock)


@pytest.fixture
async def client(app):
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac


async def _authorize_state(client) -> str:
    response = await client.get("/oauth/authorize")
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


# ── Diagnostics ─────────────────────────────────────────────────────────


class TestHealthEndpoint:
    """GET /health returns the aggregated report."""

    async def test_health_returns_200(self, client) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"

    async def test_health_report_shape(self, client) -> None:
        data = (await client.get("/health")).json()
        assert data["service"] == "teamleader-client"
        assert set(data["checks"]) == {"configuration", "authentication", "rate_limits", "api_connectivity"}
        assert data["status"] == "warning"

    async def test_request_id_preserved(self, client) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_generated(self, client) -> None:
        response = await client.get("/health")
        assert response.headers["X-Request-ID"]


class TestStatusEndpoint:
    """GET /status exposes budget and token diagnostics."""

    async def test_status_contents(self, client) -> None:
        data = (await client.get("/status")).json()
        assert data["rate_limit"]["capacity"] == 200
        assert data["rate_limit"]["remaining"] == 200
        assert "reset_at_iso" in data["rate_limit"]
        assert data["token"]["has_access_token"] is False


# ── OAuth2 flow ─────────────────────────────────────────────────────────


class TestOAuthFlow:
    """Authorization-code flow through the callback."""

    async def test_authorize_redirects(self, client) -> None:
        response = await client.get("/oauth/authorize")
        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "focus.teamleader.eu"
        assert parse_qs(location.query)["client_id"] == ["client-id-0123456789"]

    async def test_callback_stores_credentials(self, client, app) -> None:
        state = await _authorize_state(client)
        response = await client.get("/oauth/callback", params={"code": "good-code", "state": state})
        assert response.status_code == 200
        assert response.json()["authenticated"] is True
        assert "new-access" not in response.text
        assert app.state.orchestrator.credentials.current().access_token == "new-access"

        status = (await client.get("/status")).json()
        assert status["token"]["has_access_token"] is True

    async def test_state_is_single_use(self, client) -> None:
        state = await _authorize_state(client)
        await client.get("/oauth/callback", params={"code": "good-code", "state": state})
        response = await client.get("/oauth/callback", params={"code": "good-code", "state": state})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"

    async def test_unknown_state_rejected(self, client) -> None:
        response = await client.get("/oauth/callback", params={"code": "good-code", "state": "forged"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"

    async def test_rejected_code(self, client) -> None:
        state = await _authorize_state(client)
        response = await client.get("/oauth/callback", params={"code": "bad-code", "state": state})
        assert response.status_code == 400
        assert response.json()["code"] == "AUTHORIZATION_REJECTED"

    async def test_user_denied(self, client) -> None:
        response = await client.get("/oauth/callback", params={"error": "access_denied"})
        assert response.status_code == 400
        assert response.json()["code"] == "AUTHORIZATION_DENIED"

    async def test_logout_clears_credentials(self, client, app) -> None:
        state = await _authorize_state(client)
        await client.get("/oauth/callback", params={"code": "good-code", "state": state})

        response = await client.post("/oauth/logout")
        assert response.json() == {"authenticated": False}
        assert app.state.orchestrator.credentials.current() is None

    async def test_expired_state_rejected(self, client, clock) -> None:
        state = await _authorize_state(client)
        clock.advance(601)
        response = await client.get("/oauth/callback", params={"code": "good-code", "state": state})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"

    async def test_pending_states_are_bounded(self, client, app) -> None:
        for _ in range(250):
            await client.get("/oauth/authorize")
        assert len(app.state.oauth_states) == 100


class TestLifespan:
    """Startup restores credentials, shutdown closes clients."""

    async def test_shutdown_closes_clients(self, app) -> None:
        orchestrator = app.state.orchestrator
        orchestrator.close = AsyncMock()
        app.state.authorizer.close = AsyncMock()

        async with app.router.lifespan_context(app):
            pass

        orchestrator.close.assert_awaited_once()
        app.state.authorizer.close.assert_awaited_once()


class TestAppImport:
    """The module-level app is importable."""

    def test_module_app_is_fastapi_instance(self) -> None:
        from fastapi import FastAPI

        from teamleader_client.main import app

        assert isinstance(app, FastAPI)
