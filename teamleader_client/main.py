"""FastAPI status surface for the Teamleader client.

Exposes health and budget diagnostics plus the OAuth2 authorization-code
flow that installs the first credential pair:

    GET  /health            aggregated health report
    GET  /status            budget stats and token diagnostics
    GET  /oauth/authorize   redirect to the Teamleader consent screen
    GET  /oauth/callback    exchange ``code`` and store the pair
    POST /oauth/logout      forget the stored pair
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from teamleader_client.auth.oauth_state import OAuthStateRegistry
from teamleader_client.auth.token_client import AuthorizationClient
from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.core.config import Settings
from teamleader_client.core.errors import (
    AuthorizationRejectedError,
    AuthorizationUnavailableError,
    ErrorResponse,
)
from teamleader_client.health import HealthCheckService, HealthReport
from teamleader_client.orchestrator import RequestOrchestrator

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("teamleader_client.security")


def _error(status_code: int, error: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, code=code).model_dump())


def create_app(
    settings: Settings | None = None,
    orchestrator: RequestOrchestrator | None = None,
    authorizer: AuthorizationClient | None = None,
    clock: Clock = SYSTEM_CLOCK,
) -> FastAPI:
    """Build the app; collaborators not supplied are built from *settings*."""
    settings = settings or Settings()
    if authorizer is None:
        authorizer = AuthorizationClient(settings)
    if orchestrator is None:
        orchestrator = RequestOrchestrator.from_settings(settings, authorizer=authorizer)
    health_service = HealthCheckService(settings, orchestrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pair = await orchestrator.credentials.load()
        logger.info("Startup: stored credentials %s", "restored" if pair else "not found")
        yield
        await authorizer.close()
        await orchestrator.close()
        logger.info("Shutdown: HTTP and budget store clients closed")

    app = FastAPI(title=settings.SERVICE_NAME, version=settings.SERVICE_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.authorizer = authorizer
    app.state.oauth_states = OAuthStateRegistry(
        ttl=settings.OAUTH_STATE_TTL_SECONDS,
        max_pending=settings.OAUTH_STATE_MAX_PENDING,
        clock=clock,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next) -> Response:
        """Assign or preserve a unique request ID on every request."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health", response_model=HealthReport)
    async def health() -> HealthReport:
        return await health_service.check()

    @app.get("/status")
    async def status() -> dict:
        """Budget statistics and token diagnostics (no token material)."""
        stats = await orchestrator.budget_stats()
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "rate_limit": stats.to_dict(),
            "token": orchestrator.credentials.info(),
        }

    @app.get("/oauth/authorize")
    async def authorize() -> RedirectResponse:
        state = app.state.oauth_states.issue()
        return RedirectResponse(authorizer.authorization_url(state), status_code=302)

    @app.get("/oauth/callback")
    async def callback(code: str = "", state: str = "", error: str = "") -> Response:
        if error:
            security_logger.warning("Authorization denied by user: %s", error)
            return _error(400, f"Authorization was denied: {error}", "AUTHORIZATION_DENIED")
        if not state or not app.state.oauth_states.consume(state):
            security_logger.warning("OAuth callback with unknown state rejected")
            return _error(400, "Invalid or expired state parameter", "INVALID_STATE")
        if not code:
            return _error(400, "Missing authorization code", "MISSING_CODE")

        try:
            pair = await authorizer.exchange_code(code)
        except AuthorizationRejectedError as exc:
            return _error(400, str(exc), "AUTHORIZATION_REJECTED")
        except AuthorizationUnavailableError as exc:
            return _error(502, str(exc), "AUTHORIZATION_UNAVAILABLE")

        await orchestrator.credentials.replace(pair)
        security_logger.info("Authorization code exchanged, credentials stored")
        return JSONResponse({"authenticated": True, "token": orchestrator.credentials.info()})

    @app.post("/oauth/logout")
    async def logout() -> dict:
        await orchestrator.credentials.clear()
        security_logger.info("Credentials cleared via logout")
        return {"authenticated": False}

    return app


app = create_app()
