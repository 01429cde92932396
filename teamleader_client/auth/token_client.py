"""OAuth2 authorization-server client.

Performs the authorization-code exchange and refresh-token grant against
``<AUTH_URL>/oauth2/access_token``.  Each call is one HTTP exchange; the
client never retries (a duplicate refresh can invalidate the refresh
token that was just issued).
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.core.config import Settings
from teamleader_client.core.errors import AuthorizationRejectedError, AuthorizationUnavailableError
from teamleader_client.models.credentials import CredentialPair, TokenResponse
from teamleader_client.resilience.classifier import parse_error_messages
from teamleader_client.security.log_sanitizer import sanitize_for_log

logger = logging.getLogger(__name__)

GRANT_TYPE_AUTH_CODE = "authorization_code"
GRANT_TYPE_REFRESH = "refresh_token"


class AuthorizationClient:
    """Token endpoint client.

    Args:
        settings: Supplies client id/secret, redirect URI and ``AUTH_URL``.
        client:   Pre-built ``httpx.AsyncClient`` (tests inject a mock).
        clock:    Wall clock used to turn ``expires_in`` into an instant.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.client_id = settings.CLIENT_ID
        self.client_secret = settings.CLIENT_SECRET
        self.redirect_uri = settings.REDIRECT_URI
        self.auth_url = settings.AUTH_URL.rstrip("/")
        self.timeout = httpx.Timeout(settings.READ_TIMEOUT, connect=settings.CONNECT_TIMEOUT)
        self._client = client
        self._clock = clock

    @property
    def token_url(self) -> str:
        return f"{self.auth_url}/oauth2/access_token"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def authorization_url(self, state: str | None = None) -> str:
        """URL the user is redirected to in order to grant access."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{self.auth_url}/oauth2/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> CredentialPair:
        """Trade an authorization code for the initial credential pair."""
        return await self._token_request(
            {
                "grant_type": GRANT_TYPE_AUTH_CODE,
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            fallback_refresh_token=None,
        )

    async def refresh(self, refresh_token: str) -> CredentialPair:
        """Trade *refresh_token* for a new credential pair."""
        return await self._token_request(
            {
                "grant_type": GRANT_TYPE_REFRESH,
                "refresh_token": refresh_token,
            },
            fallback_refresh_token=refresh_token,
        )

    async def _token_request(self, form: dict[str, str], fallback_refresh_token: str | None) -> CredentialPair:
        data = {"client_id": self.client_id, "client_secret": self.client_secret, **form}
        grant = form["grant_type"]
        try:
            response = await self._get_client().post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Token endpoint unreachable during %s grant: %s", grant, exc)
            raise AuthorizationUnavailableError(f"Token endpoint unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code != 200:
            messages = parse_error_messages(body)
            detail = messages[0] if messages else ""
            logger.error(
                "Token endpoint rejected %s grant: %s",
                grant,
                sanitize_for_log({"status_code": response.status_code, "response": body}),
            )
            raise AuthorizationRejectedError(response.status_code, detail)

        try:
            token = TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise AuthorizationRejectedError(response.status_code, "No access token in response") from exc

        logger.info(
            "Token %s grant succeeded (expires_in=%ds, new_refresh_token=%s)",
            grant,
            token.expires_in,
            token.refresh_token is not None,
        )
        return token.to_pair(self._clock.time(), fallback_refresh_token)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
