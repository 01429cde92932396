"""HTTP transport — the single place that talks to the network.

``HttpxTransport.send()`` performs exactly one HTTP exchange and reports
either a ``TransportResponse`` or a ``TransportError``.  It never retries,
never inspects status codes and holds no locks; retry policy lives in the
orchestrator.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from teamleader_client.core.config import Settings
from teamleader_client.core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Raw response of one HTTP exchange.

    Attributes:
        status_code: HTTP status code.
        headers:     Response headers as a plain dict.
        body:        Undecoded response body.
        elapsed_ms:  Round-trip time in milliseconds.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    elapsed_ms: float = 0.0

    def json(self) -> Any:
        """Decode the body as JSON; raises ``ValueError`` if it is not JSON."""
        return json.loads(self.body)


class Transport(Protocol):
    async def send(
        self,
        method: str,
        path: str,
        body: Any,
        headers: dict[str, str],
        timeout: float,
    ) -> TransportResponse: ...


class HttpxTransport:
    """Transport on a single pooled ``httpx.AsyncClient``.

    Args:
        base_url:        API origin, e.g. ``https://api.focus.teamleader.eu``.
        api_version:     Sent as ``X-Api-Version`` on every request.
        connect_timeout: Upper bound for establishing a connection.
        client:          Pre-built client (tests inject a ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_version: str = "",
        connect_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.connect_timeout = connect_timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> HttpxTransport:
        return cls(
            base_url=settings.BASE_URL,
            api_version=settings.API_VERSION,
            connect_timeout=settings.CONNECT_TIMEOUT,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> TransportResponse:
        """Send one request.

        Raises:
            TransportError: No usable response (timeout, refused
                connection, TLS/DNS failure, connection reset, undecodable
                body, redirect loop).
        """
        request_headers = {"Accept": "application/json"}
        if self.api_version:
            request_headers["X-Api-Version"] = self.api_version
        request_headers.update(headers or {})

        http_timeout = httpx.Timeout(timeout, connect=min(self.connect_timeout, timeout))
        kwargs: dict[str, Any] = {"headers": request_headers, "timeout": http_timeout}
        if body is not None:
            if method.upper() == "GET":
                kwargs["params"] = body
            else:
                kwargs["json"] = body

        start = time.monotonic()
        try:
            response = await self._get_client().request(method.upper(), self._url(path), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError("timeout", f"{method} {path} timed out after {timeout:.1f}s") from exc
        except httpx.ConnectError as exc:
            raise TransportError("connect", str(exc) or "connection failed") from exc
        except httpx.RequestError as exc:
            raise TransportError("network", str(exc) or type(exc).__name__) from exc

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        logger.debug("%s %s -> %d in %.1fms", method.upper(), path, response.status_code, elapsed_ms)
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            elapsed_ms=elapsed_ms,
        )

    async def close(self) -> None:
        """Close the pooled httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
