"""Credential store — owns the live OAuth2 pair and refreshes it single-flight.

Concurrent callers that find the pair stale all await one shared refresh
task instead of each calling the token endpoint: on Teamleader a second
refresh with the same refresh token invalidates the first result.  The
lock only protects the in-flight slot and the pair swap; the HTTP call to
the authorization server runs outside it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from teamleader_client.auth.token_storage import InMemoryTokenStorage, TokenStorage
from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.core.errors import (
    AuthorizationRejectedError,
    AuthorizationUnavailableError,
    RefreshFailedError,
)
from teamleader_client.models.credentials import CredentialPair

logger = logging.getLogger(__name__)

# Authorization-server statuses meaning the refresh token itself is dead.
_INVALID_GRANT_STATUSES = frozenset({400, 401})


class Authorizer(Protocol):
    async def refresh(self, refresh_token: str) -> CredentialPair: ...


class CredentialStore:
    """Holder of the current ``CredentialPair``.

    Args:
        authorizer:     Performs the refresh-token grant.
        storage:        Persistence for the pair (in-memory by default).
        clock:          Wall clock for expiry checks.
        refresh_margin: Refresh this many seconds before expiry.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        storage: TokenStorage | None = None,
        clock: Clock = SYSTEM_CLOCK,
        refresh_margin: float = 300.0,
    ) -> None:
        self._authorizer = authorizer
        self._storage: TokenStorage = storage if storage is not None else InMemoryTokenStorage()
        self._clock = clock
        self.refresh_margin = refresh_margin

        self._pair: CredentialPair | None = None
        self._stale = False
        self._inflight: asyncio.Task | None = None
        self._lock = asyncio.Lock()

        # Metrics
        self.refresh_count = 0
        self.refresh_failures = 0

    # ── Reads ────────────────────────────────────────────────────────

    def current(self) -> CredentialPair | None:
        """Return the live pair without blocking; ``None`` if not authenticated."""
        return self._pair

    @property
    def is_authenticated(self) -> bool:
        return self._pair is not None

    @property
    def stale(self) -> bool:
        return self._stale

    def needs_refresh(self) -> bool:
        pair = self._pair
        if pair is None:
            return False
        return self._stale or pair.is_expired(self._clock.time(), self.refresh_margin)

    async def valid_credentials(self) -> CredentialPair | None:
        """Return a pair that is safe to use, refreshing first if needed.

        Raises:
            RefreshFailedError: The pair needed a refresh and it failed.
        """
        if self.needs_refresh():
            return await self.refresh()
        return self._pair

    # ── Mutations ────────────────────────────────────────────────────

    def invalidate(self, rejected: CredentialPair | None = None) -> None:
        """Mark the pair stale so the next use refreshes it first.

        If *rejected* is given and a different pair is already installed
        (another caller refreshed in the meantime), nothing happens.
        """
        if self._pair is None:
            return
        if rejected is not None and rejected.access_token != self._pair.access_token:
            return
        if not self._stale:
            logger.info("Credentials invalidated, refresh required before next use")
        self._stale = True

    async def refresh(self) -> CredentialPair:
        """Refresh the pair; concurrent callers share one refresh.

        Raises:
            RefreshFailedError: No refresh token, the authorization server
                rejected it, or the server could not be reached.
        """
        async with self._lock:
            task = self._inflight
            if task is None:
                task = asyncio.ensure_future(self._perform_refresh())
                task.add_done_callback(self._on_refresh_done)
                self._inflight = task
        return await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the exception retrieved even if every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    async def _perform_refresh(self) -> CredentialPair:
        pair = self._pair
        if pair is None or not pair.refresh_token:
            self.refresh_failures += 1
            logger.error("No refresh token available, re-authentication required")
            raise RefreshFailedError("no refresh token available")

        logger.info("Refreshing access token")
        try:
            new_pair = await self._authorizer.refresh(pair.refresh_token)
        except AuthorizationRejectedError as exc:
            self.refresh_failures += 1
            if exc.status_code in _INVALID_GRANT_STATUSES:
                logger.critical("Refresh token rejected, clearing stored credentials")
                await self.clear()
            raise RefreshFailedError(f"authorization server rejected refresh: {exc.detail or exc.status_code}") from exc
        except AuthorizationUnavailableError as exc:
            self.refresh_failures += 1
            raise RefreshFailedError(str(exc)) from exc

        if not new_pair.refresh_token:
            new_pair = new_pair.with_refresh_token(pair.refresh_token)
        await self._install(new_pair)
        self.refresh_count += 1
        logger.info("Access token refreshed, expires in %.0fs", new_pair.expires_in(self._clock.time()))
        return new_pair

    async def _install(self, pair: CredentialPair) -> None:
        async with self._lock:
            self._pair = pair
            self._stale = False
        try:
            await self._storage.save(pair)
        except OSError as exc:
            # The pair is live in memory; it is lost only on restart.
            logger.error("Failed to persist credentials, keeping them in memory only: %s", exc)

    async def replace(self, pair: CredentialPair) -> None:
        """Install *pair* (e.g. after the authorization-code exchange)."""
        await self._install(pair)

    async def load(self) -> CredentialPair | None:
        """Restore the pair from storage."""
        pair = await self._storage.load()
        if pair is not None:
            async with self._lock:
                self._pair = pair
                self._stale = False
        return pair

    async def clear(self) -> None:
        """Forget the pair everywhere (logout / reset)."""
        async with self._lock:
            self._pair = None
            self._stale = False
        await self._storage.clear()
        logger.info("Credentials cleared")

    def info(self) -> dict:
        """Token diagnostics without any token material."""
        pair = self._pair
        now = self._clock.time()
        return {
            "has_access_token": pair is not None,
            "has_refresh_token": bool(pair and pair.refresh_token),
            "expires_at": pair.expires_at if pair else None,
            "expires_in": round(pair.expires_in(now), 1) if pair else None,
            "needs_refresh": self.needs_refresh() if pair else True,
            "stale": self._stale,
            "refresh_count": self.refresh_count,
            "refresh_failures": self.refresh_failures,
        }
