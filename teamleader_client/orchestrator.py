"""RequestOrchestrator — the single entry point for API calls.

One ``execute()`` call is one logical request:

    admission ─▶ attach credentials ─▶ send ─▶ classify ─▶ record usage
        ▲                                                        │
        └──── wait (backoff) / refresh once (401) ◀── decide ◀───┘

The orchestrator suspends (never blocks) while waiting on admission,
pacing, backoff, the network and a credential refresh.  Each logical
request carries a deadline; a wait that would overrun it ends the request
with a ``Timeout`` outcome immediately.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from teamleader_client.auth.credential_store import CredentialStore
from teamleader_client.auth.token_client import AuthorizationClient
from teamleader_client.auth.token_storage import TokenStorage, create_token_storage
from teamleader_client.core.clock import SYSTEM_CLOCK, Clock
from teamleader_client.core.config import Settings
from teamleader_client.core.errors import RefreshFailedError, TransportError, error_for_outcome
from teamleader_client.models.budget import BudgetStats, ServerUsage
from teamleader_client.models.credentials import CredentialPair
from teamleader_client.models.outcome import Outcome, RefreshFailed, Timeout, Unauthenticated
from teamleader_client.resilience.backoff import AttemptRecord, RefreshThenRetry, Return, RetryPolicy
from teamleader_client.resilience.budget_store import BudgetStore
from teamleader_client.resilience.classifier import classify
from teamleader_client.resilience.rate_budget import Delay, RateBudgetTracker, ThrottleCurve
from teamleader_client.resilience.redis_budget import create_budget_store
from teamleader_client.transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class RequestSpec:
    """What to send.

    Attributes:
        method:        HTTP method.
        path:          API path, e.g. ``/contacts.list``.
        body:          JSON body (query params for GET).
        headers:       Extra request headers.
        timeout:       Deadline for the whole logical request in seconds;
                       ``None`` uses the configured ``REQUEST_TIMEOUT``.
        authenticated: Attach the bearer token.
    """

    method: str
    path: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    authenticated: bool = True


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a logical request plus diagnostics.

    Attributes:
        outcome:   One of the classified outcome variants.
        attempts:  Physical sends made.
        refreshed: A credential refresh happened during the request.
        elapsed:   Wall time spent in ``execute()`` (seconds).
    """

    outcome: Outcome
    attempts: int
    refreshed: bool = False
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    @property
    def payload(self) -> Any:
        return getattr(self.outcome, "payload", None)

    def raise_for_outcome(self) -> Any:
        """Return the payload on success, raise the matching ``ApiError`` otherwise."""
        if self.ok:
            return self.payload
        raise error_for_outcome(self.outcome, self.attempts)


class RequestOrchestrator:
    """Composes budget, credentials, transport, classifier and retry policy.

    All collaborators are injected; nothing is looked up globally.

    Args:
        transport:           Sends one HTTP request.
        tracker:             Shared rate budget.
        credentials:         Credential store.
        policy:              Retry/backoff policy.
        clock:               Time source for deadlines and waits.
        request_timeout:     Default deadline per logical request.
        default_retry_after: Back-off for a 429 without ``Retry-After``.
    """

    def __init__(
        self,
        transport: Transport,
        tracker: RateBudgetTracker,
        credentials: CredentialStore,
        policy: RetryPolicy,
        clock: Clock = SYSTEM_CLOCK,
        request_timeout: float = 30.0,
        default_retry_after: float = 60.0,
    ) -> None:
        self.transport = transport
        self.tracker = tracker
        self.credentials = credentials
        self.policy = policy
        self._clock = clock
        self.request_timeout = request_timeout
        self.default_retry_after = default_retry_after

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Transport | None = None,
        http_client: httpx.AsyncClient | None = None,
        budget_store: BudgetStore | None = None,
        token_storage: TokenStorage | None = None,
        authorizer: AuthorizationClient | None = None,
        clock: Clock = SYSTEM_CLOCK,
        rng: random.Random | None = None,
    ) -> RequestOrchestrator:
        """Build the default object graph from *settings*."""
        if transport is None:
            transport = HttpxTransport.from_settings(settings, client=http_client)
        curve = ThrottleCurve(rng=rng) if settings.THROTTLE_PACING_ENABLED else None
        tracker = RateBudgetTracker(
            capacity=settings.RATE_LIMIT_CAPACITY,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            throttle_threshold=settings.THROTTLE_THRESHOLD,
            store=budget_store if budget_store is not None else create_budget_store(settings, clock),
            clock=clock,
            curve=curve,
        )
        credentials = CredentialStore(
            authorizer if authorizer is not None else AuthorizationClient(settings, clock=clock),
            storage=token_storage if token_storage is not None else create_token_storage(settings),
            clock=clock,
            refresh_margin=settings.TOKEN_REFRESH_MARGIN_SECONDS,
        )
        return cls(
            transport=transport,
            tracker=tracker,
            credentials=credentials,
            policy=RetryPolicy.from_settings(settings, rng=rng),
            clock=clock,
            request_timeout=settings.REQUEST_TIMEOUT,
            default_retry_after=settings.RATE_LIMIT_DEFAULT_RETRY_AFTER,
        )

    async def budget_stats(self) -> BudgetStats:
        return await self.tracker.stats()

    async def close(self) -> None:
        """Close the transport's HTTP client and the budget store's connections."""
        close_transport = getattr(self.transport, "close", None)
        if close_transport is not None:
            await close_transport()
        await self.tracker.close()

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, spec: RequestSpec) -> ExecutionResult:
        """Run one logical request to a terminal outcome."""
        start = self._clock.monotonic()
        deadline = start + (spec.timeout if spec.timeout is not None else self.request_timeout)
        record = AttemptRecord()
        refreshed = False
        label = f"{spec.method.upper()} {spec.path}"

        def finish(outcome: Outcome) -> ExecutionResult:
            return ExecutionResult(
                outcome=outcome,
                attempts=record.sends,
                refreshed=refreshed,
                elapsed=round(self._clock.monotonic() - start, 3),
            )

        while True:
            timed_out = await self._await_admission(deadline, start, label)
            if timed_out is not None:
                return finish(timed_out)

            headers = dict(spec.headers)
            pair: CredentialPair | None = None
            if spec.authenticated:
                was_stale = self.credentials.needs_refresh()
                try:
                    pair = await self.credentials.valid_credentials()
                except RefreshFailedError as exc:
                    logger.error("%s aborted: %s", label, exc)
                    return finish(RefreshFailed(reason=exc.reason))
                refreshed = refreshed or was_stale
                if pair is None:
                    return finish(Unauthenticated(message="No access token available, authorization required"))
                headers.update(pair.authorization_header())

            outcome = await self._send(spec, headers, deadline)
            record.sends += 1
            record.last_kind = outcome.kind

            step = self.policy.next_step(outcome, record)
            if isinstance(step, RefreshThenRetry) and pair is None:
                # Sent without credentials; there is nothing to refresh.
                step = Return(outcome)

            if isinstance(step, Return):
                if not step.outcome.ok:
                    logger.warning("%s failed: %s after %d send(s)", label, step.outcome.kind.value, record.sends)
                return finish(step.outcome)

            if isinstance(step, RefreshThenRetry):
                logger.info("%s unauthenticated, refreshing credentials and resending once", label)
                record.auth_recovered = True
                self.credentials.invalidate(pair)
                continue

            remaining = deadline - self._clock.monotonic()
            if step.delay > remaining:
                logger.warning(
                    "%s: backoff of %.1fs exceeds remaining deadline %.1fs",
                    label,
                    step.delay,
                    max(0.0, remaining),
                )
                return finish(Timeout(stage="backoff", elapsed=self._clock.monotonic() - start))
            logger.warning(
                "%s for %s (attempt %d/%d), retrying in %.1fs",
                outcome.kind.value,
                label,
                record.attempt + 1,
                self.policy.max_attempts,
                step.delay,
            )
            await self._clock.sleep(step.delay)
            record.elapsed_delay += step.delay
            record.attempt += 1

    async def _await_admission(self, deadline: float, start: float, label: str) -> Timeout | None:
        """Wait for a budget slot; return a ``Timeout`` if the deadline would pass."""
        while True:
            admission = await self.tracker.try_admit()
            now = self._clock.monotonic()
            if isinstance(admission, Delay):
                if now + admission.seconds > deadline:
                    logger.warning("%s: admission delay %.1fs exceeds deadline", label, admission.seconds)
                    return Timeout(stage="admission", elapsed=now - start)
                logger.info("%s waiting %.2fs for rate budget", label, admission.seconds)
                await self._clock.sleep(admission.seconds)
                continue
            if admission.pacing_delay > 0:
                if now + admission.pacing_delay > deadline:
                    return Timeout(stage="pacing", elapsed=now - start)
                await self._clock.sleep(admission.pacing_delay)
            return None

    async def _send(self, spec: RequestSpec, headers: dict[str, str], deadline: float) -> Outcome:
        timeout = max(0.001, min(self.request_timeout, deadline - self._clock.monotonic()))
        try:
            result = await self.transport.send(spec.method, spec.path, spec.body, headers, timeout)
        except TransportError as exc:
            # No response, no usage headers: the local count stands.
            return classify(exc)

        now_wall = self._clock.time()
        usage = ServerUsage.from_headers(result.headers, result.status_code, now_wall, self.default_retry_after)
        await self.tracker.record(usage)
        return classify(result, self.default_retry_after, now_wall)
