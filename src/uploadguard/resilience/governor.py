"""Retry governor: execute, classify, back off, repeat.

Wraps one logical call (a zero-argument coroutine function performing a
single HTTP exchange) in a ``tenacity`` retry loop.  Attempts for one call
are strictly sequential; the wait between them is an ``await`` so other
calls keep running.

Usage::

    tracker = RateLimitTracker()
    governor = RetryGovernor(RetryConfig(max_retries=3), tracker)
    outcome = await governor.execute(
        lambda: transport.send("GET", url), operation="retrieve upload"
    )
    if isinstance(outcome, Success):
        ...
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
)

from uploadguard.config import RetryConfig
from uploadguard.exceptions import error_for_unsuccessful
from uploadguard.models import (
    AttemptOutcome,
    ErrorKind,
    Fatal,
    HttpResponse,
    Retryable,
    Success,
)
from uploadguard.resilience.backoff import compute_backoff
from uploadguard.resilience.classifier import classify
from uploadguard.resilience.rate_limit import RateLimitTracker

logger = logging.getLogger(__name__)

RequestThunk = Callable[[], Awaitable[HttpResponse]]
SleepFunc = Callable[[float], Awaitable[None]]

# Kinds retried while budget remains; everything else is terminal at once
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_ERROR,
        ErrorKind.TIMEOUT,
    }
)


def _is_retryable(outcome: AttemptOutcome) -> bool:
    return isinstance(outcome, Retryable)


def _last_retryable(retry_state: RetryCallState) -> Retryable:
    if retry_state.outcome is None:
        raise RuntimeError("Retry state has no outcome yet")
    return retry_state.outcome.result()


def _exhausted(retry_state: RetryCallState) -> Fatal:
    """Turn the last retryable outcome into a terminal one."""
    last = _last_retryable(retry_state)
    return Fatal(
        kind=last.kind,
        attempts=retry_state.attempt_number,
        retry_after=last.retry_after,
        response=last.response,
        error=last.error,
    )


class RetryGovernor:
    """Retries transient failures of single HTTP exchanges.

    Args:
        config: Retry budget and backoff settings.
        rate_limits: Shared tracker for this client; updated on every 429
            and consulted before the first attempt of each call.
        sleep: Awaitable sleep used for every wait (injectable for tests).
        rng: Random source for jitter.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        rate_limits: RateLimitTracker | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._rate_limits = rate_limits or RateLimitTracker()
        self._sleep = sleep
        self._rng = rng

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def rate_limits(self) -> RateLimitTracker:
        return self._rate_limits

    def with_config(self, config: RetryConfig) -> RetryGovernor:
        """A governor with another retry budget sharing this rate limit state."""
        return RetryGovernor(config, self._rate_limits, self._sleep, self._rng)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        request: RequestThunk,
        *,
        operation: str = "request",
        timeout: float | None = None,
    ) -> AttemptOutcome:
        """Run *request* until it succeeds or fails terminally.

        Args:
            request: Zero-argument coroutine function doing one exchange.
            operation: Name used in log messages.
            timeout: Per-attempt deadline in seconds; exceeding it counts as
                a ``TIMEOUT`` failure.

        Returns:
            :class:`~uploadguard.models.Success` or
            :class:`~uploadguard.models.Fatal` carrying the last kind seen.
        """
        await self._pace(operation)

        attempts = 0

        async def attempt() -> AttemptOutcome:
            nonlocal attempts
            attempts += 1
            return await self._attempt_once(request, operation, timeout, attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=self._wait,
            retry=retry_if_result(_is_retryable),
            retry_error_callback=_exhausted,
            before_sleep=lambda state: self._log_retry(operation, state),
            sleep=self._sleep,
        )
        outcome = await retrying(attempt)

        if isinstance(outcome, Fatal):
            logger.warning(
                "%s failed terminally after %d attempt(s): %s",
                operation,
                outcome.attempts,
                outcome.kind.value,
            )
        return outcome

    async def call(
        self,
        request: RequestThunk,
        *,
        operation: str = "request",
        timeout: float | None = None,
    ) -> HttpResponse:
        """Like :meth:`execute`, but return the response or raise.

        Raises:
            UploadGuardError: The typed error for the terminal outcome.
        """
        outcome = await self.execute(request, operation=operation, timeout=timeout)
        if isinstance(outcome, Success):
            return outcome.response
        raise error_for_unsuccessful(outcome, operation)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _pace(self, operation: str) -> None:
        """Wait out an unexpired server hint before the first attempt."""
        delay = min(self._rate_limits.pending_delay(), self._config.max_delay)
        if delay > 0:
            logger.debug("Pacing %s for %.2fs (rate limit hint)", operation, delay)
            await self._sleep(delay)

    async def _attempt_once(
        self,
        request: RequestThunk,
        operation: str,
        timeout: float | None,
        attempt_number: int,
    ) -> AttemptOutcome:
        result: HttpResponse | BaseException
        try:
            if timeout is None:
                result = await request()
            else:
                result = await asyncio.wait_for(request(), timeout)
        except Exception as exc:
            result = exc

        classification = classify(result)
        response = result if isinstance(result, HttpResponse) else None
        error = result if isinstance(result, BaseException) else None

        if response is not None:
            self._rate_limits.observe_headers(response.headers)

        if classification.is_success and response is not None:
            logger.debug("%s succeeded on attempt %d", operation, attempt_number)
            return Success(response=response, attempts=attempt_number)

        # An exception never classifies as success
        kind = classification.kind or ErrorKind.UNKNOWN

        logger.debug(
            "%s attempt %d failed: %s (%s)",
            operation,
            attempt_number,
            kind.value,
            response.status_code if response is not None else repr(error),
        )

        if kind == ErrorKind.RATE_LIMITED:
            self._rate_limits.record_rate_limited(classification.retry_after)

        if kind in RETRYABLE_KINDS:
            return Retryable(
                kind=kind,
                retry_after=classification.retry_after,
                response=response,
                error=error,
            )
        return Fatal(
            kind=kind,
            attempts=attempt_number,
            retry_after=classification.retry_after,
            response=response,
            error=error,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        last = _last_retryable(retry_state)
        return compute_backoff(
            retry_state.attempt_number,
            self._config,
            server_hint=last.retry_after,
            rng=self._rng,
        )

    def _log_retry(self, operation: str, retry_state: RetryCallState) -> None:
        last = _last_retryable(retry_state)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "%s: %s on attempt %d/%d, retrying in %.2fs",
            operation,
            last.kind.value,
            retry_state.attempt_number,
            self._config.max_retries + 1,
            delay,
        )
