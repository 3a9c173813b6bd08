"""Per-client rate limit tracking.

Records the most recent throttle signal seen by the retry governor so
later calls can pace themselves before sending.  The hint is an optimistic
pacing aid, not a lock: it may be stale or belong to a different
endpoint, and readers never block on it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitState:
    """Snapshot of the last observed throttle signals.

    Attributes:
        retry_after: Seconds the server asked us to wait on its last 429.
        observed_at: Monotonic timestamp of that 429 (``None`` if never seen).
        limit: Last ``x-ratelimit-limit`` header value.
        remaining: Last ``x-ratelimit-remaining`` header value.
        reset_at: Last ``x-ratelimit-reset`` header value (unix seconds).
    """

    retry_after: float | None = None
    observed_at: float | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None

    def hint_remaining(self, now: float) -> float:
        """Seconds left on the retry-after hint as of monotonic time *now*."""
        if self.retry_after is None or self.observed_at is None:
            return 0.0
        return max(0.0, self.observed_at + self.retry_after - now)

    @property
    def is_approaching_limit(self) -> bool:
        """Fewer than 20% of the window's requests remain."""
        if self.limit is None or self.remaining is None or self.limit <= 0:
            return False
        return self.remaining / self.limit < 0.2


class RateLimitTracker:
    """Owner of one client's :class:`RateLimitState`.

    Single writer (the governor after a 429), many readers.  Updates swap
    in a new immutable snapshot under a lock, so reads are consistent
    without blocking writers for long.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._state = RateLimitState()

    @property
    def state(self) -> RateLimitState:
        return self._state

    def record_rate_limited(self, retry_after: float | None) -> None:
        """Record a 429 and its retry-after hint (``None`` clears the hint)."""
        now = self._clock()
        with self._lock:
            s = self._state
            self._state = RateLimitState(
                retry_after=retry_after,
                observed_at=now,
                limit=s.limit,
                remaining=s.remaining,
                reset_at=s.reset_at,
            )
        logger.warning(
            "Rate limited by server (retry_after=%s)",
            f"{retry_after:g}s" if retry_after is not None else "none",
        )

    def observe_headers(self, headers: Mapping[str, str] | None) -> None:
        """Record ``x-ratelimit-*`` headers from a response.

        Observation only; these values do not drive pacing.
        """
        if not headers:
            return
        lowered = {k.lower(): v for k, v in headers.items()}
        limit = _parse_int(lowered.get("x-ratelimit-limit"))
        remaining = _parse_int(lowered.get("x-ratelimit-remaining"))
        reset_at = _parse_int(lowered.get("x-ratelimit-reset"))
        if limit is None and remaining is None and reset_at is None:
            return
        with self._lock:
            s = self._state
            self._state = RateLimitState(
                retry_after=s.retry_after,
                observed_at=s.observed_at,
                limit=limit if limit is not None else s.limit,
                remaining=remaining if remaining is not None else s.remaining,
                reset_at=reset_at if reset_at is not None else s.reset_at,
            )
        logger.debug(
            "Observed rate limit headers: limit=%s remaining=%s reset=%s",
            limit,
            remaining,
            reset_at,
        )

    def pending_delay(self) -> float:
        """Seconds still to wait on the last retry-after hint (0 if none)."""
        return self._state.hint_remaining(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._state = RateLimitState()


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None
