"""Exponential backoff with multiplicative jitter."""

from __future__ import annotations

import random

from uploadguard.config import RetryConfig


def compute_backoff(
    attempt: int,
    config: RetryConfig,
    server_hint: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """Seconds to wait before retry number *attempt*.

    A server hint, when honored, is used as-is (capped at ``max_delay``).
    Otherwise the delay is ``base_delay * 2**(attempt - 1)`` capped at
    ``max_delay``, scaled by ``1 + uniform(-jitter, +jitter)`` and clamped
    to ``[0, max_delay]``.

    Args:
        attempt: 1 for the first retry, 2 for the second, and so on.
        config: Retry settings.
        server_hint: ``Retry-After`` seconds from the last response, if any.
        rng: Random source (defaults to the module-level generator).

    Raises:
        ValueError: If *attempt* is less than 1.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if config.respect_server_hint and server_hint is not None:
        return min(max(server_hint, 0.0), config.max_delay)

    # Cap the exponent so huge attempt numbers cannot overflow
    exponent = min(attempt - 1, 64)
    delay = min(config.base_delay * (2.0**exponent), config.max_delay)

    if config.jitter_factor > 0:
        source = rng or random
        delay *= 1.0 + source.uniform(-config.jitter_factor, config.jitter_factor)

    return min(max(delay, 0.0), config.max_delay)
