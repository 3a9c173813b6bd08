"""Retry, backoff and rate limit handling for single HTTP calls.

Public API
----------
.. autofunction:: classify
.. autofunction:: compute_backoff
.. autoclass:: RateLimitTracker
.. autoclass:: RetryGovernor
"""

from uploadguard.resilience.backoff import compute_backoff
from uploadguard.resilience.classifier import Classification, classify, parse_retry_after
from uploadguard.resilience.governor import RetryGovernor
from uploadguard.resilience.rate_limit import RateLimitState, RateLimitTracker

__all__ = [
    "Classification",
    "RateLimitState",
    "RateLimitTracker",
    "RetryGovernor",
    "classify",
    "compute_backoff",
    "parse_retry_after",
]
