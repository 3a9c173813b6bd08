"""Failure classification for a single HTTP attempt.

Maps whatever one attempt produced (a response or the exception it
raised) to exactly one :class:`~uploadguard.models.ErrorKind`.  The mapping
is total: any input lands in some kind, with ``UNKNOWN`` as the catch-all.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Mapping
from dataclasses import dataclass

from uploadguard.exceptions import TransportError, TransportTimeoutError
from uploadguard.models import ErrorKind, HttpResponse

RATE_LIMIT_STATUSES = frozenset({429})
SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})
CLIENT_ERROR_STATUSES = frozenset({400, 401, 403, 404, 409})


@dataclass(frozen=True)
class Classification:
    """Result of classifying one attempt.

    Attributes:
        kind: The error kind, or ``None`` when the exchange succeeded.
        retry_after: Server-suggested wait in seconds (429 responses only).
    """

    kind: ErrorKind | None
    retry_after: float | None = None

    @property
    def is_success(self) -> bool:
        return self.kind is None


SUCCESS = Classification(kind=None)


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Parse a ``Retry-After`` header expressed in seconds.

    Returns:
        Non-negative seconds, or ``None`` when absent, negative or not a
        number (HTTP-date values are not supported).
    """
    if not headers:
        return None
    raw = None
    for name, value in headers.items():
        if name.lower() == "retry-after":
            raw = value
            break
    if raw is None:
        return None
    try:
        seconds = float(str(raw).strip())
    except ValueError:
        return None
    if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
        return None
    return seconds


def classify(result: HttpResponse | BaseException) -> Classification:
    """Classify the raw result of one attempt.

    Priority: timeout, other transport failure, 429, 5xx gateway family,
    known client errors, then ``UNKNOWN`` for everything else.
    """
    if isinstance(result, BaseException):
        return _classify_exception(result)
    return _classify_response(result)


def _classify_exception(exc: BaseException) -> Classification:
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, TransportTimeoutError)):
        return Classification(ErrorKind.TIMEOUT)
    if isinstance(exc, (TransportError, OSError)):
        return Classification(ErrorKind.NETWORK)
    return Classification(ErrorKind.UNKNOWN)


def _classify_response(response: HttpResponse) -> Classification:
    status = response.status_code
    if 200 <= status < 300:
        return SUCCESS
    if status in RATE_LIMIT_STATUSES:
        return Classification(
            ErrorKind.RATE_LIMITED, retry_after=parse_retry_after(response.headers)
        )
    if status in SERVER_ERROR_STATUSES:
        return Classification(ErrorKind.SERVER_ERROR)
    if status in CLIENT_ERROR_STATUSES:
        return Classification(ErrorKind.CLIENT_ERROR)
    return Classification(ErrorKind.UNKNOWN)
