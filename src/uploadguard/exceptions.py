"""Error taxonomy surfaced to callers of the resilience layer.

Every error carries an :class:`~uploadguard.models.ErrorKind`.  Transient
kinds are retried by the governor before they ever reach a caller; by the
time one of these is raised the retry budget is spent.
"""

from __future__ import annotations

from uploadguard.models import AttemptOutcome, ErrorKind, Fatal


class UploadGuardError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    @property
    def is_transient(self) -> bool:
        return self.kind.is_transient


# ---------------------------------------------------------------------------
# Transport-level failures (raised by Transport implementations)
# ---------------------------------------------------------------------------


class TransportError(UploadGuardError):
    """The exchange failed before an HTTP response was received."""

    kind = ErrorKind.NETWORK


class TransportTimeoutError(TransportError):
    """The transport gave up waiting for the server."""

    kind = ErrorKind.TIMEOUT


# ---------------------------------------------------------------------------
# Final taxonomy
# ---------------------------------------------------------------------------


class NetworkError(UploadGuardError):
    """Connection-level failure persisted through all retries."""

    kind = ErrorKind.NETWORK


class RateLimitError(UploadGuardError):
    """The server kept answering 429."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: float | None = None, message: str | None = None) -> None:
        self.retry_after = retry_after
        if message is None:
            message = "Rate limited"
            if retry_after is not None:
                message += f" (retry after {retry_after:g}s)"
        super().__init__(message)


class ServerError(UploadGuardError):
    """The server answered with a 5xx status."""

    kind = ErrorKind.SERVER_ERROR

    def __init__(self, status: int, details: str | None = None) -> None:
        self.status = status
        self.details = details
        message = f"Server error (HTTP {status})"
        if details:
            message += f": {details}"
        super().__init__(message)


class ClientError(UploadGuardError):
    """The request was rejected as malformed or unauthorized (never retried)."""

    kind = ErrorKind.CLIENT_ERROR

    def __init__(self, status: int, details: str | None = None) -> None:
        self.status = status
        self.details = details
        message = f"Client error (HTTP {status})"
        if details:
            message += f": {details}"
        super().__init__(message)


class ValidationError(UploadGuardError):
    """Local pre-flight validation failed; nothing was sent."""

    kind = ErrorKind.VALIDATION

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Validation failed: {reason}")


class OperationTimeoutError(UploadGuardError):
    """An operation exceeded its deadline on every attempt."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Timeout during {operation}")


class PartUploadError(UploadGuardError):
    """One part of a multi-part upload failed terminally."""

    def __init__(self, part_number: int, cause: UploadGuardError) -> None:
        self.part_number = part_number
        self.cause = cause
        super().__init__(f"Failed to upload part {part_number}: {cause}")
        self.__cause__ = cause

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return self.cause.kind


class CancellationError(UploadGuardError):
    """The caller cancelled the upload."""

    kind = ErrorKind.CANCELLED

    def __init__(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        super().__init__(f"Upload cancelled: {reason}")


class UnknownError(UploadGuardError):
    """A failure that fits no other kind."""

    kind = ErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Outcome -> exception mapping
# ---------------------------------------------------------------------------


def error_for_outcome(outcome: Fatal, operation: str = "request") -> UploadGuardError:
    """Build the typed error describing a terminal governor outcome.

    Args:
        outcome: The :class:`~uploadguard.models.Fatal` returned by the governor.
        operation: Human-readable name of the call, used in messages.

    Returns:
        An :class:`UploadGuardError` subclass matching ``outcome.kind``,
        chained to the underlying exception when there was one.
    """
    kind = outcome.kind
    status = outcome.response.status_code if outcome.response is not None else None
    details = outcome.response.text[:500] if outcome.response is not None else None

    error: UploadGuardError
    if kind == ErrorKind.NETWORK:
        error = NetworkError(f"Network error during {operation}: {outcome.error}")
    elif kind == ErrorKind.RATE_LIMITED:
        error = RateLimitError(outcome.retry_after)
    elif kind == ErrorKind.SERVER_ERROR:
        error = ServerError(status or 500, details)
    elif kind == ErrorKind.CLIENT_ERROR:
        error = ClientError(status or 400, details)
    elif kind == ErrorKind.TIMEOUT:
        error = OperationTimeoutError(operation)
    elif kind == ErrorKind.UNKNOWN:
        if status is not None:
            error = UnknownError(f"Unexpected HTTP {status} during {operation}")
        else:
            error = UnknownError(f"Unexpected error during {operation}: {outcome.error!r}")
    elif kind == ErrorKind.VALIDATION:
        error = ValidationError(str(outcome.error))
    elif kind == ErrorKind.CANCELLED:
        error = CancellationError(str(outcome.error or "cancelled"))
    else:
        raise AssertionError(f"Unhandled error kind: {kind!r}")

    if outcome.error is not None:
        error.__cause__ = outcome.error
    return error


def error_for_unsuccessful(
    outcome: AttemptOutcome, operation: str = "request"
) -> UploadGuardError:
    """Typed error for any outcome that is not a ``Success``.

    A ``Fatal`` maps through :func:`error_for_outcome`; anything else
    (a ``Retryable`` that escaped the retry loop) becomes ``UnknownError``.
    """
    if isinstance(outcome, Fatal):
        return error_for_outcome(outcome, operation)
    return UnknownError(f"{operation} ended without a terminal outcome: {outcome!r}")
