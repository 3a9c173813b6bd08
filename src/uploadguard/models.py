"""Data models and enums for the resilience layer and upload pipeline."""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from uploadguard.exceptions import UploadGuardError


class ErrorKind(str, Enum):
    """Classification of a failed exchange or locally raised error."""

    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"
    # Local kinds, never produced by the classifier
    VALIDATION = "validation"
    CANCELLED = "cancelled"

    @property
    def is_transient(self) -> bool:
        """Whether failures of this kind are worth retrying."""
        return self in _TRANSIENT_KINDS


_TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_ERROR,
        ErrorKind.TIMEOUT,
    }
)


# ---------------------------------------------------------------------------
# HTTP exchange
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpResponse:
    """One completed HTTP exchange as seen by the resilience layer.

    Header names are stored lower-cased so lookups are case-insensitive.
    """

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        normalized = {str(k).lower(): str(v) for k, v in dict(self.headers).items()}
        object.__setattr__(self, "headers", normalized)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())

    def json(self) -> Any:
        """Decode the body as JSON (``None`` for an empty body)."""
        if not self.body:
            return None
        return json.loads(self.body)


# ---------------------------------------------------------------------------
# Attempt outcomes (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    """The exchange succeeded; ``attempts`` counts every try including this one."""

    response: HttpResponse
    attempts: int = 1


@dataclass(frozen=True)
class Retryable:
    """A transient failure observed between attempts."""

    kind: ErrorKind
    retry_after: float | None = None
    response: HttpResponse | None = None
    error: BaseException | None = None


@dataclass(frozen=True)
class Fatal:
    """A terminal failure: the governor will not retry it further."""

    kind: ErrorKind
    attempts: int = 1
    retry_after: float | None = None
    response: HttpResponse | None = None
    error: BaseException | None = None


AttemptOutcome = Union[Success, Retryable, Fatal]


# ---------------------------------------------------------------------------
# Upload planning and sessions
# ---------------------------------------------------------------------------


class UploadMode(str, Enum):
    """Transfer mode agreed with the API when an upload is created."""

    SINGLE_PART = "single_part"
    MULTI_PART = "multi_part"
    EXTERNAL_URL = "external_url"


@dataclass(frozen=True)
class UploadPlan:
    """How a payload of ``total_bytes`` is split into parts.

    Every part is ``part_size`` bytes except possibly the last, which holds
    the remainder.
    """

    total_bytes: int
    mode: UploadMode
    part_size: int
    part_count: int

    def __post_init__(self) -> None:
        if self.part_count < 1:
            raise ValueError("part_count must be at least 1")
        if not (
            self.part_size * (self.part_count - 1)
            < self.total_bytes
            <= self.part_size * self.part_count
        ):
            raise ValueError(
                f"part_size={self.part_size} x part_count={self.part_count} "
                f"does not cover total_bytes={self.total_bytes}"
            )

    @property
    def last_part_size(self) -> int:
        return self.total_bytes - self.part_size * (self.part_count - 1)

    def part_length(self, part_number: int) -> int:
        """Byte length of the 1-indexed *part_number*."""
        if not 1 <= part_number <= self.part_count:
            raise ValueError(f"part_number {part_number} outside 1..{self.part_count}")
        if part_number == self.part_count:
            return self.last_part_size
        return self.part_size

    def part_ranges(self) -> Iterator[tuple[int, int, int]]:
        """Yield ``(part_number, start, end)`` half-open byte ranges in order."""
        for part_number in range(1, self.part_count + 1):
            start = (part_number - 1) * self.part_size
            yield part_number, start, start + self.part_length(part_number)


@dataclass
class UploadSession:
    """Server-side upload handle plus the parts acknowledged so far."""

    upload_id: str
    plan: UploadPlan
    parts_completed: set[int] = field(default_factory=set)

    def mark_part_completed(self, part_number: int) -> None:
        if not 1 <= part_number <= self.plan.part_count:
            raise ValueError(
                f"part_number {part_number} outside 1..{self.plan.part_count}"
            )
        self.parts_completed.add(part_number)

    def missing_parts(self) -> list[int]:
        return [
            n for n in range(1, self.plan.part_count + 1)
            if n not in self.parts_completed
        ]

    @property
    def is_fully_acknowledged(self) -> bool:
        return self.parts_completed == set(range(1, self.plan.part_count + 1))


# ---------------------------------------------------------------------------
# Progress and results
# ---------------------------------------------------------------------------


class UploadProgressStatus(str, Enum):
    """Status reported to progress observers."""

    STARTING = "starting"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_IN_PROGRESS = frozenset(
    {
        UploadProgressStatus.STARTING,
        UploadProgressStatus.UPLOADING,
        UploadProgressStatus.COMPLETING,
    }
)


@dataclass(frozen=True)
class FileUploadProgress:
    """Point-in-time progress snapshot for one upload."""

    upload_id: str
    filename: str
    total_bytes: int
    uploaded_bytes: int
    status: UploadProgressStatus
    current_part: int | None = None
    total_parts: int | None = None
    error: BaseException | None = None

    @property
    def progress_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.uploaded_bytes / self.total_bytes * 100.0

    @property
    def is_completed(self) -> bool:
        return self.status == UploadProgressStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == UploadProgressStatus.FAILED

    @property
    def is_in_progress(self) -> bool:
        return self.status in _IN_PROGRESS


@dataclass(frozen=True)
class UploadSuccess:
    """The upload was finalized by the API."""

    upload_id: str
    filename: str
    elapsed: float
    attempts: int = 1
    payload: Any = None


@dataclass(frozen=True)
class UploadFailure:
    """The upload ended without being finalized."""

    upload_id: str | None
    filename: str
    error: UploadGuardError
    partial_progress: FileUploadProgress | None = None

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


UploadResult = Union[UploadSuccess, UploadFailure]
