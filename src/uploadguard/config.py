"""Configuration values for the client, retry policy and uploads."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field

import keyring

from uploadguard.models import FileUploadProgress

SERVICE_NAME = "uploadguard"
KEY_NAME = "api_token"
TOKEN_ENV_VAR = "NOTION_API_TOKEN"

MIB = 1024 * 1024

ProgressCallback = Callable[[FileUploadProgress], None]


def get_api_token() -> str:
    """Get the API token: system keyring first, then the environment.

    Returns:
        API token string.

    Raises:
        RuntimeError: If no token is found anywhere, with setup instructions.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token

    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        return token

    raise RuntimeError(
        "API token not found.\n"
        f"Store it with: keyring set {SERVICE_NAME} {KEY_NAME}\n"
        f"Or: export {TOKEN_ENV_VAR}=your-token"
    )


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryConfig:
    """Retry and backoff settings for one client or operation.

    Attributes:
        max_retries: Retries after the first attempt (total attempts is
            ``max_retries + 1``).
        base_delay: Seconds before the first retry; doubles per retry.
        max_delay: Upper bound in seconds for any single wait.
        jitter_factor: Relative spread applied to computed delays, in [0, 1).
        respect_server_hint: Use a server ``Retry-After`` value as the wait
            instead of the exponential schedule.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_factor: float = 0.1
    respect_server_hint: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not 0.0 <= self.jitter_factor < 1.0:
            raise ValueError("jitter_factor must be in [0, 1)")

    @classmethod
    def conservative(cls) -> RetryConfig:
        """Longer waits, fewer retries. Suits background jobs."""
        return cls(max_retries=2, base_delay=2.0, max_delay=60.0, jitter_factor=0.2)

    @classmethod
    def balanced(cls) -> RetryConfig:
        return cls()

    @classmethod
    def aggressive(cls) -> RetryConfig:
        """Short waits, more retries. Suits interactive callers."""
        return cls(max_retries=5, base_delay=0.5, max_delay=15.0, jitter_factor=0.05)


# ---------------------------------------------------------------------------
# Upload settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadLimits:
    """Size constraints imposed by the upload API."""

    min_part_size: int = 5 * MIB
    max_parts: int = 1000
    multipart_threshold: int = 20 * MIB
    max_file_size: int = 500 * MIB

    def __post_init__(self) -> None:
        if self.min_part_size <= 0:
            raise ValueError("min_part_size must be positive")
        if self.max_parts < 1:
            raise ValueError("max_parts must be at least 1")
        if self.multipart_threshold <= 0:
            raise ValueError("multipart_threshold must be positive")


@dataclass(frozen=True)
class FileUploadOptions:
    """Per-upload options.

    ``progress_callback`` runs synchronously on the part-completion path and
    must return quickly.
    """

    content_type: str | None = None
    progress_callback: ProgressCallback | None = None
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: float | None = 300.0
    enable_concurrent_parts: bool = True
    max_concurrent_parts: int = 4
    validate_before_upload: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrent_parts < 1:
            raise ValueError("max_concurrent_parts must be at least 1")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @property
    def part_concurrency(self) -> int:
        """Number of parts allowed in flight at once."""
        return self.max_concurrent_parts if self.enable_concurrent_parts else 1


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for :class:`~uploadguard.client.ResilientClient`."""

    token: str
    base_url: str = "https://api.notion.com/v1"
    api_version: str = "2022-06-28"
    user_agent: str = "uploadguard/0.1.0"
    request_timeout: float = 30.0
    connect_timeout: float = 10.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    upload_limits: UploadLimits = field(default_factory=UploadLimits)

    def __post_init__(self) -> None:
        if not self.token.strip():
            raise ValueError("API token cannot be blank")
        if not self.base_url.strip():
            raise ValueError("Base URL cannot be blank")
        if not self.api_version.strip():
            raise ValueError("API version cannot be blank")

    @classmethod
    def from_environment(cls, **overrides: object) -> ClientConfig:
        """Build a config using :func:`get_api_token` for the token."""
        return cls(token=get_api_token(), **overrides)  # type: ignore[arg-type]

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.api_version,
            "User-Agent": self.user_agent,
        }
