"""Resilient request execution and chunked file uploads for a rate-limited REST API."""

__version__ = "0.1.0"

from uploadguard.client import ResilientClient
from uploadguard.config import (
    ClientConfig,
    FileUploadOptions,
    RetryConfig,
    UploadLimits,
    get_api_token,
)
from uploadguard.exceptions import (
    CancellationError,
    ClientError,
    NetworkError,
    OperationTimeoutError,
    PartUploadError,
    RateLimitError,
    ServerError,
    UnknownError,
    UploadGuardError,
    ValidationError,
)
from uploadguard.models import (
    ErrorKind,
    Fatal,
    FileUploadProgress,
    HttpResponse,
    Retryable,
    Success,
    UploadFailure,
    UploadMode,
    UploadPlan,
    UploadProgressStatus,
    UploadSuccess,
)
from uploadguard.upload.source import FileSource

__all__ = [
    "CancellationError",
    "ClientConfig",
    "ClientError",
    "ErrorKind",
    "Fatal",
    "FileSource",
    "FileUploadOptions",
    "FileUploadProgress",
    "HttpResponse",
    "NetworkError",
    "OperationTimeoutError",
    "PartUploadError",
    "RateLimitError",
    "ResilientClient",
    "RetryConfig",
    "Retryable",
    "ServerError",
    "Success",
    "UnknownError",
    "UploadFailure",
    "UploadGuardError",
    "UploadLimits",
    "UploadMode",
    "UploadPlan",
    "UploadProgressStatus",
    "UploadSuccess",
    "ValidationError",
    "__version__",
    "get_api_token",
]
