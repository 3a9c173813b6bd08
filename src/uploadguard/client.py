"""Resilient API client: one transport, one rate limit state, one governor.

Usage::

    config = ClientConfig.from_environment()
    async with ResilientClient(config) as client:
        result = await client.upload_file(FileSource.from_path("report.pdf"))
        if isinstance(result, UploadSuccess):
            await client.wait_for_file_ready(result.upload_id)
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from uploadguard.config import ClientConfig, FileUploadOptions
from uploadguard.exceptions import (
    OperationTimeoutError,
    UnknownError,
    ValidationError,
    error_for_unsuccessful,
)
from uploadguard.models import (
    HttpResponse,
    Success,
    UploadFailure,
    UploadMode,
    UploadProgressStatus,
    UploadResult,
    UploadSuccess,
)
from uploadguard.resilience.governor import RetryGovernor, SleepFunc
from uploadguard.resilience.rate_limit import RateLimitTracker
from uploadguard.transport import HttpxTransport, RequestBody, Transport
from uploadguard.upload.api import FileUploadApi
from uploadguard.upload.orchestrator import UploadOrchestrator
from uploadguard.upload.progress import ProgressAggregator
from uploadguard.upload.source import (
    FileSource,
    detect_content_type,
    ensure_file_extension,
    validate_external_url,
    validate_filename,
)

logger = logging.getLogger(__name__)

# Upload statuses reported by GET /file_uploads/{id}
STATUS_UPLOADED = "uploaded"
STATUS_PENDING = "pending"
FAILED_STATUSES = frozenset({"failed", "expired"})


class ResilientClient:
    """Facade over the transport, retry governor and upload pipeline.

    Args:
        config: Connection settings and default retry policy.
        transport: Transport to use; an :class:`HttpxTransport` is created
            (and owned) when omitted.
        sleep: Awaitable sleep for every wait (injectable for tests).
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport(
            timeout=config.request_timeout,
            connect_timeout=config.connect_timeout,
        )
        self._sleep = sleep
        self._rate_limits = RateLimitTracker()
        self._governor = RetryGovernor(
            config.retry_config, self._rate_limits, sleep=sleep, rng=rng
        )
        self._api = FileUploadApi(self._transport, config)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def governor(self) -> RetryGovernor:
        return self._governor

    @property
    def rate_limits(self) -> RateLimitTracker:
        return self._rate_limits

    @property
    def api(self) -> FileUploadApi:
        return self._api

    # ------------------------------------------------------------------
    # Generic requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: RequestBody = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        """Perform one logical API call with retries.

        Args:
            method: HTTP method.
            path: Path relative to ``config.base_url``.
            headers: Extra headers, merged over the defaults.
            body: JSON payload, raw bytes or a multipart form.
            timeout: Per-attempt deadline in seconds.

        Returns:
            The successful response.

        Raises:
            UploadGuardError: Typed error once retries are exhausted or the
                failure is not retryable.
        """
        merged = self._config.default_headers()
        if headers:
            merged.update(headers)
        url = self._api.url(path)
        return await self._governor.call(
            lambda: self._transport.send(method, url, headers=merged, body=body),
            operation=f"{method} {path}",
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def prepare_upload(
        self,
        source: FileSource,
        options: FileUploadOptions | None = None,
    ) -> UploadOrchestrator:
        """Build the orchestrator for *source* without starting it.

        Keep the returned object to call ``cancel()`` while
        ``run(source)`` is pending.
        """
        return UploadOrchestrator(
            self._api,
            self._governor,
            options or FileUploadOptions(),
            self._config.upload_limits,
        )

    async def upload_file(
        self,
        source: FileSource,
        options: FileUploadOptions | None = None,
    ) -> UploadResult:
        """Upload *source*, choosing single-part or multi-part transfer."""
        orchestrator = self.prepare_upload(source, options)
        return await orchestrator.run(source)

    async def import_external_file(
        self,
        filename: str,
        external_url: str,
        content_type: str | None = None,
        options: FileUploadOptions | None = None,
    ) -> UploadResult:
        """Ask the API to fetch a file from a public HTTPS URL.

        The import runs server-side; use :meth:`wait_for_file_ready` to
        wait for it to finish.
        """
        options = options or FileUploadOptions()
        content_type = content_type or options.content_type or detect_content_type(filename)
        progress = ProgressAggregator(filename, 0, observer=options.progress_callback)

        try:
            validate_filename(filename)
            validate_external_url(external_url)
        except ValidationError as exc:
            progress.set_status(UploadProgressStatus.FAILED, exc)
            logger.error("External import of %s rejected: %s", filename, exc)
            return UploadFailure(None, filename, exc, progress.snapshot())

        filename = ensure_file_extension(filename, content_type)
        progress.set_status(UploadProgressStatus.STARTING)
        started_at = time.monotonic()

        outcome = await self._governor.with_config(options.retry_config).execute(
            lambda: self._api.create_file_upload(
                UploadMode.EXTERNAL_URL,
                filename,
                content_type,
                external_url=external_url,
            ),
            operation=f"import {filename} from URL",
            timeout=options.timeout_seconds,
        )
        if not isinstance(outcome, Success):
            error = error_for_unsuccessful(outcome, "import external file")
            progress.set_status(UploadProgressStatus.FAILED, error)
            logger.error("External import of %s failed: %s", filename, error)
            return UploadFailure(None, filename, error, progress.snapshot())
        body = _json_or_empty(outcome.response)
        upload_id = str(body.get("id") or "")
        if not upload_id:
            error = UnknownError("Import response carried no upload id")
            progress.set_status(UploadProgressStatus.FAILED, error)
            return UploadFailure(None, filename, error, progress.snapshot())

        progress.set_upload_id(upload_id)
        progress.set_status(UploadProgressStatus.COMPLETED)
        logger.info("Started external import %s for %s", upload_id, filename)
        return UploadSuccess(
            upload_id=upload_id,
            filename=filename,
            elapsed=time.monotonic() - started_at,
            attempts=outcome.attempts,
            payload=body,
        )

    async def wait_for_file_ready(
        self,
        upload_id: str,
        max_wait: float = 10.0,
        check_interval: float = 0.5,
    ) -> dict[str, Any]:
        """Poll the upload until its status is ``uploaded``.

        Returns:
            The final upload object.

        Raises:
            UnknownError: The API reported the upload as failed or expired.
            OperationTimeoutError: Still pending after *max_wait* seconds.
            UploadGuardError: A status request failed terminally.
        """
        if max_wait <= 0 or check_interval <= 0:
            raise ValueError("max_wait and check_interval must be positive")

        max_polls = math.ceil(max_wait / check_interval) + 1

        def still_pending(body: dict[str, Any]) -> bool:
            return body.get("status") != STATUS_UPLOADED

        def timed_out(retry_state: RetryCallState) -> dict[str, Any]:
            raise OperationTimeoutError(f"waiting for upload {upload_id}")

        async def poll() -> dict[str, Any]:
            response = await self._governor.call(
                lambda: self._api.retrieve_file_upload(upload_id),
                operation=f"retrieve upload {upload_id}",
            )
            body = _json_or_empty(response)
            status = body.get("status", STATUS_PENDING)
            if status in FAILED_STATUSES:
                raise UnknownError(f"Upload {upload_id} ended with status {status!r}")
            logger.debug("Upload %s status: %s", upload_id, status)
            return body

        retrying = AsyncRetrying(
            stop=stop_after_delay(max_wait) | stop_after_attempt(max_polls),
            wait=wait_fixed(check_interval),
            retry=retry_if_result(still_pending),
            retry_error_callback=timed_out,
            sleep=self._sleep,
        )
        return await retrying(poll)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()


def _json_or_empty(response: HttpResponse) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
