"""Upload orchestrator: plan, initiate, send parts, complete.

Composes the upload primitives (planner, API endpoints, retry governor,
part transmitter, progress aggregator, lifecycle FSM) into one upload run
that:

* Validates the source and picks single-part or multi-part transfer
* Creates the upload through the governor
* Sends parts concurrently, bounded by an ``asyncio.Semaphore``
* Finalizes multi-part uploads once every part is acknowledged
* Stops scheduling parts on the first terminal failure or on
  :meth:`UploadOrchestrator.cancel`, letting dispatched parts settle

Failures come back as :class:`~uploadguard.models.UploadFailure` values
rather than exceptions.  Orphaned server-side uploads are left to the
API's own expiry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from uploadguard.config import FileUploadOptions, UploadLimits
from uploadguard.exceptions import (
    CancellationError,
    PartUploadError,
    UnknownError,
    UploadGuardError,
    ValidationError,
    error_for_unsuccessful,
)
from uploadguard.models import (
    AttemptOutcome,
    Fatal,
    HttpResponse,
    Success,
    UploadFailure,
    UploadMode,
    UploadPlan,
    UploadProgressStatus,
    UploadResult,
    UploadSession,
    UploadSuccess,
)
from uploadguard.resilience.governor import RetryGovernor
from uploadguard.upload.api import FileUploadApi
from uploadguard.upload.fsm import UploadLifecycleSM
from uploadguard.upload.planner import plan_upload
from uploadguard.upload.progress import ProgressAggregator
from uploadguard.upload.source import (
    FileSource,
    detect_content_type,
    validate_file_size,
    validate_filename,
)
from uploadguard.upload.transmitter import PartTransmitter

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """Drives one upload through its lifecycle.

    Usage::

        orchestrator = UploadOrchestrator(api, governor, FileUploadOptions())
        result = await orchestrator.run(FileSource.from_path("video.mp4"))

    An instance runs once.  Call :meth:`cancel` from another task to stop
    it; the pending :meth:`run` then returns an ``UploadFailure`` carrying a
    :class:`~uploadguard.exceptions.CancellationError`.

    Args:
        api: Upload endpoint wrapper.
        governor: Retry governor; its rate limit state is shared, its
            retry budget is replaced by ``options.retry_config``.
        options: Per-upload options.
        limits: API size constraints.
    """

    def __init__(
        self,
        api: FileUploadApi,
        governor: RetryGovernor,
        options: FileUploadOptions | None = None,
        limits: UploadLimits | None = None,
    ) -> None:
        self._api = api
        self._options = options or FileUploadOptions()
        self._limits = limits or UploadLimits()
        self._governor = governor.with_config(self._options.retry_config)

        self._fsm = UploadLifecycleSM()
        self._cancel_event = asyncio.Event()
        self._cancel_reason = "cancelled by caller"
        self._started = False

        self._session: UploadSession | None = None
        self._progress: ProgressAggregator | None = None
        self._attempts = 0

    # ------------------------------------------------------------------
    # Inspection and control
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        """Current lifecycle state name (``planning`` ... ``completed``)."""
        return self._fsm.state_name

    @property
    def session(self) -> UploadSession | None:
        return self._session

    @property
    def progress(self) -> ProgressAggregator | None:
        return self._progress

    @property
    def _tracker(self) -> ProgressAggregator:
        if self._progress is None:
            raise RuntimeError("Upload progress requested before run()")
        return self._progress

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Stop scheduling parts; dispatched parts finish on their own."""
        if self._fsm.is_terminal or self._cancel_event.is_set():
            return
        self._cancel_reason = reason
        self._cancel_event.set()
        logger.warning("Upload cancellation requested: %s", reason)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self, source: FileSource) -> UploadResult:
        """Upload *source* and report how it ended.

        1. Planning: validate and plan
        2. Initiating: create the upload
        3. Transmitting: send the payload or its parts
        4. Completing: finalize (multi-part only)

        Returns:
            ``UploadSuccess`` once the API finalized the upload, otherwise
            ``UploadFailure`` with the first terminal error and the progress
            reached.
        """
        if self._started:
            raise RuntimeError("UploadOrchestrator.run() may only be called once")
        self._started = True
        started_at = time.monotonic()

        progress = ProgressAggregator(
            source.filename,
            source.size_bytes,
            observer=self._options.progress_callback,
        )
        self._progress = progress

        # Step 1: Planning
        try:
            plan = self._plan(source)
        except ValidationError as exc:
            return self._fail(source, exc)

        multi = plan.mode == UploadMode.MULTI_PART
        content_type = self._options.content_type or detect_content_type(source.filename)
        progress.set_total_parts(plan.part_count if multi else None)
        progress.set_status(UploadProgressStatus.STARTING)
        self._fsm.planned()
        logger.info(
            "Planned %s upload of %s (%d bytes, %d part(s))",
            plan.mode.value,
            source.filename,
            plan.total_bytes,
            plan.part_count,
        )

        try:
            # Step 2: Initiating
            outcome = await self._governor.execute(
                lambda: self._api.create_file_upload(
                    plan.mode,
                    source.filename,
                    content_type,
                    number_of_parts=plan.part_count if multi else None,
                ),
                operation=f"create upload for {source.filename}",
                timeout=self._options.timeout_seconds,
            )
            self._count_attempts(outcome)
            if not isinstance(outcome, Success):
                return self._fail(source, error_for_unsuccessful(outcome, "create upload"))

            upload_id = _upload_id_from(outcome.response)
            if upload_id is None:
                return self._fail(
                    source, UnknownError("Create upload response carried no upload id")
                )
            session = UploadSession(upload_id=upload_id, plan=plan)
            self._session = session
            self._fsm.session = session
            progress.set_upload_id(upload_id)
            self._fsm.initiated()
            progress.set_status(UploadProgressStatus.UPLOADING)
            logger.info("Created upload %s for %s", upload_id, source.filename)

            # Step 3: Transmitting
            transmitter = PartTransmitter(
                self._api,
                self._governor,
                progress,
                content_type=content_type,
                timeout=self._options.timeout_seconds,
                send_part_number=multi,
            )
            failure, last_response = await self._transmit(source, session, transmitter)
            if failure is not None:
                return self._fail(source, failure)

            # The single send finalizes the upload server-side
            if not multi and session.is_fully_acknowledged:
                self._fsm.single_part_sent()
                return self._succeed(source, started_at, last_response)
            if self._cancel_event.is_set():
                return self._cancelled(source)

            # Step 4: Completing
            self._fsm.parts_sent()
            progress.set_status(UploadProgressStatus.COMPLETING)
            if self._cancel_event.is_set():
                return self._cancelled(source)

            outcome = await self._governor.execute(
                lambda: self._api.complete_file_upload(upload_id),
                operation=f"complete upload {upload_id}",
                timeout=self._options.timeout_seconds,
            )
            self._count_attempts(outcome)
            if not isinstance(outcome, Success):
                return self._fail(source, error_for_unsuccessful(outcome, "complete upload"))

            self._fsm.finalized()
            return self._succeed(source, started_at, outcome.response)

        except asyncio.CancelledError:
            logger.warning("Upload of %s interrupted", source.filename)
            if self._fsm.transmitting.is_active or self._fsm.completing.is_active:
                self._fsm.cancel()
            progress.set_status(UploadProgressStatus.CANCELLED)
            raise

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _plan(self, source: FileSource) -> UploadPlan:
        if self._options.validate_before_upload:
            validate_filename(source.filename)
            validate_file_size(source.size_bytes, self._limits.max_file_size)
        return plan_upload(
            source.size_bytes,
            self._limits.min_part_size,
            max_parts=self._limits.max_parts,
            multipart_threshold=self._limits.multipart_threshold,
        )

    async def _transmit(
        self,
        source: FileSource,
        session: UploadSession,
        transmitter: PartTransmitter,
    ) -> tuple[UploadGuardError | None, HttpResponse | None]:
        """Send every part, at most ``part_concurrency`` at a time.

        Returns:
            ``(first_failure, last_response)``; ``first_failure`` is
            ``None`` when every dispatched part was acknowledged.
        """
        progress = self._tracker
        semaphore = asyncio.Semaphore(self._options.part_concurrency)
        failures: list[UploadGuardError] = []
        responses: list[HttpResponse] = []
        tasks: list[asyncio.Task[None]] = []

        async def send(part_number: int, start: int, end: int) -> None:
            try:
                data = await source.read_range(start, end)
                outcome = await transmitter.send_part(session.upload_id, part_number, data)
                self._count_attempts(outcome)
                if isinstance(outcome, Success):
                    session.mark_part_completed(part_number)
                    responses.append(outcome.response)
                else:
                    cause = error_for_unsuccessful(outcome, f"send part {part_number}")
                    failures.append(PartUploadError(part_number, cause))
            except UploadGuardError as exc:
                failures.append(PartUploadError(part_number, exc))
            except Exception as exc:
                logger.exception("Part %d of %s raised", part_number, source.filename)
                cause = UnknownError(f"Part {part_number} failed: {exc!r}")
                cause.__cause__ = exc
                failures.append(PartUploadError(part_number, cause))
            finally:
                semaphore.release()

        for part_number, start, end in session.plan.part_ranges():
            if self._should_stop(failures):
                break
            await semaphore.acquire()
            if self._should_stop(failures):
                semaphore.release()
                break
            progress.record_part_scheduled(part_number)
            tasks.append(asyncio.create_task(send(part_number, start, end)))

        if tasks:
            await asyncio.gather(*tasks)

        if failures:
            return failures[0], None
        if not self._cancel_event.is_set() and not session.is_fully_acknowledged:
            return (
                UnknownError(f"Parts never acknowledged: {session.missing_parts()}"),
                None,
            )
        return None, responses[-1] if responses else None

    def _should_stop(self, failures: list[UploadGuardError]) -> bool:
        return bool(failures) or self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _succeed(
        self,
        source: FileSource,
        started_at: float,
        response: HttpResponse | None,
    ) -> UploadSuccess:
        if self._session is None:
            raise RuntimeError("Upload finished without a session")
        self._tracker.set_status(UploadProgressStatus.COMPLETED)
        elapsed = time.monotonic() - started_at
        logger.info(
            "Upload %s of %s completed in %.2fs (%d attempt(s))",
            self._session.upload_id,
            source.filename,
            elapsed,
            self._attempts,
        )
        return UploadSuccess(
            upload_id=self._session.upload_id,
            filename=source.filename,
            elapsed=elapsed,
            attempts=self._attempts,
            payload=_json_or_none(response),
        )

    def _fail(self, source: FileSource, error: UploadGuardError) -> UploadFailure:
        progress = self._tracker
        if not self._fsm.is_terminal:
            self._fsm.fail()
        progress.set_status(UploadProgressStatus.FAILED, error)
        upload_id = self._session.upload_id if self._session else None
        logger.error(
            "Upload of %s failed (%s): %s", source.filename, error.kind.value, error
        )
        return UploadFailure(
            upload_id=upload_id,
            filename=source.filename,
            error=error,
            partial_progress=progress.snapshot(),
        )

    def _cancelled(self, source: FileSource) -> UploadFailure:
        progress = self._tracker
        error = CancellationError(self._cancel_reason)
        self._fsm.cancel()
        progress.set_status(UploadProgressStatus.CANCELLED, error)
        logger.warning("Upload of %s cancelled: %s", source.filename, self._cancel_reason)
        return UploadFailure(
            upload_id=self._session.upload_id if self._session else None,
            filename=source.filename,
            error=error,
            partial_progress=progress.snapshot(),
        )

    def _count_attempts(self, outcome: AttemptOutcome) -> None:
        if isinstance(outcome, (Success, Fatal)):
            self._attempts += outcome.attempts


def _upload_id_from(response: HttpResponse) -> str | None:
    body = _json_or_none(response)
    if isinstance(body, dict) and body.get("id"):
        return str(body["id"])
    return None


def _json_or_none(response: HttpResponse | None) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return None
