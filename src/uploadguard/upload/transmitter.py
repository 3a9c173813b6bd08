"""Sends one part of a multi-part upload with its own retry budget."""

from __future__ import annotations

import logging

from uploadguard.models import AttemptOutcome, Success
from uploadguard.resilience.governor import RetryGovernor
from uploadguard.upload.api import FileUploadApi
from uploadguard.upload.progress import ProgressAggregator

logger = logging.getLogger(__name__)


class PartTransmitter:
    """Transmits individual parts through the retry governor.

    Every :meth:`send_part` call is a separate governor call, so a
    transient failure on one part is retried for that part alone and never
    forces parts that already went through to be re-sent.
    """

    def __init__(
        self,
        api: FileUploadApi,
        governor: RetryGovernor,
        progress: ProgressAggregator | None = None,
        content_type: str | None = None,
        timeout: float | None = None,
        send_part_number: bool = True,
    ) -> None:
        self._api = api
        self._governor = governor
        self._progress = progress
        self._content_type = content_type
        self._timeout = timeout
        # Single-part uploads send the whole payload without a part_number field
        self._send_part_number = send_part_number

    async def send_part(
        self, upload_id: str, part_number: int, data: bytes
    ) -> AttemptOutcome:
        """Send *data* as 1-indexed *part_number* of upload *upload_id*.

        Returns:
            The governor's terminal outcome.  On success the part's byte
            count has been reported to the progress aggregator.
        """
        outcome = await self._governor.execute(
            lambda: self._api.send_file_upload(
                upload_id,
                data,
                content_type=self._content_type,
                part_number=part_number if self._send_part_number else None,
            ),
            operation=f"send part {part_number} of {upload_id}",
            timeout=self._timeout,
        )
        if isinstance(outcome, Success):
            logger.debug(
                "Part %d of %s acknowledged (%d bytes, %d attempt(s))",
                part_number,
                upload_id,
                len(data),
                outcome.attempts,
            )
            if self._progress is not None:
                self._progress.record_part_complete(part_number, len(data))
        return outcome
