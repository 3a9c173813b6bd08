"""End-to-end tests for UploadOrchestrator against a fake upload server.

Limits are byte-sized (10-byte parts, multi-part from 20 bytes) so every
scenario runs on a few dozen bytes.
"""

from __future__ import annotations

import asyncio
import random
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeTransport, FakeUploadServer
from uploadguard.config import ClientConfig, FileUploadOptions, RetryConfig
from uploadguard.exceptions import (
    CancellationError,
    PartUploadError,
    UnknownError,
    ValidationError,
)
from uploadguard.models import (
    ErrorKind,
    FileUploadProgress,
    Retryable,
    UploadFailure,
    UploadProgressStatus,
    UploadSuccess,
)
from uploadguard.resilience.governor import RetryGovernor
from uploadguard.resilience.rate_limit import RateLimitTracker
from uploadguard.upload.api import FileUploadApi
from uploadguard.upload.orchestrator import UploadOrchestrator
from uploadguard.upload.source import FileSource

PAYLOAD = bytes(range(45))


def _build(
    server: FakeUploadServer,
    client_config: ClientConfig,
    fake_sleep,
    **option_overrides,
) -> tuple[UploadOrchestrator, FakeTransport]:
    transport = FakeTransport(server)
    api = FileUploadApi(transport, client_config)
    governor = RetryGovernor(
        RetryConfig(), RateLimitTracker(), sleep=fake_sleep, rng=random.Random(0)
    )
    options = FileUploadOptions(
        retry_config=RetryConfig(max_retries=3, jitter_factor=0.0),
        **option_overrides,
    )
    return (
        UploadOrchestrator(api, governor, options, client_config.upload_limits),
        transport,
    )


# ======================================================================
# Successful uploads
# ======================================================================


class TestSuccessfulUploads:
    """Uploads that reach the completed state."""

    async def test_multi_part_with_transient_part_failures(self, client_config, fake_sleep):
        """Three of five parts fail once with 503; the upload still completes."""
        server = FakeUploadServer(transient_failures={2: 1, 3: 1, 4: 1})
        snapshots: list[FileUploadProgress] = []
        orchestrator, _ = _build(
            server, client_config, fake_sleep, progress_callback=snapshots.append
        )

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadSuccess)
        assert result.upload_id == "upload-1"
        assert orchestrator.state == "completed"
        assert server.assembled() == PAYLOAD
        assert server.complete_calls == 1
        assert server.part_attempts == {1: 1, 2: 2, 3: 2, 4: 2, 5: 1}
        assert len(fake_sleep.delays) == 3
        assert snapshots[-1].status == UploadProgressStatus.COMPLETED
        assert snapshots[-1].uploaded_bytes == len(PAYLOAD)
        # 1 create + 8 part sends + 1 complete
        assert result.attempts == 10

    async def test_create_payload_declares_parts(self, client_config, fake_sleep):
        server = FakeUploadServer()
        orchestrator, _ = _build(server, client_config, fake_sleep)

        await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert server.create_payloads == [
            {
                "mode": "multi_part",
                "filename": "video.mp4",
                "content_type": "video/mp4",
                "number_of_parts": 5,
            }
        ]

    async def test_single_part_skips_complete(self, client_config, fake_sleep):
        server = FakeUploadServer()
        orchestrator, transport = _build(server, client_config, fake_sleep)

        result = await orchestrator.run(FileSource.from_bytes("notes.txt", b"short text"))

        assert isinstance(result, UploadSuccess)
        assert orchestrator.state == "completed"
        assert server.complete_calls == 0
        assert server.received_parts == {1: b"short text"}
        send = [r for r in transport.requests if r.url.endswith("/send")][0]
        assert "part_number" not in send.body.fields
        assert server.create_payloads[0]["mode"] == "single_part"

    async def test_progress_is_monotonic(self, client_config, fake_sleep):
        server = FakeUploadServer(transient_failures={1: 2})
        snapshots: list[FileUploadProgress] = []
        orchestrator, _ = _build(
            server, client_config, fake_sleep, progress_callback=snapshots.append
        )

        await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        uploaded = [s.uploaded_bytes for s in snapshots]
        assert uploaded == sorted(uploaded)
        assert all(s.uploaded_bytes <= s.total_bytes for s in snapshots)

    async def test_part_concurrency_is_bounded(self, client_config, fake_sleep):
        server = FakeUploadServer()
        in_flight = 0
        peak = 0

        async def slow_handler(method, url, body):
            nonlocal in_flight, peak
            if url.endswith("/send"):
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
            return server(method, url, body)

        orchestrator, transport = _build(
            server, client_config, fake_sleep, max_concurrent_parts=2
        )
        transport._handler = slow_handler

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadSuccess)
        assert peak == 2

    async def test_sequential_when_concurrency_disabled(self, client_config, fake_sleep):
        order: list[int] = []
        server = FakeUploadServer()

        def recording_handler(method, url, body):
            if url.endswith("/send"):
                order.append(int(body.fields["part_number"]))
            return server(method, url, body)

        orchestrator, transport = _build(
            server, client_config, fake_sleep, enable_concurrent_parts=False
        )
        transport._handler = recording_handler

        await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert order == [1, 2, 3, 4, 5]


# ======================================================================
# Failed uploads
# ======================================================================


class TestFailedUploads:
    """Uploads that end in the failed state."""

    async def test_fatal_part_failure_stops_scheduling(self, client_config, fake_sleep):
        server = FakeUploadServer(fatal_parts={3})
        orchestrator, _ = _build(
            server, client_config, fake_sleep, enable_concurrent_parts=False
        )

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert isinstance(result.error, PartUploadError)
        assert result.error.part_number == 3
        assert result.kind == ErrorKind.CLIENT_ERROR
        assert orchestrator.state == "failed"
        assert set(server.received_parts) == {1, 2}
        assert server.complete_calls == 0
        assert result.partial_progress.uploaded_bytes == 20
        assert result.partial_progress.status == UploadProgressStatus.FAILED

    async def test_exhausted_part_retries_fail_upload(self, client_config, fake_sleep):
        server = FakeUploadServer(transient_failures={2: 10})
        orchestrator, _ = _build(
            server, client_config, fake_sleep, enable_concurrent_parts=False
        )

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert result.kind == ErrorKind.SERVER_ERROR
        assert server.part_attempts[2] == 4

    async def test_create_rejected(self, client_config, fake_sleep):
        server = FakeUploadServer(create_status=401)
        orchestrator, transport = _build(server, client_config, fake_sleep)

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert result.upload_id is None
        assert result.kind == ErrorKind.CLIENT_ERROR
        assert orchestrator.state == "failed"
        assert len(transport.requests) == 1

    async def test_invalid_filename_sends_nothing(self, client_config, fake_sleep):
        server = FakeUploadServer()
        orchestrator, transport = _build(server, client_config, fake_sleep)

        result = await orchestrator.run(FileSource.from_bytes(".hidden", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert isinstance(result.error, ValidationError)
        assert result.kind == ErrorKind.VALIDATION
        assert transport.requests == []
        assert orchestrator.state == "failed"

    async def test_oversized_file_rejected(self, client_config, fake_sleep):
        server = FakeUploadServer()
        orchestrator, transport = _build(server, client_config, fake_sleep)

        result = await orchestrator.run(FileSource.from_bytes("big.bin", bytes(20_000)))

        assert isinstance(result, UploadFailure)
        assert result.kind == ErrorKind.VALIDATION
        assert transport.requests == []

    async def test_run_is_one_shot(self, client_config, fake_sleep):
        orchestrator, _ = _build(FakeUploadServer(), client_config, fake_sleep)
        source = FileSource.from_bytes("notes.txt", b"short")
        await orchestrator.run(source)
        with pytest.raises(RuntimeError):
            await orchestrator.run(source)

    async def test_reader_error_becomes_part_failure(self, client_config, fake_sleep):
        """An unexpected exception from the source fails the upload cleanly."""

        def reader(start: int, end: int) -> bytes:
            if start >= 20:
                raise ValueError("I/O operation on closed file")
            return PAYLOAD[start:end]

        server = FakeUploadServer()
        orchestrator, _ = _build(
            server, client_config, fake_sleep, enable_concurrent_parts=False
        )

        result = await orchestrator.run(FileSource("video.mp4", len(PAYLOAD), reader))

        assert isinstance(result, UploadFailure)
        assert isinstance(result.error, PartUploadError)
        assert result.error.part_number == 3
        assert isinstance(result.error.cause, UnknownError)
        assert isinstance(result.error.cause.__cause__, ValueError)
        assert result.kind == ErrorKind.UNKNOWN
        assert orchestrator.state == "failed"
        assert result.partial_progress.status == UploadProgressStatus.FAILED
        assert set(server.received_parts) == {1, 2}

    async def test_reader_errors_on_concurrent_parts_all_settle(
        self, client_config, fake_sleep
    ):
        def reader(start: int, end: int) -> bytes:
            raise ValueError("stream closed")

        orchestrator, transport = _build(
            FakeUploadServer(), client_config, fake_sleep, max_concurrent_parts=4
        )

        result = await orchestrator.run(FileSource("video.mp4", len(PAYLOAD), reader))

        assert isinstance(result, UploadFailure)
        assert result.kind == ErrorKind.UNKNOWN
        assert orchestrator.state == "failed"
        assert [r for r in transport.requests if r.url.endswith("/send")] == []

    async def test_non_terminal_outcome_fails_upload(self, client_config, fake_sleep):
        """A governor outcome that is neither success nor fatal is a failure."""
        orchestrator, _ = _build(FakeUploadServer(), client_config, fake_sleep)

        with patch.object(
            RetryGovernor,
            "execute",
            AsyncMock(return_value=Retryable(ErrorKind.SERVER_ERROR)),
        ):
            result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert isinstance(result.error, UnknownError)
        assert orchestrator.state == "failed"


# ======================================================================
# Cancellation
# ======================================================================


class TestCancellation:
    """cancel() stops scheduling and yields a cancelled failure."""

    async def test_cancel_after_first_part(self, client_config, fake_sleep):
        server = FakeUploadServer()
        holder: list[UploadOrchestrator] = []

        def cancel_on_first_bytes(progress: FileUploadProgress) -> None:
            if progress.uploaded_bytes > 0:
                holder[0].cancel("user pressed stop")

        orchestrator, _ = _build(
            server,
            client_config,
            fake_sleep,
            enable_concurrent_parts=False,
            progress_callback=cancel_on_first_bytes,
        )
        holder.append(orchestrator)

        result = await orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD))

        assert isinstance(result, UploadFailure)
        assert isinstance(result.error, CancellationError)
        assert result.error.reason == "user pressed stop"
        assert result.kind == ErrorKind.CANCELLED
        assert orchestrator.state == "cancelled"
        assert set(server.received_parts) == {1}
        assert server.complete_calls == 0
        assert result.partial_progress.status == UploadProgressStatus.CANCELLED

    async def test_cancel_after_completion_is_ignored(self, client_config, fake_sleep):
        orchestrator, _ = _build(FakeUploadServer(), client_config, fake_sleep)
        result = await orchestrator.run(FileSource.from_bytes("notes.txt", b"short"))
        orchestrator.cancel()
        assert isinstance(result, UploadSuccess)
        assert orchestrator.state == "completed"

    async def test_cancel_after_single_send_still_completes(self, client_config, fake_sleep):
        """The single send finalizes the upload, so a late cancel cannot undo it."""
        server = FakeUploadServer()
        holder: list[UploadOrchestrator] = []

        def cancel_on_first_bytes(progress: FileUploadProgress) -> None:
            if progress.uploaded_bytes > 0:
                holder[0].cancel()

        orchestrator, _ = _build(
            server, client_config, fake_sleep, progress_callback=cancel_on_first_bytes
        )
        holder.append(orchestrator)

        result = await orchestrator.run(FileSource.from_bytes("notes.txt", b"short text"))

        assert isinstance(result, UploadSuccess)
        assert orchestrator.state == "completed"
        assert server.received_parts == {1: b"short text"}

    async def test_cancel_lets_in_flight_parts_finish(self, client_config, fake_sleep):
        """Parts already sending complete; later parts are never scheduled."""
        server = FakeUploadServer()
        holder: list[UploadOrchestrator] = []
        started: list[int] = []
        finished: list[int] = []
        both_started = asyncio.Event()

        async def gated_handler(method, url, body):
            if url.endswith("/send"):
                part = int(body.fields["part_number"])
                started.append(part)
                if len(started) == 2:
                    holder[0].cancel("stop requested")
                    both_started.set()
                await both_started.wait()
                await asyncio.sleep(0.01)
                finished.append(part)
            return server(method, url, body)

        orchestrator, transport = _build(
            server, client_config, fake_sleep, max_concurrent_parts=2
        )
        transport._handler = gated_handler
        holder.append(orchestrator)

        result = await asyncio.wait_for(
            orchestrator.run(FileSource.from_bytes("video.mp4", PAYLOAD)), timeout=5
        )

        assert isinstance(result, UploadFailure)
        assert result.kind == ErrorKind.CANCELLED
        assert orchestrator.state == "cancelled"
        assert sorted(started) == [1, 2]
        assert sorted(finished) == [1, 2]
        assert set(server.received_parts) == {1, 2}
        assert server.complete_calls == 0
        assert result.partial_progress.uploaded_bytes == 20
