"""Shared pytest fixtures for the uploadguard test suite.

Provides a scripted fake transport, a fake upload server that the fake
transport can delegate to, a recording sleep that never actually waits,
and ready-made config, governor and client fixtures.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import random
from collections import Counter, deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from uploadguard.client import ResilientClient
from uploadguard.config import ClientConfig, RetryConfig, UploadLimits
from uploadguard.models import HttpResponse
from uploadguard.resilience.governor import RetryGovernor
from uploadguard.resilience.rate_limit import RateLimitTracker
from uploadguard.transport import MultipartForm

BASE_URL = "https://api.test/v1"


def make_response(
    status: int = 200,
    payload: Any = None,
    headers: Mapping[str, str] | None = None,
) -> HttpResponse:
    """Build an HttpResponse with an optional JSON payload."""
    body = b"" if payload is None else json.dumps(payload).encode()
    return HttpResponse(status_code=status, headers=dict(headers or {}), body=body)


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: Any


class FakeTransport:
    """Transport double replaying queued results or delegating to a handler.

    Queued items (and handler return values) may be an ``HttpResponse``,
    an exception instance to raise, or an awaitable producing either.
    """

    def __init__(self, handler=None) -> None:
        self.requests: list[RecordedRequest] = []
        self.closed = False
        self._handler = handler
        self._queue: deque = deque()

    def queue(self, *results: Any) -> None:
        self._queue.extend(results)

    async def send(self, method, url, headers=None, body=None) -> HttpResponse:
        self.requests.append(RecordedRequest(method, url, dict(headers or {}), body))
        if self._handler is not None:
            result = self._handler(method, url, body)
        else:
            result = self._queue.popleft()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


class FakeSleep:
    """Records requested delays and yields to the loop without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@dataclass
class FakeUploadServer:
    """In-memory stand-in for the file upload endpoints.

    Args:
        transient_failures: part number -> number of 503 answers before the
            part is accepted.
        fatal_parts: part numbers always answered with 400.
        create_status: status returned by the create call.
        retrieve_statuses: upload statuses returned by successive GETs.
    """

    transient_failures: dict[int, int] = field(default_factory=dict)
    fatal_parts: set[int] = field(default_factory=set)
    create_status: int = 200
    retrieve_statuses: list[str] = field(default_factory=list)
    upload_id: str = "upload-1"

    part_attempts: Counter = field(default_factory=Counter)
    received_parts: dict[int, bytes] = field(default_factory=dict)
    create_payloads: list[dict] = field(default_factory=list)
    complete_calls: int = 0

    def __call__(self, method: str, url: str, body: Any) -> HttpResponse:
        if method == "POST" and url.endswith("/file_uploads"):
            self.create_payloads.append(dict(body))
            if self.create_status != 200:
                return make_response(self.create_status, {"message": "rejected"})
            return make_response(200, {"id": self.upload_id, "status": "pending"})

        if method == "POST" and url.endswith("/send"):
            assert isinstance(body, MultipartForm)
            part = int(body.fields.get("part_number", "1"))
            self.part_attempts[part] += 1
            if part in self.fatal_parts:
                return make_response(400, {"message": f"part {part} rejected"})
            if self.transient_failures.get(part, 0) > 0:
                self.transient_failures[part] -= 1
                return make_response(503)
            self.received_parts[part] = body.files["file"].content
            return make_response(200, {"id": self.upload_id, "status": "pending"})

        if method == "POST" and url.endswith("/complete"):
            self.complete_calls += 1
            return make_response(200, {"id": self.upload_id, "status": "uploaded"})

        if method == "GET":
            status = self.retrieve_statuses.pop(0) if self.retrieve_statuses else "uploaded"
            return make_response(200, {"id": self.upload_id, "status": status})

        return make_response(404)

    def assembled(self) -> bytes:
        return b"".join(self.received_parts[n] for n in sorted(self.received_parts))


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def retry_config() -> RetryConfig:
    """Three retries, no jitter, so delays are exact."""
    return RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, jitter_factor=0.0)


@pytest.fixture
def tracker() -> RateLimitTracker:
    return RateLimitTracker()


@pytest.fixture
def governor(retry_config, tracker, fake_sleep) -> RetryGovernor:
    return RetryGovernor(retry_config, tracker, sleep=fake_sleep, rng=random.Random(0))


@pytest.fixture
def small_limits() -> UploadLimits:
    """Byte-sized limits: 10-byte parts, multi-part from 20 bytes."""
    return UploadLimits(
        min_part_size=10, max_parts=1000, multipart_threshold=20, max_file_size=10_000
    )


@pytest.fixture
def client_config(retry_config, small_limits) -> ClientConfig:
    return ClientConfig(
        token="test-token",
        base_url=BASE_URL,
        retry_config=retry_config,
        upload_limits=small_limits,
    )


@pytest.fixture
def upload_server() -> FakeUploadServer:
    return FakeUploadServer()


@pytest.fixture
def client(client_config, upload_server, fake_sleep) -> ResilientClient:
    """Client wired to the fake upload server."""
    return ResilientClient(
        client_config,
        FakeTransport(upload_server),
        sleep=fake_sleep,
        rng=random.Random(0),
    )
