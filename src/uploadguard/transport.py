"""Raw HTTP transport: one request in, one response (or failure) out.

The resilience layer never talks to an HTTP library directly; it only
needs something satisfying :class:`Transport`.  :class:`HttpxTransport` is
the default implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, Union, runtime_checkable

import httpx

from uploadguard.exceptions import TransportError, TransportTimeoutError
from uploadguard.models import HttpResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MultipartFile:
    """One file field of a multipart/form-data body."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class MultipartForm:
    """A multipart/form-data body: plain text fields plus file fields."""

    fields: Mapping[str, str] = field(default_factory=dict)
    files: Mapping[str, MultipartFile] = field(default_factory=dict)


RequestBody = Union[bytes, Mapping[str, Any], MultipartForm, None]


@runtime_checkable
class Transport(Protocol):
    """Performs exactly one HTTP exchange per :meth:`send` call.

    Implementations raise :class:`~uploadguard.exceptions.TransportError`
    (or :class:`~uploadguard.exceptions.TransportTimeoutError`) when no
    response was received, and return any response, whatever its status.
    """

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: RequestBody = None,
    ) -> HttpResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """:class:`Transport` backed by :class:`httpx.AsyncClient`.

    Usage::

        transport = HttpxTransport(timeout=30.0, connect_timeout=10.0)
        response = await transport.send("GET", "https://api.example.com/ping")
        await transport.aclose()

    Pass ``client`` to reuse an existing ``httpx.AsyncClient`` (for example
    one built on ``httpx.MockTransport`` in tests); the transport then does
    not close it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout)
        )

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: RequestBody = None,
    ) -> HttpResponse:
        kwargs: dict[str, Any] = {"headers": dict(headers or {})}
        if isinstance(body, MultipartForm):
            kwargs["data"] = dict(body.fields)
            kwargs["files"] = {
                name: (f.filename, f.content, f.content_type)
                if f.content_type
                else (f.filename, f.content)
                for name, f in body.files.items()
            }
        elif isinstance(body, (bytes, bytearray)):
            kwargs["content"] = bytes(body)
        elif body is not None:
            kwargs["json"] = dict(body)

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"{method} {url} timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers.items()),
            body=response.content,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
