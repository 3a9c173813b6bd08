"""File upload endpoints of the wrapped API.

Implements the three-call upload protocol:
  1. ``POST /file_uploads`` -- creates a pending upload and returns its id
  2. ``POST /file_uploads/{id}/send`` -- transmits the payload, or one part
     of it (``part_number`` form field, 1-indexed)
  3. ``POST /file_uploads/{id}/complete`` -- finalizes a multi-part upload

Each method performs exactly one exchange and returns the raw response
whatever its status, so it can serve as the request for a
:class:`~uploadguard.resilience.governor.RetryGovernor` call.  Retrying,
classification and error raising all happen there.
"""

from __future__ import annotations

import logging
from typing import Any

from uploadguard.config import ClientConfig
from uploadguard.models import HttpResponse, UploadMode
from uploadguard.transport import MultipartFile, MultipartForm, Transport

logger = logging.getLogger(__name__)


class FileUploadApi:
    """Thin request builder for the file upload endpoints.

    Usage::

        api = FileUploadApi(transport, ClientConfig(token="secret"))
        response = await api.create_file_upload(
            UploadMode.MULTI_PART, "video.mp4", "video/mp4", number_of_parts=5
        )
        upload_id = response.json()["id"]
    """

    def __init__(self, transport: Transport, config: ClientConfig) -> None:
        self._transport = transport
        self._config = config

    def url(self, path: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def create_file_upload(
        self,
        mode: UploadMode,
        filename: str,
        content_type: str | None = None,
        number_of_parts: int | None = None,
        external_url: str | None = None,
    ) -> HttpResponse:
        """Step 1: create a pending upload.

        Args:
            mode: Single-part, multi-part or external URL import.
            filename: Name the file will carry once uploaded.
            content_type: MIME type of the payload.
            number_of_parts: Required for multi-part uploads.
            external_url: Required for external URL imports.
        """
        payload: dict[str, Any] = {"mode": mode.value, "filename": filename}
        if content_type is not None:
            payload["content_type"] = content_type
        if number_of_parts is not None:
            payload["number_of_parts"] = number_of_parts
        if external_url is not None:
            payload["external_url"] = external_url

        logger.debug("Creating %s upload for %s", mode.value, filename)
        return await self._transport.send(
            "POST",
            self.url("file_uploads"),
            headers=self._headers(),
            body=payload,
        )

    async def send_file_upload(
        self,
        upload_id: str,
        data: bytes,
        content_type: str | None = None,
        part_number: int | None = None,
    ) -> HttpResponse:
        """Step 2: send the payload, or one part of a multi-part upload."""
        fields = {} if part_number is None else {"part_number": str(part_number)}
        form = MultipartForm(
            fields=fields,
            files={"file": MultipartFile("file", data, content_type)},
        )
        return await self._transport.send(
            "POST",
            self.url(f"file_uploads/{upload_id}/send"),
            headers=self._headers(),
            body=form,
        )

    async def complete_file_upload(self, upload_id: str) -> HttpResponse:
        """Step 3: finalize a multi-part upload once every part is acknowledged."""
        return await self._transport.send(
            "POST",
            self.url(f"file_uploads/{upload_id}/complete"),
            headers=self._headers(),
            body={},
        )

    async def retrieve_file_upload(self, upload_id: str) -> HttpResponse:
        return await self._transport.send(
            "GET",
            self.url(f"file_uploads/{upload_id}"),
            headers=self._headers(),
        )

    def _headers(self) -> dict[str, str]:
        return self._config.default_headers()
