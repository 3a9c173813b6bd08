"""Upload sources plus filename, size and URL checks.

A :class:`FileSource` knows its name and size up front and can hand out
any byte range on demand, so parts can be read independently and out of
order.
"""

from __future__ import annotations

import asyncio
import mimetypes
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from uploadguard.exceptions import ValidationError

DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_FILENAME_LENGTH = 255
MAX_URL_LENGTH = 2048

# Types missing from some platforms' mimetypes tables
_EXTRA_CONTENT_TYPES: dict[str, str] = {
    "md": "text/markdown",
    "markdown": "text/markdown",
    "webp": "image/webp",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "mkv": "video/x-matroska",
    "7z": "application/x-7z-compressed",
    "rar": "application/vnd.rar",
    "kt": "text/x-kotlin",
    "go": "text/x-go",
    "rs": "text/x-rust",
}

_EXTENSION_FOR_TYPE: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "application/pdf": ".pdf",
    "application/json": ".json",
    "text/plain": ".txt",
    "text/csv": ".csv",
    "text/html": ".html",
    "text/markdown": ".md",
    "application/zip": ".zip",
}


class FileSource:
    """A named payload of known size readable by byte range.

    Build one with :meth:`from_path`, :meth:`from_bytes` or
    :meth:`from_stream` rather than calling the constructor directly.
    """

    def __init__(
        self,
        filename: str,
        size_bytes: int,
        reader: Callable[[int, int], bytes],
    ) -> None:
        self.filename = filename
        self.size_bytes = size_bytes
        self._reader = reader

    def __repr__(self) -> str:
        return f"FileSource(filename={self.filename!r}, size_bytes={self.size_bytes})"

    @classmethod
    def from_path(cls, path: str | Path) -> FileSource:
        path = Path(path)
        size = path.stat().st_size

        def read(start: int, end: int) -> bytes:
            with open(path, "rb") as f:
                f.seek(start)
                return f.read(end - start)

        return cls(path.name, size, read)

    @classmethod
    def from_bytes(cls, filename: str, data: bytes) -> FileSource:
        view = memoryview(data)
        return cls(filename, len(data), lambda start, end: bytes(view[start:end]))

    @classmethod
    def from_stream(
        cls,
        filename: str,
        size_bytes: int,
        opener: Callable[[], BinaryIO],
    ) -> FileSource:
        """Source backed by a seekable binary stream.

        *opener* is called once per read and the stream it returns is closed
        afterwards, so concurrent part reads never share a file position.
        """

        def read(start: int, end: int) -> bytes:
            with opener() as stream:
                stream.seek(start)
                return stream.read(end - start)

        return cls(filename, size_bytes, read)

    def read_range_sync(self, start: int, end: int) -> bytes:
        if not 0 <= start <= end <= self.size_bytes:
            raise ValueError(f"Invalid range [{start}, {end}) for {self.size_bytes} bytes")
        data = self._reader(start, end)
        if len(data) != end - start:
            raise ValidationError(
                f"Source {self.filename!r} returned {len(data)} bytes "
                f"for range [{start}, {end})"
            )
        return data

    async def read_range(self, start: int, end: int) -> bytes:
        """Read ``[start, end)`` off the event loop thread."""
        return await asyncio.to_thread(self.read_range_sync, start, end)

    async def read_all(self) -> bytes:
        return await self.read_range(0, self.size_bytes)


# ---------------------------------------------------------------------------
# Content types
# ---------------------------------------------------------------------------


def detect_content_type(filename: str) -> str:
    """Guess a MIME type from *filename*'s extension."""
    guessed, _ = mimetypes.guess_type(filename, strict=False)
    if guessed:
        return guessed
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _EXTRA_CONTENT_TYPES.get(extension, DEFAULT_CONTENT_TYPE)


def ensure_file_extension(filename: str, content_type: str) -> str:
    """Append an extension inferred from *content_type* if *filename* has none."""
    if "." in filename:
        return filename
    extension = _EXTENSION_FOR_TYPE.get(content_type.lower(), ".bin")
    return f"{filename}{extension}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_filename(filename: str) -> None:
    """Raise :class:`ValidationError` if *filename* is unacceptable to the API."""
    if not filename.strip():
        raise ValidationError("Filename cannot be empty")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"Filename too long (max {MAX_FILENAME_LENGTH} characters)")
    if "/" in filename or "\\" in filename:
        raise ValidationError("Filename cannot contain path separators")
    if filename.startswith("."):
        raise ValidationError("Filename cannot start with a dot")


def validate_file_size(size_bytes: int, max_size: int) -> None:
    if size_bytes <= 0:
        raise ValidationError("File size must be greater than 0")
    if size_bytes > max_size:
        raise ValidationError(
            f"File size exceeds maximum limit of {max_size // (1024 * 1024)}MB"
        )


def validate_external_url(url: str) -> None:
    if not url.strip():
        raise ValidationError("URL cannot be empty")
    if not url.startswith("https://"):
        raise ValidationError("URL must use HTTPS protocol")
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(f"URL too long (max {MAX_URL_LENGTH} characters)")
