"""Progress aggregation for uploads, plus a Rich progress display.

:class:`ProgressAggregator` folds per-part completions into a
:class:`~uploadguard.models.FileUploadProgress` snapshot and hands every
new snapshot to the caller's observer.  :class:`RichUploadProgress` is a
ready-made observer that renders one byte bar per upload.
"""

from __future__ import annotations

import logging
import threading

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from uploadguard.config import ProgressCallback
from uploadguard.models import FileUploadProgress, UploadProgressStatus

logger = logging.getLogger(__name__)


class ProgressAggregator:
    """Thread-safe accumulator of uploaded bytes for one upload.

    Uploaded bytes only grow, never past ``total_bytes``.  A part number
    that reports twice (for instance after a retried send) is counted once.
    ``current_part`` tracks the furthest part *scheduled*, not completed,
    so displays show what is in motion.

    The observer is invoked synchronously, under no lock, after every
    update; it runs on the part-completion path and must return quickly.
    Observer exceptions are logged and dropped so a broken display cannot
    fail an upload.
    """

    def __init__(
        self,
        filename: str,
        total_bytes: int,
        total_parts: int | None = None,
        observer: ProgressCallback | None = None,
        upload_id: str = "pending",
    ) -> None:
        self._lock = threading.Lock()
        self._filename = filename
        self._total_bytes = total_bytes
        self._total_parts = total_parts
        self._observer = observer
        self._upload_id = upload_id
        self._uploaded_bytes = 0
        self._completed_parts: set[int] = set()
        self._current_part: int | None = None
        self._status = UploadProgressStatus.STARTING
        self._error: BaseException | None = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def set_upload_id(self, upload_id: str) -> None:
        with self._lock:
            self._upload_id = upload_id

    def set_total_parts(self, total_parts: int | None) -> None:
        with self._lock:
            self._total_parts = total_parts

    def record_part_scheduled(self, part_number: int) -> None:
        with self._lock:
            if self._current_part is None or part_number > self._current_part:
                self._current_part = part_number
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def record_part_complete(self, part_number: int, num_bytes: int) -> bool:
        """Add *num_bytes* for *part_number*.

        Returns:
            ``False`` if the part had already been counted (nothing changes).
        """
        with self._lock:
            if part_number in self._completed_parts:
                logger.debug("Ignoring duplicate completion for part %d", part_number)
                return False
            self._completed_parts.add(part_number)
            self._uploaded_bytes = min(
                self._total_bytes, self._uploaded_bytes + max(num_bytes, 0)
            )
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return True

    def set_status(
        self,
        status: UploadProgressStatus,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            self._status = status
            self._error = error
            if status == UploadProgressStatus.COMPLETED:
                self._uploaded_bytes = self._total_bytes
                if self._total_parts is not None:
                    self._current_part = self._total_parts
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def completed_parts(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._completed_parts)

    def snapshot(self) -> FileUploadProgress:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> FileUploadProgress:
        return FileUploadProgress(
            upload_id=self._upload_id,
            filename=self._filename,
            total_bytes=self._total_bytes,
            uploaded_bytes=self._uploaded_bytes,
            status=self._status,
            current_part=self._current_part,
            total_parts=self._total_parts,
            error=self._error,
        )

    def _notify(self, snapshot: FileUploadProgress) -> None:
        if self._observer is None:
            return
        try:
            self._observer(snapshot)
        except Exception:
            logger.exception("Progress observer raised for %s", self._filename)


# ---------------------------------------------------------------------------
# Rich display
# ---------------------------------------------------------------------------


_STATUS_STYLE: dict[UploadProgressStatus, str] = {
    UploadProgressStatus.STARTING: "dim",
    UploadProgressStatus.UPLOADING: "cyan",
    UploadProgressStatus.COMPLETING: "blue",
    UploadProgressStatus.COMPLETED: "green",
    UploadProgressStatus.FAILED: "red",
    UploadProgressStatus.CANCELLED: "yellow",
}


class RichUploadProgress:
    """Rich progress display usable as a ``progress_callback``.

    Usage::

        with RichUploadProgress() as display:
            options = FileUploadOptions(progress_callback=display)
            await client.upload_file(source, options)

    Or without context manager::

        display.start()
        # ... uploads ...
        display.stop()
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}"),
            console=console,
        )
        self._tasks: dict[str, TaskID] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> RichUploadProgress:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Observer
    # ------------------------------------------------------------------

    def __call__(self, progress: FileUploadProgress) -> None:
        status = _format_status(progress)
        with self._lock:
            # Keyed by filename: the upload id only exists after initiation
            task_id = self._tasks.get(progress.filename)
            if task_id is None:
                task_id = self._progress.add_task(
                    _truncate_name(progress.filename),
                    total=progress.total_bytes or None,
                    status=status,
                )
                self._tasks[progress.filename] = task_id
        self._progress.update(
            task_id,
            completed=progress.uploaded_bytes,
            status=status,
        )

    @property
    def task_count(self) -> int:
        return len(self._tasks)

    def completed_bytes(self, filename: str) -> float:
        """Bytes shown as done for *filename* (0 if never seen)."""
        task_id = self._tasks.get(filename)
        if task_id is None:
            return 0
        for task in self._progress.tasks:
            if task.id == task_id:
                return task.completed
        return 0


def _format_status(progress: FileUploadProgress) -> str:
    style = _STATUS_STYLE.get(progress.status, "dim")
    text = progress.status.value
    if progress.total_parts and progress.current_part:
        text += f" {progress.current_part}/{progress.total_parts}"
    return f"[{style}]{text}[/{style}]"


def _truncate_name(filename: str, max_len: int = 40) -> str:
    """Truncate a filename for display, keeping its end."""
    if len(filename) <= max_len:
        return filename
    return "..." + filename[-(max_len - 3) :]
