"""Upload pipeline for the file upload API.

Public API
----------
.. autoclass:: UploadOrchestrator
.. autoclass:: PartTransmitter
.. autoclass:: ProgressAggregator
.. autoclass:: RichUploadProgress
.. autoclass:: FileUploadApi
.. autoclass:: FileSource
.. autoclass:: UploadLifecycleSM
.. autofunction:: plan_upload
"""

from uploadguard.upload.api import FileUploadApi
from uploadguard.upload.fsm import UploadLifecycleSM
from uploadguard.upload.orchestrator import UploadOrchestrator
from uploadguard.upload.planner import plan_upload
from uploadguard.upload.progress import ProgressAggregator, RichUploadProgress
from uploadguard.upload.source import (
    FileSource,
    detect_content_type,
    ensure_file_extension,
    validate_external_url,
    validate_file_size,
    validate_filename,
)
from uploadguard.upload.transmitter import PartTransmitter

__all__ = [
    "FileSource",
    "FileUploadApi",
    "PartTransmitter",
    "ProgressAggregator",
    "RichUploadProgress",
    "UploadLifecycleSM",
    "UploadOrchestrator",
    "detect_content_type",
    "ensure_file_extension",
    "plan_upload",
    "validate_external_url",
    "validate_file_size",
    "validate_filename",
]
