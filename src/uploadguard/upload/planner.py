"""Single-shot vs. multi-part decision and part sizing."""

from __future__ import annotations

from uploadguard.config import MIB
from uploadguard.exceptions import ValidationError
from uploadguard.models import UploadMode, UploadPlan

DEFAULT_MAX_PARTS = 1000
DEFAULT_MULTIPART_THRESHOLD = 20 * MIB


def plan_upload(
    total_bytes: int,
    min_part_size: int,
    max_parts: int = DEFAULT_MAX_PARTS,
    multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
) -> UploadPlan:
    """Plan the transfer of a *total_bytes* payload.

    Payloads below *multipart_threshold* go in one request.  Larger ones are
    cut into *min_part_size* parts with the remainder in the last part,
    which is the fewest parts that keeps every non-final part at the
    minimum size.

    Args:
        total_bytes: Payload size in bytes.
        min_part_size: Smallest size the API accepts for a non-final part.
        max_parts: Most parts the API accepts for one upload.
        multipart_threshold: Payloads at least this large use multi-part.

    Returns:
        The :class:`~uploadguard.models.UploadPlan`; identical inputs always
        produce an identical plan.

    Raises:
        ValidationError: On a non-positive size or limit, or when the payload
            would need more than *max_parts* parts.
    """
    if total_bytes <= 0:
        raise ValidationError("File size must be greater than 0")
    if min_part_size <= 0:
        raise ValidationError("Minimum part size must be positive")
    if max_parts < 1:
        raise ValidationError("Maximum part count must be at least 1")

    if total_bytes < multipart_threshold:
        return UploadPlan(
            total_bytes=total_bytes,
            mode=UploadMode.SINGLE_PART,
            part_size=total_bytes,
            part_count=1,
        )

    part_count = -(-total_bytes // min_part_size)
    if part_count > max_parts:
        raise ValidationError(
            f"{total_bytes} bytes needs {part_count} parts of {min_part_size} bytes, "
            f"more than the maximum of {max_parts}"
        )

    return UploadPlan(
        total_bytes=total_bytes,
        mode=UploadMode.MULTI_PART,
        part_size=min_part_size,
        part_count=part_count,
    )
