"""Upload-layer helpers for routes that persist photos.

Missing-person posts (several photos) and sighting reports (one photo) call
``require_safe_uploads()`` after reading the multipart files and before
handing them to storage. Nothing is persisted unless every image passes.
"""

from __future__ import annotations

from typing import Optional, Sequence

from fastapi import HTTPException, UploadFile

from photogate.constants import MAX_PHOTOS_PER_POST
from photogate.models.rejection import ImageModerationRejected
from photogate.moderation.gate import ImageModerationGate


async def read_upload(upload: Optional[UploadFile]) -> bytes:
    """Read one multipart file, rejecting a missing or empty upload with HTTP 400."""
    if upload is None:
        raise HTTPException(
            status_code=400,
            detail={"message": "Image file is required", "code": "image_required"},
        )
    data = await upload.read()
    if not data:
        raise HTTPException(
            status_code=400,
            detail={"message": "Image file is empty", "code": "image_required"},
        )
    return data


async def require_safe_uploads(
    gate: ImageModerationGate,
    images: Sequence[bytes],
    *,
    multiple: bool,
    max_photos: int = MAX_PHOTOS_PER_POST,
) -> None:
    """Moderate every image of one upload; raise on the first rejection.

    Args:
        gate:       The live moderation gate.
        images:     Raw image payloads, in upload order.
        multiple:   True for multi-photo posts (selects the rejection message).
        max_photos: Per-post photo cap.

    Raises:
        HTTPException(400):     More than ``max_photos`` images.
        ImageModerationRejected: An image was judged unsafe (or the gate failed closed).
    """
    if len(images) > max_photos:
        raise HTTPException(
            status_code=400,
            detail={
                "message": f"A maximum of {max_photos} photos is allowed per post",
                "code": "max_photos_exceeded",
            },
        )

    for image_bytes in images:
        decision = await gate.evaluate(image_bytes)
        if not decision.safe:
            raise ImageModerationRejected(decision.moderation_id, multiple=multiple)
