"""Image moderation HTTP routes.

Implements:
  POST /image-moderation/check — validate one image before submitting it elsewhere

The route is gated on ``app.state.ready`` by the router-level ``require_ready``
dependency registered in create_app(), so it answers HTTP 503 until the model
handle is final.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile

from photogate.api.limiter import limiter
from photogate.api.uploads import read_upload
from photogate.constants import CHECK_RATE_LIMIT
from photogate.moderation.gate import ImageModerationGate
from photogate.moderation.pool import get_gate
from photogate.utils.logger import clear_request_id, set_request_id
from photogate.utils.ulid import generate_ulid

router = APIRouter(prefix="/image-moderation", tags=["image-moderation"])


@router.post("/check")
@limiter.limit(CHECK_RATE_LIMIT)
async def check_image(
    request: Request,
    response: Response,
    image: Optional[UploadFile] = File(None, description="Image file to validate"),
    gate: ImageModerationGate = Depends(get_gate),
) -> dict[str, bool]:
    """Check one image for adult content.

    Intended for external services and apps to validate a photo before
    submitting it to the missing-persons or sightings endpoints.

    Returns:
        ``{"safe": true}`` when the image may be persisted, ``{"safe": false}``
        otherwise (including every fail-closed case).

    Raises:
        HTTPException(400): No file provided, or the file is empty.
    """
    request_id = generate_ulid()
    set_request_id(request_id)
    try:
        data = await read_upload(image)
        decision = await gate.evaluate(data)
    finally:
        clear_request_id()

    response.headers["X-Moderation-ID"] = decision.moderation_id
    return {"safe": decision.safe}
