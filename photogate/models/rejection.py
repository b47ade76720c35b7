"""Content-policy rejection — exception and HTTP 400 response builder.

When the gate returns unsafe, the upload layer must reject with a reason that
clients can tell apart from a malformed request. The body keeps the wire keys
the web client already reads:

.. code-block:: json

    {
      "message": "La imagen contiene contenido no permitido.",
      "errorCode": "IMAGE_MODERATION_REJECTED",
      "moderationId": "<ulid>"
    }

Headers set:
  - ``X-Moderation-Rejected: true`` — present on every content-policy rejection
  - ``X-Moderation-ID: <ulid>``     — correlates with the gate's log entry

The response never includes classifier scores or the failure kind: a
fail-closed rejection and a genuine content match look the same to clients.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from photogate.constants import (
    IMAGE_MODERATION_ERROR_CODE,
    MULTIPLE_IMAGES_REJECTED_MESSAGE,
    SINGLE_IMAGE_REJECTED_MESSAGE,
)


class ImageModerationRejected(Exception):
    """Raised by the upload layer when an image failed moderation.

    Args:
        moderation_id: ID of the gate decision that rejected the upload.
        multiple:      True when the upload carried several photos (changes the message).
    """

    def __init__(self, moderation_id: str, multiple: bool = False) -> None:
        self.moderation_id = moderation_id
        self.multiple = multiple
        self.message = (
            MULTIPLE_IMAGES_REJECTED_MESSAGE if multiple else SINGLE_IMAGE_REJECTED_MESSAGE
        )
        super().__init__(self.message)


def build_rejection_response(exc: ImageModerationRejected) -> JSONResponse:
    """Build the HTTP 400 content-policy rejection response."""
    response = JSONResponse(
        status_code=400,
        content={
            "message": exc.message,
            "errorCode": IMAGE_MODERATION_ERROR_CODE,
            "moderationId": exc.moderation_id,
        },
    )
    response.headers["X-Moderation-Rejected"] = "true"
    response.headers["X-Moderation-ID"] = exc.moderation_id
    return response
