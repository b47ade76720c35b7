"""Unit tests for the content-policy rejection contract."""

from __future__ import annotations

import json

from photogate.constants import (
    IMAGE_MODERATION_ERROR_CODE,
    MULTIPLE_IMAGES_REJECTED_MESSAGE,
    SINGLE_IMAGE_REJECTED_MESSAGE,
)
from photogate.models.rejection import ImageModerationRejected, build_rejection_response

MODERATION_ID = "01J9Z3K4M5N6P7Q8R9S0T1V2W3"


class TestImageModerationRejected:
    def test_single_image_message(self) -> None:
        exc = ImageModerationRejected(MODERATION_ID)
        assert exc.message == SINGLE_IMAGE_REJECTED_MESSAGE
        assert str(exc) == SINGLE_IMAGE_REJECTED_MESSAGE
        assert exc.multiple is False

    def test_multiple_images_message(self) -> None:
        exc = ImageModerationRejected(MODERATION_ID, multiple=True)
        assert exc.message == MULTIPLE_IMAGES_REJECTED_MESSAGE


class TestBuildRejectionResponse:
    def test_status_is_400(self) -> None:
        response = build_rejection_response(ImageModerationRejected(MODERATION_ID))
        assert response.status_code == 400

    def test_body_carries_error_code(self) -> None:
        response = build_rejection_response(ImageModerationRejected(MODERATION_ID))
        body = json.loads(response.body)
        assert body == {
            "message": SINGLE_IMAGE_REJECTED_MESSAGE,
            "errorCode": IMAGE_MODERATION_ERROR_CODE,
            "moderationId": MODERATION_ID,
        }

    def test_error_code_value(self) -> None:
        assert IMAGE_MODERATION_ERROR_CODE == "IMAGE_MODERATION_REJECTED"

    def test_headers(self) -> None:
        response = build_rejection_response(ImageModerationRejected(MODERATION_ID))
        assert response.headers["X-Moderation-Rejected"] == "true"
        assert response.headers["X-Moderation-ID"] == MODERATION_ID

    def test_no_scores_leak(self) -> None:
        response = build_rejection_response(ImageModerationRejected(MODERATION_ID, True))
        body = json.loads(response.body)
        assert set(body) == {"message", "errorCode", "moderationId"}
        assert body["message"] == MULTIPLE_IMAGES_REJECTED_MESSAGE
