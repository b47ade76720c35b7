"""Upload size cap for Photogate.

Oversized uploads are refused with 413 before multipart parsing starts, so an
image that could never be stored is never decoded either. A declared
Content-Length is trusted for the decision; a streamed body without one is
counted as it arrives and cut off at the first chunk that crosses the cap.

The cap is ``config.uploads.max_body_bytes`` once the lifespan has loaded the
config, and MAX_REQUEST_BODY_BYTES before that.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from photogate.constants import MAX_REQUEST_BODY_BYTES
from photogate.utils.logger import get_logger

logger = get_logger(__name__)

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "DELETE"})


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "code": code}},
    )


def _too_large(limit: int) -> JSONResponse:
    return _error(413, "payload_too_large", f"Upload exceeds the {limit} byte limit")


def _body_limit(request: Request) -> int:
    config = getattr(request.app.state, "config", None)
    if config is None:
        return MAX_REQUEST_BODY_BYTES
    return config.uploads.max_body_bytes


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse request bodies larger than the configured upload cap.

    A body of exactly the cap is accepted. When the body had to be streamed
    to be measured, the bytes are left on the request for the route to read.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        limit = _body_limit(request)
        path = request.url.path
        declared = request.headers.get("content-length")

        if declared is not None:
            if not declared.strip().isdigit():
                logger.warning("Malformed Content-Length", value=declared, path=path)
                return _error(400, "bad_request", "Content-Length must be a byte count")
            if int(declared) > limit:
                logger.warning(
                    "Upload over size cap",
                    source="content-length",
                    size=int(declared),
                    limit=limit,
                    path=path,
                )
                return _too_large(limit)
            return await call_next(request)

        if request.method in _BODYLESS_METHODS:
            return await call_next(request)

        received = bytearray()
        async for chunk in request.stream():
            received.extend(chunk)
            if len(received) > limit:
                logger.warning(
                    "Upload over size cap",
                    source="stream",
                    size=len(received),
                    limit=limit,
                    path=path,
                )
                return _too_large(limit)

        # Request.body() returns _body when present, so the multipart parser
        # downstream sees the bytes already consumed here.
        request._body = bytes(received)  # type: ignore[attr-defined]

        return await call_next(request)
