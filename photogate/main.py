"""Photogate HTTP application.

create_app() builds a fresh FastAPI instance; the module-level ``app`` is the
one uvicorn serves. Routes come from three places: the discovery root defined
here, the health router and the image-moderation router (guarded by
require_ready).

The lifespan owns the moderation gate. It swaps a fail-closed placeholder gate
in first, resolves the model handle once, installs the real gate and only then
flips app.state.ready. Shutdown clears the flag and drains the inference pool.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from photogate import __version__
from photogate.api.limiter import limiter
from photogate.api.router import router as moderation_router
from photogate.config import Config, load_config
from photogate.health import router as health_router
from photogate.middleware import BodySizeLimitMiddleware
from photogate.models.moderation import ModelHandle, ModelSpec
from photogate.models.rejection import ImageModerationRejected, build_rejection_response
from photogate.moderation.gate import ImageModerationGate
from photogate.moderation.lifecycle import load_model_handle
from photogate.moderation.policy import ModerationPolicy
from photogate.moderation.pool import shutdown_inference_pool, startup_inference_pool
from photogate.utils.health import ModerationLatencyTracker, VerdictCounters
from photogate.utils.logger import configure_logging, get_logger

# ─── Logging ────────────────────────────────────────────────────────────
# Done at import so the lifespan and routers log through structlog from the start.
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


root_router = APIRouter(tags=["root"])


# ─── Readiness guard ────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """Reject moderation calls with 503 until the lifespan has installed the final gate.

    Mounted on the moderation router. The health routes report their own
    starting state instead.
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "moderation": "initializing",
                "message": "Photogate is starting up. Loading moderation model...",
            },
        )


# ─── Discovery ──────────────────────────────────────────────────────────


@root_router.get("/")
async def root() -> dict[str, str]:
    """Name the service and point callers at the check and health routes."""
    return {
        "service": "Photogate",
        "tagline": "Image moderation gate for missing-person and sighting uploads",
        "check": "/image-moderation/check",
        "health": "/health",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Resolve the model handle once and publish the gate built around it.

    The model handle is built exactly once here. ready=True is set only after
    the handle is final, and the gate installed before that holds a pending
    (fail-closed) handle, so no request can observe a half-loaded model.
    """
    logger.info("Photogate starting up...")

    # ── Config ────────────────────────────────────────────────────────────
    # SystemExit from an invalid file propagates; ready stays False.
    config: Config = load_config()
    app.state.config = config
    logger.info(
        "Config loaded",
        moderation_enabled=config.moderation.enabled,
        threshold=config.moderation.threshold,
        reject_labels=config.moderation.reject_labels,
    )

    # ── Inference pool (None when bypassed) ───────────────────────────────
    inference_pool = startup_inference_pool(config)
    app.state.inference_pool = inference_pool

    # ── Placeholder gate: every check is unsafe while the model loads ─────
    policy = ModerationPolicy.from_config(config.moderation)
    spec = ModelSpec.from_config(config.model)
    latency_tracker = ModerationLatencyTracker()
    verdicts = VerdictCounters()
    app.state.gate = ImageModerationGate(
        ModelHandle.pending(spec),
        policy,
        executor=inference_pool,
        latency_tracker=latency_tracker,
        verdicts=verdicts,
    )

    # ── Model handle: a single attempt, no retries ────────────────────────
    handle = await load_model_handle(config, executor=inference_pool)

    # ── Real gate, sharing the counters of the placeholder ────────────────
    app.state.gate = ImageModerationGate(
        handle,
        policy,
        executor=inference_pool,
        latency_tracker=latency_tracker,
        verdicts=verdicts,
    )

    # ── Open for traffic ──────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "Photogate ready",
        moderation=handle.state.value,
        failure_reason=handle.failure_reason,
    )

    yield

    # ── Teardown ──────────────────────────────────────────────────────────
    logger.info("Photogate shutting down...")
    app.state.ready = False
    await shutdown_inference_pool(app.state.inference_pool)
    logger.info("Photogate shutdown complete")


# ─── Factory ────────────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Build an isolated Photogate app; tests call this instead of importing ``app``."""
    docs_enabled = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="Photogate",
        description="Image content-moderation gate for missing-person and sighting uploads",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )

    # False until the lifespan finishes, so early requests see 503.
    application.state.ready = False

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Moderation-ID", "X-Moderation-Rejected"],
    )

    # Added last runs first: rate limiting, then the body cap.
    application.add_middleware(BodySizeLimitMiddleware)
    application.add_middleware(SlowAPIMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(moderation_router, dependencies=[Depends(require_ready)])

    # Error envelopes
    @application.exception_handler(ImageModerationRejected)
    async def moderation_rejected_handler(
        request: Request, exc: ImageModerationRejected
    ) -> JSONResponse:
        logger.info(
            "Upload rejected by moderation",
            moderation_id=exc.moderation_id,
            path=str(request.url.path),
        )
        return build_rejection_response(exc)

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Served instance ────────────────────────────────────────────────────

app = create_app()


if __name__ == "__main__":
    from photogate.run import main

    main()
