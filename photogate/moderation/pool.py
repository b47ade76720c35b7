"""Inference worker pool management.

Provides:
  - startup_inference_pool():  Creates the ThreadPoolExecutor used for decode + inference.
  - shutdown_inference_pool(): Graceful pool shutdown.
  - get_gate():                FastAPI dependency — returns the live gate or HTTP 503.

Decode and ONNX inference are CPU-bound but release the GIL for most of their
run time, so threads are used rather than processes: the model session is
shared read-only by every worker and never pickled.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Optional

from fastapi import HTTPException, Request

from photogate.utils.logger import get_logger

if TYPE_CHECKING:
    from photogate.config import Config
    from photogate.moderation.gate import ImageModerationGate

logger = get_logger(__name__)


def startup_inference_pool(config: "Config") -> Optional[ThreadPoolExecutor]:
    """Create the inference pool.

    Returns None in bypass mode: no image is ever decoded, so no pool is needed.
    """
    if not config.moderation.enabled:
        logger.info("Moderation disabled — skipping inference pool startup")
        return None

    workers = config.moderation.workers
    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="photogate-infer")
    logger.info("Inference pool created", max_workers=workers)
    return pool


async def shutdown_inference_pool(pool: Optional[ThreadPoolExecutor]) -> None:
    """Graceful pool shutdown. In-flight classifications finish first."""
    if pool is None:
        logger.debug("Inference pool shutdown: no pool to shut down")
        return
    logger.info("Shutting down inference pool...")
    pool.shutdown(wait=True, cancel_futures=False)
    logger.info("Inference pool shutdown complete")


# ── FastAPI Dependency ────────────────────────────────────────────────────────


async def get_gate(request: Request) -> "ImageModerationGate":
    """FastAPI dependency — returns the live moderation gate or raises HTTP 503.

    The require_ready dependency in main.py is the primary guard; this covers a
    request that reaches a route before the lifespan has installed the gate.
    """
    gate: Optional["ImageModerationGate"] = getattr(request.app.state, "gate", None)
    if gate is None:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "moderation": "initializing",
                "message": "Moderation gate not ready",
            },
        )
    return gate
