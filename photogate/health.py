"""Health endpoints for Photogate.

Implements:
  GET /health            — primary health check (503 before ready, 200 after)
  GET /health/moderation — gate state, model geometry, latency and verdict counters

Both endpoints share the ``app.state.ready`` gate set at the end of the lifespan
startup. A DEGRADED gate still answers 200 with ``status: degraded``: the
process is up and rejecting every image, which is what operators need to see.
"""

from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from photogate.config import Config
from photogate.utils.health import check_gate_health

router = APIRouter(tags=["health"])


def _require_started(request: Request) -> None:
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "moderation": "initializing",
                "message": "Photogate is starting up. Loading moderation model...",
            },
        )


# ─── /health ──────────────────────────────────────────────────────────────────


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "moderation": "bypassed" | "ready" | "degraded",
          "avg_moderation_ms": 0.0
        }

    Response body (503):
        {
          "status": "starting",
          "moderation": "initializing",
          "message": "Photogate is starting up. Loading moderation model..."
        }
    """
    _require_started(request)

    gate_health = check_gate_health(getattr(request.app.state, "gate", None))
    return {
        "status": "ok" if gate_health.healthy else "degraded",
        "moderation": gate_health.state.value,
        "avg_moderation_ms": gate_health.avg_latency_ms,
    }


# ─── /health/moderation ───────────────────────────────────────────────────────


@router.get("/health/moderation")
async def health_moderation(request: Request) -> dict[str, Any]:
    """Detailed moderation gate health.

    Fields:
        moderation:     gate state
        failure_reason: why the model is unavailable (degraded only, else null)
        model_path:     configured asset path (null in bypass mode)
        labels:         classifier output vocabulary
        input_size:     square resize target tied to the asset
        threshold:      inclusive rejection threshold
        reject_labels:  labels treated as disallowed
        avg_moderation_ms / p99_moderation_ms: last 100 classifications
        verdicts:       {"safe", "rejected", "failed_decode", "failed_classify",
                         "failed_not_loaded"} counts since start
    """
    _require_started(request)

    config: Config = request.app.state.config
    gate = getattr(request.app.state, "gate", None)
    gate_health = check_gate_health(gate)
    spec = gate.handle.spec if gate is not None else None

    return {
        "moderation": gate_health.state.value,
        "healthy": gate_health.healthy,
        "failure_reason": gate_health.failure_reason,
        "model_path": (
            os.path.expanduser(config.model.path) if config.moderation.enabled else None
        ),
        "labels": list(spec.labels) if spec else list(config.model.labels),
        "input_size": spec.input_size if spec else config.model.input_size,
        "threshold": config.moderation.threshold,
        "reject_labels": sorted(config.moderation.reject_labels),
        "avg_moderation_ms": gate_health.avg_latency_ms,
        "p99_moderation_ms": gate_health.p99_latency_ms,
        "verdicts": gate_health.verdicts,
    }
