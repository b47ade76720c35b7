"""Model lifecycle manager — builds the process-wide ModelHandle exactly once.

Called by the main.py lifespan BEFORE ``app.state.ready = True``. Never raises:
every failure becomes a DEGRADED handle so the gate fails closed instead of
the process crashing.

Startup sequence:
  0. moderation.enabled is False → BYPASSED handle; no asset access, no onnxruntime import
  1. Ensure the asset exists at model.path; fetch it once from model.url if missing
  2. Open the ONNX Runtime session in the worker pool (off the event loop)
  3. Check the asset's declared input geometry against the ModelSpec
  4. Smoke-classify a blank buffer to prove the output matches the label vocabulary
  5. Return a READY handle

The load is never retried. READY and DEGRADED are terminal for the process.
"""

from __future__ import annotations

import asyncio
import os
import time
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import numpy as np

from photogate.config import Config, ModelConfig
from photogate.constants import MODEL_DOWNLOAD_CHUNK_BYTES, MODEL_DOWNLOAD_TIMEOUT_S
from photogate.models.moderation import ModelHandle, ModelSpec
from photogate.moderation.classifier import OnnxClassifier, create_onnx_session
from photogate.moderation.errors import ClassificationError, ModelLoadError
from photogate.moderation.normalizer import PixelBuffer
from photogate.utils.logger import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[str], Any]


async def load_model_handle(
    config: Config,
    *,
    session_factory: Optional[SessionFactory] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    executor: Optional[Executor] = None,
) -> ModelHandle:
    """Build the ModelHandle for this process.

    Args:
        config:          Application config (moderation + model sections are read).
        session_factory: Opens a session for a model path. Defaults to ONNX Runtime.
        http_client:     Client used for the one-time asset download. A private
                         client is created (and closed) when omitted.
        executor:        Pool the session is opened in. None → loop default executor.

    Returns:
        BYPASSED, READY or DEGRADED ModelHandle. Never raises.
    """
    spec = ModelSpec.from_config(config.model)

    if not config.moderation.enabled:
        logger.info("Image moderation disabled — bypassing classification")
        return ModelHandle.bypassed(spec)

    factory = session_factory or create_onnx_session
    t0 = time.perf_counter()
    try:
        model_path = await ensure_model_asset(config.model, http_client=http_client)
        loop = asyncio.get_running_loop()
        classifier = await loop.run_in_executor(
            executor, _build_classifier, factory, str(model_path), spec
        )
    except Exception as exc:  # noqa: BLE001
        reason = f"{type(exc).__name__}: {exc}"
        logger.error(
            "Failed to load moderation model — every image will be rejected",
            error=reason,
            model_path=config.model.path,
        )
        return ModelHandle.degraded(reason, spec)

    logger.info(
        "Moderation model loaded",
        model_path=str(model_path),
        labels=list(spec.labels),
        input_size=spec.input_size,
        layout=spec.layout,
        duration_ms=round((time.perf_counter() - t0) * 1000, 1),
    )
    return ModelHandle.ready(classifier, spec)


def _build_classifier(factory: SessionFactory, model_path: str, spec: ModelSpec) -> OnnxClassifier:
    """Open the session, wrap it and smoke-test it. Runs in the executor.

    Raises:
        ModelLoadError: On any failure.
    """
    try:
        session = factory(model_path)
    except Exception as exc:  # noqa: BLE001
        raise ModelLoadError(f"Could not open model {model_path}: {exc}") from exc

    classifier = OnnxClassifier(session, spec)

    with PixelBuffer(np.zeros(spec.buffer_shape, dtype=np.uint8)) as blank:
        try:
            classifier.classify(blank)
        except ClassificationError as exc:
            raise ModelLoadError(f"Smoke classification failed: {exc}") from exc

    return classifier


async def ensure_model_asset(
    model: ModelConfig,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """Return the local asset path, downloading it once if it is missing.

    The download streams into ``<path>.part`` and is renamed into place only
    after the whole body arrived, so a partial file is never opened as a model.

    Raises:
        ModelLoadError: Asset missing with no URL configured, or the download failed.
    """
    path = Path(os.path.expanduser(model.path))
    if path.is_file():
        return path

    if not model.url:
        raise ModelLoadError(f"Model asset not found at {path} and no model.url configured")

    logger.info("Model asset missing — downloading", url=model.url, path=str(path))
    own_client = http_client is None
    client = http_client or httpx.AsyncClient(
        timeout=MODEL_DOWNLOAD_TIMEOUT_S, follow_redirects=True
    )
    partial = path.with_name(path.name + ".part")
    written = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with client.stream("GET", model.url) as response:
            response.raise_for_status()
            with open(partial, "wb") as fh:
                async for chunk in response.aiter_bytes(MODEL_DOWNLOAD_CHUNK_BYTES):
                    fh.write(chunk)
                    written += len(chunk)
        if written == 0:
            raise ModelLoadError(f"Downloaded model from {model.url} is empty")
        os.replace(partial, path)
    except ModelLoadError:
        partial.unlink(missing_ok=True)
        raise
    except (httpx.HTTPError, OSError) as exc:
        partial.unlink(missing_ok=True)
        raise ModelLoadError(f"Model download failed: {type(exc).__name__}: {exc}") from exc
    finally:
        if own_client:
            await client.aclose()

    logger.info("Model asset downloaded", path=str(path), size_bytes=written)
    return path
