"""Moderation gate — the single entry point the upload layer calls.

Provides ``ImageModerationGate``: ``is_image_safe(image_bytes) -> bool`` plus
``evaluate()`` which returns the full internal ``ModerationDecision``.

ATOMIC WRAPPER INVARIANTS:
  - ``evaluate()`` / ``is_image_safe()`` NEVER raise for anything about the
    image or the model. The only exception is MissingImageError when called
    with ``None``.
  - Moderation disabled (BYPASSED): always safe; decode and inference are skipped.
  - Moderation enabled but no model (DEGRADED): always unsafe.
  - Any decode or inference failure: unsafe. The failure kind is logged and
    counted, never returned.
  - Every PixelBuffer allocated for a call is released exactly once, on every
    exit path.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import Executor
from typing import Iterable, Optional

from photogate.models.moderation import (
    FailureKind,
    GateState,
    ModelHandle,
    ModerationDecision,
    Prediction,
)
from photogate.moderation.errors import ClassificationError, DecodeError, MissingImageError
from photogate.moderation.normalizer import ImageNormalizer, PixelBuffer
from photogate.moderation.policy import ModerationPolicy
from photogate.utils.health import ModerationLatencyTracker, VerdictCounters
from photogate.utils.logger import get_logger
from photogate.utils.ulid import generate_ulid

logger = get_logger(__name__)


class ImageModerationGate:
    """Fail-closed image moderation gate.

    Args:
        handle:          Final ModelHandle from startup (or ``ModelHandle.pending()``).
        policy:          Threshold rule applied to classifier output.
        executor:        Pool for decode + inference. None → the loop's default executor.
        normalizer:      Override for tests; defaults to one sized from ``handle.spec``.
        latency_tracker: Rolling latency window read by /health/moderation.
        verdicts:        Outcome counters read by /health/moderation.
    """

    def __init__(
        self,
        handle: ModelHandle,
        policy: ModerationPolicy,
        executor: Optional[Executor] = None,
        normalizer: Optional[ImageNormalizer] = None,
        latency_tracker: Optional[ModerationLatencyTracker] = None,
        verdicts: Optional[VerdictCounters] = None,
    ) -> None:
        self.handle = handle
        self.policy = policy
        self._executor = executor
        self._normalizer = normalizer or ImageNormalizer(handle.spec.input_size)
        self.latency_tracker = latency_tracker or ModerationLatencyTracker()
        self.verdicts = verdicts or VerdictCounters()

    @property
    def state(self) -> GateState:
        return self.handle.state

    # ── Public contract ──────────────────────────────────────────────────────

    async def is_image_safe(self, image_bytes: bytes) -> bool:
        """True if the image may be persisted, False if it must be rejected."""
        decision = await self.evaluate(image_bytes)
        return decision.safe

    async def are_images_safe(self, images: Iterable[bytes]) -> bool:
        """Check images in order; stop at the first unsafe one."""
        for image_bytes in images:
            if not await self.is_image_safe(image_bytes):
                return False
        return True

    async def evaluate(self, image_bytes: Optional[bytes]) -> ModerationDecision:
        """Run the gate and return the full decision.

        Raises:
            MissingImageError: ``image_bytes`` is None.
        """
        if image_bytes is None:
            raise MissingImageError("No image provided to the moderation gate")

        moderation_id = generate_ulid()
        handle = self.handle

        if handle.state is GateState.BYPASSED:
            logger.debug("Moderation bypassed", moderation_id=moderation_id)
            self.verdicts.record_safe()
            return ModerationDecision(
                moderation_id=moderation_id, safe=True, state=GateState.BYPASSED
            )

        if handle.state is not GateState.READY:
            # DEGRADED. Load failure was already logged once at startup.
            logger.debug(
                "Model not loaded — rejecting image (fail-closed)",
                moderation_id=moderation_id,
                reason=handle.failure_reason,
            )
            return self._failed(moderation_id, FailureKind.NOT_LOADED, handle.failure_reason)

        t0 = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            predictions = await loop.run_in_executor(
                self._executor, self._classify_bytes, image_bytes
            )
        except DecodeError as exc:
            self._record_latency(t0)
            logger.warning(
                "Image could not be decoded — rejecting",
                moderation_id=moderation_id,
                error=str(exc),
                size_bytes=len(image_bytes),
            )
            return self._failed(moderation_id, FailureKind.DECODE, str(exc))
        except ClassificationError as exc:
            self._record_latency(t0)
            logger.error(
                "Image classification failed — rejecting",
                moderation_id=moderation_id,
                error=str(exc),
            )
            return self._failed(moderation_id, FailureKind.CLASSIFY, str(exc))
        except Exception as exc:  # noqa: BLE001
            # Anything else escaping the pipeline still rejects
            self._record_latency(t0)
            logger.critical(
                "Unhandled moderation exception — rejecting",
                moderation_id=moderation_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return self._failed(
                moderation_id, FailureKind.CLASSIFY, f"{type(exc).__name__}: {exc}"
            )

        self._record_latency(t0)
        predictions = tuple(predictions)
        violation = self.policy.find_violation(predictions)
        if violation is not None:
            self.verdicts.record_rejected()
            logger.info(
                "Image rejected by content policy",
                moderation_id=moderation_id,
                label=violation.label,
                probability=round(violation.probability, 4),
                threshold=self.policy.threshold,
                predictions=[p.as_dict() for p in predictions],
            )
            return ModerationDecision(
                moderation_id=moderation_id,
                safe=False,
                state=GateState.READY,
                violation=violation,
                predictions=predictions,
            )

        self.verdicts.record_safe()
        logger.debug("Image accepted", moderation_id=moderation_id)
        return ModerationDecision(
            moderation_id=moderation_id,
            safe=True,
            state=GateState.READY,
            predictions=predictions,
        )

    # ── Worker side ──────────────────────────────────────────────────────────

    def _classify_bytes(self, image_bytes: bytes) -> list[Prediction]:
        """Decode + classify. Runs in the executor, never on the event loop."""
        classifier = self.handle.classifier
        if classifier is None:
            raise ClassificationError("Classifier missing from READY handle")
        buffer: Optional[PixelBuffer] = None
        try:
            buffer = self._normalizer.normalize(image_bytes)
            return classifier.classify(buffer)
        finally:
            if buffer is not None:
                buffer.release()

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _failed(
        self,
        moderation_id: str,
        kind: FailureKind,
        detail: Optional[str],
    ) -> ModerationDecision:
        self.verdicts.record_failure(kind)
        return ModerationDecision(
            moderation_id=moderation_id,
            safe=False,
            state=self.handle.state,
            failure=kind,
            detail=detail,
        )

    def _record_latency(self, t0: float) -> None:
        elapsed_ms = (time.perf_counter() - t0) * 1000
        try:
            self.latency_tracker.record(elapsed_ms)
        except Exception:  # noqa: BLE001
            pass  # Latency recording never fails a decision
