"""Moderation gate data contracts.

  - GateState          — Bypassed / Ready / Degraded, fixed for the process lifetime
  - ModelSpec          — input geometry and label vocabulary that belong to a model asset
  - ModelHandle        — tagged variant over GateState holding the loaded classifier
  - Prediction         — one (label, probability) pair from the classifier
  - FailureKind        — why a decision failed closed (kept for logs, never returned)
  - ModerationDecision — full internal outcome of one gate call
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from photogate.constants import (
    DEFAULT_INPUT_SCALE,
    DEFAULT_MODEL_LABELS,
    MODEL_INPUT_SIZE,
)

if TYPE_CHECKING:
    from photogate.config import ModelConfig
    from photogate.moderation.classifier import Classifier


class GateState(str, Enum):
    """Lifecycle state of the moderation gate.

    ``BYPASSED`` — moderation disabled by configuration; every image is safe.
    ``READY``    — classifier loaded; images are classified.
    ``DEGRADED`` — moderation enabled but no usable classifier; every image is unsafe.
    """

    BYPASSED = "bypassed"
    READY = "ready"
    DEGRADED = "degraded"


class FailureKind(str, Enum):
    """Reason a decision failed closed."""

    DECODE = "decode"
    CLASSIFY = "classify"
    NOT_LOADED = "not_loaded"


@dataclass(frozen=True)
class ModelSpec:
    """Geometry the classifier asset was trained with.

    Carried on the ModelHandle so that swapping the asset and its geometry is a
    single configuration change.
    """

    input_size: int = MODEL_INPUT_SIZE
    labels: tuple[str, ...] = DEFAULT_MODEL_LABELS
    layout: str = "NHWC"
    input_scale: float = DEFAULT_INPUT_SCALE

    @classmethod
    def from_config(cls, model: "ModelConfig") -> "ModelSpec":
        return cls(
            input_size=model.input_size,
            labels=tuple(model.labels),
            layout=model.layout,
            input_scale=float(model.input_scale),
        )

    @property
    def buffer_shape(self) -> tuple[int, int, int]:
        """Shape of the normalized pixel buffer: (height, width, 3)."""
        return (self.input_size, self.input_size, 3)


@dataclass(frozen=True)
class ModelHandle:
    """The process-wide classifier handle.

    Built once during startup and never mutated. Use the constructors rather
    than the raw initializer so that ``classifier`` is present exactly when the
    state is ``READY``.
    """

    state: GateState
    spec: ModelSpec = field(default_factory=ModelSpec)
    classifier: Optional["Classifier"] = None
    failure_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.state is GateState.READY) != (self.classifier is not None):
            raise ValueError("classifier must be present exactly when state is READY")

    @classmethod
    def bypassed(cls, spec: Optional[ModelSpec] = None) -> "ModelHandle":
        return cls(state=GateState.BYPASSED, spec=spec or ModelSpec())

    @classmethod
    def ready(cls, classifier: "Classifier", spec: ModelSpec) -> "ModelHandle":
        return cls(state=GateState.READY, spec=spec, classifier=classifier)

    @classmethod
    def degraded(cls, reason: str, spec: Optional[ModelSpec] = None) -> "ModelHandle":
        return cls(state=GateState.DEGRADED, spec=spec or ModelSpec(), failure_reason=reason)

    @classmethod
    def pending(cls, spec: Optional[ModelSpec] = None) -> "ModelHandle":
        """Handle used before the startup load finishes. Fails closed."""
        return cls.degraded("model load not complete", spec=spec)

    @property
    def enabled(self) -> bool:
        return self.state is not GateState.BYPASSED

    @property
    def loaded(self) -> bool:
        return self.state is GateState.READY


@dataclass(frozen=True)
class Prediction:
    """One classifier output: a label and its independent probability in [0, 1]."""

    label: str
    probability: float

    def as_dict(self) -> dict[str, object]:
        return {"label": self.label, "probability": round(self.probability, 4)}


@dataclass(frozen=True)
class ModerationDecision:
    """Outcome of one gate call.

    Only ``safe`` is part of the public contract; the remaining fields feed
    logging, metrics and the rejection response.
    """

    moderation_id: str
    safe: bool
    state: GateState
    failure: Optional[FailureKind] = None
    violation: Optional[Prediction] = None
    detail: Optional[str] = None
    predictions: tuple[Prediction, ...] = ()
