"""Decision policy — predictions to a safe/unsafe verdict."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from photogate.constants import DEFAULT_REJECT_LABELS, DEFAULT_THRESHOLD
from photogate.models.moderation import Prediction

if TYPE_CHECKING:
    from photogate.config import ModerationConfig


@dataclass(frozen=True)
class ModerationPolicy:
    """Threshold rule over a fixed set of disallowed labels.

    An image is unsafe when any prediction has a label in ``reject_labels``
    and a probability ``>= threshold`` (inclusive). Order of predictions does
    not matter; an empty prediction list is safe.
    """

    threshold: float = DEFAULT_THRESHOLD
    reject_labels: frozenset[str] = frozenset(DEFAULT_REJECT_LABELS)

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        object.__setattr__(self, "reject_labels", frozenset(self.reject_labels))

    @classmethod
    def from_config(cls, moderation: "ModerationConfig") -> "ModerationPolicy":
        return cls(
            threshold=float(moderation.threshold),
            reject_labels=frozenset(moderation.reject_labels),
        )

    def find_violation(self, predictions: Iterable[Prediction]) -> Optional[Prediction]:
        """Return the first disqualifying prediction, or None when the image is safe."""
        for prediction in predictions:
            if (
                prediction.label in self.reject_labels
                and prediction.probability >= self.threshold
            ):
                return prediction
        return None

    def is_safe(self, predictions: Iterable[Prediction]) -> bool:
        return self.find_violation(predictions) is None
