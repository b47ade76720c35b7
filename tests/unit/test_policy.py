"""Unit tests for the threshold decision policy."""

from __future__ import annotations

import pytest

from photogate.config import ModerationConfig
from photogate.models.moderation import Prediction
from photogate.moderation.policy import ModerationPolicy


def _preds(**scores: float) -> list[Prediction]:
    return [Prediction(label, prob) for label, prob in scores.items()]


class TestModerationPolicy:
    def test_defaults(self) -> None:
        policy = ModerationPolicy()
        assert policy.threshold == 0.5
        assert policy.reject_labels == frozenset({"Porn", "Hentai"})

    def test_threshold_is_inclusive(self) -> None:
        """A reject-label score exactly at the threshold rejects."""
        assert ModerationPolicy().is_safe(_preds(Porn=0.5)) is False

    def test_just_below_threshold_is_safe(self) -> None:
        assert ModerationPolicy().is_safe(_preds(Porn=0.4999, Hentai=0.4999)) is True

    def test_non_reject_label_never_rejects(self) -> None:
        assert ModerationPolicy().is_safe(_preds(Sexy=1.0, Drawing=1.0)) is True

    def test_typical_nsfw_output(self) -> None:
        predictions = _preds(Neutral=0.05, Drawing=0.02, Hentai=0.03, Porn=0.82, Sexy=0.08)
        violation = ModerationPolicy().find_violation(predictions)
        assert violation == Prediction("Porn", 0.82)

    def test_hentai_rejects(self) -> None:
        violation = ModerationPolicy().find_violation(_preds(Neutral=0.3, Hentai=0.7))
        assert violation is not None and violation.label == "Hentai"

    def test_empty_predictions_are_safe(self) -> None:
        assert ModerationPolicy().is_safe([]) is True

    def test_order_does_not_matter(self) -> None:
        forward = _preds(Neutral=0.4, Porn=0.6)
        assert ModerationPolicy().is_safe(forward) is ModerationPolicy().is_safe(
            list(reversed(forward))
        )

    def test_unknown_labels_are_ignored(self) -> None:
        assert ModerationPolicy().is_safe(_preds(Gore=0.99)) is True

    @pytest.mark.parametrize("threshold", [-0.01, 1.01])
    def test_threshold_out_of_range(self, threshold: float) -> None:
        with pytest.raises(ValueError):
            ModerationPolicy(threshold=threshold)

    def test_zero_threshold_rejects_any_reject_label(self) -> None:
        assert ModerationPolicy(threshold=0.0).is_safe(_preds(Porn=0.0)) is False

    def test_reject_labels_coerced_to_frozenset(self) -> None:
        policy = ModerationPolicy(reject_labels={"Porn"})  # type: ignore[arg-type]
        assert isinstance(policy.reject_labels, frozenset)

    def test_from_config(self) -> None:
        policy = ModerationPolicy.from_config(
            ModerationConfig(threshold=0.8, reject_labels=["Sexy"])
        )
        assert policy.threshold == 0.8
        assert policy.reject_labels == frozenset({"Sexy"})
        assert policy.is_safe(_preds(Sexy=0.79)) is True
        assert policy.is_safe(_preds(Sexy=0.8)) is False
