"""Unit tests for ModerationLatencyTracker, VerdictCounters and check_gate_health()."""

from __future__ import annotations

from typing import Callable

import pytest

from photogate.models.moderation import FailureKind, GateState, ModelHandle, ModelSpec
from photogate.moderation.gate import ImageModerationGate
from photogate.moderation.policy import ModerationPolicy
from photogate.utils.health import (
    GateHealth,
    ModerationLatencyTracker,
    VerdictCounters,
    check_gate_health,
)


class TestModerationLatencyTracker:
    def test_empty_tracker(self) -> None:
        tracker = ModerationLatencyTracker()
        assert tracker.avg_ms == 0.0
        assert tracker.p99_ms == 0.0
        assert tracker.count == 0

    def test_average(self) -> None:
        tracker = ModerationLatencyTracker()
        for value in (10.0, 20.0, 30.0):
            tracker.record(value)
        assert tracker.avg_ms == pytest.approx(20.0)

    def test_p99_needs_ten_samples(self) -> None:
        tracker = ModerationLatencyTracker()
        for value in range(9):
            tracker.record(float(value))
        assert tracker.p99_ms == 0.0
        tracker.record(100.0)
        assert tracker.p99_ms > 0.0

    def test_window_evicts_oldest(self) -> None:
        tracker = ModerationLatencyTracker(window=3)
        for value in (1000.0, 1.0, 1.0, 1.0):
            tracker.record(value)
        assert tracker.count == 3
        assert tracker.avg_ms == pytest.approx(1.0)


class TestVerdictCounters:
    def test_snapshot_has_every_key(self) -> None:
        snapshot = VerdictCounters().snapshot()
        assert snapshot == {
            "safe": 0,
            "rejected": 0,
            "failed_decode": 0,
            "failed_classify": 0,
            "failed_not_loaded": 0,
        }

    def test_counts(self) -> None:
        counters = VerdictCounters()
        counters.record_safe()
        counters.record_safe()
        counters.record_rejected()
        counters.record_failure(FailureKind.DECODE)
        snapshot = counters.snapshot()
        assert snapshot["safe"] == 2
        assert snapshot["rejected"] == 1
        assert snapshot["failed_decode"] == 1


class TestCheckGateHealth:
    def test_missing_gate_is_degraded(self) -> None:
        health = check_gate_health(None)
        assert isinstance(health, GateHealth)
        assert health.state is GateState.DEGRADED
        assert health.healthy is False

    def test_bypassed_is_healthy(self) -> None:
        gate = ImageModerationGate(ModelHandle.bypassed(), ModerationPolicy())
        health = check_gate_health(gate)
        assert health.state is GateState.BYPASSED
        assert health.healthy is True

    def test_ready_is_healthy(self, fake_classifier: Callable) -> None:
        gate = ImageModerationGate(
            ModelHandle.ready(fake_classifier(), ModelSpec()), ModerationPolicy()
        )
        assert check_gate_health(gate).healthy is True

    def test_degraded_reports_reason(self) -> None:
        gate = ImageModerationGate(ModelHandle.degraded("asset missing"), ModerationPolicy())
        health = check_gate_health(gate)
        assert health.healthy is False
        assert health.failure_reason == "asset missing"

    def test_latency_and_verdicts_come_from_gate(self) -> None:
        gate = ImageModerationGate(ModelHandle.bypassed(), ModerationPolicy())
        gate.latency_tracker.record(12.5)
        gate.verdicts.record_safe()
        health = check_gate_health(gate)
        assert health.avg_latency_ms == 12.5
        assert health.verdicts["safe"] == 1
