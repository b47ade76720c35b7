"""Health utility classes for Photogate.

Provides:
  - ModerationLatencyTracker — rolling window of the last 100 classification latencies
  - VerdictCounters          — running totals of safe / rejected / failed-closed verdicts
  - GateHealth               — snapshot served by /health and /health/moderation
  - check_gate_health()      — builds a GateHealth from the live gate

All mutation happens on the event loop (the gate records after awaiting the
worker), so none of these need locking.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from photogate.models.moderation import FailureKind, GateState

if TYPE_CHECKING:
    from photogate.moderation.gate import ImageModerationGate

# ─── Data Types ───────────────────────────────────────────────────────────────


@dataclass
class GateHealth:
    """Snapshot of moderation gate health.

    Attributes:
        state:           Gate lifecycle state.
        healthy:         False only when the gate is DEGRADED (failing closed).
        failure_reason:  Why the model is unavailable (DEGRADED only).
        avg_latency_ms:  Rolling average of the last 100 classification durations.
        p99_latency_ms:  p99 of the last 100 classification durations.
        verdicts:        Counts keyed by "safe", "rejected" and "failed_<kind>".
    """

    state: GateState
    healthy: bool
    failure_reason: Optional[str]
    avg_latency_ms: float
    p99_latency_ms: float
    verdicts: dict[str, int] = field(default_factory=dict)


# ─── ModerationLatencyTracker ─────────────────────────────────────────────────


class ModerationLatencyTracker:
    """Rolling window of classification latency measurements (last *window* samples).

    Args:
        window: Maximum number of samples to retain (default 100).

    Usage::

        tracker = ModerationLatencyTracker()
        tracker.record(12.3)
        avg  = tracker.avg_ms
        p99  = tracker.p99_ms     # 0.0 until 10+ samples
    """

    def __init__(self, window: int = 100) -> None:
        self._times: deque[float] = deque(maxlen=window)

    def record(self, duration_ms: float) -> None:
        """Append a latency sample; the oldest sample is evicted when full."""
        self._times.append(duration_ms)

    @property
    def avg_ms(self) -> float:
        if not self._times:
            return 0.0
        return sum(self._times) / len(self._times)

    @property
    def p99_ms(self) -> float:
        """99th percentile of samples in the window; 0.0 with fewer than 10 samples."""
        if len(self._times) < 10:
            return 0.0
        sorted_times = sorted(self._times)
        idx = max(0, int(len(sorted_times) * 0.99) - 1)
        return sorted_times[idx]

    @property
    def count(self) -> int:
        return len(self._times)


# ─── VerdictCounters ──────────────────────────────────────────────────────────


class VerdictCounters:
    """Running totals of gate outcomes since process start."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def record_safe(self) -> None:
        self._counts["safe"] += 1

    def record_rejected(self) -> None:
        self._counts["rejected"] += 1

    def record_failure(self, kind: FailureKind) -> None:
        self._counts[f"failed_{kind.value}"] += 1

    def snapshot(self) -> dict[str, int]:
        keys = ["safe", "rejected"] + [f"failed_{kind.value}" for kind in FailureKind]
        return {key: self._counts.get(key, 0) for key in keys}


# ─── Gate Health Check ────────────────────────────────────────────────────────


def check_gate_health(gate: Optional["ImageModerationGate"]) -> GateHealth:
    """Return a health snapshot for the moderation gate.

    A missing gate (startup not complete) reports DEGRADED with a reason.
    """
    if gate is None:
        return GateHealth(
            state=GateState.DEGRADED,
            healthy=False,
            failure_reason="moderation gate not initialised",
            avg_latency_ms=0.0,
            p99_latency_ms=0.0,
        )

    handle = gate.handle
    return GateHealth(
        state=handle.state,
        healthy=handle.state is not GateState.DEGRADED,
        failure_reason=handle.failure_reason,
        avg_latency_ms=round(gate.latency_tracker.avg_ms, 2),
        p99_latency_ms=round(gate.latency_tracker.p99_ms, 2),
        verdicts=gate.verdicts.snapshot(),
    )
