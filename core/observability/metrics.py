"""
Metrics Collection for the Delivery Service

In-memory counters for:
- Delivery cycles (started, completed, halted, skipped)
- Per-document outcomes (DELIVERED, ARTIFACT_MISSING, SEND_FAILED, ...)
- Salesperson notifications
- Session health (probes, reconnections, state transitions)
- Durations per stage (average, p95)

Nothing is persisted; the dashboard's /status endpoint shows the summary and
a restart starts from zero.
"""

import statistics
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, List, Optional


# =============================================================================
# Counters
# =============================================================================

@dataclass
class CycleMetrics:
    started: int = 0
    completed: int = 0
    halted: int = 0
    skipped: int = 0
    last_completed_at: Optional[datetime] = None


@dataclass
class DeliveryMetrics:
    by_outcome: Counter = field(default_factory=Counter)
    secondary_sent: int = 0
    secondary_failed: int = 0


@dataclass
class SessionMetrics:
    probes_ok: int = 0
    probes_failed: int = 0
    reconnections: Counter = field(default_factory=Counter)
    transitions: Counter = field(default_factory=Counter)


class TimingWindow:
    """Most recent duration samples per stage ("cycle", "document", ...)."""

    def __init__(self, max_samples: int = 1000):
        self.max_samples = max_samples
        self._stages: Dict[str, Deque[float]] = {}

    def add(self, stage: str, duration_ms: float) -> None:
        window = self._stages.get(stage)
        if window is None:
            window = self._stages[stage] = deque(maxlen=self.max_samples)
        window.append(duration_ms)

    def stages(self) -> List[str]:
        return sorted(self._stages)

    def stats(self, stage: str) -> Dict[str, float]:
        samples = sorted(self._stages.get(stage, ()))
        if not samples:
            return {"average_ms": 0.0, "p95_ms": 0.0, "sample_count": 0}
        rank = min(int(len(samples) * 0.95), len(samples) - 1)
        return {
            "average_ms": statistics.fmean(samples),
            "p95_ms": samples[rank],
            "sample_count": len(samples),
        }


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Process-wide, thread-safe counters.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_cycle_started()
        metrics.record_delivery_outcome("DELIVERED", duration_ms=1500)
    """

    _instance: Optional["MetricsCollector"] = None
    _instance_lock = Lock()

    def __init__(self):
        self.cycles = CycleMetrics()
        self.deliveries = DeliveryMetrics()
        self.session = SessionMetrics()
        self.timings = TimingWindow()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Cycles
    # =========================================================================

    def record_cycle_started(self):
        with self._lock:
            self.cycles.started += 1

    def record_cycle_completed(self, halted: bool = False, duration_ms: Optional[float] = None):
        """A halted cycle still counts as completed, and also as halted."""
        with self._lock:
            self.cycles.completed += 1
            if halted:
                self.cycles.halted += 1
            self.cycles.last_completed_at = datetime.now(timezone.utc)
            if duration_ms is not None:
                self.timings.add("cycle", duration_ms)

    def record_cycle_skipped(self):
        with self._lock:
            self.cycles.skipped += 1

    # =========================================================================
    # Documents
    # =========================================================================

    def record_delivery_outcome(self, outcome: str, duration_ms: Optional[float] = None):
        with self._lock:
            self.deliveries.by_outcome[outcome] += 1
            if duration_ms is not None:
                self.timings.add("document", duration_ms)

    def record_secondary_notification(self, sent: bool):
        with self._lock:
            if sent:
                self.deliveries.secondary_sent += 1
            else:
                self.deliveries.secondary_failed += 1

    # =========================================================================
    # Session
    # =========================================================================

    def record_probe(self, ok: bool):
        with self._lock:
            if ok:
                self.session.probes_ok += 1
            else:
                self.session.probes_failed += 1

    def record_state_change(self, old_state: str, new_state: str):
        with self._lock:
            self.session.transitions[f"{old_state}->{new_state}"] += 1

    def record_reconnection(self, outcome: str):
        """``outcome`` is one of started, recovered, exhausted."""
        with self._lock:
            self.session.reconnections[outcome] += 1

    # =========================================================================
    # Timings
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        with self._lock:
            self.timings.add(stage, duration_ms)

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            return self.timings.stats(stage)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Plain-dict snapshot for the dashboard."""
        with self._lock:
            last = self.cycles.last_completed_at
            reconnections = self.session.reconnections
            return {
                "cycles": {
                    "started": self.cycles.started,
                    "completed": self.cycles.completed,
                    "halted": self.cycles.halted,
                    "skipped": self.cycles.skipped,
                    "last_completed_at": last.isoformat() if last else None,
                },
                "deliveries": {
                    "by_outcome": dict(self.deliveries.by_outcome),
                    "secondary_sent": self.deliveries.secondary_sent,
                    "secondary_failed": self.deliveries.secondary_failed,
                },
                "session": {
                    "probes_ok": self.session.probes_ok,
                    "probes_failed": self.session.probes_failed,
                    "reconnections_started": reconnections["started"],
                    "reconnections_recovered": reconnections["recovered"],
                    "reconnections_exhausted": reconnections["exhausted"],
                    "transitions": dict(self.session.transitions),
                },
                "timings": {stage: self.timings.stats(stage) for stage in self.timings.stages()},
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    return MetricsCollector.instance()


def record_delivery_outcome(outcome: str, duration_ms: Optional[float] = None):
    get_metrics().record_delivery_outcome(outcome, duration_ms)


def record_probe(ok: bool):
    get_metrics().record_probe(ok)


def record_state_change(old_state: str, new_state: str):
    get_metrics().record_state_change(old_state, new_state)


def record_reconnection(outcome: str):
    get_metrics().record_reconnection(outcome)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
