"""
Metrics Collection for Separation Operations

Collects and exposes metrics for:
- Operation lifecycle per mode (started, completed, failed)
- Processing times (average, p95)

Metrics are kept in-memory for the lifetime of the process.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class OperationMetrics:
    """Counters for reconciliation and cut operations."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0

    # By operation name (create, reinforcement, cut, ...)
    by_name: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for separation operations.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_operation_started("reinforcement")
        metrics.record_operation_completed("reinforcement", duration_ms=120)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.operations = OperationMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def record_operation_started(self, operation: str):
        """Record an operation start."""
        with self._lock:
            self.operations.started += 1
            self.operations.in_progress += 1
            self.operations.by_name[operation]["started"] += 1

    def record_operation_completed(self, operation: str, duration_ms: float = None):
        """Record an operation completion."""
        with self._lock:
            self.operations.completed += 1
            self.operations.in_progress = max(0, self.operations.in_progress - 1)
            self.operations.by_name[operation]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"operation.{operation}")

    def record_operation_failed(self, operation: str):
        """Record an operation failure."""
        with self._lock:
            self.operations.failed += 1
            self.operations.in_progress = max(0, self.operations.in_progress - 1)
            self.operations.by_name[operation]["failed"] += 1

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "operations": {
                    "started": self.operations.started,
                    "completed": self.operations.completed,
                    "failed": self.operations.failed,
                    "in_progress": self.operations.in_progress,
                    "by_name": {k: dict(v) for k, v in self.operations.by_name.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_operation_started(operation: str):
    get_metrics().record_operation_started(operation)


def record_operation_completed(operation: str, duration_ms: float = None):
    get_metrics().record_operation_completed(operation, duration_ms)


def record_operation_failed(operation: str):
    get_metrics().record_operation_failed(operation)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
