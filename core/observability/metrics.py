"""
Metrics Collection for the Component Library Import Pipeline

Collects and exposes metrics for:
- Match outcomes per tier (exact, fuzzy, ai, none)
- Semantic comparison failures
- Finalize outcomes (created, updated, failed)
- Processing times (average, p95)

Metrics are in-memory only and reset with the process.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class MatchMetrics:
    """Metrics for component matching."""
    candidates: int = 0
    semantic_failures: int = 0

    # Result count per match type
    by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ImportMetrics:
    """Metrics for finalize runs."""
    runs: int = 0
    blocked: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
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
    Thread-safe metrics collector for the import pipeline.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_match_result("fuzzy")
        metrics.record_processing_time("matching", duration_ms=1500)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.matches = MatchMetrics()
        self.imports = ImportMetrics()
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

    # =========================================================================
    # Match Metrics
    # =========================================================================

    def record_match_result(self, match_type: str):
        """Record the outcome of matching one candidate."""
        with self._lock:
            self.matches.candidates += 1
            self.matches.by_type[match_type] += 1

    def record_semantic_failure(self):
        """Record a semantic comparison that raised."""
        with self._lock:
            self.matches.semantic_failures += 1

    # =========================================================================
    # Import Metrics
    # =========================================================================

    def record_import_blocked(self):
        """Record a finalize refused by the pending-decision gate."""
        with self._lock:
            self.imports.blocked += 1

    def record_import_completed(self, created: int, updated: int, failed: int, duration_ms: float = None):
        """Record a finished finalize run."""
        with self._lock:
            self.imports.runs += 1
            self.imports.created += created
            self.imports.updated += updated
            self.imports.failed += failed

            if duration_ms:
                self.timings.add_sample(duration_ms, "importing")

    # =========================================================================
    # Timing Metrics
    # =========================================================================

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

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "matches": {
                    "candidates": self.matches.candidates,
                    "semantic_failures": self.matches.semantic_failures,
                    "by_type": dict(self.matches.by_type),
                },
                "imports": {
                    "runs": self.imports.runs,
                    "blocked": self.imports.blocked,
                    "created": self.imports.created,
                    "updated": self.imports.updated,
                    "failed": self.imports.failed,
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


def record_match_result(match_type: str):
    """Record the outcome of matching one candidate."""
    get_metrics().record_match_result(match_type)


def record_semantic_failure():
    """Record a semantic comparison that raised."""
    get_metrics().record_semantic_failure()


def record_import_completed(created: int, updated: int, failed: int, duration_ms: float = None):
    """Record a finished finalize run."""
    get_metrics().record_import_completed(created, updated, failed, duration_ms)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
