"""
In-memory metrics collector for PHI-safe observability.
Thread-safe singleton – only counters and latency sums, never identifiers.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Literal

WorkflowEvent = Literal[
    "suggestions_created",
    "suggestions_reused",
    "safety_blocked",
    "generation_failures",
    "approvals",
    "rejections",
    "version_conflicts",
    "manual_edits",
    "plans_created",
]


@dataclass
class LatencyStats:
    """Aggregated latency statistics (sum/count for average calculation)."""
    sum_ms: int = 0
    count: int = 0

    def record(self, ms: int) -> None:
        self.sum_ms += ms
        self.count += 1

    @property
    def avg_ms(self) -> float:
        return self.sum_ms / self.count if self.count > 0 else 0.0

    def as_dict(self) -> dict:
        return {"sum_ms": self.sum_ms, "count": self.count, "avg_ms": round(self.avg_ms, 2)}


@dataclass
class MetricsData:
    """Container for all aggregated metrics."""
    total_requests: int = 0
    success_count: int = 0
    error_count: int = 0
    error_codes: Dict[str, int] = field(default_factory=dict)
    latency: LatencyStats = field(default_factory=LatencyStats)
    inference_latency: LatencyStats = field(default_factory=LatencyStats)
    workflow: Dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)


class MetricsCollector:
    """
    Thread-safe singleton for collecting PHI-safe metrics.

    Usage:
        metrics = get_metrics_collector()
        metrics.record_request(latency_ms=150, success=True)
        metrics.record_event("approvals")
    """
    _instance: "MetricsCollector | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsCollector":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._data = MetricsData()
                    instance._data_lock = threading.Lock()
                    cls._instance = instance
        return cls._instance

    def record_request(
        self,
        latency_ms: int,
        success: bool,
        error_code: str | None = None,
    ) -> None:
        """Record a request completion (error_code must be a PHI-safe code)."""
        with self._data_lock:
            self._data.total_requests += 1
            self._data.latency.record(latency_ms)

            if success:
                self._data.success_count += 1
            else:
                self._data.error_count += 1
                if error_code:
                    self._data.error_codes[error_code] = (
                        self._data.error_codes.get(error_code, 0) + 1
                    )

    def record_inference(self, inference_ms: int) -> None:
        """Record the duration of one model call."""
        with self._data_lock:
            self._data.inference_latency.record(inference_ms)

    def record_event(self, event: WorkflowEvent) -> None:
        """Count one workflow outcome."""
        with self._data_lock:
            self._data.workflow[event] = self._data.workflow.get(event, 0) + 1

    def get_snapshot(self) -> dict:
        """Plain dict suitable for JSON serialization."""
        with self._data_lock:
            return {
                "uptime_seconds": int(time.time() - self._data.started_at),
                "total_requests": self._data.total_requests,
                "success_count": self._data.success_count,
                "error_count": self._data.error_count,
                "error_codes": dict(self._data.error_codes),
                "latency": self._data.latency.as_dict(),
                "inference_latency": self._data.inference_latency.as_dict(),
                "workflow": dict(self._data.workflow),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._data_lock:
            self._data = MetricsData()


def get_metrics_collector() -> MetricsCollector:
    """Get the singleton metrics collector instance."""
    return MetricsCollector()
