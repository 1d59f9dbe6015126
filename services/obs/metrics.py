"""
Observability Metrics
Resolution timings, degraded collections, dropped items and P50/P95 per use case
"""
from typing import Dict, List, Any, Optional
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, asdict, field
import statistics
import threading

logger = logging.getLogger(__name__)


@dataclass
class ResolutionMetric:
    """Metrics for a single read-model resolution"""
    use_case: str
    duration_ms: float
    success: bool
    degraded_collections: List[str] = field(default_factory=list)
    dropped_items: int = 0
    item_count: int = 0
    error_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class MetricsCollector:
    """Collects and aggregates read-model metrics"""

    def __init__(self, window: int = 1000):
        # Historical metrics (rolling window)
        self.historical_metrics = deque(maxlen=window)
        self.timings = defaultdict(lambda: deque(maxlen=window))  # use_case -> [duration_ms]
        self.degraded = defaultdict(int)  # "use_case:collection" -> count

        # Real-time counters
        self.counters = defaultdict(int)

        # Performance thresholds
        self.performance_thresholds = {
            "max_resolution_duration_ms": 1500,
            "max_degraded_rate": 0.2,
        }

        # Thread-safe lock
        self._lock = threading.Lock()

    def record_resolution(
        self,
        use_case: str,
        duration_ms: float,
        success: bool = True,
        degraded_collections: Optional[List[str]] = None,
        dropped_items: int = 0,
        item_count: int = 0,
        error_type: Optional[str] = None,
    ) -> None:
        """Record one finished resolution, successful or not."""
        metric = ResolutionMetric(
            use_case=use_case,
            duration_ms=duration_ms,
            success=success,
            degraded_collections=list(degraded_collections or []),
            dropped_items=dropped_items,
            item_count=item_count,
            error_type=error_type,
        )
        with self._lock:
            self.historical_metrics.append(metric)
            self.timings[use_case].append(duration_ms)

            self.counters[f"{use_case}.total"] += 1
            self.counters[f"{use_case}.{'success' if success else 'failed'}"] += 1
            if error_type:
                self.counters[f"{use_case}.error.{error_type}"] += 1
            if metric.degraded_collections:
                self.counters[f"{use_case}.degraded"] += 1
            for collection in metric.degraded_collections:
                self.degraded[f"{use_case}:{collection}"] += 1
            self.counters["dropped_items"] += dropped_items

        if duration_ms > self.performance_thresholds["max_resolution_duration_ms"]:
            logger.warning(f"Slow {use_case} resolution: {duration_ms:.1f}ms")

    def get_use_case_stats(self, use_case: str) -> Dict[str, Any]:
        with self._lock:
            timings = list(self.timings.get(use_case, []))
            total = self.counters.get(f"{use_case}.total", 0)
            degraded = self.counters.get(f"{use_case}.degraded", 0)
            failed = self.counters.get(f"{use_case}.failed", 0)

        if not timings:
            return {"total": total, "samples": 0}

        return {
            "total": total,
            "failed": failed,
            "degraded": degraded,
            "degraded_rate": round(degraded / total, 3) if total else 0,
            "samples": len(timings),
            "avg_duration_ms": round(statistics.mean(timings), 2),
            "p50_duration_ms": round(statistics.median(timings), 2),
            "p95_duration_ms": round(self._percentile(timings, 95), 2),
            "max_duration_ms": round(max(timings), 2),
        }

    def get_summary(self) -> Dict[str, Any]:
        """Overall summary for the metrics endpoint"""
        with self._lock:
            use_cases = sorted(self.timings.keys())
            degraded = dict(sorted(self.degraded.items(), key=lambda x: x[1], reverse=True))
            dropped = self.counters.get("dropped_items", 0)
            recent = [asdict(m) for m in list(self.historical_metrics)[-10:]]

        return {
            "use_cases": {name: self.get_use_case_stats(name) for name in use_cases},
            "degraded_collections": degraded,
            "dropped_items": dropped,
            "recent": recent,
            "alerts": self._check_alerts(use_cases),
        }

    def reset(self) -> None:
        with self._lock:
            self.historical_metrics.clear()
            self.timings.clear()
            self.degraded.clear()
            self.counters.clear()

    def _check_alerts(self, use_cases: List[str]) -> List[Dict[str, Any]]:
        alerts = []
        for name in use_cases:
            stats = self.get_use_case_stats(name)
            p95 = stats.get("p95_duration_ms", 0)
            if p95 > self.performance_thresholds["max_resolution_duration_ms"]:
                alerts.append({
                    "type": "slow_resolution",
                    "severity": "warning",
                    "use_case": name,
                    "message": f"P95 {name} duration {p95:.0f}ms exceeds threshold",
                })
            if stats.get("degraded_rate", 0) > self.performance_thresholds["max_degraded_rate"]:
                alerts.append({
                    "type": "degraded_rate",
                    "severity": "warning",
                    "use_case": name,
                    "message": f"{name} degraded rate {stats['degraded_rate']:.1%} exceeds threshold",
                })
        return alerts

    def _percentile(self, data: List[float], percentile: float) -> float:
        """Calculate percentile of data"""
        if not data:
            return 0
        sorted_data = sorted(data)
        index = (percentile / 100) * (len(sorted_data) - 1)
        if index.is_integer():
            return sorted_data[int(index)]
        else:
            lower = sorted_data[int(index)]
            upper = sorted_data[int(index) + 1]
            return lower + (upper - lower) * (index - int(index))


# Global metrics collector instance
metrics_collector = MetricsCollector()
