"""
Statistics Module
Summary statistics over metric values and self-metrics for the pipeline itself
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Iterable

import numpy as np


EMPTY_STATISTICS = {"min": 0.0, "max": 0.0, "avg": 0.0, "median": 0.0, "count": 0}


def compute_statistics(values: Iterable[float]) -> Dict[str, float]:
    """
    Compute min/max/avg/median/count for a collection of values.

    Args:
        values: Any iterable of numbers (order does not matter)

    Returns:
        Dictionary with min, max, avg, median and count. An empty input
        yields all zeros with count 0 instead of raising.

    TEACHING MOMENT: The median uses the textbook even/odd split: for an even
    number of samples it is the mean of the two middle values, so
    [10, 20, 30, 40] has median 25 and [10, 20, 30] has median 20.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return dict(EMPTY_STATISTICS)

    return {
        "min": float(arr.min()),
        "max": float(arr.max()),
        "avg": float(arr.mean()),
        "median": float(np.median(arr)),
        "count": int(arr.size),
    }


def percentile(values: Iterable[float], pct: float) -> float:
    """
    Nearest-rank percentile (the value at or below which *pct* percent of
    samples fall). Returns 0.0 for an empty input.
    """
    arr = np.sort(np.asarray(list(values), dtype=float))
    if arr.size == 0:
        return 0.0
    index = max(0, int(np.ceil(arr.size * pct / 100.0)) - 1)
    return float(arr[index])


@dataclass
class PipelineMetrics:
    """
    Operational counters for the metrics pipeline itself.

    PATTERN RECOGNITION: A monitoring system should be able to answer "is
    monitoring working?". These counters show how many points were offered,
    how many survived sampling, how many batches went out and which errors
    were swallowed along the way, without ever raising into producer code.
    """

    points_offered: int = 0
    points_sampled: int = 0
    batches_transmitted: int = 0
    alerts_fired: int = 0
    errors_count: Counter = field(default_factory=Counter)

    # Transmission durations in milliseconds, bounded to keep memory flat
    transmission_time_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=100))

    start_time: datetime = field(default_factory=datetime.now)

    def record_offered(self, accepted: bool):
        """Record one call to the recording API and whether sampling kept it."""
        self.points_offered += 1
        if accepted:
            self.points_sampled += 1

    def record_transmission(self, time_ms: float):
        self.batches_transmitted += 1
        self.transmission_time_ms.append(time_ms)

    def record_alert(self):
        self.alerts_fired += 1

    def record_error(self, error_type: str):
        """
        Record that an error was caught and swallowed.

        Args:
            error_type: Where it happened (e.g., "record", "aggregation", "transmit")
        """
        self.errors_count[error_type] += 1

    @property
    def sampling_ratio(self) -> float:
        if self.points_offered == 0:
            return 0.0
        return self.points_sampled / self.points_offered

    def get_summary(self) -> Dict:
        """Summary suitable for logging or for inclusion in a snapshot."""
        return {
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
            "points_offered": self.points_offered,
            "points_sampled": self.points_sampled,
            "sampling_ratio": self.sampling_ratio,
            "batches_transmitted": self.batches_transmitted,
            "alerts_fired": self.alerts_fired,
            "transmission_time_stats": compute_statistics(self.transmission_time_ms),
            "errors": dict(self.errors_count),
        }

    def reset(self):
        """Reset all counters and restart the uptime clock."""
        self.points_offered = 0
        self.points_sampled = 0
        self.batches_transmitted = 0
        self.alerts_fired = 0
        self.errors_count.clear()
        self.transmission_time_ms.clear()
        self.start_time = datetime.now()
