"""
Metric Series
Per-metric bounded history, threshold evaluation and summary statistics,
plus the built-in database, API and UI series.
"""

import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

from ..utils.metrics import compute_statistics
from ..utils.sanitization import sanitize_query
from .metric_data import AlertSeverity, MetricData, Threshold
from .scheduling import PeriodicTask


ThresholdCallback = Callable[["MetricSeries", MetricData, Threshold, AlertSeverity], None]
Subscriber = Callable[[MetricData], None]

FRAME_BUDGET_MS = 16.0


class MetricSeries:
    """
    Append-only, bounded history for one logical metric family.

    Every ``record_data`` call appends to the history (dropping the oldest
    entry once ``max_history_size`` is reached), publishes the entry to
    subscribers and evaluates the registered thresholds. Breaches are handed
    to ``on_threshold_exceeded``; the collector wires that to observers and
    the alerter.

    Args:
        name: Series name ("database", "api", ...)
        max_history_size: History bound
        on_threshold_exceeded: Called as (series, data, threshold, severity)
        clock: Source of "now", injectable for tests
    """

    def __init__(
        self,
        name: str,
        max_history_size: int = 1000,
        on_threshold_exceeded: Optional[ThresholdCallback] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if max_history_size <= 0:
            raise ValueError(f"max_history_size must be positive, got {max_history_size}")
        self.name = name
        self.max_history_size = max_history_size
        self.on_threshold_exceeded = on_threshold_exceeded
        self.clock = clock
        self._history: Deque[MetricData] = deque(maxlen=max_history_size)
        self._thresholds: Dict[str, Threshold] = {}
        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()
        self.logger = logging.getLogger(f"MetricSeries.{name}")

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def set_threshold(self, threshold: Threshold) -> None:
        with self._lock:
            self._thresholds[threshold.name] = threshold

    def remove_threshold(self, name: str) -> None:
        with self._lock:
            self._thresholds.pop(name, None)

    @property
    def thresholds(self) -> Dict[str, Threshold]:
        with self._lock:
            return dict(self._thresholds)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[MetricData]:
        with self._lock:
            return list(self._history)

    @property
    def latest(self) -> Optional[MetricData]:
        with self._lock:
            return self._history[-1] if self._history else None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for every recorded entry; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def record(
        self,
        metric_name: str,
        value: float,
        unit: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> MetricData:
        """Build a MetricData stamped with the series clock and record it."""
        data = MetricData(
            metric_name=metric_name,
            value=float(value),
            metadata=dict(metadata or {}),
            timestamp=self.clock(),
            unit=unit,
        )
        self.record_data(data)
        return data

    def record_data(self, data: MetricData) -> None:
        """Append *data*, notify subscribers and evaluate thresholds."""
        with self._lock:
            self._history.append(data)
            subscribers = list(self._subscribers)
            thresholds = list(self._thresholds.values())

        for callback in subscribers:
            try:
                callback(data)
            except Exception as e:
                self.logger.error(f"Subscriber failed for {data.metric_name}: {e}")

        self._check_thresholds(data, thresholds)

    def _check_thresholds(self, data: MetricData, thresholds: List[Threshold]) -> None:
        for threshold in thresholds:
            if not threshold.applies_to(data.metric_name):
                continue
            severity = threshold.check(data.value)
            if severity is None or self.on_threshold_exceeded is None:
                continue
            try:
                self.on_threshold_exceeded(self, data, threshold, severity)
            except Exception as e:
                self.logger.error(
                    f"Threshold handler failed for {self.name}.{threshold.name}: {e}"
                )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _window(self, period: Optional[timedelta]) -> List[MetricData]:
        history = self.history
        if period is None:
            return history
        now = self.clock()
        return [d for d in history if now - d.timestamp <= period]

    def get_statistics(self, period: Optional[timedelta] = None) -> Dict[str, float]:
        """
        Summary statistics over the history.

        Args:
            period: Look-back window; None means the whole history

        Returns:
            {min, max, avg, median, count}; zeros with count 0 when empty
        """
        return compute_statistics(d.value for d in self._window(period))

    def dispose(self) -> None:
        with self._lock:
            self._history.clear()
            self._thresholds.clear()
            self._subscribers.clear()


def _duration_summary(samples: Deque[float]) -> Dict[str, float]:
    stats = compute_statistics(samples)
    return {
        "count": stats["count"],
        "avg_time_ms": stats["avg"],
        "min_time_ms": stats["min"],
        "max_time_ms": stats["max"],
    }


class DatabaseSeries(MetricSeries):
    """Query time and cache hit rate"""

    QUERY_TIME = "database_query_time"
    CACHE_HIT_RATE = "database_cache_hit_rate"
    CONNECTION_POOL = "database_connection_pool"
    OPERATION_DURATION = "operation_duration"

    QUERY_TYPES = ("SELECT", "INSERT", "UPDATE", "DELETE")

    def __init__(self, **kwargs):
        super().__init__(name="database", **kwargs)
        self.total_queries = 0
        self.cache_hits = 0
        self._query_times: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=self.max_history_size)
        )

        self.set_threshold(Threshold(
            name="query_time",
            warning_level=100.0,
            critical_level=500.0,
            metric_names=frozenset({self.QUERY_TIME, self.OPERATION_DURATION}),
        ))
        self.set_threshold(Threshold(
            name="cache_hit_rate",
            warning_level=70.0,
            critical_level=50.0,
            metric_names=frozenset({self.CACHE_HIT_RATE}),
            higher_is_worse=False,
        ))

    @classmethod
    def extract_query_type(cls, query: str) -> str:
        normalized = query.strip().upper()
        for query_type in cls.QUERY_TYPES:
            if normalized.startswith(query_type):
                return query_type
        return "OTHER"

    def record_query(
        self,
        query: str,
        duration_ms: float,
        from_cache: bool = False,
        metadata: Optional[Dict] = None,
    ) -> None:
        """Record one executed query plus the running cache hit rate."""
        query_type = self.extract_query_type(query)
        with self._lock:
            self.total_queries += 1
            if from_cache:
                self.cache_hits += 1
            self._query_times[query_type].append(float(duration_ms))
            hit_rate = self.cache_hits / self.total_queries * 100
            total, hits = self.total_queries, self.cache_hits

        self.record(
            self.QUERY_TIME,
            duration_ms,
            unit="ms",
            metadata={
                "query_type": query_type,
                "from_cache": from_cache,
                "query": sanitize_query(query),
                **(metadata or {}),
            },
        )
        self.record(
            self.CACHE_HIT_RATE,
            hit_rate,
            unit="%",
            metadata={"total_queries": total, "cache_hits": hits},
        )

    def record_connection_pool(
        self,
        active_connections: int,
        total_connections: int,
        waiting_requests: int,
    ) -> None:
        utilization = (active_connections / total_connections * 100) if total_connections else 0.0
        self.record(
            self.CONNECTION_POOL,
            utilization,
            unit="%",
            metadata={
                "active_connections": active_connections,
                "total_connections": total_connections,
                "waiting_requests": waiting_requests,
            },
        )

    def get_query_report(self) -> Dict:
        with self._lock:
            return {
                "total_queries": self.total_queries,
                "cache_hits": self.cache_hits,
                "cache_hit_rate": (self.cache_hits / self.total_queries * 100) if self.total_queries else 0.0,
                "query_types": {
                    query_type: _duration_summary(times)
                    for query_type, times in self._query_times.items()
                    if times
                },
            }


class ApiSeries(MetricSeries):
    """Response time, error rate and throughput"""

    RESPONSE_TIME = "api_response_time"
    ERROR_RATE = "api_error_rate"
    THROUGHPUT = "api_throughput"
    NETWORK_LATENCY = "api_network_latency"

    def __init__(self, **kwargs):
        super().__init__(name="api", **kwargs)
        self.total_requests = 0
        self.error_requests = 0
        self.status_codes: Dict[int, int] = defaultdict(int)
        self._endpoint_times: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=self.max_history_size)
        )

        self.set_threshold(Threshold(
            name="response_time",
            warning_level=1000.0,
            critical_level=3000.0,
            metric_names=frozenset({self.RESPONSE_TIME}),
        ))
        self.set_threshold(Threshold(
            name="error_rate",
            warning_level=5.0,
            critical_level=10.0,
            metric_names=frozenset({self.ERROR_RATE}),
        ))

    def record_request(
        self,
        endpoint: str,
        status_code: int,
        duration_ms: float,
        method: str = "GET",
        request_size: Optional[int] = None,
        response_size: Optional[int] = None,
        metadata: Optional[Dict] = None,
    ) -> None:
        """Record one request: response time, running error rate and throughput."""
        is_error = status_code >= 400 or status_code == 0
        with self._lock:
            self.total_requests += 1
            if is_error:
                self.error_requests += 1
            self._endpoint_times[endpoint].append(float(duration_ms))
            self.status_codes[status_code] += 1
            error_rate = self.error_requests / self.total_requests * 100
            totals = (self.total_requests, self.error_requests, dict(self.status_codes))

        self.record(
            self.RESPONSE_TIME,
            duration_ms,
            unit="ms",
            metadata={
                "endpoint": endpoint,
                "method": method.upper(),
                "status_code": status_code,
                "request_size": request_size,
                "response_size": response_size,
                "is_error": is_error,
                **(metadata or {}),
            },
        )
        self.record(
            self.ERROR_RATE,
            error_rate,
            unit="%",
            metadata={
                "total_requests": totals[0],
                "error_requests": totals[1],
                "status_codes": totals[2],
            },
        )
        self._record_throughput()

    def record_network_latency(self, latency_ms: float, host: str) -> None:
        self.record(
            self.NETWORK_LATENCY,
            latency_ms,
            unit="ms",
            metadata={"host": host, "measurement_time": self.clock().isoformat()},
        )

    def _record_throughput(self) -> None:
        cutoff = self.clock() - timedelta(minutes=1)
        recent = sum(
            1 for d in self.history
            if d.metric_name == self.RESPONSE_TIME and d.timestamp > cutoff
        )
        self.record(
            self.THROUGHPUT,
            recent / 60.0,
            unit="rps",
            metadata={"measurement_window": "1_minute", "total_requests_in_window": recent},
        )

    def get_api_report(self) -> Dict:
        with self._lock:
            endpoints = {}
            for endpoint, times in self._endpoint_times.items():
                if not times:
                    continue
                stats = compute_statistics(times)
                endpoints[endpoint] = {
                    "request_count": stats["count"],
                    "avg_response_time_ms": stats["avg"],
                    "min_response_time_ms": stats["min"],
                    "max_response_time_ms": stats["max"],
                }
            return {
                "total_requests": self.total_requests,
                "error_requests": self.error_requests,
                "error_rate": (self.error_requests / self.total_requests * 100) if self.total_requests else 0.0,
                "status_codes": dict(self.status_codes),
                "endpoints": endpoints,
            }


class UiSeries(MetricSeries):
    """Frame build time, FPS and scroll performance"""

    BUILD_TIME = "ui_build_time"
    WIDGET_BUILD_TIME = "ui_widget_build_time"
    FPS = "ui_fps"
    SCROLL_PERFORMANCE = "ui_scroll_performance"

    MAX_FRAME_SAMPLES = 60

    def __init__(self, fps_interval: float = 1.0, **kwargs):
        super().__init__(name="ui", **kwargs)
        # (timestamp, total frame ms) for the last MAX_FRAME_SAMPLES frames
        self._frames: Deque[Tuple[datetime, float]] = deque(maxlen=self.MAX_FRAME_SAMPLES)
        self._build_times: Deque[float] = deque(maxlen=self.MAX_FRAME_SAMPLES)
        self._fps_task = PeriodicTask("ui-fps", fps_interval, self.compute_fps)

        self.set_threshold(Threshold(
            name="fps",
            warning_level=55.0,
            critical_level=30.0,
            metric_names=frozenset({self.FPS}),
            higher_is_worse=False,
        ))
        self.set_threshold(Threshold(
            name="build_time",
            warning_level=25.0,
            critical_level=50.0,
            metric_names=frozenset({self.BUILD_TIME, self.WIDGET_BUILD_TIME}),
        ))

    @property
    def is_monitoring(self) -> bool:
        return self._fps_task.is_running

    def start_monitoring(self) -> None:
        self._fps_task.start()

    def stop_monitoring(self) -> None:
        self._fps_task.cancel()

    def record_frame(self, build_ms: float, raster_ms: float = 0.0, vsync_overhead_ms: float = 0.0) -> None:
        """Record one rendered frame's timings."""
        total_ms = build_ms + raster_ms
        with self._lock:
            self._frames.append((self.clock(), total_ms))
            self._build_times.append(build_ms)

        self.record(
            self.BUILD_TIME,
            build_ms,
            unit="ms",
            metadata={
                "raster_time_ms": raster_ms,
                "total_frame_time_ms": total_ms,
                "vsync_overhead": vsync_overhead_ms,
            },
        )

    def compute_fps(self) -> Optional[float]:
        """
        Count frames seen in the last second and record it as FPS.

        Frames older than a second are discarded first. With no frames in the
        window nothing is recorded and None is returned, so an idle screen is
        not reported as 0 FPS.
        """
        with self._lock:
            cutoff = self.clock() - timedelta(seconds=1)
            while self._frames and self._frames[0][0] < cutoff:
                self._frames.popleft()
            if not self._frames:
                return None
            recent = len(self._frames)
            avg_frame_ms = sum(ms for _, ms in self._frames) / recent

        fps = float(recent)
        self.record(
            self.FPS,
            fps,
            unit="fps",
            metadata={"frame_count_last_second": recent, "avg_frame_time_ms": avg_frame_ms},
        )
        return fps

    def record_build_time(self, widget_name: str, build_ms: float) -> None:
        self.record(
            self.WIDGET_BUILD_TIME,
            build_ms,
            unit="ms",
            metadata={"widget_name": widget_name, "build_timestamp": self.clock().isoformat()},
        )

    def record_scroll_performance(self, scroll_delta: float, frame_ms: float, is_janky: bool = False) -> None:
        self.record(
            self.SCROLL_PERFORMANCE,
            frame_ms,
            unit="ms",
            metadata={
                "scroll_delta": scroll_delta,
                "is_janky": is_janky,
                "frame_budget_exceeded": frame_ms > FRAME_BUDGET_MS,
            },
        )

    def get_ui_report(self) -> Dict:
        with self._lock:
            frame_times = [ms for _, ms in self._frames]
            build_times = list(self._build_times)

        avg_frame = sum(frame_times) / len(frame_times) if frame_times else 0.0
        misses = sum(1 for ms in build_times if ms > FRAME_BUDGET_MS)
        return {
            "is_monitoring": self.is_monitoring,
            "avg_fps": (1000.0 / avg_frame) if avg_frame > 0 else 0.0,
            "avg_build_time_ms": (sum(build_times) / len(build_times)) if build_times else 0.0,
            "frame_budget_misses": misses,
            "janky_frame_percentage": (misses / len(build_times) * 100) if build_times else 0.0,
        }

    def dispose(self) -> None:
        self.stop_monitoring()
        super().dispose()
