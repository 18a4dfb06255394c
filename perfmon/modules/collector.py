"""
Metric Collector
Central orchestrator: sampling, series registry, observers, aggregation and
periodic transmission to the analytics transport
"""

import logging
import platform
import random
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..utils.config import CollectorConfig
from ..utils.metrics import PipelineMetrics
from ..utils.ring_buffer import RingBuffer
from .metric_data import (
    AlertSeverity,
    ApiSample,
    DatabaseSample,
    MetricData,
    MetricDataPoint,
    MetricType,
    Threshold,
    UiSample,
)
from .metric_series import ApiSeries, DatabaseSeries, MetricSeries, UiSeries
from .scheduling import PeriodicTask


Sample = Union[DatabaseSample, ApiSample, UiSample]
StreamSubscriber = Callable[[Dict[str, Any]], None]


class CollectorState(Enum):
    UNINITIALIZED = "uninitialized"
    COLLECTING = "collecting"
    PAUSED = "paused"
    DISPOSED = "disposed"


class PerformanceObserver:
    """
    Base class for collector observers. Override what you need; every hook
    defaults to a no-op.
    """

    def on_metric_updated(self, series: MetricSeries, data: MetricData):
        pass

    def on_threshold_exceeded(
        self,
        series: MetricSeries,
        data: MetricData,
        threshold: Threshold,
        severity: AlertSeverity,
    ):
        pass

    def on_error(self, series: MetricSeries, error: Exception):
        pass


class MetricCollector:
    """
    Owns the sampled raw buffer and the registered series.

    SECURITY STORY: This object sits on the hot path of every HTTP request,
    query and frame in the host application. Nothing it does may raise into
    that code: every recording, aggregation and transmission step catches and
    logs its own failures and counts them in ``PipelineMetrics``.

    Args:
        config: CollectorConfig (sampling rate, buffer size, timer intervals)
        alerter: Optional ThresholdAlerter receiving threshold breaches
        transport: Optional AnalyticsTransport receiving buffered points
        rng: Random source for sampling, injectable for tests
        clock: Source of "now"
        metrics: PipelineMetrics for self-monitoring
    """

    def __init__(
        self,
        config: Optional[CollectorConfig] = None,
        alerter=None,
        transport=None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self.config = config or CollectorConfig()
        self.alerter = alerter
        self.transport = transport
        self.rng = rng or random.Random()
        self.clock = clock
        self.metrics = metrics or PipelineMetrics()
        self.state = CollectorState.UNINITIALIZED

        self.buffer: RingBuffer[MetricDataPoint] = RingBuffer(self.config.buffer_capacity)
        self._series: Dict[str, MetricSeries] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}
        self._observers: List[PerformanceObserver] = []
        self._stream_subscribers: List[StreamSubscriber] = []
        self._lock = threading.RLock()

        self._aggregation_task = PeriodicTask(
            "aggregation", self.config.aggregation_interval, self.perform_aggregation
        )
        self._transmission_task = PeriodicTask(
            "transmission", self.config.transmission_interval, self.transmit_metrics
        )
        self.logger = logging.getLogger("MetricCollector")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_collecting(self) -> bool:
        return self.state == CollectorState.COLLECTING

    def initialize(self, start_timers: bool = True, start_ui_monitoring: bool = False):
        """
        Register the built-in series, start the periodic tasks and begin sampling.

        Calling it again is a no-op.

        Args:
            start_timers: Start the aggregation and transmission tasks
            start_ui_monitoring: Start the UI series' once-per-second FPS task
        """
        if self.state != CollectorState.UNINITIALIZED:
            return

        try:
            series_kwargs = {"max_history_size": self.config.max_history_size, "clock": self.clock}
            self.register_series(DatabaseSeries(**series_kwargs))
            self.register_series(ApiSeries(**series_kwargs))
            ui = UiSeries(**series_kwargs)
            self.register_series(ui)

            if start_ui_monitoring:
                ui.start_monitoring()
            if start_timers:
                self._aggregation_task.start()
                self._transmission_task.start()

            self.state = CollectorState.COLLECTING
            self.logger.info(
                f"MetricCollector initialized (buffer capacity {self.buffer.capacity}, "
                f"sampling rate {self.config.sampling_rate})"
            )
        except Exception as e:
            self.logger.error(f"Failed to initialize MetricCollector: {e}", exc_info=True)
            self.metrics.record_error("initialize")

    def start_collection(self):
        if self.state == CollectorState.PAUSED:
            self.state = CollectorState.COLLECTING
            self.logger.info("Metrics collection started")

    def stop_collection(self):
        if self.state == CollectorState.COLLECTING:
            self.state = CollectorState.PAUSED
            self.logger.info("Metrics collection stopped")

    def dispose(self):
        """Cancel timers, dispose every series and drop all subscribers."""
        if self.state == CollectorState.DISPOSED:
            return
        self.state = CollectorState.DISPOSED
        self._aggregation_task.cancel()
        self._transmission_task.cancel()

        with self._lock:
            for unsubscribe in self._unsubscribers.values():
                unsubscribe()
            for series in self._series.values():
                series.dispose()
            self._series.clear()
            self._unsubscribers.clear()
            self._observers.clear()
            self._stream_subscribers.clear()
            self.buffer.clear()
        self.logger.info("MetricCollector disposed")

    # ------------------------------------------------------------------
    # Sampled raw data points
    # ------------------------------------------------------------------

    def _should_sample(self) -> bool:
        return self.rng.random() < self.config.sampling_rate

    def record_metric_data(self, point: MetricDataPoint) -> bool:
        """
        Offer a raw data point to the buffer.

        A Bernoulli trial with the configured sampling rate decides whether it
        is kept; rejected points are dropped silently.

        Returns:
            True if the point was kept
        """
        if not self.is_collecting:
            return False

        try:
            accepted = self._should_sample()
            self.metrics.record_offered(accepted)
            if not accepted:
                return False

            with self._lock:
                self.buffer.add(point)
            self._publish({
                "type": "metric_recorded",
                "data": point.to_dict(),
                "timestamp": self.clock().isoformat(),
            })
            return True
        except Exception as e:
            self.logger.error(f"Failed to record metric {point.name}: {e}")
            self.metrics.record_error("record")
            return False

    def record_sample(self, sample: Sample) -> bool:
        """Offer a per-category sample to the buffer."""
        return self.record_metric_data(sample.to_data_point(self.clock()))

    def record_custom_metric(
        self,
        name: str,
        value: float,
        metric_type: MetricType = MetricType.UI,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.record_metric_data(MetricDataPoint(
            type=metric_type,
            name=name,
            value=float(value),
            metadata=dict(metadata or {}),
            timestamp=self.clock(),
        ))

    # ------------------------------------------------------------------
    # Category measurements
    # ------------------------------------------------------------------

    def record_query(
        self,
        query: str,
        duration_ms: float,
        from_cache: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Record an executed SQL query on the database series and offer it for sampling."""
        if not self.is_collecting:
            return
        try:
            series = self._series.get("database")
            if isinstance(series, DatabaseSeries):
                series.record_query(query, duration_ms, from_cache=from_cache, metadata=metadata)
            self.record_sample(DatabaseSample(
                query_name=DatabaseSeries.extract_query_type(query),
                duration_ms=duration_ms,
                from_cache=from_cache,
                metadata=dict(metadata or {}),
            ))
        except Exception as e:
            self.logger.error(f"Failed to record query: {e}")
            self.metrics.record_error("record_query")

    def record_request(self, sample: ApiSample, request_size: Optional[int] = None):
        """Record a finished HTTP request on the API series and offer it for sampling."""
        if not self.is_collecting:
            return
        try:
            series = self._series.get("api")
            if isinstance(series, ApiSeries):
                series.record_request(
                    sample.endpoint,
                    sample.status_code or 0,
                    sample.duration_ms,
                    method=sample.method,
                    request_size=request_size,
                    response_size=sample.response_size,
                    metadata={"error": sample.error} if sample.error else None,
                )
            self.record_sample(sample)
        except Exception as e:
            self.logger.error(f"Failed to record request: {e}")
            self.metrics.record_error("record_request")

    def record_frame(self, build_ms: float, raster_ms: float = 0.0):
        """Record one rendered frame on the UI series and offer it for sampling."""
        if not self.is_collecting:
            return
        try:
            series = self._series.get("ui")
            if isinstance(series, UiSeries):
                series.record_frame(build_ms, raster_ms)
            self.record_sample(UiSample(
                name="frame_time",
                value=build_ms + raster_ms,
                metadata={"build_ms": build_ms, "raster_ms": raster_ms},
            ))
        except Exception as e:
            self.logger.error(f"Failed to record frame: {e}")
            self.metrics.record_error("record_frame")

    @contextmanager
    def measure_database_query(
        self,
        query_name: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Iterator[None]:
        """
        Time the enclosed block as a database operation.

        Example:
            with collector.measure_database_query("load_news"):
                rows = repo.load_news()

        The duration is recorded even when the block raises; the error is
        attached to the measurement and the exception continues to the caller.
        """
        started = time.perf_counter()
        error: Optional[str] = None
        try:
            yield
        except Exception as e:
            error = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            self._record_operation(query_name, duration_ms, error, metadata)

    def measure(self, query_name: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call *fn* inside ``measure_database_query`` and return its result."""
        with self.measure_database_query(query_name):
            return fn(*args, **kwargs)

    def _record_operation(
        self,
        query_name: str,
        duration_ms: float,
        error: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ):
        if not self.is_collecting:
            return
        try:
            series = self._series.get("database")
            if series is not None:
                series.record(
                    DatabaseSeries.OPERATION_DURATION,
                    duration_ms,
                    unit="ms",
                    metadata={"operation": query_name, "error": error, **(metadata or {})},
                )
            self.record_sample(DatabaseSample(
                query_name=query_name,
                duration_ms=duration_ms,
                error=error,
                metadata=dict(metadata or {}),
            ))
        except Exception as e:
            self.logger.error(f"Failed to record operation {query_name}: {e}")
            self.metrics.record_error("record_operation")

    # ------------------------------------------------------------------
    # Series registry and observers
    # ------------------------------------------------------------------

    def register_series(self, series: MetricSeries):
        """Register *series*, wiring its threshold breaches and updates into the collector."""
        with self._lock:
            previous = self._unsubscribers.pop(series.name, None)
            if previous is not None:
                previous()
            series.on_threshold_exceeded = self._on_threshold_exceeded
            self._series[series.name] = series
            self._unsubscribers[series.name] = series.subscribe(
                lambda data, s=series: self._on_series_update(s, data)
            )

    def get_series(self, name: str) -> Optional[MetricSeries]:
        with self._lock:
            return self._series.get(name)

    @property
    def all_series(self) -> Dict[str, MetricSeries]:
        with self._lock:
            return dict(self._series)

    def add_observer(self, observer: PerformanceObserver):
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove_observer(self, observer: PerformanceObserver):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def subscribe(self, callback: StreamSubscriber) -> Callable[[], None]:
        """Subscribe to the global stream; returns an unsubscribe function."""
        with self._lock:
            self._stream_subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._stream_subscribers:
                    self._stream_subscribers.remove(callback)

        return unsubscribe

    def _publish(self, message: Dict[str, Any]):
        with self._lock:
            subscribers = list(self._stream_subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception as e:
                self.logger.error(f"Stream subscriber failed: {e}")

    def _observers_snapshot(self) -> List[PerformanceObserver]:
        with self._lock:
            return list(self._observers)

    def _on_series_update(self, series: MetricSeries, data: MetricData):
        self._publish({
            "metric_type": series.name,
            "data": data.to_dict(),
            "timestamp": self.clock().isoformat(),
        })
        for observer in self._observers_snapshot():
            try:
                observer.on_metric_updated(series, data)
            except Exception as e:
                self.logger.error(f"Observer notification error: {e}")
                self._notify_error(observer, series, e)

    def _on_threshold_exceeded(
        self,
        series: MetricSeries,
        data: MetricData,
        threshold: Threshold,
        severity: AlertSeverity,
    ):
        for observer in self._observers_snapshot():
            try:
                observer.on_threshold_exceeded(series, data, threshold, severity)
            except Exception as e:
                self.logger.error(f"Threshold notification error: {e}")
                self._notify_error(observer, series, e)

        if self.alerter is None:
            return
        try:
            event = self.alerter.trigger_alert(series.name, data, threshold, severity)
            if event is not None:
                self.metrics.record_alert()
        except Exception as e:
            self.logger.error(f"Alert dispatch failed for {series.name}.{threshold.name}: {e}")
            self.metrics.record_error("alert")

    def _notify_error(self, observer: PerformanceObserver, series: MetricSeries, error: Exception):
        try:
            observer.on_error(series, error)
        except Exception as e:
            self.logger.error(f"Observer error handler failed: {e}")

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def perform_aggregation(self) -> Dict[str, Any]:
        """Summarize every series over the aggregation window and publish it."""
        aggregated: Dict[str, Any] = {"timestamp": self.clock().isoformat(), "metrics": {}}
        try:
            window = timedelta(seconds=self.config.aggregation_window)
            for name, series in self.all_series.items():
                latest = series.latest
                aggregated["metrics"][name] = {
                    "statistics": series.get_statistics(window),
                    "latest_value": latest.value if latest else None,
                    "data_points": len(series.history),
                }
            self._publish({"type": "aggregation", "data": aggregated})
            self.logger.debug(f"Aggregation complete for {len(aggregated['metrics'])} series")
        except Exception as e:
            self.logger.error(f"Aggregation failed: {e}", exc_info=True)
            self.metrics.record_error("aggregation")
        return aggregated

    def transmit_metrics(self) -> int:
        """
        Drain the sampled buffer into the analytics transport.

        Points the transport did not accept go back into the buffer for the
        next run.

        Returns:
            Number of points handed to the transport
        """
        if self.transport is None or self.buffer.is_empty:
            return 0

        with self._lock:
            points = self.buffer.to_list()
            self.buffer.clear()

        handed = 0
        try:
            for point in points:
                self.transport.track_data_point(point)
                handed += 1
            self.transport.flush()
            self.logger.info(f"Transmitted {handed} metrics to analytics")
        except Exception as e:
            self.logger.error(f"Failed to transmit metrics: {e}", exc_info=True)
            self.metrics.record_error("transmit")
            with self._lock:
                for point in points[handed:]:
                    self.buffer.add(point)
        return handed

    def create_snapshot(self) -> Dict[str, Any]:
        """Point-in-time view of every series, the system and the pipeline itself."""
        snapshot: Dict[str, Any] = {
            "timestamp": self.clock().isoformat(),
            "metrics": {},
        }
        try:
            snapshot["system_info"] = self._get_system_info()
            snapshot["pipeline"] = self.metrics.get_summary()
            snapshot["buffer_size"] = len(self.buffer)
            for name, series in self.all_series.items():
                latest = series.latest
                snapshot["metrics"][name] = {
                    "latest": latest.to_dict() if latest else None,
                    "statistics": series.get_statistics(),
                    "thresholds": {k: v.to_dict() for k, v in series.thresholds.items()},
                }
        except Exception as e:
            self.logger.error(f"Snapshot failed: {e}", exc_info=True)
            self.metrics.record_error("snapshot")
        return snapshot

    def _get_system_info(self) -> Dict[str, Any]:
        return {
            "platform": platform.system().lower(),
            "version": platform.release(),
            "python_version": platform.python_version(),
            "timestamp": self.clock().isoformat(),
        }
