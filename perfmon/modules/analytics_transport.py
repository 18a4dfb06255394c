"""
Analytics Transport
Batches analytics events and ships them to a remote HTTP endpoint with retry
"""

import logging
import platform
import random
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

import requests

from ..utils.config import AnalyticsConfig
from ..utils.metrics import PipelineMetrics
from ..utils.sanitization import redact_url
from .metric_data import MetricDataPoint
from .scheduling import PeriodicTask


APP_VERSION = "1.0.0"
CRASH_REPORT_EVENT = "crash_report"


class EventType(Enum):
    CUSTOM = "custom"
    PERFORMANCE = "performance"
    ERROR = "error"
    NAVIGATION = "navigation"
    USER = "user"


@dataclass(frozen=True)
class AnalyticsEvent:
    """A single event queued for the analytics endpoint"""
    name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    type: EventType = EventType.CUSTOM
    value: float = 1.0
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_critical(self) -> bool:
        """Critical events survive a failed send and are queued again."""
        return self.type == EventType.ERROR or self.name == CRASH_REPORT_EVENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "properties": dict(self.properties),
            "type": self.type.value,
            "userId": self.user_id,
            "sessionId": self.session_id,
        }


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

class TransportError(Exception):
    """Base class for failures while sending a batch"""


class TransientTransportError(TransportError):
    """Connection error, timeout or 5xx: worth retrying"""


class PermanentTransportError(TransportError):
    """4xx or malformed request: retrying cannot help"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ----------------------------------------------------------------------
# Retry
# ----------------------------------------------------------------------

@dataclass
class RetryPolicy:
    """
    Exponential backoff with jitter for transient transport failures.

    Attempt n (1-based) that fails transiently is followed by a wait of
    ``base_delay * 2**(n-1) + uniform(0, jitter)`` seconds, capped at
    ``max_delay``. Permanent errors are raised immediately.

    ``sleep`` and ``rng`` are injectable so tests can record delays instead
    of waiting.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter: float = 1.0
    sleep: Callable[[float], None] = time.sleep
    rng: random.Random = field(default_factory=random.Random)

    def compute_delay(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** (attempt - 1)) + self.rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def call(self, operation: Callable[[], Any]) -> Any:
        """Run *operation*, retrying on TransientTransportError."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except TransientTransportError:
                if attempt >= self.max_attempts:
                    raise
                self.sleep(self.compute_delay(attempt))


# ----------------------------------------------------------------------
# Connectivity
# ----------------------------------------------------------------------

class ConnectivityMonitor:
    """
    Polls a TCP endpoint and reports reachability changes.

    Args:
        host: Host to probe (usually the analytics endpoint's host)
        port: TCP port to probe
        interval: Seconds between probes
        on_change: Called with the new state whenever reachability flips
        timeout: Per-probe connect timeout in seconds
    """

    def __init__(
        self,
        host: str,
        port: int = 443,
        interval: float = 30.0,
        on_change: Optional[Callable[[bool], None]] = None,
        timeout: float = 3.0,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.on_change = on_change
        self.is_connected = True
        self._task = PeriodicTask("connectivity", interval, self.poll)
        self.logger = logging.getLogger("ConnectivityMonitor")

    def check(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError:
            return False

    def poll(self) -> bool:
        available = self.check()
        if available != self.is_connected:
            self.is_connected = available
            self.logger.info(f"Network {'restored' if available else 'lost'} ({self.host}:{self.port})")
            if self.on_change is not None:
                self.on_change(available)
        return available

    def start(self):
        self._task.start()

    def stop(self):
        self._task.cancel()


# ----------------------------------------------------------------------
# Batch queue
# ----------------------------------------------------------------------

class BatchQueue:
    """
    Bounded FIFO of pending events with size- and time-based flush triggers.

    When the queue is full the oldest quarter is dropped to make room. Reaching
    ``max_batch_size`` triggers a flush right away (on a timer thread, so the
    producer is never blocked on network I/O); otherwise a delayed flush is
    armed ``batch_interval`` seconds out. An armed delayed flush is not pushed
    back by later events, so at most one timer thread is pending at a time.

    Args:
        on_batch_ready: Called with the drained events
        timer_factory: ``threading.Timer`` compatible factory, injectable for tests
    """

    def __init__(
        self,
        on_batch_ready: Callable[[List[AnalyticsEvent]], None],
        max_batch_size: int = 50,
        batch_interval: float = 120.0,
        max_queue_size: int = 1000,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.on_batch_ready = on_batch_ready
        self.max_batch_size = max_batch_size
        self.batch_interval = batch_interval
        self.max_queue_size = max_queue_size
        self.timer_factory = timer_factory
        self.dropped = 0
        self._events: Deque[AnalyticsEvent] = deque()
        self._timer: Optional[threading.Timer] = None
        self._timer_delay = 0.0
        self._lock = threading.Lock()
        self.logger = logging.getLogger("BatchQueue")

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def add(self, event: AnalyticsEvent, allow_immediate: bool = True, force: bool = False):
        """
        Append *event* and arm the flush timer.

        Args:
            allow_immediate: Let the size trigger fire (callers pass False while offline)
            force: Flush right away regardless of the queue size
        """
        with self._lock:
            self._make_room(1)
            self._events.append(event)
            ready = force or (allow_immediate and len(self._events) >= self.max_batch_size)
            self._schedule(0 if ready else self.batch_interval)

    def requeue(self, events: List[AnalyticsEvent]):
        """Put *events* back at the front in one step and arm a single delayed flush."""
        if not events:
            return
        with self._lock:
            self._events.extendleft(reversed(events))
            overflow = len(self._events) - self.max_queue_size
            if overflow > 0:
                for _ in range(overflow):
                    self._events.popleft()
                self.dropped += overflow
                self.logger.warning(f"Event queue full, dropped {overflow} oldest events")
            self._schedule(self.batch_interval)

    def _make_room(self, incoming: int):
        # Caller holds the lock
        if len(self._events) + incoming > self.max_queue_size:
            to_drop = min(max(1, self.max_queue_size // 4), len(self._events))
            for _ in range(to_drop):
                self._events.popleft()
            self.dropped += to_drop
            self.logger.warning(f"Event queue full, dropped {to_drop} oldest events")

    def _schedule(self, delay: float):
        # Caller holds the lock. An armed timer is kept unless the new one fires sooner.
        if self._timer is not None:
            if delay >= self._timer_delay:
                return
            self._timer.cancel()
        self._timer = self.timer_factory(delay, self.flush)
        self._timer_delay = delay
        self._timer.daemon = True
        self._timer.start()

    def drain(self) -> List[AnalyticsEvent]:
        """Remove and return every pending event, cancelling the delayed flush."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            events = list(self._events)
            self._events.clear()
        return events

    def flush(self):
        events = self.drain()
        if events:
            self.on_batch_ready(events)

    def dispose(self):
        self.drain()


# ----------------------------------------------------------------------
# Transport
# ----------------------------------------------------------------------

class AnalyticsTransport:
    """
    Ships analytics events to the configured HTTP endpoint.

    PATTERN RECOGNITION: Producers only ever enqueue. All network I/O happens
    on flush, in batches of ``max_batch_size``, with transient failures retried
    by the RetryPolicy. A 4xx response is final and the batch is dropped. When
    retries are exhausted, error events and crash reports go back on the queue
    for the next flush while everything else is dropped.

    While the network is marked unavailable flushes are deferred and events
    stay queued and only the delayed flush is armed; the first flush after it
    comes back is forced. Events queued with ``immediate=True`` (critical
    performance alerts) flush the queue right away.

    Args:
        config: AnalyticsConfig
        session: requests.Session used for POSTs (created if omitted)
        retry_policy: RetryPolicy (defaults to config.max_retries attempts)
        metrics: Optional PipelineMetrics receiving transmission timings
        clock: Source of "now" for event timestamps
        rng: Random source for the session id
        timer_factory: Passed to the BatchQueue
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.config = config or AnalyticsConfig()
        self.clock = clock
        self.metrics = metrics
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=self.config.max_retries)
        self.logger = logging.getLogger("AnalyticsTransport")

        self.session = session or requests.Session()
        self.session.headers.update(self._build_headers())

        self.enabled = self.config.enabled
        self.is_connected = True
        self.user_id: Optional[str] = None
        self.session_id = self._generate_session_id(rng or random.Random())

        self.events_sent = 0
        self.events_failed = 0
        self.last_successful_send: Optional[datetime] = None
        self._stats_lock = threading.Lock()
        self._disposed = False

        self.queue = BatchQueue(
            on_batch_ready=self.send_events,
            max_batch_size=self.config.max_batch_size,
            batch_interval=self.config.batch_interval,
            max_queue_size=self.config.max_queue_size,
            timer_factory=timer_factory,
        )

        self.connectivity: Optional[ConnectivityMonitor] = None
        if self.config.connectivity_host:
            self.connectivity = ConnectivityMonitor(
                self.config.connectivity_host,
                self.config.connectivity_port,
                self.config.connectivity_check_interval,
                on_change=self.set_network_available,
            )

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': self.config.user_agent,
        }
        if self.config.api_key:
            headers['Authorization'] = f'Bearer {self.config.api_key}'
        return headers

    def _generate_session_id(self, rng: random.Random) -> str:
        millis = int(self.clock().timestamp() * 1000)
        return f"{millis}_{rng.randint(0, 999998)}"

    def start(self):
        """Start connectivity polling and, with auto tracking on, announce the session."""
        if self.connectivity is not None:
            self.connectivity.start()
        if self.config.auto_tracking:
            self.track_event("analytics_initialized", {
                "project_id": self.config.project_id,
                "session_id": self.session_id,
            })

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def enqueue(self, event: AnalyticsEvent, immediate: bool = False):
        """Queue *event*; *immediate* flushes the queue now instead of waiting for a trigger."""
        if not self.enabled or self._disposed:
            return
        # Offline, the size trigger would only drain and requeue
        online = self.is_connected
        self.queue.add(event, allow_immediate=online, force=immediate and online)

    def track_event(
        self,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        event_type: EventType = EventType.CUSTOM,
        value: float = 1.0,
        immediate: bool = False,
    ):
        self.enqueue(AnalyticsEvent(
            name=name,
            properties={
                **(properties or {}),
                "platform": platform.system().lower(),
                "app_version": APP_VERSION,
            },
            timestamp=self.clock(),
            type=event_type,
            value=value,
            user_id=self.user_id,
            session_id=self.session_id,
        ), immediate=immediate)

    def track_performance(self, metric_name: str, metrics: Dict[str, Any], value: float = 1.0):
        self.track_event(
            "performance_metric",
            {
                "metric_name": metric_name,
                "metrics": metrics,
                "timestamp_ms": int(self.clock().timestamp() * 1000),
            },
            event_type=EventType.PERFORMANCE,
            value=value,
        )

    def track_data_point(self, point: MetricDataPoint):
        """Queue a sampled raw data point, keeping its original timestamp."""
        self.enqueue(AnalyticsEvent(
            name=point.name,
            properties={"metric_type": point.type.value, "metadata": dict(point.metadata)},
            timestamp=point.timestamp,
            type=EventType.PERFORMANCE,
            value=point.value,
            user_id=self.user_id,
            session_id=self.session_id,
        ))

    def track_error(
        self,
        error: str,
        stack_trace: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        fatal: bool = False,
    ):
        """Queue an error event; *fatal* errors are sent as ``crash_report``."""
        self.track_event(
            CRASH_REPORT_EVENT if fatal else "error_occurred",
            {
                "error_message": error,
                "stack_trace": stack_trace,
                "context": context or {},
            },
            event_type=EventType.ERROR,
        )

    def track_navigation(
        self,
        screen_name: str,
        previous_screen: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ):
        self.track_event(
            "screen_view",
            {
                "screen_name": screen_name,
                "previous_screen": previous_screen,
                "parameters": parameters or {},
            },
            event_type=EventType.NAVIGATION,
        )

    def set_user_id(self, user_id: Optional[str]):
        self.user_id = user_id

    def set_user_properties(self, properties: Dict[str, Any]):
        self.track_event(
            "user_properties_updated",
            {"user_properties": dict(properties)},
            event_type=EventType.USER,
        )

    def set_enabled(self, enabled: bool):
        """Enable or disable tracking; disabling discards pending events."""
        self.enabled = enabled
        if not enabled:
            self.queue.dispose()

    def set_network_available(self, available: bool):
        was_connected = self.is_connected
        self.is_connected = available
        if available and not was_connected:
            self.logger.info("Network restored, flushing pending events")
            self.flush()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def flush(self):
        """Send everything pending now (deferred while offline)."""
        if not self.enabled or self._disposed:
            return
        if not self.is_connected:
            self.logger.debug(f"Offline, deferring {len(self.queue)} events")
            return
        self.queue.flush()

    def send_events(self, events: List[AnalyticsEvent]):
        """Send *events* in chunks of max_batch_size."""
        if not self.is_connected:
            # Went offline between scheduling and firing; keep everything
            self.queue.requeue(events)
            return

        size = self.config.max_batch_size
        for start in range(0, len(events), size):
            self.send_batch(events[start:start + size])

    def send_batch(self, events: List[AnalyticsEvent]) -> bool:
        """
        POST one batch, retrying transient failures.

        Returns:
            True if the endpoint accepted the batch
        """
        if not events:
            return True

        started = time.monotonic()
        try:
            self.retry_policy.call(lambda: self._post(events))
        except PermanentTransportError as e:
            self._record_failure(events)
            self.logger.warning(f"Analytics batch rejected, dropping {len(events)} events: {e}")
            return False
        except TransientTransportError as e:
            self._record_failure(events)
            critical = [event for event in events if event.is_critical]
            self.logger.error(
                f"Analytics batch failed after {self.retry_policy.max_attempts} attempts: {e}; "
                f"re-queueing {len(critical)} critical events"
            )
            if not self._disposed:
                self.queue.requeue(critical)
            return False

        if self._disposed:
            return True

        elapsed_ms = (time.monotonic() - started) * 1000
        with self._stats_lock:
            self.events_sent += len(events)
            self.last_successful_send = self.clock()
        if self.metrics is not None:
            self.metrics.record_transmission(elapsed_ms)
        self.logger.debug(f"Sent {len(events)} analytics events in {elapsed_ms:.0f}ms")
        return True

    def _record_failure(self, events: List[AnalyticsEvent]):
        with self._stats_lock:
            self.events_failed += len(events)
        if self.metrics is not None:
            self.metrics.record_error("transmission_failed")

    def _build_payload(self, events: List[AnalyticsEvent]) -> Dict[str, Any]:
        return {
            "events": [event.to_dict() for event in events],
            "dsn": self.config.dsn,
            "project_id": self.config.project_id,
            "sent_at": self.clock().isoformat(),
        }

    def _post(self, events: List[AnalyticsEvent]):
        try:
            response = self.session.post(
                self.config.endpoint,
                json=self._build_payload(events),
                timeout=self.config.request_timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientTransportError(
                f"{type(e).__name__} posting to {redact_url(self.config.endpoint)}"
            ) from e
        except requests.RequestException as e:
            raise PermanentTransportError(f"{type(e).__name__}: request could not be sent") from e

        status = response.status_code
        if status >= 500:
            raise TransientTransportError(f"HTTP {status}")
        if not 200 <= status < 300:
            raise PermanentTransportError(f"HTTP {status}", status_code=status)

    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                "is_enabled": self.enabled,
                "is_connected": self.is_connected,
                "events_sent": self.events_sent,
                "events_failed": self.events_failed,
                "last_successful_send": (
                    self.last_successful_send.isoformat() if self.last_successful_send else None
                ),
                "pending": len(self.queue),
                "dropped": self.queue.dropped,
                "session_id": self.session_id,
                "user_id": self.user_id,
            }

    def dispose(self):
        """Stop timers and discard pending events; in-flight sends finish but are ignored."""
        self._disposed = True
        if self.connectivity is not None:
            self.connectivity.stop()
        self.queue.dispose()
        self.session.close()
