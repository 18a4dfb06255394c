"""
Alert and Notification System
Cooldown-gated threshold alerts delivered to the console, subscribers,
the analytics transport and an optional webhook
"""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

import requests

from ..utils.colors import Colors
from ..utils.config import AlertConfig
from ..utils.sanitization import redact_url, sanitize_for_logging
from .analytics_transport import EventType
from .metric_data import AlertEvent, AlertSeverity, MetricData, Threshold


AlertSubscriber = Callable[[AlertEvent], None]


def format_alert_message(
    metric_name: str,
    data: MetricData,
    threshold: Threshold,
    severity: AlertSeverity,
) -> str:
    """
    Build the one-line alert text.

    The quoted level is the one that was crossed: the critical level for a
    CRITICAL alert, the warning level otherwise.

    Example:
        DATABASE query_time: 600.00ms (threshold: 500.00ms)
    """
    level = threshold.critical_level if severity == AlertSeverity.CRITICAL else threshold.warning_level
    unit = data.unit or ""
    return (
        f"{metric_name.upper()} {threshold.name}: "
        f"{data.value:.2f}{unit} (threshold: {level:.2f}{unit})"
    )


class ThresholdAlerter:
    """
    Debounces threshold breaches into alerts.

    SECURITY STORY: A sustained breach (a slow database, a flapping endpoint)
    re-trips the same threshold on every single measurement. Without a gate
    that would flood the console, the webhook and the analytics endpoint. Each
    (metric, threshold) pair may alert at most once per cooldown window; the
    calls in between are silent no-ops.

    Args:
        config: AlertConfig (console output, cooldown, webhook)
        transport: Optional AnalyticsTransport that receives a summarized
            ``performance_alert`` event for each alert
        clock: Source of "now", injectable for tests
        max_history: Number of recent alerts kept for reporting
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        transport=None,
        clock: Callable[[], datetime] = datetime.now,
        max_history: int = 500,
    ):
        self.config = config or AlertConfig()
        self.transport = transport
        self.clock = clock
        self.cooldown = timedelta(seconds=self.config.cooldown_seconds)
        self._last_alert_times: Dict[str, datetime] = {}
        self._history: Deque[AlertEvent] = deque(maxlen=max_history)
        self._subscribers: List[AlertSubscriber] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("ThresholdAlerter")

    @staticmethod
    def alert_key(metric_name: str, threshold_name: str) -> str:
        return f"{metric_name}_{threshold_name}"

    def trigger_alert(
        self,
        metric_name: str,
        data: MetricData,
        threshold: Threshold,
        severity: AlertSeverity,
    ) -> Optional[AlertEvent]:
        """
        Fire an alert unless the same (metric, threshold) fired within the cooldown.

        Args:
            metric_name: Name of the series that breached
            data: The offending measurement
            threshold: The threshold that was crossed
            severity: WARNING or CRITICAL

        Returns:
            The AlertEvent, or None when suppressed by the cooldown
        """
        key = self.alert_key(metric_name, threshold.name)
        now = self.clock()

        with self._lock:
            last = self._last_alert_times.get(key)
            if last is not None and now - last < self.cooldown:
                return None
            self._last_alert_times[key] = now

            event = AlertEvent(
                metric_name=metric_name,
                data=data,
                threshold=threshold,
                severity=severity,
                timestamp=now,
                message=format_alert_message(metric_name, data, threshold, severity),
            )
            self._history.append(event)
            subscribers = list(self._subscribers)

        self._dispatch(event, subscribers)
        return event

    def _dispatch(self, event: AlertEvent, subscribers: List[AlertSubscriber]):
        """Deliver an alert to every channel; one failing channel never blocks the rest."""
        log = self.logger.error if event.severity == AlertSeverity.CRITICAL else self.logger.warning
        log(f"ALERT [{event.severity.value.upper()}] {sanitize_for_logging(event.message)}")

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Alert subscriber failed: {e}")

        if self.config.console:
            self._console_alert(event)

        if self.transport is not None:
            self._forward_to_transport(event)

        if self.config.webhook_enabled and self.config.webhook_url:
            self._webhook_alert(event)

    def _console_alert(self, event: AlertEvent):
        """Print alert to console"""
        color = Colors.get_severity_color(event.severity.value)
        label = Colors.colorize(f"⚠ PERFORMANCE ALERT - {event.severity.value.upper()}", color + Colors.BOLD)
        print(f"{label} {event.message}")

    def _forward_to_transport(self, event: AlertEvent):
        try:
            self.transport.track_event(
                "performance_alert",
                properties={
                    "metric_name": event.metric_name,
                    "threshold_name": event.threshold.name,
                    "severity": event.severity.value,
                    "value": event.data.value,
                    "warning_level": event.threshold.warning_level,
                    "critical_level": event.threshold.critical_level,
                },
                event_type=EventType.PERFORMANCE,
                value=event.data.value,
                immediate=event.severity == AlertSeverity.CRITICAL,
            )
        except Exception as e:
            self.logger.error(f"Failed to forward alert to analytics: {e}")

    def _webhook_alert(self, event: AlertEvent):
        """Send alert via webhook"""
        try:
            response = requests.post(
                self.config.webhook_url,
                json=event.to_dict(),
                headers={'Content-Type': 'application/json'},
                timeout=10
            )

            if response.status_code == 200:
                self.logger.info("Webhook alert sent successfully")
            else:
                self.logger.warning(f"Webhook alert failed: {response.status_code}")

        except requests.RequestException as e:
            self.logger.error(
                f"Failed to send webhook alert to {redact_url(self.config.webhook_url)}: "
                f"{type(e).__name__}"
            )

    # ------------------------------------------------------------------

    def subscribe(self, callback: AlertSubscriber) -> Callable[[], None]:
        """Register *callback* for every alert; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def alert_history(self) -> List[AlertEvent]:
        with self._lock:
            return list(self._history)

    def alerts_since(self, since: datetime) -> List[AlertEvent]:
        return [a for a in self.alert_history if a.timestamp >= since]

    def clear_history(self):
        """Forget past alerts and reset every cooldown."""
        with self._lock:
            self._last_alert_times.clear()
            self._history.clear()

    def dispose(self):
        with self._lock:
            self._subscribers.clear()
            self._last_alert_times.clear()
            self._history.clear()
