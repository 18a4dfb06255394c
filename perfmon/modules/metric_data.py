"""
Metric Data Model
Immutable value types shared by the collector, series, alerter and transport
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Optional


class MetricType(Enum):
    """Category of a raw metric data point"""
    DATABASE = "database"
    API = "api"
    UI = "ui"
    MEMORY = "memory"
    STARTUP = "startup"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MetricDataPoint:
    """
    A single sampled measurement destined for the shared ring buffer.

    Created at the call site; owned by whichever buffer currently holds it.
    """
    type: MetricType
    name: str
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "value": self.value,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MetricData:
    """An entry in a MetricSeries history"""
    metric_name: str
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "value": self.value,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
            "unit": self.unit,
        }


@dataclass(frozen=True)
class Threshold:
    """
    Warning/critical levels for a series.

    Args:
        name: Threshold identifier, unique within a series
        warning_level: Value at or above which a WARNING fires
        critical_level: Value at or above which a CRITICAL fires
        check_interval: Advisory evaluation interval, exported with the threshold
        enabled: Disabled thresholds never fire
        metric_names: Restrict the threshold to these data point names
            (empty means "every point recorded on the series")
        higher_is_worse: False for metrics such as FPS or cache hit rate,
            where the alert fires when the value drops to or below a level
    """
    name: str
    warning_level: float
    critical_level: float
    check_interval: timedelta = timedelta(seconds=30)
    enabled: bool = True
    metric_names: FrozenSet[str] = frozenset()
    higher_is_worse: bool = True

    def applies_to(self, metric_name: str) -> bool:
        return not self.metric_names or metric_name in self.metric_names

    def _breaches(self, value: float, level: float) -> bool:
        if self.higher_is_worse:
            return value >= level
        return value <= level

    def check(self, value: float) -> Optional[AlertSeverity]:
        """Return the severity *value* triggers, critical taking precedence."""
        if not self.enabled:
            return None
        if self._breaches(value, self.critical_level):
            return AlertSeverity.CRITICAL
        if self._breaches(value, self.warning_level):
            return AlertSeverity.WARNING
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "warning_level": self.warning_level,
            "critical_level": self.critical_level,
            "check_interval_ms": int(self.check_interval.total_seconds() * 1000),
            "enabled": self.enabled,
            "higher_is_worse": self.higher_is_worse,
        }


@dataclass(frozen=True)
class AlertEvent:
    """An alert that passed the cooldown gate"""
    metric_name: str
    data: MetricData
    threshold: Threshold
    severity: AlertSeverity
    timestamp: datetime
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "data": self.data.to_dict(),
            "threshold": self.threshold.to_dict(),
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }


# ----------------------------------------------------------------------
# Per-category samples
#
# Each category is its own small dataclass that knows how to turn itself into
# a MetricDataPoint, so callers build the right shape of metadata without a
# type switch anywhere in the collector.
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class DatabaseSample:
    """A timed database query"""
    category: ClassVar[MetricType] = MetricType.DATABASE

    query_name: str
    duration_ms: float
    from_cache: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_data_point(self, timestamp: Optional[datetime] = None) -> MetricDataPoint:
        return MetricDataPoint(
            type=self.category,
            name=self.query_name,
            value=float(self.duration_ms),
            metadata={
                "duration_ms": self.duration_ms,
                "from_cache": self.from_cache,
                "error": self.error,
                **self.metadata,
            },
            timestamp=timestamp or datetime.now(),
        )


@dataclass(frozen=True)
class ApiSample:
    """A completed (or failed) HTTP request"""
    category: ClassVar[MetricType] = MetricType.API

    method: str
    endpoint: str
    status_code: Optional[int]
    duration_ms: float
    url: Optional[str] = None
    response_size: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.error is None and self.status_code is not None and 200 <= self.status_code < 400

    def to_data_point(self, timestamp: Optional[datetime] = None) -> MetricDataPoint:
        return MetricDataPoint(
            type=self.category,
            name=f"{self.method.upper()} {self.endpoint}",
            value=float(self.duration_ms),
            metadata={
                "method": self.method.upper(),
                "url": self.url,
                "duration_ms": self.duration_ms,
                "status_code": self.status_code,
                "response_size": self.response_size,
                "error": self.error,
                **self.metadata,
            },
            timestamp=timestamp or datetime.now(),
        )


@dataclass(frozen=True)
class UiSample:
    """A UI measurement such as a frame time, build time or FPS reading"""
    category: ClassVar[MetricType] = MetricType.UI

    name: str
    value: float
    unit: str = "ms"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_data_point(self, timestamp: Optional[datetime] = None) -> MetricDataPoint:
        return MetricDataPoint(
            type=self.category,
            name=self.name,
            value=float(self.value),
            metadata={"unit": self.unit, **self.metadata},
            timestamp=timestamp or datetime.now(),
        )
