"""
Performance Reporting
Grades, trends, recommendations and exports built from the collector's series
"""

import csv
import io
import json
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional

from ..utils.colors import Colors
from ..utils.metrics import compute_statistics
from ..utils.sanitization import sanitize_for_csv
from .metric_data import AlertSeverity, MetricData
from .metric_series import ApiSeries, DatabaseSeries, MetricSeries, UiSeries


GRADE_POINTS = {"A": 4, "B": 3, "C": 2, "D": 1, "F": 0}
NO_GRADE = "N/A"
TARGET_FPS = 60.0
TREND_BAND_PERCENT = 5.0


def calculate_grade(value: float, good: float, poor: float) -> str:
    """
    Grade a lower-is-better value.

    A up to *good*, B up to 20% above it, C up to 80% of *poor*,
    D up to *poor*, F beyond.
    """
    if value <= good:
        return "A"
    if value <= good * 1.2:
        return "B"
    if value <= poor * 0.8:
        return "C"
    if value <= poor:
        return "D"
    return "F"


def calculate_trend(history: List[MetricData]) -> Dict:
    """
    Compare the average of the first half of *history* with the second half.

    Changes within 5% either way count as stable.
    """
    if len(history) < 2:
        return {"trend": "insufficient_data", "change_percent": 0.0}

    half = len(history) // 2
    first_avg = compute_statistics(d.value for d in history[:half])["avg"]
    second_avg = compute_statistics(d.value for d in history[half:])["avg"]
    change = ((second_avg - first_avg) / first_avg * 100) if first_avg else 0.0

    if abs(change) < TREND_BAND_PERCENT:
        trend = "stable"
    elif change > 0:
        trend = "increasing"
    else:
        trend = "decreasing"

    return {
        "trend": trend,
        "change_percent": change,
        "first_half_avg": first_avg,
        "second_half_avg": second_avg,
    }


class PerformanceReport:
    """
    Builds a point-in-time report over a look-back period.

    Each built-in series is graded on its headline metric only (query time,
    response time, FPS); percentages recorded on the same series never skew
    a millisecond grade.

    Args:
        collector: MetricCollector whose series are reported
        alerter: Optional ThresholdAlerter used for the alert summary
        clock: Source of "now"
    """

    # series name -> (headline metric names, good, poor, unit)
    GRADING = {
        "database": (frozenset({DatabaseSeries.QUERY_TIME, DatabaseSeries.OPERATION_DURATION}), 100.0, 500.0, "ms"),
        "api": (frozenset({ApiSeries.RESPONSE_TIME}), 1000.0, 3000.0, "ms"),
        "ui": (frozenset({UiSeries.FPS}), 5.0, 30.0, "fps"),
    }

    def __init__(self, collector, alerter=None, clock: Callable[[], datetime] = datetime.now):
        self.collector = collector
        self.alerter = alerter
        self.clock = clock
        self.logger = logging.getLogger("PerformanceReport")

    def generate_report(self, period: timedelta = timedelta(hours=24)) -> Dict:
        end = self.clock()
        start = end - period

        metrics = {}
        for name, series in self.collector.all_series.items():
            metrics[name] = self._series_report(name, series, start)

        return {
            "report_metadata": {
                "generated_at": end.isoformat(),
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "period_hours": period.total_seconds() / 3600,
            },
            "summary": self._generate_summary(metrics),
            "metrics": metrics,
            "alerts": self._generate_alert_summary(start),
            "recommendations": self._generate_recommendations(metrics),
        }

    def _series_report(self, name: str, series: MetricSeries, since: datetime) -> Dict:
        names: Optional[FrozenSet[str]] = None
        grade = NO_GRADE
        unit = None

        if name in self.GRADING:
            names, good, poor, unit = self.GRADING[name]

        window = [
            d for d in series.history
            if d.timestamp >= since and (names is None or d.metric_name in names)
        ]
        stats = compute_statistics(d.value for d in window)

        if names is not None and stats["count"]:
            value = stats["avg"]
            if name == "ui":
                # Graded on the FPS shortfall so lower is better like the others
                value = max(0.0, TARGET_FPS - value)
            grade = calculate_grade(value, good, poor)

        report = {
            "statistics": stats,
            "unit": unit,
            "performance_grade": grade,
            "trends": calculate_trend(window),
        }

        if isinstance(series, DatabaseSeries):
            report["query_analysis"] = series.get_query_report()
        elif isinstance(series, ApiSeries):
            report["endpoint_analysis"] = series.get_api_report()
        elif isinstance(series, UiSeries):
            report["ui_analysis"] = series.get_ui_report()

        return report

    def _generate_summary(self, metrics: Dict) -> Dict:
        grades = []
        issues = []
        for name, data in metrics.items():
            grade = data["performance_grade"]
            if grade == NO_GRADE:
                continue
            grades.append(GRADE_POINTS[grade])
            if grade in ("D", "F"):
                issues.append(f"{name} performance needs attention")

        average = sum(grades) / len(grades) if grades else 0.0
        if not grades:
            overall = NO_GRADE
        elif average >= 3.5:
            overall = "A"
        elif average >= 2.5:
            overall = "B"
        elif average >= 1.5:
            overall = "C"
        elif average >= 0.5:
            overall = "D"
        else:
            overall = "F"

        return {
            "overall_grade": overall,
            "grade_average": average,
            "critical_issues": issues,
            "metrics_analyzed": len(grades),
        }

    def _generate_recommendations(self, metrics: Dict) -> List[str]:
        advice = {
            "database": [
                "Consider optimizing database queries and adding indexes",
                "Review query patterns and implement query caching",
            ],
            "api": [
                "Implement API response caching and compression",
                "Consider using CDN for static content",
            ],
            "ui": [
                "Optimize widget builds and reduce unnecessary rebuilds",
                "Implement lazy loading for large lists",
            ],
        }

        recommendations = []
        for name, lines in advice.items():
            data = metrics.get(name)
            if data and data["performance_grade"] in ("D", "F"):
                recommendations.extend(lines)

        if not recommendations:
            recommendations.append("Performance is good! Continue monitoring for any degradation")
        return recommendations

    def _generate_alert_summary(self, since: datetime) -> Dict:
        alerts = self.alerter.alerts_since(since) if self.alerter is not None else []
        keys = Counter(f"{a.metric_name}_{a.threshold.name}" for a in alerts)
        most_frequent = keys.most_common(1)[0][0] if keys else None
        return {
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
            "warning_alerts": sum(1 for a in alerts if a.severity == AlertSeverity.WARNING),
            "most_frequent_alert": most_frequent,
        }

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    @staticmethod
    def export_json(report: Dict) -> str:
        return json.dumps(report, indent=2, default=str)

    def export_csv(self, report: Dict) -> str:
        """One row per (series, avg/min/max) with the report's generation time."""
        timestamp = report.get("report_metadata", {}).get("generated_at", self.clock().isoformat())
        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(["Timestamp", "Metric", "Value", "Unit"])

        for name, data in report.get("metrics", {}).items():
            stats = data["statistics"]
            unit = data.get("unit") or ""
            for key in ("avg", "min", "max"):
                writer.writerow([timestamp, sanitize_for_csv(f"{name}_{key}"), stats[key], unit])

        return output.getvalue()

    @staticmethod
    def format_summary(report: Dict) -> str:
        """Single colored line for the console."""
        summary = report["summary"]
        grade = summary["overall_grade"]
        grade_text = Colors.colorize(grade, Colors.get_grade_color(grade) + Colors.BOLD)
        parts = [f"Overall grade {grade_text}"]
        for name, data in report["metrics"].items():
            series_grade = data["performance_grade"]
            parts.append(f"{name}={Colors.colorize(series_grade, Colors.get_grade_color(series_grade))}")
        alerts = report["alerts"]
        parts.append(f"alerts={alerts['total_alerts']} ({alerts['critical_alerts']} critical)")
        return " | ".join(parts)
