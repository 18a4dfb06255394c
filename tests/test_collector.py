"""
Tests for the metric collector: lifecycle, sampling, wiring and periodic work
"""

import random
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from perfmon.utils.config import AlertConfig, CollectorConfig
from perfmon.modules.alert_system import ThresholdAlerter
from perfmon.modules.collector import CollectorState, MetricCollector, PerformanceObserver
from perfmon.modules.metric_data import AlertSeverity, ApiSample, MetricDataPoint, MetricType, UiSample
from perfmon.modules.metric_series import DatabaseSeries, MetricSeries


class AlwaysSample(random.Random):
    def random(self):
        return 0.0


class NeverSample(random.Random):
    def random(self):
        return 0.99


def point(name="p", value=1.0):
    return MetricDataPoint(type=MetricType.UI, name=name, value=value)


class TestCollectorLifecycle(unittest.TestCase):

    def setUp(self):
        self.collector = MetricCollector(rng=AlwaysSample())

    def tearDown(self):
        self.collector.dispose()

    def test_initial_state_ignores_points(self):
        self.assertEqual(self.collector.state, CollectorState.UNINITIALIZED)
        self.assertFalse(self.collector.record_metric_data(point()))

    def test_initialize_registers_builtin_series(self):
        self.collector.initialize(start_timers=False)
        self.assertEqual(self.collector.state, CollectorState.COLLECTING)
        self.assertEqual(set(self.collector.all_series), {"database", "api", "ui"})

    def test_initialize_is_idempotent(self):
        self.collector.initialize(start_timers=False)
        db = self.collector.get_series("database")
        self.collector.initialize(start_timers=False)
        self.assertIs(self.collector.get_series("database"), db)

    def test_pause_and_resume(self):
        self.collector.initialize(start_timers=False)
        self.collector.stop_collection()
        self.assertEqual(self.collector.state, CollectorState.PAUSED)
        self.assertFalse(self.collector.record_metric_data(point()))

        self.collector.start_collection()
        self.assertTrue(self.collector.record_metric_data(point()))

    def test_start_collection_requires_initialize(self):
        self.collector.start_collection()
        self.assertEqual(self.collector.state, CollectorState.UNINITIALIZED)

    def test_dispose(self):
        self.collector.initialize(start_timers=True)
        self.collector.record_metric_data(point())
        self.collector.dispose()
        self.assertEqual(self.collector.state, CollectorState.DISPOSED)
        self.assertEqual(self.collector.all_series, {})
        self.assertTrue(self.collector.buffer.is_empty)
        self.assertFalse(self.collector.record_metric_data(point()))


class TestSampling(unittest.TestCase):

    def test_sampling_rate_converges(self):
        """Offering 100,000 points at p=0.1 keeps close to 10% of them"""
        collector = MetricCollector(
            CollectorConfig(buffer_capacity=1000),
            rng=random.Random(12345),
        )
        collector.initialize(start_timers=False)

        for i in range(100_000):
            collector.record_metric_data(point(value=i))

        accepted = collector.metrics.points_sampled
        self.assertTrue(9_000 <= accepted <= 11_000, accepted)
        self.assertEqual(collector.metrics.points_offered, 100_000)
        self.assertEqual(len(collector.buffer), 1000)
        collector.dispose()

    def test_rejected_points_dropped_silently(self):
        collector = MetricCollector(rng=NeverSample())
        collector.initialize(start_timers=False)
        self.assertFalse(collector.record_metric_data(point()))
        self.assertTrue(collector.buffer.is_empty)
        collector.dispose()

    def test_accepted_points_published(self):
        collector = MetricCollector(rng=AlwaysSample())
        collector.initialize(start_timers=False)
        messages = []
        collector.subscribe(messages.append)

        collector.record_custom_metric("startup_time", 850, MetricType.STARTUP, {"cold": True})

        self.assertEqual(messages[0]["type"], "metric_recorded")
        self.assertEqual(messages[0]["data"]["name"], "startup_time")
        self.assertEqual(messages[0]["data"]["type"], "startup")
        collector.dispose()


class TestCollectorWiring(unittest.TestCase):
    """Category measurements flow through series, observers and the alerter"""

    def setUp(self):
        self.alerter = ThresholdAlerter(AlertConfig(console=False))
        self.collector = MetricCollector(alerter=self.alerter, rng=AlwaysSample())
        self.collector.initialize(start_timers=False)

    def tearDown(self):
        self.collector.dispose()

    def test_slow_query_fires_one_critical_alert(self):
        """A 600ms query against 100/500 thresholds produces exactly one critical alert"""
        events = []
        self.alerter.subscribe(events.append)

        self.collector.record_query("SELECT * FROM news", 600)

        query_alerts = [e for e in events if e.threshold.name == "query_time"]
        self.assertEqual(len(query_alerts), 1)
        alert = query_alerts[0]
        self.assertEqual(alert.severity, AlertSeverity.CRITICAL)
        self.assertIn("500", alert.message)
        self.assertIn("DATABASE", alert.message)
        self.assertEqual(alert.metric_name, "database")
        self.assertGreaterEqual(self.collector.metrics.alerts_fired, 1)

    def test_slow_query_within_cooldown_does_not_realert(self):
        events = []
        self.alerter.subscribe(events.append)
        self.collector.record_query("SELECT 1", 600)
        self.collector.record_query("SELECT 1", 700)
        self.assertEqual(len([e for e in events if e.threshold.name == "query_time"]), 1)

    def test_query_also_offered_for_sampling(self):
        self.collector.record_query("UPDATE news SET read = 1", 12)
        buffered = self.collector.buffer.to_list()
        self.assertEqual(buffered[-1].type, MetricType.DATABASE)
        self.assertEqual(buffered[-1].name, "UPDATE")

    def test_observer_notified(self):
        observer = MagicMock(spec=PerformanceObserver)
        self.collector.add_observer(observer)
        self.collector.add_observer(observer)

        self.collector.record_query("SELECT 1", 600)

        self.assertTrue(observer.on_metric_updated.called)
        threshold_names = [c.args[2].name for c in observer.on_threshold_exceeded.call_args_list]
        self.assertIn("query_time", threshold_names)

        self.collector.remove_observer(observer)
        observer.reset_mock()
        self.collector.record_query("SELECT 1", 5)
        observer.on_metric_updated.assert_not_called()

    def test_failing_observer_reports_error(self):
        observer = MagicMock(spec=PerformanceObserver)
        observer.on_metric_updated.side_effect = RuntimeError("boom")
        self.collector.add_observer(observer)

        self.collector.record_query("SELECT 1", 5)
        observer.on_error.assert_called()

    def test_record_request(self):
        self.collector.record_request(ApiSample("GET", "/news", 200, 120.0))
        api = self.collector.get_series("api")
        self.assertEqual(api.get_api_report()["total_requests"], 1)
        self.assertEqual(self.collector.buffer.to_list()[-1].name, "GET /news")

    def test_record_frame(self):
        self.collector.record_frame(10, 4)
        ui = self.collector.get_series("ui")
        self.assertEqual(ui.latest.value, 10.0)
        self.assertEqual(self.collector.buffer.to_list()[-1].value, 14.0)

    def test_record_sample_is_polymorphic(self):
        self.assertTrue(self.collector.record_sample(UiSample("ui_fps", 58, unit="fps")))
        self.assertEqual(self.collector.buffer.to_list()[-1].type, MetricType.UI)

    def test_measure_database_query(self):
        with self.collector.measure_database_query("load_news"):
            pass
        latest = self.collector.get_series("database").latest
        self.assertEqual(latest.metric_name, DatabaseSeries.OPERATION_DURATION)
        self.assertEqual(latest.metadata["operation"], "load_news")
        self.assertIsNone(latest.metadata["error"])

    def test_measure_records_and_reraises_errors(self):
        with self.assertRaises(KeyError):
            with self.collector.measure_database_query("load_news"):
                raise KeyError("missing")
        latest = self.collector.get_series("database").latest
        self.assertEqual(latest.metadata["error"], "KeyError")

    def test_measure_helper_returns_result(self):
        result = self.collector.measure("sum", sum, [1, 2, 3])
        self.assertEqual(result, 6)

    def test_register_custom_series(self):
        series = MetricSeries("memory")
        self.collector.register_series(series)
        self.assertIs(self.collector.get_series("memory"), series)
        messages = []
        self.collector.subscribe(messages.append)
        series.record("heap_mb", 120)
        self.assertEqual(messages[-1]["metric_type"], "memory")

    def test_failing_alerter_does_not_raise(self):
        self.collector.alerter = MagicMock()
        self.collector.alerter.trigger_alert.side_effect = RuntimeError("boom")
        self.collector.record_query("SELECT 1", 600)
        self.assertGreater(self.collector.metrics.errors_count["alert"], 0)


class TestPeriodicWork(unittest.TestCase):

    def setUp(self):
        self.clock_now = datetime(2024, 1, 1, 12, 0, 0)
        self.transport = MagicMock()
        self.collector = MetricCollector(
            transport=self.transport, rng=AlwaysSample(), clock=lambda: self.clock_now
        )
        self.collector.initialize(start_timers=False)

    def tearDown(self):
        self.collector.dispose()

    def test_aggregation_published(self):
        messages = []
        self.collector.subscribe(messages.append)
        self.collector.record_query("SELECT 1", 40)

        aggregated = self.collector.perform_aggregation()

        db = aggregated["metrics"]["database"]
        self.assertEqual(db["data_points"], 2)
        self.assertEqual(db["statistics"]["count"], 2)
        self.assertEqual(messages[-1]["type"], "aggregation")

    def test_aggregation_window(self):
        self.collector.record_query("SELECT 1", 40)
        self.clock_now += timedelta(minutes=10)
        aggregated = self.collector.perform_aggregation()
        self.assertEqual(aggregated["metrics"]["database"]["statistics"]["count"], 0)
        self.assertEqual(aggregated["metrics"]["database"]["data_points"], 2)

    def test_transmit_drains_buffer(self):
        self.collector.record_custom_metric("a", 1)
        self.collector.record_custom_metric("b", 2)

        sent = self.collector.transmit_metrics()

        self.assertEqual(sent, 2)
        self.assertEqual(self.transport.track_data_point.call_count, 2)
        self.transport.flush.assert_called_once()
        self.assertTrue(self.collector.buffer.is_empty)

    def test_transmit_empty_buffer(self):
        self.assertEqual(self.collector.transmit_metrics(), 0)
        self.transport.flush.assert_not_called()

    def test_transmit_failure_is_swallowed(self):
        self.transport.flush.side_effect = RuntimeError("down")
        self.collector.record_custom_metric("a", 1)
        # The point already sits in the transport queue, which retries on its own
        self.assertEqual(self.collector.transmit_metrics(), 1)
        self.assertEqual(self.collector.metrics.errors_count["transmit"], 1)
        self.assertTrue(self.collector.buffer.is_empty)

    def test_untransferred_points_return_to_buffer(self):
        for name in "abcd":
            self.collector.record_custom_metric(name, 1)
        self.transport.track_data_point.side_effect = [None, RuntimeError("queue closed"), None, None]

        self.assertEqual(self.collector.transmit_metrics(), 1)

        self.assertEqual([p.name for p in self.collector.buffer.to_list()], ["b", "c", "d"])
        self.transport.flush.assert_not_called()

        self.transport.track_data_point.side_effect = None
        self.assertEqual(self.collector.transmit_metrics(), 3)
        self.assertTrue(self.collector.buffer.is_empty)

    def test_snapshot(self):
        self.collector.record_query("SELECT 1", 40)
        snapshot = self.collector.create_snapshot()
        self.assertIn("system_info", snapshot)
        self.assertEqual(snapshot["metrics"]["database"]["latest"]["metric_name"],
                         DatabaseSeries.CACHE_HIT_RATE)
        self.assertIn("query_time", snapshot["metrics"]["database"]["thresholds"])
        self.assertEqual(snapshot["buffer_size"], 1)

    def test_snapshot_failure_is_swallowed(self):
        series = self.collector.get_series("database")
        with patch.object(series, "get_statistics", side_effect=RuntimeError("corrupt")):
            snapshot = self.collector.create_snapshot()
        self.assertIn("timestamp", snapshot)
        self.assertEqual(self.collector.metrics.errors_count["snapshot"], 1)


if __name__ == '__main__':
    unittest.main()
