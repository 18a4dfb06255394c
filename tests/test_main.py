"""
Tests for the monitoring service wiring
"""

import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from perfmon.main import MonitoringService
from perfmon.utils.config import ConfigurationError


class TestMonitoringService(unittest.TestCase):
    """Test cases for MonitoringService"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.env = {
            "LOG_FILE": os.path.join(self.tmp.name, "logs", "perfmon.log"),
            "ANALYTICS_ENABLED": "false",
            "ALERT_CONSOLE": "false",
            "METRICS_SAMPLING_RATE": "1.0",
        }

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            handler.close()
            root.removeHandler(handler)
        self.tmp.cleanup()

    def _service(self, **overrides):
        env = dict(self.env, **overrides)
        with patch.dict(os.environ, env, clear=True):
            return MonitoringService(os.path.join(self.tmp.name, "missing.env"))

    def test_wiring(self):
        service = self._service()
        self.assertIsNone(service.transport)
        self.assertIs(service.collector.alerter, service.alerter)
        self.assertTrue(Path(self.env["LOG_FILE"]).parent.exists())

    def test_start_and_stop(self):
        service = self._service()
        service.start(block=False)
        self.assertTrue(service.running)

        service.collector.record_query("SELECT * FROM news WHERE id = 1", 12.0)
        service.log_report()

        service.stop()
        self.assertFalse(service.running)
        self.assertEqual(service.collector.state.name, "DISPOSED")

    def test_start_runs_fps_monitoring(self):
        service = self._service()
        service.start(block=False)
        ui = service.collector.get_series("ui")
        self.assertTrue(ui.is_monitoring)

        service.stop()
        self.assertFalse(ui.is_monitoring)

    def test_fps_monitoring_can_be_switched_off(self):
        service = self._service(METRICS_UI_MONITORING="false")
        service.start(block=False)
        self.assertFalse(service.collector.get_series("ui").is_monitoring)
        service.stop()

    def test_intercepted_requests_reach_collector(self):
        service = self._service()
        service.collector.initialize(start_timers=False)
        service.interceptor.handle_exchange("GET", "https://api.example.com/news/42", 120.0)
        api = service.collector.get_series("api")
        response_times = [d for d in api.history if d.metric_name == api.RESPONSE_TIME]
        self.assertEqual(len(response_times), 1)
        self.assertEqual(response_times[0].value, 120.0)
        self.assertEqual(response_times[0].metadata["endpoint"], "/news/{id}")

    def test_stop_without_start(self):
        service = self._service()
        service.stop()
        self.assertFalse(service.running)

    def test_invalid_configuration_refuses_to_start(self):
        service = self._service(ALERT_WEBHOOK_ENABLED="true")
        with self.assertRaises(ConfigurationError):
            service.start(block=False)
        self.assertFalse(service.running)

    def test_report_lists_every_series(self):
        service = self._service()
        service.collector.initialize(start_timers=False)
        report = service.reporter.generate_report()
        self.assertIn("database", report["metrics"])


if __name__ == '__main__':
    unittest.main()
