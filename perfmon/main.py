#!/usr/bin/env python3
"""
Performance Monitoring Service
Wires the collector, alerter, analytics transport and reporting together
"""

import logging
import signal
import sys
import threading
from pathlib import Path

from perfmon.utils.config import Config, ConfigurationError, check_default_values
from perfmon.utils.logging_formatter import LogFormatter
from perfmon.utils.metrics import PipelineMetrics
from perfmon.utils.structured_logging import JSONFormatter
from perfmon.modules.alert_system import ThresholdAlerter
from perfmon.modules.analytics_transport import AnalyticsTransport
from perfmon.modules.collector import MetricCollector
from perfmon.modules.http_interceptor import InstrumentedSession, PerformanceInterceptor
from perfmon.modules.reporting import PerformanceReport
from perfmon.modules.scheduling import PeriodicTask


class MonitoringService:
    """Owns and wires every pipeline component; nothing here is a global"""

    def __init__(self, config_file: str = ".env"):
        """
        Initialize service

        Args:
            config_file: Path to configuration file
        """
        self.config = Config(config_file)

        self._setup_logging()

        self.logger = logging.getLogger("MonitoringService")
        self.logger.info("Initializing performance monitoring")

        self.metrics = PipelineMetrics()

        self.transport = None
        if self.config.analytics.enabled:
            self.transport = AnalyticsTransport(self.config.analytics, metrics=self.metrics)

        self.alerter = ThresholdAlerter(self.config.alerts, transport=self.transport)
        self.collector = MetricCollector(
            self.config.collector,
            alerter=self.alerter,
            transport=self.transport,
            metrics=self.metrics,
        )

        self.interceptor = PerformanceInterceptor()
        self.interceptor.add_metric_callback(self.collector.record_request)
        self.session = InstrumentedSession(self.interceptor)

        self.reporter = PerformanceReport(self.collector, self.alerter)
        self._report_task = PeriodicTask("report", self.config.system.report_interval, self.log_report)

        self._stop_event = threading.Event()
        self.running = False

    def _setup_logging(self):
        """Setup logging configuration"""
        log_path = Path(self.config.system.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        level_name = str(self.config.system.log_level).upper()
        level = logging._nameToLevel.get(level_name, logging.INFO)

        file_handler = logging.FileHandler(self.config.system.log_file)
        console_handler = logging.StreamHandler(sys.stdout)

        if self.config.system.log_format == "json":
            file_handler.setFormatter(JSONFormatter())
            console_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            )
            console_handler.setFormatter(LogFormatter())

        logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)

        if level_name not in logging._nameToLevel:
            logging.getLogger("MonitoringService").warning(
                "Invalid log level '%s'; defaulting to INFO",
                self.config.system.log_level
            )

    def start(self, block: bool = True):
        """
        Validate configuration and start every component.

        Args:
            block: Wait until ``stop()`` is called (the CLI case)
        """
        try:
            self.config.validate()
        except ConfigurationError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise

        for warning in check_default_values(self.config):
            self.logger.warning(warning)

        self.logger.info("Starting performance monitoring")
        if self.transport is not None:
            self.transport.start()
        self.collector.initialize(start_ui_monitoring=self.config.collector.ui_monitoring)
        self._report_task.start()
        self.running = True

        if block:
            self._stop_event.wait()

    def log_report(self):
        report = self.reporter.generate_report()
        self.logger.info(self.reporter.format_summary(report))
        self.logger.debug(f"Pipeline metrics: {self.metrics.get_summary()}")

    def stop(self):
        """Flush what is buffered and release every component"""
        if not self.running:
            self._stop_event.set()
            return
        self.logger.info("Stopping performance monitoring")
        self.running = False
        self._report_task.cancel()

        self.collector.transmit_metrics()
        self.collector.dispose()
        self.alerter.dispose()
        if self.transport is not None:
            self.transport.flush()
            self.transport.dispose()
        self.session.close()

        self._stop_event.set()
        self.logger.info("Monitoring stopped")


def main():
    """Main entry point"""
    config_file = sys.argv[1] if len(sys.argv) > 1 else ".env"

    print("=" * 80)
    print("perfmon - in-process performance monitoring")
    print("=" * 80)
    print()

    if not Path(config_file).exists():
        print(f"Note: configuration file '{config_file}' not found, using environment and defaults")
        print("You can start from the template: cp .env.example .env")

    try:
        service = MonitoringService(config_file)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    def signal_handler(signum, frame):
        """Handle shutdown signals"""
        print("\nReceived shutdown signal, stopping gracefully...")
        service.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        service.start()
    except ConfigurationError:
        sys.exit(1)


if __name__ == "__main__":
    main()
