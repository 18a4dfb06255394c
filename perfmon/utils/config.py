"""
Configuration Management Module
Handles loading and validation of environment variables and settings
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_ANALYTICS_ENDPOINT = "https://vitals.vercel-analytics.com/v1/vitals"
DEFAULT_USER_AGENT = "InsightFlo-Mobile/1.0"


class ConfigurationError(ValueError):
    """Raised when the configuration cannot be used to start the pipeline."""


@dataclass
class CollectorConfig:
    """Configuration for the metric collector"""
    sampling_rate: float = 0.1
    buffer_capacity: int = 1000
    max_history_size: int = 1000
    aggregation_interval: float = 60.0
    transmission_interval: float = 300.0
    aggregation_window: float = 300.0
    ui_monitoring: bool = True


@dataclass
class AlertConfig:
    """Configuration for threshold alerting"""
    console: bool = True
    cooldown_seconds: float = 300.0
    webhook_enabled: bool = False
    webhook_url: Optional[str] = None


@dataclass
class AnalyticsConfig:
    """Configuration for the analytics transport"""
    enabled: bool = True
    endpoint: str = DEFAULT_ANALYTICS_ENDPOINT
    dsn: str = "mobile_app_vitals"
    project_id: Optional[str] = None
    api_key: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    max_batch_size: int = 50
    batch_interval: float = 120.0
    max_queue_size: int = 1000
    max_retries: int = 3
    request_timeout: float = 30.0
    connectivity_host: Optional[str] = None
    connectivity_port: int = 443
    connectivity_check_interval: float = 30.0
    auto_tracking: bool = True


@dataclass
class SystemConfig:
    """Configuration for system settings"""
    log_level: str = "INFO"
    log_file: str = "logs/perfmon.log"
    log_format: str = "text"
    report_interval: int = 300


class Config:
    """Main configuration class"""

    def __init__(self, env_file: str = ".env"):
        """
        Initialize configuration from environment file

        Args:
            env_file: Path to environment file (default: .env)
        """
        load_dotenv(env_file)

        self.collector = self._load_collector_config()
        self.alerts = self._load_alert_config()
        self.analytics = self._load_analytics_config()
        self.system = self._load_system_config()

    def _load_collector_config(self) -> CollectorConfig:
        return CollectorConfig(
            sampling_rate=self._get_float("METRICS_SAMPLING_RATE", 0.1),
            buffer_capacity=self._get_int("METRICS_BUFFER_CAPACITY", 1000),
            max_history_size=self._get_int("METRICS_MAX_HISTORY", 1000),
            aggregation_interval=self._get_float("METRICS_AGGREGATION_INTERVAL", 60.0),
            transmission_interval=self._get_float("METRICS_TRANSMISSION_INTERVAL", 300.0),
            aggregation_window=self._get_float("METRICS_AGGREGATION_WINDOW", 300.0),
            ui_monitoring=self._get_bool("METRICS_UI_MONITORING", True),
        )

    def _load_alert_config(self) -> AlertConfig:
        return AlertConfig(
            console=self._get_bool("ALERT_CONSOLE", True),
            cooldown_seconds=self._get_float("ALERT_COOLDOWN_SECONDS", 300.0),
            webhook_enabled=self._get_bool("ALERT_WEBHOOK_ENABLED", False),
            webhook_url=os.getenv("ALERT_WEBHOOK_URL"),
        )

    def _load_analytics_config(self) -> AnalyticsConfig:
        return AnalyticsConfig(
            enabled=self._get_bool("ANALYTICS_ENABLED", True),
            endpoint=os.getenv("ANALYTICS_ENDPOINT", DEFAULT_ANALYTICS_ENDPOINT),
            dsn=os.getenv("ANALYTICS_DSN", "mobile_app_vitals"),
            project_id=os.getenv("ANALYTICS_PROJECT_ID"),
            api_key=os.getenv("ANALYTICS_API_KEY"),
            user_agent=os.getenv("ANALYTICS_USER_AGENT", DEFAULT_USER_AGENT),
            max_batch_size=self._get_int("ANALYTICS_MAX_BATCH_SIZE", 50),
            batch_interval=self._get_float("ANALYTICS_BATCH_INTERVAL", 120.0),
            max_queue_size=self._get_int("ANALYTICS_MAX_QUEUE_SIZE", 1000),
            max_retries=self._get_int("ANALYTICS_MAX_RETRIES", 3),
            request_timeout=self._get_float("ANALYTICS_TIMEOUT", 30.0),
            connectivity_host=os.getenv("ANALYTICS_CONNECTIVITY_HOST"),
            connectivity_port=self._get_int("ANALYTICS_CONNECTIVITY_PORT", 443),
            connectivity_check_interval=self._get_float("ANALYTICS_CONNECTIVITY_INTERVAL", 30.0),
            auto_tracking=self._get_bool("ANALYTICS_AUTO_TRACKING", True),
        )

    def _load_system_config(self) -> SystemConfig:
        return SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "logs/perfmon.log"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
            report_interval=self._get_int("REPORT_INTERVAL", 300),
        )

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Convert environment variable to boolean"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        raw = os.getenv(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {raw!r}")

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        raw = os.getenv(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number, got {raw!r}")

    def validate(self) -> bool:
        """
        Validate configuration

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not 0.0 <= self.collector.sampling_rate <= 1.0:
            raise ConfigurationError("METRICS_SAMPLING_RATE must be between 0 and 1")

        if self.collector.buffer_capacity <= 0:
            raise ConfigurationError("METRICS_BUFFER_CAPACITY must be positive")

        if self.collector.max_history_size <= 0:
            raise ConfigurationError("METRICS_MAX_HISTORY must be positive")

        if self.collector.aggregation_interval <= 0 or self.collector.transmission_interval <= 0:
            raise ConfigurationError("Collector intervals must be positive")

        if self.alerts.cooldown_seconds < 0:
            raise ConfigurationError("ALERT_COOLDOWN_SECONDS cannot be negative")

        if self.alerts.webhook_enabled and not self.alerts.webhook_url:
            raise ConfigurationError("Webhook enabled but no URL provided")

        if self.analytics.enabled:
            if not self.analytics.endpoint.startswith(("http://", "https://")):
                raise ConfigurationError("ANALYTICS_ENDPOINT must be an http(s) URL")
            if self.analytics.max_batch_size <= 0 or self.analytics.max_queue_size <= 0:
                raise ConfigurationError("Analytics batch and queue sizes must be positive")
            if self.analytics.max_retries < 1:
                raise ConfigurationError("ANALYTICS_MAX_RETRIES must be at least 1")

        if self.system.log_format not in ("text", "json"):
            raise ConfigurationError("LOG_FORMAT must be 'text' or 'json'")

        return True


def check_default_values(config: Config) -> List[str]:
    """
    Check if the configuration still carries placeholder values from .env.example.
    Returns a list of error messages.
    """
    errors = []

    DEFAULT_WEBHOOK = "https://your-webhook-url.com/alerts"
    DEFAULT_API_KEYS = ["your-api-key", "your-api-key-here"]
    DEFAULT_PROJECT_IDS = ["your-project-id"]

    if config.alerts.webhook_enabled and config.alerts.webhook_url == DEFAULT_WEBHOOK:
        errors.append("Webhook alerts enabled but uses default URL")

    if config.analytics.enabled:
        if config.analytics.api_key in DEFAULT_API_KEYS:
            errors.append("Analytics enabled but uses default API key")
        if config.analytics.project_id in DEFAULT_PROJECT_IDS:
            errors.append("Analytics enabled but uses default project id")

    return errors
