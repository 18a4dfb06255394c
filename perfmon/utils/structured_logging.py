"""
Structured Logging Module
JSON-formatted log output for shipping pipeline logs to an aggregator
"""

import json
import logging
from typing import Any


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each log record as one JSON object per line.

    Extra context can be attached with
    ``logger.info("msg", extra={"extra_fields": {"metric": "api"}})``;
    those fields are merged into the top-level object after redaction.

    SECURITY STORY: Analytics credentials (DSN, API key, bearer tokens) travel
    through the same objects that get logged. Any extra field whose name looks
    like a credential is replaced with "[REDACTED]" so a careless debug line
    cannot leak the project key into a log bucket.
    """

    SENSITIVE_FIELDS = {
        'password', 'token', 'api_key', 'apikey', 'secret', 'credential',
        'authorization', 'dsn', 'webhook_url'
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update({
                k: self._sanitize_value(k, v)
                for k, v in extra_fields.items()
            })

        return json.dumps(log_data, default=str)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Return "[REDACTED]" for credential-like keys, the value otherwise."""
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
            return "[REDACTED]"
        return value
