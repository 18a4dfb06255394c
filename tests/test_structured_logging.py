"""
Tests for structured logging functionality
"""

import unittest
import json
import logging
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from perfmon.utils.structured_logging import JSONFormatter


def make_record(msg="Test message", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="test_function"
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter(unittest.TestCase):
    """Test cases for JSONFormatter"""

    def setUp(self):
        """Set up test fixtures"""
        self.formatter = JSONFormatter()

    def test_basic_json_format(self):
        """Test that logs are formatted as valid JSON"""
        data = json.loads(self.formatter.format(make_record()))

        self.assertIn("timestamp", data)
        self.assertEqual(data["level"], "INFO")
        self.assertEqual(data["logger"], "test_logger")
        self.assertEqual(data["message"], "Test message")
        self.assertEqual(data["module"], "test")
        self.assertEqual(data["function"], "test_function")
        self.assertEqual(data["line"], 42)

    def test_exception_logging(self):
        """Test that exceptions are included in JSON output"""
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(self.formatter.format(make_record("Error occurred", logging.ERROR, exc_info)))

        self.assertIn("ValueError: Test error", data["exception"])
        self.assertIn("Traceback", data["exception"])

    def test_extra_fields(self):
        """Test that extra fields are merged into the output"""
        record = make_record(extra_fields={"series": "api", "value": 120.5})
        data = json.loads(self.formatter.format(record))
        self.assertEqual(data["series"], "api")
        self.assertEqual(data["value"], 120.5)

    def test_sensitive_fields_redacted(self):
        """Credential-like extra fields never reach the output"""
        record = make_record(extra_fields={
            "api_key": "k-123",
            "analytics_dsn": "mobile_app_vitals",
            "Authorization": "Bearer abc",
            "endpoint": "/news",
        })
        output = self.formatter.format(record)
        data = json.loads(output)

        self.assertEqual(data["api_key"], "[REDACTED]")
        self.assertEqual(data["analytics_dsn"], "[REDACTED]")
        self.assertEqual(data["Authorization"], "[REDACTED]")
        self.assertEqual(data["endpoint"], "/news")
        self.assertNotIn("k-123", output)

    def test_non_serializable_values(self):
        """Values json cannot encode are stringified instead of raising"""
        record = make_record(extra_fields={"when": object()})
        data = json.loads(self.formatter.format(record))
        self.assertIn("object", data["when"])


if __name__ == '__main__':
    unittest.main()
