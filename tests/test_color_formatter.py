"""
Tests for console colors and the colored log formatter
"""

import logging
import unittest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from perfmon.utils.colors import Colors
from perfmon.utils.logging_formatter import LogFormatter


class TestColors(unittest.TestCase):

    def test_colorize(self):
        self.assertEqual(Colors.colorize("x", Colors.RED), f"{Colors.RED}x{Colors.RESET}")

    def test_severity_colors(self):
        self.assertEqual(Colors.get_severity_color("CRITICAL"), Colors.RED)
        self.assertEqual(Colors.get_severity_color("warning"), Colors.YELLOW)
        self.assertEqual(Colors.get_severity_color("info"), Colors.BLUE)
        self.assertEqual(Colors.get_severity_color("unknown"), Colors.WHITE)

    def test_grade_colors(self):
        self.assertEqual(Colors.get_grade_color("A"), Colors.GREEN)
        self.assertEqual(Colors.get_grade_color("C"), Colors.YELLOW)
        self.assertEqual(Colors.get_grade_color("F"), Colors.RED)
        self.assertEqual(Colors.get_grade_color("N/A"), Colors.WHITE)


class TestLogFormatter(unittest.TestCase):

    def setUp(self):
        self.formatter = LogFormatter()

    def _record(self, msg, level=logging.INFO):
        return logging.LogRecord("perfmon", level, "x.py", 1, msg, (), None)

    def test_level_colored(self):
        output = self.formatter.format(self._record("hello", logging.WARNING))
        self.assertIn(f"{Colors.YELLOW}WARNING{Colors.RESET}", output)
        self.assertIn("hello", output)

    def test_alert_highlighted(self):
        output = self.formatter.format(self._record("ALERT [CRITICAL] DATABASE query_time"))
        self.assertIn(f"{Colors.MAGENTA}{Colors.BOLD}ALERT", output)

    def test_aggregation_dimmed(self):
        output = self.formatter.format(self._record("Aggregation complete for 3 series"))
        self.assertIn(f"{Colors.GREY}Aggregation", output)

    def test_record_not_mutated(self):
        """Other handlers (e.g. the log file) must not receive ANSI codes"""
        record = self._record("ALERT x", logging.ERROR)
        self.formatter.format(record)
        self.assertEqual(record.levelname, "ERROR")
        self.assertEqual(record.msg, "ALERT x")


if __name__ == '__main__':
    unittest.main()
