"""
Tests for HTTP request instrumentation
"""

import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch
import sys

import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from perfmon.modules.http_interceptor import (
    EndpointStats,
    InstrumentedSession,
    PerformanceInterceptor,
    normalize_endpoint,
)


def fake_response(status=200, headers=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.headers = headers or {}
    return response


class TestNormalizeEndpoint(unittest.TestCase):

    def test_numeric_ids(self):
        self.assertEqual(normalize_endpoint("/users/42/posts/7"), "/users/{id}/posts/{id}")

    def test_uuid(self):
        self.assertEqual(
            normalize_endpoint("/news/123e4567-e89b-12d3-a456-426614174000"),
            "/news/{uuid}",
        )

    def test_full_url_and_query_string(self):
        self.assertEqual(
            normalize_endpoint("https://api.example.com/users/42?page=2"),
            "/users/{id}",
        )
        self.assertEqual(normalize_endpoint("/search?q=1"), "/search")

    def test_mixed_segment_untouched(self):
        self.assertEqual(normalize_endpoint("/v2/items"), "/v2/items")

    def test_root(self):
        self.assertEqual(normalize_endpoint("https://api.example.com"), "/")


class TestEndpointStats(unittest.TestCase):

    def test_rates_and_percentiles(self):
        stats = EndpointStats("/news", "GET")
        for ms in range(1, 21):
            stats.add_request(float(ms), 200, True)
        stats.add_request(100.0, 500, False)

        self.assertEqual(stats.total_requests, 21)
        self.assertAlmostEqual(stats.error_rate, 100 / 21)
        self.assertEqual(stats.median_response_time, 11.0)
        self.assertEqual(stats.p95_response_time, 20.0)
        self.assertEqual(stats.status_code_counts, {200: 20, 500: 1})

    def test_samples_bounded(self):
        stats = EndpointStats("/news", "GET")
        for i in range(150):
            stats.add_request(float(i), 200, True)
        self.assertEqual(len(stats.response_times), 100)
        self.assertEqual(stats.total_requests, 150)

    def test_empty(self):
        stats = EndpointStats("/news", "GET")
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(stats.average_response_time, 0.0)
        self.assertEqual(stats.to_dict()["p95_response_time_ms"], 0.0)


class TestPerformanceInterceptor(unittest.TestCase):
    """Test cases for PerformanceInterceptor"""

    def setUp(self):
        self.interceptor = PerformanceInterceptor(max_endpoints=3)
        self.samples = []
        self.interceptor.add_metric_callback(self.samples.append)

    def test_success_sample(self):
        sample = self.interceptor.handle_exchange(
            "get", "https://api.example.com/news/42", 85.0,
            response=fake_response(200, {"Content-Length": "512", "Server": "nginx"}),
        )
        self.assertEqual(self.samples, [sample])
        self.assertEqual(sample.endpoint, "/news/{id}")
        self.assertEqual(sample.method, "GET")
        self.assertEqual(sample.response_size, 512)
        self.assertTrue(sample.is_success)

        stats = self.interceptor.get_endpoint_stats("GET", "/news/7")
        self.assertEqual(stats.total_requests, 1)

    def test_error_sample(self):
        sample = self.interceptor.handle_exchange(
            "POST", "https://api.example.com/news", 30000.0, error=requests.Timeout()
        )
        self.assertEqual(sample.status_code, 0)
        self.assertEqual(sample.error, "Timeout")
        self.assertFalse(sample.is_success)
        self.assertEqual(self.interceptor.get_endpoint_stats("POST", "/news").failed_requests, 1)

    def test_credentials_not_kept_in_url(self):
        sample = self.interceptor.handle_exchange(
            "GET", "https://user:pw@api.example.com/news?token=abc", 10.0, response=fake_response()
        )
        self.assertNotIn("pw", sample.url)
        self.assertNotIn("abc", sample.url)

    def test_lru_eviction(self):
        for path in ("/a", "/b", "/c"):
            self.interceptor.handle_exchange("GET", path, 1.0, response=fake_response())
        # Touch /a so /b becomes least recently used
        self.interceptor.handle_exchange("GET", "/a", 1.0, response=fake_response())
        self.interceptor.handle_exchange("GET", "/d", 1.0, response=fake_response())

        keys = set(self.interceptor.get_all_endpoint_stats())
        self.assertEqual(keys, {"GET /a", "GET /c", "GET /d"})

    def test_slow_request_logged(self):
        with self.assertLogs("PerformanceInterceptor", level="WARNING") as logs:
            self.interceptor.handle_exchange("GET", "/slow", 2500.0, response=fake_response())
        self.assertIn("SLOW REQUEST: GET /slow - 2500ms", logs.output[0])

    def test_failing_callback_does_not_raise(self):
        self.interceptor.add_metric_callback(MagicMock(side_effect=RuntimeError("boom")))
        sample = self.interceptor.handle_exchange("GET", "/a", 1.0, response=fake_response())
        self.assertIsNotNone(sample)
        self.assertEqual(len(self.samples), 1)

    def test_disabled(self):
        self.interceptor.enabled = False
        self.assertIsNone(self.interceptor.handle_exchange("GET", "/a", 1.0, response=fake_response()))
        self.assertEqual(self.samples, [])

    def test_performance_summary(self):
        self.interceptor.handle_exchange("GET", "/fast", 10.0, response=fake_response())
        self.interceptor.handle_exchange("GET", "/slow", 300.0, response=fake_response(500))

        summary = self.interceptor.get_performance_summary()
        self.assertEqual(summary["total_endpoints"], 2)
        self.assertEqual(summary["total_requests"], 2)
        self.assertEqual(summary["overall_error_rate"], 50.0)
        self.assertEqual(summary["average_response_time_ms"], 155.0)
        self.assertEqual(summary["slowest_endpoints"][0]["endpoint"], "GET /slow")
        self.assertEqual(summary["error_prone_endpoints"][0]["endpoint"], "GET /slow")

    def test_clear(self):
        self.interceptor.handle_exchange("GET", "/a", 1.0, response=fake_response())
        self.interceptor.handle_exchange("GET", "/b", 1.0, response=fake_response())
        self.interceptor.clear_endpoint_stats("get", "/a")
        self.assertEqual(set(self.interceptor.get_all_endpoint_stats()), {"GET /b"})
        self.interceptor.clear_stats()
        self.assertEqual(self.interceptor.export_stats()["endpoint_stats"], {})


class TestInstrumentedSession(unittest.TestCase):

    def setUp(self):
        self.interceptor = PerformanceInterceptor()
        self.samples = []
        self.interceptor.add_metric_callback(self.samples.append)
        self.session = InstrumentedSession(self.interceptor)

    def tearDown(self):
        self.session.close()

    @patch('requests.Session.request')
    def test_records_response(self, mock_request):
        mock_request.return_value = fake_response(201)
        result = self.session.post("https://api.example.com/news", json={"title": "x"})

        self.assertIs(result, mock_request.return_value)
        self.assertEqual(len(self.samples), 1)
        self.assertEqual(self.samples[0].method, "POST")
        self.assertEqual(self.samples[0].status_code, 201)
        self.assertGreaterEqual(self.samples[0].duration_ms, 0)

    @patch('requests.Session.request')
    def test_records_and_reraises_errors(self, mock_request):
        mock_request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(requests.ConnectionError):
            self.session.get("https://api.example.com/news/1")
        self.assertEqual(self.samples[0].error, "ConnectionError")
        self.assertEqual(self.samples[0].endpoint, "/news/{id}")


if __name__ == '__main__':
    unittest.main()
