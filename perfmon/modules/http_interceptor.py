"""
HTTP Performance Interceptor
Times outgoing requests made through requests.Session and keeps per-endpoint stats

PATTERN RECOGNITION: Endpoint statistics use the same insertion-order LRU as
a plain dict: touching an endpoint pops and re-inserts it at the tail, and the
head is evicted once more than ``max_endpoints`` distinct endpoints are seen.
A client that hits /users/1, /users/2, ... would otherwise grow the map
forever, which is also why numeric and UUID path segments are collapsed first.
"""

import logging
import re
import threading
import time
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from ..utils.metrics import compute_statistics, percentile
from ..utils.sanitization import redact_url
from .metric_data import ApiSample


_UUID_SEGMENT = re.compile(r'/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}(?=/|$)')
_NUMERIC_SEGMENT = re.compile(r'/\d+(?=/|$)')

MetricCallback = Callable[[ApiSample], None]


def normalize_endpoint(path_or_url: str) -> str:
    """
    Collapse dynamic path segments so requests to the same route share stats.

    Example:
        >>> normalize_endpoint("https://api.example.com/users/42/posts?page=2")
        '/users/{id}/posts'
    """
    path = urlsplit(path_or_url).path if "://" in path_or_url else path_or_url.split("?", 1)[0]
    path = _UUID_SEGMENT.sub('/{uuid}', path)
    path = _NUMERIC_SEGMENT.sub('/{id}', path)
    return path or "/"


def _response_size(response: Optional[requests.Response]) -> int:
    # Content-Length only; reading .content would consume streamed bodies
    if response is None:
        return 0
    length = response.headers.get("Content-Length")
    return int(length) if length and length.isdigit() else 0


class EndpointStats:
    """Rolling statistics for one (method, endpoint) pair"""

    MAX_RESPONSE_TIME_SAMPLES = 100

    def __init__(self, endpoint: str, method: str):
        self.endpoint = endpoint
        self.method = method
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.response_times: Deque[float] = deque(maxlen=self.MAX_RESPONSE_TIME_SAMPLES)
        self.status_code_counts: Dict[int, int] = {}
        self.last_request_time = datetime.now()

    def add_request(self, response_time_ms: float, status_code: int, is_success: bool):
        self.total_requests += 1
        self.last_request_time = datetime.now()
        if is_success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        self.response_times.append(response_time_ms)
        self.status_code_counts[status_code] = self.status_code_counts.get(status_code, 0) + 1

    @property
    def success_rate(self) -> float:
        return (self.successful_requests / self.total_requests * 100) if self.total_requests else 0.0

    @property
    def error_rate(self) -> float:
        return (self.failed_requests / self.total_requests * 100) if self.total_requests else 0.0

    @property
    def average_response_time(self) -> float:
        return compute_statistics(self.response_times)["avg"]

    @property
    def median_response_time(self) -> float:
        return compute_statistics(self.response_times)["median"]

    @property
    def p95_response_time(self) -> float:
        return percentile(self.response_times, 95)

    def to_dict(self) -> Dict:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "average_response_time_ms": self.average_response_time,
            "median_response_time_ms": self.median_response_time,
            "p95_response_time_ms": self.p95_response_time,
            "status_code_counts": dict(self.status_code_counts),
            "last_request_time": self.last_request_time.isoformat(),
        }


class PerformanceInterceptor:
    """
    Turns finished HTTP exchanges into ApiSamples.

    Every sample is handed to the registered metric callbacks (typically
    ``MetricCollector.record_request``) and, when detailed stats are on,
    folded into the per-endpoint statistics.

    Args:
        max_endpoints: LRU bound on distinct endpoints tracked
        slow_request_threshold_ms: Requests slower than this are logged
    """

    def __init__(self, max_endpoints: int = 500, slow_request_threshold_ms: float = 2000.0):
        self.max_endpoints = max_endpoints
        self.slow_request_threshold_ms = slow_request_threshold_ms
        self.enabled = True
        self.log_slow_requests = True
        self.collect_detailed_stats = True
        self._stats: Dict[str, EndpointStats] = {}
        self._callbacks: List[MetricCallback] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("PerformanceInterceptor")

    def add_metric_callback(self, callback: MetricCallback):
        with self._lock:
            self._callbacks.append(callback)

    def remove_metric_callback(self, callback: MetricCallback):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def configure_slow_request_logging(self, enabled: bool = True, threshold_ms: float = 2000.0):
        self.log_slow_requests = enabled
        self.slow_request_threshold_ms = threshold_ms

    def handle_exchange(
        self,
        method: str,
        url: str,
        duration_ms: float,
        response: Optional[requests.Response] = None,
        error: Optional[BaseException] = None,
    ) -> Optional[ApiSample]:
        """
        Record one request/response (or request/error) pair.

        Returns:
            The ApiSample that was produced, or None when disabled
        """
        if not self.enabled:
            return None

        endpoint = normalize_endpoint(url)
        method = method.upper()
        status_code = response.status_code if response is not None else 0
        is_success = error is None and 200 <= status_code < 400

        sample = ApiSample(
            method=method,
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=duration_ms,
            url=redact_url(url),
            response_size=_response_size(response),
            error=type(error).__name__ if error is not None else None,
            metadata={
                "content_type": response.headers.get("Content-Type") if response is not None else None,
                "server": response.headers.get("Server") if response is not None else None,
            },
        )

        with self._lock:
            callbacks = list(self._callbacks)
            if self.collect_detailed_stats:
                self._update_endpoint_stats(f"{method} {endpoint}", endpoint, method,
                                            duration_ms, status_code, is_success)

        for callback in callbacks:
            try:
                callback(sample)
            except Exception as e:
                self.logger.error(f"Metric callback failed for {method} {endpoint}: {e}")

        if self.log_slow_requests and duration_ms > self.slow_request_threshold_ms:
            self.logger.warning(
                f"SLOW REQUEST: {method} {endpoint} - {duration_ms:.0f}ms (Status: {status_code})"
            )

        return sample

    def _update_endpoint_stats(self, key, endpoint, method, duration_ms, status_code, is_success):
        # Caller holds the lock
        stats = self._stats.pop(key, None)
        if stats is None:
            stats = EndpointStats(endpoint, method)
        self._stats[key] = stats
        while len(self._stats) > self.max_endpoints:
            self._stats.pop(next(iter(self._stats)))
        stats.add_request(duration_ms, status_code, is_success)

    # ------------------------------------------------------------------
    # Stats API
    # ------------------------------------------------------------------

    def get_all_endpoint_stats(self) -> Dict[str, EndpointStats]:
        with self._lock:
            return dict(self._stats)

    def get_endpoint_stats(self, method: str, endpoint: str) -> Optional[EndpointStats]:
        with self._lock:
            return self._stats.get(f"{method.upper()} {normalize_endpoint(endpoint)}")

    def get_slowest_endpoints(self, limit: int = 10) -> List[EndpointStats]:
        stats = [s for s in self.get_all_endpoint_stats().values() if s.total_requests > 0]
        return sorted(stats, key=lambda s: s.average_response_time, reverse=True)[:limit]

    def get_error_prone_endpoints(self, limit: int = 10, min_error_rate: float = 5.0) -> List[EndpointStats]:
        stats = [s for s in self.get_all_endpoint_stats().values() if s.error_rate >= min_error_rate]
        return sorted(stats, key=lambda s: s.error_rate, reverse=True)[:limit]

    def get_performance_summary(self) -> Dict:
        all_stats = self.get_all_endpoint_stats()
        total = sum(s.total_requests for s in all_stats.values())
        successful = sum(s.successful_requests for s in all_stats.values())
        failed = sum(s.failed_requests for s in all_stats.values())
        response_times = [t for s in all_stats.values() for t in s.response_times]

        return {
            "total_endpoints": len(all_stats),
            "total_requests": total,
            "overall_success_rate": (successful / total * 100) if total else 0.0,
            "overall_error_rate": (failed / total * 100) if total else 0.0,
            "average_response_time_ms": compute_statistics(response_times)["avg"],
            "slowest_endpoints": [
                {
                    "endpoint": f"{s.method} {s.endpoint}",
                    "average_response_time_ms": s.average_response_time,
                    "request_count": s.total_requests,
                }
                for s in self.get_slowest_endpoints(limit=5)
            ],
            "error_prone_endpoints": [
                {
                    "endpoint": f"{s.method} {s.endpoint}",
                    "error_rate": s.error_rate,
                    "request_count": s.total_requests,
                }
                for s in self.get_error_prone_endpoints(limit=5, min_error_rate=0.0)
                if s.error_rate > 0
            ],
            "generated_at": datetime.now().isoformat(),
        }

    def clear_stats(self):
        with self._lock:
            self._stats.clear()

    def clear_endpoint_stats(self, method: str, endpoint: str):
        with self._lock:
            self._stats.pop(f"{method.upper()} {normalize_endpoint(endpoint)}", None)

    def export_stats(self) -> Dict:
        return {
            "endpoint_stats": {k: v.to_dict() for k, v in self.get_all_endpoint_stats().items()},
            "summary": self.get_performance_summary(),
            "exported_at": datetime.now().isoformat(),
        }


class InstrumentedSession(requests.Session):
    """
    A requests.Session that reports every request to a PerformanceInterceptor.

    Example:
        interceptor = PerformanceInterceptor()
        interceptor.add_metric_callback(collector.record_request)
        session = InstrumentedSession(interceptor)
        session.get("https://api.example.com/news/42")

    Exceptions raised by the underlying request are recorded and then re-raised
    unchanged; instrumentation never alters what the caller sees.
    """

    def __init__(self, interceptor: PerformanceInterceptor):
        super().__init__()
        self.interceptor = interceptor

    def request(self, method, url, *args, **kwargs):
        started = time.perf_counter()
        try:
            response = super().request(method, url, *args, **kwargs)
        except requests.RequestException as e:
            self._record(method, url, started, error=e)
            raise
        self._record(method, url, started, response=response)
        return response

    def _record(self, method, url, started, response=None, error=None):
        duration_ms = (time.perf_counter() - started) * 1000
        try:
            self.interceptor.handle_exchange(method, url, duration_ms, response=response, error=error)
        except Exception as e:
            self.interceptor.logger.error(f"Failed to record request metrics: {e}")
