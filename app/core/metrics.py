"""
Prometheus collectors for cache, aggregation and telemetry paths
"""

import logging

from prometheus_client import Counter, Histogram, REGISTRY

logger = logging.getLogger(__name__)


def _counter(name: str, documentation: str, labelnames):
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        # Already registered (module re-import under test runners)
        return REGISTRY._names_to_collectors[name]


def _histogram(name: str, documentation: str, labelnames):
    try:
        return Histogram(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


CACHE_REQUESTS = _counter(
    "analytics_cache_requests_total",
    "Cache operations by outcome",
    ["operation", "result"]
)

AGGREGATION_DURATION = _histogram(
    "analytics_aggregation_duration_seconds",
    "Time spent building one aggregated report",
    ["range_type"]
)

TELEMETRY_SUBMISSIONS = _counter(
    "analytics_telemetry_submissions_total",
    "Telemetry event submissions by final outcome",
    ["outcome"]
)

REQUEST_COUNT = _counter(
    "app_requests_total",
    "Total requests",
    ["method", "endpoint", "status"]
)

REQUEST_DURATION = _histogram(
    "app_request_duration_seconds",
    "Request duration",
    ["method", "endpoint"]
)
