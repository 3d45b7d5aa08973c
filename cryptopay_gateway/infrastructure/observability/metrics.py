"""Prometheus metrics for explorer traffic, caching, verification outcomes and monitoring"""

from prometheus_client import Counter, Histogram

# Explorer API metrics
explorer_request_counter = Counter(
    "cryptopay_explorer_requests_total",
    "Explorer API calls",
    ["endpoint", "outcome"],  # ok | api_error | transport_error | decode_error | cancelled
)

explorer_latency_histogram = Histogram(
    "cryptopay_explorer_latency_seconds",
    "Explorer API response time",
    ["endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

rate_limit_wait_histogram = Histogram(
    "cryptopay_rate_limit_wait_seconds",
    "Time spent waiting for a rate-limit token",
    buckets=[0.0, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# Cache metrics
cache_hit_counter = Counter(
    "cryptopay_cache_hits_total",
    "Cache lookups served from a fresh entry",
)

cache_miss_counter = Counter(
    "cryptopay_cache_misses_total",
    "Cache lookups that triggered a remote call",
)

cache_eviction_counter = Counter(
    "cryptopay_cache_evictions_total",
    "Entries evicted to stay under the size limit",
)

# Payment metrics
verification_counter = Counter(
    "cryptopay_verification_total",
    "Payment verification outcomes",
    ["outcome"],  # not_found | pending | confirmed | failed
)

status_transition_counter = Counter(
    "cryptopay_status_transitions_total",
    "Payment status transitions delivered by the monitor",
    ["state"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_explorer_call(endpoint: str, outcome: str, duration: float) -> None:
    """Record outcome and latency of one explorer call"""
    explorer_request_counter.labels(endpoint=endpoint, outcome=outcome).inc()
    explorer_latency_histogram.labels(endpoint=endpoint).observe(duration)
