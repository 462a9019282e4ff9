"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: provider request rate, errors, duration
- Pipeline Metrics: retries, rate-limit denials, cache hits/misses,
  normalizer drops

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

from ai_orchestrator.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

ai_requests_total = Counter(
    "ai_requests_total",
    "Total number of orchestrated AI requests",
    ["operation", "provider", "status"],  # status: success, failure, cached, throttled
    registry=registry,
)

ai_provider_errors_total = Counter(
    "ai_provider_errors_total",
    "Total number of provider call errors",
    ["provider", "kind"],
    registry=registry,
)

ai_provider_request_duration_seconds = Histogram(
    "ai_provider_request_duration_seconds",
    "Provider HTTP call latency in seconds",
    ["provider", "endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

ai_request_duration_seconds = Histogram(
    "ai_request_duration_seconds",
    "End-to-end orchestrated request latency in seconds",
    ["operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

ai_retries_total = Counter(
    "ai_retries_total",
    "Total number of retry attempts scheduled after a retryable failure",
    ["kind"],
    registry=registry,
)

ai_rate_limit_denied_total = Counter(
    "ai_rate_limit_denied_total",
    "Total number of requests denied by the rate limiter",
    ["reason"],  # cooldown, minute, hour, day, error
    registry=registry,
)

cache_hits_total = Counter(
    "ai_cache_hits_total",
    "Total number of result cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "ai_cache_misses_total",
    "Total number of result cache misses",
    ["cache_type"],
    registry=registry,
)

ai_normalizer_dropped_total = Counter(
    "ai_normalizer_dropped_total",
    "Total number of response elements dropped during normalization",
    ["kind"],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_ai_request(operation: str, provider: str, status: str, duration_seconds: float) -> None:
    """
    Record one orchestrated request.

    Args:
        operation: Public operation name (generate_text, ...)
        provider: Provider adapter name
        status: success | failure | cached | throttled
        duration_seconds: End-to-end duration
    """
    ai_requests_total.labels(operation=operation, provider=provider, status=status).inc()
    ai_request_duration_seconds.labels(operation=operation).observe(duration_seconds)


def record_provider_call(provider: str, endpoint: str, duration_seconds: float) -> None:
    ai_provider_request_duration_seconds.labels(provider=provider, endpoint=endpoint).observe(
        duration_seconds
    )


def record_provider_error(provider: str, kind: str) -> None:
    ai_provider_errors_total.labels(provider=provider, kind=kind).inc()


def record_retry(kind: str) -> None:
    ai_retries_total.labels(kind=kind).inc()


def record_rate_limit_denied(reason: str) -> None:
    ai_rate_limit_denied_total.labels(reason=reason).inc()


def record_cache_hit(cache_type: str) -> None:
    """
    Record a cache hit.

    Args:
        cache_type: Type of cache (e.g., "generate_text", "metrics")
    """
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    """
    Record a cache miss.

    Args:
        cache_type: Type of cache (e.g., "generate_text", "metrics")
    """
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_normalizer_dropped(kind: str, count: int) -> None:
    if count > 0:
        ai_normalizer_dropped_total.labels(kind=kind).inc(count)


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.
    """
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
