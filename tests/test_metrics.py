"""
Unit tests for Prometheus metrics.
"""
from ai_orchestrator.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_ai_request,
    record_cache_hit,
    record_normalizer_dropped,
    record_rate_limit_denied,
    registry,
)


def sample(name, labels):
    return registry.get_sample_value(name, labels) or 0.0


def test_record_ai_request_increments_counter():
    labels = {"operation": "generate_text", "provider": "metrics-test", "status": "success"}
    before = sample("ai_requests_total", labels)

    record_ai_request("generate_text", "metrics-test", "success", 0.2)

    assert sample("ai_requests_total", labels) == before + 1


def test_normalizer_dropped_ignores_zero():
    labels = {"kind": "metrics-test"}
    before = sample("ai_normalizer_dropped_total", labels)

    record_normalizer_dropped("metrics-test", 0)
    record_normalizer_dropped("metrics-test", 3)

    assert sample("ai_normalizer_dropped_total", labels) == before + 3


def test_get_metrics_renders_text():
    record_cache_hit("metrics-test")
    record_rate_limit_denied("minute")

    output = get_metrics().decode("utf-8")

    assert "ai_requests_total" in output
    assert "ai_rate_limit_denied_total" in output
    assert get_metrics_content_type().startswith("text/plain")
