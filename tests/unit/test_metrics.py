"""
Tests for the metrics manager.
"""

import pytest

from crm_search.utils.metrics import (
    MetricDefinition,
    MetricsManager,
    MetricType,
    create_search_metrics,
)


def test_search_metrics_registered(metrics):
    for name in (
        "backend_queries_total",
        "token_refreshes_total",
        "strategy_selections_total",
        "search_duration_seconds",
    ):
        assert metrics.get_metric(name) is not None


def test_unknown_metric(metrics):
    with pytest.raises(ValueError):
        metrics.get_metric("nope")


def test_counter(metrics):
    metrics.increment_counter("token_refreshes_total", labels={"outcome": "success"})
    metrics.increment_counter("token_refreshes_total", 2, labels={"outcome": "success"})

    assert metrics.sample_value("token_refreshes_total", {"outcome": "success"}) == 3
    assert metrics.sample_value("token_refreshes_total", {"outcome": "failure"}) == 0


def test_histogram(metrics):
    metrics.observe_histogram("search_duration_seconds", 0.2, labels={"strategy": "default"})

    assert metrics.sample_value("search_duration_seconds_count", {"strategy": "default"}) == 1
    assert metrics.sample_value("search_duration_seconds_sum", {"strategy": "default"}) == 0.2


def test_registries_are_independent():
    first = create_search_metrics()
    second = create_search_metrics()
    first.increment_counter("strategy_selections_total", labels={"strategy": "default"})

    assert second.sample_value("strategy_selections_total", {"strategy": "default"}) == 0


def test_duplicate_registration():
    manager = MetricsManager(namespace="test")
    definition = MetricDefinition(name="retries_total", description="d", type=MetricType.COUNTER)
    manager.register_metric(definition)
    manager.register_metric(definition)

    manager.increment_counter("retries_total", 2)
    assert manager.sample_value("retries_total") == 2


def test_render(metrics):
    metrics.increment_counter("strategy_selections_total", labels={"strategy": "sosl_only"})
    output = metrics.render().decode()
    assert 'crm_search_strategy_selections_total{strategy="sosl_only"} 1.0' in output
