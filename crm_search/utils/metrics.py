"""
Metrics collection for the CRM search engine.

This module wraps prometheus_client so the engine can count backend queries,
token refreshes and strategy selections without knowing about registries.
Each MetricsManager owns its own CollectorRegistry, so several managers
(one per test, for instance) never clash over metric names.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from crm_search.utils.logging import get_logger

logger = get_logger(__name__)


class MetricType(str, Enum):
    """Types of metrics that can be collected."""

    COUNTER = "counter"
    HISTOGRAM = "histogram"


@dataclass
class MetricDefinition:
    """Definition of a metric to be collected."""

    name: str
    description: str
    type: MetricType
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None  # For histograms


SEARCH_METRICS = [
    MetricDefinition(
        name="backend_queries_total",
        description="Backend queries executed, by query kind and outcome",
        type=MetricType.COUNTER,
        labels=["kind", "outcome"],
    ),
    MetricDefinition(
        name="token_refreshes_total",
        description="Access token refresh attempts, by outcome",
        type=MetricType.COUNTER,
        labels=["outcome"],
    ),
    MetricDefinition(
        name="strategy_selections_total",
        description="Retrieval strategies chosen for incoming searches",
        type=MetricType.COUNTER,
        labels=["strategy"],
    ),
    MetricDefinition(
        name="search_duration_seconds",
        description="End-to-end search duration in seconds",
        type=MetricType.HISTOGRAM,
        labels=["strategy"],
        buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    ),
]


class MetricsManager:
    """
    Manager for collecting and reporting metrics.

    Metrics are registered from MetricDefinition values and addressed by
    their short name; the namespace is prepended on registration.
    """

    def __init__(
        self,
        namespace: str = "crm_search",
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize the metrics manager.

        Args:
            namespace: Namespace for all metrics (used as prefix)
            registry: Registry to attach metrics to; a private one by default
        """
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

    def register_metric(self, definition: MetricDefinition) -> None:
        """
        Register a new metric for collection.

        Args:
            definition: Metric definition
        """
        name = f"{self.namespace}_{definition.name}"

        if name in self._metrics:
            logger.debug(f"Metric '{name}' already registered")
            return

        if definition.type == MetricType.COUNTER:
            metric = Counter(
                name, definition.description, definition.labels, registry=self.registry
            )
        else:
            kwargs = {"buckets": definition.buckets} if definition.buckets else {}
            metric = Histogram(
                name,
                definition.description,
                definition.labels,
                registry=self.registry,
                **kwargs,
            )

        self._metrics[name] = metric

    def register_all(self, definitions: List[MetricDefinition]) -> "MetricsManager":
        for definition in definitions:
            self.register_metric(definition)
        return self

    def get_metric(self, name: str) -> Any:
        """
        Get a registered metric.

        Raises:
            ValueError: If the metric is not registered
        """
        full_name = f"{self.namespace}_{name}"
        if full_name not in self._metrics:
            raise ValueError(f"Metric '{full_name}' not registered")
        return self._metrics[full_name]

    def increment_counter(
        self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None
    ) -> None:
        metric = self.get_metric(name)
        if labels:
            metric.labels(**labels).inc(value)
        else:
            metric.inc(value)

    def observe_histogram(
        self, name: str, value: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        metric = self.get_metric(name)
        if labels:
            metric.labels(**labels).observe(value)
        else:
            metric.observe(value)

    def sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """
        Read back the current value of a counter sample.

        Returns 0.0 when the sample has never been recorded.
        """
        value = self.registry.get_sample_value(f"{self.namespace}_{name}", labels or {})
        return value or 0.0

    def render(self) -> bytes:
        """Render all metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


def create_search_metrics(namespace: str = "crm_search") -> MetricsManager:
    """Create a metrics manager with every search metric registered."""
    return MetricsManager(namespace=namespace).register_all(SEARCH_METRICS)


# Process-wide manager used when callers do not inject their own
metrics_manager = create_search_metrics()
