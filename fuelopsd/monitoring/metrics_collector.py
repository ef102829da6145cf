"""
Base metrics collector for the fuelops daemon.

Provides registry management, collection timing and metric factories shared
by every Prometheus collector in the system.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List

import structlog
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest


class MetricsCollector(ABC):
    """
    Base class for metrics collectors.

    Subclasses create their metrics in ``_initialize_metrics`` and refresh
    point-in-time values in ``collect_metrics``.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional Prometheus registry. If None, a private registry is created.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = structlog.get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._collection_start_time = time.time()
        self._last_collection_time = 0.0
        self._collection_count = 0

        collector_type = self.__class__.__name__
        self._collection_duration = Histogram(
            f'metrics_collection_duration_seconds_{collector_type.lower()}',
            'Time spent collecting metrics',
            ['collector_type'],
            registry=self.registry
        )

        self._collection_errors = Counter(
            f'metrics_collection_errors_total_{collector_type.lower()}',
            'Total number of metrics collection errors',
            ['collector_type', 'error_type'],
            registry=self.registry
        )

        self._initialize_metrics()

    @abstractmethod
    def _initialize_metrics(self) -> None:
        """Initialize collector-specific metrics. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def collect_metrics(self) -> Dict[str, Any]:
        """
        Collect metrics asynchronously. Must be implemented by subclasses.

        Returns:
            Dictionary containing collected metrics data
        """
        pass

    async def collect(self) -> Dict[str, Any]:
        """Run ``collect_metrics`` and track its duration and failures."""
        start_time = time.time()
        collector_type = self.__class__.__name__

        try:
            metrics_data = await self.collect_metrics()

            duration = time.time() - start_time
            self._collection_duration.labels(collector_type=collector_type).observe(duration)
            self._last_collection_time = time.time()
            self._collection_count += 1

            self.logger.debug("Metrics collected", count=len(metrics_data), duration_seconds=round(duration, 4))
            return metrics_data

        except Exception as e:
            self._collection_errors.labels(
                collector_type=collector_type,
                error_type=type(e).__name__
            ).inc()
            self.logger.error("Error collecting metrics", error=str(e))
            raise

    def export_text(self) -> str:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode('utf-8')

    def get_metrics_summary(self) -> Dict[str, Any]:
        uptime = time.time() - self._collection_start_time
        return {
            'collector_type': self.__class__.__name__,
            'uptime_seconds': uptime,
            'collection_count': self._collection_count,
            'last_collection_time': self._last_collection_time
        }

    def create_counter(self, name: str, description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        return Counter(name, description, labelnames or [], registry=self.registry)

    def create_histogram(self, name: str, description: str,
                         labelnames: Optional[List[str]] = None,
                         buckets: Optional[List[float]] = None) -> Histogram:
        """
        Create a Histogram metric.

        Args:
            name: Metric name
            description: Metric description
            labelnames: List of label names
            buckets: Histogram buckets; Prometheus defaults when omitted

        Returns:
            Histogram metric
        """
        if buckets is None:
            return Histogram(name, description, labelnames or [], registry=self.registry)
        return Histogram(name, description, labelnames or [], buckets=buckets, registry=self.registry)

    def create_gauge(self, name: str, description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        return Gauge(name, description, labelnames or [], registry=self.registry)
