"""
Archival metrics collector.

Tracks archival runs and records moved per entity type, and refreshes
active/archived record gauges from the stats reporter on collection.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry

from .metrics_collector import MetricsCollector
from ..storage.archival_models import RunResult


class ArchivalMetricsCollector(MetricsCollector):
    """
    Prometheus metrics for the archival engine.

    Metrics include:
    - Runs by outcome and dry-run flag
    - Records archived and skipped per entity type
    - Run and per-entity-type durations
    - Active and archived record counts (refreshed by ``collect_metrics``)
    """

    def __init__(self, stats_reporter=None, registry: Optional[CollectorRegistry] = None):
        """
        Args:
            stats_reporter: Optional ``ArchivalStatsReporter`` used to refresh record gauges
            registry: Optional Prometheus registry
        """
        self.stats_reporter = stats_reporter
        super().__init__(registry)

    def _initialize_metrics(self) -> None:
        self.runs_total = self.create_counter(
            'archival_runs_total',
            'Total archival runs',
            ['status', 'dry_run']
        )

        self.records_archived_total = self.create_counter(
            'archival_records_archived_total',
            'Records moved to the archive store',
            ['entity_type']
        )

        self.records_skipped_total = self.create_counter(
            'archival_records_skipped_total',
            'Eligible records left in the active store',
            ['entity_type']
        )

        self.run_duration = self.create_histogram(
            'archival_run_duration_seconds',
            'Archival run duration',
            buckets=[1.0, 10.0, 60.0, 300.0, 900.0, 3600.0, 10800.0]
        )

        self.collection_duration = self.create_histogram(
            'archival_collection_duration_seconds',
            'Archival duration per entity type',
            ['entity_type'],
            buckets=[0.1, 1.0, 10.0, 60.0, 300.0, 900.0, 3600.0]
        )

        self.run_errors_total = self.create_counter(
            'archival_run_errors_total',
            'Errors reported by archival runs'
        )

        self.active_records = self.create_gauge(
            'archival_active_records',
            'Records in the active store',
            ['entity_type']
        )

        self.archived_records = self.create_gauge(
            'archival_archived_records',
            'Records in the archive store',
            ['entity_type']
        )

        self.last_archival_timestamp = self.create_gauge(
            'archival_last_completed_timestamp_seconds',
            'Completion time of the most recent completed archival job'
        )

    def record_run(self, result: RunResult) -> None:
        """Update counters from a finished run."""
        status = 'success' if result.success else 'failed'
        dry_run = 'true' if result.dry_run else 'false'
        self.runs_total.labels(status=status, dry_run=dry_run).inc()
        self.run_duration.observe(result.total_duration_ms / 1000.0)

        if result.errors:
            self.run_errors_total.inc(len(result.errors))

        # Dry runs only count; nothing moved
        if result.dry_run:
            return

        for entity_type, collection in result.collections_archived.items():
            self.records_archived_total.labels(entity_type=entity_type).inc(collection.records_archived)
            self.records_skipped_total.labels(entity_type=entity_type).inc(collection.records_skipped)
            self.collection_duration.labels(entity_type=entity_type).observe(collection.duration_ms / 1000.0)

    async def collect_metrics(self) -> Dict[str, Any]:
        if self.stats_reporter is None:
            return {}

        stats = await self.stats_reporter.get_stats()
        for entity_type, count in stats.active_records.items():
            self.active_records.labels(entity_type=entity_type).set(count)
        for entity_type, count in stats.archived_records.items():
            self.archived_records.labels(entity_type=entity_type).set(count)
        if stats.last_archival_date is not None:
            self.last_archival_timestamp.set(stats.last_archival_date.timestamp())

        return stats.to_dict()
