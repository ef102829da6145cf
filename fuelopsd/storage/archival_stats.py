"""
Archival statistics and job history.

Reports active versus archived record counts per entity type, the last
successful archival and an approximate space-saved figure.
"""

import asyncio
from typing import List, Optional

import structlog

from .archival_jobs import JobRecordStore
from .archival_models import ArchivalStats, JobRecord
from .archival_registry import ArchivalRegistry
from .interfaces import RecordFilter

logger = structlog.get_logger(__name__)

# Estimated size of one archived record
BYTES_PER_RECORD = 2048


def estimate_space_saved(archived_records: int) -> str:
    """Approximate hot-store space freed by archiving, rendered in MB."""
    return f"{archived_records * BYTES_PER_RECORD / (1024 * 1024):.2f} MB"


class ArchivalStatsReporter:
    """Reads record counts and job history; never mutates anything."""

    def __init__(self, registry: ArchivalRegistry, job_store: JobRecordStore):
        self.registry = registry
        self.job_store = job_store

    async def get_stats(self) -> ArchivalStats:
        """
        Count active and archived records for every registered entity type.

        All count queries and the last-completed-job lookup run concurrently.
        ``total_space_saved`` is an estimate of ``BYTES_PER_RECORD`` per
        archived record, not a measured size.
        """
        entities = list(self.registry)
        active_filter = RecordFilter(exclude_deleted=True)

        counts = await asyncio.gather(
            *[entity.hot_store.count(active_filter) for entity in entities],
            *[entity.cold_store.count() for entity in entities],
            self.job_store.latest_completed()
        )

        active_counts = counts[:len(entities)]
        archived_counts = counts[len(entities):2 * len(entities)]
        last_job = counts[-1]

        active_records = {entity.name: count for entity, count in zip(entities, active_counts)}
        archived_records = {entity.name: count for entity, count in zip(entities, archived_counts)}

        stats = ArchivalStats(
            active_records=active_records,
            archived_records=archived_records,
            last_archival_date=last_job.completed_at if last_job else None,
            total_space_saved=estimate_space_saved(sum(archived_records.values()))
        )
        logger.debug("Archival stats collected",
                     active=sum(active_records.values()),
                     archived=sum(archived_records.values()))
        return stats

    async def get_history(self, limit: int = 50, collection_name: Optional[str] = None) -> List[JobRecord]:
        """Most recent job records, newest first."""
        if collection_name is not None:
            # Validates the name
            self.registry.get(collection_name)
        return await self.job_store.history(limit=limit, collection_name=collection_name)
