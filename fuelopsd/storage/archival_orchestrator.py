"""
Archival orchestrator - coordinates a full archival run.

This is the main entry point for archival: it walks the registered entity
types in order, resolves each one's retention, archives it, and aggregates a
run result for the caller.
"""

import functools
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Callable, Awaitable

import pandas as pd
import structlog

from .archival_jobs import JobRecordStore, ArchivalLease
from .archival_models import (
    ArchivalOptions, RunResult, RetentionClass, CancellationToken, ArchivalAlreadyRunningError,
    ArchivalCancelledError, ArchivalLeaseLostError
)
from .archival_registry import ArchivalRegistry, RegisteredEntity
from .collection_archiver import CollectionArchiver
from .retention_config import RetentionResolver

logger = structlog.get_logger(__name__)


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-month subtraction; day-of-month clamps to the target month's end."""
    return (pd.Timestamp(moment) - pd.DateOffset(months=months)).to_pydatetime()


class ArchivalOrchestrator:
    """
    Runs archival across all registered entity types.

    Entity types are processed sequentially in registry order. By default the
    first failing entity type halts the run; ``continue_on_error`` isolates
    failures per entity type instead.
    """

    def __init__(
        self,
        registry: ArchivalRegistry,
        resolver: RetentionResolver,
        job_store: JobRecordStore,
        lease: Optional[ArchivalLease] = None,
        archiver: Optional[CollectionArchiver] = None,
        metrics=None
    ):
        self.registry = registry
        self.resolver = resolver
        self.job_store = job_store
        self.lease = lease
        self.archiver = archiver or CollectionArchiver(job_store)
        self.metrics = metrics

    async def run(
        self,
        options: Optional[ArchivalOptions] = None,
        initiated_by: str = "system",
        cancel_token: Optional[CancellationToken] = None
    ) -> RunResult:
        """
        Archive old records for the selected entity types.

        Run-level failures are reported through ``RunResult.success`` and
        ``RunResult.errors`` rather than raised.
        """
        options = options or ArchivalOptions()
        result = RunResult(dry_run=options.dry_run)
        start = time.monotonic()

        selected = self._select_entities(options.collections, result)
        if not result.errors:
            logger.info("Starting archival process",
                        dry_run=options.dry_run,
                        months_to_keep=options.months_to_keep,
                        audit_log_months_to_keep=options.audit_log_months_to_keep,
                        collections=[entity.name for entity in selected],
                        initiated_by=initiated_by)

            holder = f"{initiated_by}:{uuid.uuid4().hex[:12]}"
            leased = False
            try:
                # Dry runs do not take the lease
                renew_lease = None
                if self.lease is not None and not options.dry_run:
                    await self.lease.acquire(holder)
                    leased = True
                    renew_lease = functools.partial(self.lease.renew, holder)
                await self._process(selected, options, initiated_by, cancel_token, result, renew_lease)
            except ArchivalAlreadyRunningError as e:
                logger.warning("Archival run rejected", error=str(e))
                result.errors.append(str(e))
            except Exception as e:
                logger.error("Archival process failed", error=str(e))
                result.errors.append(str(e))
            finally:
                if leased:
                    await self.lease.release(holder)

        result.success = not result.errors
        result.total_duration_ms = int((time.monotonic() - start) * 1000)

        logger.info("Archival process completed",
                    success=result.success,
                    total_records_archived=result.total_records_archived,
                    total_duration_ms=result.total_duration_ms,
                    errors=result.errors)

        if result.success and not options.dry_run:
            await self._optimize_stores(result)

        if self.metrics is not None:
            self.metrics.record_run(result)

        return result

    def _select_entities(self, collections: Optional[List[str]], result: RunResult) -> List[RegisteredEntity]:
        if collections is None:
            return list(self.registry)

        unknown = [name for name in collections if name not in self.registry]
        if unknown:
            result.errors.append(f"Unknown collection(s): {', '.join(unknown)}")
            return []

        wanted = set(collections)
        return [entity for entity in self.registry if entity.name in wanted]

    def _default_months(self, entity: RegisteredEntity, options: ArchivalOptions) -> int:
        if entity.entity_type.retention_class == RetentionClass.AUDIT:
            return options.audit_log_months_to_keep
        return options.months_to_keep

    async def _process(
        self,
        selected: List[RegisteredEntity],
        options: ArchivalOptions,
        initiated_by: str,
        cancel_token: Optional[CancellationToken],
        result: RunResult,
        renew_lease: Optional[Callable[[], Awaitable[None]]] = None
    ):
        now = datetime.now(timezone.utc)

        for entity in selected:
            if renew_lease is not None:
                await renew_lease()

            decision = await self.resolver.resolve(entity.name, self._default_months(entity, options))
            if not decision.enabled:
                logger.info("Archival disabled for collection, skipping", collection=entity.name)
                continue

            cutoff_date = subtract_months(now, decision.months)
            logger.info("Resolved cutoff", collection=entity.name,
                        retention_months=decision.months, cutoff_date=cutoff_date.isoformat())

            try:
                collection_result = await self.archiver.archive(
                    entity.name,
                    entity.hot_store,
                    entity.cold_store,
                    cutoff_date,
                    initiated_by,
                    dry_run=options.dry_run,
                    batch_size=options.batch_size,
                    date_field=entity.entity_type.date_field,
                    cancel_token=cancel_token,
                    renew_lease=renew_lease
                )
            except ArchivalCancelledError as e:
                result.errors.append(f"{entity.name}: {e}")
                logger.warning("Archival run cancelled", collection=entity.name)
                return
            except ArchivalLeaseLostError as e:
                result.errors.append(f"{entity.name}: {e}")
                logger.error("Archival lease lost, halting run", collection=entity.name)
                return
            except Exception as e:
                result.errors.append(f"{entity.name}: {e}")
                if not options.continue_on_error:
                    logger.error("Collection failed, halting run", collection=entity.name, error=str(e))
                    return
                logger.error("Collection failed, continuing", collection=entity.name, error=str(e))
                continue

            result.add(entity.name, collection_result)

    async def _optimize_stores(self, result: RunResult):
        """Ask each processed hot store to compact once per physical database."""
        seen = set()
        for name in result.collections_archived:
            store = self.registry.get(name).hot_store
            if store.location in seen:
                continue
            seen.add(store.location)
            try:
                await store.compact()
            except Exception as e:
                logger.warning("Store optimization failed (non-critical)", collection=name, error=str(e))
