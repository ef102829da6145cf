"""
Collection archiver.

Moves records of one entity type from the active (hot) store to the archive
(cold) store in bounded batches. Each batch is an insert-then-delete step:
only identities the archive store confirmed are removed from the active
store, so a failed insert leaves the source record in place.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Callable, Awaitable

import structlog

from .archival_jobs import JobRecordStore
from .archival_models import (
    CollectionResult, CancellationToken, ARCHIVE_METADATA_FIELDS
)
from .interfaces import DocumentStore, RecordFilter

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000


def archived_reason(cutoff_date: datetime) -> str:
    return f"Automated archival - data older than {cutoff_date.strftime('%a %b %d %Y')}"


def to_archived_document(document: Dict[str, Any], archived_at: datetime, reason: str,
                         key_field: str = "_id") -> Dict[str, Any]:
    """Copy a record and append the archive metadata fields."""
    archived = dict(document)
    archived['originalId'] = document[key_field]
    archived['archivedAt'] = archived_at
    archived['archivedReason'] = reason
    return archived


def strip_archive_metadata(document: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of ``to_archived_document`` for the payload (identity not restored)."""
    return {k: v for k, v in document.items() if k not in ARCHIVE_METADATA_FIELDS}


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class CollectionArchiver:
    """Archives one entity type per call, recording a job record for real runs."""

    def __init__(self, job_store: JobRecordStore):
        self.job_store = job_store

    async def archive(
        self,
        entity_type: str,
        source_store: DocumentStore,
        archive_store: DocumentStore,
        cutoff_date: datetime,
        initiated_by: str,
        dry_run: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        date_field: str = "createdAt",
        cancel_token: Optional[CancellationToken] = None,
        renew_lease: Optional[Callable[[], Awaitable[None]]] = None
    ) -> CollectionResult:
        """
        Archive records of ``entity_type`` older than ``cutoff_date``.

        Args:
            entity_type: Entity type name, stored on the job record.
            source_store: Active store the records are moved out of.
            archive_store: Archive store keyed by ``originalId``.
            cutoff_date: Records whose ``date_field`` is earlier are eligible.
            initiated_by: Who or what triggered the run.
            dry_run: Only count eligible records; nothing is written.
            batch_size: Records fetched and moved per round trip.
            date_field: Age field compared against the cutoff.
            cancel_token: Checked before every batch.
            renew_lease: Awaited before every batch to keep the run lease alive.

        Returns:
            Records archived, duration and cutoff for this entity type.

        Raises:
            Any store error, ``ArchivalCancelledError`` or
            ``ArchivalLeaseLostError``; the job record is marked failed before
            the error propagates, including when the task itself is cancelled.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        start = time.monotonic()
        records_archived = 0
        records_skipped = 0

        logger.info("Processing collection", collection=entity_type,
                    cutoff_date=cutoff_date.isoformat(), dry_run=dry_run)

        job = None
        if not dry_run:
            job = await self.job_store.create(entity_type, cutoff_date, initiated_by)

        try:
            selector = RecordFilter(date_field=date_field, before=cutoff_date, exclude_deleted=True)

            total_records = await source_store.count(selector)
            logger.info("Found records to archive", collection=entity_type, total=total_records)

            if total_records == 0:
                duration_ms = _elapsed_ms(start)
                if job is not None:
                    await self.job_store.complete(job, 0, duration_ms)
                return CollectionResult(0, duration_ms, cutoff_date)

            if dry_run:
                logger.info("DRY RUN: would archive records", collection=entity_type, total=total_records)
                return CollectionResult(total_records, _elapsed_ms(start), cutoff_date)

            reason = archived_reason(cutoff_date)
            after_key = None
            batch_number = 0

            while True:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                if renew_lease is not None:
                    await renew_lease()

                batch = await source_store.find(selector, limit=batch_size, after_key=after_key)
                if not batch:
                    break

                batch_number += 1
                after_key = source_store.key_of(batch[-1])

                moved, skipped = await self._archive_batch(
                    entity_type, batch, source_store, archive_store, reason
                )
                records_archived += moved
                records_skipped += skipped

                progress = round(records_archived / total_records * 100) if total_records else 100
                logger.info("Archived batch",
                            collection=entity_type,
                            batch=batch_number,
                            archived=records_archived,
                            total=total_records,
                            skipped=records_skipped,
                            progress_percent=progress)

            duration_ms = _elapsed_ms(start)
            await self.job_store.complete(job, records_archived, duration_ms)

            logger.info("Collection archived", collection=entity_type,
                        records_archived=records_archived, records_skipped=records_skipped,
                        duration_ms=duration_ms)

            return CollectionResult(records_archived, duration_ms, cutoff_date, records_skipped)

        except asyncio.CancelledError:
            logger.warning("Archiving task cancelled", collection=entity_type,
                           records_archived=records_archived)
            await self._fail_job(job, "cancelled", records_archived, start)
            raise
        except Exception as e:
            logger.error("Error archiving collection", collection=entity_type, error=str(e))
            await self._fail_job(job, str(e), records_archived, start)
            raise

    async def _fail_job(self, job, error: str, records_archived: int, start: float):
        """Mark the job failed without masking the error being propagated."""
        if job is None:
            return
        try:
            await self.job_store.fail(job, error, records_archived, _elapsed_ms(start))
        except Exception as e:
            logger.error("Could not mark job record failed", job_id=job.id, error=str(e))

    async def _archive_batch(
        self,
        entity_type: str,
        batch: List[Dict[str, Any]],
        source_store: DocumentStore,
        archive_store: DocumentStore,
        reason: str
    ) -> tuple:
        """Insert one batch into the archive, then delete the confirmed sources.

        Returns ``(moved, skipped)``.
        """
        archived_at = datetime.now(timezone.utc)
        sources = {source_store.key_of(doc): doc for doc in batch}
        archived_docs = [
            to_archived_document(doc, archived_at, reason, source_store.key_field) for doc in batch
        ]

        outcome = await archive_store.insert_many(archived_docs)
        confirmed = list(outcome.inserted_keys)

        if outcome.conflict_keys:
            reconciled = await self._reconcile(entity_type, outcome.conflict_keys, sources, archive_store)
            confirmed.extend(reconciled)

        for key, message in outcome.failures.items():
            logger.warning("Record not archived", collection=entity_type, key=key, error=message)

        if confirmed:
            await source_store.delete_keys(confirmed)

        return len(confirmed), len(batch) - len(confirmed)

    async def _reconcile(
        self,
        entity_type: str,
        conflict_keys: List[str],
        sources: Dict[str, Dict[str, Any]],
        archive_store: DocumentStore
    ) -> List[str]:
        """Keys whose archived copy already matches the source record.

        This covers a previous run that inserted the archive copy but failed
        before deleting the source.
        """
        existing = await archive_store.get_many(conflict_keys)
        reconciled = []
        for key in conflict_keys:
            archived = existing.get(key)
            if archived is not None and strip_archive_metadata(archived) == sources.get(key):
                reconciled.append(key)
            else:
                logger.warning("Archive already holds a different record", collection=entity_type, key=key)

        if reconciled:
            logger.info("Reconciled previously archived records",
                        collection=entity_type, count=len(reconciled))
        return reconciled
