"""
Restore and reference queries over archived records.

Restore reverses archival for one entity type: archived records are written
back to the active store under their original identity and removed from the
archive only once the active store confirmed them.
"""

from datetime import datetime
from typing import List, Dict, Any, Optional

import structlog

from .archival_models import RestoreResult, ConflictPolicy, RestoreConflictError
from .archival_registry import ArchivalRegistry
from .collection_archiver import strip_archive_metadata, DEFAULT_BATCH_SIZE
from .interfaces import DocumentStore, RecordFilter

logger = structlog.get_logger(__name__)


def to_restored_document(archived: Dict[str, Any], key_field: str = "_id") -> Dict[str, Any]:
    restored = strip_archive_metadata(archived)
    restored[key_field] = archived['originalId']
    return restored


class ArchiveRestorer:
    """Restores archived records and serves reference queries on the archive."""

    def __init__(self, registry: ArchivalRegistry):
        self.registry = registry

    async def restore(
        self,
        entity_type: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        on_conflict: ConflictPolicy = ConflictPolicy.FAIL,
        batch_size: int = DEFAULT_BATCH_SIZE
    ) -> RestoreResult:
        """
        Restore archived records of ``entity_type`` archived within ``[start_date, end_date]``.

        ``on_conflict`` decides what happens when an identity already exists
        in the active store: ``FAIL`` raises ``RestoreConflictError`` before
        anything is written, ``SKIP`` leaves those records archived and
        ``OVERWRITE`` replaces the active record.
        """
        entity = self.registry.get(entity_type)
        hot_store, cold_store = entity.hot_store, entity.cold_store

        selector = None
        if start_date is not None or end_date is not None:
            selector = RecordFilter(date_field='archivedAt', start=start_date, end=end_date)

        total = await cold_store.count(selector)
        logger.info("Restoring archived data", collection=entity_type, found=total,
                    on_conflict=on_conflict.value)
        if total == 0:
            return RestoreResult(records_restored=0)

        if on_conflict == ConflictPolicy.FAIL:
            collisions = await self._find_collisions(hot_store, cold_store, selector, batch_size)
            if collisions:
                raise RestoreConflictError(entity_type, collisions)

        restored = 0
        skipped = 0
        after_key = None

        while True:
            batch = await cold_store.find(selector, limit=batch_size, after_key=after_key)
            if not batch:
                break
            after_key = cold_store.key_of(batch[-1])

            documents = {
                cold_store.key_of(doc): to_restored_document(doc, hot_store.key_field) for doc in batch
            }

            if on_conflict == ConflictPolicy.SKIP:
                for key in await hot_store.existing_keys(documents.keys()):
                    documents.pop(key, None)
                    skipped += 1

            outcome = await hot_store.insert_many(
                list(documents.values()), replace=(on_conflict == ConflictPolicy.OVERWRITE)
            )

            for key, message in outcome.failures.items():
                logger.warning("Record not restored", collection=entity_type, key=key, error=message)
            skipped += outcome.failed_count

            if outcome.inserted_keys:
                await cold_store.delete_keys(outcome.inserted_keys)
            restored += len(outcome.inserted_keys)

            if outcome.conflict_keys and on_conflict == ConflictPolicy.FAIL:
                # An active record appeared after the collision scan
                raise RestoreConflictError(entity_type, outcome.conflict_keys)

        logger.info("Restored records", collection=entity_type, restored=restored, skipped=skipped)
        return RestoreResult(records_restored=restored, records_skipped=skipped)

    async def _find_collisions(self, hot_store: DocumentStore, cold_store: DocumentStore,
                               selector: Optional[RecordFilter], batch_size: int) -> List[str]:
        collisions: List[str] = []
        after_key = None
        while True:
            batch = await cold_store.find(selector, limit=batch_size, after_key=after_key)
            if not batch:
                return collisions
            after_key = cold_store.key_of(batch[-1])
            collisions.extend(await hot_store.existing_keys(cold_store.key_of(doc) for doc in batch))

    async def query_archived(
        self,
        entity_type: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 100,
        skip: int = 0,
        sort_field: str = 'archivedAt',
        descending: bool = True,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Query archived records for reference (equality filters on top-level fields)."""
        entity = self.registry.get(entity_type)
        selector = RecordFilter(
            date_field='archivedAt' if (start_date or end_date) else None,
            start=start_date,
            end=end_date,
            equals=tuple(sorted((filters or {}).items()))
        )
        return await entity.cold_store.find_page(
            selector, limit=limit, skip=skip, sort_field=sort_field, descending=descending
        )
