"""
Data models for the archival system.

This module contains the data classes, enums and exceptions shared by the
archival engine: job records, run results, retention decisions and stats.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field


ARCHIVE_METADATA_FIELDS = ('originalId', 'archivedAt', 'archivedReason')


class ArchivalError(Exception):
    """Base class for archival engine errors."""


class UnknownEntityTypeError(ArchivalError):
    """Raised when an entity type is not registered."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown collection: {entity_type}")
        self.entity_type = entity_type


class InvalidJobTransitionError(ArchivalError):
    """Raised when a job record is moved out of a terminal status."""


class ArchivalAlreadyRunningError(ArchivalError):
    """Raised when the run lease is held by another run."""

    def __init__(self, holder: Optional[str] = None):
        message = "Archival run already in progress"
        if holder:
            message += f" (held by {holder})"
        super().__init__(message)
        self.holder = holder


class ArchivalCancelledError(ArchivalError):
    """Raised between batches when a run has been cancelled."""


class ArchivalLeaseLostError(ArchivalError):
    """Raised when a running archival finds its lease taken by another run."""

    def __init__(self, holder: str):
        super().__init__(f"Archival lease lost by {holder}; another run holds it")
        self.holder = holder


class RestoreConflictError(ArchivalError):
    """Raised when restored identities already exist in the active store."""

    def __init__(self, entity_type: str, keys: List[str]):
        preview = ', '.join(keys[:5])
        more = f" and {len(keys) - 5} more" if len(keys) > 5 else ""
        super().__init__(
            f"Cannot restore {entity_type}: {len(keys)} record(s) already exist "
            f"in the active store ({preview}{more})"
        )
        self.entity_type = entity_type
        self.keys = keys


class JobStatus(Enum):
    """Lifecycle states of an archival job record."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RetentionClass(Enum):
    """Which run option supplies the default retention for an entity type."""
    DATA = "data"
    AUDIT = "audit"


class ConflictPolicy(Enum):
    """What restore does when an identity already exists in the active store."""
    FAIL = "fail"
    SKIP = "skip"
    OVERWRITE = "overwrite"


@dataclass
class JobRecord:
    """Durable audit entry for one archival attempt on one entity type."""
    id: int
    collection_name: str
    archival_date: datetime
    cutoff_date: datetime
    initiated_by: str
    status: JobStatus = JobStatus.IN_PROGRESS
    records_archived: int = 0
    duration_ms: Optional[int] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'collection_name': self.collection_name,
            'archival_date': self.archival_date.isoformat(),
            'cutoff_date': self.cutoff_date.isoformat(),
            'initiated_by': self.initiated_by,
            'status': self.status.value,
            'records_archived': self.records_archived,
            'duration_ms': self.duration_ms,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error': self.error
        }


@dataclass
class CollectionResult:
    """Outcome of archiving one entity type."""
    records_archived: int
    duration_ms: int
    cutoff_date: datetime
    records_skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'records_archived': self.records_archived,
            'duration_ms': self.duration_ms,
            'cutoff_date': self.cutoff_date.isoformat(),
            'records_skipped': self.records_skipped
        }


@dataclass
class RunResult:
    """Aggregate outcome of one orchestrator run. Never persisted."""
    success: bool = True
    collections_archived: Dict[str, CollectionResult] = field(default_factory=dict)
    total_records_archived: int = 0
    total_duration_ms: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    def add(self, entity_type: str, result: CollectionResult):
        self.collections_archived[entity_type] = result
        self.total_records_archived += result.records_archived

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'dry_run': self.dry_run,
            'collections_archived': {
                name: result.to_dict() for name, result in self.collections_archived.items()
            },
            'total_records_archived': self.total_records_archived,
            'total_duration_ms': self.total_duration_ms,
            'errors': list(self.errors)
        }


@dataclass
class RestoreResult:
    """Outcome of restoring one entity type."""
    records_restored: int
    records_skipped: int = 0


@dataclass(frozen=True)
class RetentionDecision:
    """Effective retention for an entity type on one run."""
    months: int
    enabled: bool


@dataclass
class CollectionRetention:
    """Per-entity-type retention override."""
    enabled: bool = True
    retention_months: Optional[int] = None


@dataclass
class GlobalRetention:
    """Fallback retention applied to entity types without an override."""
    archival_enabled: bool = True
    archival_months: Optional[int] = None


@dataclass
class RetentionPolicy:
    """Retention configuration as read from the settings source."""
    collections: Dict[str, CollectionRetention] = field(default_factory=dict)
    global_policy: GlobalRetention = field(default_factory=GlobalRetention)


@dataclass
class ArchivalStats:
    """Active versus archived record counts.

    ``total_space_saved`` is an estimate (fixed bytes per archived record),
    not a measured value.
    """
    active_records: Dict[str, int]
    archived_records: Dict[str, int]
    last_archival_date: Optional[datetime]
    total_space_saved: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'active_records': dict(self.active_records),
            'archived_records': dict(self.archived_records),
            'last_archival_date': self.last_archival_date.isoformat() if self.last_archival_date else None,
            'total_space_saved': self.total_space_saved
        }


class ArchivalOptions(BaseModel):
    """Options accepted by a single archival run."""
    months_to_keep: int = Field(6, gt=0)
    audit_log_months_to_keep: int = Field(12, gt=0)
    dry_run: bool = False
    collections: Optional[List[str]] = None
    batch_size: int = Field(1000, gt=0)
    continue_on_error: bool = False


class CancellationToken:
    """Cooperative cancellation flag checked between batches."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ArchivalCancelledError(f"Archival run {self.reason}")
