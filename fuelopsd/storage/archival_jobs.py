"""
Job records and the run lease for the archival system.

Job records are the durable audit trail of archival attempts, one per entity
type per run. The lease allows a single non-dry run at a time across every
process sharing the jobs database.
"""

import asyncio
import functools
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from .archival_models import (
    JobRecord, JobStatus, InvalidJobTransitionError, ArchivalAlreadyRunningError,
    ArchivalLeaseLostError
)
from .document_store import format_timestamp, parse_timestamp

logger = structlog.get_logger(__name__)

_JOB_COLUMNS = ("id, collection_name, archival_date, cutoff_date, initiated_by, status, "
                "records_archived, duration_ms, completed_at, error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_job(row) -> JobRecord:
    return JobRecord(
        id=row[0],
        collection_name=row[1],
        archival_date=parse_timestamp(row[2]),
        cutoff_date=parse_timestamp(row[3]),
        initiated_by=row[4],
        status=JobStatus(row[5]),
        records_archived=row[6],
        duration_ms=row[7],
        completed_at=parse_timestamp(row[8]) if row[8] else None,
        error=row[9]
    )


class _SQLiteComponent:
    """Shared connection handling for the jobs database."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self, **kwargs):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, **kwargs)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))


class JobRecordStore(_SQLiteComponent):
    """Persists archival job records in the ``archival_jobs`` table."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        super().__init__(db_path, timeout)
        self._init_database()

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS archival_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection_name TEXT NOT NULL,
                    archival_date TEXT NOT NULL,
                    cutoff_date TEXT NOT NULL,
                    initiated_by TEXT NOT NULL,
                    status TEXT NOT NULL,
                    records_archived INTEGER NOT NULL DEFAULT 0,
                    duration_ms INTEGER,
                    completed_at TEXT,
                    error TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_archival_jobs_collection_completed
                ON archival_jobs (collection_name, completed_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_archival_jobs_status_completed
                ON archival_jobs (status, completed_at)
            """)

    def _create_sync(self, collection_name: str, cutoff_date: datetime, initiated_by: str) -> JobRecord:
        archival_date = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO archival_jobs (collection_name, archival_date, cutoff_date, initiated_by, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (collection_name, format_timestamp(archival_date), format_timestamp(cutoff_date),
                 initiated_by, JobStatus.IN_PROGRESS.value)
            )
            job_id = cursor.lastrowid
        return JobRecord(
            id=job_id,
            collection_name=collection_name,
            archival_date=parse_timestamp(format_timestamp(archival_date)),
            cutoff_date=parse_timestamp(format_timestamp(cutoff_date)),
            initiated_by=initiated_by
        )

    def _finish_sync(self, job_id: int, status: JobStatus, records_archived: int,
                     duration_ms: int, completed_at: datetime, error: Optional[str]) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE archival_jobs
                SET status = ?, records_archived = ?, duration_ms = ?, completed_at = ?, error = ?
                WHERE id = ? AND status = ?
                """,
                (status.value, records_archived, duration_ms, format_timestamp(completed_at), error,
                 job_id, JobStatus.IN_PROGRESS.value)
            )
            return cursor.rowcount

    def _select_sync(self, query: str, params: tuple) -> List[JobRecord]:
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    async def create(self, collection_name: str, cutoff_date: datetime, initiated_by: str) -> JobRecord:
        """Create an ``in_progress`` job record."""
        job = await self._run(self._create_sync, collection_name, cutoff_date, initiated_by)
        logger.debug("Job record created", job_id=job.id, collection=collection_name)
        return job

    async def _finish(self, job: JobRecord, status: JobStatus, records_archived: int,
                      duration_ms: int, error: Optional[str] = None):
        if job.status != JobStatus.IN_PROGRESS:
            raise InvalidJobTransitionError(
                f"Job {job.id} is {job.status.value}; cannot move to {status.value}"
            )
        completed_at = parse_timestamp(format_timestamp(_utcnow()))
        updated = await self._run(self._finish_sync, job.id, status, records_archived,
                                  duration_ms, completed_at, error)
        if updated != 1:
            raise InvalidJobTransitionError(f"Job {job.id} is no longer in progress")

        job.status = status
        job.records_archived = records_archived
        job.duration_ms = duration_ms
        job.completed_at = completed_at
        job.error = error

    async def complete(self, job: JobRecord, records_archived: int, duration_ms: int):
        await self._finish(job, JobStatus.COMPLETED, records_archived, duration_ms)

    async def fail(self, job: JobRecord, error: str, records_archived: int, duration_ms: int):
        await self._finish(job, JobStatus.FAILED, records_archived, duration_ms, error)

    async def get(self, job_id: int) -> Optional[JobRecord]:
        jobs = await self._run(
            self._select_sync, f"SELECT {_JOB_COLUMNS} FROM archival_jobs WHERE id = ?", (job_id,)
        )
        return jobs[0] if jobs else None

    async def latest_completed(self, collection_name: Optional[str] = None) -> Optional[JobRecord]:
        """Most recent completed job, optionally for one entity type."""
        query = f"SELECT {_JOB_COLUMNS} FROM archival_jobs WHERE status = ?"
        params: tuple = (JobStatus.COMPLETED.value,)
        if collection_name:
            query += " AND collection_name = ?"
            params += (collection_name,)
        query += " ORDER BY completed_at DESC, id DESC LIMIT 1"
        jobs = await self._run(self._select_sync, query, params)
        return jobs[0] if jobs else None

    async def history(self, limit: int = 50, collection_name: Optional[str] = None) -> List[JobRecord]:
        """Job records, newest first."""
        query = f"SELECT {_JOB_COLUMNS} FROM archival_jobs"
        params: tuple = ()
        if collection_name:
            query += " WHERE collection_name = ?"
            params = (collection_name,)
        query += " ORDER BY archival_date DESC, id DESC LIMIT ?"
        params += (limit,)
        return await self._run(self._select_sync, query, params)


class ArchivalLease(_SQLiteComponent):
    """Time-limited, database-backed lease allowing one archival run at a time."""

    def __init__(self, db_path: str, name: str = "archival",
                 ttl: timedelta = timedelta(hours=6), timeout: float = 30.0):
        super().__init__(db_path, timeout)
        self.name = name
        self.ttl = ttl
        self._init_database()

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS archival_lease (
                    name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    acquired_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

    def _acquire_sync(self, holder: str) -> Optional[str]:
        """Take the lease; returns the current holder if it is held elsewhere."""
        now = _utcnow()
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT holder, expires_at FROM archival_lease WHERE name = ?", (self.name,)
            ).fetchone()
            if row and row[0] != holder and parse_timestamp(row[1]) > now:
                conn.execute("ROLLBACK")
                return row[0]
            if row and row[0] != holder:
                logger.warning("Taking over expired archival lease", previous_holder=row[0])
            conn.execute(
                "INSERT OR REPLACE INTO archival_lease (name, holder, acquired_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (self.name, holder, format_timestamp(now), format_timestamp(now + self.ttl))
            )
            conn.execute("COMMIT")
            return None
        finally:
            conn.close()

    def _renew_sync(self, holder: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE archival_lease SET expires_at = ? WHERE name = ? AND holder = ?",
                (format_timestamp(_utcnow() + self.ttl), self.name, holder)
            )
            return cursor.rowcount

    def _release_sync(self, holder: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM archival_lease WHERE name = ? AND holder = ?", (self.name, holder)
            )
            return cursor.rowcount

    def _holder_sync(self) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT holder, expires_at FROM archival_lease WHERE name = ?", (self.name,)
            ).fetchone()
        if row and parse_timestamp(row[1]) > _utcnow():
            return row[0]
        return None

    async def acquire(self, holder: str):
        """Acquire the lease or raise ``ArchivalAlreadyRunningError``."""
        current = await self._run(self._acquire_sync, holder)
        if current is not None:
            raise ArchivalAlreadyRunningError(current)
        logger.debug("Archival lease acquired", holder=holder)

    async def renew(self, holder: str):
        """Push the expiry one TTL ahead while ``holder`` still owns the lease.

        Raises ``ArchivalLeaseLostError`` when the lease was released or
        taken over by another run.
        """
        renewed = await self._run(self._renew_sync, holder)
        if not renewed:
            raise ArchivalLeaseLostError(holder)
        logger.debug("Archival lease renewed", holder=holder)

    async def release(self, holder: str):
        released = await self._run(self._release_sync, holder)
        if not released:
            logger.warning("Archival lease was not held at release", holder=holder)

    async def current_holder(self) -> Optional[str]:
        return await self._run(self._holder_sync)

    @asynccontextmanager
    async def hold(self, holder: str):
        await self.acquire(holder)
        try:
            yield self
        finally:
            await self.release(holder)
