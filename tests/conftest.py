"""
Shared fixtures for the archival engine tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from fuelopsd.storage.archival_jobs import JobRecordStore, ArchivalLease
from fuelopsd.storage.archival_orchestrator import subtract_months
from fuelopsd.storage.archival_registry import build_registry
from fuelopsd.storage.document_store import SQLiteDocumentStore


def _make_fuel_record(index: int, created_at: datetime, **extra) -> Dict[str, Any]:
    record = {
        '_id': f"fuel-{index:05d}",
        'truckNo': f"T{index % 40:03d}",
        'litres': 100 + index % 250,
        'station': 'Dar Depot',
        'isDeleted': False,
        'createdAt': created_at,
    }
    record.update(extra)
    return record


def _months_ago(months: int, days: int = 0) -> datetime:
    moment = subtract_months(datetime.now(timezone.utc), months)
    return moment.replace(microsecond=0) - timedelta(days=days)


@pytest.fixture
def fuel_record():
    """Factory for trip fuel records with sortable identities."""
    return _make_fuel_record


@pytest.fixture
def months_ago():
    """Factory for UTC datetimes N calendar months (and D days) in the past."""
    return _months_ago


@pytest.fixture
def hot_db(tmp_path):
    return str(tmp_path / "fuelops.db")


@pytest.fixture
def cold_db(tmp_path):
    return str(tmp_path / "fuelops_archive.db")


@pytest.fixture
def jobs_db(tmp_path):
    return str(tmp_path / "jobs.db")


@pytest.fixture
def hot_store(hot_db):
    return SQLiteDocumentStore(hot_db, "fuel_records", indexed_fields=["createdAt"])


@pytest.fixture
def cold_store(cold_db):
    return SQLiteDocumentStore(cold_db, "archived_fuel_records", key_field="originalId",
                               indexed_fields=["archivedAt"])


@pytest.fixture
def job_store(jobs_db):
    return JobRecordStore(jobs_db)


@pytest.fixture
def lease(jobs_db):
    return ArchivalLease(jobs_db)


@pytest.fixture
def registry(hot_db, cold_db):
    return build_registry(hot_db, cold_db)
