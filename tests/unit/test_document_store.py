"""
Unit tests for the SQLite document store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fuelopsd.storage.document_store import (
    SQLiteDocumentStore, encode_document, decode_document, format_timestamp, parse_timestamp
)
from fuelopsd.storage.interfaces import RecordFilter


class TestDocumentEncoding:
    """Test JSON encoding of documents."""

    def test_datetimes_round_trip(self):
        created = datetime(2024, 1, 15, 8, 30, 12, 123456, tzinfo=timezone.utc)
        document = {'_id': 'a', 'createdAt': created, 'nested': {'at': created}, 'tags': ['x']}

        decoded = decode_document(encode_document(document))

        assert decoded == document
        assert decoded['createdAt'].tzinfo is not None

    def test_naive_datetimes_are_utc(self):
        naive = datetime(2024, 1, 15, 8, 30)
        assert format_timestamp(naive) == "2024-01-15T08:30:00.000000Z"
        assert parse_timestamp(format_timestamp(naive)) == naive.replace(tzinfo=timezone.utc)

    def test_timestamps_sort_as_text(self):
        earlier = datetime(2023, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
        later = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert format_timestamp(earlier) < format_timestamp(later)


class TestSQLiteDocumentStore:
    """Test SQLiteDocumentStore operations."""

    @pytest.fixture
    def now(self):
        return datetime(2024, 6, 1, tzinfo=timezone.utc)

    @pytest.fixture
    def populated_store(self, hot_store, fuel_record, now):
        return hot_store, [
            fuel_record(1, now - timedelta(days=300)),
            fuel_record(2, now - timedelta(days=200), isDeleted=True),
            fuel_record(3, now - timedelta(days=100)),
            fuel_record(4, now - timedelta(days=10)),
        ]

    @pytest.mark.asyncio
    async def test_insert_and_count(self, populated_store):
        store, records = populated_store
        result = await store.insert_many(records)

        assert result.inserted_keys == ['fuel-00001', 'fuel-00002', 'fuel-00003', 'fuel-00004']
        assert result.failed_count == 0
        assert await store.count() == 4

    @pytest.mark.asyncio
    async def test_count_before_cutoff_excludes_deleted(self, populated_store, now):
        store, records = populated_store
        await store.insert_many(records)

        selector = RecordFilter(date_field='createdAt', before=now - timedelta(days=50),
                                exclude_deleted=True)

        assert await store.count(selector) == 2
        found = await store.find(selector)
        assert [doc['_id'] for doc in found] == ['fuel-00001', 'fuel-00003']

    @pytest.mark.asyncio
    async def test_inclusive_window(self, populated_store, now):
        store, records = populated_store
        await store.insert_many(records)

        selector = RecordFilter(date_field='createdAt',
                                start=now - timedelta(days=200),
                                end=now - timedelta(days=100))

        found = await store.find(selector)
        assert [doc['_id'] for doc in found] == ['fuel-00002', 'fuel-00003']

    @pytest.mark.asyncio
    async def test_find_is_keyset_paginated(self, populated_store):
        store, records = populated_store
        await store.insert_many(records)

        first = await store.find(limit=2)
        second = await store.find(limit=2, after_key=store.key_of(first[-1]))
        third = await store.find(limit=2, after_key=store.key_of(second[-1]))

        assert [doc['_id'] for doc in first] == ['fuel-00001', 'fuel-00002']
        assert [doc['_id'] for doc in second] == ['fuel-00003', 'fuel-00004']
        assert third == []

    @pytest.mark.asyncio
    async def test_find_page_sorted_descending(self, populated_store):
        store, records = populated_store
        await store.insert_many(records)

        page = await store.find_page(limit=2, skip=1, sort_field='createdAt', descending=True)

        assert [doc['_id'] for doc in page] == ['fuel-00003', 'fuel-00002']

    @pytest.mark.asyncio
    async def test_equality_filter(self, hot_store, fuel_record, now):
        await hot_store.insert_many([
            fuel_record(1, now, truckNo='T100'),
            fuel_record(2, now, truckNo='T200'),
        ])

        found = await hot_store.find_page(RecordFilter(equals=(('truckNo', 'T200'),)))

        assert [doc['_id'] for doc in found] == ['fuel-00002']

    @pytest.mark.asyncio
    async def test_duplicate_key_is_reported_as_conflict(self, hot_store, fuel_record, now):
        await hot_store.insert_many([fuel_record(1, now)])

        result = await hot_store.insert_many([fuel_record(1, now, litres=5), fuel_record(2, now)])

        assert result.inserted_keys == ['fuel-00002']
        assert result.conflict_keys == ['fuel-00001']
        assert (await hot_store.get_many(['fuel-00001']))['fuel-00001']['litres'] != 5

    @pytest.mark.asyncio
    async def test_replace_overwrites(self, hot_store, fuel_record, now):
        await hot_store.insert_many([fuel_record(1, now)])

        result = await hot_store.insert_many([fuel_record(1, now, litres=5)], replace=True)

        assert result.inserted_keys == ['fuel-00001']
        assert (await hot_store.get_many(['fuel-00001']))['fuel-00001']['litres'] == 5

    @pytest.mark.asyncio
    async def test_bad_documents_fail_individually(self, hot_store, fuel_record, now):
        documents = [
            fuel_record(1, now),
            {'litres': 10},
            fuel_record(3, now, meta=object()),
        ]

        result = await hot_store.insert_many(documents)

        assert result.inserted_keys == ['fuel-00001']
        assert set(result.failures) == {'#1', 'fuel-00003'}
        assert result.failed_count == 2
        assert await hot_store.count() == 1

    @pytest.mark.asyncio
    async def test_existing_and_delete_keys(self, populated_store):
        store, records = populated_store
        await store.insert_many(records)

        assert sorted(await store.existing_keys(['fuel-00001', 'fuel-00009'])) == ['fuel-00001']
        assert await store.delete_keys(['fuel-00001', 'fuel-00009']) == 1
        assert await store.delete_keys([]) == 0
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_compact(self, populated_store):
        store, records = populated_store
        await store.insert_many(records)
        await store.delete_keys(['fuel-00001'])

        await store.compact()

        assert await store.count() == 3

    def test_stores_sharing_a_file_share_a_location(self, hot_db):
        first = SQLiteDocumentStore(hot_db, "fuel_records")
        second = SQLiteDocumentStore(hot_db, "lpo_entries")
        assert first.location == second.location

    def test_invalid_names_are_rejected(self, hot_db):
        with pytest.raises(ValueError):
            SQLiteDocumentStore(hot_db, "fuel records; DROP TABLE x")
        with pytest.raises(ValueError):
            SQLiteDocumentStore(hot_db, "fuel_records", indexed_fields=["created'At"])
