"""
Unit tests for the entity-type registry.
"""

import pytest

from fuelopsd.storage.archival_models import RetentionClass, UnknownEntityTypeError
from fuelopsd.storage.archival_registry import (
    ArchivalRegistry, EntityType, DEFAULT_ENTITY_TYPES, build_registry
)
from fuelopsd.storage.document_store import SQLiteDocumentStore


class TestArchivalRegistry:
    """Test registry construction and lookup."""

    def test_default_entity_types(self, registry):
        assert registry.names() == [
            'FuelRecord', 'LPOEntry', 'LPOSummary', 'YardFuelDispense', 'DeliveryOrder', 'AuditLog'
        ]
        audit = registry.get('AuditLog').entity_type
        assert audit.date_field == 'timestamp'
        assert audit.retention_class == RetentionClass.AUDIT
        assert registry.get('FuelRecord').entity_type.date_field == 'createdAt'

    def test_cold_tables_are_distinct_from_hot_tables(self):
        for entity_type in DEFAULT_ENTITY_TYPES:
            assert entity_type.cold_table != entity_type.hot_table
            assert entity_type.cold_table == f"archived_{entity_type.hot_table}"

    def test_stores_are_keyed_for_archival(self, registry):
        fuel = registry.get('FuelRecord')
        assert fuel.hot_store.key_field == '_id'
        assert fuel.cold_store.key_field == 'originalId'

    def test_unknown_entity_type(self, registry):
        assert 'Invoices' not in registry
        with pytest.raises(UnknownEntityTypeError) as exc_info:
            registry.get('Invoices')
        assert str(exc_info.value) == "Unknown collection: Invoices"

    def test_duplicate_registration(self, hot_db, cold_db):
        registry = ArchivalRegistry()
        entity_type = EntityType('FuelRecord', 'fuel_records', 'archived_fuel_records')
        hot = SQLiteDocumentStore(hot_db, entity_type.hot_table)
        cold = SQLiteDocumentStore(cold_db, entity_type.cold_table, key_field='originalId')
        registry.register(entity_type, hot, cold)

        with pytest.raises(ValueError):
            registry.register(entity_type, hot, cold)

    def test_custom_entity_types(self, hot_db, cold_db):
        registry = build_registry(hot_db, cold_db, [
            EntityType('FuelPrice', 'fuel_prices', 'archived_fuel_prices', date_field='effectiveAt')
        ])
        assert len(registry) == 1
        assert [entity.name for entity in registry] == ['FuelPrice']
