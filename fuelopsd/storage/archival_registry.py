"""
Entity-type registry for the archival system.

Maps every archivable entity type to its hot store, cold store, age field and
retention class. Adding an entity type is a change to ``DEFAULT_ENTITY_TYPES``
(or to the list passed to ``build_registry``), not to the orchestrator.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Iterator

from .archival_models import RetentionClass, UnknownEntityTypeError
from .document_store import SQLiteDocumentStore
from .interfaces import DocumentStore


@dataclass(frozen=True)
class EntityType:
    """Static description of one archivable entity type."""
    name: str
    hot_table: str
    cold_table: str
    date_field: str = "createdAt"
    retention_class: RetentionClass = RetentionClass.DATA
    description: str = ""


DEFAULT_ENTITY_TYPES: List[EntityType] = [
    EntityType("FuelRecord", "fuel_records", "archived_fuel_records",
               description="Trip fuel records"),
    EntityType("LPOEntry", "lpo_entries", "archived_lpo_entries",
               description="Purchase voucher (LPO) entries"),
    EntityType("LPOSummary", "lpo_summaries", "archived_lpo_summaries",
               description="Purchase voucher summaries"),
    EntityType("YardFuelDispense", "yard_fuel_dispenses", "archived_yard_fuel_dispenses",
               description="Yard fuel dispense events"),
    EntityType("DeliveryOrder", "delivery_orders", "archived_delivery_orders",
               description="Delivery orders"),
    EntityType("AuditLog", "audit_logs", "archived_audit_logs",
               date_field="timestamp", retention_class=RetentionClass.AUDIT,
               description="Audit log entries"),
]


@dataclass
class RegisteredEntity:
    """An entity type bound to its stores."""
    entity_type: EntityType
    hot_store: DocumentStore
    cold_store: DocumentStore

    @property
    def name(self) -> str:
        return self.entity_type.name


class ArchivalRegistry:
    """Ordered registry of entity types; iteration order is processing order."""

    def __init__(self):
        self._entries: Dict[str, RegisteredEntity] = {}

    def register(self, entity_type: EntityType, hot_store: DocumentStore, cold_store: DocumentStore):
        if entity_type.name in self._entries:
            raise ValueError(f"Entity type already registered: {entity_type.name}")
        self._entries[entity_type.name] = RegisteredEntity(entity_type, hot_store, cold_store)

    def get(self, name: str) -> RegisteredEntity:
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownEntityTypeError(name) from None

    def names(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[RegisteredEntity]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def build_registry(hot_db_path: str, cold_db_path: str,
                   entity_types: Optional[List[EntityType]] = None) -> ArchivalRegistry:
    """Build a registry backed by SQLite stores.

    Hot stores are keyed by ``_id``; cold stores are keyed by ``originalId`` so
    the same source record cannot be archived twice.
    """
    registry = ArchivalRegistry()
    for entity_type in entity_types or DEFAULT_ENTITY_TYPES:
        hot_store = SQLiteDocumentStore(
            hot_db_path, entity_type.hot_table,
            key_field="_id", indexed_fields=[entity_type.date_field]
        )
        cold_store = SQLiteDocumentStore(
            cold_db_path, entity_type.cold_table,
            key_field="originalId", indexed_fields=["archivedAt"]
        )
        registry.register(entity_type, hot_store, cold_store)
    return registry
