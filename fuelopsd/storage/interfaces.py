"""
Data interfaces for record stores.

This module provides the abstract interface every hot (active) and cold
(archive) store implements, plus the filter and insert-result types they share.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Tuple


@dataclass(frozen=True)
class RecordFilter:
    """Selection criteria understood by every store.

    ``before`` is an exclusive upper bound and ``start``/``end`` are inclusive
    bounds, all applied to ``date_field``.
    """
    date_field: Optional[str] = None
    before: Optional[datetime] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    exclude_deleted: bool = False
    equals: Tuple[Tuple[str, Any], ...] = ()


@dataclass
class InsertResult:
    """Per-document outcome of a best-effort batch insert."""
    inserted_keys: List[str] = field(default_factory=list)
    conflict_keys: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failed_count(self) -> int:
        return len(self.conflict_keys) + len(self.failures)


class DocumentStore(ABC):
    """Abstract interface for a collection of documents keyed by one field."""

    key_field: str = "_id"

    def key_of(self, document: Dict[str, Any]) -> str:
        """Return the identity of a document in this store."""
        return str(document[self.key_field])

    @property
    @abstractmethod
    def location(self) -> str:
        """Physical location; stores sharing one location compact together."""
        pass

    @abstractmethod
    async def count(self, record_filter: Optional[RecordFilter] = None) -> int:
        """Count documents matching the filter."""
        pass

    @abstractmethod
    async def find(
        self,
        record_filter: Optional[RecordFilter] = None,
        limit: int = 1000,
        after_key: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get up to ``limit`` matching documents ordered by identity, after ``after_key``."""
        pass

    @abstractmethod
    async def find_page(
        self,
        record_filter: Optional[RecordFilter] = None,
        limit: int = 100,
        skip: int = 0,
        sort_field: Optional[str] = None,
        descending: bool = False
    ) -> List[Dict[str, Any]]:
        """Get one offset-based page of matching documents."""
        pass

    @abstractmethod
    async def get_many(self, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Get documents by identity."""
        pass

    @abstractmethod
    async def existing_keys(self, keys: Iterable[str]) -> List[str]:
        """Return the subset of ``keys`` present in the store."""
        pass

    @abstractmethod
    async def insert_many(self, documents: List[Dict[str, Any]], replace: bool = False) -> InsertResult:
        """Insert documents one by one; a failing document does not abort the rest."""
        pass

    @abstractmethod
    async def delete_keys(self, keys: Iterable[str]) -> int:
        """Delete documents by identity and return the number removed."""
        pass

    @abstractmethod
    async def compact(self) -> None:
        """Reclaim storage after large deletions."""
        pass
