"""
SQLite-backed document store.

Each collection is one table holding ``(id, doc)`` rows, where ``doc`` is the
JSON-encoded document. Datetimes are tagged as ``{"$date": "..."}`` using a
fixed-width UTC format, so they decode back to ``datetime`` and compare
correctly as text inside SQLite.
"""

import asyncio
import functools
import json
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, Iterable, Tuple

import structlog

from .interfaces import DocumentStore, RecordFilter, InsertResult

logger = structlog.get_logger(__name__)

DATE_TAG = "$date"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# SQLite's default host parameter limit is 999 on older builds
_KEY_CHUNK = 500
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).strftime(DATE_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=timezone.utc)


class _DocumentEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime):
            return {DATE_TAG: format_timestamp(o)}
        return super().default(o)


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and DATE_TAG in obj:
        return parse_timestamp(obj[DATE_TAG])
    return obj


def encode_document(document: Dict[str, Any]) -> str:
    return json.dumps(document, cls=_DocumentEncoder, sort_keys=True)


def decode_document(payload: str) -> Dict[str, Any]:
    return json.loads(payload, object_hook=_decode_object)


def _checked_name(name: str, kind: str) -> str:
    if not _NAME_RE.match(name):
        raise ValueError(f"Invalid {kind} name: {name!r}")
    return name


def _field_expr(field_name: str) -> str:
    """SQL expression for a top-level field, unwrapping tagged datetimes."""
    name = _checked_name(field_name, "field")
    return (f"COALESCE(json_extract(doc, '$.\"{name}\".\"{DATE_TAG}\"'), "
            f"json_extract(doc, '$.\"{name}\"'))")


def _sql_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _chunks(keys: List[str]) -> Iterable[List[str]]:
    for i in range(0, len(keys), _KEY_CHUNK):
        yield keys[i:i + _KEY_CHUNK]


class SQLiteDocumentStore(DocumentStore):
    """Document collection stored in one SQLite table."""

    def __init__(self, db_path: str, table: str, key_field: str = "_id",
                 indexed_fields: Optional[List[str]] = None, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.table = _checked_name(table, "table")
        self.key_field = key_field
        self.indexed_fields = list(indexed_fields or [])
        self.timeout = timeout
        self._init_database()

    def __repr__(self) -> str:
        return f"SQLiteDocumentStore({str(self.db_path)!r}, {self.table!r})"

    @property
    def location(self) -> str:
        return str(self.db_path.resolve())

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id TEXT PRIMARY KEY,
                    doc TEXT NOT NULL
                )
            """)
            for field_name in self.indexed_fields:
                index_name = f"idx_{self.table}_{_checked_name(field_name, 'field')}"
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {index_name} ON {self.table} ({_field_expr(field_name)})"
                )

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _where(self, record_filter: Optional[RecordFilter]) -> Tuple[List[str], List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if record_filter is None:
            return clauses, params

        if record_filter.exclude_deleted:
            clauses.append("COALESCE(json_extract(doc, '$.\"isDeleted\"'), 0) != 1")

        if record_filter.date_field:
            expr = _field_expr(record_filter.date_field)
            if record_filter.before is not None:
                clauses.append(f"{expr} < ?")
                params.append(format_timestamp(record_filter.before))
            if record_filter.start is not None:
                clauses.append(f"{expr} >= ?")
                params.append(format_timestamp(record_filter.start))
            if record_filter.end is not None:
                clauses.append(f"{expr} <= ?")
                params.append(format_timestamp(record_filter.end))

        for field_name, value in record_filter.equals:
            clauses.append(f"{_field_expr(field_name)} = ?")
            params.append(_sql_value(value))

        return clauses, params

    def _count_sync(self, record_filter: Optional[RecordFilter]) -> int:
        clauses, params = self._where(record_filter)
        query = f"SELECT COUNT(*) FROM {self.table}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._connect() as conn:
            return conn.execute(query, params).fetchone()[0]

    def _find_sync(self, record_filter: Optional[RecordFilter], limit: int,
                   after_key: Optional[str]) -> List[Dict[str, Any]]:
        clauses, params = self._where(record_filter)
        if after_key is not None:
            clauses.append("id > ?")
            params.append(after_key)
        query = f"SELECT doc FROM {self.table}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id ASC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [decode_document(row[0]) for row in rows]

    def _find_page_sync(self, record_filter: Optional[RecordFilter], limit: int, skip: int,
                        sort_field: Optional[str], descending: bool) -> List[Dict[str, Any]]:
        clauses, params = self._where(record_filter)
        query = f"SELECT doc FROM {self.table}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        direction = "DESC" if descending else "ASC"
        if sort_field:
            query += f" ORDER BY {_field_expr(sort_field)} {direction}, id {direction}"
        else:
            query += f" ORDER BY id {direction}"
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, skip])
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [decode_document(row[0]) for row in rows]

    def _get_many_sync(self, keys: List[str]) -> Dict[str, Dict[str, Any]]:
        found: Dict[str, Dict[str, Any]] = {}
        with self._connect() as conn:
            for chunk in _chunks(keys):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id, doc FROM {self.table} WHERE id IN ({placeholders})", chunk
                ).fetchall()
                for key, payload in rows:
                    found[key] = decode_document(payload)
        return found

    def _existing_keys_sync(self, keys: List[str]) -> List[str]:
        existing: List[str] = []
        with self._connect() as conn:
            for chunk in _chunks(keys):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id FROM {self.table} WHERE id IN ({placeholders})", chunk
                ).fetchall()
                existing.extend(row[0] for row in rows)
        return existing

    def _insert_many_sync(self, documents: List[Dict[str, Any]], replace: bool) -> InsertResult:
        result = InsertResult()
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        query = f"{verb} INTO {self.table} (id, doc) VALUES (?, ?)"

        with self._connect() as conn:
            for position, document in enumerate(documents):
                if self.key_field not in document:
                    result.failures[f"#{position}"] = f"Missing key field {self.key_field!r}"
                    continue
                key = self.key_of(document)
                try:
                    payload = encode_document(document)
                except (TypeError, ValueError) as e:
                    result.failures[key] = f"Unserializable document: {e}"
                    continue
                try:
                    conn.execute(query, (key, payload))
                except sqlite3.IntegrityError:
                    result.conflict_keys.append(key)
                    continue
                result.inserted_keys.append(key)

        return result

    def _delete_keys_sync(self, keys: List[str]) -> int:
        deleted = 0
        with self._connect() as conn:
            for chunk in _chunks(keys):
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(f"DELETE FROM {self.table} WHERE id IN ({placeholders})", chunk)
                deleted += cursor.rowcount
        return deleted

    def _compact_sync(self):
        with self._connect() as conn:
            conn.execute(f"ANALYZE {self.table}")
        # VACUUM cannot run inside a transaction
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        try:
            conn.execute("VACUUM")
        finally:
            conn.close()

    async def count(self, record_filter: Optional[RecordFilter] = None) -> int:
        return await self._run(self._count_sync, record_filter)

    async def find(self, record_filter: Optional[RecordFilter] = None, limit: int = 1000,
                   after_key: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._run(self._find_sync, record_filter, limit, after_key)

    async def find_page(self, record_filter: Optional[RecordFilter] = None, limit: int = 100,
                        skip: int = 0, sort_field: Optional[str] = None,
                        descending: bool = False) -> List[Dict[str, Any]]:
        return await self._run(self._find_page_sync, record_filter, limit, skip, sort_field, descending)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        return await self._run(self._get_many_sync, list(keys))

    async def existing_keys(self, keys: Iterable[str]) -> List[str]:
        return await self._run(self._existing_keys_sync, list(keys))

    async def insert_many(self, documents: List[Dict[str, Any]], replace: bool = False) -> InsertResult:
        result = await self._run(self._insert_many_sync, documents, replace)
        if result.failed_count:
            logger.warning("Partial batch insert",
                           table=self.table,
                           inserted=len(result.inserted_keys),
                           conflicts=len(result.conflict_keys),
                           failures=len(result.failures))
        return result

    async def delete_keys(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        return await self._run(self._delete_keys_sync, keys)

    async def compact(self) -> None:
        await self._run(self._compact_sync)
        logger.info("Store compacted", table=self.table, location=self.location)
