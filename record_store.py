"""SQLite-backed multi-collection record store.

Each collection is one table of ``(id, data)`` rows where ``data`` is the
record serialised as JSON. Records are plain dicts carrying their own string
``id``; the store never assigns ids.

The public API is async: every SQLite call runs in a worker thread
(``asyncio.to_thread``) behind a connection lock, so the event loop never
blocks on disk I/O. Schema upgrades are additive only: opening with a new
collection list creates the missing tables and never drops or renames one.
"""
from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, Optional

from errors import DuplicateId, PersistenceError, StoreUnavailable
from logging_utils import log_event

_META_SQL = """\
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)"""


def _table(collection: str) -> str:
    return '"' + collection.replace('"', '""') + '"'


class RecordStore:
    def __init__(
        self,
        db_path: Optional[Path],
        schema_name: str,
        collections: Iterable[str],
        schema_version: int = 1,
    ) -> None:
        self.db_path = Path(db_path) if db_path is not None else None
        self.schema_name = schema_name
        self.schema_version = int(schema_version)
        self.collections = tuple(collections)
        self._known = frozenset(self.collections)
        self._lock = RLock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def in_memory(self) -> bool:
        return self.db_path is None

    # -- lifecycle ---------------------------------------------------------

    async def open(self) -> "RecordStore":
        """Open (or create) the database and ensure every collection exists."""
        await asyncio.to_thread(self._open_sync)
        return self

    def _open_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            target = ":memory:" if self.db_path is None else str(self.db_path)
            conn = None
            try:
                if self.db_path is not None:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(target, check_same_thread=False)
                if self.db_path is not None:
                    conn.execute("PRAGMA journal_mode=WAL")
                self._upgrade(conn)
            except (sqlite3.Error, OSError) as e:
                if conn is not None:
                    conn.close()
                log_event("ERROR", "RecordStore", "Open failed", path=target, error=e)
                raise StoreUnavailable(f"cannot open {self.schema_name} at {target}: {e}") from e
            except StoreUnavailable:
                conn.close()
                raise
            self._conn = conn
        log_event("INFO", "RecordStore", "Opened", path=target,
                  schema=self.schema_name, version=self.schema_version,
                  collections=len(self.collections))

    def _upgrade(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(_META_SQL)
            row = conn.execute("SELECT value FROM schema_meta WHERE key = 'version'").fetchone()
            stored = int(row[0]) if row is not None else 0
            if stored > self.schema_version:
                raise StoreUnavailable(
                    f"{self.schema_name} on disk is version {stored}, "
                    f"this build understands up to {self.schema_version}"
                )
            for collection in self.collections:
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {_table(collection)} "
                    "(id TEXT PRIMARY KEY, data TEXT NOT NULL)"
                )
            conn.execute(
                "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('version', ?)",
                (str(self.schema_version),),
            )
            conn.execute(
                "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('name', ?)",
                (self.schema_name,),
            )
        if stored and stored < self.schema_version:
            log_event("INFO", "RecordStore", "Schema upgraded", old=stored, new=self.schema_version)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        log_event("INFO", "RecordStore", "Closed", schema=self.schema_name)

    # -- plumbing ----------------------------------------------------------

    @contextmanager
    def _transaction(self, collection: str, operation: str):
        if collection not in self._known:
            raise PersistenceError(collection, operation, "unknown collection")
        with self._lock:
            if self._conn is None:
                raise PersistenceError(collection, operation, "store is closed")
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise PersistenceError(collection, operation, str(e)) from e

    @staticmethod
    def _encode(collection: str, operation: str, record: dict) -> tuple[str, str]:
        if not isinstance(record, dict):
            raise PersistenceError(collection, operation, "record must be a dict")
        record_id = record.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise PersistenceError(collection, operation, "record has no string id")
        try:
            return record_id, json.dumps(record)
        except (TypeError, ValueError) as e:
            raise PersistenceError(collection, operation, f"not serialisable: {e}") from e

    # -- sync operations (worker thread) -----------------------------------

    @staticmethod
    def _decode_row(collection: str, operation: str, record_id: str, payload) -> dict:
        try:
            record = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise PersistenceError(collection, operation, f"row {record_id!r} is not valid JSON: {e}") from e
        if not isinstance(record, dict):
            raise PersistenceError(collection, operation, f"row {record_id!r} is not an object")
        return record

    def _get_all(self, collection: str) -> list[dict]:
        """Every decodable row; corrupt rows are skipped with a warning."""
        with self._transaction(collection, "get_all") as conn:
            rows = conn.execute(f"SELECT id, data FROM {_table(collection)}").fetchall()
        records = []
        for record_id, payload in rows:
            try:
                records.append(self._decode_row(collection, "get_all", record_id, payload))
            except PersistenceError as e:
                log_event("WARN", "RecordStore", "Skipping corrupt row", collection=collection, error=e)
        return records

    def _get(self, collection: str, record_id: str) -> Optional[dict]:
        with self._transaction(collection, "get") as conn:
            row = conn.execute(
                f"SELECT data FROM {_table(collection)} WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            return None
        return self._decode_row(collection, "get", record_id, row[0])

    def _put(self, collection: str, record: dict) -> None:
        record_id, payload = self._encode(collection, "put", record)
        with self._transaction(collection, "put") as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {_table(collection)} (id, data) VALUES (?, ?)",
                (record_id, payload),
            )

    def _add(self, collection: str, record: dict) -> None:
        record_id, payload = self._encode(collection, "add", record)
        try:
            with self._transaction(collection, "add") as conn:
                conn.execute(
                    f"INSERT INTO {_table(collection)} (id, data) VALUES (?, ?)",
                    (record_id, payload),
                )
        except PersistenceError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateId(collection, record_id) from e
            raise

    def _delete(self, collection: str, record_id: str) -> None:
        with self._transaction(collection, "delete") as conn:
            conn.execute(f"DELETE FROM {_table(collection)} WHERE id = ?", (record_id,))

    def _clear(self, collection: str) -> None:
        with self._transaction(collection, "clear") as conn:
            conn.execute(f"DELETE FROM {_table(collection)}")

    # -- async API ---------------------------------------------------------

    async def get_all(self, collection: str) -> list[dict]:
        """Every record in the collection, in no particular order."""
        return await asyncio.to_thread(self._get_all, collection)

    async def get(self, collection: str, record_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get, collection, record_id)

    async def put(self, collection: str, record: dict) -> None:
        """Insert or replace by id."""
        await asyncio.to_thread(self._put, collection, record)

    async def add(self, collection: str, record: dict) -> None:
        """Insert only; raises DuplicateId when the id is taken."""
        await asyncio.to_thread(self._add, collection, record)

    async def delete(self, collection: str, record_id: str) -> None:
        """Remove by id; deleting a missing id succeeds."""
        await asyncio.to_thread(self._delete, collection, record_id)

    async def clear(self, collection: str) -> None:
        await asyncio.to_thread(self._clear, collection)

    async def __aenter__(self) -> "RecordStore":
        return await self.open()

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


async def open_store(
    db_path: Optional[Path],
    schema_name: str,
    collections: Iterable[str],
    schema_version: int = 1,
) -> RecordStore:
    """Create and open a store in one call; raises StoreUnavailable."""
    store = RecordStore(db_path, schema_name, collections, schema_version)
    return await store.open()
