"""
SQLite live datastore for the JOAP backup engine.

This module stores every application collection in one SQLite file so that
a full replacement can be done in a single transaction.

Invariants:
    - One SQLite file holds all registered collections
    - Record order within a collection is preserved via the position column
    - replace_all() runs in one BEGIN IMMEDIATE transaction; any error rolls back

Table schema:
    records:
        - collection TEXT
        - position INTEGER
        - record_json TEXT
        - PRIMARY KEY (collection, position)

    schema_version:
        - version INTEGER PRIMARY KEY
        - applied_at INTEGER (Unix ms)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..db import open_connection, run_blocking
from ..errors import StorageFailure
from .base import Record

logger = logging.getLogger(__name__)


class SqliteDatastore:
    """Single-file SQLite store for all application collections.

    Thread safety:
        Each operation opens its own connection in an executor thread.
        Concurrent writers are serialized by SQLite's write lock.

    Example:
        >>> store = SqliteDatastore(Path("/var/lib/joap/live.db"), ("items", "users"))
        >>> await store.initialize()
        >>> await store.insert("items", [{"name": "Hammer", "qty": 4}])
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        collections: Sequence[str],
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the datastore.

        Args:
            db_path: SQLite database file
            collections: Registered collection names in export order
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self._collections = tuple(collections)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @property
    def collections(self) -> tuple[str, ...]:
        return self._collections

    def _connect(self):
        return open_connection(self.db_path, self.busy_timeout_ms, self.wal_mode)

    def _check_collection(self, name: str) -> None:
        if name not in self._collections:
            raise KeyError(f"Unknown collection: {name}")

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        try:
            await run_blocking(self._initialize_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to initialize datastore: {e}", "initialize") from e
        logger.info(f"Initialized live datastore: {self.db_path}")

    def _initialize_sync(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    record_json TEXT NOT NULL,
                    PRIMARY KEY (collection, position)
                );

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
            """)

    async def read_all(self) -> dict[str, list[Record]]:
        try:
            return await run_blocking(self._read_all_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to read collections: {e}", "read_all") from e

    def _read_all_sync(self) -> dict[str, list[Record]]:
        with self._connect() as conn:
            # One read transaction so every collection comes from the same snapshot
            conn.execute("BEGIN")
            try:
                contents = {
                    name: self._select_collection(conn, name) for name in self._collections
                }
            finally:
                conn.execute("COMMIT")
        return contents

    async def read_collection(self, name: str) -> list[Record]:
        self._check_collection(name)
        try:
            return await run_blocking(self._read_collection_sync, name)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to read collection {name}: {e}", "read") from e

    def _read_collection_sync(self, name: str) -> list[Record]:
        with self._connect() as conn:
            return self._select_collection(conn, name)

    def _select_collection(self, conn: sqlite3.Connection, name: str) -> list[Record]:
        cursor = conn.execute(
            "SELECT record_json FROM records WHERE collection = ? ORDER BY position",
            (name,),
        )
        return [json.loads(row["record_json"]) for row in cursor.fetchall()]

    async def insert(self, name: str, records: Sequence[Record]) -> int:
        self._check_collection(name)
        try:
            return await run_blocking(self._insert_sync, name, list(records))
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to insert into {name}: {e}", "insert") from e

    def _insert_sync(self, name: str, records: list[Record]) -> int:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "SELECT COALESCE(MAX(position), -1) FROM records WHERE collection = ?",
                    (name,),
                )
                start = cursor.fetchone()[0] + 1
                conn.executemany(
                    "INSERT INTO records (collection, position, record_json) VALUES (?, ?, ?)",
                    [
                        (name, start + offset, json.dumps(record))
                        for offset, record in enumerate(records)
                    ],
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(records)

    async def replace_all(self, contents: Mapping[str, Sequence[Record]]) -> dict[str, int]:
        try:
            counts = await run_blocking(self._replace_all_sync, contents)
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            raise StorageFailure(
                f"Replacement rolled back, live data unchanged: {e}", "replace_all"
            ) from e

        logger.debug("Replaced all collections", extra={"counts": counts})
        return counts

    def _replace_all_sync(self, contents: Mapping[str, Sequence[Record]]) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for name in self._collections:
                    records = contents.get(name, [])
                    self._write_collection(conn, name, records)
                    counts[name] = len(records)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return counts

    def _write_collection(
        self,
        conn: sqlite3.Connection,
        name: str,
        records: Sequence[Record],
    ) -> None:
        """Replace one collection inside the caller's transaction."""
        conn.execute("DELETE FROM records WHERE collection = ?", (name,))
        conn.executemany(
            "INSERT INTO records (collection, position, record_json) VALUES (?, ?, ?)",
            [(name, position, json.dumps(record)) for position, record in enumerate(records)],
        )
