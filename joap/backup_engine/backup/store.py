"""
Backup store for the JOAP backup engine.

The BackupStore persists snapshot documents as artifacts and keeps a
history index of BackupRecords in the metadata SQLite database:

    artifacts:  <artifact storage>/<backup id>.json
    index:      maintenance.db / backup_history

Invariants:
    - create() is the single point of truth for "a backup exists"
    - A record is published only after its artifact is durable
    - At most one write (create/delete/prune, or a restore) runs at a time;
      the write lock is shared with the RestoreExecutor
    - list()/fetch() never take the write lock
    - Backup ids are random; nothing depends on contiguous ids

How to change safely:
    - Add index columns with defaults; never rewrite existing rows
    - Keep artifact keys derived from the id only
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from ..db import open_connection, run_blocking
from ..errors import InvalidRequest, MalformedDocument, NotFound, StorageFailure
from ..snapshot import SnapshotCodec, SnapshotDocument
from .artifacts import ArtifactStorage

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class BackupSource(str, Enum):
    """Who initiated a backup."""

    MANUAL = "manual"
    AUTO = "auto"


@dataclass(frozen=True)
class BackupRecord:
    """One entry in the retained backup history.

    Attributes:
        id: Unique backup identifier (random, immutable)
        filename: Display name derived from creation time
        size_bytes: Byte length of the stored artifact
        source: manual or auto
        created_by: Acting administrator, or "system" for scheduled runs
        created_at: Creation timestamp (UTC, millisecond precision)
        checksum: SHA-256 of the stored artifact
    """

    id: str
    filename: str
    size_bytes: int
    source: BackupSource
    created_by: str
    created_at: datetime
    checksum: str

    @property
    def artifact_key(self) -> str:
        return f"{self.id}.json"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "sizeBytes": self.size_bytes,
            "source": self.source.value,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "checksum": self.checksum,
        }


@dataclass(frozen=True)
class RetentionPolicy:
    """Bounds on retained history.

    Attributes:
        max_count: Keep at most this many newest backups
        max_age: Drop backups older than this
    """

    max_count: int | None = None
    max_age: timedelta | None = None


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_ms(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(milliseconds=1)


def _from_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


def backup_filename(source: BackupSource, created_at: datetime) -> str:
    """Build the display name, e.g. ``auto-backup-2026-01-31T02-00-00-000Z.json``."""
    stamp = created_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    millis = created_at.microsecond // 1000
    prefix = "auto-backup" if source == BackupSource.AUTO else "backup"
    return f"{prefix}-{stamp}-{millis:03d}Z.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupStore:
    """Persists snapshot artifacts and the paginated history index.

    Attributes:
        db_path: Metadata database holding the history index
        artifacts: Artifact storage backend
        codec: Codec used to serialize and produce documents
        write_lock: Serializes every write to artifacts, index and datastore

    Example:
        >>> store = BackupStore(Path("/var/lib/joap/maintenance.db"), artifacts, codec)
        >>> await store.initialize()
        >>> record = await store.snapshot(BackupSource.MANUAL, "admin")
        >>> records, total = await store.list(page=1, page_size=5)
    """

    def __init__(
        self,
        db_path: Path | str,
        artifacts: ArtifactStorage,
        codec: SnapshotCodec,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
        max_page_size: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = Path(db_path)
        self.artifacts = artifacts
        self.codec = codec
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self.max_page_size = max_page_size
        self.clock = clock
        self.write_lock = asyncio.Lock()
        self._created_count = 0

    def _connect(self):
        return open_connection(self.db_path, self.busy_timeout_ms, self.wal_mode)

    async def initialize(self) -> None:
        """Create the history index if it doesn't exist."""
        try:
            await run_blocking(self._initialize_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to initialize backup index: {e}", "initialize") from e

    def _initialize_sync(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS backup_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    filename TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    source TEXT NOT NULL CHECK (source IN ('manual', 'auto')),
                    created_by TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    checksum TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_backup_history_created
                    ON backup_history(created_at DESC, seq DESC);
            """)

    async def create(
        self,
        document: SnapshotDocument,
        source: BackupSource | str,
        created_by: str,
    ) -> BackupRecord:
        """Persist a document as a new backup.

        Args:
            document: Snapshot to store
            source: manual or auto
            created_by: Acting administrator or "system"

        Returns:
            The published BackupRecord

        Raises:
            InvalidRequest: If source is not manual/auto
            MalformedDocument: If the document cannot be serialized
            StorageFailure: If the artifact or index write failed (nothing published)
        """
        backup_source = self._coerce_source(source)
        async with self.write_lock:
            return await self._persist(document, backup_source, created_by)

    async def snapshot(self, source: BackupSource | str, created_by: str) -> BackupRecord:
        """Encode the live datastore and persist it, under one hold of the write lock."""
        backup_source = self._coerce_source(source)
        async with self.write_lock:
            document = await self.codec.encode()
            return await self._persist(document, backup_source, created_by)

    def _coerce_source(self, source: BackupSource | str) -> BackupSource:
        try:
            return BackupSource(source)
        except ValueError:
            raise InvalidRequest(
                f"Invalid backup source '{source}'. Must be one of: manual, auto",
                details={"source": str(source)},
            )

    async def _persist(
        self,
        document: SnapshotDocument,
        source: BackupSource,
        created_by: str,
    ) -> BackupRecord:
        try:
            data = self.codec.dumps(document)
        except (TypeError, ValueError) as e:
            raise MalformedDocument(f"Snapshot cannot be serialized: {e}") from e

        now = self.clock()
        created_at = now.replace(microsecond=(now.microsecond // 1000) * 1000)
        record = BackupRecord(
            id=uuid.uuid4().hex,
            filename=backup_filename(source, created_at),
            size_bytes=len(data),
            source=source,
            created_by=created_by or SYSTEM_ACTOR,
            created_at=created_at,
            checksum=f"sha256:{hashlib.sha256(data).hexdigest()}",
        )

        # Artifact first; the record only becomes visible once the bytes are durable
        await self.artifacts.put(record.artifact_key, data)

        try:
            await run_blocking(self._insert_record_sync, record)
        except sqlite3.Error as e:
            await self._discard_artifact(record)
            raise StorageFailure(f"Failed to record backup: {e}", "index_insert") from e

        self._created_count += 1
        logger.info(
            "Created backup",
            extra={
                "backup_id": record.id,
                "backup_filename": record.filename,
                "size_bytes": record.size_bytes,
                "source": record.source.value,
                "created_by": record.created_by,
            },
        )
        return record

    def _insert_record_sync(self, record: BackupRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO backup_history
                    (id, filename, size_bytes, source, created_by, created_at, checksum)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.filename,
                    record.size_bytes,
                    record.source.value,
                    record.created_by,
                    _to_ms(record.created_at),
                    record.checksum,
                ),
            )

    async def _discard_artifact(self, record: BackupRecord) -> None:
        try:
            await self.artifacts.delete(record.artifact_key)
        except StorageFailure as e:
            # Unpublished artifacts are unreachable; leave it for manual cleanup
            logger.error(f"Failed to discard orphan artifact {record.artifact_key}: {e}")

    async def list(self, page: int = 1, page_size: int = 5) -> tuple[list[BackupRecord], int]:
        """List backups newest-first.

        Args:
            page: 1-based page number
            page_size: Records per page

        Returns:
            Tuple of (records on the page, total number of records)

        Raises:
            InvalidRequest: If page or page_size are out of range
        """
        if page < 1:
            raise InvalidRequest(f"page must be >= 1, got {page}", details={"page": page})
        if not 1 <= page_size <= self.max_page_size:
            raise InvalidRequest(
                f"pageSize must be between 1 and {self.max_page_size}, got {page_size}",
                details={"pageSize": page_size},
            )

        try:
            return await run_blocking(self._list_sync, (page - 1) * page_size, page_size)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to list backups: {e}", "list") from e

    def _list_sync(self, offset: int, limit: int) -> tuple[list[BackupRecord], int]:
        with self._connect() as conn:
            conn.execute("BEGIN")
            try:
                total = conn.execute("SELECT COUNT(*) FROM backup_history").fetchone()[0]
                cursor = conn.execute(
                    """
                    SELECT * FROM backup_history
                    ORDER BY created_at DESC, seq DESC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                )
                records = [self._row_to_record(row) for row in cursor.fetchall()]
            finally:
                conn.execute("COMMIT")
        return records, total

    async def get(self, backup_id: str) -> BackupRecord:
        """Get one backup record.

        Raises:
            NotFound: If backup_id is unknown
        """
        try:
            record = await run_blocking(self._get_sync, backup_id)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to read backup {backup_id}: {e}", "get") from e
        if record is None:
            raise NotFound(f"Backup not found: {backup_id}", "backup", backup_id)
        return record

    def _get_sync(self, backup_id: str) -> BackupRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM backup_history WHERE id = ?", (backup_id,)
            ).fetchone()
            return self._row_to_record(row) if row else None

    async def fetch(self, backup_id: str) -> bytes:
        """Return the raw stored document for download.

        Raises:
            NotFound: If backup_id is unknown or its artifact is gone
        """
        record = await self.get(backup_id)
        return await self.artifacts.get(record.artifact_key)

    async def delete(self, backup_id: str) -> BackupRecord:
        """Delete one backup (index row first, then artifact).

        Raises:
            NotFound: If backup_id is unknown
        """
        async with self.write_lock:
            record = await self.get(backup_id)
            await self._remove(record)
        return record

    async def prune(self, policy: RetentionPolicy) -> list[BackupRecord]:
        """Delete backups outside the retention policy.

        Returns:
            The deleted records, newest first
        """
        async with self.write_lock:
            try:
                records = await run_blocking(self._all_records_sync)
            except sqlite3.Error as e:
                raise StorageFailure(f"Failed to read backup index: {e}", "prune") from e

            cutoff = self.clock() - policy.max_age if policy.max_age is not None else None
            victims = []
            for index, record in enumerate(records):
                over_count = policy.max_count is not None and index >= policy.max_count
                too_old = cutoff is not None and record.created_at < cutoff
                if over_count or too_old:
                    victims.append(record)

            for record in victims:
                await self._remove(record)

        if victims:
            logger.info(
                "Pruned backups",
                extra={"pruned": len(victims), "retained": len(records) - len(victims)},
            )
        return victims

    def _all_records_sync(self) -> list[BackupRecord]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM backup_history ORDER BY created_at DESC, seq DESC"
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    async def _remove(self, record: BackupRecord) -> None:
        try:
            await run_blocking(self._delete_record_sync, record.id)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to delete backup {record.id}: {e}", "delete") from e
        await self.artifacts.delete(record.artifact_key)

    def _delete_record_sync(self, backup_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM backup_history WHERE id = ?", (backup_id,))

    def _row_to_record(self, row: sqlite3.Row) -> BackupRecord:
        return BackupRecord(
            id=row["id"],
            filename=row["filename"],
            size_bytes=row["size_bytes"],
            source=BackupSource(row["source"]),
            created_by=row["created_by"],
            created_at=_from_ms(row["created_at"]),
            checksum=row["checksum"],
        )

    @property
    def stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "created_count": self._created_count,
            "write_locked": self.write_lock.locked(),
        }
