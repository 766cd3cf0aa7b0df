"""
Audit trail for maintenance operations.

Every successful operator action through the gateway is recorded in the
metadata database so administrators can see who backed up or restored
what, and when.

Invariants:
    - Entries are append-only
    - A failed audit write never fails the operation it describes
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .db import open_connection, run_blocking
from .errors import StorageFailure

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Recorded maintenance actions."""

    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_EXPORTED = "BACKUP_EXPORTED"
    BACKUP_TRIGGERED = "BACKUP_TRIGGERED"
    BACKUP_DOWNLOADED = "BACKUP_DOWNLOADED"
    BACKUP_RESTORED = "BACKUP_RESTORED"
    AUTO_BACKUP_SETTINGS_CHANGED = "AUTO_BACKUP_SETTINGS_CHANGED"


@dataclass(frozen=True)
class AuditEntry:
    """One audit trail entry."""

    action: AuditAction
    actor: str
    target: str | None
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "actor": self.actor,
            "target": self.target,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
        }


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditTrail:
    """Append-only audit log in the metadata database."""

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self.clock = clock

    def _connect(self):
        return open_connection(self.db_path, self.busy_timeout_ms, self.wal_mode)

    async def initialize(self) -> None:
        try:
            await run_blocking(self._initialize_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to initialize audit trail: {e}", "initialize") from e

    def _initialize_sync(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    target TEXT,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audit_log_created
                    ON audit_log(created_at DESC);
            """)

    async def record(
        self,
        action: AuditAction,
        actor: str,
        target: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append an entry. Write failures are logged, not raised."""
        entry = AuditEntry(
            action=action,
            actor=actor,
            target=target,
            created_at=self.clock(),
            metadata=metadata or {},
        )
        try:
            await run_blocking(self._insert_sync, entry)
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(
                f"Failed to write audit entry: {e}",
                extra={"action": action.value, "actor": actor},
            )
        return entry

    def _insert_sync(self, entry: AuditEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO audit_log (action, actor, target, metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.action.value,
                    entry.actor,
                    entry.target,
                    json.dumps(entry.metadata, default=str),
                    (entry.created_at - _EPOCH) // timedelta(milliseconds=1),
                ),
            )

    async def list(self, limit: int = 50) -> list[AuditEntry]:
        """Most recent entries first."""
        try:
            rows = await run_blocking(self._list_sync, limit)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to read audit trail: {e}", "audit_list") from e
        return [
            AuditEntry(
                action=AuditAction(row["action"]),
                actor=row["actor"],
                target=row["target"],
                created_at=_EPOCH + timedelta(milliseconds=row["created_at"]),
                metadata=json.loads(row["metadata_json"]),
            )
            for row in rows
        ]

    def _list_sync(self, limit: int) -> list[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                "SELECT * FROM audit_log ORDER BY created_at DESC, seq DESC LIMIT ?",
                (limit,),
            ).fetchall()
