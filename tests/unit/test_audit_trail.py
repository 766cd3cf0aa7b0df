"""
Unit tests for the audit trail.
"""

import sqlite3
from pathlib import Path

import pytest

from joap.backup_engine.audit import AuditAction, AuditTrail


class TestAuditTrail:
    """Tests for AuditTrail."""

    @pytest.fixture
    async def audit(self, data_dir, clock):
        audit = AuditTrail(Path(data_dir) / "maintenance.db", wal_mode=False, clock=clock)
        await audit.initialize()
        return audit

    @pytest.mark.asyncio
    async def test_record_and_list(self, audit, clock):
        await audit.record(AuditAction.BACKUP_CREATED, "alice", "b1", {"filename": "backup-x.json"})
        await audit.record(AuditAction.BACKUP_RESTORED, "bob")

        entries = await audit.list()

        assert [e.action for e in entries] == [
            AuditAction.BACKUP_RESTORED,
            AuditAction.BACKUP_CREATED,
        ]
        assert entries[1].metadata == {"filename": "backup-x.json"}
        assert entries[1].created_at == clock.now
        assert entries[0].to_dict()["action"] == "BACKUP_RESTORED"

    @pytest.mark.asyncio
    async def test_write_failure_is_not_raised(self, audit):
        def broken_insert(entry):
            raise sqlite3.OperationalError("database is locked")

        audit._insert_sync = broken_insert

        entry = await audit.record(AuditAction.BACKUP_EXPORTED, "alice")

        assert entry.actor == "alice"
