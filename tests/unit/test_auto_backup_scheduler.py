"""
Unit tests for the auto-backup scheduler.

Tests cover:
- Clock-driven slots (T+24h, T+48h)
- Coalescing missed slots
- Disabling and re-enabling
- Trigger-now leaving the schedule alone
- Failure policy
- The background timer loop
"""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from joap.backup_engine.backup import BackupSource, BackupStore, LocalArtifactStorage
from joap.backup_engine.datastore import InMemoryDatastore
from joap.backup_engine.errors import InvalidSettings, StorageFailure
from joap.backup_engine.schedule import AutoBackupScheduler, SchedulerState, SettingsStore
from joap.backup_engine.snapshot import SnapshotCodec

DAY = timedelta(hours=24)


class TestAutoBackupScheduler:
    """Tests for AutoBackupScheduler with a manual clock."""

    @pytest.fixture
    async def store(self, data_dir, clock):
        codec = SnapshotCodec(InMemoryDatastore(("items", "users")), clock=clock)
        store = BackupStore(
            Path(data_dir) / "maintenance.db",
            LocalArtifactStorage(Path(data_dir) / "backups"),
            codec,
            wal_mode=False,
            clock=clock,
        )
        await store.initialize()
        return store

    @pytest.fixture
    async def settings_store(self, data_dir):
        settings_store = SettingsStore(Path(data_dir) / "maintenance.db", wal_mode=False)
        await settings_store.initialize()
        return settings_store

    @pytest.fixture
    async def scheduler(self, store, settings_store, clock):
        scheduler = AutoBackupScheduler(store, settings_store, clock=clock, timer_enabled=False)
        await scheduler.start()
        yield scheduler
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_starts_disabled(self, scheduler):
        assert scheduler.state == SchedulerState.DISABLED
        assert scheduler.settings.next_run_at is None
        assert await scheduler.run_pending() is None

    @pytest.mark.asyncio
    async def test_runs_at_exact_slots(self, scheduler, store, clock):
        start = clock.now
        await scheduler.update_settings(True, 24, "hours")
        assert scheduler.state == SchedulerState.ARMED
        assert scheduler.settings.next_run_at == start + DAY

        # Not yet due
        clock.advance(DAY - timedelta(seconds=1))
        assert await scheduler.run_pending() is None

        clock.advance(timedelta(seconds=1))
        first = await scheduler.run_pending()
        assert first.source == BackupSource.AUTO
        assert first.created_by == "system"
        assert first.created_at == start + DAY
        assert scheduler.settings.last_run_at == start + DAY
        assert scheduler.settings.next_run_at == start + 2 * DAY

        # A late wake-up still records the slot, not the wall time
        clock.advance(DAY + timedelta(minutes=7))
        await scheduler.run_pending()
        assert scheduler.settings.last_run_at == start + 2 * DAY
        assert scheduler.settings.next_run_at == start + 3 * DAY

        _, total = await store.list()
        assert total == 2

    @pytest.mark.asyncio
    async def test_missed_slots_are_coalesced(self, scheduler, store, clock):
        start = clock.now
        await scheduler.update_settings(True, 1, "days")

        clock.advance(3 * DAY + timedelta(hours=5))
        await scheduler.run_pending()

        assert scheduler.settings.last_run_at == start + 3 * DAY
        assert scheduler.settings.next_run_at == start + 4 * DAY
        _, total = await store.list()
        assert total == 1

    @pytest.mark.asyncio
    async def test_disable_cancels_future_runs_and_keeps_history(self, scheduler, store, clock):
        start = clock.now
        await scheduler.update_settings(True, 24, "hours")
        clock.advance(DAY)
        await scheduler.run_pending()

        settings = await scheduler.update_settings(False, 24, "hours")

        assert settings.next_run_at is None
        assert settings.last_run_at == start + DAY
        assert scheduler.state == SchedulerState.DISABLED
        clock.advance(5 * DAY)
        assert await scheduler.run_pending() is None
        _, total = await store.list()
        assert total == 1

    @pytest.mark.asyncio
    async def test_reenable_schedules_from_now(self, scheduler, clock):
        await scheduler.update_settings(True, 24, "hours")
        await scheduler.update_settings(False, 24, "hours")
        clock.advance(timedelta(hours=5))

        settings = await scheduler.update_settings(True, 2, "weeks")

        assert settings.next_run_at == clock.now + timedelta(weeks=2)

    @pytest.mark.asyncio
    async def test_invalid_settings_change_nothing(self, scheduler):
        await scheduler.update_settings(True, 24, "hours")
        before = scheduler.settings

        with pytest.raises(InvalidSettings):
            await scheduler.update_settings(True, 0, "hours")

        assert scheduler.settings == before

    @pytest.mark.asyncio
    async def test_trigger_now_keeps_schedule(self, scheduler, clock):
        await scheduler.update_settings(True, 24, "hours")
        next_run_at = scheduler.settings.next_run_at
        clock.advance(timedelta(hours=3))

        record = await scheduler.trigger_now("alice")

        assert record.source == BackupSource.AUTO
        assert record.created_by == "alice"
        assert scheduler.settings.next_run_at == next_run_at
        assert scheduler.settings.last_run_at is None

    @pytest.mark.asyncio
    async def test_trigger_now_while_disabled(self, scheduler):
        record = await scheduler.trigger_now("alice")

        assert record.filename.startswith("auto-backup-")
        assert scheduler.state == SchedulerState.DISABLED

    @pytest.mark.asyncio
    async def test_failed_run_stays_armed(self, scheduler, store, clock):
        start = clock.now
        await scheduler.update_settings(True, 24, "hours")

        async def broken_snapshot(source, created_by):
            raise StorageFailure("disk full", "artifact_put")

        store.snapshot = broken_snapshot
        clock.advance(DAY)

        assert await scheduler.run_pending() is None
        assert scheduler.state == SchedulerState.ARMED
        assert scheduler.settings.next_run_at == start + 2 * DAY
        assert scheduler.stats["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_settings_update_does_not_cancel_running_backup(self, scheduler, store, clock):
        start = clock.now
        gate = asyncio.Event()
        original = store.snapshot

        async def slow_snapshot(source, created_by):
            await gate.wait()
            return await original(source, created_by)

        store.snapshot = slow_snapshot
        await scheduler.update_settings(True, 24, "hours")
        clock.advance(DAY)

        run = asyncio.create_task(scheduler.run_pending())
        await asyncio.sleep(0)
        assert scheduler.state == SchedulerState.RUNNING

        await scheduler.update_settings(False, 24, "hours")
        gate.set()
        record = await run

        assert record is not None
        assert scheduler.settings.last_run_at == start + DAY
        assert scheduler.settings.next_run_at is None
        assert scheduler.state == SchedulerState.DISABLED

    @pytest.mark.asyncio
    async def test_run_finishing_during_disable_keeps_both(
        self, scheduler, store, settings_store, clock
    ):
        start = clock.now
        snapshot_gate = asyncio.Event()
        snapshot_done = asyncio.Event()
        save_gate = asyncio.Event()
        original_snapshot = store.snapshot
        original_save = settings_store.save

        async def slow_snapshot(source, created_by):
            await snapshot_gate.wait()
            record = await original_snapshot(source, created_by)
            snapshot_done.set()
            return record

        async def slow_save(settings):
            if not settings.enabled:
                await save_gate.wait()
            await original_save(settings)

        await scheduler.update_settings(True, 24, "hours")
        store.snapshot = slow_snapshot
        settings_store.save = slow_save
        clock.advance(DAY)

        run = asyncio.create_task(scheduler.run_pending())
        await asyncio.sleep(0)
        disable = asyncio.create_task(scheduler.update_settings(False, 24, "hours"))
        await asyncio.sleep(0)

        # The run completes while the disable is still being saved
        snapshot_gate.set()
        await snapshot_done.wait()
        await asyncio.sleep(0)
        save_gate.set()
        await disable
        await run

        assert scheduler.settings.enabled is False
        assert scheduler.settings.next_run_at is None
        assert scheduler.settings.last_run_at == start + DAY
        assert await settings_store.load() == scheduler.settings

    @pytest.mark.asyncio
    async def test_schedule_survives_restart(self, scheduler, store, settings_store, clock):
        await scheduler.update_settings(True, 12, "hours")
        clock.advance(timedelta(hours=12))
        await scheduler.run_pending()
        expected = scheduler.settings

        restarted = AutoBackupScheduler(store, settings_store, clock=clock, timer_enabled=False)
        await restarted.start()

        assert restarted.settings == expected
        assert restarted.state == SchedulerState.ARMED
        await restarted.stop()


class TestSchedulerTimerLoop:
    """Tests for the background timer task."""

    @pytest.mark.asyncio
    async def test_timer_fires_at_t_plus_24h_and_48h(self, data_dir, clock):
        start = clock.now
        codec = SnapshotCodec(InMemoryDatastore(("items",)), clock=clock)
        store = BackupStore(
            Path(data_dir) / "maintenance.db",
            LocalArtifactStorage(Path(data_dir) / "backups"),
            codec,
            wal_mode=False,
            clock=clock,
        )
        await store.initialize()
        settings_store = SettingsStore(Path(data_dir) / "maintenance.db", wal_mode=False)
        await settings_store.initialize()

        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                raise asyncio.CancelledError()
            clock.advance(timedelta(seconds=seconds))

        scheduler = AutoBackupScheduler(store, settings_store, clock=clock, sleep=fake_sleep)
        await scheduler.start()
        await scheduler.update_settings(True, 24, "hours")
        await scheduler._timer_task

        assert sleeps == [DAY.total_seconds()] * 3
        records, total = await store.list()
        assert total == 2
        assert [r.created_at for r in records] == [start + 2 * DAY, start + DAY]
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_past_due_slot_runs_on_start(self, data_dir, clock):
        codec = SnapshotCodec(InMemoryDatastore(("items",)), clock=clock)
        store = BackupStore(
            Path(data_dir) / "maintenance.db",
            LocalArtifactStorage(Path(data_dir) / "backups"),
            codec,
            wal_mode=False,
            clock=clock,
        )
        await store.initialize()
        settings_store = SettingsStore(Path(data_dir) / "maintenance.db", wal_mode=False)
        await settings_store.initialize()

        first = AutoBackupScheduler(store, settings_store, clock=clock, timer_enabled=False)
        await first.start()
        await first.update_settings(True, 24, "hours")
        await first.stop()
        slot = first.settings.next_run_at

        # Process was down for two days
        clock.advance(2 * DAY)

        async def stop_sleep(seconds):
            raise asyncio.CancelledError()

        resumed = AutoBackupScheduler(store, settings_store, clock=clock, sleep=stop_sleep)
        await resumed.start()
        await resumed._timer_task

        assert resumed.settings.last_run_at == slot + DAY
        assert resumed.settings.next_run_at == slot + 2 * DAY
        _, total = await store.list()
        assert total == 1
        await resumed.stop()
