"""
Auto-backup scheduler for the JOAP backup engine.

The scheduler runs a single background timer task that sleeps until the
persisted next_run_at and then takes a snapshot through the BackupStore,
the same path a manual backup uses.

State machine:
    disabled  enabled=false, no timer task
    armed     enabled=true, timer task sleeping until next_run_at
    running   a scheduled snapshot is executing

Invariants:
    - Slots are clock-driven: last_run_at is the slot time, not the
      completion time, and next_run_at = last_run_at + interval
    - Missed slots (process down, long run) are coalesced into one run
      for the latest elapsed slot
    - A failed run is logged and the scheduler stays armed
    - An in-flight run is never cancelled, not by settings updates and
      not by stop()
    - trigger_now() never changes next_run_at
    - Settings updates and run completions are applied under one lock, so
      a disable is never undone by a run finishing during the save

How to change safely:
    - Inject clock and sleep in tests; never wait on wall time
    - Persist settings after every transition so restarts resume the schedule
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

from ..backup import SYSTEM_ACTOR, BackupRecord, BackupSource, BackupStore
from ..errors import MaintenanceError, StorageFailure
from ..snapshot.codec import utcnow
from .settings import AutoBackupSettings, SettingsStore, validate_settings

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Observable scheduler state."""

    DISABLED = "disabled"
    ARMED = "armed"
    RUNNING = "running"


class AutoBackupScheduler:
    """Owns the AutoBackupSettings singleton and the timer that reads it.

    Attributes:
        store: BackupStore used for scheduled and triggered snapshots
        settings_store: Persistence for the settings singleton
        clock: Returns the current UTC time
        timer_enabled: Whether start() launches the background timer

    Example:
        >>> scheduler = AutoBackupScheduler(store, settings_store)
        >>> await scheduler.start()
        >>> await scheduler.update_settings(True, 24, "hours")
        >>> scheduler.state
        <SchedulerState.ARMED: 'armed'>
    """

    def __init__(
        self,
        store: BackupStore,
        settings_store: SettingsStore,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timer_enabled: bool = True,
    ) -> None:
        self.store = store
        self.settings_store = settings_store
        self.clock = clock
        self.timer_enabled = timer_enabled
        self._sleep = sleep

        self._settings = AutoBackupSettings()
        self._loaded = False
        self._running = False
        self._timer_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        # Serializes every read-modify-write of the persisted settings
        self._settings_lock = asyncio.Lock()
        self._run_count = 0
        self._failure_count = 0

    @property
    def settings(self) -> AutoBackupSettings:
        return self._settings

    @property
    def state(self) -> SchedulerState:
        if self._inflight is not None and not self._inflight.done():
            return SchedulerState.RUNNING
        return SchedulerState.ARMED if self._settings.enabled else SchedulerState.DISABLED

    async def start(self) -> None:
        """Load persisted settings and resume the schedule.

        A next_run_at already in the past fires once, immediately, for the
        latest elapsed slot.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        await self._load()
        self._running = True
        logger.info(
            "Starting auto-backup scheduler",
            extra={
                "state": self.state.value,
                "next_run_at": self._settings.next_run_at.isoformat()
                if self._settings.next_run_at
                else None,
                "timer_enabled": self.timer_enabled,
            },
        )
        self._arm()

    async def stop(self) -> None:
        """Cancel the timer and wait for an in-flight run to finish."""
        self._running = False
        await self._disarm()
        if self._inflight is not None and not self._inflight.done():
            logger.info("Waiting for in-flight scheduled backup")
            await asyncio.wait([self._inflight])
        logger.info("Auto-backup scheduler stopped")

    async def _load(self) -> None:
        if self._loaded:
            return
        async with self._settings_lock:
            if self._loaded:
                return
            settings = await self.settings_store.load()
            if settings.enabled and settings.next_run_at is None:
                settings = settings.with_changes(next_run_at=self.clock() + settings.interval)
                await self.settings_store.save(settings)
            elif not settings.enabled and settings.next_run_at is not None:
                settings = settings.with_changes(next_run_at=None)
                await self.settings_store.save(settings)
            self._settings = settings
            self._loaded = True

    def _arm(self) -> None:
        self._cancel_timer()
        if self._running and self.timer_enabled and self._settings.enabled:
            self._timer_task = asyncio.create_task(self._timer_loop())

    def _cancel_timer(self) -> None:
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()

    async def _disarm(self) -> None:
        task = self._timer_task
        self._cancel_timer()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer_task = None

    async def _timer_loop(self) -> None:
        """Sleep until each slot, then run it."""
        try:
            while True:
                settings = self._settings
                if not settings.enabled or settings.next_run_at is None:
                    return

                delay = (settings.next_run_at - self.clock()).total_seconds()
                if delay > 0:
                    await self._sleep(delay)
                    continue

                await self.run_pending()

        except asyncio.CancelledError:
            logger.info("Auto-backup timer cancelled")

    async def run_pending(self) -> BackupRecord | None:
        """Run the due slot, if any.

        Returns:
            The created BackupRecord, or None if nothing was due or the run failed
        """
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        settings = self._settings
        if not settings.enabled or settings.next_run_at is None:
            return None

        now = self.clock()
        if now < settings.next_run_at:
            return None

        missed = (now - settings.next_run_at) // settings.interval
        slot = settings.next_run_at + missed * settings.interval
        if missed:
            logger.warning(
                "Coalescing missed auto-backup slots",
                extra={"missed": missed, "slot": slot.isoformat()},
            )

        # Shielded so cancelling the timer never cancels the snapshot
        self._inflight = asyncio.ensure_future(self._run_slot(slot, settings))
        return await asyncio.shield(self._inflight)

    async def _run_slot(
        self, slot: datetime, scheduled: AutoBackupSettings
    ) -> BackupRecord | None:
        record = None
        try:
            record = await self.store.snapshot(BackupSource.AUTO, SYSTEM_ACTOR)
            self._run_count += 1
        except MaintenanceError as e:
            self._failure_count += 1
            logger.error(
                f"Scheduled backup failed: {e}",
                extra={"code": e.code, "slot": slot.isoformat()},
            )
        except Exception as e:
            self._failure_count += 1
            logger.error(f"Scheduled backup failed: {e}", exc_info=True)

        async with self._settings_lock:
            current = self._settings
            if current is scheduled:
                updated = current.with_changes(
                    last_run_at=slot, next_run_at=slot + current.interval
                )
            else:
                # Settings changed while running; keep the new schedule
                updated = current.with_changes(last_run_at=slot)
            self._settings = updated

            try:
                await self.settings_store.save(updated)
            except StorageFailure as e:
                logger.error(f"Failed to persist auto-backup settings: {e}")

        logger.info(
            "Scheduled backup finished",
            extra={
                "slot": slot.isoformat(),
                "backup_id": record.id if record else None,
                "next_run_at": updated.next_run_at.isoformat()
                if updated.next_run_at
                else None,
            },
        )
        return record

    async def update_settings(
        self,
        enabled: Any,
        interval_value: Any,
        interval_unit: Any,
    ) -> AutoBackupSettings:
        """Validate, persist and apply new settings.

        Enabling (or re-saving while enabled) schedules the next run one
        interval from now. Disabling clears next_run_at and cancels the timer;
        last_run_at is kept.

        Raises:
            InvalidSettings: If any value is invalid (nothing changes)
            StorageFailure: If the settings could not be persisted (nothing changes)
        """
        enabled, value, unit = validate_settings(enabled, interval_value, interval_unit)
        await self._load()

        async with self._settings_lock:
            current = self._settings
            if enabled:
                updated = current.with_changes(
                    enabled=True,
                    interval_value=value,
                    interval_unit=unit,
                    next_run_at=self.clock() + unit.to_timedelta(value),
                )
            else:
                updated = current.with_changes(
                    enabled=False,
                    interval_value=value,
                    interval_unit=unit,
                    next_run_at=None,
                )

            await self.settings_store.save(updated)
            self._settings = updated
            self._arm()

        logger.info(
            "Auto-backup settings updated",
            extra={
                "enabled": updated.enabled,
                "interval_value": updated.interval_value,
                "interval_unit": updated.interval_unit.value,
            },
        )
        return updated

    async def get_settings(self) -> AutoBackupSettings:
        await self._load()
        return self._settings

    async def trigger_now(self, actor: str | None = None) -> BackupRecord:
        """Create an auto backup immediately, leaving the schedule untouched.

        Raises:
            StorageFailure: If the snapshot could not be stored
        """
        record = await self.store.snapshot(BackupSource.AUTO, actor or SYSTEM_ACTOR)
        logger.info(
            "Auto-backup triggered manually",
            extra={"backup_id": record.id, "actor": record.created_by},
        )
        return record

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "state": self.state.value,
            "run_count": self._run_count,
            "failure_count": self._failure_count,
        }
