"""
Auto-backup settings and their persistence.

The settings are a singleton row in the metadata database so the schedule
survives process restarts.

Invariants:
    - interval_value is a positive integer, the interval at most MAX_INTERVAL
    - next_run_at is None while disabled
    - Timestamps are stored as UTC milliseconds
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..db import open_connection, run_blocking
from ..errors import InvalidSettings, StorageFailure

logger = logging.getLogger(__name__)

# Longest allowed interval between scheduled backups
MAX_INTERVAL = timedelta(days=3650)


class IntervalUnit(str, Enum):
    """Unit of the auto-backup interval."""

    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"

    def to_timedelta(self, value: int) -> timedelta:
        if self == IntervalUnit.HOURS:
            return timedelta(hours=value)
        if self == IntervalUnit.DAYS:
            return timedelta(days=value)
        return timedelta(days=7 * value)


@dataclass(frozen=True)
class AutoBackupSettings:
    """Persisted auto-backup schedule.

    Attributes:
        enabled: Whether scheduled backups run
        interval_value: Number of interval units between runs
        interval_unit: hours, days or weeks
        last_run_at: Slot time of the most recent scheduled run
        next_run_at: Slot time of the next scheduled run (None while disabled)
    """

    enabled: bool = False
    interval_value: int = 24
    interval_unit: IntervalUnit = IntervalUnit.HOURS
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None

    @property
    def interval(self) -> timedelta:
        return self.interval_unit.to_timedelta(self.interval_value)

    def with_changes(self, **changes: Any) -> AutoBackupSettings:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "intervalValue": self.interval_value,
            "intervalUnit": self.interval_unit.value,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "nextRunAt": self.next_run_at.isoformat() if self.next_run_at else None,
        }


def validate_settings(
    enabled: Any,
    interval_value: Any,
    interval_unit: Any,
) -> tuple[bool, int, IntervalUnit]:
    """Check caller-supplied settings values.

    Returns:
        Tuple of (enabled, interval_value, interval_unit) with coerced types

    Raises:
        InvalidSettings: If any value is out of range or of the wrong type
    """
    if not isinstance(enabled, bool):
        raise InvalidSettings("enabled must be a boolean", "enabled")

    # bool is an int subclass; True is not a valid interval
    if isinstance(interval_value, bool) or not isinstance(interval_value, int):
        raise InvalidSettings("intervalValue must be an integer", "intervalValue")
    if interval_value < 1:
        raise InvalidSettings(
            f"intervalValue must be at least 1, got {interval_value}", "intervalValue"
        )

    try:
        unit = IntervalUnit(interval_unit)
    except ValueError:
        raise InvalidSettings(
            f"Invalid intervalUnit '{interval_unit}'. Must be one of: hours, days, weeks",
            "intervalUnit",
        )

    # Compared per unit so huge values never reach timedelta or SQLite
    max_value = MAX_INTERVAL // unit.to_timedelta(1)
    if interval_value > max_value:
        raise InvalidSettings(
            f"intervalValue must be at most {max_value} {unit.value}, got {interval_value}",
            "intervalValue",
        )

    return enabled, interval_value, unit


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    return (value - _EPOCH) // timedelta(milliseconds=1)


def _from_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + timedelta(milliseconds=value)


class SettingsStore:
    """Loads and saves the AutoBackupSettings singleton."""

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode

    def _connect(self):
        return open_connection(self.db_path, self.busy_timeout_ms, self.wal_mode)

    async def initialize(self) -> None:
        try:
            await run_blocking(self._initialize_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to initialize settings: {e}", "initialize") from e

    def _initialize_sync(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auto_backup_settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    enabled INTEGER NOT NULL,
                    interval_value INTEGER NOT NULL,
                    interval_unit TEXT NOT NULL,
                    last_run_at INTEGER,
                    next_run_at INTEGER
                )
            """)

    async def load(self) -> AutoBackupSettings:
        """Load persisted settings, or the defaults if none were ever saved."""
        try:
            row = await run_blocking(self._load_sync)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to load auto-backup settings: {e}", "settings_load") from e
        if row is None:
            return AutoBackupSettings()
        return AutoBackupSettings(
            enabled=bool(row["enabled"]),
            interval_value=row["interval_value"],
            interval_unit=IntervalUnit(row["interval_unit"]),
            last_run_at=_from_ms(row["last_run_at"]),
            next_run_at=_from_ms(row["next_run_at"]),
        )

    def _load_sync(self) -> sqlite3.Row | None:
        with self._connect() as conn:
            return conn.execute("SELECT * FROM auto_backup_settings WHERE id = 1").fetchone()

    async def save(self, settings: AutoBackupSettings) -> None:
        try:
            await run_blocking(self._save_sync, settings)
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to save auto-backup settings: {e}", "settings_save") from e

    def _save_sync(self, settings: AutoBackupSettings) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO auto_backup_settings
                    (id, enabled, interval_value, interval_unit, last_run_at, next_run_at)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    enabled = excluded.enabled,
                    interval_value = excluded.interval_value,
                    interval_unit = excluded.interval_unit,
                    last_run_at = excluded.last_run_at,
                    next_run_at = excluded.next_run_at
                """,
                (
                    int(settings.enabled),
                    settings.interval_value,
                    settings.interval_unit.value,
                    _to_ms(settings.last_run_at),
                    _to_ms(settings.next_run_at),
                ),
            )
