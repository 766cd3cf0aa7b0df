"""
Schedule module for the JOAP backup engine.

Invariants:
    - While enabled, next_run_at = last_run_at + interval once a run has happened
    - The settings singleton is persisted and survives restarts
"""

from .scheduler import AutoBackupScheduler, SchedulerState
from .settings import (
    AutoBackupSettings,
    IntervalUnit,
    SettingsStore,
    validate_settings,
)

__all__ = [
    "AutoBackupScheduler",
    "SchedulerState",
    "AutoBackupSettings",
    "IntervalUnit",
    "SettingsStore",
    "validate_settings",
]
