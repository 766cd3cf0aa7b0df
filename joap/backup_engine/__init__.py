"""
JOAP Backup Engine - backup, restore and auto-backup scheduling for the
JOAP supplier-management system.

The engine snapshots every application collection (items, customers,
orders, payments, inventory logs, accounts, ledger, settings, system
logs, users) into one JSON document, keeps a history of those documents,
and can replace all live data with any of them.

Architecture:
    ┌──────────────┐     ┌────────────────────┐
    │  HTTP / CLI  │────▶│ MaintenanceGateway │
    └──────────────┘     └─────────┬──────────┘
                                   │
          ┌───────────────┬────────┴──────┬─────────────────┐
          ▼               ▼               ▼                 ▼
    ┌───────────┐   ┌───────────┐   ┌────────────┐   ┌──────────────┐
    │ Snapshot  │   │  Backup   │◀──│ AutoBackup │   │   Restore    │
    │  Codec    │   │  Store    │   │ Scheduler  │   │   Executor   │
    └─────┬─────┘   └─────┬─────┘   └────────────┘   └──────┬───────┘
          │               │  write lock (shared)            │
          ▼               ▼                                 ▼
    ┌───────────┐   ┌─────────────────────┐          ┌───────────┐
    │ Datastore │   │ artifacts + history │          │ Datastore │
    └───────────┘   └─────────────────────┘          └───────────┘

Invariants:
    - A restore replaces every collection or none
    - A backup is visible in history only once its artifact is durable
    - Backups, restores and scheduled runs never interleave their writes
    - At least one active administrator survives every restore

How to change safely:
    - Bump SCHEMA_VERSION only with a decoder for the previous version
    - Append collections to the export order; never reorder
"""

from ._version import __version__

__all__ = ["__version__"]
