"""
CLI tools for JOAP maintenance.

This module provides command-line tools for:
- backup: Export, create, list and restore backups

Invariants:
    - Tools work offline (no running service required)
    - Destructive operations require explicit confirmation
"""

from .backup_cli import BackupCLI

__all__ = ["BackupCLI"]
