"""
Backup module for the JOAP backup engine.

This module handles:
- Durable storage of snapshot artifacts (local directory or S3)
- The paginated backup history index
- Retention pruning

Invariants:
    - A BackupRecord is visible only after its artifact is durable
    - Writes are serialized by the store's write lock
"""

from .artifacts import (
    ArtifactStorage,
    LocalArtifactStorage,
    S3ArtifactStorage,
    create_artifact_storage,
)
from .store import (
    SYSTEM_ACTOR,
    BackupRecord,
    BackupSource,
    BackupStore,
    RetentionPolicy,
    backup_filename,
)

__all__ = [
    "ArtifactStorage",
    "LocalArtifactStorage",
    "S3ArtifactStorage",
    "create_artifact_storage",
    "SYSTEM_ACTOR",
    "BackupRecord",
    "BackupSource",
    "BackupStore",
    "RetentionPolicy",
    "backup_filename",
]
