"""
Snapshot module for the JOAP backup engine.

This module turns the live datastore into a single JSON document and back:
- encode(): consistent read of every registered collection
- decode(): structural validation and version check of uploaded bytes

Invariants:
    - Documents are self-describing (schemaVersion, generatedAt)
    - Only complete documents are ever produced
"""

from .codec import SCHEMA_VERSION, SnapshotCodec, SnapshotDocument

__all__ = ["SnapshotCodec", "SnapshotDocument", "SCHEMA_VERSION"]
