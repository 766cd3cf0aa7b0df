"""
Live datastore abstraction for the JOAP backup engine.

This module provides a pluggable datastore interface supporting:
- SQLite (single transactional write)
- In-memory (staged double buffer, for tests and development)

Invariants:
    - Every backend exposes a fixed, ordered set of collections
    - Full replacement is atomic on every backend
    - Failures surface as StorageFailure
"""

from .base import Datastore, Record, create_datastore
from .memory import InMemoryDatastore
from .sqlite_store import SqliteDatastore

__all__ = [
    # Protocol and types
    "Datastore",
    "Record",
    # Factory
    "create_datastore",
    # Implementations
    "SqliteDatastore",
    "InMemoryDatastore",
]
