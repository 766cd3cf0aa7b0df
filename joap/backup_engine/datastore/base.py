"""
Base protocol for the live application datastore.

The inventory, billing and user-administration code owns the records; the
backup engine only needs to read every collection consistently and to
replace all of them at once.

Invariants:
    - collections is fixed for the lifetime of a datastore and defines export order
    - read_all() returns every registered collection from one consistent view
    - replace_all() is all-or-nothing: on any failure the prior state is intact

How to change safely:
    - New backends must implement the Datastore protocol
    - Storage errors must surface as StorageFailure, not backend exceptions
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import EngineConfig

Record = dict[str, Any]


@runtime_checkable
class Datastore(Protocol):
    """Protocol for live datastore backends.

    Atomicity contract:
        - SqliteDatastore: one BEGIN IMMEDIATE transaction, ROLLBACK on error
        - InMemoryDatastore: staged copy swapped in with a single assignment

    Example:
        >>> store = SqliteDatastore("/var/lib/joap/live.db", ("items", "orders"))
        >>> await store.initialize()
        >>> contents = await store.read_all()
        >>> await store.replace_all({"items": [], "orders": contents["orders"]})
    """

    @property
    @abstractmethod
    def collections(self) -> tuple[str, ...]:
        """Registered collection names in export order."""
        ...

    @abstractmethod
    async def initialize(self) -> None:
        """Create backing storage if needed."""
        ...

    @abstractmethod
    async def read_all(self) -> dict[str, list[Record]]:
        """Read every registered collection from one consistent view.

        Raises:
            StorageFailure: If any collection could not be read
        """
        ...

    @abstractmethod
    async def read_collection(self, name: str) -> list[Record]:
        """Read one collection in stored order.

        Raises:
            KeyError: If the collection is not registered
            StorageFailure: If the read failed
        """
        ...

    @abstractmethod
    async def insert(self, name: str, records: Sequence[Record]) -> int:
        """Append records to one collection.

        Returns:
            Number of records inserted
        """
        ...

    @abstractmethod
    async def replace_all(self, contents: Mapping[str, Sequence[Record]]) -> dict[str, int]:
        """Atomically replace every registered collection.

        Registered collections missing from ``contents`` are emptied. Keys
        that are not registered are ignored.

        Returns:
            Number of records written per collection

        Raises:
            StorageFailure: If the replacement could not commit
        """
        ...


def create_datastore(config: "EngineConfig") -> Datastore:
    """Factory function to create the live datastore from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from pathlib import Path

    from ..config import DatastoreBackend
    from .memory import InMemoryDatastore
    from .sqlite_store import SqliteDatastore

    backend = config.storage.datastore_backend
    if backend == DatastoreBackend.SQLITE:
        return SqliteDatastore(
            db_path=Path(config.storage.data_dir) / config.storage.live_db_name,
            collections=config.snapshot.collections,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    elif backend == DatastoreBackend.MEMORY:
        return InMemoryDatastore(collections=config.snapshot.collections)
    else:
        raise ValueError(f"Unsupported datastore backend: {backend}")
