"""
In-memory live datastore.

This backend is used for:
- Unit tests
- Local development without a database file
- Demonstrating the staged double-buffer restore

Invariants:
    - All data is lost on process exit
    - Readers always see one complete generation of state
    - replace_all() stages a full copy and swaps it in with one assignment

How to change safely:
    - Keep interface compatible with the Datastore protocol
    - Never mutate the published state dict in place
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping, Sequence

from ..errors import StorageFailure
from .base import Record

logger = logging.getLogger(__name__)


class InMemoryDatastore:
    """In-memory implementation of Datastore.

    Thread safety:
        Uses an asyncio lock for writers. Readers take a reference to the
        current generation, which is never mutated after publication.

    Example:
        >>> store = InMemoryDatastore(("items", "orders"))
        >>> await store.insert("items", [{"name": "Nails"}])
        >>> (await store.read_all())["items"]
        [{'name': 'Nails'}]
    """

    def __init__(self, collections: Sequence[str]) -> None:
        self._collections = tuple(collections)
        self._state: dict[str, list[Record]] = {name: [] for name in self._collections}
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def collections(self) -> tuple[str, ...]:
        return self._collections

    @property
    def generation(self) -> int:
        """Number of published state swaps."""
        return self._generation

    async def initialize(self) -> None:
        pass

    async def read_all(self) -> dict[str, list[Record]]:
        state = self._state
        return {name: copy.deepcopy(state[name]) for name in self._collections}

    async def read_collection(self, name: str) -> list[Record]:
        if name not in self._collections:
            raise KeyError(f"Unknown collection: {name}")
        return copy.deepcopy(self._state[name])

    async def insert(self, name: str, records: Sequence[Record]) -> int:
        if name not in self._collections:
            raise KeyError(f"Unknown collection: {name}")
        async with self._lock:
            staged = dict(self._state)
            staged[name] = staged[name] + copy.deepcopy(list(records))
            self._publish(staged)
        return len(records)

    async def replace_all(self, contents: Mapping[str, Sequence[Record]]) -> dict[str, int]:
        async with self._lock:
            staged: dict[str, list[Record]] = {}
            try:
                for name in self._collections:
                    staged[name] = self._stage_collection(name, contents.get(name, []))
            except Exception as e:
                # The shadow copy is dropped; the published state was never touched
                raise StorageFailure(
                    f"Replacement aborted, live data unchanged: {e}", "replace_all"
                ) from e
            self._publish(staged)

        return {name: len(records) for name, records in staged.items()}

    def _stage_collection(self, name: str, records: Sequence[Record]) -> list[Record]:
        """Build the shadow copy of one collection."""
        return copy.deepcopy(list(records))

    def _publish(self, staged: dict[str, list[Record]]) -> None:
        self._state = staged
        self._generation += 1
        logger.debug("Published datastore generation", extra={"generation": self._generation})
