"""
SQLite connection handling shared by the live datastore and the metadata stores.

Invariants:
    - One connection per operation, closed on exit
    - Autocommit by default; writers issue explicit BEGIN IMMEDIATE / COMMIT
    - Blocking SQLite work runs in the default executor, never on the event loop
"""

from __future__ import annotations

import asyncio
import functools
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

T = TypeVar("T")


@contextmanager
def open_connection(
    db_path: Path,
    busy_timeout_ms: int = 5000,
    wal_mode: bool = True,
) -> Iterator[sqlite3.Connection]:
    """Open a configured SQLite connection.

    Args:
        db_path: Database file path (parent directory is created)
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Enable SQLite WAL mode

    Yields:
        SQLite connection with Row factory
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        str(db_path),
        timeout=busy_timeout_ms / 1000.0,
        isolation_level=None,  # Autocommit by default, explicit transactions
    )
    conn.row_factory = sqlite3.Row

    try:
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        if wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
        yield conn
    finally:
        conn.close()


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking callable in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
