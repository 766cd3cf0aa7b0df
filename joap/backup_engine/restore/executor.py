"""
Restore executor for the JOAP backup engine.

Replaces the entire live datastore with the contents of a snapshot
document in one all-or-nothing write.

Invariants:
    - Document validation happens before the write lock is taken
    - The admin guard reads the live users under the write lock, and only
      applies while they hold an active admin
    - Records missing a field the codec redacts are refused, never restored
    - Every registered collection is replaced; ones absent from the document
      are emptied (full replacement, never a merge)
    - On any failure the live datastore is exactly as it was before the call
    - The executor holds no state between calls

How to change safely:
    - Keep all checks ahead of replace_all()
    - Test with the fault-injection datastore before changing the write path
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..admins import check_restored_users, count_active_admins
from ..config import UnknownCollectionPolicy
from ..datastore import Datastore
from ..errors import MalformedDocument, ValidationFailed
from ..snapshot import SnapshotCodec, SnapshotDocument

logger = logging.getLogger(__name__)


@dataclass
class RestoreReport:
    """Result of a successful restore.

    Attributes:
        replaced: Records written per registered collection
        emptied: Registered collections absent from the document (now empty)
        ignored: Document collections the datastore does not know
        schema_version: Version of the restored document
        generated_at: When the restored snapshot was taken
        duration_ms: Time spent validating and writing
    """

    replaced: dict[str, int]
    emptied: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    schema_version: int | None = None
    generated_at: datetime | None = None
    duration_ms: int = 0

    @property
    def total_records(self) -> int:
        return sum(self.replaced.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "replaced": self.replaced,
            "emptied": self.emptied,
            "ignored": self.ignored,
            "totalRecords": self.total_records,
            "schemaVersion": self.schema_version,
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "durationMs": self.duration_ms,
        }


class RestoreExecutor:
    """Validates snapshot documents and swaps them into the live datastore.

    Attributes:
        datastore: Live datastore being replaced
        codec: Codec whose structural rules validate the document
        lock: Write lock shared with the BackupStore

    Example:
        >>> executor = RestoreExecutor(datastore, codec, store.write_lock)
        >>> report = await executor.restore(codec.decode(uploaded_bytes))
        >>> report.replaced
        {'items': 120, 'orders': 34, ...}
    """

    def __init__(
        self,
        datastore: Datastore,
        codec: SnapshotCodec,
        lock: asyncio.Lock,
        unknown_collections: UnknownCollectionPolicy = UnknownCollectionPolicy.IGNORE,
        allowed_extra_collections: Sequence[str] = (),
        require_active_admin: bool = False,
        admin_collection: str = "users",
    ) -> None:
        self.datastore = datastore
        self.codec = codec
        self.lock = lock
        self.unknown_collections = unknown_collections
        self.allowed_extra_collections = frozenset(allowed_extra_collections)
        self.require_active_admin = require_active_admin
        self.admin_collection = admin_collection

    async def restore(self, document: SnapshotDocument) -> RestoreReport:
        """Replace all live data with the document's collections.

        Raises:
            ValidationFailed: If the document is malformed, too new, or fails policy
            LastAdminInvariantViolation: If the guard is on, the live users have an
                active admin and the restored users would not
            StorageFailure: If the replacement could not commit (nothing changed)
        """
        start_time = time.monotonic()

        try:
            self.codec.validate(document)
        except MalformedDocument as e:
            raise ValidationFailed(
                f"Snapshot rejected: {e.message}", errors=e.errors or [e.message]
            ) from e

        known = self.datastore.collections
        unknown = [name for name in document.collections if name not in known]
        if self.unknown_collections == UnknownCollectionPolicy.REJECT:
            rejected = [name for name in unknown if name not in self.allowed_extra_collections]
            if rejected:
                raise ValidationFailed(
                    f"Snapshot contains unknown collections: {', '.join(rejected)}",
                    errors=[f"collections.{name}: unknown collection" for name in rejected],
                )

        contents = {name: document.collections.get(name, []) for name in known}
        self._check_redactions(contents)

        async with self.lock:
            if self.require_active_admin and self.admin_collection in known:
                await self._check_admins(contents[self.admin_collection])
            replaced = await self.datastore.replace_all(contents)

        report = RestoreReport(
            replaced=replaced,
            emptied=[name for name in known if name not in document.collections],
            ignored=unknown,
            schema_version=document.schema_version,
            generated_at=document.generated_at,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        logger.info(
            "Restored snapshot",
            extra={
                "total_records": report.total_records,
                "emptied": report.emptied,
                "ignored": report.ignored,
                "duration_ms": report.duration_ms,
            },
        )
        return report

    def _check_redactions(self, contents: dict[str, Any]) -> None:
        """Refuse records stripped of a field the codec redacts on export."""
        errors: list[str] = []
        for name, hidden in self.codec.redact_fields.items():
            for index, record in enumerate(contents.get(name, [])):
                missing = [field_name for field_name in hidden if field_name not in record]
                if missing:
                    errors.append(f"collections.{name}[{index}]: missing {', '.join(missing)}")
        if errors:
            raise ValidationFailed(
                "Snapshot is missing redacted fields; restoring it would lose them",
                errors=errors,
            )

    async def _check_admins(self, restored_users: list[Any]) -> None:
        live_users = await self.datastore.read_collection(self.admin_collection)
        # Nothing to protect on an installation without an active admin
        if count_active_admins(live_users):
            check_restored_users(restored_users)
