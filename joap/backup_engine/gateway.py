"""
Maintenance gateway for the JOAP backup engine.

The gateway is the only entry point request handlers (HTTP, CLI) use.
Every operation returns a GatewayResult instead of raising, so callers
can branch on the failure kind without catching exceptions.

Invariants:
    - Restore operations check confirmation before reading the payload
    - Only MaintenanceError is converted into a failed result; anything
      else is a bug and propagates
    - Successful operator actions are written to the audit trail
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .audit import AuditAction, AuditTrail
from .backup import BackupRecord, BackupSource, BackupStore, backup_filename
from .errors import ConfirmationRequired, MaintenanceError
from .restore import RestoreExecutor, RestoreReport
from .schedule import AutoBackupScheduler, AutoBackupSettings
from .snapshot import SnapshotCodec, SnapshotDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GatewayResult(Generic[T]):
    """Outcome of a gateway operation.

    Attributes:
        success: Whether the operation succeeded
        data: Operation payload on success
        error: Typed failure on error
    """

    success: bool
    data: T | None = None
    error: MaintenanceError | None = None

    @classmethod
    def ok(cls, data: T) -> GatewayResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: MaintenanceError) -> GatewayResult[T]:
        return cls(success=False, error=error)

    @property
    def code(self) -> str | None:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return data, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.data  # type: ignore[return-value]


@dataclass(frozen=True)
class Download:
    """A snapshot document ready to hand to a client as a file."""

    filename: str
    content: bytes
    content_type: str = "application/json"


@dataclass(frozen=True)
class HistoryPage:
    """One page of backup history."""

    records: list[BackupRecord]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


class MaintenanceGateway:
    """Operator-facing maintenance operations.

    Example:
        >>> gateway = MaintenanceGateway(codec, store, executor, scheduler, audit)
        >>> result = await gateway.create_manual_backup("admin")
        >>> result.success, result.data.source
        (True, <BackupSource.MANUAL: 'manual'>)
    """

    def __init__(
        self,
        codec: SnapshotCodec,
        store: BackupStore,
        executor: RestoreExecutor,
        scheduler: AutoBackupScheduler,
        audit: AuditTrail,
        default_page_size: int = 5,
    ) -> None:
        self.codec = codec
        self.store = store
        self.executor = executor
        self.scheduler = scheduler
        self.audit = audit
        self.default_page_size = default_page_size

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> GatewayResult[T]:
        try:
            return GatewayResult.ok(await awaitable)
        except MaintenanceError as e:
            logger.warning(
                f"{operation} failed: {e.message}",
                extra={"operation": operation, "code": e.code},
            )
            return GatewayResult.fail(e)

    async def create_manual_backup(self, actor: str) -> GatewayResult[BackupRecord]:
        """Snapshot the live data into a new manual backup."""
        return await self._run("create_manual_backup", self._create_manual_backup(actor))

    async def _create_manual_backup(self, actor: str) -> BackupRecord:
        record = await self.store.snapshot(BackupSource.MANUAL, actor)
        await self.audit.record(
            AuditAction.BACKUP_CREATED, actor, record.id, {"filename": record.filename}
        )
        return record

    async def export_snapshot(self, actor: str) -> GatewayResult[Download]:
        """Encode the live data for download without recording history."""
        return await self._run("export_snapshot", self._export_snapshot(actor))

    async def _export_snapshot(self, actor: str) -> Download:
        document = await self.codec.encode()
        content = self.codec.dumps(document)
        filename = backup_filename(BackupSource.MANUAL, document.generated_at)
        await self.audit.record(
            AuditAction.BACKUP_EXPORTED, actor, None, {"counts": document.record_counts()}
        )
        return Download(filename=filename, content=content)

    async def trigger_now(self, actor: str) -> GatewayResult[BackupRecord]:
        """Create an auto backup immediately without moving the schedule."""
        return await self._run("trigger_now", self._trigger_now(actor))

    async def _trigger_now(self, actor: str) -> BackupRecord:
        record = await self.scheduler.trigger_now(actor)
        await self.audit.record(
            AuditAction.BACKUP_TRIGGERED, actor, record.id, {"filename": record.filename}
        )
        return record

    async def get_auto_backup_settings(self) -> GatewayResult[AutoBackupSettings]:
        return await self._run("get_auto_backup_settings", self.scheduler.get_settings())

    async def set_auto_backup_settings(
        self,
        actor: str,
        enabled: Any = None,
        interval_value: Any = None,
        interval_unit: Any = None,
    ) -> GatewayResult[AutoBackupSettings]:
        """Update the schedule. Omitted values keep their current setting."""
        return await self._run(
            "set_auto_backup_settings",
            self._set_auto_backup_settings(actor, enabled, interval_value, interval_unit),
        )

    async def _set_auto_backup_settings(
        self,
        actor: str,
        enabled: Any,
        interval_value: Any,
        interval_unit: Any,
    ) -> AutoBackupSettings:
        current = await self.scheduler.get_settings()
        settings = await self.scheduler.update_settings(
            current.enabled if enabled is None else enabled,
            current.interval_value if interval_value is None else interval_value,
            current.interval_unit if interval_unit is None else interval_unit,
        )
        await self.audit.record(
            AuditAction.AUTO_BACKUP_SETTINGS_CHANGED,
            actor,
            None,
            {
                "enabled": settings.enabled,
                "interval": f"{settings.interval_value} {settings.interval_unit.value}",
            },
        )
        return settings

    async def list_history(
        self, page: int = 1, page_size: int | None = None
    ) -> GatewayResult[HistoryPage]:
        """List backups newest-first."""
        return await self._run("list_history", self._list_history(page, page_size))

    async def _list_history(self, page: int, page_size: int | None) -> HistoryPage:
        size = self.default_page_size if page_size is None else page_size
        records, total = await self.store.list(page=page, page_size=size)
        return HistoryPage(records=records, total=total, page=page, page_size=size)

    async def download(self, backup_id: str, actor: str) -> GatewayResult[Download]:
        """Return a stored backup's document bytes."""
        return await self._run("download", self._download(backup_id, actor))

    async def _download(self, backup_id: str, actor: str) -> Download:
        record = await self.store.get(backup_id)
        content = await self.store.fetch(backup_id)
        await self.audit.record(
            AuditAction.BACKUP_DOWNLOADED, actor, record.id, {"filename": record.filename}
        )
        return Download(filename=record.filename, content=content)

    async def upload_and_restore(
        self, data: bytes, confirmed: bool, actor: str
    ) -> GatewayResult[RestoreReport]:
        """Replace all live data with an uploaded snapshot.

        Rejected with ConfirmationRequired, before the payload is read, unless
        confirmed is True.
        """
        if confirmed is not True:
            return GatewayResult.fail(ConfirmationRequired("upload_and_restore"))
        return await self._run("upload_and_restore", self._upload_and_restore(data, actor))

    async def _upload_and_restore(self, data: bytes, actor: str) -> RestoreReport:
        document = self.codec.decode(data)
        return await self._restore(document, actor, {"origin": "upload", "size_bytes": len(data)})

    async def restore_from_history(
        self, backup_id: str, confirmed: bool, actor: str
    ) -> GatewayResult[RestoreReport]:
        """Replace all live data with a stored backup."""
        if confirmed is not True:
            return GatewayResult.fail(ConfirmationRequired("restore_from_history"))
        return await self._run(
            "restore_from_history", self._restore_from_history(backup_id, actor)
        )

    async def _restore_from_history(self, backup_id: str, actor: str) -> RestoreReport:
        content = await self.store.fetch(backup_id)
        document = self.codec.decode(content)
        return await self._restore(document, actor, {"origin": "history", "backup_id": backup_id})

    async def _restore(
        self, document: SnapshotDocument, actor: str, metadata: dict[str, Any]
    ) -> RestoreReport:
        report = await self.executor.restore(document)
        await self.audit.record(
            AuditAction.BACKUP_RESTORED,
            actor,
            metadata.get("backup_id"),
            {**metadata, "collections": list(report.replaced)},
        )
        return report
