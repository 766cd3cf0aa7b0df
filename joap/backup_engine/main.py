"""
Engine wiring and process entry point for the JOAP backup engine.

The Engine builds every component from an EngineConfig and owns their
lifecycle. The HTTP surface (console.maintenance_api) and the operator
CLI both construct an Engine and talk to its gateway.

Invariants:
    - The live datastore, history index, settings and audit trail are
      initialized before the scheduler starts
    - The BackupStore and RestoreExecutor share one write lock
    - stop() never cancels an in-flight backup or restore
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import json_log_formatter

from .audit import AuditTrail
from .backup import BackupStore, create_artifact_storage
from .config import EngineConfig
from .datastore import Datastore, create_datastore
from .gateway import MaintenanceGateway
from .restore import RestoreExecutor
from .schedule import AutoBackupScheduler, SettingsStore
from .snapshot import SnapshotCodec

logger = logging.getLogger(__name__)


def setup_logging(config: EngineConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class Engine:
    """Backup engine orchestrator.

    Attributes:
        config: Engine configuration
        datastore: Live datastore
        codec: Snapshot codec
        store: Backup store (artifacts + history index)
        executor: Restore executor
        scheduler: Auto-backup scheduler
        audit: Audit trail
        gateway: Operator-facing gateway

    Example:
        >>> engine = Engine(EngineConfig.from_env())
        >>> await engine.start()
        >>> result = await engine.gateway.create_manual_backup("admin")
        >>> await engine.stop()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        datastore: Datastore | None = None,
        run_scheduler: bool | None = None,
    ) -> None:
        """Build all components.

        Args:
            config: Engine configuration (loaded from env if not provided)
            datastore: Live datastore to use instead of the configured backend
            run_scheduler: Override SCHEDULER_ENABLED (the CLI passes False)
        """
        self.config = config or EngineConfig.from_env()
        self._running = False

        data_dir = Path(self.config.storage.data_dir)
        metadata_db = data_dir / self.config.storage.metadata_db_name
        storage = self.config.storage

        self.datastore = datastore or create_datastore(self.config)
        self.codec = SnapshotCodec(self.datastore, redact_fields=self.config.snapshot.redact_fields)
        self.store = BackupStore(
            db_path=metadata_db,
            artifacts=create_artifact_storage(self.config),
            codec=self.codec,
            busy_timeout_ms=storage.busy_timeout_ms,
            wal_mode=storage.wal_mode,
            max_page_size=self.config.history.max_page_size,
        )
        self.executor = RestoreExecutor(
            datastore=self.datastore,
            codec=self.codec,
            lock=self.store.write_lock,
            unknown_collections=self.config.restore.unknown_collections,
            allowed_extra_collections=self.config.restore.allowed_extra_collections,
            require_active_admin=self.config.restore.require_active_admin,
        )
        self.scheduler = AutoBackupScheduler(
            store=self.store,
            settings_store=SettingsStore(metadata_db, storage.busy_timeout_ms, storage.wal_mode),
            timer_enabled=self.config.scheduler.enabled if run_scheduler is None else run_scheduler,
        )
        self.audit = AuditTrail(metadata_db, storage.busy_timeout_ms, storage.wal_mode)
        self.gateway = MaintenanceGateway(
            codec=self.codec,
            store=self.store,
            executor=self.executor,
            scheduler=self.scheduler,
            audit=self.audit,
        )

    async def start(self) -> None:
        """Initialize storage and start the scheduler."""
        if self._running:
            logger.warning("Engine already running")
            return

        logger.info("Starting backup engine")
        self.config.log_config()

        Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

        await self.datastore.initialize()
        await self.store.initialize()
        await self.scheduler.settings_store.initialize()
        await self.audit.initialize()
        await self.scheduler.start()

        self._running = True
        logger.info("Backup engine started")

    async def stop(self) -> None:
        """Stop the scheduler, waiting for any in-flight run."""
        if not self._running:
            return

        logger.info("Stopping backup engine")
        await self.scheduler.stop()
        self._running = False
        logger.info("Backup engine stopped")

    @property
    def running(self) -> bool:
        return self._running


def main() -> None:
    """Run the maintenance HTTP service."""
    import uvicorn

    from console.maintenance_api.app import create_app
    from console.maintenance_api.config import Settings

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    settings = Settings()
    uvicorn.run(
        create_app(config, settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
