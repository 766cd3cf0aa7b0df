"""
Configuration management for the JOAP backup engine.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit DATA_DIR
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Collection order is part of the snapshot format; append, never reorder
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

# Export order of the supplier-management collections.
DEFAULT_COLLECTIONS: tuple[str, ...] = (
    "items",
    "customers",
    "orders",
    "payments",
    "inventoryLogs",
    "accounts",
    "ledger",
    "settings",
    "systemLogs",
    "users",
)


class DatastoreBackend(Enum):
    """Supported live datastore backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class ArtifactBackend(Enum):
    """Supported artifact storage backends."""

    LOCAL = "local"
    S3 = "s3"


class UnknownCollectionPolicy(Enum):
    """What restore does with collections the datastore does not know."""

    IGNORE = "ignore"
    REJECT = "reject"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_redactions(entries: tuple[str, ...]) -> dict[str, tuple[str, ...]]:
    """Turn ``("users.password", "users.resetToken")`` into a per-collection map."""
    redactions: dict[str, list[str]] = {}
    for entry in entries:
        collection, _, field_name = entry.partition(".")
        if not collection or not field_name:
            raise ValueError(f"Invalid redaction '{entry}', expected <collection>.<field>")
        redactions.setdefault(collection, []).append(field_name)
    return {name: tuple(fields) for name, fields in redactions.items()}


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the live database, metadata database and artifacts
        datastore_backend: Which live datastore implementation to use
        live_db_name: File name of the live datastore (sqlite backend)
        metadata_db_name: File name of the history/settings/audit database
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "./data"
    datastore_backend: DatastoreBackend = DatastoreBackend.SQLITE
    live_db_name: str = "live.db"
    metadata_db_name: str = "maintenance.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("DATASTORE_BACKEND", "sqlite").lower()
        try:
            backend = DatastoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid DATASTORE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            datastore_backend=backend,
            live_db_name=os.getenv("LIVE_DB_NAME", "live.db"),
            metadata_db_name=os.getenv("METADATA_DB_NAME", "maintenance.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for backup artifacts.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        backup_prefix: Key prefix for artifacts
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "joap-backups"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    backup_prefix: str = "backups"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "joap-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            backup_prefix=os.getenv("S3_BACKUP_PREFIX", "backups"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class ArtifactConfig:
    """Where backup artifacts are kept.

    Attributes:
        backend: Local directory or S3
        local_dir: Directory name under data_dir for the local backend
        s3: S3 settings (used when backend is S3)
    """

    backend: ArtifactBackend = ArtifactBackend.LOCAL
    local_dir: str = "backups"
    s3: S3Config = field(default_factory=S3Config)

    @classmethod
    def from_env(cls) -> ArtifactConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("ARTIFACT_BACKEND", "local").lower()
        try:
            backend = ArtifactBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid ARTIFACT_BACKEND '{backend_str}'. Must be one of: local, s3")
        return cls(
            backend=backend,
            local_dir=os.getenv("BACKUPS_DIR", "backups"),
            s3=S3Config.from_env(),
        )


@dataclass(frozen=True)
class SnapshotConfig:
    """Snapshot codec configuration.

    Attributes:
        collections: Registered collections in export order
        redact_fields: Fields stripped from records on export, per collection.
            Backups taken with redaction cannot be restored.
    """

    collections: tuple[str, ...] = DEFAULT_COLLECTIONS
    redact_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> SnapshotConfig:
        """Load configuration from environment variables."""
        return cls(
            collections=_env_list("SNAPSHOT_COLLECTIONS", DEFAULT_COLLECTIONS),
            redact_fields=_parse_redactions(_env_list("SNAPSHOT_REDACT_FIELDS", ())),
        )


@dataclass(frozen=True)
class RestorePolicyConfig:
    """Restore policy configuration.

    Attributes:
        unknown_collections: Ignore or reject collections the datastore doesn't know
        allowed_extra_collections: Unknown names tolerated even under REJECT
        require_active_admin: While the live users hold an active ADMIN, refuse
            documents whose users have none
    """

    unknown_collections: UnknownCollectionPolicy = UnknownCollectionPolicy.IGNORE
    allowed_extra_collections: tuple[str, ...] = ()
    require_active_admin: bool = False

    @classmethod
    def from_env(cls) -> RestorePolicyConfig:
        """Load configuration from environment variables."""
        policy_str = os.getenv("RESTORE_UNKNOWN_COLLECTIONS", "ignore").lower()
        try:
            policy = UnknownCollectionPolicy(policy_str)
        except ValueError:
            raise ValueError(
                f"Invalid RESTORE_UNKNOWN_COLLECTIONS '{policy_str}'. Must be one of: ignore, reject"
            )
        return cls(
            unknown_collections=policy,
            allowed_extra_collections=_env_list("RESTORE_ALLOWED_EXTRA_COLLECTIONS", ()),
            require_active_admin=_env_bool("RESTORE_REQUIRE_ACTIVE_ADMIN", "false"),
        )


@dataclass(frozen=True)
class SchedulerConfig:
    """Auto-backup scheduler configuration.

    Attributes:
        enabled: Whether the scheduler loop runs in this process at all
    """

    enabled: bool = True

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Load configuration from environment variables."""
        return cls(enabled=_env_bool("SCHEDULER_ENABLED", "true"))


@dataclass(frozen=True)
class HistoryConfig:
    """Backup history configuration.

    Attributes:
        max_page_size: Largest page the history listing will return
    """

    max_page_size: int = 100

    @classmethod
    def from_env(cls) -> HistoryConfig:
        """Load configuration from environment variables."""
        return cls(max_page_size=int(os.getenv("HISTORY_MAX_PAGE_SIZE", "100")))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        storage: Local storage configuration
        artifacts: Artifact storage configuration
        snapshot: Snapshot codec configuration
        restore: Restore policy configuration
        scheduler: Scheduler configuration
        history: History listing configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    artifacts: ArtifactConfig = field(default_factory=ArtifactConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    restore: RestorePolicyConfig = field(default_factory=RestorePolicyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            artifacts=ArtifactConfig.from_env(),
            snapshot=SnapshotConfig.from_env(),
            restore=RestorePolicyConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            history=HistoryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.snapshot.collections:
            raise ValueError("SNAPSHOT_COLLECTIONS must name at least one collection")
        if len(set(self.snapshot.collections)) != len(self.snapshot.collections):
            raise ValueError("SNAPSHOT_COLLECTIONS contains duplicates")

        if self.artifacts.backend == ArtifactBackend.S3 and not self.artifacts.s3.bucket:
            raise ValueError("S3_BUCKET is required when ARTIFACT_BACKEND=s3")

        if self.history.max_page_size < 1:
            raise ValueError("HISTORY_MAX_PAGE_SIZE must be at least 1")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "datastore_backend": self.storage.datastore_backend.value,
                "artifact_backend": self.artifacts.backend.value,
                "s3_bucket": self.artifacts.s3.bucket
                if self.artifacts.backend == ArtifactBackend.S3
                else None,
                "collections": list(self.snapshot.collections),
                "unknown_collections": self.restore.unknown_collections.value,
                "scheduler_enabled": self.scheduler.enabled,
                "log_level": self.observability.log_level,
            },
        )
