"""
Unit tests for engine configuration loading.
"""

import pytest

from joap.backup_engine.config import (
    DEFAULT_COLLECTIONS,
    ArtifactBackend,
    DatastoreBackend,
    EngineConfig,
    UnknownCollectionPolicy,
)


class TestEngineConfig:
    """Tests for EngineConfig.from_env."""

    def test_defaults(self, monkeypatch, data_dir):
        monkeypatch.setenv("DATA_DIR", data_dir)

        config = EngineConfig.from_env()

        assert config.storage.datastore_backend == DatastoreBackend.SQLITE
        assert config.artifacts.backend == ArtifactBackend.LOCAL
        assert config.snapshot.collections == DEFAULT_COLLECTIONS
        assert config.snapshot.redact_fields == {}
        assert config.restore.unknown_collections == UnknownCollectionPolicy.IGNORE
        assert config.restore.require_active_admin is False
        assert config.scheduler.enabled is True

    def test_overrides(self, monkeypatch, data_dir):
        monkeypatch.setenv("DATA_DIR", data_dir)
        monkeypatch.setenv("DATASTORE_BACKEND", "memory")
        monkeypatch.setenv("SNAPSHOT_COLLECTIONS", "items, orders ,users")
        monkeypatch.setenv("SNAPSHOT_REDACT_FIELDS", "users.password,users.resetToken")
        monkeypatch.setenv("RESTORE_UNKNOWN_COLLECTIONS", "reject")
        monkeypatch.setenv("RESTORE_ALLOWED_EXTRA_COLLECTIONS", "userSessions")
        monkeypatch.setenv("RESTORE_REQUIRE_ACTIVE_ADMIN", "true")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")

        config = EngineConfig.from_env()

        assert config.storage.datastore_backend == DatastoreBackend.MEMORY
        assert config.snapshot.collections == ("items", "orders", "users")
        assert config.snapshot.redact_fields == {"users": ("password", "resetToken")}
        assert config.restore.unknown_collections == UnknownCollectionPolicy.REJECT
        assert config.restore.allowed_extra_collections == ("userSessions",)
        assert config.restore.require_active_admin is True
        assert config.scheduler.enabled is False

    @pytest.mark.parametrize(
        "name,value",
        [
            ("DATASTORE_BACKEND", "mongo"),
            ("ARTIFACT_BACKEND", "ftp"),
            ("RESTORE_UNKNOWN_COLLECTIONS", "merge"),
            ("SNAPSHOT_REDACT_FIELDS", "password"),
            ("SNAPSHOT_COLLECTIONS", "items,items"),
            ("HISTORY_MAX_PAGE_SIZE", "0"),
        ],
    )
    def test_invalid_values(self, monkeypatch, data_dir, name, value):
        monkeypatch.setenv("DATA_DIR", data_dir)
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError):
            EngineConfig.from_env()
