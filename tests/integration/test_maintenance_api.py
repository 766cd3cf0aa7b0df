"""
Integration tests for the maintenance HTTP API.

Runs the FastAPI app (lifespan included) against a SQLite datastore in a
temporary directory.
"""

import json

import pytest
from fastapi.testclient import TestClient

from console.maintenance_api.app import create_app
from console.maintenance_api.config import Settings
from joap.backup_engine.config import (
    EngineConfig,
    RestorePolicyConfig,
    SchedulerConfig,
    StorageConfig,
)

PREFIX = "/api/maintenance"

ADMIN = {"_id": "u1", "username": "admin", "role": "ADMIN", "isActive": True}


def _document(collections, schema_version=1):
    return json.dumps(
        {
            "schemaVersion": schema_version,
            "generatedAt": "2026-01-31T02:00:00.000Z",
            "collections": collections,
        }
    ).encode("utf-8")


@pytest.fixture
def client(data_dir):
    config = EngineConfig(
        storage=StorageConfig(data_dir=data_dir, wal_mode=False),
        scheduler=SchedulerConfig(enabled=False),
        restore=RestorePolicyConfig(require_active_admin=True),
    )
    app = create_app(config, Settings(default_actor="tester", max_page_size=20))
    with TestClient(app) as client:
        yield client


class TestMaintenanceAPI:
    """Tests for /api/maintenance routes."""

    def test_health(self, client):
        response = client.get(f"{PREFIX}/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "service": "joap-maintenance",
            "scheduler": "disabled",
        }

    def test_create_backup(self, client):
        response = client.post(f"{PREFIX}/backup", headers={"X-Actor": "alice"})

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["source"] == "manual"
        assert body["data"]["createdBy"] == "alice"
        assert body["data"]["filename"].startswith("backup-")

    def test_actor_defaults_from_settings(self, client):
        response = client.post(f"{PREFIX}/backup")

        assert response.json()["data"]["createdBy"] == "tester"

    def test_export_is_an_attachment(self, client):
        response = client.get(f"{PREFIX}/backup/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.headers["content-disposition"].startswith('attachment; filename="backup-')
        assert response.json()["schemaVersion"] == 1

        history = client.get(f"{PREFIX}/backup/history").json()
        assert history["data"]["total"] == 0

    def test_history_pagination(self, client):
        ids = [client.post(f"{PREFIX}/backup").json()["data"]["id"] for _ in range(7)]

        first = client.get(f"{PREFIX}/backup/history").json()["data"]
        second = client.get(f"{PREFIX}/backup/history", params={"page": 2}).json()["data"]

        assert first["total"] == 7
        assert first["totalPages"] == 2
        assert len(first["records"]) == 5
        assert len(second["records"]) == 2
        listed = [r["id"] for r in first["records"] + second["records"]]
        assert sorted(listed) == sorted(ids)

    def test_history_page_size_limit(self, client):
        response = client.get(f"{PREFIX}/backup/history", params={"pageSize": 500})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_history_zero_page_size(self, client):
        response = client.get(f"{PREFIX}/backup/history", params={"pageSize": 0})

        assert response.status_code == 400
        assert response.json()["details"] == {"pageSize": 0}

    def test_download(self, client):
        record = client.post(f"{PREFIX}/backup").json()["data"]

        response = client.get(f"{PREFIX}/backup/download/{record['id']}")

        assert response.status_code == 200
        assert record["filename"] in response.headers["content-disposition"]
        assert len(response.content) == record["sizeBytes"]

    def test_download_unknown(self, client):
        response = client.get(f"{PREFIX}/backup/download/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "NOT_FOUND"

    def test_upload_requires_confirmation(self, client):
        response = client.post(f"{PREFIX}/backup/upload", content=b"garbage")

        assert response.status_code == 428
        assert response.json()["code"] == "CONFIRMATION_REQUIRED"

    def test_upload_and_restore(self, client):
        response = client.post(
            f"{PREFIX}/backup/upload",
            params={"confirmed": "true"},
            content=_document({"items": [{"name": "Glue"}], "users": [ADMIN], "legacy": []}),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["replaced"]["items"] == 1
        assert data["replaced"]["orders"] == 0
        assert data["ignored"] == ["legacy"]

    def test_upload_newer_version(self, client):
        response = client.post(
            f"{PREFIX}/backup/upload",
            params={"confirmed": "true"},
            content=_document({"users": [ADMIN]}, schema_version=2),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "UNSUPPORTED_VERSION"
        assert body["details"] == {"found": 2, "supported": 1}

    def test_upload_without_active_admin(self, client):
        client.post(
            f"{PREFIX}/backup/upload",
            params={"confirmed": "true"},
            content=_document({"users": [ADMIN]}),
        )
        inactive = dict(ADMIN, isActive=False)

        response = client.post(
            f"{PREFIX}/backup/upload",
            params={"confirmed": "true"},
            content=_document({"users": [inactive]}),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "LAST_ADMIN_INVARIANT"

    def test_restore_from_history(self, client):
        client.post(
            f"{PREFIX}/backup/upload",
            params={"confirmed": "true"},
            content=_document({"items": [{"name": "Glue"}], "users": [ADMIN]}),
        )
        record = client.post(f"{PREFIX}/backup").json()["data"]

        unconfirmed = client.post(f"{PREFIX}/backup/{record['id']}/restore")
        assert unconfirmed.status_code == 428

        response = client.post(
            f"{PREFIX}/backup/{record['id']}/restore", params={"confirmed": "true"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["replaced"]["items"] == 1

    def test_auto_backup_settings(self, client):
        initial = client.get(f"{PREFIX}/auto-backup/settings").json()["data"]
        assert initial == {
            "enabled": False,
            "intervalValue": 24,
            "intervalUnit": "hours",
            "lastRunAt": None,
            "nextRunAt": None,
        }

        response = client.patch(
            f"{PREFIX}/auto-backup/settings",
            json={"enabled": True, "intervalValue": 6, "intervalUnit": "hours"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["enabled"] is True
        assert data["intervalValue"] == 6
        assert data["nextRunAt"] is not None

    @pytest.mark.parametrize(
        "update,field_name",
        [
            ({"intervalValue": 0}, "intervalValue"),
            ({"intervalValue": "abc"}, "intervalValue"),
            ({"enabled": True, "intervalValue": 10**12, "intervalUnit": "weeks"}, "intervalValue"),
            ({"intervalUnit": "months"}, "intervalUnit"),
        ],
    )
    def test_invalid_auto_backup_settings(self, client, update, field_name):
        response = client.patch(f"{PREFIX}/auto-backup/settings", json=update)

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_SETTINGS"
        assert body["details"]["field"] == field_name

    def test_trigger_auto_backup(self, client):
        response = client.post(f"{PREFIX}/auto-backup/trigger")

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["source"] == "auto"
        assert data["filename"].startswith("auto-backup-")
        settings = client.get(f"{PREFIX}/auto-backup/settings").json()["data"]
        assert settings["nextRunAt"] is None
