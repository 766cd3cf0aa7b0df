"""
Unit tests for S3 artifact storage.

The aiobotocore session is replaced with an in-memory bucket, so the
tests exercise key layout, client options and error translation without
a network.
"""

from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from joap.backup_engine.backup import S3ArtifactStorage, create_artifact_storage
from joap.backup_engine.config import (
    ArtifactBackend,
    ArtifactConfig,
    EngineConfig,
    S3Config,
)
from joap.backup_engine.errors import NotFound, StorageFailure


def _client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data):
        self._data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self):
        return self._data


class FakeS3Client:
    """In-memory S3 bucket speaking the subset of the client API we use."""

    def __init__(self, objects):
        self.objects = objects

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body

    async def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}

    async def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


class FakeSession:
    def __init__(self):
        self.objects = {}
        self.client_kwargs = []

    def create_client(self, service, **kwargs):
        assert service == "s3"
        self.client_kwargs.append(kwargs)
        return FakeS3Client(self.objects)


class TestS3ArtifactStorage:
    """Tests for S3ArtifactStorage."""

    @pytest.fixture
    def session(self):
        return FakeSession()

    @pytest.fixture
    def artifacts(self, session):
        storage = S3ArtifactStorage(
            S3Config(
                bucket="joap-backups",
                region="eu-west-1",
                endpoint_url="http://minio:9000",
                backup_prefix="prod/backups",
            )
        )
        storage._session = session
        return storage

    @pytest.mark.asyncio
    async def test_put_and_get(self, artifacts, session):
        await artifacts.put("b1.json", b'{"schemaVersion": 1}')

        assert session.objects == {("joap-backups", "prod/backups/b1.json"): b'{"schemaVersion": 1}'}
        assert await artifacts.get("b1.json") == b'{"schemaVersion": 1}'

    @pytest.mark.asyncio
    async def test_client_options(self, artifacts, session):
        await artifacts.put("b1.json", b"{}")

        assert session.client_kwargs == [
            {"region_name": "eu-west-1", "endpoint_url": "http://minio:9000"}
        ]

    @pytest.mark.asyncio
    async def test_get_missing_key(self, artifacts):
        with pytest.raises(NotFound) as exc_info:
            await artifacts.get("missing.json")

        assert exc_info.value.resource_id == "missing.json"

    @pytest.mark.asyncio
    async def test_delete(self, artifacts, session):
        await artifacts.put("b1.json", b"{}")

        assert await artifacts.delete("b1.json") is True
        assert session.objects == {}

    @pytest.mark.asyncio
    async def test_access_denied_is_storage_failure(self, artifacts, monkeypatch):
        monkeypatch.setattr(
            FakeS3Client,
            "get_object",
            AsyncMock(side_effect=_client_error("AccessDenied", "GetObject")),
        )

        with pytest.raises(StorageFailure) as exc_info:
            await artifacts.get("b1.json")

        assert exc_info.value.operation == "artifact_get"

    @pytest.mark.asyncio
    async def test_put_failure_is_storage_failure(self, artifacts, monkeypatch):
        monkeypatch.setattr(
            FakeS3Client,
            "put_object",
            AsyncMock(side_effect=EndpointConnectionError(endpoint_url="http://minio:9000")),
        )

        with pytest.raises(StorageFailure) as exc_info:
            await artifacts.put("b1.json", b"{}")

        assert exc_info.value.operation == "artifact_put"

    @pytest.mark.asyncio
    async def test_delete_failure_is_storage_failure(self, artifacts, monkeypatch):
        monkeypatch.setattr(
            FakeS3Client,
            "delete_object",
            AsyncMock(side_effect=_client_error("AccessDenied", "DeleteObject")),
        )

        with pytest.raises(StorageFailure):
            await artifacts.delete("b1.json")

    def test_factory_selects_s3(self):
        config = EngineConfig(
            artifacts=ArtifactConfig(backend=ArtifactBackend.S3, s3=S3Config(bucket="b"))
        )

        storage = create_artifact_storage(config)

        assert isinstance(storage, S3ArtifactStorage)
        assert storage.s3_config.bucket == "b"
