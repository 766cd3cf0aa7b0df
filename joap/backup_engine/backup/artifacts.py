"""
Artifact storage backends for backup documents.

An artifact is the stored byte representation of one snapshot, keyed by
its backup id. Two backends are provided:
- LocalArtifactStorage: files under DATA_DIR/backups
- S3ArtifactStorage: objects under s3://<bucket>/<prefix>/

Invariants:
    - put() returns only after the bytes are durable
    - A partially written artifact is never visible under its final key
    - Keys are opaque; nothing relies on ordering or contiguity

How to change safely:
    - New backends must implement the ArtifactStorage protocol
    - Backend errors must surface as StorageFailure / NotFound
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..db import run_blocking
from ..errors import NotFound, StorageFailure

if TYPE_CHECKING:
    from ..config import EngineConfig, S3Config

logger = logging.getLogger(__name__)


@runtime_checkable
class ArtifactStorage(Protocol):
    """Protocol for artifact storage backends."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Durably store bytes under key.

        Raises:
            StorageFailure: If the write failed (nothing is left under key)
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read the bytes stored under key.

        Raises:
            NotFound: If no artifact exists under key
            StorageFailure: If the read failed
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove an artifact.

        Returns:
            True if something was deleted
        """
        ...


class LocalArtifactStorage:
    """Stores artifacts as files in a local directory.

    Writes go to a temporary file in the same directory, are fsynced and
    then renamed over the final name, so readers see either nothing or the
    complete artifact.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        # Sanitize key to prevent path traversal
        safe_key = "".join(c for c in key if c.isalnum() or c in "-_.")
        if not safe_key or safe_key.startswith("."):
            raise ValueError(f"Invalid artifact key: {key!r}")
        return self.root / safe_key

    async def put(self, key: str, data: bytes) -> None:
        try:
            await run_blocking(self._put_sync, self._path(key), data)
        except OSError as e:
            raise StorageFailure(f"Failed to write artifact {key}: {e}", "artifact_put") from e
        logger.debug("Wrote artifact", extra={"key": key, "size_bytes": len(data)})

    def _put_sync(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await run_blocking(path.read_bytes)
        except FileNotFoundError as e:
            raise NotFound(f"Backup artifact not found: {key}", "artifact", key) from e
        except OSError as e:
            raise StorageFailure(f"Failed to read artifact {key}: {e}", "artifact_get") from e

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            await run_blocking(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailure(
                f"Failed to delete artifact {key}: {e}", "artifact_delete"
            ) from e
        return True


class S3ArtifactStorage:
    """Stores artifacts as S3 objects.

    A client is opened per operation; S3 put_object is atomic, so a failed
    upload never leaves a partial object under the key.
    """

    def __init__(self, s3_config: "S3Config") -> None:
        self.s3_config = s3_config
        self._session = get_session()

    def _object_key(self, key: str) -> str:
        return f"{self.s3_config.backup_prefix}/{key}"

    def _client(self) -> Any:
        client_kwargs: dict[str, Any] = {"region_name": self.s3_config.region}
        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url
        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key
        return self._session.create_client("s3", **client_kwargs)

    async def put(self, key: str, data: bytes) -> None:
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self.s3_config.bucket,
                    Key=self._object_key(key),
                    Body=data,
                    ContentType="application/json",
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"Failed to upload artifact {key}: {e}", "artifact_put") from e

    async def get(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                response = await s3.get_object(
                    Bucket=self.s3_config.bucket,
                    Key=self._object_key(key),
                )
                async with response["Body"] as stream:
                    return await stream.read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFound(f"Backup artifact not found: {key}", "artifact", key) from e
            raise StorageFailure(f"Failed to download artifact {key}: {e}", "artifact_get") from e
        except BotoCoreError as e:
            raise StorageFailure(f"Failed to download artifact {key}: {e}", "artifact_get") from e

    async def delete(self, key: str) -> bool:
        try:
            async with self._client() as s3:
                await s3.delete_object(
                    Bucket=self.s3_config.bucket,
                    Key=self._object_key(key),
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(
                f"Failed to delete artifact {key}: {e}", "artifact_delete"
            ) from e
        return True


def create_artifact_storage(config: "EngineConfig") -> ArtifactStorage:
    """Factory function to create artifact storage from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ArtifactBackend

    backend = config.artifacts.backend
    if backend == ArtifactBackend.LOCAL:
        return LocalArtifactStorage(Path(config.storage.data_dir) / config.artifacts.local_dir)
    elif backend == ArtifactBackend.S3:
        return S3ArtifactStorage(config.artifacts.s3)
    else:
        raise ValueError(f"Unsupported artifact backend: {backend}")
