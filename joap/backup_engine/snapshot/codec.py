"""
Snapshot codec for the JOAP backup engine.

A snapshot is one self-describing JSON document holding every collection
of the live datastore:

    {
      "schemaVersion": 1,
      "generatedAt": "2026-01-31T02:00:00+00:00",
      "collections": {"items": [...], "orders": [...], ...}
    }

Invariants:
    - encode() includes every registered collection, in registration order,
      even when empty
    - encode() either returns a complete document or raises; nothing partial
    - decode() tolerates unknown collection keys; restore decides what to do
    - Documents newer than SCHEMA_VERSION are refused

How to change safely:
    - Bump SCHEMA_VERSION only for structural changes
    - Add optional top-level fields, never remove required ones
    - Keep decode() accepting every older version
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from ..datastore import Datastore, Record
from ..errors import MalformedDocument, UnsupportedVersion

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

REQUIRED_FIELDS = ("schemaVersion", "generatedAt", "collections")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SnapshotDocument:
    """The full exported state.

    Attributes:
        schema_version: Structural version of the document
        generated_at: When the snapshot was taken (UTC)
        collections: Collection name to ordered records
    """

    schema_version: int
    generated_at: datetime
    collections: dict[str, list[Record]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        return {
            "schemaVersion": self.schema_version,
            "generatedAt": self.generated_at.isoformat(),
            "collections": self.collections,
        }

    def record_counts(self) -> dict[str, int]:
        return {name: len(records) for name, records in self.collections.items()}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _parse_timestamp(value: str) -> datetime:
    # Accept the trailing "Z" that JavaScript's toISOString() produces
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SnapshotCodec:
    """Serializes the live datastore into snapshot documents and back.

    Attributes:
        datastore: Live datastore read by encode()
        redact_fields: Fields removed from exported records, per collection
        clock: Source of generated_at timestamps

    Example:
        >>> codec = SnapshotCodec(datastore)
        >>> document = await codec.encode()
        >>> codec.decode(codec.dumps(document)).collections == document.collections
        True
    """

    def __init__(
        self,
        datastore: Datastore,
        redact_fields: Mapping[str, Sequence[str]] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.datastore = datastore
        self.redact_fields = {name: tuple(fields) for name, fields in (redact_fields or {}).items()}
        self.clock = clock

    @property
    def schema_version(self) -> int:
        return SCHEMA_VERSION

    async def encode(self) -> SnapshotDocument:
        """Read every registered collection into a new document.

        Raises:
            StorageFailure: If any collection could not be read
        """
        contents = await self.datastore.read_all()

        collections: dict[str, list[Record]] = {}
        for name in self.datastore.collections:
            records = contents.get(name, [])
            hidden = self.redact_fields.get(name)
            if hidden:
                records = [
                    {key: value for key, value in record.items() if key not in hidden}
                    for record in records
                ]
            collections[name] = records

        document = SnapshotDocument(
            schema_version=SCHEMA_VERSION,
            generated_at=self.clock(),
            collections=collections,
        )
        logger.debug("Encoded snapshot", extra={"counts": document.record_counts()})
        return document

    def dumps(self, document: SnapshotDocument) -> bytes:
        """Serialize a document to UTF-8 JSON bytes."""
        return json.dumps(document.to_dict(), indent=2, default=_json_default).encode("utf-8")

    def decode(self, data: bytes) -> SnapshotDocument:
        """Parse raw bytes into a document.

        Raises:
            MalformedDocument: If the bytes are not a structurally valid document
            UnsupportedVersion: If schemaVersion is newer than this build
        """
        try:
            raw = json.loads(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise MalformedDocument(f"Snapshot is not UTF-8 text: {e}") from e
        except json.JSONDecodeError as e:
            raise MalformedDocument(f"Snapshot is not valid JSON: {e}") from e
        except RecursionError as e:
            raise MalformedDocument("Snapshot is nested too deeply") from e

        return self.from_dict(raw)

    def from_dict(self, raw: Any) -> SnapshotDocument:
        """Build a document from already-parsed JSON."""
        self._check_structure(raw)

        try:
            generated_at = _parse_timestamp(raw["generatedAt"])
        except ValueError as e:
            raise MalformedDocument(
                "generatedAt is not an ISO-8601 timestamp",
                errors=[f"generatedAt: {e}"],
            ) from e

        return SnapshotDocument(
            schema_version=raw["schemaVersion"],
            generated_at=generated_at,
            collections={name: list(records) for name, records in raw["collections"].items()},
        )

    def validate(self, document: SnapshotDocument) -> None:
        """Apply the structural rules to an in-memory document.

        Raises:
            MalformedDocument: If the document is structurally invalid
            UnsupportedVersion: If schema_version is newer than this build
        """
        if not isinstance(document.generated_at, datetime):
            raise MalformedDocument(
                "generatedAt must be a timestamp", errors=["generatedAt: wrong type"]
            )
        self._check_structure(
            {
                "schemaVersion": document.schema_version,
                "generatedAt": document.generated_at.isoformat(),
                "collections": document.collections,
            }
        )

    def _check_structure(self, raw: Any) -> None:
        if not isinstance(raw, dict):
            raise MalformedDocument(
                "Snapshot must be a JSON object", errors=[f"root: got {type(raw).__name__}"]
            )

        missing = [name for name in REQUIRED_FIELDS if name not in raw]
        if missing:
            raise MalformedDocument(
                f"Snapshot is missing required fields: {', '.join(missing)}",
                errors=[f"{name}: missing" for name in missing],
            )

        errors: list[str] = []
        version = raw["schemaVersion"]
        # bool is an int subclass; true/false is not a version
        if not isinstance(version, int) or isinstance(version, bool):
            errors.append(f"schemaVersion: expected integer, got {type(version).__name__}")
        elif version < 1:
            errors.append(f"schemaVersion: must be positive, got {version}")

        if not isinstance(raw["generatedAt"], str):
            errors.append(
                f"generatedAt: expected string, got {type(raw['generatedAt']).__name__}"
            )

        collections = raw["collections"]
        if not isinstance(collections, dict):
            errors.append(f"collections: expected object, got {type(collections).__name__}")
        else:
            for name, records in collections.items():
                if not isinstance(records, list):
                    errors.append(f"collections.{name}: expected array")
                    continue
                for index, record in enumerate(records):
                    if not isinstance(record, dict):
                        errors.append(f"collections.{name}[{index}]: expected object")
                        break

        if errors:
            raise MalformedDocument("Snapshot failed structural validation", errors=errors)

        if version > SCHEMA_VERSION:
            raise UnsupportedVersion(found=version, supported=SCHEMA_VERSION)
