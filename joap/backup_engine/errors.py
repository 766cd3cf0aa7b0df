"""
Error types for the JOAP backup engine.

Every failure a core operation can produce is one of the classes below:
- MaintenanceError: Base exception
- MalformedDocument / UnsupportedVersion: Snapshot could not be decoded
- ValidationFailed: Restore precondition failed
- LastAdminInvariantViolation: Change would leave no active administrator
- StorageFailure: Datastore or artifact storage failed (no partial effect)
- NotFound: Unknown backup id or missing artifact
- InvalidSettings: Bad auto-backup schedule configuration
- InvalidRequest / ConfirmationRequired: Caller contract violations

Invariants:
    - All errors inherit from MaintenanceError
    - Every error carries a stable code for programmatic handling
    - Infrastructure exceptions are chained, never leaked unwrapped
"""

from __future__ import annotations

from typing import Any


class MaintenanceError(Exception):
    """Base exception for all backup engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    default_code = "MAINTENANCE_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {"error": self.message, "code": self.code, "details": self.details}


class MalformedDocument(MaintenanceError):
    """Snapshot document violates the structural rules.

    Raised when:
    - Bytes are not valid UTF-8 JSON
    - A required top-level field is missing
    - A field has the wrong value type
    """

    default_code = "MALFORMED_DOCUMENT"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class UnsupportedVersion(MalformedDocument):
    """Snapshot was written by a newer build."""

    default_code = "UNSUPPORTED_VERSION"

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(
            f"Snapshot schemaVersion {found} is newer than supported version {supported}"
        )
        self.details = {"found": found, "supported": supported}
        self.found = found
        self.supported = supported


class ValidationFailed(MaintenanceError):
    """Restore precondition failed; live data was not touched."""

    default_code = "VALIDATION_FAILED"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class LastAdminInvariantViolation(ValidationFailed):
    """Operation would leave the system without an active administrator."""

    default_code = "LAST_ADMIN_INVARIANT"

    def __init__(self, message: str, user_id: str | None = None) -> None:
        super().__init__(message)
        self.details["user_id"] = user_id
        self.user_id = user_id


class StorageFailure(MaintenanceError):
    """Underlying storage failed.

    Raised when:
    - A datastore transaction could not commit (rolled back)
    - An artifact could not be written, read or deleted
    - The history index or settings table could not be updated
    """

    default_code = "STORAGE_FAILURE"

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message, details={"operation": operation})
        self.operation = operation


class NotFound(MaintenanceError):
    """Resource not found."""

    default_code = "NOT_FOUND"

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidSettings(MaintenanceError):
    """Auto-backup settings are invalid."""

    default_code = "INVALID_SETTINGS"

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, details={"field": field_name})
        self.field_name = field_name


class InvalidRequest(MaintenanceError):
    """Caller supplied arguments outside the operation's contract."""

    default_code = "INVALID_REQUEST"


class ConfirmationRequired(InvalidRequest):
    """Destructive operation was requested without explicit confirmation."""

    default_code = "CONFIRMATION_REQUIRED"

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"{operation} replaces all live data and requires confirmed=true",
            details={"operation": operation},
        )
        self.operation = operation
