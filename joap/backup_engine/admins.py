"""
Last-administrator guard.

The supplier-management app must always keep at least one active ADMIN
user. User administration calls check_user_change() before demoting or
deactivating anyone; restore calls check_restored_users() before
replacing the users collection.

Invariants:
    - Checks run before any mutation
    - A user counts as an active admin when role == "ADMIN" and isActive is not False
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .errors import LastAdminInvariantViolation, NotFound

ADMIN_ROLE = "ADMIN"


def is_active_admin(user: Mapping[str, Any]) -> bool:
    return user.get("role") == ADMIN_ROLE and user.get("isActive", True) is not False


def count_active_admins(users: Iterable[Mapping[str, Any]]) -> int:
    return sum(1 for user in users if is_active_admin(user))


def check_user_change(
    users: Iterable[Mapping[str, Any]],
    user_id: str,
    *,
    role: str | None = None,
    is_active: bool | None = None,
    id_field: str = "_id",
) -> None:
    """Reject a role/status change that would remove the last active admin.

    Args:
        users: Current user records
        user_id: User being changed
        role: New role, if the role changes
        is_active: New active flag, if the status changes
        id_field: Record field holding the user id

    Raises:
        NotFound: If user_id is not among users
        LastAdminInvariantViolation: If the change would leave no active admin
    """
    users = list(users)
    target = next((user for user in users if str(user.get(id_field)) == user_id), None)
    if target is None:
        raise NotFound(f"User not found: {user_id}", "user", user_id)

    if not is_active_admin(target):
        return

    updated = dict(target)
    if role is not None:
        updated["role"] = role
    if is_active is not None:
        updated["isActive"] = is_active
    if is_active_admin(updated):
        return

    if count_active_admins(users) <= 1:
        raise LastAdminInvariantViolation(
            "Cannot demote or deactivate the last active administrator",
            user_id=user_id,
        )


def check_restored_users(users: Iterable[Mapping[str, Any]]) -> None:
    """Reject a users collection that contains no active admin.

    Raises:
        LastAdminInvariantViolation: If no record is an active admin
    """
    if count_active_admins(users) == 0:
        raise LastAdminInvariantViolation(
            "Snapshot would leave no active administrator in users"
        )
