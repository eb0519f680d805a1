"""
Admin authorization and admin account lifecycle.

Rules enforced here:
- Only Full admins create, modify or delete admins.
- An admin cannot modify or delete their own record.
- The last remaining Full admin cannot be deleted.
"""

import logging
from typing import Optional

from shared.constants import ACCESS_FULL, ACCESS_LEVELS
from shared.errors import (
    AccessDeniedError,
    AdminConflictError,
    AdminNotFoundError,
    InvalidRequestError,
    UnauthenticatedError,
)
from shared.record_store import RecordStore, now_ms
from shared.types import AdminRecord

logger = logging.getLogger(__name__)


def require_admin(
    store: RecordStore,
    caller_identity_id: Optional[str],
    allowed_levels: tuple[str, ...] = ACCESS_LEVELS,
) -> AdminRecord:
    """Return the caller's admin record or raise.

    Raises:
        UnauthenticatedError: no caller identity
        AccessDeniedError: caller is not an admin at one of allowed_levels
    """
    if not caller_identity_id or not caller_identity_id.strip():
        raise UnauthenticatedError()

    admin = store.get_admin(caller_identity_id)
    if not admin or admin.get("access_level") not in allowed_levels:
        logger.warning(f"Admin access denied for {caller_identity_id}")
        raise AccessDeniedError()
    return admin


def list_admins(store: RecordStore, caller_identity_id: Optional[str]) -> list[AdminRecord]:
    """All admins, newest first. Any admin level may list."""
    require_admin(store, caller_identity_id)
    return store.list_admins()


def _validate_access_level(access_level: Optional[str]) -> str:
    if access_level not in ACCESS_LEVELS:
        raise InvalidRequestError(
            "Invalid access level",
            details={"allowed": list(ACCESS_LEVELS)},
        )
    return access_level


def create_admin(
    store: RecordStore,
    caller_identity_id: Optional[str],
    external_identity_id: Optional[str],
    access_level: Optional[str],
    email: str = "",
    name: str = "",
) -> AdminRecord:
    require_admin(store, caller_identity_id, (ACCESS_FULL,))

    if not isinstance(external_identity_id, str) or not external_identity_id.strip():
        raise InvalidRequestError("Missing required field: externalIdentityId")
    for field, value in (("email", email), ("name", name)):
        if not isinstance(value, str):
            raise InvalidRequestError(f"Field {field} must be a string")
    access_level = _validate_access_level(access_level)

    now = now_ms()
    record: AdminRecord = {
        "external_identity_id": external_identity_id.strip(),
        "access_level": access_level,
        "became_admin_at": now,
        "updated_at": now,
    }
    if email:
        record["email"] = email
    if name:
        record["name"] = name

    if not store.put_admin(record):
        raise AdminConflictError("admin_exists", "Admin already exists")

    logger.info(f"Admin {external_identity_id} created with {access_level} access by {caller_identity_id}")
    return record


def update_admin_access_level(
    store: RecordStore,
    caller_identity_id: Optional[str],
    target_identity_id: str,
    access_level: Optional[str],
) -> str:
    """Change another admin's access level. Returns the new level."""
    require_admin(store, caller_identity_id, (ACCESS_FULL,))
    access_level = _validate_access_level(access_level)

    if target_identity_id == caller_identity_id:
        raise AdminConflictError("cannot_modify_self", "Cannot modify your own access level")

    if not store.update_admin_access_level(target_identity_id, access_level):
        raise AdminNotFoundError(target_identity_id)

    logger.info(f"Admin {target_identity_id} set to {access_level} by {caller_identity_id}")
    return access_level


def delete_admin(
    store: RecordStore,
    caller_identity_id: Optional[str],
    target_identity_id: str,
) -> None:
    require_admin(store, caller_identity_id, (ACCESS_FULL,))

    if target_identity_id == caller_identity_id:
        raise AdminConflictError("cannot_delete_self", "Cannot delete your own admin account")

    target = store.get_admin(target_identity_id)
    if not target:
        raise AdminNotFoundError(target_identity_id)

    if target.get("access_level") == ACCESS_FULL:
        full_admins = store.list_admins_by_access_level(ACCESS_FULL)
        if len(full_admins) <= 1:
            raise AdminConflictError("last_full_admin", "Cannot delete the last Full Access administrator")

    if not store.delete_admin(target_identity_id, caller_identity_id):
        if not store.get_admin(target_identity_id):
            raise AdminNotFoundError(target_identity_id)
        # The caller was demoted or removed while this request ran
        raise AccessDeniedError()
    logger.info(f"Admin {target_identity_id} deleted by {caller_identity_id}")
