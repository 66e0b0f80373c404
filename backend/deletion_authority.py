# backend/deletion_authority.py

"""
Deletion Authority - privileged removal of conversion records

Policy:
- No admin identity configured -> every delete fails closed (ConfigurationError)
- Single delete: allowed for the configured admin OR the record's owner
- Bulk delete: admin only; every id validated before anything is deleted
- Hard delete; a removed record is gone from all later history queries
"""

import logging
import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pymongo.errors import PyMongoError

from gauge_errors import (
    ConfigurationError,
    EntryNotFoundError,
    ForbiddenError,
    InvalidInputError,
    StorageError,
)

logger = logging.getLogger(__name__)

ADMIN_SETTING = "ADMIN_USER_ID"


class AdminPolicy(BaseModel):
    """Admin capability built once at startup and injected into DeletionAuthority"""
    model_config = ConfigDict(frozen=True)
    admin_user_id: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.admin_user_id)

    def require_configured(self) -> str:
        if not self.is_configured:
            logger.error(f"CRITICAL: {ADMIN_SETTING} is not configured. Delete actions are blocked.")
            raise ConfigurationError(ADMIN_SETTING)
        return self.admin_user_id

    def is_admin(self, user_id: Optional[str]) -> bool:
        return self.is_configured and user_id is not None and user_id == self.admin_user_id


def validate_entry_id(entry_id) -> str:
    """Conversion ids are UUID strings; anything else is malformed."""
    if not isinstance(entry_id, str):
        raise InvalidInputError(f"Invalid entry id: {entry_id!r}", field="id")
    try:
        canonical = str(uuid.UUID(entry_id))
    except ValueError:
        raise InvalidInputError(f"Invalid entry id: {entry_id}", field="id")
    # Stored ids are str(uuid4()); braces, urn: prefixes and bare hex never match
    if canonical != entry_id:
        raise InvalidInputError(f"Invalid entry id: {entry_id}", field="id")
    return entry_id


class DeletionAuthority:

    def __init__(self, db, policy: AdminPolicy):
        self.db = db
        self.policy = policy

    async def delete_one(self, entry_id: str, requester_id: str) -> None:
        """
        Delete a single conversion.

        Raises:
            ConfigurationError: If no admin identity is configured
            InvalidInputError: If entry_id is malformed
            EntryNotFoundError: If the entry does not exist
            ForbiddenError: If requester is neither admin nor owner
            StorageError: On persistence failure
        """
        logger.info(f"DELETE history/{entry_id}: attempted by user {requester_id}")
        self.policy.require_configured()
        validate_entry_id(entry_id)

        try:
            entry = await self.db.conversions.find_one({"id": entry_id}, {"_id": 0, "id": 1, "user_id": 1})
        except PyMongoError as e:
            logger.error(f"DELETE history/{entry_id}: lookup failed: {e}")
            raise StorageError("conversion lookup") from e

        if not entry:
            logger.info(f"DELETE history/{entry_id}: entry not found")
            raise EntryNotFoundError(entry_id)

        is_admin = self.policy.is_admin(requester_id)
        if not is_admin and entry.get("user_id") != requester_id:
            logger.warning(f"DELETE history/{entry_id}: user {requester_id} is neither owner nor admin")
            raise ForbiddenError("You can only delete your own entries")

        try:
            result = await self.db.conversions.delete_one({"id": entry_id})
        except PyMongoError as e:
            logger.error(f"DELETE history/{entry_id}: delete failed: {e}")
            raise StorageError("conversion delete") from e

        # Removed concurrently between lookup and delete
        if result.deleted_count == 0:
            raise EntryNotFoundError(entry_id)

        logger.info(f"DELETE history/{entry_id}: deleted by {'admin' if is_admin else 'owner'} {requester_id}")

    async def delete_many(self, entry_ids, requester_id: str) -> int:
        """
        Admin-only bulk delete.

        Returns:
            Number of records actually deleted (ids not found are not errors)

        Raises:
            ConfigurationError: If no admin identity is configured
            ForbiddenError: If requester is not the admin
            InvalidInputError: If the list is empty or any id is malformed
            StorageError: On persistence failure
        """
        self.policy.require_configured()

        if not self.policy.is_admin(requester_id):
            logger.warning(f"BULK DELETE: user {requester_id} is not the admin")
            raise ForbiddenError("Administrator privileges required for bulk delete")

        if not isinstance(entry_ids, list) or len(entry_ids) == 0:
            raise InvalidInputError("A non-empty list of ids is required", field="ids")

        ids: List[str] = [validate_entry_id(entry_id) for entry_id in entry_ids]

        try:
            result = await self.db.conversions.delete_many({"id": {"$in": ids}})
        except PyMongoError as e:
            logger.error(f"BULK DELETE: delete_many failed for {len(ids)} id(s): {e}")
            raise StorageError("bulk conversion delete") from e

        logger.info(f"BULK DELETE: admin {requester_id} deleted {result.deleted_count} of {len(ids)} requested entries")
        return result.deleted_count
