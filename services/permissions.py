import logging
from typing import List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import now, oid
from errors import Unauthorized
from schemas import Permission, PermissionFlag

logger = logging.getLogger(__name__)


class PermissionStore:
    """Per-(project, user) capability records.

    A record exists exactly while the user is a member of the project.
    """

    def __init__(self, db: Database):
        self.collection = db["permission"]

    @staticmethod
    def _key(project_id, user_id) -> dict:
        return {"project_id": oid(project_id), "user_id": oid(user_id)}

    def grant(self, project_id, user_id, permission: Optional[Permission] = None) -> Permission:
        permission = permission or Permission()
        key = self._key(project_id, user_id)
        self.collection.update_one(
            key,
            {"$set": {**permission.model_dump(), "updated_at": now()}},
            upsert=True,
        )
        return permission

    def ensure(self, project_id, user_id) -> Permission:
        """Create a default record unless one exists already."""
        key = self._key(project_id, user_id)
        self.collection.update_one(
            key,
            {"$setOnInsert": {**Permission().model_dump(), "updated_at": now()}},
            upsert=True,
        )
        return self.get(project_id, user_id)

    def get(self, project_id, user_id) -> Optional[Permission]:
        doc = self.collection.find_one(self._key(project_id, user_id))
        if doc is None:
            return None
        return Permission(**{flag: bool(doc.get(flag, False)) for flag in Permission.model_fields})

    def has(self, project_id, user_id, flag: PermissionFlag) -> bool:
        permission = self.get(project_id, user_id)
        return permission is not None and getattr(permission, flag)

    def require(self, project_id, user_id, flag: PermissionFlag) -> None:
        if not self.has(project_id, user_id, flag):
            raise Unauthorized(f"Missing '{flag.replace('_', ' ')}' permission")

    def revoke(self, project_id, user_id) -> bool:
        res = self.collection.delete_one(self._key(project_id, user_id))
        return res.deleted_count == 1

    def holders(self, project_id, flag: PermissionFlag) -> List[ObjectId]:
        cursor = self.collection.find({"project_id": oid(project_id), flag: True}, {"user_id": 1})
        return [doc["user_id"] for doc in cursor]

    def delete_for_project(self, project_id) -> int:
        res = self.collection.delete_many({"project_id": oid(project_id)})
        logger.info("Deleted %d permission records of project %s", res.deleted_count, project_id)
        return res.deleted_count
