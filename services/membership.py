import logging
from typing import Any, Dict, Literal, Optional

from bson import ObjectId
from pymongo.database import Database

from database import create_document, now, oid
from errors import InvalidRequest, NotFound, Unauthorized
from schemas import Permission, Project
from services.chat import ChatMessenger
from services.identity import IdentityProvider
from services.notifications import NotificationFanout
from services.permissions import PermissionStore
from services.tasks import TaskLifecycle

logger = logging.getLogger(__name__)

VOLUNTARY = "voluntary"
REMOVED = "removed"
LeaveReason = Literal["voluntary", "removed"]


class MembershipEngine:
    """
    Keeps ``user.projects`` and ``project.member_ids`` mirroring each other.

    Both lists are only changed with single-document ``$addToSet``/``$pull``
    updates, so concurrent joins and leaves cannot overwrite one another.
    The owner of a project is always one of its members. Whenever a user
    stops being a member their permission record is deleted and their tasks
    in that project are released.
    """

    def __init__(self, db: Database, fanout: NotificationFanout, permissions: PermissionStore,
                 tasks: TaskLifecycle, chat: ChatMessenger, identity: IdentityProvider):
        self.db = db
        self.users = db["user"]
        self.projects = db["project"]
        self.fanout = fanout
        self.permissions = permissions
        self.tasks = tasks
        self.chat = chat
        self.identity = identity

    def _project(self, project_id) -> Dict[str, Any]:
        project = self.projects.find_one({"_id": oid(project_id)})
        if not project:
            raise NotFound("Project not found")
        return project

    def _user(self, user_id) -> Dict[str, Any]:
        user = self.users.find_one({"_id": oid(user_id)})
        if not user:
            raise NotFound("User not found")
        return user

    async def create_project(self, owner_id, name: str, description: Optional[str] = None,
                             fcm_token: Optional[str] = None) -> ObjectId:
        owner = self._user(owner_id)
        doc = Project(name=name, description=description, owner_id=str(owner["_id"])).model_dump()
        doc["owner_id"] = owner["_id"]
        doc["member_ids"] = [owner["_id"]]
        project_id = create_document(self.projects, doc)
        logger.info("Project created with ID: %s", project_id)

        self.users.update_one({"_id": owner["_id"]}, {"$addToSet": {"projects": project_id}})
        self.permissions.grant(project_id, owner["_id"], Permission.full())
        await self.fanout.subscribe(fcm_token or owner.get("fcm_token", ""), str(project_id))
        return project_id

    async def join_project(self, user_id, project_id) -> Dict[str, Any]:
        user = self._user(user_id)
        project = self._project(project_id)
        uid, pid = user["_id"], project["_id"]

        added = self.users.update_one({"_id": uid}, {"$addToSet": {"projects": pid}}).modified_count
        try:
            res = self.projects.update_one(
                {"_id": pid},
                {"$addToSet": {"member_ids": uid}, "$set": {"updated_at": now()}},
            )
            if res.matched_count == 0:
                raise NotFound("Project not found")
        except Exception:
            if added:
                self.users.update_one({"_id": uid}, {"$pull": {"projects": pid}})
            raise

        self.permissions.ensure(pid, uid)
        await self.fanout.subscribe(user.get("fcm_token", ""), str(pid))
        logger.info("User %s joined project %s", uid, pid)
        return self.projects.find_one({"_id": pid})

    async def _detach(self, project: Dict[str, Any], user: Dict[str, Any]) -> None:
        pid, uid = project["_id"], user["_id"]
        self.projects.update_one({"_id": pid}, {"$pull": {"member_ids": uid}, "$set": {"updated_at": now()}})
        self.users.update_one({"_id": uid}, {"$pull": {"projects": pid}})
        self.permissions.revoke(pid, uid)
        self.tasks.release_assignments(pid, uid)
        await self.fanout.unsubscribe(user.get("fcm_token", ""), str(pid))

    async def leave_project(self, project_id, user_id, reason: LeaveReason = VOLUNTARY,
                            notify: bool = True) -> bool:
        """Remove ``user_id`` from the project. Returns False if they were not a member."""
        project = self._project(project_id)
        user = self._user(user_id)
        if project["owner_id"] == user["_id"]:
            raise InvalidRequest("The project owner cannot leave the project, delete it instead")
        if user["_id"] not in project.get("member_ids", []) and project["_id"] not in user.get("projects", []):
            logger.info("User %s is not a member of %s, nothing to do", user["_id"], project["_id"])
            return False

        await self._detach(project, user)
        if reason == VOLUNTARY:
            await self.chat.post_system_message(project["_id"], f"{user['name']} has left the project")
        else:
            await self.chat.post_system_message(
                project["_id"], f"{user['name']} has been removed from the project"
            )
            if notify:
                await self.fanout.notify_user(
                    user["_id"], "Removed from project", f"You have been removed from {project['name']}"
                )
        logger.info("User %s %s project %s", user["_id"], "left" if reason == VOLUNTARY else "removed from",
                    project["_id"])
        return True

    async def _cascade_delete(self, project: Dict[str, Any]) -> None:
        pid = project["_id"]
        member_ids = set(project.get("member_ids", [])) | {project["owner_id"]}
        for member in self.users.find({"$or": [{"_id": {"$in": list(member_ids)}}, {"projects": pid}]},
                                      {"fcm_token": 1}):
            await self.fanout.unsubscribe(member.get("fcm_token", ""), str(pid))
        self.users.update_many({"projects": pid}, {"$pull": {"projects": pid}})
        self.permissions.delete_for_project(pid)
        self.tasks.delete_for_project(pid)
        self.chat.delete_for_project(pid)
        self.db["invite"].delete_many({"project_id": pid})
        self.projects.delete_one({"_id": pid})
        logger.info("Project %s deleted", pid)

    async def delete_project(self, project_id, caller_id) -> None:
        project = self._project(project_id)
        if project["owner_id"] != oid(caller_id):
            logger.error("User %s not authorized to delete project %s", caller_id, project_id)
            raise Unauthorized("User not authorized to delete project")
        await self._cascade_delete(project)

    async def delete_user(self, user_id) -> int:
        """
        Delete a user and everything tied to them.

        Projects they own are deleted, other projects lose them as a member.
        Each project is cleaned up on its own; a failure is logged and the
        remaining projects are still processed. Returns the failure count.
        """
        user = self._user(user_id)
        uid = user["_id"]
        project_ids = set(user.get("projects", []))
        for project in self.projects.find({"$or": [{"member_ids": uid}, {"owner_id": uid}]}, {"_id": 1}):
            project_ids.add(project["_id"])

        failures = 0
        for pid in project_ids:
            try:
                project = self.projects.find_one({"_id": pid})
                if project is None:
                    self.users.update_one({"_id": uid}, {"$pull": {"projects": pid}})
                    continue
                if project["owner_id"] == uid:
                    await self._cascade_delete(project)
                else:
                    await self.leave_project(pid, uid, REMOVED, notify=False)
            except Exception:
                failures += 1
                logger.exception("Cleanup of project %s failed while deleting user %s", pid, uid)

        self.db["invite"].delete_many({"user_id": uid})
        self.db["notification"].delete_many({"user_id": uid})
        self.identity.delete_account(uid)
        self.users.delete_one({"_id": uid})
        logger.info("User %s deleted (%d project cleanups failed)", uid, failures)
        return failures
