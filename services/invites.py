import logging
from typing import Any, Dict, List

from pymongo.database import Database

from config import settings
from database import now, oid
from errors import AlreadyExists, NotFound
from schemas import Invite
from services.chat import ChatMessenger
from services.membership import MembershipEngine
from services.notifications import NotificationFanout

logger = logging.getLogger(__name__)


class InviteWorkflow:
    """Pending invitations, one per (invitee, project)."""

    def __init__(self, db: Database, membership: MembershipEngine, fanout: NotificationFanout,
                 chat: ChatMessenger, require_invite: bool = None):
        self.db = db
        self.invites = db["invite"]
        self.membership = membership
        self.fanout = fanout
        self.chat = chat
        self.require_invite = settings.REQUIRE_INVITE if require_invite is None else require_invite

    @staticmethod
    def _key(user_id, project_id) -> Dict[str, Any]:
        return {"user_id": oid(user_id), "project_id": oid(project_id)}

    async def create_invite(self, project_id, invitee_id) -> None:
        project = self.db["project"].find_one({"_id": oid(project_id)})
        if not project:
            raise NotFound("Project not found")
        invitee = self.db["user"].find_one({"_id": oid(invitee_id)}, {"_id": 1})
        if not invitee:
            raise NotFound("User not found")
        if invitee["_id"] in project.get("member_ids", []):
            raise AlreadyExists("User is already a member of this project")

        key = self._key(invitee["_id"], project["_id"])
        snapshot = Invite(
            user_id=str(invitee["_id"]),
            project_id=str(project["_id"]),
            name=project["name"],
            description=project.get("description"),
        ).model_dump()
        self.invites.replace_one(key, {**snapshot, **key, "created_at": now()}, upsert=True)
        logger.info("User %s invited to %s", invitee["_id"], project["_id"])
        await self.fanout.notify_user(
            invitee["_id"], "Project invite", f"You have been invited to join {project['name']}"
        )

    async def accept_invite(self, user_id, project_id) -> None:
        key = self._key(user_id, project_id)
        if self.invites.find_one(key) is None:
            if self.require_invite:
                raise NotFound("No pending invite for this project")
            logger.warning("User %s accepting %s without a pending invite", user_id, project_id)

        project = self.db["project"].find_one({"_id": key["project_id"]}, {"member_ids": 1})
        already_member = bool(project) and key["user_id"] in project.get("member_ids", [])
        await self.membership.join_project(key["user_id"], key["project_id"])
        self.invites.delete_one(key)
        if already_member:
            return
        user = self.db["user"].find_one({"_id": key["user_id"]}, {"name": 1})
        await self.chat.post_system_message(key["project_id"], f"{user['name']} has joined the project")

    def decline_invite(self, user_id, project_id) -> bool:
        return self.invites.delete_one(self._key(user_id, project_id)).deleted_count == 1

    def pending(self, user_id) -> List[Dict[str, Any]]:
        return list(self.invites.find({"user_id": oid(user_id)}).sort("created_at", -1))
