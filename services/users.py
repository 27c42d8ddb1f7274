import logging
import re
from typing import Dict, List

from bson import ObjectId
from pymongo.database import Database

from database import create_document, oid
from errors import NotFound
from schemas import User, UserPublic
from services.identity import IdentityProvider
from services.notifications import NotificationFanout

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, db: Database, identity: IdentityProvider, fanout: NotificationFanout):
        self.users = db["user"]
        self.identity = identity
        self.fanout = fanout

    def get(self, user_id) -> Dict:
        user = self.users.find_one({"_id": oid(user_id)})
        if not user:
            raise NotFound("User not found")
        return user

    def create_user(self, name: str, email: str, password: str, phone: str = "") -> ObjectId:
        logger.info("Creating user with email: %s", email)
        uid = self.identity.create_account(email, password, name)
        profile = User(name=name, email=email.lower(), phone=phone or "").model_dump()
        try:
            create_document(self.users, {"_id": uid, **profile})
        except Exception:
            self.identity.delete_account(uid)
            raise
        logger.info("User data added for %s", uid)
        return uid

    def search_users(self, text: str, project_id: str) -> List[Dict[str, str]]:
        """Users whose name or email contains ``text`` and who are not in the project."""
        pattern = {"$regex": re.escape(text.strip()), "$options": "i"}
        cursor = self.users.find({
            "projects": {"$ne": oid(project_id)},
            "$or": [{"name": pattern}, {"email": pattern}],
        })
        return [
            UserPublic(id=str(doc["_id"]), name=doc["name"], email=doc["email"]).model_dump()
            for doc in cursor
        ]

    async def register_push_token(self, user_id, token: str) -> None:
        user = self.get(user_id)
        previous = user.get("fcm_token") or ""
        self.users.update_one({"_id": user["_id"]}, {"$set": {"fcm_token": token or ""}})
        for pid in user.get("projects", []):
            if previous and previous != token:
                await self.fanout.unsubscribe(previous, str(pid))
            await self.fanout.subscribe(token, str(pid))
