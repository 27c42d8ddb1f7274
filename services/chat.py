import logging

from pymongo.database import Database

from database import get_documents, now, oid
from errors import NotFound
from schemas import ChatMessage
from services.notifications import NotificationFanout

logger = logging.getLogger(__name__)

SYSTEM_AUTHOR = "System"


class ChatMessenger:
    """Append-only message log of each project."""

    def __init__(self, db: Database, fanout: NotificationFanout):
        self.db = db
        self.fanout = fanout

    def _append(self, project_id, text: str, author: str, user_id=None):
        message = ChatMessage(
            project_id=str(project_id),
            text=text,
            from_=author,
            user_id=str(user_id) if user_id else None,
            timestamp=now(),
        )
        doc = message.model_dump(by_alias=True)
        doc["project_id"] = oid(project_id)
        doc["user_id"] = oid(user_id) if user_id else None
        return self.db["chat_message"].insert_one(doc).inserted_id

    async def post_system_message(self, project_id, text: str):
        message_id = self._append(project_id, text, SYSTEM_AUTHOR)
        logger.info("System message in %s: %s", project_id, text)
        return message_id

    async def post_user_message(self, project_id, user_id, author: str, text: str):
        project = self.db["project"].find_one({"_id": oid(project_id)}, {"name": 1})
        if not project:
            raise NotFound("Project not found")
        message_id = self._append(project["_id"], text, author, user_id)
        logger.info("Message sent by %s in %s", author, project_id)
        await self.fanout.broadcast_to_topic(
            str(project["_id"]),
            f"New message in {project['name']}",
            f"{author} sent a new message",
        )
        return message_id

    def history(self, project_id, limit: int = 100):
        return get_documents(
            self.db["chat_message"],
            {"project_id": oid(project_id)},
            limit=limit,
            sort=[("timestamp", -1), ("_id", -1)],
        )[::-1]

    def delete_for_project(self, project_id) -> int:
        return self.db["chat_message"].delete_many({"project_id": oid(project_id)}).deleted_count
