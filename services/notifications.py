import asyncio
import logging
from typing import Any, Coroutine, List, Set

from pymongo.database import Database

from database import create_document, oid
from errors import NotFound
from schemas import ONE_TIME, UserUpdate
from services.push import PushGateway

logger = logging.getLogger(__name__)

# Strong references to in-flight deliveries; the event loop only keeps weak ones.
_in_flight: Set[asyncio.Task] = set()


class NotificationFanout:
    """
    Push delivery plus the persisted notification history.

    Document writes are awaited before a call returns. Pushes and topic
    (un)subscriptions are scheduled in the background and their failures
    are logged and dropped, so a delivery outage never fails a caller.
    """

    def __init__(self, db: Database, push: PushGateway):
        self.db = db
        self.push = push
        self._dispatched: List[asyncio.Task] = []

    def _dispatch(self, coro: Coroutine[Any, Any, None], what: str) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        _in_flight.add(task)
        self._dispatched.append(task)

        def _done(t: asyncio.Task):
            _in_flight.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning("Push %s failed: %s", what, exc)

        task.add_done_callback(_done)

    async def flush(self) -> None:
        """Wait for every delivery this instance has scheduled."""
        pending, self._dispatched = self._dispatched, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def push_token(self, user_id) -> str:
        user = self.db["user"].find_one({"_id": oid(user_id)}, {"fcm_token": 1})
        if not user:
            raise NotFound("User not found")
        return user.get("fcm_token") or ""

    async def notify_user(self, user_id, title: str, description: str, view_type: str = ONE_TIME):
        uid = oid(user_id)
        token = self.push_token(uid)
        if token:
            self._dispatch(self.push.send_to_token(token, title, description), f"to user {uid}")
        record = UserUpdate(user_id=str(uid), view_type=view_type, title=title, description=description)
        doc = record.model_dump()
        doc["user_id"] = uid
        return create_document(self.db["notification"], doc)

    async def broadcast_to_topic(self, topic: str, title: str, body: str) -> None:
        self._dispatch(self.push.send_to_topic(str(topic), title, body), f"to topic {topic}")

    async def subscribe(self, token: str, topic: str) -> None:
        if not token:
            return
        self._dispatch(self.push.subscribe(token, str(topic)), f"subscribe to {topic}")

    async def unsubscribe(self, token: str, topic: str) -> None:
        if not token:
            return
        self._dispatch(self.push.unsubscribe(token, str(topic)), f"unsubscribe from {topic}")

    def history(self, user_id, limit: int = 50):
        cursor = self.db["notification"].find({"user_id": oid(user_id)}).sort("created_at", -1).limit(limit)
        return list(cursor)

    def mark_read(self, user_id, notification_ids) -> int:
        ids = [oid(i) for i in notification_ids]
        res = self.db["notification"].update_many(
            {"_id": {"$in": ids}, "user_id": oid(user_id)}, {"$set": {"read": True}}
        )
        return res.modified_count
