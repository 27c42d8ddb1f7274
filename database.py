import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import settings
from errors import NotFound

logger = logging.getLogger(__name__)

client = MongoClient(settings.DATABASE_URL, tz_aware=True)
db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound("Invalid id")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.astimezone(timezone.utc).isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, list):
            d[k] = [str(i) if isinstance(i, ObjectId) else i for i in v]
    return d


def create_document(collection: Collection, data: Dict[str, Any]) -> ObjectId:
    payload = {**data, "created_at": now(), "updated_at": now()}
    res = collection.insert_one(payload)
    return res.inserted_id


def get_documents(collection: Collection, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = collection.find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["account"].create_index("email", unique=True)
    database["session"].create_index("token", unique=True)
    database["user"].create_index("projects")
    database["project"].create_index("member_ids")
    database["permission"].create_index(
        [("project_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )
    database["invite"].create_index(
        [("user_id", ASCENDING), ("project_id", ASCENDING)], unique=True
    )
    database["task"].create_index([("project_id", ASCENDING), ("assigned_to", ASCENDING)])
    database["chat_message"].create_index([("project_id", ASCENDING), ("timestamp", ASCENDING)])
    database["notification"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)
