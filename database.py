"""
MongoDB access for the task management API.

Each entity lives in its own collection named after the lower-cased entity
(User -> "user", ChatMessage -> "chat_message"). References between entities
are stored as ObjectIds and joined in Python where a response needs them.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import BadRequest

logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = {"name": 1, "email": 1, "role": 1, "avatar": 1}


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("Using database %s", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["session"].create_index([("token", ASCENDING)], unique=True)
    db["project"].create_index([("chat_room", ASCENDING)], unique=True, sparse=True)
    db["task"].create_index([("delegation_requests.to_user", ASCENDING)])
    db["chat_message"].create_index([("project", ASCENDING), ("created_at", ASCENDING)])


# -----------------------------
# Helpers
# -----------------------------

def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise BadRequest("Invalid id")


def _serialize_value(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).isoformat()
    if isinstance(v, dict):
        return serialize(v)
    if isinstance(v, list):
        return [_serialize_value(i) for i in v]
    return v


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = d.pop("_id")
    d.pop("password", None)
    return {k: _serialize_value(v) for k, v in d.items()}


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = {**data, "created_at": now(), "updated_at": now()}
    res = db[collection].insert_one(payload)
    return db[collection].find_one({"_id": res.inserted_id})


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


# -----------------------------
# Joins
# -----------------------------

def users_by_id(db: Database, ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    ids = [i for i in set(ids) if i is not None]
    if not ids:
        return {}
    return {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}}, PUBLIC_USER_FIELDS)}


def populate_users(db: Database, doc: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    """Replace user references on ``doc`` with public user sub-documents.

    A field may hold a single ObjectId or a list of them.
    """
    wanted = []
    for f in fields:
        v = doc.get(f)
        if isinstance(v, list):
            wanted.extend(v)
        elif v is not None:
            wanted.append(v)
    found = users_by_id(db, wanted)
    out = {**doc}
    for f in fields:
        v = doc.get(f)
        if isinstance(v, list):
            out[f] = [found[i] for i in v if i in found]
        elif v is not None:
            out[f] = found.get(v, v)
    return out


def populate_comments(db: Database, comments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    found = users_by_id(db, [c.get("user") for c in comments])
    return [{**c, "user": found.get(c.get("user"), c.get("user"))} for c in comments]


def name_of(db: Database, collection: str, ref: Optional[ObjectId]) -> Optional[Dict[str, Any]]:
    if ref is None:
        return None
    return db[collection].find_one({"_id": ref}, {"name": 1})
