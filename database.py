"""
MongoDB access for FestivoEMS

The client is created once from DATABASE_URL / DATABASE_NAME. Route handlers
receive the database through the `get_db` dependency so tests can swap in an
in-memory database.

Collections (lowercase of the schema class name):
- User ("user")
- Committee ("committee")
- Event ("event")
- Registration ("registration")
- Attendance ("attendance")
- Score ("score")
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import InternalError, InvalidArgumentError, NotFoundError
from settings import settings

USERS = "user"
COMMITTEES = "committee"
EVENTS = "event"
REGISTRATIONS = "registration"
ATTENDANCE = "attendance"
SCORES = "score"

client: Optional[MongoClient] = MongoClient(settings.database_url) if settings.database_url else None
db: Optional[Database] = client[settings.database_name] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise InternalError("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database[USERS].create_index([("email", ASCENDING)], unique=True)
    database[REGISTRATIONS].create_index([("qr_code", ASCENDING)], unique=True)
    database[REGISTRATIONS].create_index([("event_id", ASCENDING), ("leader_id", ASCENDING)])
    database[ATTENDANCE].create_index(
        [("registration_id", ASCENDING), ("participant_id", ASCENDING)], unique=True
    )
    database[ATTENDANCE].create_index([("verified_by", ASCENDING)])
    database[SCORES].create_index(
        [("registration_id", ASCENDING), ("participant_id", ASCENDING), ("round", ASCENDING)],
        unique=True,
    )
    database[SCORES].create_index([("judge_id", ASCENDING)])


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, label: str = "document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise InvalidArgumentError(f"Invalid {label} id")


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(database: Database, collection_name: str, doc_id: Any, label: str) -> Dict[str, Any]:
    """Fetch one document by id or raise NotFoundError("<Label> not found")."""
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, label.lower())})
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def find_many_by_ids(database: Database, collection_name: str, ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """Map string id -> document for every id that resolves."""
    oids = []
    for value in ids:
        if ObjectId.is_valid(str(value)):
            oids.append(ObjectId(str(value)))
    if not oids:
        return {}
    return {str(doc["_id"]): doc for doc in database[collection_name].find({"_id": {"$in": oids}})}


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# Utility to convert Mongo docs to JSON serializable dicts

def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = isoformat(v)
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
