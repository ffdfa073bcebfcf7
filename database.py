"""
MongoDB access for ResolveNow.

Collections are named after the lowercase schema class in schemas.py
(user, complaint, assigned, message, feedback).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect() -> Optional[Database]:
    """Open the process-wide client if DATABASE_URL and DATABASE_NAME are set."""
    global _client, db
    if db is not None:
        return db
    settings = get_settings()
    if not settings.database_url or not settings.database_name:
        logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")
        return None
    _client = MongoClient(settings.database_url)
    db = _client[settings.database_name]
    logger.info("MongoDB client created for database %s", settings.database_name)
    return db


def close() -> None:
    global _client, db
    if _client is not None:
        _client.close()
    _client = None
    db = None


def get_db() -> Database:
    database = connect()
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return database


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    # Authoritative guard: a complaint has at most one assignment.
    database["assigned"].create_index([("complaint_id", ASCENDING)], unique=True)
    database["assigned"].create_index([("agent_id", ASCENDING)])
    database["message"].create_index([("complaint_id", ASCENDING), ("sent_at", ASCENDING)])
    database["feedback"].create_index([("complaint_id", ASCENDING)])
    database["feedback"].create_index([("agent_id", ASCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    stamp = now()
    doc = dict(data)
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    return list(database[collection_name].find(filter_dict or {}))


# ----------------------
# Helpers
# ----------------------

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def ref(id_str: str) -> str:
    """Canonical form of a stored reference: the lowercase hex of a valid ObjectId."""
    return str(oid(id_str))


def find_by_id(database: Database, collection_name: str, id_str: Optional[str]) -> Optional[Dict[str, Any]]:
    """Lookup for stored references; malformed or missing ids resolve to None."""
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return database[collection_name].find_one({"_id": ObjectId(id_str)})


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    # Convert datetimes to isoformat, recursing into populated references
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.astimezone(timezone.utc).isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, dict):
            d[k] = serialize(v)
        elif isinstance(v, list):
            d[k] = [serialize(x) if isinstance(x, dict) else x for x in v]
    return d
