"""
Complaint message threads and customer feedback.

Message identity is the sender's display name: "unread" means read == False
and sent by someone whose name differs from the reader's.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING
from pymongo.database import Database

import realtime
from database import create_document, find_by_id, now, oid, ref, serialize
from schemas import Feedback, Message

logger = logging.getLogger(__name__)


# ----------------------
# Messages
# ----------------------

async def create_message(
    db: Database,
    broadcaster,
    complaint_id: str,
    name: str,
    message: str,
    attachments: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    # The complaint is not required to exist.
    record = Message(
        complaint_id=ref(complaint_id),
        name=name,
        message=message,
        attachments=attachments or [],
        sent_at=now(),
    )
    mid = create_document(db, "message", record.model_dump())
    saved = serialize(db["message"].find_one({"_id": oid(mid)}))
    await broadcaster.broadcast(realtime.NEW_MESSAGE, saved)
    return saved


def list_messages(db: Database, complaint_id: str) -> List[Dict[str, Any]]:
    cursor = db["message"].find({"complaint_id": ref(complaint_id)}).sort([("sent_at", ASCENDING), ("_id", ASCENDING)])
    return [serialize(x) for x in cursor]


def mark_read(db: Database, complaint_id: str, reader_name: str) -> int:
    """Mark every message on the complaint not sent by `reader_name` as read."""
    result = db["message"].update_many(
        {"complaint_id": ref(complaint_id), "name": {"$ne": reader_name}, "read": False},
        {"$set": {"read": True}},
    )
    logger.debug("Marked %d message(s) read on %s for %s", result.modified_count, complaint_id, reader_name)
    return result.modified_count


def unread_counts(db: Database, reader_name: str) -> Dict[str, int]:
    """Unread messages per complaint across the whole store, excluding the reader's own."""
    pipeline = [
        {"$match": {"name": {"$ne": reader_name}, "read": False}},
        {"$group": {"_id": "$complaint_id", "count": {"$sum": 1}}},
    ]
    return {str(item["_id"]): item["count"] for item in db["message"].aggregate(pipeline)}


# ----------------------
# Feedback
# ----------------------

def create_feedback(
    db: Database,
    user_id: str,
    complaint_id: str,
    rating: int,
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    # Neither Resolved status nor one-feedback-per-complaint is enforced.
    complaint_id = ref(complaint_id)
    assignment = db["assigned"].find_one({"complaint_id": complaint_id})
    record = Feedback(
        user_id=user_id,
        complaint_id=complaint_id,
        agent_id=assignment["agent_id"] if assignment else None,
        rating=rating,
        comment=comment,
    )
    fid = create_document(db, "feedback", record.model_dump())
    logger.info("Feedback %s (rating %d) recorded for complaint %s", fid, record.rating, complaint_id)
    return serialize(db["feedback"].find_one({"_id": oid(fid)}))


def feedback_for_complaint(db: Database, complaint_id: str) -> Optional[Dict[str, Any]]:
    return serialize(db["feedback"].find_one({"complaint_id": ref(complaint_id)}))


def feedback_for_agent(db: Database, agent_id: str) -> List[Dict[str, Any]]:
    out = []
    for item in db["feedback"].find({"agent_id": ref(agent_id)}):
        doc = dict(item)
        user = find_by_id(db, "user", item.get("user_id"))
        doc["user"] = {"_id": user["_id"], "name": user.get("name")} if user else None
        out.append(serialize(doc))
    return out
