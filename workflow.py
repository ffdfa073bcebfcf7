"""
Complaint lifecycle and the Assignment Engine.

Rules:
1. A complaint has at most one assignment. The read-before-write check is a
   fast path; the unique index on assigned.complaint_id is authoritative.
2. An agent may hold at most `max_active` active assignments, i.e. assignments
   whose complaint still exists and is not Resolved. The count is a snapshot
   read, so concurrent requests can briefly over-commit an agent.
3. Assigning moves the complaint to Assigned and broadcasts complaintUpdated.
4. Status updates through update_complaint are unguarded: any field, any value.
5. Deleting a complaint does not cascade to its assignment, messages or feedback.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import realtime
from database import create_document, find_by_id, now, oid, ref, serialize
from schemas import ASSIGNED, RESOLVED, Assigned, Complaint

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = {"_id", "id", "created_at"}


class AssignmentError(Exception):
    """Raised when an assignment violates a workflow rule."""
    pass


class DuplicateAssignmentError(AssignmentError):
    def __init__(self, complaint_id: str):
        self.complaint_id = complaint_id
        super().__init__("Complaint is already assigned to an agent")


class CapacityExceededError(AssignmentError):
    def __init__(self, agent_id: str, limit: int):
        self.agent_id = agent_id
        self.limit = limit
        super().__init__(f"Agent has reached maximum limit of {limit} active assignments")


class ComplaintWorkflow:
    """Complaint CRUD plus assignment, with every change fanned out through `broadcaster`."""

    def __init__(self, db: Database, broadcaster, max_active: int = 3):
        self.db = db
        self.broadcaster = broadcaster
        self.max_active = max_active

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def _user_summary(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        user = find_by_id(self.db, "user", user_id)
        if not user:
            return None
        return {"_id": user["_id"], "name": user.get("name"), "email": user.get("email")}

    def _populate(self, complaint: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(complaint)
        doc["user"] = self._user_summary(doc.get("user_id"))
        assignment = self.db["assigned"].find_one({"complaint_id": str(doc["_id"])})
        doc["assignment"] = (
            {"agent_name": assignment["agent_name"], "agent_id": assignment["agent_id"]}
            if assignment else None
        )
        return serialize(doc)

    def list_complaints(self) -> List[Dict[str, Any]]:
        return [self._populate(c) for c in self.db["complaint"].find({})]

    def get_complaint(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db["complaint"].find_one({"_id": oid(complaint_id)})
        return self._populate(doc) if doc else None

    # ------------------------------------------------------------------
    # Complaint lifecycle
    # ------------------------------------------------------------------

    async def create_complaint(self, data: Dict[str, Any]) -> Dict[str, Any]:
        complaint = Complaint(**data)
        cid = create_document(self.db, "complaint", complaint.model_dump())
        saved = serialize(self.db["complaint"].find_one({"_id": oid(cid)}))
        logger.info("Complaint %s created by user %s", cid, complaint.user_id)
        await self.broadcaster.broadcast(realtime.COMPLAINT_CREATED, saved)
        return saved

    async def update_complaint(self, complaint_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Set arbitrary fields. Status values and transitions are not validated."""
        changes = {k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS}
        changes["updated_at"] = now()
        result = self.db["complaint"].update_one({"_id": oid(complaint_id)}, {"$set": changes})
        if result.matched_count == 0:
            return None
        updated = serialize(self.db["complaint"].find_one({"_id": oid(complaint_id)}))
        if "status" in changes:
            logger.info("Complaint %s status set to %s", complaint_id, changes["status"])
        await self.broadcaster.broadcast(realtime.COMPLAINT_UPDATED, updated)
        return updated

    async def delete_complaint(self, complaint_id: str) -> bool:
        result = self.db["complaint"].delete_one({"_id": oid(complaint_id)})
        if result.deleted_count == 0:
            return False
        logger.info("Complaint %s deleted; related records are kept", complaint_id)
        await self.broadcaster.broadcast(realtime.COMPLAINT_DELETED, ref(complaint_id))
        return True

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def active_assignment_count(self, agent_id: str) -> int:
        count = 0
        for assignment in self.db["assigned"].find({"agent_id": ref(agent_id)}):
            complaint = find_by_id(self.db, "complaint", assignment.get("complaint_id"))
            if complaint and complaint.get("status") != RESOLVED:
                count += 1
        return count

    def existing_assignment(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        return self.db["assigned"].find_one({"complaint_id": ref(complaint_id)})

    async def assign(self, complaint_id: str, agent_id: str, agent_name: str) -> Dict[str, Any]:
        # References are stored in canonical form so the unique index and the
        # per-agent count see one key per complaint and per agent.
        complaint_id = ref(complaint_id)
        agent_id = ref(agent_id)
        complaint_key = oid(complaint_id)
        if self.existing_assignment(complaint_id):
            logger.warning("Rejected duplicate assignment for complaint %s", complaint_id)
            raise DuplicateAssignmentError(complaint_id)

        active = self.active_assignment_count(agent_id)
        if active >= self.max_active:
            logger.warning("Agent %s at capacity (%d/%d)", agent_id, active, self.max_active)
            raise CapacityExceededError(agent_id, self.max_active)

        record = Assigned(
            agent_id=agent_id,
            complaint_id=complaint_id,
            agent_name=agent_name,
            assigned_at=now(),
        )
        try:
            aid = create_document(self.db, "assigned", record.model_dump())
        except DuplicateKeyError:
            logger.warning("Concurrent assignment for complaint %s lost the race", complaint_id)
            raise DuplicateAssignmentError(complaint_id)

        self.db["complaint"].update_one(
            {"_id": complaint_key},
            {"$set": {"status": ASSIGNED, "updated_at": now()}},
        )
        logger.info("Complaint %s assigned to agent %s (%s)", complaint_id, agent_id, agent_name)

        updated = self.db["complaint"].find_one({"_id": complaint_key})
        if updated:
            await self.broadcaster.broadcast(realtime.COMPLAINT_UPDATED, serialize(updated))
        return serialize(self.db["assigned"].find_one({"_id": oid(aid)}))

    def assignments_for_agent(self, agent_id: str) -> List[Dict[str, Any]]:
        out = []
        for assignment in self.db["assigned"].find({"agent_id": ref(agent_id)}):
            doc = dict(assignment)
            complaint = find_by_id(self.db, "complaint", assignment["complaint_id"])
            if complaint:
                complaint = dict(complaint)
                complaint["user"] = self._user_summary(complaint.get("user_id"))
            doc["complaint"] = complaint
            out.append(serialize(doc))
        return out

    def all_assignments(self) -> List[Dict[str, Any]]:
        out = []
        for assignment in self.db["assigned"].find({}):
            doc = dict(assignment)
            doc["complaint"] = find_by_id(self.db, "complaint", assignment["complaint_id"])
            agent = find_by_id(self.db, "user", assignment["agent_id"])
            if agent:
                agent = {k: v for k, v in agent.items() if k != "password"}
            doc["agent"] = agent
            out.append(serialize(doc))
        return out
