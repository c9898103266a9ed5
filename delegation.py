"""
Task delegation: moving a task from its assignee to another project member.

Every task carries an embedded, append-only list of delegation requests. A
request starts ``pending`` and is resolved exactly once, to ``accepted`` or
``rejected``; re-delegating needs a new request. Accepting hands the task to
the request's recipient in the same atomic update that closes the request.
"""
import enum
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from access import Caller
from database import now, oid, users_by_id
from errors import BadRequest, NotFound

logger = logging.getLogger(__name__)


class DelegationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


TRANSITIONS = {
    DelegationStatus.PENDING: {DelegationStatus.ACCEPTED, DelegationStatus.REJECTED},
    DelegationStatus.ACCEPTED: set(),
    DelegationStatus.REJECTED: set(),
}

ACTIONS = {
    "accept": DelegationStatus.ACCEPTED,
    "reject": DelegationStatus.REJECTED,
}

MAX_REASON_LENGTH = 500


def can_transition(current: str, target: DelegationStatus) -> bool:
    return target in TRANSITIONS.get(DelegationStatus(current), set())


def create_request(db: Database, caller: Caller, task_id: Any, to_user_id: Any, reason: str) -> Dict[str, Any]:
    reason = (reason or "").strip()
    if not reason or len(reason) > MAX_REASON_LENGTH:
        raise BadRequest("Reason is required and must be less than 500 characters")

    task = db["task"].find_one({
        "_id": oid(task_id),
        "assigned_to": caller.id,
        "company": caller.company_id,
        "is_active": True,
    })
    if not task:
        raise NotFound("Task not found or you are not assigned to it")

    to_user = oid(to_user_id)
    project = db["project"].find_one({"_id": task["project"]}, {"members": 1})
    if not project or to_user not in project.get("members", []):
        raise BadRequest("Target user is not a member of this project")

    target = db["user"].find_one({"_id": to_user, "company": caller.company_id, "is_active": True})
    if not target:
        raise BadRequest("Target user not found in your company")

    if any(
        r.get("status") == DelegationStatus.PENDING.value and r.get("from_user") == caller.id
        for r in task.get("delegation_requests", [])
    ):
        raise BadRequest("You already have a pending delegation request for this task")

    request = {
        "id": ObjectId(),
        "from_user": caller.id,
        "to_user": to_user,
        "reason": reason,
        "status": DelegationStatus.PENDING.value,
        "created_at": now(),
    }
    # The guard in the filter keeps a second concurrent append from landing
    # once the first one is stored.
    res = db["task"].update_one(
        {
            "_id": task["_id"],
            "assigned_to": caller.id,
            "delegation_requests": {
                "$not": {"$elemMatch": {"from_user": caller.id, "status": DelegationStatus.PENDING.value}},
            },
        },
        {"$push": {"delegation_requests": request}, "$set": {"updated_at": now()}},
    )
    if res.modified_count == 0:
        raise BadRequest("You already have a pending delegation request for this task")
    logger.info("Delegation %s: task %s from %s to %s", request["id"], task["_id"], caller.id, to_user)
    return request


def list_pending_for(db: Database, caller: Caller) -> List[Dict[str, Any]]:
    """Pending requests addressed to ``caller``, joined for display."""
    tasks = list(db["task"].find(
        {
            "delegation_requests": {
                "$elemMatch": {"to_user": caller.id, "status": DelegationStatus.PENDING.value},
            },
            "company": caller.company_id,
            "is_active": True,
        },
        {"title": 1, "description": 1, "priority": 1, "project": 1, "delegation_requests": 1},
    ))
    projects = {
        p["_id"]: p
        for p in db["project"].find({"_id": {"$in": [t["project"] for t in tasks]}}, {"name": 1})
    }

    pending = []
    for task in tasks:
        for req in task.get("delegation_requests", []):
            if req.get("to_user") == caller.id and req.get("status") == DelegationStatus.PENDING.value:
                pending.append((task, req))

    users = users_by_id(db, [r["from_user"] for _, r in pending] + [r["to_user"] for _, r in pending])
    out = []
    for task, req in sorted(pending, key=lambda pair: pair[1]["created_at"]):
        out.append({
            "id": req["id"],
            "task": {
                "id": task["_id"],
                "title": task.get("title"),
                "description": task.get("description"),
                "priority": task.get("priority"),
                "project": projects.get(task["project"]),
            },
            "from_user": users.get(req["from_user"], req["from_user"]),
            "to_user": users.get(req["to_user"], req["to_user"]),
            "reason": req["reason"],
            "status": req["status"],
            "created_at": req["created_at"],
        })
    return out


def resolve_request(db: Database, caller: Caller, request_id: Any, action: str) -> Optional[Dict[str, Any]]:
    """Accept or reject a pending request addressed to ``caller``.

    Returns the updated task when accepted, None when rejected.
    """
    target = ACTIONS.get(action)
    if target is None:
        raise BadRequest("Action must be accept or reject")

    rid = oid(request_id)
    task = db["task"].find_one({
        "delegation_requests": {"$elemMatch": {"id": rid, "to_user": caller.id}},
        "company": caller.company_id,
        "is_active": True,
    })
    if not task:
        raise NotFound("Delegation request not found")
    request = next((r for r in task.get("delegation_requests", []) if r.get("id") == rid), None)
    if request is None:
        raise NotFound("Delegation request not found")
    if not can_transition(request.get("status"), target):
        raise BadRequest("Request has already been processed")

    update: Dict[str, Any] = {
        "delegation_requests.$.status": target.value,
        "delegation_requests.$.resolved_at": now(),
        "updated_at": now(),
    }
    if target is DelegationStatus.ACCEPTED:
        update["assigned_to"] = caller.id

    updated = db["task"].find_one_and_update(
        {
            "_id": task["_id"],
            "delegation_requests": {
                "$elemMatch": {"id": rid, "to_user": caller.id, "status": DelegationStatus.PENDING.value},
            },
        },
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # resolved by someone else between the read and the write
        raise BadRequest("Request has already been processed")
    logger.info("Delegation %s %s by %s", rid, target.value, caller.id)
    return updated if target is DelegationStatus.ACCEPTED else None
