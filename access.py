"""
Role-based scoping shared by the REST routes and the realtime bridge.

Both transports call ``project_filter`` / ``find_accessible_project`` so a
client can never join or message a project over the socket that it could not
fetch over HTTP.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import oid
from errors import NotFound

MASTER_ADMIN = "masteradmin"
ADMIN = "admin"
MEMBER_ROLES = ("employee", "team_leader", "bug_fixer")


@dataclass(frozen=True)
class Caller:
    id: ObjectId
    role: str
    company_id: Optional[ObjectId] = None
    team_ids: List[ObjectId] = field(default_factory=list)

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Caller":
        return cls(
            id=user["_id"],
            role=user.get("role", "employee"),
            company_id=user.get("company"),
            team_ids=list(user.get("teams") or []),
        )

    @property
    def is_member(self) -> bool:
        return self.role in MEMBER_ROLES


def project_filter(caller: Caller, company_id: Optional[ObjectId] = None) -> Dict[str, Any]:
    """Mongo filter for the projects ``caller`` may see.

    The top-level administrator is not company scoped unless a company is
    asked for explicitly. Company administrators see their whole company.
    Everyone else sees projects they are a member of or whose team they
    belong to.
    """
    query: Dict[str, Any] = {"is_active": True}
    if caller.role == MASTER_ADMIN:
        if company_id is not None:
            query["company"] = company_id
        return query
    query["company"] = caller.company_id
    if caller.role != ADMIN:
        query["$or"] = [
            {"members": caller.id},
            {"team": {"$in": caller.team_ids}},
        ]
    return query


def task_filter(caller: Caller) -> Dict[str, Any]:
    query: Dict[str, Any] = {"is_active": True}
    if caller.role == MASTER_ADMIN:
        return query
    query["company"] = caller.company_id
    if caller.role != ADMIN:
        query["$or"] = [
            {"assigned_to": caller.id},
            {"created_by": caller.id},
        ]
    return query


def find_accessible_project(db: Database, caller: Caller, project_id: Any) -> Dict[str, Any]:
    query = project_filter(caller)
    query["_id"] = oid(project_id)
    project = db["project"].find_one(query)
    if not project:
        raise NotFound("Project not found")
    return project
