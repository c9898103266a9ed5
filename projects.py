import logging
import secrets

from fastapi import APIRouter, Depends
from pymongo.database import Database

from access import Caller, find_accessible_project, project_filter
from auth import get_current_user, get_db, require_company, require_roles
from companies import name_taken
from database import (
    create_document, get_documents, now, oid, populate_comments, populate_users, serialize, users_by_id,
)
from errors import BadRequest, NotFound
from schemas import CommentCreate, ProjectCreate, ProjectUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

admin_only = require_roles("admin")

TASK_SUMMARY_FIELDS = {"title": 1, "description": 1, "status": 1, "priority": 1, "deadline": 1, "assigned_to": 1, "created_at": 1}


def new_chat_room() -> str:
    return f"project_{secrets.token_hex(8)}"


def _project_view(db: Database, project, detailed=False):
    out = populate_users(db, project, "created_by", "members")
    team_fields = {"name": 1, "leader": 1, "members": 1} if detailed else {"name": 1, "leader": 1}
    out["team"] = db["team"].find_one({"_id": project["team"]}, team_fields)
    tasks = list(db["task"].find({"_id": {"$in": project.get("tasks", [])}, "is_active": True}, TASK_SUMMARY_FIELDS))
    if detailed:
        assignees = users_by_id(db, [t.get("assigned_to") for t in tasks])
        tasks = [{**t, "assigned_to": assignees.get(t.get("assigned_to"), t.get("assigned_to"))} for t in tasks]
        out["comments"] = populate_comments(db, project.get("comments", []))
    out["tasks"] = tasks
    return serialize(out)


@router.post("", status_code=201)
async def create_project(body: ProjectCreate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    if name_taken(db, "project", body.name, company=company_id):
        raise BadRequest("Project name already exists in your company")
    team = db["team"].find_one({"_id": oid(body.team_id), "company": company_id, "is_active": True})
    if not team:
        raise NotFound("Team not found in your company")

    team_members = team.get("members", [])
    if body.members:
        members = [oid(m) for m in body.members]
        if any(m not in team_members for m in members):
            raise BadRequest("Some selected members do not belong to this team")
    else:
        members = list(team_members)

    project = create_document(db, "project", {
        "name": body.name,
        "description": body.description,
        "company": company_id,
        "team": team["_id"],
        "created_by": user["_id"],
        "members": members,
        "tasks": [],
        "status": "not_started",
        "priority": body.priority,
        "start_date": body.start_date or now(),
        "deadline": body.deadline,
        "chat_room": new_chat_room(),
        "comments": [],
        "is_active": True,
    })
    db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"projects": project["_id"]}})
    db["company"].update_one({"_id": company_id}, {"$addToSet": {"projects": project["_id"]}})
    logger.info("Project %s created with chat room %s", project["_id"], project["chat_room"])
    return {"message": "Project created successfully", "project": _project_view(db, project)}


@router.get("")
async def list_projects(user=Depends(get_current_user), db: Database = Depends(get_db)):
    if user["role"] != "masteradmin":
        require_company(user)
    query = project_filter(Caller.from_user(user))
    projects = get_documents(db, "project", query, sort=[("created_at", -1)])
    return [_project_view(db, p) for p in projects]


@router.get("/{project_id}")
async def get_project(project_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    project = find_accessible_project(db, Caller.from_user(user), project_id)
    return _project_view(db, project, detailed=True)


@router.put("/{project_id}")
async def update_project(project_id: str, body: ProjectUpdate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    pid = oid(project_id)
    update = {}
    if body.name:
        if name_taken(db, "project", body.name, exclude_id=pid, company=company_id):
            raise BadRequest("Project name already exists in your company")
        update["name"] = body.name
    for field in ("description", "priority", "status", "deadline"):
        val = getattr(body, field)
        if val is not None:
            update[field] = val
    update["updated_at"] = now()
    res = db["project"].update_one({"_id": pid, "company": company_id, "is_active": True}, {"$set": update})
    if res.matched_count == 0:
        raise NotFound("Project not found")
    return {"message": "Project updated successfully", "project": _project_view(db, db["project"].find_one({"_id": pid}))}


@router.post("/{project_id}/comments")
async def add_project_comment(project_id: str, body: CommentCreate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    project = find_accessible_project(db, Caller.from_user(user), project_id)
    comment = {"user": user["_id"], "content": body.content, "created_at": now()}
    db["project"].update_one({"_id": project["_id"]}, {"$push": {"comments": comment}})
    comments = db["project"].find_one({"_id": project["_id"]}, {"comments": 1}).get("comments", [])
    return {"message": "Comment added successfully", "comments": [serialize(c) for c in populate_comments(db, comments)]}


@router.delete("/{project_id}")
async def delete_project(project_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    project = db["project"].find_one({"_id": oid(project_id), "company": company_id, "is_active": True})
    if not project:
        raise NotFound("Project not found")
    if project.get("tasks"):
        raise BadRequest("Cannot delete project with active tasks. Please complete or reassign tasks first.")
    db["project"].update_one({"_id": project["_id"]}, {"$set": {"is_active": False, "updated_at": now()}})
    db["team"].update_one({"_id": project["team"]}, {"$pull": {"projects": project["_id"]}})
    db["company"].update_one({"_id": company_id}, {"$pull": {"projects": project["_id"]}})
    return {"message": "Project deleted successfully"}
