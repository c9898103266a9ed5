import logging

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from access import ADMIN, Caller, find_accessible_project, task_filter
from auth import get_current_user, get_db, require_company, require_roles
from database import create_document, get_documents, name_of, now, oid, populate_comments, populate_users, serialize
from delegation import create_request, list_pending_for, resolve_request
from errors import BadRequest, NotFound
from schemas import CommentCreate, DelegateRequest, DelegationAction, TaskCreate, TaskStatusUpdate, TaskUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])

admin_only = require_roles("admin")


def task_view(db: Database, task, with_comments=False):
    out = populate_users(db, task, "assigned_to", "created_by")
    out["project"] = name_of(db, "project", task.get("project"))
    if with_comments:
        out["comments"] = populate_comments(db, task.get("comments", []))
    return serialize(out)


# -----------------------------
# Delegation
# -----------------------------
@router.post("/{task_id}/delegate")
async def delegate_task(task_id: str, body: DelegateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    require_company(user)
    request = create_request(db, Caller.from_user(user), task_id, body.to_user_id, body.reason)
    return {"message": "Delegation request sent successfully", "request": serialize(request)}


@router.get("/delegation-requests")
async def my_delegation_requests(user=Depends(get_current_user), db: Database = Depends(get_db)):
    require_company(user)
    return [serialize(r) for r in list_pending_for(db, Caller.from_user(user))]


@router.put("/delegation-requests/{request_id}")
async def resolve_delegation(request_id: str, body: DelegationAction, user=Depends(get_current_user), db: Database = Depends(get_db)):
    require_company(user)
    task = resolve_request(db, Caller.from_user(user), request_id, body.action)
    return {
        "message": f"Request {body.action}ed successfully",
        "task": task_view(db, task) if task else None,
    }


# -----------------------------
# Task endpoints
# -----------------------------
@router.post("", status_code=201)
async def create_task(body: TaskCreate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    project = db["project"].find_one({"_id": oid(body.project_id), "company": company_id, "is_active": True})
    if not project:
        raise NotFound("Project not found or access denied")
    assignee = oid(body.assigned_to)
    if assignee not in project.get("members", []):
        raise BadRequest("User is not a member of this project")
    if not db["user"].find_one({"_id": assignee, "company": company_id, "is_active": True}, {"_id": 1}):
        raise BadRequest("Assigned user not found in your company")

    task = create_document(db, "task", {
        "title": body.title,
        "description": body.description,
        "project": project["_id"],
        "company": company_id,
        "assigned_to": assignee,
        "created_by": user["_id"],
        "status": "todo",
        "priority": body.priority,
        "deadline": body.deadline,
        "comments": [],
        "delegation_requests": [],
        "is_active": True,
    })
    db["project"].update_one({"_id": project["_id"]}, {"$push": {"tasks": task["_id"]}})
    logger.info("Task %s created in project %s", task["_id"], project["_id"])
    return {"message": "Task created successfully", "task": task_view(db, task)}


@router.get("")
async def list_tasks(user=Depends(get_current_user), db: Database = Depends(get_db)):
    tasks = get_documents(db, "task", task_filter(Caller.from_user(user)), sort=[("deadline", 1)])
    return [task_view(db, t) for t in tasks]


@router.get("/project/{project_id}")
async def list_project_tasks(project_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    caller = Caller.from_user(user)
    project = find_accessible_project(db, caller, project_id)
    query = {"project": project["_id"], "is_active": True}
    if caller.is_member:
        query["assigned_to"] = caller.id
    tasks = get_documents(db, "task", query, sort=[("deadline", 1)])
    return [task_view(db, t) for t in tasks]


@router.get("/{task_id}")
async def get_task(task_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    query = task_filter(Caller.from_user(user))
    query["_id"] = oid(task_id)
    task = db["task"].find_one(query)
    if not task:
        raise NotFound("Task not found or access denied")
    return task_view(db, task, with_comments=True)


@router.put("/{task_id}/status")
async def update_task_status(task_id: str, body: TaskStatusUpdate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    caller = Caller.from_user(user)
    query = {"_id": oid(task_id), "company": require_company(user), "is_active": True}
    if caller.is_member:
        query["assigned_to"] = caller.id
    task = db["task"].find_one_and_update(
        query,
        {"$set": {"status": body.status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not task:
        raise NotFound("Task not found or access denied")
    return {"message": "Task status updated successfully", "task": task_view(db, task)}


@router.put("/{task_id}")
async def update_task(task_id: str, body: TaskUpdate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    query = {"_id": oid(task_id), "company": require_company(user), "is_active": True}
    if user["role"] != ADMIN:
        query["created_by"] = user["_id"]
    update = {k: v for k, v in body.model_dump(exclude_none=True).items()}
    update["updated_at"] = now()
    task = db["task"].find_one_and_update(query, {"$set": update}, return_document=ReturnDocument.AFTER)
    if not task:
        raise NotFound("Task not found or access denied")
    return {"message": "Task updated successfully", "task": task_view(db, task, with_comments=True)}


@router.post("/{task_id}/comments")
async def add_task_comment(task_id: str, body: CommentCreate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    query = task_filter(Caller.from_user(user))
    query["_id"] = oid(task_id)
    comment = {"user": user["_id"], "content": body.content, "created_at": now()}
    task = db["task"].find_one_and_update(query, {"$push": {"comments": comment}}, return_document=ReturnDocument.AFTER)
    if not task:
        raise NotFound("Task not found or access denied")
    return {"message": "Comment added successfully", "comments": [serialize(c) for c in populate_comments(db, task["comments"])]}


@router.delete("/{task_id}")
async def delete_task(task_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    task = db["task"].find_one_and_update(
        {"_id": oid(task_id), "company": require_company(user), "is_active": True},
        {"$set": {"is_active": False, "updated_at": now()}},
    )
    if not task:
        raise NotFound("Task not found")
    db["project"].update_one({"_id": task["project"]}, {"$pull": {"tasks": task["_id"]}})
    return {"message": "Task deleted successfully"}
