import logging
import os
import secrets
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from access import Caller, find_accessible_project
from auth import get_current_user, get_db, get_settings
from config import Settings
from database import create_document, get_documents, now, oid, populate_users, serialize
from errors import BadRequest, NotFound
from schemas import CodeSnippet, FileInfo, MessageEdit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

PAYLOAD_KINDS = ("content", "file", "code")
KIND_TO_TYPE = {"content": "text", "file": "file", "code": "code"}


# -----------------------------
# Messages
# -----------------------------
def build_message(project_id, sender_id, data: Dict[str, Any]) -> Dict[str, Any]:
    """Build a chat message document from a client payload.

    Exactly one of ``content``, ``file`` or ``code`` must be present; it
    decides the message type. ``taskId``/``task_id`` scopes the message to a
    task inside the project.
    """
    present = [k for k in PAYLOAD_KINDS if data.get(k)]
    if not present:
        raise BadRequest("Message content is required")
    if len(present) > 1:
        raise BadRequest("A message carries exactly one of content, file or code")
    kind = present[0]
    message_type = KIND_TO_TYPE[kind]
    requested = data.get("messageType") or data.get("message_type")
    if requested and requested != message_type:
        raise BadRequest(f"Message type '{requested}' does not match its payload")

    message: Dict[str, Any] = {
        "project": oid(project_id),
        "sender": sender_id,
        "message_type": message_type,
        "is_edited": False,
    }
    task_id = data.get("taskId") or data.get("task_id")
    if task_id:
        message["task"] = oid(task_id)

    try:
        if kind == "content":
            content = data["content"]
            if not isinstance(content, str) or not content.strip():
                raise BadRequest("Message content is required")
            message["content"] = content
        elif kind == "file":
            message["file"] = FileInfo.model_validate(data["file"]).model_dump()
        else:
            message["code"] = CodeSnippet.model_validate(data["code"]).model_dump()
    except ValidationError:
        raise BadRequest(f"Invalid {kind} payload")
    return message


def populate_message(db: Database, message: Dict[str, Any]) -> Dict[str, Any]:
    return serialize(populate_users(db, message, "sender"))


def post_message(db: Database, caller: Caller, data: Dict[str, Any]) -> Dict[str, Any]:
    """Access-check, persist and return the sender-joined message."""
    project = find_accessible_project(db, caller, data.get("projectId") or data.get("project_id"))
    message = build_message(project["_id"], caller.id, data)
    if "task" in message and not db["task"].find_one({"_id": message["task"], "project": project["_id"]}, {"_id": 1}):
        raise NotFound("Task not found")
    chat_room = data.get("chatRoom")
    if chat_room and chat_room != project.get("chat_room"):
        raise BadRequest("Chat room does not belong to this project")
    stored = create_document(db, "chat_message", message)
    return {"project": project, "message": populate_message(db, stored)}


def message_history(db: Database, caller: Caller, project_id: Any, task_id: Optional[str] = None) -> List[Dict[str, Any]]:
    project = find_accessible_project(db, caller, project_id)
    query: Dict[str, Any] = {"project": project["_id"]}
    if task_id:
        query["task"] = oid(task_id)
    messages = get_documents(db, "chat_message", query, sort=[("created_at", 1), ("_id", 1)])
    return [populate_message(db, m) for m in messages]


# -----------------------------
# Chat endpoints
# -----------------------------
@router.get("/{project_id}")
async def get_messages(project_id: str, task_id: Optional[str] = None, taskId: Optional[str] = None,
                       user=Depends(get_current_user), db: Database = Depends(get_db)):
    return message_history(db, Caller.from_user(user), project_id, task_id or taskId)


@router.post("/upload")
async def upload_file(file: Optional[UploadFile] = File(default=None), user=Depends(get_current_user),
                      settings: Settings = Depends(get_settings)):
    if file is None or not file.filename:
        raise BadRequest("No file uploaded")
    # never buffer more than one byte past the limit
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise BadRequest("File too large")
    os.makedirs(settings.upload_dir, exist_ok=True)
    _, ext = os.path.splitext(file.filename)
    stored_name = f"{int(now().timestamp() * 1000)}-{secrets.token_hex(6)}{ext}"
    path = os.path.join(settings.upload_dir, stored_name)
    with open(path, "wb") as fh:
        fh.write(data)
    logger.info("Stored upload %s (%d bytes) for %s", stored_name, len(data), user["_id"])
    return FileInfo(
        filename=stored_name,
        original_name=file.filename,
        path=path,
        size=len(data),
        mime_type=file.content_type,
    ).model_dump()


@router.put("/messages/{message_id}")
async def edit_message(message_id: str, body: MessageEdit, user=Depends(get_current_user), db: Database = Depends(get_db)):
    updated = db["chat_message"].find_one_and_update(
        {"_id": oid(message_id), "sender": user["_id"], "message_type": "text"},
        {"$set": {"content": body.content, "is_edited": True, "edited_at": now(), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("Message not found")
    return populate_message(db, updated)
