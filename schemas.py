"""
Database Schemas for the Task Management API

Each entity model below describes a MongoDB collection. The collection name is
the lowercased entity name, e.g. User -> "user", ChatMessage -> "chat_message".
Request bodies accepted by the routes live at the bottom of the module.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["masteradmin", "admin", "employee", "team_leader", "bug_fixer"]
MemberRole = Literal["employee", "team_leader", "bug_fixer"]
ProjectStatus = Literal["not_started", "in_progress", "completed", "on_hold"]
Priority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["todo", "in_progress", "testing", "completed"]
DelegationState = Literal["pending", "accepted", "rejected"]
MessageType = Literal["text", "file", "code"]


# Users and companies
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique, lower-cased")
    password: str = Field(..., description="SHA-256 hash; never returned")
    role: Role = "employee"
    company: Optional[str] = Field(None, description="Company id; empty for masteradmin")
    teams: List[str] = Field(default_factory=list)
    is_active: bool = True
    last_login: Optional[datetime] = None
    avatar: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    location: Optional[str] = None


class Company(BaseModel):
    name: str
    description: str = ""
    admin: str = Field(..., description="User id of the company administrator")
    employees: List[str] = Field(default_factory=list)
    teams: List[str] = Field(default_factory=list)
    projects: List[str] = Field(default_factory=list)
    is_active: bool = True


class Team(BaseModel):
    name: str = Field(..., description="Unique per company, case-insensitive")
    description: str = ""
    company: str
    leader: str
    members: List[str] = Field(default_factory=list)
    projects: List[str] = Field(default_factory=list)
    is_active: bool = True


# Projects and tasks
class Comment(BaseModel):
    user: str
    content: str
    created_at: datetime


class Project(BaseModel):
    name: str = Field(..., description="Unique per company, case-insensitive")
    description: str
    company: str
    team: str
    created_by: str
    members: List[str] = Field(default_factory=list)
    tasks: List[str] = Field(default_factory=list)
    status: ProjectStatus = "not_started"
    priority: Priority = "medium"
    start_date: datetime
    deadline: datetime
    chat_room: str
    comments: List[Comment] = Field(default_factory=list)
    is_active: bool = True


class DelegationRequest(BaseModel):
    id: str
    from_user: str
    to_user: str
    reason: str
    status: DelegationState = "pending"
    created_at: datetime
    resolved_at: Optional[datetime] = None


class Task(BaseModel):
    title: str
    description: str
    project: str
    company: str
    assigned_to: str
    created_by: str
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    deadline: datetime
    comments: List[Comment] = Field(default_factory=list)
    delegation_requests: List[DelegationRequest] = Field(default_factory=list)
    is_active: bool = True


# Chat
class FileInfo(BaseModel):
    filename: str
    original_name: str
    path: str
    size: int
    mime_type: Optional[str] = None


class CodeSnippet(BaseModel):
    language: str = "plaintext"
    content: str


class ChatMessage(BaseModel):
    project: str
    task: Optional[str] = None
    sender: str
    message_type: MessageType = "text"
    content: Optional[str] = None
    file: Optional[FileInfo] = None
    code: Optional[CodeSnippet] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None


# -----------------------------
# Request bodies
# -----------------------------
class RequestBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class LoginRequest(RequestBody):
    email: EmailStr
    password: str


COMPANY_NAME_PATTERN = r"^[a-zA-Z0-9\s\-&.,]+$"
PERSON_NAME_PATTERN = r"^[a-zA-Z\s\-']+$"


class CompanyCreate(RequestBody):
    name: str = Field(..., min_length=2, max_length=100, pattern=COMPANY_NAME_PATTERN)
    description: Optional[str] = Field(None, max_length=500)
    admin_name: str = Field(..., min_length=2, max_length=50, pattern=PERSON_NAME_PATTERN)
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=6, max_length=50)

    @field_validator("admin_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not (any(c.islower() for c in v) and any(c.isupper() for c in v) and any(c.isdigit() for c in v)):
            raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
        return v


class CompanyUpdate(RequestBody):
    name: Optional[str] = Field(None, min_length=2, max_length=100, pattern=COMPANY_NAME_PATTERN)
    description: Optional[str] = Field(None, max_length=500)


class AdminCreate(RequestBody):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    company_id: Optional[str] = None


class AdminUpdate(RequestBody):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


class MemberCreate(RequestBody):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: MemberRole = "employee"
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    location: Optional[str] = None


class MemberUpdate(RequestBody):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[MemberRole] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    location: Optional[str] = None


class StatusUpdate(RequestBody):
    is_active: bool


class TeamCreate(RequestBody):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    leader_id: str
    members: List[str] = Field(default_factory=list)


class TeamUpdate(RequestBody):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    leader_id: Optional[str] = None
    members: Optional[List[str]] = None


class ProjectCreate(RequestBody):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    team_id: str
    members: Optional[List[str]] = None
    priority: Priority = "medium"
    start_date: Optional[datetime] = None
    deadline: datetime


class ProjectUpdate(RequestBody):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    priority: Optional[Priority] = None
    status: Optional[ProjectStatus] = None
    deadline: Optional[datetime] = None


class CommentCreate(RequestBody):
    content: str = Field(..., min_length=1, max_length=1000)


class TaskCreate(RequestBody):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    project_id: str
    assigned_to: str
    priority: Priority = "medium"
    deadline: datetime


class TaskUpdate(RequestBody):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    priority: Optional[Priority] = None
    deadline: Optional[datetime] = None


class TaskStatusUpdate(RequestBody):
    status: TaskStatus


class DelegateRequest(RequestBody):
    model_config = ConfigDict(populate_by_name=True)

    to_user_id: str = Field(..., alias="toUserId")
    reason: str = Field(..., min_length=1, max_length=500)


class DelegationAction(RequestBody):
    action: Literal["accept", "reject"]


class MessageEdit(RequestBody):
    content: str = Field(..., min_length=1, max_length=5000)
