"""Shared test fixtures: an in-memory Mongo, a seeded company and an app."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import hash_password, issue_session
from config import Settings
from database import create_document
from main import create_app

PASSWORD = "Secret123"


@pytest.fixture()
def db():
    return mongomock.MongoClient(tz_aware=True)["task_management_test"]


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(database_name="task_management_test", upload_dir=str(tmp_path / "uploads"), max_file_size=1024)


def _user(db, name, role, company=None, teams=None, active=True):
    return create_document(db, "user", {
        "name": name,
        "email": f"{name.lower().replace(' ', '.')}@example.com",
        "password": hash_password(PASSWORD),
        "role": role,
        "company": company,
        "teams": teams or [],
        "is_active": active,
    })


@pytest.fixture()
def world(db):
    """Seed one company with a team, a project and a task.

    - alice: employee, team member, project member, assignee of the task
    - bob: employee, team member, project member
    - carol: employee of the same company, outside the team and project
    - dave: employee of another company
    - admin: company administrator, master: top-level administrator
    """
    master = _user(db, "Master", "masteradmin")
    admin = _user(db, "Admin", "admin")
    company = create_document(db, "company", {
        "name": "Acme", "description": "", "admin": admin["_id"],
        "employees": [admin["_id"]], "teams": [], "projects": [], "is_active": True,
    })
    db["user"].update_one({"_id": admin["_id"]}, {"$set": {"company": company["_id"]}})
    other = create_document(db, "company", {
        "name": "Globex", "description": "", "admin": master["_id"],
        "employees": [], "teams": [], "projects": [], "is_active": True,
    })

    alice = _user(db, "Alice", "employee", company["_id"])
    bob = _user(db, "Bob", "employee", company["_id"])
    carol = _user(db, "Carol", "bug_fixer", company["_id"])
    dave = _user(db, "Dave", "employee", other["_id"])

    team = create_document(db, "team", {
        "name": "Core", "description": "", "company": company["_id"], "leader": alice["_id"],
        "members": [alice["_id"], bob["_id"]], "projects": [], "is_active": True,
    })
    db["user"].update_many({"_id": {"$in": [alice["_id"], bob["_id"]]}}, {"$addToSet": {"teams": team["_id"]}})

    project = create_document(db, "project", {
        "name": "Apollo", "description": "Launch", "company": company["_id"], "team": team["_id"],
        "created_by": admin["_id"], "members": [alice["_id"], bob["_id"]], "tasks": [],
        "status": "not_started", "priority": "medium",
        "start_date": datetime.now(timezone.utc), "deadline": datetime.now(timezone.utc) + timedelta(days=30),
        "chat_room": "project_apollo", "comments": [], "is_active": True,
    })
    db["team"].update_one({"_id": team["_id"]}, {"$push": {"projects": project["_id"]}})
    task = create_document(db, "task", {
        "title": "Write launch notes", "description": "Draft and review", "project": project["_id"],
        "company": company["_id"], "assigned_to": alice["_id"], "created_by": admin["_id"],
        "status": "todo", "priority": "high", "deadline": datetime.now(timezone.utc) + timedelta(days=7),
        "comments": [], "delegation_requests": [], "is_active": True,
    })
    db["project"].update_one({"_id": project["_id"]}, {"$push": {"tasks": task["_id"]}})

    people = {"master": master, "admin": admin, "alice": alice, "bob": bob, "carol": carol, "dave": dave}
    tokens = {name: issue_session(db, u["_id"], 7) for name, u in people.items()}
    return SimpleNamespace(
        company=company, other=other, team=team, project=project, task=task,
        tokens=tokens, **people,
    )


@pytest.fixture()
def user_doc(db):
    """Return a helper that re-reads a seeded user as the auth layer sees it."""

    def _load(u):
        doc = db["user"].find_one({"_id": u["_id"]})
        doc.setdefault("teams", [])
        return doc

    return _load


@pytest.fixture()
def app(db, settings):
    return create_app(settings=settings, db=db)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def auth_headers(world):
    def _headers(name: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {world.tokens[name]}"}

    return _headers
