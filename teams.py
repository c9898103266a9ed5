import logging
from typing import List

from fastapi import APIRouter, Depends
from pymongo.database import Database

from access import MEMBER_ROLES
from auth import get_current_user, get_db, require_company, require_roles
from companies import name_taken
from database import create_document, get_documents, name_of, now, oid, populate_users, serialize
from errors import BadRequest, NotFound
from schemas import TeamCreate, TeamUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teams", tags=["teams"])

admin_only = require_roles("admin")


def _unique(ids: List) -> List:
    seen = []
    for i in ids:
        if i not in seen:
            seen.append(i)
    return seen


def _validate_people(db: Database, company_id, user_ids: List) -> None:
    """Leader and members must be active member-role users of the company."""
    found = db["user"].count_documents({
        "_id": {"$in": user_ids},
        "company": company_id,
        "role": {"$in": list(MEMBER_ROLES)},
        "is_active": True,
    })
    if found != len(user_ids):
        raise BadRequest("Some users do not belong to your company or are not active")


def _team_view(db: Database, team):
    out = populate_users(db, team, "leader", "members")
    out["projects"] = list(db["project"].find(
        {"_id": {"$in": team.get("projects", [])}, "is_active": True},
        {"name": 1, "description": 1, "status": 1, "priority": 1, "deadline": 1},
    ))
    return serialize(out)


@router.post("", status_code=201)
async def create_team(body: TeamCreate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    if name_taken(db, "team", body.name, company=company_id):
        raise BadRequest("Team name already exists in your company")
    leader = oid(body.leader_id)
    members = _unique([oid(m) for m in body.members])
    everyone = _unique([leader] + members)
    _validate_people(db, company_id, everyone)

    team = create_document(db, "team", {
        "name": body.name,
        "description": body.description or "",
        "company": company_id,
        "leader": leader,
        "members": members,
        "projects": [],
        "is_active": True,
    })
    db["user"].update_many({"_id": {"$in": everyone}}, {"$addToSet": {"teams": team["_id"]}})
    db["company"].update_one({"_id": company_id}, {"$addToSet": {"teams": team["_id"]}})
    logger.info("Team %s created in company %s", team["name"], company_id)
    return {"message": "Team created successfully", "team": _team_view(db, team)}


@router.get("")
async def list_teams(user=Depends(get_current_user), db: Database = Depends(get_db)):
    company_id = require_company(user)
    teams = get_documents(db, "team", {"company": company_id, "is_active": True}, sort=[("name", 1)])
    return [_team_view(db, t) for t in teams]


@router.get("/{team_id}")
async def get_team(team_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    company_id = require_company(user)
    team = db["team"].find_one({"_id": oid(team_id), "company": company_id, "is_active": True})
    if not team:
        raise NotFound("Team not found")
    out = _team_view(db, team)
    out["company"] = serialize(name_of(db, "company", company_id))
    return out


@router.put("/{team_id}")
async def update_team(team_id: str, body: TeamUpdate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    team = db["team"].find_one({"_id": oid(team_id), "company": company_id, "is_active": True})
    if not team:
        raise NotFound("Team not found")

    update = {}
    if body.name and body.name != team["name"]:
        if name_taken(db, "team", body.name, exclude_id=team["_id"], company=company_id):
            raise BadRequest("Team name already exists in your company")
        update["name"] = body.name
    if body.description is not None:
        update["description"] = body.description

    if body.leader_id or body.members is not None:
        leader = oid(body.leader_id) if body.leader_id else team["leader"]
        members = _unique([oid(m) for m in body.members]) if body.members is not None else team.get("members", [])
        everyone = _unique([leader] + members)
        _validate_people(db, company_id, everyone)
        update["leader"] = leader
        update["members"] = members

        before = _unique([team["leader"]] + team.get("members", []))
        removed = [u for u in before if u not in everyone]
        added = [u for u in everyone if u not in before]
        if removed:
            db["user"].update_many({"_id": {"$in": removed}}, {"$pull": {"teams": team["_id"]}})
        if added:
            db["user"].update_many({"_id": {"$in": added}}, {"$addToSet": {"teams": team["_id"]}})

    update["updated_at"] = now()
    db["team"].update_one({"_id": team["_id"]}, {"$set": update})
    return {"message": "Team updated successfully", "team": _team_view(db, db["team"].find_one({"_id": team["_id"]}))}


@router.delete("/{team_id}")
async def delete_team(team_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    team = db["team"].find_one({"_id": oid(team_id), "company": company_id, "is_active": True})
    if not team:
        raise NotFound("Team not found")
    if team.get("projects"):
        raise BadRequest("Cannot delete team with active projects. Please reassign or complete projects first.")
    db["team"].update_one({"_id": team["_id"]}, {"$set": {"is_active": False, "updated_at": now()}})
    everyone = _unique([team["leader"]] + team.get("members", []))
    db["user"].update_many({"_id": {"$in": everyone}}, {"$pull": {"teams": team["_id"]}})
    db["company"].update_one({"_id": company_id}, {"$pull": {"teams": team["_id"]}})
    return {"message": "Team deleted successfully"}
