import logging
import re

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import get_db, hash_password, require_roles
from database import create_document, get_documents, now, oid, populate_users, serialize
from errors import BadRequest, NotFound
from schemas import CompanyCreate, CompanyUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/companies", tags=["companies"])

master_only = require_roles("masteradmin")


def name_taken(db: Database, collection: str, name: str, exclude_id=None, **scope) -> bool:
    query = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}, "is_active": True, **scope}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[collection].find_one(query, {"_id": 1}) is not None


def _company_summary(db: Database, company):
    out = populate_users(db, company, "admin")
    out["employee_count"] = db["user"].count_documents({"_id": {"$in": company.get("employees", [])}, "is_active": True})
    out["team_count"] = db["team"].count_documents({"_id": {"$in": company.get("teams", [])}, "is_active": True})
    out["project_count"] = db["project"].count_documents({"_id": {"$in": company.get("projects", [])}, "is_active": True})
    return serialize(out)


@router.get("")
async def list_companies(user=Depends(master_only), db: Database = Depends(get_db)):
    companies = get_documents(db, "company", {"is_active": True}, sort=[("created_at", -1)])
    return [_company_summary(db, c) for c in companies]


@router.post("", status_code=201)
async def create_company(body: CompanyCreate, user=Depends(master_only), db: Database = Depends(get_db)):
    if name_taken(db, "company", body.name):
        raise BadRequest("Company name already exists")
    email = body.admin_email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise BadRequest("Admin email already exists")

    admin = create_document(db, "user", {
        "name": body.admin_name,
        "email": email,
        "password": hash_password(body.admin_password),
        "role": "admin",
        "company": None,
        "teams": [],
        "is_active": True,
    })
    company = create_document(db, "company", {
        "name": body.name,
        "description": body.description or "",
        "admin": admin["_id"],
        "employees": [admin["_id"]],
        "teams": [],
        "projects": [],
        "is_active": True,
    })
    db["user"].update_one({"_id": admin["_id"]}, {"$set": {"company": company["_id"], "updated_at": now()}})
    logger.info("Company %s created with admin %s", company["name"], email)
    return {"message": "Company created successfully", "company": _company_summary(db, company)}


@router.put("/{company_id}")
async def update_company(company_id: str, body: CompanyUpdate, user=Depends(master_only), db: Database = Depends(get_db)):
    cid = oid(company_id)
    update = {}
    if body.name:
        if name_taken(db, "company", body.name, exclude_id=cid):
            raise BadRequest("Company name already exists")
        update["name"] = body.name
    if body.description is not None:
        update["description"] = body.description
    update["updated_at"] = now()
    res = db["company"].update_one({"_id": cid, "is_active": True}, {"$set": update})
    if res.matched_count == 0:
        raise NotFound("Company not found")
    return {"message": "Company updated successfully", "company": _company_summary(db, db["company"].find_one({"_id": cid}))}


@router.delete("/{company_id}")
async def deactivate_company(company_id: str, user=Depends(master_only), db: Database = Depends(get_db)):
    company = db["company"].find_one({"_id": oid(company_id)})
    if not company:
        raise NotFound("Company not found")
    if not company.get("is_active"):
        raise BadRequest("Company is already deactivated")
    db["company"].update_one({"_id": company["_id"]}, {"$set": {"is_active": False, "updated_at": now()}})
    db["user"].update_many({"company": company["_id"]}, {"$set": {"is_active": False}})
    logger.info("Company %s deactivated", company["_id"])
    return {"message": "Company deactivated successfully"}


@router.put("/{company_id}/activate")
async def activate_company(company_id: str, user=Depends(master_only), db: Database = Depends(get_db)):
    company = db["company"].find_one({"_id": oid(company_id)})
    if not company:
        raise NotFound("Company not found")
    if company.get("is_active"):
        raise BadRequest("Company is already active")
    db["company"].update_one({"_id": company["_id"]}, {"$set": {"is_active": True, "updated_at": now()}})
    db["user"].update_one({"_id": company["admin"]}, {"$set": {"is_active": True}})
    return {"message": "Company reactivated successfully"}
