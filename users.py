import logging

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from access import MEMBER_ROLES
from auth import get_current_user, get_db, hash_password, public_profile, require_company, require_roles
from database import create_document, get_documents, now, oid, serialize
from errors import BadRequest, NotFound
from schemas import AdminCreate, AdminUpdate, MemberCreate, MemberUpdate, StatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

master_only = require_roles("masteradmin")
admin_only = require_roles("admin")

PROFILE_FIELDS = ("phone", "department", "position", "location")


def _email_in_use(db: Database, email: str, exclude_id=None) -> bool:
    query = {"email": email.lower()}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query, {"_id": 1}) is not None


def _apply_update(db: Database, query, body, allowed):
    update = {}
    for field in allowed:
        val = getattr(body, field, None)
        if val is not None:
            update[field] = val
    if body.email is not None:
        if _email_in_use(db, body.email, exclude_id=query["_id"]):
            raise BadRequest("Email already exists")
        update["email"] = body.email.lower()
    if body.password:
        update["password"] = hash_password(body.password)
    update["updated_at"] = now()
    return db["user"].find_one_and_update(query, {"$set": update}, return_document=ReturnDocument.AFTER)


@router.post("", status_code=201)
async def create_admin(body: AdminCreate, user=Depends(master_only), db: Database = Depends(get_db)):
    if _email_in_use(db, body.email):
        raise BadRequest("User with this email already exists")
    company = None
    if body.company_id:
        company = db["company"].find_one({"_id": oid(body.company_id), "is_active": True})
        if not company:
            raise NotFound("Company not found")
    admin = create_document(db, "user", {
        "name": body.name,
        "email": body.email.lower(),
        "password": hash_password(body.password),
        "role": "admin",
        "company": company["_id"] if company else None,
        "teams": [],
        "is_active": True,
    })
    if company:
        db["company"].update_one({"_id": company["_id"]}, {"$addToSet": {"employees": admin["_id"]}})
    return {"message": "Admin user created successfully", "user": serialize(admin)}


@router.post("/members", status_code=201)
async def create_member(body: MemberCreate, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    if _email_in_use(db, body.email):
        raise BadRequest("User with this email already exists")
    member = create_document(db, "user", {
        "name": body.name,
        "email": body.email.lower(),
        "password": hash_password(body.password),
        "role": body.role,
        "company": company_id,
        "teams": [],
        "is_active": True,
        **{f: getattr(body, f) for f in PROFILE_FIELDS},
    })
    db["company"].update_one({"_id": company_id}, {"$addToSet": {"employees": member["_id"]}})
    logger.info("Member %s (%s) created in company %s", member["email"], body.role, company_id)
    return {"message": "Member created successfully", "user": serialize(member)}


@router.get("")
async def list_users(user=Depends(get_current_user), db: Database = Depends(get_db)):
    if user["role"] == "masteradmin":
        users = get_documents(db, "user", {"role": "admin", "is_active": True}, sort=[("name", 1)])
    elif user["role"] == "admin":
        company_id = require_company(user)
        users = get_documents(
            db, "user",
            {"company": company_id, "role": {"$in": list(MEMBER_ROLES)}, "is_active": True},
            sort=[("name", 1)],
        )
    else:
        users = [user]
    return [public_profile(db, u) for u in users]


@router.put("/members/{user_id}")
async def update_member(user_id: str, body: MemberUpdate, user=Depends(admin_only), db: Database = Depends(get_db)):
    query = {"_id": oid(user_id), "company": require_company(user), "role": {"$in": list(MEMBER_ROLES)}}
    updated = _apply_update(db, query, body, ("name", "role") + PROFILE_FIELDS)
    if not updated:
        raise NotFound("Member not found")
    return {"message": "Member updated successfully", "user": serialize(updated)}


@router.put("/members/{user_id}/status")
async def set_member_status(user_id: str, body: StatusUpdate, user=Depends(admin_only), db: Database = Depends(get_db)):
    query = {"_id": oid(user_id), "company": require_company(user), "role": {"$in": list(MEMBER_ROLES)}}
    res = db["user"].update_one(query, {"$set": {"is_active": body.is_active, "updated_at": now()}})
    if res.matched_count == 0:
        raise NotFound("Member not found")
    return {"message": f"Member {'activated' if body.is_active else 'deactivated'} successfully"}


@router.delete("/members/{user_id}")
async def delete_member(user_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    company_id = require_company(user)
    member = db["user"].find_one_and_delete(
        {"_id": oid(user_id), "company": company_id, "role": {"$in": list(MEMBER_ROLES)}}
    )
    if not member:
        raise NotFound("Member not found")
    db["company"].update_one({"_id": company_id}, {"$pull": {"employees": member["_id"]}})
    db["team"].update_many({"members": member["_id"]}, {"$pull": {"members": member["_id"]}})
    db["session"].delete_many({"user_id": member["_id"]})
    return {"message": "Member deleted successfully"}


@router.put("/{user_id}")
async def update_admin(user_id: str, body: AdminUpdate, user=Depends(master_only), db: Database = Depends(get_db)):
    updated = _apply_update(db, {"_id": oid(user_id), "role": "admin"}, body, ("name",))
    if not updated:
        raise NotFound("Admin user not found")
    return {"message": "Admin user updated successfully", "user": serialize(updated)}


@router.put("/{user_id}/status")
async def set_admin_status(user_id: str, body: StatusUpdate, user=Depends(master_only), db: Database = Depends(get_db)):
    res = db["user"].update_one({"_id": oid(user_id), "role": "admin"}, {"$set": {"is_active": body.is_active, "updated_at": now()}})
    if res.matched_count == 0:
        raise NotFound("Admin user not found")
    return {"message": f"Admin user {'activated' if body.is_active else 'deactivated'} successfully"}


@router.delete("/{user_id}")
async def delete_admin(user_id: str, user=Depends(master_only), db: Database = Depends(get_db)):
    admin = db["user"].find_one_and_delete({"_id": oid(user_id), "role": "admin"})
    if not admin:
        raise NotFound("Admin user not found")
    if admin.get("company"):
        db["company"].update_one({"_id": admin["company"]}, {"$pull": {"employees": admin["_id"]}})
    db["session"].delete_many({"user_id": admin["_id"]})
    return {"message": "Admin user deleted successfully"}
