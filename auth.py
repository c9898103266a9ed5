import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from pymongo.database import Database

from config import Settings
from database import create_document, name_of, now, serialize
from errors import BadRequest, Forbidden, Unauthorized
from schemas import LoginRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


def verify_password(pw: str, hashed: str) -> bool:
    return secrets.compare_digest(hash_password(pw), hashed or "")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -----------------------------
# Sessions
# -----------------------------
def issue_session(db: Database, user_id, ttl_days: int) -> str:
    token = secrets.token_urlsafe(32)
    db["session"].insert_one({
        "token": token,
        "user_id": user_id,
        "created_at": now(),
        "expires_at": now() + timedelta(days=ttl_days),
    })
    return token


def resolve_token(db: Database, token: Optional[str]) -> Dict[str, Any]:
    """Return the active user behind a bearer token.

    The user document keeps its raw ObjectIds; ``company`` may be None for the
    top-level administrator and ``teams`` is always a list.
    """
    if not token:
        raise Unauthorized("No token, authorization denied")
    session = db["session"].find_one({"token": token})
    if not session:
        raise Unauthorized("Token is not valid")
    if session.get("expires_at") and _as_utc(session["expires_at"]) < now():
        raise Unauthorized("Session expired")
    user = db["user"].find_one({"_id": session["user_id"]})
    if not user or not user.get("is_active", False):
        raise Unauthorized("Token is not valid")
    user.setdefault("teams", [])
    user.setdefault("company", None)
    return user


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("No token, authorization denied")
    return resolve_token(db, authorization.split(" ", 1)[1].strip())


def require_roles(*roles: str):
    async def dependency(user=Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise Forbidden("Access denied. Insufficient permissions.")
        return user
    return dependency


def require_company(user: Dict[str, Any]):
    if not user.get("company"):
        raise BadRequest("User not associated with any company")
    return user["company"]


def public_profile(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    profile = serialize(user)
    profile["company"] = serialize(name_of(db, "company", user.get("company")))
    profile["teams"] = [serialize(t) for t in db["team"].find({"_id": {"$in": user.get("teams", [])}}, {"name": 1})]
    return profile


def ensure_master_admin(db: Database, settings: Settings) -> None:
    if not (settings.master_admin_email and settings.master_admin_password):
        return
    if db["user"].find_one({"role": "masteradmin"}):
        return
    create_document(db, "user", {
        "name": settings.master_admin_name,
        "email": settings.master_admin_email.lower(),
        "password": hash_password(settings.master_admin_password),
        "role": "masteradmin",
        "company": None,
        "teams": [],
        "is_active": True,
    })
    logger.info("Master admin %s created", settings.master_admin_email)


# -----------------------------
# Auth endpoints
# -----------------------------
@router.post("/login")
def login(body: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": body.email.lower(), "is_active": True})
    if not user or not verify_password(body.password, user.get("password")):
        raise Unauthorized("Invalid credentials")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now()}})
    token = issue_session(db, user["_id"], settings.session_ttl_days)
    logger.info("User %s logged in", user["email"])
    return {"token": token, "user": public_profile(db, user)}


@router.post("/logout")
async def logout(authorization: Optional[str] = Header(default=None), user=Depends(get_current_user), db: Database = Depends(get_db)):
    token = authorization.split(" ", 1)[1].strip()
    db["session"].delete_one({"token": token})
    return {"message": "Logged out"}


@router.get("/me")
async def me(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return public_profile(db, user)
