import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from database import db, create_document, to_object_id
from schemas import User
from security import admin_create_user_limiter, hash_password, public_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["admin"])

STAFF_ROLES = ("admin", "inventory_manager", "delivery_staff")
ACTIVE_WINDOW = timedelta(minutes=5)
PASSWORD_RULE = re.compile(r"^(?=.*\d)(?=.*[^A-Za-z0-9]).{8,}$")


class AdminCreateUser(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    role: str
    phone: Optional[str] = None


class BulkAction(BaseModel):
    action: str
    user_ids: List[str] = Field(..., min_length=1)


def user_status(user: dict, now: Optional[datetime] = None) -> str:
    if user.get("is_blocked"):
        return "Blocked"
    now = now or datetime.utcnow()
    last = user.get("last_active_at")
    if last and now - last <= ACTIVE_WINDOW:
        return "Active"
    return "Inactive"


@router.post("", status_code=201, dependencies=[Depends(admin_create_user_limiter)])
async def create_user(payload: AdminCreateUser, request: Request, admin: dict = Depends(require_roles("admin"))):
    if payload.role not in STAFF_ROLES:
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(STAFF_ROLES)}")
    if not PASSWORD_RULE.match(payload.password):
        raise HTTPException(
            status_code=400,
            detail="Password must be at least 8 characters and contain at least one number and one special character",
        )
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="A user with this email already exists")

    user = User(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=email,
        hashed_password=hash_password(payload.password),
        phone=payload.phone,
        role=payload.role,
    )
    try:
        uid = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="A user with this email already exists")

    client = request.client.host if request.client else "unknown"
    logger.info("AUDIT admin %s created %s user %s (%s) from %s", admin["email"], payload.role, uid, email, client)
    created = db["user"].find_one({"_id": to_object_id(uid)})
    return {"success": True, "message": "User created successfully", "user": public_user(created)}


@router.get("/check-email/{email}")
async def check_email(email: str, admin: dict = Depends(require_roles("admin"))):
    return {"success": True, "exists": db["user"].count_documents({"email": email.lower()}) > 0}


@router.get("")
async def list_users(role: Optional[str] = None, status: Optional[str] = None, search: Optional[str] = None,
                     admin: dict = Depends(require_roles("admin"))):
    filt = {}
    if role:
        filt["role"] = role
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"first_name": pattern}, {"last_name": pattern}, {"email": pattern}]

    stats = {}
    pipeline = [{"$group": {
        "_id": "$user_id",
        "total_orders": {"$sum": 1},
        "total_spent": {"$sum": "$total"},
        "last_order_date": {"$max": "$ordered_at"},
    }}]
    for row in db["order"].aggregate(pipeline):
        stats[row["_id"]] = row

    now = datetime.utcnow()
    users = []
    for u in db["user"].find(filt).sort("created_at", -1):
        out = public_user(u)
        row = stats.get(out["id"], {})
        out["status"] = user_status(u, now)
        out["total_orders"] = row.get("total_orders", 0)
        out["total_spent"] = round(row.get("total_spent", 0) or 0, 2)
        out["last_order_date"] = row.get("last_order_date")
        if status and out["status"].lower() != status.lower():
            continue
        users.append(out)

    summary = {
        "total": len(users),
        "active": sum(1 for u in users if u["status"] == "Active"),
        "blocked": sum(1 for u in users if u["status"] == "Blocked"),
    }
    return {"success": True, "users": users, "stats": summary}


@router.post("/bulk")
async def bulk_action(payload: BulkAction, admin: dict = Depends(require_roles("admin"))):
    if payload.action not in ("activate", "deactivate", "delete"):
        raise HTTPException(status_code=400, detail="Action must be activate, deactivate or delete")
    if str(admin["_id"]) in payload.user_ids:
        raise HTTPException(status_code=400, detail="You cannot apply bulk actions to your own account")
    ids = [to_object_id(i) for i in payload.user_ids]
    if any(i is None for i in ids):
        raise HTTPException(status_code=400, detail="Invalid user id")

    if payload.action == "delete":
        affected = db["user"].delete_many({"_id": {"$in": ids}}).deleted_count
    else:
        blocked = payload.action == "deactivate"
        affected = db["user"].update_many(
            {"_id": {"$in": ids}}, {"$set": {"is_blocked": blocked, "updated_at": datetime.utcnow()}}
        ).modified_count
    logger.info("AUDIT admin %s bulk %s on %d users", admin["email"], payload.action, affected)
    return {"success": True, "action": payload.action, "affected": affected}
