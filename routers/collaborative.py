from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

import collaboration
from database import db, find_by_id, populate, serialize_doc
from inventory import InsufficientStockError
from routers.orders import USER_FIELDS, insufficient
from security import STAFF_ROLES, get_current_user, require_roles

router = APIRouter(prefix="/api/collaborative-purchases", tags=["collaborative purchases"])


class LineIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CollaborativeIn(BaseModel):
    product_id: Optional[str] = None
    quantity: int = Field(1, ge=1)
    products: List[LineIn] = Field(default_factory=list)
    participants: List[EmailStr] = Field(..., min_length=1, max_length=3)


class PaymentIn(BaseModel):
    payment_intent_id: Optional[str] = None


class AdminStatusIn(BaseModel):
    status: str
    scheduled_at: Optional[datetime] = None


def purchase_out(purchase: dict) -> dict:
    out = serialize_doc(purchase)
    out["time_remaining"] = collaboration.time_remaining(purchase)
    return out


def purchase_for(purchase: dict, user: dict) -> dict:
    """Invited participants get the link-free view; creator and staff see everything."""
    if user.get("role") in STAFF_ROLES or purchase["created_by"] == str(user["_id"]):
        return purchase_out(purchase)
    return collaboration.public_view(purchase)


def purchase_or_404(purchase_id: str) -> dict:
    purchase = find_by_id("collaborative_purchase", purchase_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Collaborative purchase not found")
    return purchase


@router.post("", status_code=201)
async def create_collaborative_purchase(payload: CollaborativeIn, user: dict = Depends(get_current_user)):
    if payload.products:
        items = [line.model_dump() for line in payload.products]
    elif payload.product_id:
        items = [{"product_id": payload.product_id, "quantity": payload.quantity}]
    else:
        raise HTTPException(status_code=400, detail="Provide product_id or products")
    purchase = collaboration.create_purchase(user, items, [str(e) for e in payload.participants])
    return {"success": True, "message": "Collaborative purchase created", "purchase": purchase_out(purchase)}


@router.get("")
async def my_collaborative_purchases(user: dict = Depends(get_current_user)):
    filt = {"$or": [{"created_by": str(user["_id"])}, {"participants.email": user["email"].lower()}]}
    purchases = [purchase_for(p, user) for p in db["collaborative_purchase"].find(filt).sort("created_at", -1)]
    return {"success": True, "purchases": purchases}


# Payment links are public

@router.get("/payment/{link}")
def purchase_by_link(link: str):
    purchase = collaboration.find_by_link(link)
    participant = collaboration.participant_for(purchase, link)
    return {
        "success": True,
        "purchase": collaboration.public_view(purchase),
        "participant": {"email": participant["email"], "payment_status": participant["payment_status"]},
    }


@router.post("/payment/{link}/pay")
def pay_share(link: str, payload: Optional[PaymentIn] = None):
    purchase = collaboration.process_payment(link, payload.payment_intent_id if payload else None)
    return {"success": True, "message": "Payment recorded", "purchase": collaboration.public_view(purchase)}


@router.post("/payment/{link}/decline")
def decline_share(link: str):
    purchase = collaboration.decline(link)
    return {"success": True, "message": "Invitation declined", "purchase": collaboration.public_view(purchase)}


# Admin

@router.get("/admin/all")
async def all_collaborative_purchases(status: Optional[str] = None, user: dict = Depends(require_roles(*STAFF_ROLES))):
    filt = {"status": status} if status else {}
    purchases = [purchase_out(p) for p in db["collaborative_purchase"].find(filt).sort("created_at", -1)]
    populate(purchases, "created_by", "user", "creator", USER_FIELDS)
    return {"success": True, "purchases": purchases}


@router.post("/admin/{purchase_id}/start-packing")
async def start_packing_collaborative(purchase_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    try:
        result = collaboration.start_packing(purchase_id, user)
    except InsufficientStockError as e:
        raise insufficient(e)
    return {"success": True, "purchase": purchase_out(result.pop("purchase")), **result}


@router.put("/admin/{purchase_id}/status")
async def update_collaborative_status(purchase_id: str, payload: AdminStatusIn,
                                      user: dict = Depends(require_roles(*STAFF_ROLES))):
    try:
        purchase = collaboration.update_status(purchase_id, payload.status, user, scheduled_at=payload.scheduled_at)
    except InsufficientStockError as e:
        raise insufficient(e)
    return {"success": True, "purchase": purchase_out(purchase)}


@router.post("/admin/{purchase_id}/retry-refunds")
async def retry_collaborative_refunds(purchase_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    result = collaboration.retry_refunds(purchase_id)
    return {"success": not result["refund_failed"], "purchase": purchase_out(result.pop("purchase")), **result}


@router.get("/admin/{purchase_id}/print")
async def print_collaborative(purchase_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    purchase = purchase_or_404(purchase_id)
    creator = find_by_id("user", purchase["created_by"]) or {}
    if purchase.get("is_multi_product"):
        lines = [{"name": p["product_name"], "quantity": p["quantity"], "price": p["product_price"],
                  "subtotal": p["subtotal"]} for p in purchase["products"]]
    else:
        lines = [{"name": purchase["product_name"], "quantity": purchase.get("quantity", 1),
                  "price": purchase["product_price"],
                  "subtotal": round(purchase["product_price"] * purchase.get("quantity", 1), 2)}]
    return {"success": True, "print": {
        "reference": str(purchase["_id"])[-8:].upper(),
        "status": purchase["status"],
        "customer": {
            "name": f"{creator.get('first_name', '')} {creator.get('last_name', '')}".strip(),
            "email": creator.get("email"),
            "phone": creator.get("phone"),
            "address": creator.get("address"),
        },
        "items": lines,
        "shipping": collaboration.SHIPPING_COST,
        "total": purchase["total_amount"],
        "participants": [{"email": p["email"], "payment_status": p["payment_status"]} for p in purchase["participants"]],
        "scheduled_at": purchase.get("scheduled_at"),
        "printed_at": datetime.utcnow(),
    }}


@router.get("/{purchase_id}")
async def get_collaborative_purchase(purchase_id: str, user: dict = Depends(get_current_user)):
    purchase = purchase_or_404(purchase_id)
    if not collaboration.visible_to(purchase, user):
        raise HTTPException(status_code=403, detail="Access denied")
    return {"success": True, "purchase": purchase_for(purchase, user)}


@router.post("/{purchase_id}/cancel")
async def cancel_collaborative_purchase(purchase_id: str, user: dict = Depends(get_current_user)):
    purchase = collaboration.cancel(purchase_id, user)
    return {"success": True, "message": f"Purchase {purchase['status']}", "purchase": purchase_out(purchase)}
