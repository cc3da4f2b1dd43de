import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import db, create_document, find_by_id, populate, serialize_doc, transaction
from inventory import InsufficientStockError, commit_stock, effective_price
from notifier import gift_status_notification
from routers.orders import USER_FIELDS, insufficient
from schemas import SURPRISE_STATUSES, OrderItem, SurpriseGift
from security import STAFF_ROLES, get_current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/surprise", tags=["surprise gifts"])

PACKABLE = ("Confirmed", "Paid")


class GiftLineIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class SurpriseGiftIn(BaseModel):
    recipient_name: str = Field(..., min_length=1)
    recipient_phone: str = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1)
    costume: str = Field("none", pattern="^(none|mickey|tomjerry|joker)$")
    suggestions: Optional[str] = None
    items: List[GiftLineIn] = Field(default_factory=list)
    scheduled_at: Optional[datetime] = None


class SurpriseStatusUpdate(BaseModel):
    status: str
    scheduled_at: Optional[datetime] = None
    payment_status: Optional[str] = None
    payment_id: Optional[str] = None


def gift_or_404(gift_id: str) -> dict:
    gift = find_by_id("surprise_gift", gift_id)
    if not gift:
        raise HTTPException(status_code=404, detail="Surprise gift not found")
    return gift


@router.post("", status_code=201)
async def create_surprise_gift(payload: SurpriseGiftIn, user: dict = Depends(get_current_user)):
    items = []
    for line in payload.items:
        product = find_by_id("product", line.product_id)
        if not product or product.get("status") != "active":
            raise HTTPException(status_code=400, detail=f"Product {line.product_id} is not available")
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=str(product["_id"]), name=product["name"], price=effective_price(product),
            quantity=line.quantity, image=images[0].get("url") if images else None,
        ))
    gift = SurpriseGift(
        user_id=str(user["_id"]),
        recipient_name=payload.recipient_name,
        recipient_phone=payload.recipient_phone,
        shipping_address=payload.shipping_address,
        costume=payload.costume,
        suggestions=payload.suggestions,
        items=items,
        total=round(sum(i.price * i.quantity for i in items), 2),
        scheduled_at=payload.scheduled_at,
    )
    gid = create_document("surprise_gift", gift)
    logger.info("Surprise gift %s requested by %s", gid, user["email"])
    return {"success": True, "gift": serialize_doc(find_by_id("surprise_gift", gid))}


@router.get("/my")
async def my_surprise_gifts(user: dict = Depends(get_current_user)):
    gifts = [serialize_doc(g) for g in db["surprise_gift"].find({"user_id": str(user["_id"])}).sort("created_at", -1)]
    return {"success": True, "gifts": gifts}


# Admin

@router.get("/admin/all")
async def all_surprise_gifts(status: Optional[str] = None, user: dict = Depends(require_roles(*STAFF_ROLES))):
    filt = {"status": status} if status else {}
    gifts = [serialize_doc(g) for g in db["surprise_gift"].find(filt).sort("created_at", -1)]
    populate(gifts, "user_id", "user", "user", USER_FIELDS)
    return {"success": True, "gifts": gifts}


@router.put("/admin/{gift_id}/status")
async def update_surprise_status(gift_id: str, payload: SurpriseStatusUpdate,
                                 user: dict = Depends(require_roles(*STAFF_ROLES))):
    gift = gift_or_404(gift_id)
    if payload.status not in SURPRISE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {', '.join(SURPRISE_STATUSES)}")
    if payload.status == "Packing":
        raise HTTPException(status_code=400, detail="Use start-packing to move a gift to Packing")
    if gift["status"] in ("Delivered", "Cancelled"):
        raise HTTPException(status_code=400, detail=f"Gift is already {gift['status']}")
    if payload.status == "OutForDelivery" and gift["status"] != "Packing":
        raise HTTPException(status_code=400, detail="Gift must be packed before it goes out for delivery")

    update = {"status": payload.status, "updated_at": datetime.utcnow()}
    for field in ("scheduled_at", "payment_status", "payment_id"):
        value = getattr(payload, field)
        if value is not None:
            update[field] = value
    if payload.status == "Delivered":
        update["delivered_at"] = datetime.utcnow()
    db["surprise_gift"].update_one({"_id": gift["_id"]}, {"$set": update})
    logger.info("Surprise gift %s: %s -> %s by %s", gift_id, gift["status"], payload.status, user["email"])
    gift_status_notification(gift["user_id"], gift_id, payload.status)
    return {"success": True, "gift": serialize_doc(find_by_id("surprise_gift", gift_id))}


@router.post("/admin/{gift_id}/start-packing")
async def start_packing_surprise(gift_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    gift = gift_or_404(gift_id)
    if gift["status"] not in PACKABLE:
        raise HTTPException(status_code=400, detail="Only Confirmed or Paid gifts can be packed")
    if not gift.get("items"):
        raise HTTPException(status_code=400, detail="Gift has no items to pack")

    lines = [{"product_id": i["product_id"], "quantity": i["quantity"]} for i in gift["items"]]
    now = datetime.utcnow()
    try:
        with transaction() as session:
            claimed = db["surprise_gift"].update_one(
                {"_id": gift["_id"], "status": gift["status"]},
                {"$set": {"status": "Packing", "packed_at": now, "updated_at": now}},
                session=session,
            )
            if not claimed.modified_count:
                raise HTTPException(status_code=400, detail="Only Confirmed or Paid gifts can be packed")
            try:
                result = commit_stock(lines, "surprisegift", gift_id=gift_id, session=session)
            except InsufficientStockError:
                if session is None:
                    db["surprise_gift"].update_one(
                        {"_id": gift["_id"], "status": "Packing"},
                        {"$set": {"status": gift["status"], "packed_at": None, "updated_at": datetime.utcnow()}},
                    )
                raise
    except InsufficientStockError as e:
        raise insufficient(e)
    gift_status_notification(gift["user_id"], gift_id, "Packing")
    return {"success": True, "gift": serialize_doc(find_by_id("surprise_gift", gift_id)), **result}
