import logging
import re
from datetime import datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import collaboration
from database import db, find_by_id, populate, serialize_doc
from notifier import gift_status_notification, notify_user_by_id
from schemas import StatusChange
from security import public_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/delivery", tags=["delivery"])
staff = require_roles("delivery_staff")

USER_FIELDS = {"first_name": 1, "last_name": 1, "email": 1, "phone": 1, "address": 1}
DELIVERY_ORDER_STATUSES = ("Shipped", "Delivered")


class DeliveryUpdate(BaseModel):
    status: Optional[str] = None
    delivery_notes: Optional[str] = None
    tracking_number: Optional[str] = None


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None


def start_of_today() -> datetime:
    return datetime.combine(datetime.utcnow().date(), time.min)


# Orders

@router.get("/orders")
async def delivery_orders(status: Optional[str] = None, user: dict = Depends(staff)):
    if status and status not in DELIVERY_ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Status must be Shipped or Delivered")
    filt = {"status": status} if status else {"status": {"$in": list(DELIVERY_ORDER_STATUSES)}}
    orders = [serialize_doc(o) for o in db["order"].find(filt).sort("updated_at", -1)]
    populate(orders, "user_id", "user", "user", USER_FIELDS)
    return {"success": True, "orders": orders}


@router.get("/orders/search")
async def search_orders(q: str, user: dict = Depends(staff)):
    pattern = {"$regex": re.escape(q), "$options": "i"}
    user_ids = [str(u["_id"]) for u in db["user"].find(
        {"$or": [{"first_name": pattern}, {"last_name": pattern}, {"email": pattern}]}, {"_id": 1})]
    orders = []
    for o in db["order"].find({"status": {"$in": list(DELIVERY_ORDER_STATUSES)}}).sort("updated_at", -1):
        if str(o["_id"]).lower().endswith(q.lower()) or o["user_id"] in user_ids:
            orders.append(serialize_doc(o))
    populate(orders, "user_id", "user", "user", USER_FIELDS)
    return {"success": True, "orders": orders}


@router.get("/orders/{order_id}")
async def delivery_order_details(order_id: str, user: dict = Depends(staff)):
    order = find_by_id("order", order_id)
    if not order or order["status"] not in DELIVERY_ORDER_STATUSES:
        raise HTTPException(status_code=404, detail="Order not found")
    out = populate([serialize_doc(order)], "user_id", "user", "user", USER_FIELDS)[0]
    return {"success": True, "order": out}


@router.put("/orders/{order_id}/status")
async def delivery_update_order(order_id: str, payload: DeliveryUpdate, user: dict = Depends(staff)):
    order = find_by_id("order", order_id)
    if not order or order["status"] not in DELIVERY_ORDER_STATUSES:
        raise HTTPException(status_code=404, detail="Order not found")

    now = datetime.utcnow()
    update = {"updated_by": str(user["_id"]), "updated_at": now}
    if payload.delivery_notes is not None:
        update["delivery_notes"] = payload.delivery_notes
    if payload.tracking_number is not None:
        update["tracking_number"] = payload.tracking_number
    ops = {"$set": update}

    delivered = False
    if payload.status and payload.status != order["status"]:
        if not (order["status"] == "Shipped" and payload.status == "Delivered"):
            raise HTTPException(status_code=400, detail="Delivery staff can only mark shipped orders as Delivered")
        update.update(status="Delivered", delivered_at=now, delivery_staff_id=str(user["_id"]))
        ops["$push"] = {"status_history": StatusChange(
            status="Delivered", updated_by=str(user["_id"]), updated_at=now, notes=payload.delivery_notes,
        ).model_dump()}
        delivered = True

    db["order"].update_one({"_id": order["_id"]}, ops)
    if delivered:
        logger.info("Order %s delivered by %s", order_id, user["email"])
        notify_user_by_id(order["user_id"], order_id, "delivered")
    return {"success": True, "order": serialize_doc(find_by_id("order", order_id))}


# Profile & stats

@router.get("/profile")
async def delivery_profile(user: dict = Depends(staff)):
    return {"success": True, "profile": public_user(user)}


@router.put("/profile")
async def update_delivery_profile(payload: ProfileUpdate, user: dict = Depends(staff)):
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = datetime.utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return {"success": True, "profile": public_user(db["user"].find_one({"_id": user["_id"]}))}


@router.get("/stats")
async def delivery_stats(user: dict = Depends(staff)):
    today = start_of_today()
    orders = db["order"]
    return {"success": True, "stats": {
        "ready_for_delivery": orders.count_documents({"status": "Shipped"}),
        "delivered_today": orders.count_documents({"status": "Delivered", "delivered_at": {"$gte": today}}),
        "delivered_by_me": orders.count_documents({"status": "Delivered", "delivery_staff_id": str(user["_id"])}),
        "total_delivered": orders.count_documents({"status": "Delivered"}),
    }}


# Surprise gifts

@router.get("/surprise-gifts")
async def delivery_surprise_gifts(status: Optional[str] = None, user: dict = Depends(staff)):
    statuses = [status] if status else ["OutForDelivery", "Delivered"]
    gifts = [serialize_doc(g) for g in db["surprise_gift"].find({"status": {"$in": statuses}}).sort("scheduled_at", 1)]
    populate(gifts, "user_id", "user", "user", USER_FIELDS)
    return {"success": True, "gifts": gifts}


@router.get("/surprise-gifts/stats")
async def delivery_surprise_stats(user: dict = Depends(staff)):
    gifts = db["surprise_gift"]
    return {"success": True, "stats": {
        "out_for_delivery": gifts.count_documents({"status": "OutForDelivery"}),
        "delivered_today": gifts.count_documents({"status": "Delivered", "delivered_at": {"$gte": start_of_today()}}),
        "delivered_by_me": gifts.count_documents({"status": "Delivered", "delivery_staff_id": str(user["_id"])}),
        "total_delivered": gifts.count_documents({"status": "Delivered"}),
    }}


@router.put("/surprise-gifts/{gift_id}/status")
async def delivery_update_surprise(gift_id: str, payload: DeliveryUpdate, user: dict = Depends(staff)):
    gift = find_by_id("surprise_gift", gift_id)
    if not gift:
        raise HTTPException(status_code=404, detail="Surprise gift not found")
    if payload.status != "Delivered" or gift["status"] != "OutForDelivery":
        raise HTTPException(status_code=400, detail="Only gifts out for delivery can be marked Delivered")
    now = datetime.utcnow()
    db["surprise_gift"].update_one({"_id": gift["_id"]}, {"$set": {
        "status": "Delivered", "delivered_at": now, "delivery_staff_id": str(user["_id"]), "updated_at": now,
    }})
    logger.info("Surprise gift %s delivered by %s", gift_id, user["email"])
    gift_status_notification(gift["user_id"], gift_id, "Delivered")
    return {"success": True, "gift": serialize_doc(find_by_id("surprise_gift", gift_id))}


# Collaborative purchases

@router.get("/collaborative-purchases")
async def delivery_collaborative(status: Optional[str] = None, user: dict = Depends(staff)):
    statuses = [status] if status else ["outfordelivery", "delivered"]
    purchases = [serialize_doc(p) for p in db["collaborative_purchase"].find({"status": {"$in": statuses}})
                 .sort("updated_at", -1)]
    populate(purchases, "created_by", "user", "creator", USER_FIELDS)
    return {"success": True, "purchases": purchases}


@router.get("/collaborative-purchases/stats")
async def delivery_collaborative_stats(user: dict = Depends(staff)):
    purchases = db["collaborative_purchase"]
    return {"success": True, "stats": {
        "out_for_delivery": purchases.count_documents({"status": "outfordelivery"}),
        "delivered_today": purchases.count_documents({"status": "delivered", "delivered_at": {"$gte": start_of_today()}}),
        "delivered_by_me": purchases.count_documents({"status": "delivered", "delivery_staff_id": str(user["_id"])}),
        "total_delivered": purchases.count_documents({"status": "delivered"}),
    }}


@router.put("/collaborative-purchases/{purchase_id}/deliver")
async def delivery_mark_collaborative(purchase_id: str, user: dict = Depends(staff)):
    purchase = collaboration.update_status(purchase_id, "delivered", user)
    return {"success": True, "purchase": serialize_doc(purchase)}
