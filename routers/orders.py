import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import db, create_document, find_by_id, populate, serialize_doc, transaction
from inventory import InsufficientStockError, commit_stock, effective_price
from notifier import create_order_status_notification, notify_user_by_id
from schemas import ORDER_STATUSES, Order, OrderItem, StatusChange
from security import STAFF_ROLES, get_current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

ALLOWED_TRANSITIONS = {
    "Pending": {"Processing", "Cancelled"},
    "Processing": {"Packing", "Cancelled"},
    "Packing": {"Shipped", "Cancelled"},
    "Shipped": {"Delivered"},
}

USER_FIELDS = {"first_name": 1, "last_name": 1, "email": 1, "phone": 1, "address": 1}


class OrderLineIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CreateOrderRequest(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    shipping_address: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = None


def order_lines(order: dict) -> List[dict]:
    return [{"product_id": i["product_id"], "quantity": i["quantity"]} for i in order.get("items", [])]


def order_or_404(order_id: str) -> dict:
    order = find_by_id("order", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def insufficient(e: InsufficientStockError) -> HTTPException:
    return HTTPException(status_code=400, detail={
        "message": "Insufficient stock for one or more items",
        "insufficient_stock_items": e.items,
    })


def start_packing(order: dict, user: dict, notes: Optional[str] = None) -> dict:
    """Commit stock for a Processing order and move it to Packing, all or nothing."""
    if order["status"] != "Processing":
        raise HTTPException(status_code=400, detail=f"Only Processing orders can be packed (order is {order['status']})")
    if order.get("collaborative_purchase_id"):
        raise HTTPException(status_code=400, detail="This order is packed through its collaborative purchase")

    now = datetime.utcnow()
    change = StatusChange(status="Packing", updated_by=str(user["_id"]), updated_at=now,
                          notes=notes or "Stock committed, order is being packed")
    try:
        with transaction() as session:
            # claim the order before touching stock so a second request cannot commit it again
            claimed = db["order"].update_one(
                {"_id": order["_id"], "status": "Processing"},
                {"$set": {"status": "Packing", "updated_by": str(user["_id"]), "updated_at": now},
                 "$push": {"status_history": change.model_dump()}},
                session=session,
            )
            if not claimed.modified_count:
                raise HTTPException(status_code=400, detail="Only Processing orders can be packed")
            try:
                result = commit_stock(order_lines(order), "orders", gift_id=str(order["_id"]), session=session)
            except InsufficientStockError:
                if session is None:
                    db["order"].update_one(
                        {"_id": order["_id"], "status": "Packing"},
                        {"$set": {"status": "Processing", "updated_at": datetime.utcnow()},
                         "$pop": {"status_history": 1}},
                    )
                raise
    except InsufficientStockError as e:
        raise insufficient(e)
    logger.info("Order %s moved to Packing by %s", order["_id"], user["email"])
    notify_user_by_id(order["user_id"], str(order["_id"]), "packing")
    return result


# Customer

@router.post("", status_code=201)
async def create_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user)):
    items = []
    for line in payload.items:
        product = find_by_id("product", line.product_id)
        if not product or product.get("status") != "active":
            raise HTTPException(status_code=400, detail=f"Product {line.product_id} is not available")
        if product.get("stock", 0) < line.quantity:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product['name']}")
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=str(product["_id"]),
            name=product["name"],
            price=effective_price(product),
            quantity=line.quantity,
            image=images[0].get("url") if images else None,
        ))
    total = round(sum(i.price * i.quantity for i in items), 2)
    order = Order(
        user_id=str(user["_id"]),
        items=items,
        total=total,
        status="Processing",
        shipping_address=payload.shipping_address or user.get("address"),
        status_history=[StatusChange(status="Processing", updated_by=str(user["_id"]), notes="Order placed")],
    )
    order_id = create_document("order", order)
    logger.info("Order %s placed by %s for %.2f", order_id, user["email"], total)
    create_order_status_notification(user, order_id, "processing")
    return {"success": True, "message": "Order created successfully", "order": serialize_doc(find_by_id("order", order_id))}


@router.get("/history")
async def order_history(user: dict = Depends(get_current_user)):
    orders = [serialize_doc(o) for o in db["order"].find({"user_id": str(user["_id"])}).sort("ordered_at", -1)]
    return {"success": True, "orders": orders}


# Staff

@router.get("/all")
async def all_orders(status: Optional[str] = None, user: dict = Depends(require_roles(*STAFF_ROLES))):
    filt = {"status": status} if status else {}
    orders = [serialize_doc(o) for o in db["order"].find(filt).sort("ordered_at", -1)]
    populate(orders, "user_id", "user", "user", USER_FIELDS)
    return {"success": True, "orders": orders}


@router.get("/{order_id}")
async def get_order(order_id: str, user: dict = Depends(get_current_user)):
    order = order_or_404(order_id)
    if order["user_id"] != str(user["_id"]) and user.get("role") not in STAFF_ROLES:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "order": serialize_doc(order)}


@router.post("/{order_id}/start-packing")
async def start_packing_order(order_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    result = start_packing(order_or_404(order_id), user)
    return {
        "success": True,
        "message": "Order moved to Packing",
        "order": serialize_doc(find_by_id("order", order_id)),
        **result,
    }


@router.put("/{order_id}/status")
async def update_order_status(order_id: str, payload: StatusUpdate, user: dict = Depends(require_roles(*STAFF_ROLES))):
    order = order_or_404(order_id)
    if payload.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    if payload.status not in ALLOWED_TRANSITIONS.get(order["status"], set()):
        raise HTTPException(status_code=400, detail=f"Cannot change status from {order['status']} to {payload.status}")

    if payload.status == "Packing":
        start_packing(order, user, notes=payload.notes)
        return {"success": True, "order": serialize_doc(find_by_id("order", order_id))}

    now = datetime.utcnow()
    update = {"status": payload.status, "updated_by": str(user["_id"]), "updated_at": now}
    if payload.tracking_number:
        update["tracking_number"] = payload.tracking_number
    if payload.status == "Delivered":
        update["delivered_at"] = now
    change = StatusChange(status=payload.status, updated_by=str(user["_id"]), updated_at=now, notes=payload.notes)
    db["order"].update_one({"_id": order["_id"]}, {"$set": update, "$push": {"status_history": change.model_dump()}})
    logger.info("Order %s: %s -> %s by %s", order_id, order["status"], payload.status, user["email"])
    notify_user_by_id(order["user_id"], order_id, payload.status)
    return {"success": True, "order": serialize_doc(find_by_id("order", order_id))}
