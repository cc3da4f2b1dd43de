"""
Collaborative purchases: a gift paid for in equal shares by its creator and up
to three invited participants, each paying through their own emailed link
before a three day deadline.
"""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

import mailer
import payments
from database import db, create_document, find_by_id, serialize_doc, to_object_id, transaction
from inventory import InsufficientStockError, commit_stock, effective_price
from notifier import create_notification, frontend_link, gift_status_notification, notify_user_by_id
from schemas import CollaborativeLine, CollaborativeParticipant, CollaborativePurchase, Order, OrderItem, StatusChange

logger = logging.getLogger(__name__)

SHIPPING_COST = 10.0
MAX_PARTICIPANTS = 3

# Admin-facing status names
ADMIN_STATUS_MAP = {
    "packing": "packing",
    "out for delivery": "outfordelivery",
    "outfordelivery": "outfordelivery",
    "delivered": "delivered",
}


def new_payment_link() -> str:
    return secrets.token_hex(32)


def share_for(total: float, participant_count: int) -> float:
    return round(total / (participant_count + 1), 2)


def lines_of(purchase: dict) -> List[Dict[str, Any]]:
    if purchase.get("is_multi_product"):
        return [{"product_id": p["product_id"], "quantity": p["quantity"]} for p in purchase.get("products", [])]
    return [{"product_id": purchase["product_id"], "quantity": purchase.get("quantity", 1)}]


def _active_product(product_id: str) -> dict:
    product = find_by_id("product", product_id)
    if not product:
        raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
    if product.get("status") != "active":
        raise HTTPException(status_code=400, detail=f"{product.get('name')} is not available")
    return product


def create_purchase(creator: dict, items: List[Dict[str, Any]], emails: List[str]) -> dict:
    if not items:
        raise HTTPException(status_code=400, detail="At least one product is required")
    emails = [e.strip().lower() for e in emails if e and e.strip()]
    if not 1 <= len(emails) <= MAX_PARTICIPANTS:
        raise HTTPException(status_code=400, detail=f"Between 1 and {MAX_PARTICIPANTS} participants are required")
    if len(set(emails)) != len(emails):
        raise HTTPException(status_code=400, detail="Participant emails must be unique")
    if creator["email"].lower() in emails:
        raise HTTPException(status_code=400, detail="You cannot invite yourself")

    lines = []
    for item in items:
        product = _active_product(item["product_id"])
        quantity = int(item.get("quantity", 1))
        if product.get("stock", 0) < quantity:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product['name']}")
        price = effective_price(product)
        lines.append(CollaborativeLine(
            product_id=str(product["_id"]), product_name=product["name"], product_price=price,
            quantity=quantity, subtotal=round(price * quantity, 2),
        ))

    subtotal = sum(line.subtotal for line in lines)
    total = round(subtotal + SHIPPING_COST, 2)
    participants = [CollaborativeParticipant(email=e, payment_link=new_payment_link()) for e in emails]
    multi = len(lines) > 1
    purchase = CollaborativePurchase(
        product_id=None if multi else lines[0].product_id,
        product_name=None if multi else lines[0].product_name,
        product_price=None if multi else lines[0].product_price,
        quantity=1 if multi else lines[0].quantity,
        products=lines if multi else [],
        is_multi_product=multi,
        total_amount=total,
        share_amount=share_for(total, len(participants)),
        created_by=str(creator["_id"]),
        participants=participants,
    )
    pid = create_document("collaborative_purchase", purchase)
    doc = db["collaborative_purchase"].find_one({"_id": to_object_id(pid)})
    logger.info("Collaborative purchase %s created by %s for %.2f", pid, creator["email"], total)

    for participant in doc["participants"]:
        send_invitation(doc, participant, creator)
    return doc


def send_invitation(purchase: dict, participant: dict, creator: dict) -> bool:
    link = frontend_link(f"collaborative-payment/{participant['payment_link']}")
    title = purchase.get("product_name") or f"{len(purchase.get('products', []))} gifts"
    body = (
        f"<p>{creator.get('first_name', '')} {creator.get('last_name', '')} invited you to share a gift: "
        f"<strong>{title}</strong>.</p>"
        f"<p>Your share is <strong>${purchase['share_amount']:.2f}</strong>. "
        f"Please pay before {purchase['deadline'].strftime('%Y-%m-%d %H:%M')} UTC.</p>"
        f"<p><a href=\"{link}\" style=\"color: #822be2;\">Pay your share</a></p>"
    )
    return mailer.send_quietly(participant["email"], "You're invited to a collaborative gift!",
                               html=mailer.layout("Collaborative Gift Invitation", body))


def find_by_link(link: str) -> dict:
    purchase = db["collaborative_purchase"].find_one({"participants.payment_link": link})
    if not purchase:
        raise HTTPException(status_code=404, detail="Invalid payment link")
    return purchase


def participant_for(purchase: dict, link: str) -> dict:
    for participant in purchase["participants"]:
        if participant["payment_link"] == link:
            return participant
    raise HTTPException(status_code=404, detail="Participant not found")


def time_remaining(purchase: dict) -> int:
    return max(0, int((purchase["deadline"] - datetime.utcnow()).total_seconds()))


def _set(purchase: dict, update: Dict[str, Any], expected_status: Optional[str] = None, session=None) -> bool:
    """Apply ``update`` to the stored purchase, only while it still has ``expected_status``."""
    update = {**update, "updated_at": datetime.utcnow()}
    filt: Dict[str, Any] = {"_id": purchase["_id"]}
    if expected_status is not None:
        filt["status"] = expected_status
    result = db["collaborative_purchase"].update_one(filt, {"$set": update}, session=session)
    if not result.modified_count:
        return False
    purchase.update(update)
    return True


def _reload(purchase: dict) -> dict:
    return db["collaborative_purchase"].find_one({"_id": purchase["_id"]})


def _open_link(purchase: dict, link: str) -> Dict[str, Any]:
    return {"_id": purchase["_id"], "status": "pending",
            "participants": {"$elemMatch": {"payment_link": link, "payment_status": "pending"}}}


def _expire_if_overdue(purchase: dict) -> bool:
    if purchase["status"] == "pending" and datetime.utcnow() > purchase["deadline"]:
        _set(purchase, {"status": "expired"}, expected_status="pending")
        return True
    return False


def process_payment(link: str, payment_intent_id: Optional[str] = None) -> dict:
    purchase = find_by_link(link)
    if _expire_if_overdue(purchase):
        raise HTTPException(status_code=400, detail="This collaborative purchase has expired")
    if purchase["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"This collaborative purchase is {purchase['status']}")
    participant = participant_for(purchase, link)

    now = datetime.utcnow()
    result = db["collaborative_purchase"].update_one(_open_link(purchase, link), {"$set": {
        "participants.$.payment_status": "paid",
        "participants.$.paid_at": now,
        "participants.$.payment_intent_id": payment_intent_id,
        "updated_at": now,
    }})
    if not result.modified_count:
        raise HTTPException(status_code=400, detail="Payment already processed")
    logger.info("Participant %s paid for collaborative purchase %s", participant["email"], purchase["_id"])

    # concurrent payers each re-read; _complete lets only one of them create the order
    purchase = _reload(purchase)
    if all(p["payment_status"] == "paid" for p in purchase["participants"]):
        _complete(purchase)
    return purchase


def _complete(purchase: dict) -> bool:
    items = []
    if purchase.get("is_multi_product"):
        for line in purchase["products"]:
            items.append(OrderItem(product_id=line["product_id"], name=line["product_name"],
                                   price=line["product_price"], quantity=line["quantity"]))
    else:
        items.append(OrderItem(product_id=purchase["product_id"], name=purchase["product_name"],
                               price=purchase["product_price"], quantity=purchase.get("quantity", 1)))
    order = Order(
        user_id=purchase["created_by"],
        items=items,
        total=purchase["total_amount"],
        status="Processing",
        status_history=[StatusChange(status="Processing", notes="All collaborative payments received")],
        collaborative_purchase_id=str(purchase["_id"]),
    )
    with transaction() as session:
        if not _set(purchase, {"status": "completed", "completed_at": datetime.utcnow()},
                    expected_status="pending", session=session):
            return False
        order_id = create_document("order", order, session=session)
        _set(purchase, {"order_id": order_id}, session=session)
    logger.info("Collaborative purchase %s completed, order %s", purchase["_id"], order_id)
    create_notification(
        purchase["created_by"], "Collaborative Gift Fully Funded",
        "Everyone has paid their share. Your gift order is now being processed.",
        type="gift", related_id=str(purchase["_id"]), related_model="CollaborativePurchase", priority="high",
    )
    return True


def refund_paid_participants(purchase: dict, statuses=("paid",)) -> Dict[str, List[str]]:
    """Refund every participant in ``statuses``.

    A failed refund leaves the participant ``refund_failed`` with the provider
    error, so staff can retry it later.
    """
    outcome: Dict[str, List[str]] = {"refunded": [], "refund_failed": []}
    for participant in purchase["participants"]:
        if participant["payment_status"] not in statuses:
            continue
        try:
            refund_id = payments.refund_payment(participant.get("payment_intent_id"))
        except payments.PaymentError as e:
            logger.error("Refund failed for %s on purchase %s: %s", participant["email"], purchase["_id"], e)
            update = {"payment_status": "refund_failed", "refund_error": str(e)}
            outcome["refund_failed"].append(participant["email"])
        else:
            update = {"payment_status": "refunded", "refund_id": refund_id, "refund_error": None}
            outcome["refunded"].append(participant["email"])
            logger.info("Refunded %s for purchase %s (%s)", participant["email"], purchase["_id"], refund_id)
        db["collaborative_purchase"].update_one(
            {"_id": purchase["_id"], "participants.payment_link": participant["payment_link"]},
            {"$set": {f"participants.$.{k}": v for k, v in update.items()}},
        )
        participant.update(update)
    return outcome


def _settle_refunds(purchase: dict, outcome: Dict[str, List[str]]) -> None:
    update: Dict[str, Any] = {"refund_pending": bool(outcome["refund_failed"])}
    if outcome["refunded"]:
        update["status"] = "refunded"
    _set(purchase, update)


def decline(link: str) -> dict:
    purchase = find_by_link(link)
    if purchase["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"This collaborative purchase is {purchase['status']}")
    participant = participant_for(purchase, link)

    now = datetime.utcnow()
    result = db["collaborative_purchase"].update_one(_open_link(purchase, link), {"$set": {
        "participants.$.payment_status": "declined",
        "status": "cancelled",
        "cancelled_at": now,
        "updated_at": now,
    }})
    if not result.modified_count:
        raise HTTPException(status_code=400, detail="You have already responded to this invitation")

    purchase = _reload(purchase)
    _settle_refunds(purchase, refund_paid_participants(purchase))
    create_notification(
        purchase["created_by"], "Collaborative Gift Declined",
        f"{participant['email']} declined your collaborative gift, so it has been cancelled.",
        type="gift", related_id=str(purchase["_id"]), related_model="CollaborativePurchase",
    )
    return purchase


def cancel(purchase_id: str, user: dict) -> dict:
    purchase = find_by_id("collaborative_purchase", purchase_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Collaborative purchase not found")
    if purchase["created_by"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Only the creator can cancel this purchase")
    if purchase["status"] not in ("pending", "completed"):
        raise HTTPException(status_code=400, detail=f"Cannot cancel a {purchase['status']} purchase")

    now = datetime.utcnow()
    with transaction() as session:
        if not _set(purchase, {"status": "cancelled", "cancelled_at": now},
                    expected_status=purchase["status"], session=session):
            raise HTTPException(status_code=409, detail="Purchase was updated meanwhile, please retry")
        if purchase.get("order_id"):
            db["order"].update_one(
                {"_id": to_object_id(purchase["order_id"])},
                {"$set": {"status": "Cancelled", "updated_at": now},
                 "$push": {"status_history": StatusChange(status="Cancelled", updated_by=str(user["_id"]),
                                                          notes="Collaborative purchase cancelled").model_dump()}},
                session=session,
            )
    purchase = _reload(purchase)
    _settle_refunds(purchase, refund_paid_participants(purchase))
    logger.info("Collaborative purchase %s cancelled by creator (%s)", purchase_id, purchase["status"])
    return purchase


def retry_refunds(purchase_id: str) -> Dict[str, Any]:
    purchase = find_by_id("collaborative_purchase", purchase_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Collaborative purchase not found")
    if not purchase.get("refund_pending"):
        raise HTTPException(status_code=400, detail="No failed refunds to retry")
    outcome = refund_paid_participants(purchase, statuses=("refund_failed",))
    _settle_refunds(purchase, outcome)
    return {"purchase": purchase, **outcome}


def expire_overdue_purchases(now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    result = db["collaborative_purchase"].update_many(
        {"status": "pending", "deadline": {"$lt": now}},
        {"$set": {"status": "expired", "updated_at": now}},
    )
    if result.modified_count:
        logger.info("Expired %d overdue collaborative purchases", result.modified_count)
    return result.modified_count


def start_packing(purchase_id: str, user: dict) -> dict:
    purchase = find_by_id("collaborative_purchase", purchase_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Collaborative purchase not found")
    if purchase["status"] != "completed":
        raise HTTPException(status_code=400, detail="Only completed purchases can be packed")

    now = datetime.utcnow()
    with transaction() as session:
        # claim before touching stock so a second request cannot commit it again
        if not _set(purchase, {"status": "packing", "packed_at": now}, expected_status="completed", session=session):
            raise HTTPException(status_code=400, detail="Only completed purchases can be packed")
        try:
            result = commit_stock(lines_of(purchase), "collaborative", gift_id=str(purchase["_id"]), session=session)
        except InsufficientStockError:
            if session is None:
                _set(purchase, {"status": "completed", "packed_at": None}, expected_status="packing")
            raise
        if purchase.get("order_id"):
            db["order"].update_one(
                {"_id": to_object_id(purchase["order_id"])},
                {"$set": {"status": "Packing", "updated_by": str(user["_id"]), "updated_at": now},
                 "$push": {"status_history": StatusChange(status="Packing", updated_by=str(user["_id"]),
                                                          notes="Packed through collaborative purchase").model_dump()}},
                session=session,
            )
    if purchase.get("order_id"):
        notify_user_by_id(purchase["created_by"], purchase["order_id"], "packing")
    return {"purchase": purchase, **result}


def update_status(purchase_id: str, status: str, user: dict, scheduled_at: Optional[datetime] = None) -> dict:
    target = ADMIN_STATUS_MAP.get(status.lower())
    if not target:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    purchase = find_by_id("collaborative_purchase", purchase_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Collaborative purchase not found")
    if target == "packing":
        return start_packing(purchase_id, user)["purchase"]
    if target == "outfordelivery" and purchase["status"] != "packing":
        raise HTTPException(status_code=400, detail="Purchase must be packed before delivery")
    if target == "delivered" and purchase["status"] != "outfordelivery":
        raise HTTPException(status_code=400, detail="Purchase must be out for delivery first")

    update: Dict[str, Any] = {"status": target}
    if scheduled_at:
        update["scheduled_at"] = scheduled_at
    if target == "delivered":
        update["delivered_at"] = datetime.utcnow()
        update["delivery_staff_id"] = str(user["_id"])
    if not _set(purchase, update, expected_status=purchase["status"]):
        raise HTTPException(status_code=409, detail="Purchase was updated meanwhile, please retry")
    _sync_order(purchase, target, user)
    gift_status_notification(purchase["created_by"], str(purchase["_id"]), target, label="collaborative gift")
    return purchase


def _sync_order(purchase: dict, target: str, user: dict) -> None:
    order_status = {"outfordelivery": "Shipped", "delivered": "Delivered"}.get(target)
    if not order_status or not purchase.get("order_id"):
        return
    update = {"status": order_status, "updated_by": str(user["_id"]), "updated_at": datetime.utcnow()}
    if order_status == "Delivered":
        update["delivered_at"] = datetime.utcnow()
        update["delivery_staff_id"] = str(user["_id"])
    db["order"].update_one(
        {"_id": to_object_id(purchase["order_id"])},
        {"$set": update, "$push": {"status_history": StatusChange(status=order_status, updated_by=str(user["_id"])).model_dump()}},
    )


def visible_to(purchase: dict, user: dict) -> bool:
    if user.get("role") in ("admin", "inventory_manager"):
        return True
    if purchase["created_by"] == str(user["_id"]):
        return True
    return any(p["email"] == user["email"].lower() for p in purchase["participants"])


def public_view(purchase: dict) -> dict:
    """Purchase as seen through a payment link: no other participants' links."""
    out = serialize_doc(purchase)
    out["participants"] = [
        {"email": p["email"], "payment_status": p["payment_status"], "paid_at": p.get("paid_at")}
        for p in purchase["participants"]
    ]
    out["time_remaining"] = time_remaining(purchase)
    return out
