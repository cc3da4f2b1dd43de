import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

import mailer
from collaboration import new_payment_link
from database import db, create_document, find_by_id, serialize_doc
from inventory import effective_price
from notifier import create_notification, frontend_link
from schemas import ContributionParticipant, GiftContribution
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gift", tags=["gift contributions"])


class ContributionIn(BaseModel):
    product_id: str
    participants: List[EmailStr] = Field(..., min_length=1, max_length=3)


def contribution_out(gift: dict, user: Optional[dict] = None) -> dict:
    """Only the creator and admins see the participants' payment links."""
    out = serialize_doc(gift)
    if user and (user.get("role") == "admin" or gift["created_by"] == str(user["_id"])):
        return out
    out["participants"] = [
        {"email": p["email"], "has_paid": p["has_paid"], "paid_at": p.get("paid_at"), "declined": p.get("declined", False)}
        for p in gift["participants"]
    ]
    return out


def _by_link(link: str) -> dict:
    gift = db["gift_contribution"].find_one({"participants.payment_link": link})
    if not gift:
        raise HTTPException(status_code=404, detail="Invalid payment link")
    return gift


def _ensure_open(gift: dict) -> None:
    if gift["status"] == "pending" and datetime.utcnow() > gift["deadline"]:
        db["gift_contribution"].update_one({"_id": gift["_id"], "status": "pending"},
                                           {"$set": {"status": "expired", "updated_at": datetime.utcnow()}})
        raise HTTPException(status_code=400, detail="This gift contribution has expired")
    if gift["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"This gift contribution is {gift['status']}")


def _open_link(gift: dict, link: str) -> dict:
    return {"_id": gift["_id"], "status": "pending",
            "participants": {"$elemMatch": {"payment_link": link, "has_paid": False, "declined": False}}}


@router.post("", status_code=201)
async def create_contribution(payload: ContributionIn, user: dict = Depends(get_current_user)):
    product = find_by_id("product", payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    emails = [str(e).lower() for e in payload.participants]
    if len(set(emails)) != len(emails):
        raise HTTPException(status_code=400, detail="Participant emails must be unique")

    price = effective_price(product)
    gift = GiftContribution(
        product_id=str(product["_id"]),
        product_name=product["name"],
        product_price=price,
        share=round(price / (len(emails) + 1), 2),
        created_by=str(user["_id"]),
        participants=[ContributionParticipant(email=e, payment_link=new_payment_link()) for e in emails],
    )
    gid = create_document("gift_contribution", gift)
    doc = find_by_id("gift_contribution", gid)
    for p in doc["participants"]:
        link = frontend_link(f"gift-payment/{p['payment_link']}")
        body = (f"<p>{user.get('first_name', '')} invited you to chip in for <strong>{product['name']}</strong>.</p>"
                f"<p>Your share is <strong>${doc['share']:.2f}</strong>.</p>"
                f"<p><a href=\"{link}\" style=\"color: #822be2;\">Contribute now</a></p>")
        mailer.send_quietly(p["email"], "You're invited to contribute to a gift",
                            html=mailer.layout("Gift Contribution", body))
    logger.info("Gift contribution %s created by %s", gid, user["email"])
    return {"success": True, "gift": contribution_out(doc, user)}


@router.get("")
async def my_contributions(user: dict = Depends(get_current_user)):
    gifts = db["gift_contribution"].find({"created_by": str(user["_id"])}).sort("created_at", -1)
    return {"success": True, "gifts": [contribution_out(g, user) for g in gifts]}


@router.post("/pay/{link}")
def pay_contribution(link: str):
    gift = _by_link(link)
    _ensure_open(gift)
    now = datetime.utcnow()
    result = db["gift_contribution"].update_one(
        _open_link(gift, link),
        {"$set": {"participants.$.has_paid": True, "participants.$.paid_at": now, "updated_at": now}},
    )
    if not result.modified_count:
        raise HTTPException(status_code=400, detail="Payment already processed")

    gift = find_by_id("gift_contribution", gift["_id"])
    if all(p["has_paid"] for p in gift["participants"]):
        completed = db["gift_contribution"].update_one({"_id": gift["_id"], "status": "pending"},
                                                       {"$set": {"status": "completed", "updated_at": now}})
        if completed.modified_count:
            gift["status"] = "completed"
            create_notification(gift["created_by"], "Gift Fully Funded",
                                f"Everyone has contributed to {gift['product_name']}.", type="gift",
                                related_id=str(gift["_id"]), related_model="GiftContribution")
    return {"success": True, "gift": contribution_out(gift)}


@router.post("/decline/{link}")
def decline_contribution(link: str):
    gift = _by_link(link)
    _ensure_open(gift)
    now = datetime.utcnow()
    result = db["gift_contribution"].update_one(
        _open_link(gift, link),
        {"$set": {"participants.$.declined": True, "status": "cancelled", "updated_at": now}},
    )
    if not result.modified_count:
        raise HTTPException(status_code=400, detail="You have already responded to this invitation")
    return {"success": True, "gift": contribution_out(find_by_id("gift_contribution", gift["_id"]))}


@router.get("/{gift_id}")
async def get_contribution(gift_id: str, user: dict = Depends(get_current_user)):
    gift = find_by_id("gift_contribution", gift_id)
    if not gift:
        raise HTTPException(status_code=404, detail="Gift contribution not found")
    invited = any(p["email"] == user["email"].lower() for p in gift["participants"])
    if not (invited or user.get("role") == "admin" or gift["created_by"] == str(user["_id"])):
        raise HTTPException(status_code=403, detail="Access denied")
    return {"success": True, "gift": contribution_out(gift, user)}
