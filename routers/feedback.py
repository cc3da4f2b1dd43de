import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from pymongo.errors import DuplicateKeyError

from database import db, create_document, find_by_id, populate, serialize_doc
from errors import invalid
from schemas import Feedback
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

REVIEWABLE_STATUSES = ("Processing", "Shipped", "Delivered")
EDIT_WINDOW = timedelta(hours=24)


class FeedbackIn(BaseModel):
    product_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = Field(default_factory=list)


class FeedbackUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)
    images: Optional[List[str]] = None


class SummaryRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)


def rating_stats(product_id: str) -> Dict:
    pipeline = [
        {"$match": {"product_id": product_id, "status": "active"}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ]
    distribution = {str(star): 0 for star in range(1, 6)}
    total = 0
    weighted = 0
    for row in db["feedback"].aggregate(pipeline):
        distribution[str(row["_id"])] = row["count"]
        total += row["count"]
        weighted += row["_id"] * row["count"]
    return {
        "average_rating": round(weighted / total, 1) if total else 0,
        "total_feedbacks": total,
        "rating_distribution": distribution,
    }


def can_edit(feedback: dict, now: Optional[datetime] = None) -> bool:
    return (now or datetime.utcnow()) - feedback["created_at"] <= EDIT_WINDOW


def eligible_orders(user: dict, product_id: str) -> List[dict]:
    return list(db["order"].find({
        "user_id": str(user["_id"]),
        "status": {"$in": list(REVIEWABLE_STATUSES)},
        "items.product_id": product_id,
    }))


@router.post("", status_code=201)
async def create_feedback(payload: FeedbackIn, user: dict = Depends(get_current_user)):
    order = find_by_id("order", payload.order_id)
    if not order or order["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=404, detail="Order not found")
    if order["status"] not in REVIEWABLE_STATUSES:
        raise HTTPException(status_code=400, detail="You can only review products from confirmed orders")
    if not any(i["product_id"] == payload.product_id for i in order.get("items", [])):
        raise HTTPException(status_code=400, detail="This product is not part of the order")
    uid = str(user["_id"])
    if db["feedback"].find_one({"user_id": uid, "product_id": payload.product_id, "order_id": payload.order_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this product for this order")
    try:
        feedback = Feedback(user_id=uid, **payload.model_dump())
        fid = create_document("feedback", feedback)
    except ValidationError as e:
        raise invalid(e.errors())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already reviewed this product for this order")
    logger.info("Feedback %s added for product %s", fid, payload.product_id)
    return {"success": True, "feedback": serialize_doc(find_by_id("feedback", fid))}


@router.get("/product/{product_id}")
def product_feedback(product_id: str, page: int = 1, limit: int = 10):
    page, limit = max(page, 1), min(max(limit, 1), 50)
    filt = {"product_id": product_id, "status": "active"}
    total = db["feedback"].count_documents(filt)
    cursor = db["feedback"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    feedbacks = [serialize_doc(f) for f in cursor]
    populate(feedbacks, "user_id", "user", "user", {"first_name": 1, "last_name": 1, "profile_image": 1})
    return {
        "success": True,
        "feedbacks": feedbacks,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        "rating_stats": rating_stats(product_id),
    }


@router.post("/summary")
def feedback_summary(payload: SummaryRequest):
    return {"success": True, "summaries": {pid: rating_stats(pid) for pid in payload.product_ids}}


@router.get("/my")
async def my_feedback(user: dict = Depends(get_current_user)):
    feedbacks = [serialize_doc(f) for f in db["feedback"].find({"user_id": str(user["_id"])}).sort("created_at", -1)]
    populate(feedbacks, "product_id", "product", "product", {"name": 1, "images": 1})
    for f in feedbacks:
        f["can_edit"] = can_edit(f)
    return {"success": True, "feedbacks": feedbacks}


@router.get("/eligibility/{product_id}")
async def feedback_eligibility(product_id: str, user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    reviewed = {f["order_id"] for f in db["feedback"].find({"user_id": uid, "product_id": product_id}, {"order_id": 1})}
    orders = [{"id": str(o["_id"]), "status": o["status"], "ordered_at": o.get("ordered_at")}
              for o in eligible_orders(user, product_id) if str(o["_id"]) not in reviewed]
    return {"success": True, "can_review": bool(orders), "eligible_orders": orders}


@router.put("/{feedback_id}")
async def update_feedback(feedback_id: str, payload: FeedbackUpdate, user: dict = Depends(get_current_user)):
    feedback = find_by_id("feedback", feedback_id)
    if not feedback or feedback["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=404, detail="Feedback not found")
    if not can_edit(feedback):
        raise HTTPException(status_code=403, detail="Feedback can only be edited within 24 hours")
    update = payload.model_dump(exclude_none=True)
    now = datetime.utcnow()
    update.update(is_edited=True, edited_at=now, updated_at=now)
    db["feedback"].update_one({"_id": feedback["_id"]}, {"$set": update})
    return {"success": True, "feedback": serialize_doc(find_by_id("feedback", feedback_id))}


@router.delete("/{feedback_id}")
async def delete_feedback(feedback_id: str, user: dict = Depends(get_current_user)):
    feedback = find_by_id("feedback", feedback_id)
    if not feedback:
        raise HTTPException(status_code=404, detail="Feedback not found")
    if feedback["user_id"] != str(user["_id"]) and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    db["feedback"].delete_one({"_id": feedback["_id"]})
    return {"success": True, "message": "Feedback deleted successfully"}
