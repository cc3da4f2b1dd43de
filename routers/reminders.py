import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import mailer
from database import db, create_document, find_by_id, serialize_doc
from recommendations import OCCASION_KEYWORDS, get_product_recommendations, occasion_types
from schemas import OCCASIONS, EventReminder
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reminders"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ReminderIn(BaseModel):
    remindermsg: str = Field(..., min_length=1)
    date: datetime
    event: str = Field(..., min_length=1)
    occasion: str = "general"
    time: str = Field(..., pattern=TIME_PATTERN)


class ReminderUpdate(BaseModel):
    remindermsg: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime] = None
    event: Optional[str] = Field(None, min_length=1)
    occasion: Optional[str] = None
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)


def _check_occasion(occasion: Optional[str]) -> None:
    if occasion is not None and occasion not in OCCASIONS:
        raise HTTPException(status_code=400, detail=f"Invalid occasion. Must be one of: {', '.join(OCCASIONS)}")


def _owned(reminder_id: str, user: dict) -> dict:
    reminder = find_by_id("event_reminder", reminder_id)
    if not reminder or reminder["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


def confirmation_email(reminder: dict) -> str:
    body = (f"<p>Your reminder for <strong>{reminder['event']}</strong> has been set.</p>"
            f"<p>Date: {reminder['date']:%B %d, %Y} at {reminder['time']}</p>"
            f"<p>Message: {reminder['remindermsg']}</p>"
            "<p>We'll email you when it's time, along with a few gift ideas.</p>")
    return mailer.layout("Reminder Set", body)


@router.post("/reminder", status_code=201)
async def create_reminder(payload: ReminderIn, user: dict = Depends(get_current_user)):
    _check_occasion(payload.occasion)
    reminder = EventReminder(user_id=str(user["_id"]), **payload.model_dump())
    rid = create_document("event_reminder", reminder)
    doc = find_by_id("event_reminder", rid)
    mailer.send_quietly(user["email"], f"Reminder set: {doc['event']}", html=confirmation_email(doc))
    logger.info("Reminder %s set by %s for %s", rid, user["email"], doc["date"])
    return {"success": True, "reminder": serialize_doc(doc)}


@router.get("/reminder")
async def my_reminders(user: dict = Depends(get_current_user)):
    cursor = db["event_reminder"].find({"user_id": str(user["_id"])}).sort([("date", 1), ("time", 1)])
    return {"success": True, "reminders": [serialize_doc(r) for r in cursor]}


@router.put("/reminder/{reminder_id}")
async def update_reminder(reminder_id: str, payload: ReminderUpdate, user: dict = Depends(get_current_user)):
    reminder = _owned(reminder_id, user)
    _check_occasion(payload.occasion)
    update = payload.model_dump(exclude_none=True)
    if {"date", "time"} & update.keys():
        update["sent"] = False
    update["updated_at"] = datetime.utcnow()
    db["event_reminder"].update_one({"_id": reminder["_id"]}, {"$set": update})
    return {"success": True, "reminder": serialize_doc(find_by_id("event_reminder", reminder_id))}


@router.delete("/reminder/{reminder_id}")
async def delete_reminder(reminder_id: str, user: dict = Depends(get_current_user)):
    reminder = _owned(reminder_id, user)
    db["event_reminder"].delete_one({"_id": reminder["_id"]})
    return {"success": True, "message": "Reminder deleted successfully"}


# Recommendations

@router.get("/occasions")
def list_occasions():
    return {"success": True, "occasions": occasion_types()}


@router.get("/recommendations/{occasion}")
def recommendations(occasion: str, limit: int = 5):
    if occasion not in OCCASION_KEYWORDS:
        raise HTTPException(status_code=400, detail="Unknown occasion")
    products = get_product_recommendations(occasion, limit=min(max(limit, 1), 20))
    return {"success": True, "occasion": occasion, "count": len(products), "recommendations": products}
