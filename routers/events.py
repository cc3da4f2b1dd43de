from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import db, create_document, find_by_id, get_documents, serialize_doc
from schemas import UpcomingEvent
from security import require_roles

router = APIRouter(prefix="/api/events", tags=["events"])


class EventUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    date: Optional[datetime] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None


def event_or_404(event_id: str) -> dict:
    event = find_by_id("upcoming_event", event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.get("")
def list_events():
    return {"success": True, "events": get_documents("upcoming_event", sort=[("date", 1)])}


@router.get("/upcoming")
def upcoming_events():
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    events = get_documents("upcoming_event", {"is_active": True, "date": {"$gte": today}},
                           sort=[("featured", -1), ("date", 1)])
    return {"success": True, "events": events}


@router.post("", status_code=201)
async def create_event(payload: UpcomingEvent, user: dict = Depends(require_roles("admin"))):
    eid = create_document("upcoming_event", payload)
    return {"success": True, "event": serialize_doc(find_by_id("upcoming_event", eid))}


@router.put("/{event_id}")
async def update_event(event_id: str, payload: EventUpdate, user: dict = Depends(require_roles("admin"))):
    event = event_or_404(event_id)
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = datetime.utcnow()
    db["upcoming_event"].update_one({"_id": event["_id"]}, {"$set": update})
    return {"success": True, "event": serialize_doc(find_by_id("upcoming_event", event_id))}


@router.delete("/{event_id}")
async def delete_event(event_id: str, user: dict = Depends(require_roles("admin"))):
    event = event_or_404(event_id)
    db["upcoming_event"].delete_one({"_id": event["_id"]})
    return {"success": True, "message": "Event deleted successfully"}
