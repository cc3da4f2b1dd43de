import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from database import db, serialize_doc, to_object_id
from notifier import hub, unread_count
from security import get_current_user, user_from_token

router = APIRouter(tags=["notifications"])


def _owned(notification_id: str, user: dict) -> dict:
    oid = to_object_id(notification_id)
    doc = db["notification"].find_one({"_id": oid, "user_id": str(user["_id"])}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail="Notification not found")
    return doc


@router.get("/api/notifications")
async def list_notifications(page: int = 1, limit: int = 20, unread_only: bool = False,
                             user: dict = Depends(get_current_user)):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"user_id": str(user["_id"])}
    if unread_only:
        filt["is_read"] = False
    total = db["notification"].count_documents(filt)
    cursor = db["notification"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "notifications": [serialize_doc(n) for n in cursor],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        "unread_count": unread_count(str(user["_id"])),
    }


@router.get("/api/notifications/unread-count")
async def get_unread_count(user: dict = Depends(get_current_user)):
    return {"success": True, "unread_count": unread_count(str(user["_id"]))}


@router.put("/api/notifications/read-all")
async def mark_all_read(user: dict = Depends(get_current_user)):
    result = db["notification"].update_many(
        {"user_id": str(user["_id"]), "is_read": False},
        {"$set": {"is_read": True, "updated_at": datetime.utcnow()}},
    )
    return {"success": True, "message": "All notifications marked as read", "updated": result.modified_count}


@router.put("/api/notifications/{notification_id}/read")
async def mark_read(notification_id: str, user: dict = Depends(get_current_user)):
    doc = _owned(notification_id, user)
    db["notification"].update_one({"_id": doc["_id"]}, {"$set": {"is_read": True, "updated_at": datetime.utcnow()}})
    doc["is_read"] = True
    return {"success": True, "notification": serialize_doc(doc)}


@router.delete("/api/notifications/{notification_id}")
async def delete_notification(notification_id: str, user: dict = Depends(get_current_user)):
    doc = _owned(notification_id, user)
    db["notification"].delete_one({"_id": doc["_id"]})
    return {"success": True, "message": "Notification deleted successfully"}


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: str):
    try:
        user = user_from_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return
    user_id = str(user["_id"])
    await websocket.accept()
    hub.connect(user_id, websocket)
    try:
        await websocket.send_json({"event": "unread_count", "unread_count": unread_count(user_id)})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(user_id, websocket)
