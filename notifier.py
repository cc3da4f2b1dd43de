import asyncio
import logging
from collections import defaultdict
from threading import Lock
from typing import Dict, Optional, Set, Tuple

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

import mailer
from config import settings
from database import create_document, serialize_doc, db, to_object_id
from schemas import Notification

logger = logging.getLogger(__name__)


class NotificationHub:
    """Tracks open notification sockets per user."""

    def __init__(self):
        self._sockets: Dict[str, Set[Tuple[WebSocket, asyncio.AbstractEventLoop]]] = defaultdict(set)
        self._lock = Lock()

    def connect(self, user_id: str, websocket: WebSocket) -> None:
        with self._lock:
            self._sockets[user_id].add((websocket, asyncio.get_running_loop()))
        logger.debug("Socket connected for user %s", user_id)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        with self._lock:
            self._sockets[user_id] = {s for s in self._sockets[user_id] if s[0] is not websocket}
            if not self._sockets[user_id]:
                del self._sockets[user_id]

    def connections(self, user_id: str) -> int:
        with self._lock:
            return len(self._sockets.get(user_id, ()))

    def push(self, user_id: str, payload: dict) -> None:
        """Schedule a push on each socket's own loop; callable from any thread."""
        with self._lock:
            targets = list(self._sockets.get(user_id, ()))
        data = jsonable_encoder(payload)
        for websocket, loop in targets:
            if loop.is_closed():
                self.disconnect(user_id, websocket)
                continue
            future = asyncio.run_coroutine_threadsafe(websocket.send_json(data), loop)
            future.add_done_callback(self._on_sent(user_id, websocket))

    def _on_sent(self, user_id: str, websocket: WebSocket):
        def callback(future) -> None:
            if future.cancelled():
                return
            error = future.exception()
            if error is not None:
                logger.warning("Push to user %s failed, dropping socket: %s", user_id, error)
                self.disconnect(user_id, websocket)
        return callback


hub = NotificationHub()


def create_notification(user_id: str, title: str, message: str, type: str = "order",
                        related_id: Optional[str] = None, related_model: Optional[str] = None,
                        priority: str = "medium", action_url: Optional[str] = None) -> dict:
    notification = Notification(
        user_id=str(user_id), title=title, message=message, type=type,
        related_id=str(related_id) if related_id else None, related_model=related_model,
        priority=priority, action_url=action_url,
    )
    nid = create_document("notification", notification)
    doc = serialize_doc(db["notification"].find_one({"_id": to_object_id(nid)}))
    hub.push(str(user_id), {"event": "new_notification", "notification": doc})
    return doc


# (title, message, email heading, email body) per lowercased order status
ORDER_STATUS_COPY: Dict[str, Tuple[str, str, str, str]] = {
    "pending": (
        "Order Created Successfully",
        "Your order #{ref} has been created and is pending confirmation.",
        "Order Created Successfully!",
        "We'll review your order and confirm it shortly. You'll receive another notification once your order is confirmed.",
    ),
    "processing": (
        "Order Confirmed",
        "Your order #{ref} has been confirmed and is now being processed.",
        "Order Confirmed!",
        "Our team is now preparing your items for packaging. We'll notify you once your order moves to the packing stage.",
    ),
    "packing": (
        "Order Being Packed",
        "Your order #{ref} is now being packed for shipment.",
        "Your Order is Being Packed!",
        "We're carefully packing your items to ensure they arrive in perfect condition.",
    ),
    "shipped": (
        "Order Ready for Delivery",
        "Your order #{ref} is packed and ready for delivery!",
        "Ready for Delivery!",
        "Your order is now with our delivery team. Please keep your phone handy as our delivery team may contact you.",
    ),
    "delivered": (
        "Order Delivered Successfully",
        "Your order #{ref} has been delivered successfully! Thank you for choosing Best Wishes.",
        "Order Delivered Successfully!",
        "We hope you love your purchase! We'd love to hear about your experience, please consider leaving a review.",
    ),
    "cancelled": (
        "Order Cancelled",
        "Your order #{ref} has been cancelled.",
        "Order Cancelled",
        "If this cancellation was unexpected, please contact our customer service team for assistance.",
    ),
}


def create_order_status_notification(user: dict, order_id: str, status: str) -> dict:
    ref = str(order_id)[-6:]
    copy = ORDER_STATUS_COPY.get(status.lower())
    if copy:
        title, message = copy[0], copy[1].format(ref=ref)
    else:
        title, message = "Order Status Updated", f"Your order #{ref} status has been updated to {status}."

    notification = create_notification(
        str(user["_id"]), title, message, type="order", related_id=order_id, related_model="Order",
        priority="high" if status.lower() in ("delivered", "cancelled") else "medium",
        action_url=f"/orders/{order_id}",
    )

    if copy and user.get("email"):
        name = user.get("first_name") or "Customer"
        body = (
            f"<p>Dear {name},</p>"
            f"<p>Your order <strong>#{ref}</strong>: {message}</p>"
            f"<div style=\"background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;\">"
            f"<h3 style=\"margin-top: 0;\">Order Status: {status}</h3><p>{copy[3]}</p></div>"
        )
        mailer.send_quietly(user["email"], f"{title} - Best Wishes", html=mailer.layout(copy[2], body))
    return notification


def notify_user_by_id(user_id: str, order_id: str, status: str) -> Optional[dict]:
    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        logger.warning("Status notification skipped, user %s not found", user_id)
        return None
    return create_order_status_notification(user, order_id, status)


def gift_status_notification(user_id: str, gift_id: str, status: str, label: str = "surprise gift") -> dict:
    return create_notification(
        user_id,
        f"Your {label} is {status}",
        f"Your {label} #{str(gift_id)[-6:]} status is now {status}.",
        type="gift",
        related_id=gift_id,
        related_model="SurpriseGift" if label == "surprise gift" else "CollaborativePurchase",
    )


def unread_count(user_id: str) -> int:
    return db["notification"].count_documents({"user_id": user_id, "is_read": False})


def frontend_link(path: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/{path.lstrip('/')}"
