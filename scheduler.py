"""
Background jobs.

Every ``SCHEDULER_INTERVAL_SECONDS`` the loop emails reminders that have come due
today and expires collaborative purchases past their deadline. The
jobs are plain functions taking ``now`` so they can be driven directly.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import collaboration
import mailer
from config import settings
from database import db, to_object_id
from recommendations import OCCASION_LABELS, get_product_recommendations

logger = logging.getLogger(__name__)


def due_reminders(now: datetime):
    """Today's unsent reminders whose time has come, including minutes a slow run skipped."""
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return db["event_reminder"].find({
        "sent": False,
        "date": {"$gte": day, "$lt": day + timedelta(days=1)},
        "time": {"$lte": now.strftime("%H:%M")},
    })


def reminder_email(reminder: dict, products: list) -> str:
    occasion = OCCASION_LABELS.get(reminder.get("occasion"), "Special Occasion")
    cards = "".join(
        f"<li><a href=\"{p['link']}\" style=\"color: #822be2;\">{p['name']}</a> - ${p['price']:.2f}"
        f"{' (On Sale!)' if p['on_sale'] else ''}</li>"
        for p in products
    )
    body = (f"<p><strong>{reminder['event']}</strong> is today.</p>"
            f"<p>{reminder['remindermsg']}</p>")
    if cards:
        body += f"<h3>Gift ideas for {occasion}</h3><ul>{cards}</ul>"
    return mailer.layout("Event Reminder", body)


def send_due_reminders(now: Optional[datetime] = None) -> int:
    now = now or datetime.now()
    sent = 0
    for reminder in list(due_reminders(now)):
        user = db["user"].find_one({"_id": to_object_id(reminder["user_id"])})
        if not user:
            logger.warning("Reminder %s has no owner, skipping", reminder["_id"])
            continue
        products = get_product_recommendations(reminder.get("occasion") or "general", limit=5)
        try:
            mailer.send_email(user["email"], f"Reminder: {reminder['event']}", html=reminder_email(reminder, products))
        except mailer.EmailError as e:
            logger.error("Reminder %s to %s failed: %s", reminder["_id"], user["email"], e)
            continue
        db["event_reminder"].update_one({"_id": reminder["_id"]}, {"$set": {"sent": True, "updated_at": datetime.utcnow()}})
        sent += 1
    if sent:
        logger.info("Sent %d reminders for %s", sent, now.strftime("%Y-%m-%d %H:%M"))
    return sent


def run_jobs(now: Optional[datetime] = None) -> dict:
    return {
        "reminders_sent": send_due_reminders(now),
        "purchases_expired": collaboration.expire_overdue_purchases(),
    }


def seconds_until_next_run(now: datetime, interval: int) -> float:
    """Seconds until the next multiple of ``interval`` since midnight."""
    elapsed = (now - now.replace(hour=0, minute=0, second=0, microsecond=0)).total_seconds()
    return interval - (elapsed % interval)


async def run_forever() -> None:
    interval = settings.SCHEDULER_INTERVAL_SECONDS
    logger.info("Scheduler started, every %ss", interval)
    while True:
        try:
            await asyncio.to_thread(run_jobs)
        except Exception:
            logger.exception("Scheduled jobs failed")
        await asyncio.sleep(seconds_until_next_run(datetime.now(), interval))
