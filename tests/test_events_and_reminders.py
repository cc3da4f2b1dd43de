from datetime import datetime, timedelta

import mailer
import scheduler
from database import create_document, db
from recommendations import MIN_MATCHES, get_product_recommendations
from schemas import EventReminder


def test_events_public_and_admin(client, admin_headers, customer_headers):
    upcoming = {"name": "Mother's Day", "description": "Spoil her", "date": (datetime.utcnow() + timedelta(days=10)).isoformat()}
    past = {"name": "Old Sale", "description": "Gone", "date": (datetime.utcnow() - timedelta(days=10)).isoformat()}

    assert client.post("/api/events", json=upcoming, headers=customer_headers).status_code == 403
    created = client.post("/api/events", json=upcoming, headers=admin_headers).json()["event"]
    client.post("/api/events", json=past, headers=admin_headers)

    assert len(client.get("/api/events").json()["events"]) == 2
    assert [e["name"] for e in client.get("/api/events/upcoming").json()["events"]] == ["Mother's Day"]

    client.put(f"/api/events/{created['id']}", json={"is_active": False}, headers=admin_headers)
    assert client.get("/api/events/upcoming").json()["events"] == []
    assert client.delete(f"/api/events/{created['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/events/{created['id']}", headers=admin_headers).status_code == 404


def test_reminder_crud_sends_confirmation(client, customer_headers, make_user, auth, outbox):
    res = client.post("/api/reminder", json={
        "remindermsg": "Buy flowers", "date": "2026-12-24T00:00:00", "event": "Christmas Eve",
        "occasion": "christmas", "time": "09:30",
    }, headers=customer_headers)
    assert res.status_code == 201
    reminder = res.json()["reminder"]
    assert reminder["sent"] is False
    assert outbox[-1]["subject"] == "Reminder set: Christmas Eve"

    other = auth(make_user("user", email="other@example.com"))
    assert client.get("/api/reminder", headers=other).json()["reminders"] == []
    assert client.put(f"/api/reminder/{reminder['id']}", json={"time": "10:00"}, headers=other).status_code == 404

    updated = client.put(f"/api/reminder/{reminder['id']}", json={"time": "10:00"}, headers=customer_headers).json()
    assert updated["reminder"]["time"] == "10:00"
    assert client.delete(f"/api/reminder/{reminder['id']}", headers=customer_headers).status_code == 200


def test_reminder_validation(client, customer_headers):
    base = {"remindermsg": "x", "date": "2026-12-24T00:00:00", "event": "Party"}
    assert client.post("/api/reminder", json={**base, "time": "25:00"}, headers=customer_headers).status_code == 400
    assert client.post("/api/reminder", json={**base, "time": "08:00", "occasion": "halloween"},
                       headers=customer_headers).status_code == 400
    ok = client.post("/api/reminder", json={**base, "time": "08:00"}, headers=customer_headers).json()
    assert ok["reminder"]["occasion"] == "general"


def test_send_due_reminders(customer, make_user, make_product, outbox):
    make_product(name="Birthday Cake Candle", tags=["birthday"])
    now = datetime(2026, 11, 3, 14, 5, 30)
    due = EventReminder(user_id=str(customer["_id"]), remindermsg="Call mum", date=datetime(2026, 11, 3),
                        event="Mum's birthday", occasion="birthday", time="14:05")
    create_document("event_reminder", due)
    create_document("event_reminder", due.model_copy(update={"time": "14:06"}))
    create_document("event_reminder", due.model_copy(update={"date": datetime(2026, 11, 4)}))

    assert scheduler.send_due_reminders(now) == 1
    assert outbox[-1]["subject"] == "Reminder: Mum's birthday"
    assert "Birthday Cake Candle" in outbox[-1]["html"]
    assert db["event_reminder"].count_documents({"sent": True}) == 1
    # already sent
    assert scheduler.send_due_reminders(now) == 0


def test_one_failed_reminder_does_not_stop_others(make_user, monkeypatch):
    alice = make_user("user", email="alice@example.com")
    bob = make_user("user", email="bob@example.com")
    now = datetime(2026, 2, 14, 8, 0)
    for user in (alice, bob):
        create_document("event_reminder", EventReminder(user_id=str(user["_id"]), remindermsg="Roses",
                                                        date=datetime(2026, 2, 14), event="Valentine", time="08:00"))
    delivered = []

    def flaky(to, subject, html=None, text=None):
        if to == "alice@example.com":
            raise mailer.EmailError("mailbox full")
        delivered.append(to)
        return {"success": True}

    monkeypatch.setattr(mailer, "send_email", flaky)
    assert scheduler.send_due_reminders(now) == 1
    assert delivered == ["bob@example.com"]
    assert db["event_reminder"].find_one({"user_id": str(alice["_id"])})["sent"] is False


def test_run_jobs_expires_purchases():
    db["collaborative_purchase"].insert_one({"status": "pending", "deadline": datetime.utcnow() - timedelta(days=1)})
    result = scheduler.run_jobs(datetime(2026, 1, 1, 0, 0))
    assert result == {"reminders_sent": 0, "purchases_expired": 1}


def test_recommendations_match_keywords(client, make_product):
    make_product(name="Wedding Bouquet", rating=5)
    make_product(name="Bridal Veil", rating=4)
    make_product(name="Groom Cufflinks", rating=3)
    make_product(name="Garden Hose")
    res = client.get("/api/recommendations/wedding", params={"limit": 3}).json()
    assert [r["name"] for r in res["recommendations"]] == ["Wedding Bouquet", "Bridal Veil", "Groom Cufflinks"]
    first = res["recommendations"][0]
    assert first["on_sale"] is False
    assert first["link"].endswith(f"/products/{first['id']}")


def test_recommendations_fall_back_to_other_products(make_product):
    make_product(name="Graduation Cap")
    make_product(name="Desk Lamp", featured=True)
    make_product(name="Teapot")
    names = [r["name"] for r in get_product_recommendations("graduation", limit=5)]
    assert names[0] == "Graduation Cap"
    assert len(names) >= MIN_MATCHES
    assert "Desk Lamp" in names


def test_occasions_and_unknown_occasion(client):
    occasions = client.get("/api/occasions").json()["occasions"]
    assert len(occasions) == 20
    assert {"value": "mother_day", "label": "Mother's Day"} in occasions
    assert client.get("/api/recommendations/halloween").status_code == 400


def test_reminders_skipped_by_a_slow_run_still_go_out(customer, outbox):
    late = EventReminder(user_id=str(customer["_id"]), remindermsg="Buy flowers", date=datetime(2026, 11, 3),
                         event="Anniversary", occasion="anniversary", time="14:03")
    create_document("event_reminder", late)
    assert scheduler.send_due_reminders(datetime(2026, 11, 3, 14, 5)) == 1
    assert outbox[-1]["subject"] == "Reminder: Anniversary"


def test_scheduler_wakes_on_interval_boundaries():
    assert scheduler.seconds_until_next_run(datetime(2026, 1, 1, 10, 0, 30), 60) == 30
    assert scheduler.seconds_until_next_run(datetime(2026, 1, 1, 10, 0, 0), 60) == 60
    assert scheduler.seconds_until_next_run(datetime(2026, 1, 1, 10, 7, 0), 300) == 180
