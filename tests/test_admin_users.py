from datetime import datetime, timedelta

from database import db
from routers.admin_users import user_status


def new_staff(**overrides):
    data = {
        "first_name": "Kasun",
        "last_name": "Silva",
        "email": "kasun@example.com",
        "password": "Strong#123",
        "role": "inventory_manager",
        "phone": "0711111111",
    }
    data.update(overrides)
    return data


def test_admin_creates_staff_user(client, admin_headers):
    res = client.post("/api/admin/users", json=new_staff(), headers=admin_headers)
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["user"]["role"] == "inventory_manager"
    assert "hashed_password" not in body["user"]
    stored = db["user"].find_one({"email": "kasun@example.com"})
    assert stored["hashed_password"] != "Strong#123"


def test_missing_fields_rejected(client, admin_headers):
    res = client.post("/api/admin/users", json={"email": "kasun@example.com"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_invalid_role_rejected(client, admin_headers):
    res = client.post("/api/admin/users", json=new_staff(role="superuser"), headers=admin_headers)
    assert res.status_code == 400
    assert "Invalid role" in res.json()["message"]


def test_plain_user_role_not_allowed(client, admin_headers):
    res = client.post("/api/admin/users", json=new_staff(role="user"), headers=admin_headers)
    assert res.status_code == 400


def test_weak_password_rejected(client, admin_headers):
    for weak in ("short1!", "longenough1", "longenough!"):
        res = client.post("/api/admin/users", json=new_staff(password=weak), headers=admin_headers)
        assert res.status_code == 400, weak


def test_duplicate_email_conflict(client, admin_headers, customer):
    res = client.post("/api/admin/users", json=new_staff(email="customer@example.com"), headers=admin_headers)
    assert res.status_code == 409


def test_requires_authentication(client):
    assert client.post("/api/admin/users", json=new_staff()).status_code == 401


def test_requires_admin_role(client, inventory_headers, customer_headers):
    assert client.post("/api/admin/users", json=new_staff(), headers=inventory_headers).status_code == 403
    assert client.post("/api/admin/users", json=new_staff(), headers=customer_headers).status_code == 403


def test_rate_limited_after_five_attempts(client, admin_headers):
    for i in range(5):
        res = client.post("/api/admin/users", json=new_staff(email=f"staff{i}@example.com"), headers=admin_headers)
        assert res.status_code == 201
    res = client.post("/api/admin/users", json=new_staff(email="staff9@example.com"), headers=admin_headers)
    assert res.status_code == 429
    body = res.json()
    assert body["success"] is False
    assert body["retry_after"] > 0


def test_check_email(client, admin_headers, customer):
    assert client.get("/api/admin/users/check-email/CUSTOMER@example.com", headers=admin_headers).json()["exists"] is True
    assert client.get("/api/admin/users/check-email/ghost@example.com", headers=admin_headers).json()["exists"] is False


def test_list_users_with_order_stats(client, admin, admin_headers, customer):
    db["order"].insert_many([
        {"user_id": str(customer["_id"]), "total": 30.0, "ordered_at": datetime(2026, 1, 2)},
        {"user_id": str(customer["_id"]), "total": 12.5, "ordered_at": datetime(2026, 3, 4)},
    ])
    res = client.get("/api/admin/users", params={"role": "user"}, headers=admin_headers)
    users = res.json()["users"]
    assert len(users) == 1
    assert users[0]["total_orders"] == 2
    assert users[0]["total_spent"] == 42.5
    assert users[0]["last_order_date"].startswith("2026-03-04")


def test_bulk_deactivate_and_self_protection(client, admin, admin_headers, customer):
    res = client.post("/api/admin/users/bulk", json={"action": "deactivate", "user_ids": [str(customer["_id"])]},
                      headers=admin_headers)
    assert res.json()["affected"] == 1
    assert db["user"].find_one({"_id": customer["_id"]})["is_blocked"] is True

    res = client.post("/api/admin/users/bulk", json={"action": "delete", "user_ids": [str(admin["_id"])]},
                      headers=admin_headers)
    assert res.status_code == 400


def test_user_status():
    now = datetime.utcnow()
    assert user_status({"is_blocked": True}, now) == "Blocked"
    assert user_status({"last_active_at": now - timedelta(minutes=2)}, now) == "Active"
    assert user_status({"last_active_at": now - timedelta(hours=1)}, now) == "Inactive"
    assert user_status({}, now) == "Inactive"
