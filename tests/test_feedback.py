from datetime import datetime, timedelta

import pytest

from database import create_document, db
from schemas import Order, OrderItem


@pytest.fixture
def delivered_order(customer, make_product):
    product = make_product()
    order = Order(
        user_id=str(customer["_id"]),
        items=[OrderItem(product_id=str(product["_id"]), name=product["name"], price=25.0, quantity=1)],
        total=25.0,
        status="Delivered",
    )
    return create_document("order", order), str(product["_id"])


def review(client, headers, order_id, product_id, rating=5, **extra):
    return client.post("/api/feedback", json={
        "order_id": order_id, "product_id": product_id, "rating": rating, "comment": "Lovely", **extra,
    }, headers=headers)


def test_create_feedback_once_per_order(client, customer_headers, delivered_order):
    order_id, product_id = delivered_order
    res = review(client, customer_headers, order_id, product_id, title="Great")
    assert res.status_code == 201
    assert res.json()["feedback"]["is_verified_purchase"] is True
    dup = review(client, customer_headers, order_id, product_id)
    assert dup.status_code == 400


def test_feedback_eligibility_rules(client, customer, customer_headers, make_user, auth, delivered_order, make_product):
    order_id, product_id = delivered_order
    stranger = auth(make_user("user", email="stranger@example.com"))
    assert review(client, stranger, order_id, product_id).status_code == 404
    assert review(client, customer_headers, order_id, str(make_product()["_id"])).status_code == 400

    db["order"].update_one({}, {"$set": {"status": "Cancelled"}})
    assert review(client, customer_headers, order_id, product_id).status_code == 400


def test_rating_bounds(client, customer_headers, delivered_order):
    order_id, product_id = delivered_order
    assert review(client, customer_headers, order_id, product_id, rating=6).status_code == 400
    assert review(client, customer_headers, order_id, product_id, rating=0).status_code == 400


def test_product_feedback_stats(client, customer_headers, delivered_order):
    order_id, product_id = delivered_order
    review(client, customer_headers, order_id, product_id, rating=4)
    db["feedback"].insert_many([
        {"user_id": "u2", "product_id": product_id, "order_id": "o2", "rating": 5, "status": "active",
         "comment": "ok", "created_at": datetime.utcnow()},
        {"user_id": "u3", "product_id": product_id, "order_id": "o3", "rating": 2, "status": "hidden",
         "comment": "meh", "created_at": datetime.utcnow()},
    ])
    body = client.get(f"/api/feedback/product/{product_id}").json()
    assert body["rating_stats"]["total_feedbacks"] == 2
    assert body["rating_stats"]["average_rating"] == 4.5
    assert body["rating_stats"]["rating_distribution"] == {"1": 0, "2": 0, "3": 0, "4": 1, "5": 1}
    assert body["feedbacks"][0]["user"] is None or "email" not in body["feedbacks"][0]["user"]

    summary = client.post("/api/feedback/summary", json={"product_ids": [product_id, "missing"]}).json()
    assert summary["summaries"]["missing"]["total_feedbacks"] == 0


def test_edit_window(client, customer_headers, delivered_order):
    order_id, product_id = delivered_order
    fid = review(client, customer_headers, order_id, product_id).json()["feedback"]["id"]
    res = client.put(f"/api/feedback/{fid}", json={"rating": 3}, headers=customer_headers)
    assert res.json()["feedback"]["is_edited"] is True
    assert client.get("/api/feedback/my", headers=customer_headers).json()["feedbacks"][0]["can_edit"] is True

    db["feedback"].update_one({}, {"$set": {"created_at": datetime.utcnow() - timedelta(hours=25)}})
    assert client.put(f"/api/feedback/{fid}", json={"rating": 1}, headers=customer_headers).status_code == 403


def test_delete_by_owner_or_admin(client, customer_headers, admin_headers, make_user, auth, delivered_order):
    order_id, product_id = delivered_order
    fid = review(client, customer_headers, order_id, product_id).json()["feedback"]["id"]
    other = auth(make_user("user", email="other@example.com"))
    assert client.delete(f"/api/feedback/{fid}", headers=other).status_code == 403
    assert client.delete(f"/api/feedback/{fid}", headers=admin_headers).status_code == 200


def test_eligibility_lists_unreviewed_orders(client, customer_headers, delivered_order):
    order_id, product_id = delivered_order
    before = client.get(f"/api/feedback/eligibility/{product_id}", headers=customer_headers).json()
    assert before["can_review"] is True
    assert [o["id"] for o in before["eligible_orders"]] == [order_id]

    review(client, customer_headers, order_id, product_id)
    after = client.get(f"/api/feedback/eligibility/{product_id}", headers=customer_headers).json()
    assert after == {"success": True, "can_review": False, "eligible_orders": []}
