import copy
from datetime import datetime, timedelta

import pytest
import stripe
from fastapi import HTTPException

import collaboration
from database import db


def create_purchase(client, headers, product, emails, quantity=1):
    return client.post("/api/collaborative-purchases", json={
        "product_id": str(product["_id"]), "quantity": quantity, "participants": emails,
    }, headers=headers)


def links(purchase_id):
    doc = db["collaborative_purchase"].find_one()
    assert str(doc["_id"]) == purchase_id
    return [p["payment_link"] for p in doc["participants"]]


def test_create_splits_total_with_shipping(client, customer_headers, make_product, outbox):
    product = make_product(retail_price=50)
    res = create_purchase(client, customer_headers, product, ["a@example.com", "b@example.com"], quantity=2)
    assert res.status_code == 201
    purchase = res.json()["purchase"]
    assert purchase["total_amount"] == 110.0
    assert purchase["share_amount"] == round(110.0 / 3, 2)
    assert purchase["status"] == "pending"
    assert 0 < purchase["time_remaining"] <= 3 * 24 * 3600
    assert {m["to"] for m in outbox} == {"a@example.com", "b@example.com"}
    assert all(len(link) == 64 for link in links(purchase["id"]))


def test_multi_product_purchase(client, customer_headers, make_product):
    a = make_product(retail_price=10)
    b = make_product(retail_price=20, sale_price=15)
    res = client.post("/api/collaborative-purchases", json={
        "products": [{"product_id": str(a["_id"]), "quantity": 2}, {"product_id": str(b["_id"]), "quantity": 1}],
        "participants": ["friend@example.com"],
    }, headers=customer_headers)
    purchase = res.json()["purchase"]
    assert purchase["is_multi_product"] is True
    assert purchase["total_amount"] == 45.0
    assert [line["subtotal"] for line in purchase["products"]] == [20.0, 15.0]


def test_create_validation(client, customer_headers, make_product):
    product = make_product()
    assert create_purchase(client, customer_headers, product, []).status_code == 400
    four = [f"p{i}@example.com" for i in range(4)]
    assert create_purchase(client, customer_headers, product, four).status_code == 400
    dupes = ["x@example.com", "X@example.com"]
    assert create_purchase(client, customer_headers, product, dupes).status_code == 400
    assert create_purchase(client, customer_headers, product, ["customer@example.com"]).status_code == 400


def test_all_paid_creates_processing_order(client, customer, customer_headers, make_product):
    product = make_product(retail_price=30)
    purchase = create_purchase(client, customer_headers, product, ["a@example.com", "b@example.com"]).json()["purchase"]
    first, second = links(purchase["id"])

    view = client.get(f"/api/collaborative-purchases/payment/{first}").json()
    assert view["participant"] == {"email": "a@example.com", "payment_status": "pending"}
    assert "payment_link" not in view["purchase"]["participants"][0]

    assert client.post(f"/api/collaborative-purchases/payment/{first}/pay").json()["purchase"]["status"] == "pending"
    assert client.post(f"/api/collaborative-purchases/payment/{first}/pay").status_code == 400

    done = client.post(f"/api/collaborative-purchases/payment/{second}/pay", json={"payment_intent_id": "pi_1"})
    assert done.json()["purchase"]["status"] == "completed"

    order = db["order"].find_one({"collaborative_purchase_id": purchase["id"]})
    assert order["status"] == "Processing"
    assert order["user_id"] == str(customer["_id"])
    assert order["total"] == 40.0
    assert db["collaborative_purchase"].find_one()["order_id"] == str(order["_id"])
    assert db["notification"].count_documents({"title": "Collaborative Gift Fully Funded"}) == 1


def test_payment_after_deadline_expires(client, customer_headers, make_product):
    purchase = create_purchase(client, customer_headers, make_product(), ["a@example.com"]).json()["purchase"]
    db["collaborative_purchase"].update_one({}, {"$set": {"deadline": datetime.utcnow() - timedelta(minutes=1)}})
    (link,) = links(purchase["id"])
    res = client.post(f"/api/collaborative-purchases/payment/{link}/pay")
    assert res.status_code == 400
    assert db["collaborative_purchase"].find_one()["status"] == "expired"


def test_decline_refunds_paid_participants(client, customer_headers, make_product, stripe_stub):
    purchase = create_purchase(client, customer_headers, make_product(),
                               ["a@example.com", "b@example.com"]).json()["purchase"]
    first, second = links(purchase["id"])
    client.post(f"/api/collaborative-purchases/payment/{first}/pay", json={"payment_intent_id": "pi_paid"})

    res = client.post(f"/api/collaborative-purchases/payment/{second}/decline")
    assert res.status_code == 200
    doc = db["collaborative_purchase"].find_one()
    assert doc["status"] == "refunded"
    statuses = {p["email"]: p["payment_status"] for p in doc["participants"]}
    assert statuses == {"a@example.com": "refunded", "b@example.com": "declined"}
    assert stripe_stub["refunds"] == [{"payment_intent": "pi_paid"}]


def test_decline_without_payments_cancels(client, customer_headers, make_product):
    purchase = create_purchase(client, customer_headers, make_product(), ["a@example.com"]).json()["purchase"]
    (link,) = links(purchase["id"])
    client.post(f"/api/collaborative-purchases/payment/{link}/decline")
    assert db["collaborative_purchase"].find_one()["status"] == "cancelled"


def test_creator_cancel_and_visibility(client, customer_headers, make_user, auth, make_product):
    purchase = create_purchase(client, customer_headers, make_product(), ["a@example.com"]).json()["purchase"]
    outsider = auth(make_user("user", email="outsider@example.com"))
    invited = auth(make_user("user", email="a@example.com"))

    assert client.get(f"/api/collaborative-purchases/{purchase['id']}", headers=outsider).status_code == 403
    assert client.get(f"/api/collaborative-purchases/{purchase['id']}", headers=invited).status_code == 200
    assert client.post(f"/api/collaborative-purchases/{purchase['id']}/cancel", headers=invited).status_code == 403

    res = client.post(f"/api/collaborative-purchases/{purchase['id']}/cancel", headers=customer_headers)
    assert res.json()["purchase"]["status"] == "cancelled"


def test_admin_packing_reduces_stock_once(client, customer_headers, inventory_headers, make_product):
    product = make_product(stock=10)
    purchase = create_purchase(client, customer_headers, product, ["a@example.com"], quantity=2).json()["purchase"]
    (link,) = links(purchase["id"])
    client.post(f"/api/collaborative-purchases/payment/{link}/pay")
    order = db["order"].find_one()

    res = client.post(f"/api/collaborative-purchases/admin/{purchase['id']}/start-packing", headers=inventory_headers)
    assert res.status_code == 200
    assert res.json()["purchase"]["status"] == "packing"
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 8
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "Packing"
    assert db["order_summary"].find_one()["status"] == "collaborative"

    # the linked order cannot be packed a second time through the orders route
    again = client.post(f"/api/orders/{order['_id']}/start-packing", headers=inventory_headers)
    assert again.status_code == 400
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 8


def test_admin_status_updates_sync_order(client, customer_headers, admin_headers, make_product):
    purchase = create_purchase(client, customer_headers, make_product(), ["a@example.com"]).json()["purchase"]
    (link,) = links(purchase["id"])
    url = f"/api/collaborative-purchases/admin/{purchase['id']}/status"

    assert client.put(url, json={"status": "Out for Delivery"}, headers=admin_headers).status_code == 400
    client.post(f"/api/collaborative-purchases/payment/{link}/pay")
    assert client.put(url, json={"status": "Packing"}, headers=admin_headers).json()["purchase"]["status"] == "packing"
    assert client.put(url, json={"status": "Out for Delivery"}, headers=admin_headers).json()["purchase"]["status"] == "outfordelivery"
    assert db["order"].find_one()["status"] == "Shipped"
    assert client.put(url, json={"status": "Delivered"}, headers=admin_headers).json()["purchase"]["status"] == "delivered"
    assert db["order"].find_one()["status"] == "Delivered"

    printed = client.get(f"/api/collaborative-purchases/admin/{purchase['id']}/print", headers=admin_headers).json()
    assert printed["print"]["customer"]["email"] == "customer@example.com"
    assert printed["print"]["shipping"] == collaboration.SHIPPING_COST


def test_expire_overdue_purchases():
    db["collaborative_purchase"].insert_many([
        {"status": "pending", "deadline": datetime.utcnow() - timedelta(hours=1)},
        {"status": "pending", "deadline": datetime.utcnow() + timedelta(hours=1)},
        {"status": "completed", "deadline": datetime.utcnow() - timedelta(hours=1)},
    ])
    assert collaboration.expire_overdue_purchases() == 1
    assert db["collaborative_purchase"].count_documents({"status": "expired"}) == 1


def test_payments_from_stale_reads_complete_once(client, customer_headers, make_product, monkeypatch):
    purchase = create_purchase(client, customer_headers, make_product(),
                               ["a@example.com", "b@example.com"]).json()["purchase"]
    first, second = links(purchase["id"])
    stale = db["collaborative_purchase"].find_one()

    # both payers read the purchase before either payment is written
    monkeypatch.setattr(collaboration, "find_by_link", lambda link: copy.deepcopy(stale))
    assert collaboration.process_payment(first, "pi_a")["status"] == "pending"
    assert collaboration.process_payment(second, "pi_b")["status"] == "completed"

    doc = db["collaborative_purchase"].find_one()
    assert [(p["payment_status"], p["payment_intent_id"]) for p in doc["participants"]] == [
        ("paid", "pi_a"), ("paid", "pi_b")]
    assert db["order"].count_documents({}) == 1

    with pytest.raises(HTTPException) as exc:
        collaboration.process_payment(second, "pi_b")
    assert exc.value.status_code == 400
    assert collaboration._complete(copy.deepcopy(stale)) is False
    assert db["order"].count_documents({}) == 1


def test_packing_from_stale_reads_commits_stock_once(client, customer_headers, inventory_manager, make_product,
                                                     monkeypatch):
    product = make_product(stock=10)
    purchase = create_purchase(client, customer_headers, product, ["a@example.com"], quantity=2).json()["purchase"]
    (link,) = links(purchase["id"])
    client.post(f"/api/collaborative-purchases/payment/{link}/pay")
    stale = db["collaborative_purchase"].find_one()

    monkeypatch.setattr(collaboration, "find_by_id", lambda collection, _id: copy.deepcopy(stale))
    assert collaboration.start_packing(purchase["id"], inventory_manager)["purchase"]["status"] == "packing"
    with pytest.raises(HTTPException) as exc:
        collaboration.start_packing(purchase["id"], inventory_manager)
    assert exc.value.status_code == 400
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 8
    assert db["order_summary"].count_documents({}) == 1


def test_failed_refund_is_kept_for_retry(client, customer_headers, inventory_headers, make_product, stripe_stub,
                                         monkeypatch):
    purchase = create_purchase(client, customer_headers, make_product(),
                               ["a@example.com", "b@example.com"]).json()["purchase"]
    first, second = links(purchase["id"])
    client.post(f"/api/collaborative-purchases/payment/{first}/pay", json={"payment_intent_id": "pi_paid"})

    def refuse(**kwargs):
        raise stripe.StripeError("Refunds are temporarily unavailable")

    monkeypatch.setattr(stripe.Refund, "create", refuse)
    assert client.post(f"/api/collaborative-purchases/payment/{second}/decline").status_code == 200
    doc = db["collaborative_purchase"].find_one()
    assert doc["status"] == "cancelled"
    assert doc["refund_pending"] is True
    assert doc["participants"][0]["payment_status"] == "refund_failed"
    assert "temporarily unavailable" in doc["participants"][0]["refund_error"]

    url = f"/api/collaborative-purchases/admin/{purchase['id']}/retry-refunds"
    assert client.post(url, headers=customer_headers).status_code == 403
    monkeypatch.setattr(stripe.Refund, "create", lambda **kwargs: {"id": "re_retry"})
    body = client.post(url, headers=inventory_headers).json()
    assert body["success"] is True
    assert body["refunded"] == ["a@example.com"]
    assert body["purchase"]["status"] == "refunded"

    doc = db["collaborative_purchase"].find_one()
    assert doc["refund_pending"] is False
    assert (doc["participants"][0]["payment_status"], doc["participants"][0]["refund_id"]) == ("refunded", "re_retry")
    assert client.post(url, headers=inventory_headers).status_code == 400
