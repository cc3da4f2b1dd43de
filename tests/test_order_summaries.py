from datetime import datetime

from database import create_document
from inventory import build_summary


def test_create_summary_uses_catalog_prices(client, inventory_headers, make_product):
    product = make_product(cost_price=6, retail_price=15, sale_price=12)
    res = client.post("/api/orders-summary", json={"product_id": str(product["_id"]), "quantity": 3,
                                                   "status": "surprisegift"}, headers=inventory_headers)
    assert res.status_code == 201
    summary = res.json()["summary"]
    assert summary["product_sku"] == product["sku"]
    assert (summary["profit"], summary["total_profit"]) == (6.0, 18.0)


def test_profit_falls_back_to_retail_price(make_product):
    summary = build_summary(make_product(cost_price=5, retail_price=9), 2, "order")
    assert (summary.profit, summary.total_profit) == (4.0, 8.0)


def test_summaries_are_staff_only(client, customer_headers, make_product):
    res = client.post("/api/orders-summary", json={"product_id": str(make_product()["_id"]), "quantity": 1},
                      headers=customer_headers)
    assert res.status_code == 403
    assert client.get("/api/orders-summary/analytics", headers=customer_headers).status_code == 403


def test_list_filters_and_analytics(client, admin_headers, make_product):
    product = make_product(cost_price=10, retail_price=25)
    create_document("order_summary", build_summary(product, 2, "orders", order_date=datetime(2026, 5, 1)))
    create_document("order_summary", build_summary(product, 1, "collaborative", order_date=datetime(2026, 6, 1)))

    listed = client.get("/api/orders-summary", params={"status": "orders"}, headers=admin_headers).json()
    assert listed["count"] == 1
    ranged = client.get("/api/orders-summary", params={"start_date": "2026-05-15T00:00:00"},
                        headers=admin_headers).json()
    assert [s["status"] for s in ranged["summaries"]] == ["collaborative"]
    assert client.get("/api/orders-summary", params={"status": "bogus"}, headers=admin_headers).status_code == 400

    analytics = client.get("/api/orders-summary/analytics", headers=admin_headers).json()
    assert analytics["analytics"] == {
        "total_orders": 2,
        "total_quantity": 3,
        "total_revenue": 75.0,
        "total_cost": 30.0,
        "total_profit": 45.0,
        "avg_profit_per_order": 22.5,
    }
    assert analytics["by_status"]["orders"]["profit"] == 30.0


def test_analytics_empty(client, admin_headers):
    analytics = client.get("/api/orders-summary/analytics", headers=admin_headers).json()["analytics"]
    assert analytics["total_orders"] == 0
    assert analytics["avg_profit_per_order"] == 0
