from database import db

PRODUCT = {
    "name": "Rose Mug",
    "sku": "mug-001",
    "short_description": "Ceramic mug with roses",
    "main_category": "Mugs",
    "cost_price": 4,
    "retail_price": 12,
    "stock": 8,
    "status": "active",
    "filters": {"color": ["red", "white"]},
}


def test_category_crud_and_attribute_items(client, inventory_headers):
    res = client.post("/api/categories", json={
        "key": "Mugs", "name": "Mugs",
        "attributes": [{"name": "color", "display_name": "Color", "items": ["red"]}],
    }, headers=inventory_headers)
    assert res.status_code == 201
    category = res.json()["category"]
    assert category["key"] == "mugs"
    cid = category["id"]

    dup = client.post("/api/categories", json={"key": "mugs", "name": "Again"}, headers=inventory_headers)
    assert dup.status_code == 400

    assert client.get("/api/categories/key/MUGS").json()["category"]["id"] == cid

    base = f"/api/categories/{cid}/attributes/color/items"
    assert client.post(base, json={"item": "blue"}, headers=inventory_headers).status_code == 200
    assert client.post(base, json={"item": "blue"}, headers=inventory_headers).status_code == 400
    assert client.get(f"{base}/blue").json()["exists"] is True

    renamed = client.put(f"{base}/blue", json={"new_item": "navy"}, headers=inventory_headers)
    assert renamed.json()["category"]["attributes"][0]["items"] == ["red", "navy"]
    assert client.delete(f"{base}/red", headers=inventory_headers).status_code == 200
    assert client.delete(f"{base}/red", headers=inventory_headers).status_code == 404

    updated = client.put(f"/api/categories/{cid}", json={"name": "Coffee Mugs"}, headers=inventory_headers)
    assert updated.json()["category"]["name"] == "Coffee Mugs"
    assert client.delete(f"/api/categories/{cid}", headers=inventory_headers).json()["deleted"] is True
    assert client.get(f"/api/categories/{cid}").status_code == 404


def test_customer_cannot_manage_catalog(client, customer_headers):
    assert client.post("/api/categories", json={"key": "x", "name": "X"}, headers=customer_headers).status_code == 403
    assert client.post("/api/products", json=PRODUCT, headers=customer_headers).status_code == 403


def test_create_product_derives_fields(client, inventory_headers):
    res = client.post("/api/products", json=PRODUCT, headers=inventory_headers)
    assert res.status_code == 201
    product = res.json()["product"]
    assert product["sku"] == "MUG-001"
    assert product["stock_status"] == "low-stock"
    assert product["price"] == 12
    assert product["profit_margin"] == 200.0
    assert product["seo_title"] == "Rose Mug"


def test_create_product_validation_and_duplicate_sku(client, inventory_headers):
    bad = client.post("/api/products", json={**PRODUCT, "retail_price": -1}, headers=inventory_headers)
    assert bad.status_code == 400
    assert any(e["field"] == "retail_price" for e in bad.json()["errors"])

    client.post("/api/products", json=PRODUCT, headers=inventory_headers)
    dup = client.post("/api/products", json={**PRODUCT, "name": "Other"}, headers=inventory_headers)
    assert dup.status_code == 400
    assert dup.json()["message"] == "SKU already exists"


def test_list_products_filters_and_pagination(client, make_product):
    make_product(name="Red Mug", filters={"color": ["red"]})
    make_product(name="Blue Mug", filters={"color": ["blue"]})
    make_product(name="Draft Card", status="draft")

    res = client.get("/api/products", params={"status": "active", "limit": 1})
    body = res.json()
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    by_attr = client.get("/api/products", params={"attributes.color": "blue"}).json()["products"]
    assert [p["name"] for p in by_attr] == ["Blue Mug"]

    search = client.get("/api/products", params={"search": "card"}).json()["products"]
    assert [p["name"] for p in search] == ["Draft Card"]


def test_get_product_errors(client):
    assert client.get("/api/products/not-an-id").status_code == 400
    assert client.get("/api/products/64b7f0c2a1b2c3d4e5f60718").status_code == 404


def test_update_product_recomputes_stock_status(client, inventory_headers, make_product):
    product = make_product(stock=50)
    res = client.put(f"/api/products/{product['_id']}", json={"stock": 0, "sale_price": 20},
                     headers=inventory_headers)
    body = res.json()["product"]
    assert body["stock_status"] == "out-of-stock"
    assert body["price"] == 20


def test_update_product_rejects_sku_clash(client, inventory_headers, make_product):
    first = make_product(sku="AAA")
    second = make_product(sku="BBB")
    res = client.put(f"/api/products/{second['_id']}", json={"sku": first["sku"]}, headers=inventory_headers)
    assert res.status_code == 400


def test_reduce_stock_is_all_or_nothing(client, inventory_headers, make_product):
    plenty = make_product(stock=20)
    scarce = make_product(stock=1)
    res = client.put("/api/products/reduce-stock", json={"items": [
        {"product_id": str(plenty["_id"]), "quantity": 5},
        {"product_id": str(scarce["_id"]), "quantity": 3},
    ]}, headers=inventory_headers)
    assert res.status_code == 400
    short = res.json()["insufficient_stock_items"]
    assert short == [{"product_id": str(scarce["_id"]), "name": scarce["name"], "requested": 3, "available": 1}]
    assert db["product"].find_one({"_id": plenty["_id"]})["stock"] == 20

    ok = client.put("/api/products/reduce-stock", json={"items": [
        {"product_id": str(plenty["_id"]), "quantity": 12},
    ]}, headers=inventory_headers)
    assert ok.status_code == 200
    item = ok.json()["updated_items"][0]
    assert (item["previous_stock"], item["new_stock"], item["stock_status"]) == (20, 8, "low-stock")


def test_delete_product(client, inventory_headers, make_product):
    product = make_product()
    assert client.delete(f"/api/products/{product['_id']}", headers=inventory_headers).json()["deleted"] is True
    assert db["product"].count_documents({}) == 0


def test_update_product_stores_coerced_values(client, inventory_headers, make_product):
    product = make_product(stock=50)
    res = client.put(f"/api/products/{product['_id']}", json={"stock": "3", "retail_price": "30"},
                     headers=inventory_headers)
    assert res.status_code == 200
    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["stock"] == 3 and isinstance(stored["stock"], int)
    assert stored["retail_price"] == 30.0 and isinstance(stored["retail_price"], float)
    assert stored["stock_status"] == "low-stock"

    bad = client.put(f"/api/products/{product['_id']}", json={"stock": "plenty"}, headers=inventory_headers)
    assert bad.status_code == 400
    assert db["product"].find_one({"_id": product["_id"]})["stock"] == 3


def test_search_matches_detailed_description(client, make_product):
    make_product(name="Plain Box", detailed_description="Hand-painted lavender ceramic")
    make_product(name="Other Box")
    found = client.get("/api/products", params={"search": "LAVENDER"}).json()["products"]
    assert [p["name"] for p in found] == ["Plain Box"]


def test_category_update_validates_attributes(client, inventory_headers):
    cid = client.post("/api/categories", json={"key": "cards", "name": "Cards"},
                      headers=inventory_headers).json()["category"]["id"]
    res = client.put(f"/api/categories/{cid}", json={"attributes": [{"name": "size"}]}, headers=inventory_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Validation error"
    assert db["category"].find_one()["attributes"] == []

    ok = client.put(f"/api/categories/{cid}", json={"attributes": [{"name": "size", "display_name": "Size"}]},
                    headers=inventory_headers)
    assert ok.json()["category"]["attributes"][0]["items"] == []
