import gift_finder
from database import create_document
from schemas import Category


def walk(client, answers):
    state, data, reply = "occasion", {}, None
    for answer in answers:
        reply = client.post("/api/chatbot/process", json={
            "user_input": answer, "current_state": state, "conversation_data": data,
        }).json()
        state, data = reply["state"], reply["conversation_data"]
    return reply


def test_start_and_state(client):
    start = client.post("/api/chatbot/start").json()
    assert start["state"] == "occasion"
    assert len(start["options"]) == 10
    states = client.get("/api/chatbot/state").json()
    assert states["states"]["FINAL_SUGGESTIONS"] == "final_suggestions"
    assert len(states["options"]["budgets"]) == 5
    assert client.post("/api/chatbot/reset").json()["state"] == "occasion"


def test_category_options_come_from_catalog(client):
    create_document("category", Category(key="mugs", name="Mugs"))
    create_document("category", Category(key="old", name="Old", is_active=False))
    reply = walk(client, ["Birthday", "Friend", {"label": "Under $25", "min": 0, "max": 25}])
    assert reply["state"] == "category"
    assert reply["options"] == ["Mugs", "No preference"]


def test_full_conversation_suggests_products_in_budget(client, make_product):
    make_product(name="Birthday Mug", main_category="Mugs", tags=["birthday"], retail_price=20, rating=5)
    make_product(name="Birthday Hamper", main_category="Hampers", tags=["birthday"], retail_price=80)
    make_product(name="Featured Card", featured=True, retail_price=5)
    reply = walk(client, ["Birthday", "Friend", {"label": "Under $25", "min": 0, "max": 25}, "No preference", "Funny"])
    assert reply["state"] == "final_suggestions"
    names = [s["name"] for s in reply["suggestions"]]
    assert "Birthday Mug" in names
    assert "Birthday Hamper" not in names
    assert reply["search_summary"]["budget"] == "Under $25"
    assert [a["name"] for a in reply["alternatives"]] == ["Featured Card"]


def test_fallback_to_popular_items(make_product):
    make_product(name="Teapot", rating=5)
    result = gift_finder.suggestions({"occasion": "Graduation", "recipient": "Boss", "preferred_category": "Spaceships",
                                      "style": "Luxury"})
    assert [s["name"] for s in result["suggestions"]] == ["Teapot"]
    assert "popular alternatives" not in result["message"]


def test_process_errors(client):
    assert client.post("/api/chatbot/process", json={"current_state": "occasion"}).status_code == 400
    res = client.post("/api/chatbot/process", json={"user_input": "x", "current_state": "dancing"})
    assert res.status_code == 400
    assert "Invalid conversation state" in res.json()["message"]


def test_within_budget():
    product = {"retail_price": 30, "sale_price": 0}
    assert gift_finder.within_budget(product, {"min": 25, "max": 50})
    assert not gift_finder.within_budget(product, {"min": 0, "max": 25})
    assert gift_finder.within_budget(product, "anything")
