"""
Gift-finder conversation.

The server keeps no conversation state: each turn the client sends back the
``state`` it was given and the accumulated ``conversation_data``, and gets
the next question (or the final suggestions) in return.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from database import db
from inventory import effective_price

logger = logging.getLogger(__name__)

START = "start"
OCCASION = "occasion"
RECIPIENT = "recipient"
BUDGET = "budget"
CATEGORY = "category"
STYLE = "style"
FINAL_SUGGESTIONS = "final_suggestions"

STATES = {
    "START": START,
    "OCCASION": OCCASION,
    "RECIPIENT": RECIPIENT,
    "BUDGET": BUDGET,
    "CATEGORY": CATEGORY,
    "STYLE": STYLE,
    "FINAL_SUGGESTIONS": FINAL_SUGGESTIONS,
}

NO_PREFERENCE = "No preference"

OPTIONS = {
    "occasions": ["Birthday", "Anniversary", "Wedding", "Valentine's Day", "Christmas",
                  "Mother's Day", "Father's Day", "Graduation", "Baby Shower", "Just Because"],
    "recipients": ["Partner/Spouse", "Mother", "Father", "Friend", "Sibling",
                   "Colleague", "Child", "Grandparent", "Teacher", "Boss"],
    "budgets": [
        {"label": "Under $25", "min": 0, "max": 25},
        {"label": "$25 - $50", "min": 25, "max": 50},
        {"label": "$50 - $100", "min": 50, "max": 100},
        {"label": "$100 - $200", "min": 100, "max": 200},
        {"label": "Over $200", "min": 200, "max": 10000},
    ],
    "styles": ["Modern", "Classic", "Romantic", "Funny", "Elegant",
               "Casual", "Luxury", "Personalized", "Practical", "Unique"],
}

FALLBACK_CATEGORIES = ["Gifts", "Cards", "Jewelry", "Accessories", "Home & Decor"]

OCCASION_MAPPING = {
    "Birthday": {
        "categories": ["gifts", "cards", "customizable"],
        "tags": ["birthday", "celebration", "party", "cake", "candle"],
        "keywords": ["birthday", "celebrate", "party", "gift", "card"],
    },
    "Anniversary": {
        "categories": ["gifts", "cards", "jewelry", "customizable"],
        "tags": ["anniversary", "love", "romantic", "couple", "memory"],
        "keywords": ["anniversary", "love", "romantic", "together", "memory"],
    },
    "Wedding": {
        "categories": ["gifts", "jewelry", "home-decor"],
        "tags": ["wedding", "marriage", "couple", "celebration", "elegant"],
        "keywords": ["wedding", "marriage", "bride", "groom", "couple"],
    },
    "Valentine's Day": {
        "categories": ["gifts", "jewelry", "cards", "flowers"],
        "tags": ["valentine", "love", "romantic", "heart", "couple"],
        "keywords": ["valentine", "love", "romantic", "heart", "red"],
    },
    "Christmas": {
        "categories": ["gifts", "decorations", "cards"],
        "tags": ["christmas", "holiday", "festive", "winter", "family"],
        "keywords": ["christmas", "holiday", "festive", "santa", "winter"],
    },
}

RECIPIENT_MAPPING = {
    "Partner/Spouse": {"tags": ["romantic", "love", "couple", "personal", "intimate"]},
    "Mother": {"tags": ["mom", "mother", "family", "love", "care"]},
    "Father": {"tags": ["dad", "father", "family", "practical", "tools"]},
    "Friend": {"tags": ["friendship", "fun", "casual", "thoughtful", "share"]},
}


class InvalidState(ValueError):
    pass


def _any_of(words: List[str]) -> List[re.Pattern]:
    return [re.compile(re.escape(w), re.IGNORECASE) for w in words]


def start() -> dict:
    return {
        "message": "Hi! I'm here to help you find the perfect gift! Let's start with a few questions "
                   "to understand what you're looking for.",
        "state": OCCASION,
        "question": "What's the occasion?",
        "options": OPTIONS["occasions"],
        "allow_custom_input": True,
    }


def category_options() -> List[str]:
    names = [c["name"] for c in db["category"].find({"is_active": True}, {"name": 1}).sort("sort_order", 1)]
    return (names or FALLBACK_CATEGORIES) + [NO_PREFERENCE]


def process(user_input: Any, current_state: str, conversation_data: Optional[Dict[str, Any]] = None) -> dict:
    data = dict(conversation_data or {})

    if current_state == OCCASION:
        data["occasion"] = user_input
        return {
            "message": f"Great! A gift for {data['occasion']}.",
            "state": RECIPIENT,
            "question": "Who is this gift for?",
            "options": OPTIONS["recipients"],
            "allow_custom_input": True,
            "conversation_data": data,
        }
    if current_state == RECIPIENT:
        data["recipient"] = user_input
        return {
            "message": f"Perfect! A {data.get('occasion')} gift for your {data['recipient']}.",
            "state": BUDGET,
            "question": "What's your budget range?",
            "options": OPTIONS["budgets"],
            "conversation_data": data,
        }
    if current_state == BUDGET:
        data["budget"] = user_input
        return {
            "message": "Budget set! Now let's narrow it down.",
            "state": CATEGORY,
            "question": "Any specific product category in mind?",
            "options": category_options(),
            "allow_custom_input": True,
            "conversation_data": data,
        }
    if current_state == CATEGORY:
        data["preferred_category"] = user_input
        return {
            "message": "Almost there! Just one more question.",
            "state": STYLE,
            "question": "What style are you looking for?",
            "options": OPTIONS["styles"],
            "allow_custom_input": True,
            "conversation_data": data,
        }
    if current_state == STYLE:
        data["style"] = user_input
        return suggestions(data)
    raise InvalidState(f"Invalid conversation state: {current_state}")


def build_search_query(data: Dict[str, Any]) -> Dict[str, Any]:
    query: Dict[str, Any] = {"status": "active"}
    any_of: List[Dict[str, Any]] = []

    category = data.get("preferred_category")
    if category and category != NO_PREFERENCE:
        query["main_category"] = {"$regex": re.escape(category), "$options": "i"}

    mapping = OCCASION_MAPPING.get(data.get("occasion"))
    if mapping:
        any_of.append({"main_category": {"$in": _any_of(mapping["categories"])}})
        any_of.append({"tags": {"$in": _any_of(mapping["tags"])}})
        words = _any_of(mapping["keywords"])
        any_of.append({"$or": [
            {"name": {"$in": words}},
            {"short_description": {"$in": words}},
            {"detailed_description": {"$in": words}},
        ]})

    recipient = RECIPIENT_MAPPING.get(data.get("recipient"))
    if recipient:
        any_of.append({"tags": {"$in": _any_of(recipient["tags"])}})

    style = data.get("style")
    if style and style != NO_PREFERENCE:
        pattern = {"$regex": re.escape(style), "$options": "i"}
        any_of.append({"$or": [{"tags": pattern}, {"name": pattern}, {"short_description": pattern}]})

    if any_of:
        query["$or"] = any_of
    return query


def _popular(limit: int = 10) -> List[dict]:
    return list(db["product"].find({"status": "active"}).sort([("rating", -1), ("featured", -1)]).limit(limit))


def fallback_search(data: Dict[str, Any]) -> List[dict]:
    category = data.get("preferred_category")
    if category and category != NO_PREFERENCE:
        first_word = re.escape(str(category).split(" ")[0])
        found = list(db["product"].find({
            "status": "active", "main_category": {"$regex": first_word, "$options": "i"},
        }).limit(10))
        if found:
            return found

    occasion = data.get("occasion")
    if occasion:
        terms = _any_of([str(occasion).lower(), "gift", "present"])
        found = list(db["product"].find({
            "status": "active", "$or": [{"tags": {"$in": terms}}, {"name": {"$in": terms}}],
        }).limit(10))
        if found:
            return found

    return _popular()


def within_budget(product: dict, budget: Any) -> bool:
    if not isinstance(budget, dict) or budget.get("min") is None:
        return True
    price = effective_price(product)
    return budget["min"] <= price <= budget.get("max", float("inf"))


def suggestion_message(data: Dict[str, Any], count: int) -> str:
    occasion, recipient = data.get("occasion"), data.get("recipient")
    if count == 0:
        return (f"I couldn't find exact matches for your {occasion} gift for {recipient}, "
                f"but here are some popular alternatives that might work!")
    if count == 1:
        return f"Perfect! I found a great {occasion} gift for your {recipient}!"
    return f"Excellent! I found {count} perfect {occasion} gifts for your {recipient}! Here are my top recommendations:"


def _card(product: dict, full: bool = True) -> dict:
    card = {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "short_description": product.get("short_description"),
        "price": effective_price(product),
        "images": product.get("images") or [],
        "category": product.get("main_category"),
    }
    if full:
        card.update({
            "original_price": product.get("retail_price"),
            "rating": product.get("rating"),
            "tags": product.get("tags") or [],
        })
    return card


def suggestions(data: Dict[str, Any]) -> dict:
    query = build_search_query(data)
    products = list(db["product"].find(query).sort([("rating", -1), ("created_at", -1)]).limit(20))
    if not products:
        products = fallback_search(data)
    if not products:
        products = _popular()

    budget = data.get("budget")
    products = [p for p in products if within_budget(p, budget)][:8]
    alternatives = list(db["product"].find({"status": "active", "featured": True}).sort("rating", -1).limit(4))
    logger.info("Gift finder produced %d suggestions for %s", len(products), data.get("occasion"))

    return {
        "message": suggestion_message(data, len(products)),
        "state": FINAL_SUGGESTIONS,
        "suggestions": [_card(p) for p in products],
        "alternatives": [_card(p, full=False) for p in alternatives],
        "search_summary": {
            "occasion": data.get("occasion"),
            "recipient": data.get("recipient"),
            "budget": budget.get("label") if isinstance(budget, dict) else budget,
            "category": data.get("preferred_category"),
            "style": data.get("style"),
            "total_found": len(products),
        },
        "conversation_data": data,
    }
