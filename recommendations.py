import logging
import re
from typing import List

from config import settings
from database import db
from inventory import effective_price

logger = logging.getLogger(__name__)

OCCASION_KEYWORDS = {
    "birthday": ["birthday", "cake", "celebration", "party", "gift", "candle", "balloon", "surprise", "happy birthday"],
    "anniversary": ["anniversary", "love", "couple", "romantic", "romance", "heart", "together", "forever", "wedding"],
    "wedding": ["wedding", "bride", "groom", "marriage", "ceremony", "bridal", "ring", "bouquet", "white", "dress"],
    "graduation": ["graduation", "diploma", "achievement", "success", "graduate", "education", "school", "college", "university"],
    "baby_shower": ["baby", "newborn", "infant", "shower", "pregnancy", "mother", "cute", "soft", "toy"],
    "housewarming": ["home", "house", "new home", "housewarming", "decor", "furniture", "decoration", "plant", "welcome"],
    "valentine_day": ["valentine", "love", "romantic", "heart", "red", "rose", "romance", "couple", "date"],
    "mother_day": ["mother", "mom", "mama", "maternal", "care", "love", "appreciation", "family", "woman"],
    "father_day": ["father", "dad", "papa", "paternal", "man", "masculine", "strength", "family", "appreciation"],
    "christmas": ["christmas", "xmas", "holiday", "santa", "tree", "gift", "festive", "red", "green", "winter"],
    "new_year": ["new year", "celebration", "party", "champagne", "fireworks", "resolution", "fresh start", "golden"],
    "thanksgiving": ["thanksgiving", "grateful", "thankful", "harvest", "autumn", "family", "dinner", "turkey"],
    "engagement": ["engagement", "proposal", "ring", "couple", "love", "commitment", "romantic", "forever"],
    "retirement": ["retirement", "senior", "relaxation", "freedom", "achievement", "career", "rest", "hobby"],
    "promotion": ["promotion", "success", "achievement", "career", "professional", "congratulations", "office", "work"],
    "get_well_soon": ["get well", "health", "recovery", "healing", "care", "comfort", "wellness", "medicine", "support"],
    "sympathy": ["sympathy", "condolence", "comfort", "support", "care", "thoughtful", "peaceful", "memory"],
    "congratulations": ["congratulations", "achievement", "success", "celebration", "proud", "accomplishment", "victory"],
    "thank_you": ["thank you", "appreciation", "grateful", "thanks", "gratitude", "thoughtful", "kind", "generous"],
    "general": ["gift", "present", "surprise", "special", "thoughtful", "care", "love", "appreciation"],
}

OCCASION_LABELS = {
    "birthday": "Birthday",
    "anniversary": "Anniversary",
    "wedding": "Wedding",
    "graduation": "Graduation",
    "baby_shower": "Baby Shower",
    "housewarming": "Housewarming",
    "valentine_day": "Valentine's Day",
    "mother_day": "Mother's Day",
    "father_day": "Father's Day",
    "christmas": "Christmas",
    "new_year": "New Year",
    "thanksgiving": "Thanksgiving",
    "engagement": "Engagement",
    "retirement": "Retirement",
    "promotion": "Promotion",
    "get_well_soon": "Get Well Soon",
    "sympathy": "Sympathy",
    "congratulations": "Congratulations",
    "thank_you": "Thank You",
    "general": "General Gift",
}

MIN_MATCHES = 3


def occasion_types() -> List[dict]:
    return [{"value": k, "label": v} for k, v in OCCASION_LABELS.items()]


def format_recommendation(product: dict) -> dict:
    images = product.get("images") or []
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "short_description": product.get("short_description"),
        "main_category": product.get("main_category"),
        "image": images[0].get("url") if images else None,
        "price": effective_price(product),
        "original_price": product.get("retail_price"),
        "on_sale": float(product.get("sale_price") or 0) > 0,
        "rating": product.get("rating") or 3,
        "link": f"{settings.FRONTEND_URL.rstrip('/')}/products/{product['_id']}",
        "tags": product.get("tags", []),
    }


def get_product_recommendations(occasion: str, limit: int = 5) -> List[dict]:
    keywords = OCCASION_KEYWORDS.get(occasion, OCCASION_KEYWORDS["general"])
    pattern = "|".join(re.escape(k) for k in keywords)
    query = {
        "status": "active",
        "$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"short_description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$in": [re.compile(re.escape(k), re.IGNORECASE) for k in keywords]}},
            {"main_category": {"$regex": pattern, "$options": "i"}},
        ],
    }
    products = list(db["product"].find(query).sort([("rating", -1), ("featured", -1)]).limit(limit * 2))

    remaining = limit - len(products)
    if len(products) < MIN_MATCHES and remaining > 0:
        seen = [p["_id"] for p in products]
        fallback = db["product"].find({"status": "active", "_id": {"$nin": seen}}) \
            .sort([("featured", -1), ("rating", -1)]).limit(remaining)
        products.extend(fallback)

    logger.debug("Recommendations for %s: %d products", occasion, len(products))
    return [format_recommendation(p) for p in products[:max(1, limit)]]
