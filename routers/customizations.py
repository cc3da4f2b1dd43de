import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import db, create_document, find_by_id, populate, serialize_doc, to_object_id
from inventory import effective_price
from schemas import QUOTE_CATEGORIES, Customization, Quote, SelectedQuote
from security import get_current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/customizations", tags=["customizations"])

CUSTOMIZATION_STATUSES = ("draft", "confirmed", "in-production", "completed", "cancelled")

DEFAULT_QUOTES = [
    ("Happy Birthday! May your day be filled with happiness and your year with joy.", "birthday", "both",
     ["happy", "joy", "celebration"]),
    ("Another year older, another year wiser. Happy Birthday!", "birthday", "both", ["wisdom", "age", "celebration"]),
    ("Wishing you a birthday that's just as wonderful as you are!", "birthday", "both",
     ["wonderful", "special", "celebration"]),
    ("May your birthday be the start of a year filled with good luck, good health, and much happiness.", "birthday",
     "both", ["luck", "health", "happiness"]),
    ("Happy Birthday to someone who makes every day brighter!", "birthday", "both", ["bright", "special", "celebration"]),
    ("Happy Anniversary! Here's to many more years of love and laughter.", "anniversary", "both",
     ["love", "laughter", "years"]),
    ("Congratulations on another year of love, happiness, and togetherness.", "anniversary", "both",
     ["love", "happiness", "together"]),
    ("May your love continue to grow with each passing year. Happy Anniversary!", "anniversary", "both",
     ["love", "growth", "celebration"]),
    ("Wishing you both a lifetime of love and happiness. Happy Anniversary!", "anniversary", "both",
     ["lifetime", "love", "happiness"]),
    ("You are my sunshine on a cloudy day.", "love", "both", ["sunshine", "cloudy", "romantic"]),
    ("Every moment with you is a treasure.", "love", "both", ["treasure", "moment", "romantic"]),
    ("You make my heart smile.", "love", "both", ["heart", "smile", "romantic"]),
    ("A friend like you is a gift that keeps on giving.", "friendship", "both", ["gift", "friend", "giving"]),
    ("Thank you for being such an amazing friend!", "friendship", "both", ["thanks", "friend", "amazing"]),
    ("Friends like you make life beautiful.", "friendship", "both", ["friends", "life", "beautiful"]),
    ("Believe you can and you're halfway there.", "motivation", "both", ["believe", "halfway", "inspire"]),
    ("Dream big, work hard, stay focused.", "motivation", "both", ["dream", "work", "focus"]),
    ("Success is not final, failure is not fatal: it is the courage to continue that counts.", "motivation", "both",
     ["success", "courage", "inspire"]),
    ("Age is merely mind over matter. If you don't mind, it doesn't matter!", "funny", "both", ["age", "humor"]),
    ("You're not getting older, you're just becoming a classic!", "funny", "both", ["age", "classic", "humor"]),
    ("Coffee: because adulting is hard.", "funny", "mug", ["coffee", "adulting", "humor"]),
    ("Congratulations on your amazing achievement!", "congratulations", "both", ["achievement", "success"]),
    ("Well done! Your hard work has paid off.", "congratulations", "both", ["hard work", "success"]),
    ("Thank you for being so wonderful!", "thank-you", "both", ["thanks", "wonderful"]),
    ("Your kindness means the world to me.", "thank-you", "both", ["kindness", "thanks"]),
    ("Life is beautiful, and so are you!", "general", "both", ["life", "beautiful"]),
    ("Every day is a new beginning.", "general", "both", ["new", "beginning"]),
]

PRODUCT_FIELDS = {"name": 1, "images": 1, "retail_price": 1, "sale_price": 1, "customization_type": 1}


class CustomizationIn(BaseModel):
    product_id: str
    customization_type: str = Field(..., pattern="^(mug|birthday-card|anniversary-card|general-card)$")
    selected_quote: Optional[SelectedQuote] = None
    custom_message: Optional[str] = Field(None, max_length=500)
    font_style: str = "Arial"
    font_size: int = Field(14, ge=6, le=96)
    font_color: str = "#000000"
    text_position: Optional[Dict[str, Any]] = None
    background_color: str = "#FFFFFF"
    additional_images: List[str] = Field(default_factory=list)
    preview_image: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=1000)


class StatusIn(BaseModel):
    status: str


def final_text(customization: dict) -> str:
    quote = (customization.get("selected_quote") or {}).get("text")
    parts = [p for p in (quote, customization.get("custom_message")) if p]
    return "\n\n".join(parts)


def customization_out(doc: dict) -> dict:
    out = serialize_doc(doc)
    out["final_text"] = final_text(doc)
    return out


# Quotes

@router.get("/quotes")
def list_quotes(type: Optional[str] = None, category: Optional[str] = None):
    filt: Dict[str, Any] = {"is_active": True}
    if type:
        filt["type"] = {"$in": [type, "both"]}
    if category:
        filt["category"] = category
    cursor = db["quote"].find(filt).sort([("usage_count", -1), ("created_at", -1)]).limit(50)
    return {"success": True, "quotes": [serialize_doc(q) for q in cursor]}


@router.get("/quotes/categories")
def quote_categories():
    return {"success": True, "categories": list(QUOTE_CATEGORIES)}


@router.post("/quotes/seed")
async def seed_quotes(user: dict = Depends(require_roles("admin"))):
    if db["quote"].count_documents({}) > 0:
        return {"success": True, "message": "Quotes already seeded", "inserted": 0}
    for text, category, kind, tags in DEFAULT_QUOTES:
        create_document("quote", Quote(text=text, category=category, type=kind, tags=tags))
    logger.info("Seeded %d quotes", len(DEFAULT_QUOTES))
    return {"success": True, "message": "Quotes seeded", "inserted": len(DEFAULT_QUOTES)}


@router.get("/products")
def customizable_products(type: Optional[str] = None):
    filt: Dict[str, Any] = {"is_customizable": True, "status": "active", "stock_status": {"$ne": "out-of-stock"}}
    if type:
        filt["customization_type"] = type
    products = []
    for p in db["product"].find(filt).sort("created_at", -1):
        out = serialize_doc(p)
        out["price"] = effective_price(p)
        products.append(out)
    return {"success": True, "products": products}


# Customizations

@router.post("")
async def save_customization(payload: CustomizationIn, user: dict = Depends(get_current_user)):
    product = find_by_id("product", payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if not product.get("is_customizable"):
        raise HTTPException(status_code=400, detail="This product is not customizable")

    data = payload.model_dump(exclude_none=True)
    customization = Customization(
        user_id=str(user["_id"]),
        price=round(effective_price(product) + float(product.get("customization_price") or 0), 2),
        **data,
    ).model_dump()
    customization.pop("status")
    customization.pop("order_id")

    now = datetime.utcnow()
    customization["updated_at"] = now
    draft = {"user_id": str(user["_id"]), "product_id": payload.product_id, "status": "draft"}
    try:
        db["customization"].update_one(draft, {"$set": customization, "$setOnInsert": {"created_at": now}}, upsert=True)
    except DuplicateKeyError:
        # a concurrent save inserted the draft first
        db["customization"].update_one(draft, {"$set": customization})
    quote_id = to_object_id(payload.selected_quote.id) if payload.selected_quote and payload.selected_quote.id else None
    if quote_id:
        db["quote"].update_one({"_id": quote_id}, {"$inc": {"usage_count": 1}})

    doc = db["customization"].find_one({"user_id": str(user["_id"]), "product_id": payload.product_id, "status": "draft"})
    out = customization_out(doc)
    populate([out], "product_id", "product", "product", PRODUCT_FIELDS)
    return {"success": True, "message": "Customization saved", "customization": out}


@router.get("/my")
async def my_customizations(user: dict = Depends(get_current_user)):
    docs = [customization_out(c) for c in db["customization"].find({"user_id": str(user["_id"])}).sort("created_at", -1)]
    populate(docs, "product_id", "product", "product", PRODUCT_FIELDS)
    return {"success": True, "customizations": docs}


# Admin

@router.get("/admin/all")
async def all_customizations(page: int = 1, limit: int = 10, status: Optional[str] = None,
                             customization_type: Optional[str] = None,
                             user: dict = Depends(require_roles("admin"))):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    if customization_type:
        filt["customization_type"] = customization_type
    total = db["customization"].count_documents(filt)
    cursor = db["customization"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    docs = [customization_out(c) for c in cursor]
    populate(docs, "product_id", "product", "product", {"name": 1, "images": 1})
    populate(docs, "user_id", "user", "user", {"first_name": 1, "last_name": 1, "email": 1})
    return {
        "success": True,
        "customizations": docs,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.put("/admin/{customization_id}/status")
async def update_customization_status(customization_id: str, payload: StatusIn,
                                      user: dict = Depends(require_roles("admin"))):
    if payload.status not in CUSTOMIZATION_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    doc = find_by_id("customization", customization_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Customization not found")
    db["customization"].update_one({"_id": doc["_id"]},
                                   {"$set": {"status": payload.status, "updated_at": datetime.utcnow()}})
    logger.info("Customization %s: %s -> %s", customization_id, doc["status"], payload.status)
    return {"success": True, "message": "Customization status updated successfully",
            "customization": customization_out(find_by_id("customization", customization_id))}


@router.get("/{customization_id}")
async def get_customization(customization_id: str, user: dict = Depends(get_current_user)):
    doc = find_by_id("customization", customization_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Customization not found")
    if doc["user_id"] != str(user["_id"]) and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    out = customization_out(doc)
    populate([out], "product_id", "product", "product", PRODUCT_FIELDS)
    return {"success": True, "customization": out}


@router.delete("/{customization_id}")
async def delete_customization(customization_id: str, user: dict = Depends(get_current_user)):
    oid = to_object_id(customization_id)
    doc = db["customization"].find_one({"_id": oid, "user_id": str(user["_id"]), "status": "draft"}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail="Customization not found or cannot be deleted")
    db["customization"].delete_one({"_id": doc["_id"]})
    return {"success": True, "message": "Customization deleted successfully"}
