import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError
from pymongo.errors import DuplicateKeyError

from database import db, create_document, find_by_id, serialize_doc, to_object_id, transaction
from inventory import InsufficientStockError, effective_price, profit_margin, reduce_stock, stock_status_for
from errors import invalid
from schemas import Product
from security import STAFF_ROLES, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

SORTABLE = {"created_at", "updated_at", "name", "retail_price", "sale_price", "stock", "rating", "sku"}
IMMUTABLE = {"_id", "id", "created_at", "created_by", "stock_status"}


class StockLine(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class ReduceStockRequest(BaseModel):
    items: List[StockLine] = Field(..., min_length=1)


def product_out(doc: dict) -> dict:
    out = serialize_doc(doc)
    out["price"] = effective_price(doc)
    out["profit_margin"] = profit_margin(doc)
    return out


def prepare_product(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise SKU and fill derived fields before a write."""
    if data.get("sku"):
        data["sku"] = str(data["sku"]).strip().upper()
    if isinstance(data.get("stock"), (int, float)):
        data["stock_status"] = stock_status_for(int(data["stock"]))
    if data.get("name") and not data.get("seo_title"):
        data["seo_title"] = data["name"][:60]
    if data.get("short_description") and not data.get("seo_description"):
        data["seo_description"] = data["short_description"][:160]
    return data


# Catalog

@router.get("")
def list_products(request: Request, page: int = 1, limit: int = 10, search: Optional[str] = None,
                  category: Optional[str] = None, status: Optional[str] = None,
                  sort_by: str = "created_at", sort_order: str = "desc"):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt: Dict[str, Any] = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"sku": pattern}, {"short_description": pattern},
                       {"detailed_description": pattern}]
    if category:
        filt["main_category"] = category
    if status:
        filt["status"] = status
    for key, value in request.query_params.items():
        if key.startswith("attributes.") and value:
            filt[f"filters.{key.split('.', 1)[1]}"] = {"$in": [v.strip() for v in value.split(",") if v.strip()]}

    sort_field = sort_by if sort_by in SORTABLE else "created_at"
    direction = 1 if sort_order == "asc" else -1
    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt).sort(sort_field, direction).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "products": [product_out(p) for p in cursor],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.put("/reduce-stock")
async def reduce_product_stock(payload: ReduceStockRequest, user: dict = Depends(require_roles(*STAFF_ROLES))):
    lines = [line.model_dump() for line in payload.items]
    try:
        with transaction() as session:
            updated = reduce_stock(lines, session=session)
    except InsufficientStockError as e:
        raise HTTPException(status_code=400, detail={
            "message": "Insufficient stock for one or more items",
            "insufficient_stock_items": e.items,
        })
    logger.info("Stock reduced for %d products by %s", len(updated), user["email"])
    return {"success": True, "message": "Stock reduced successfully", "updated_items": updated}


@router.get("/{product_id}")
def get_product(product_id: str):
    if to_object_id(product_id) is None:
        raise HTTPException(status_code=400, detail="Invalid product id")
    p = find_by_id("product", product_id)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "product": product_out(p)}


@router.post("", status_code=201)
async def create_product(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_roles(*STAFF_ROLES))):
    data = prepare_product(dict(payload))
    data["created_by"] = str(user["_id"])
    try:
        product = Product(**data)
    except ValidationError as e:
        raise invalid(e.errors())
    if db["product"].find_one({"sku": product.sku}):
        raise HTTPException(status_code=400, detail="SKU already exists")
    try:
        pid = create_document("product", product)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="SKU already exists")
    logger.info("Product %s (%s) created by %s", pid, product.sku, user["email"])
    return {"success": True, "message": "Product created successfully", "product": product_out(find_by_id("product", pid))}


@router.put("/{product_id}")
async def update_product(product_id: str, payload: Dict[str, Any] = Body(...),
                         user: dict = Depends(require_roles(*STAFF_ROLES))):
    existing = find_by_id("product", product_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    changes = {k: v for k, v in payload.items() if k not in IMMUTABLE}
    merged = {**{k: v for k, v in existing.items() if k != "_id"}, **changes}
    try:
        product = Product(**merged)
    except ValidationError as e:
        raise invalid(e.errors())
    # write the coerced values, not the raw payload
    validated = prepare_product(product.model_dump())
    update = {k: validated[k] for k in set(changes) | {"stock_status"} if k in validated}
    if "sku" in update and db["product"].find_one({"sku": update["sku"], "_id": {"$ne": existing["_id"]}}):
        raise HTTPException(status_code=400, detail="SKU already exists")

    update["updated_by"] = str(user["_id"])
    update["updated_at"] = datetime.utcnow()
    db["product"].update_one({"_id": existing["_id"]}, {"$set": update})
    return {"success": True, "message": "Product updated successfully", "product": product_out(find_by_id("product", product_id))}


@router.delete("/{product_id}")
async def delete_product(product_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    existing = find_by_id("product", product_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    db["product"].delete_one({"_id": existing["_id"]})
    logger.info("Product %s deleted by %s", existing.get("sku"), user["email"])
    return {"success": True, "id": product_id, "deleted": True}
