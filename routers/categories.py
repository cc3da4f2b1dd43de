import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from pymongo.errors import DuplicateKeyError

from database import db, create_document, find_by_id, serialize_doc
from errors import invalid
from schemas import Category, CategoryAttribute
from security import STAFF_ROLES, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryIn(BaseModel):
    key: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    attributes: List[CategoryAttribute] = Field(default_factory=list)
    icon: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class ItemIn(BaseModel):
    item: str = Field(..., min_length=1)


class ItemRename(BaseModel):
    new_item: str = Field(..., min_length=1)


def _category_or_404(category_id: str) -> dict:
    category = find_by_id("category", category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _attribute_or_404(category: dict, attribute: str) -> dict:
    for attr in category.get("attributes", []):
        if attr["name"] == attribute:
            return attr
    raise HTTPException(status_code=404, detail="Attribute not found")


def _save_attributes(category: dict) -> dict:
    db["category"].update_one(
        {"_id": category["_id"]},
        {"$set": {"attributes": category["attributes"], "updated_at": datetime.utcnow()}},
    )
    return serialize_doc(db["category"].find_one({"_id": category["_id"]}))


@router.get("")
def list_categories(active_only: bool = False):
    filt = {"is_active": True} if active_only else {}
    categories = [serialize_doc(c) for c in db["category"].find(filt).sort([("sort_order", 1), ("name", 1)])]
    return {"success": True, "categories": categories}


@router.get("/key/{key}")
def get_category_by_key(key: str):
    category = db["category"].find_one({"key": key.lower()})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True, "category": serialize_doc(category)}


@router.get("/{category_id}")
def get_category(category_id: str):
    return {"success": True, "category": serialize_doc(_category_or_404(category_id))}


@router.post("", status_code=201)
async def create_category(payload: CategoryIn, user: dict = Depends(require_roles(*STAFF_ROLES))):
    data = payload.model_dump()
    data["key"] = data["key"].strip().lower()
    if db["category"].find_one({"key": data["key"]}):
        raise HTTPException(status_code=400, detail="Category key already exists")
    try:
        cid = create_document("category", Category(**data))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Category key already exists")
    return {"success": True, "category": serialize_doc(find_by_id("category", cid))}


@router.put("/{category_id}")
async def update_category(category_id: str, payload: Dict[str, Any] = Body(...), user: dict = Depends(require_roles(*STAFF_ROLES))):
    category = _category_or_404(category_id)
    allowed = set(CategoryIn.model_fields)
    update = {k: v for k, v in payload.items() if k in allowed}
    if "key" in update:
        update["key"] = str(update["key"]).strip().lower()
        clash = db["category"].find_one({"key": update["key"], "_id": {"$ne": category["_id"]}})
        if clash:
            raise HTTPException(status_code=400, detail="Category key already exists")
    if "attributes" in update:
        try:
            update["attributes"] = [CategoryAttribute.model_validate(a).model_dump() for a in update["attributes"] or []]
        except ValidationError as e:
            raise invalid(e.errors())
    update["updated_at"] = datetime.utcnow()
    db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    return {"success": True, "category": serialize_doc(db["category"].find_one({"_id": category["_id"]}))}


@router.delete("/{category_id}")
async def delete_category(category_id: str, user: dict = Depends(require_roles(*STAFF_ROLES))):
    category = _category_or_404(category_id)
    db["category"].delete_one({"_id": category["_id"]})
    logger.info("Category %s deleted by %s", category["key"], user["email"])
    return {"success": True, "id": category_id, "deleted": True}


# Attribute items

@router.get("/{category_id}/attributes/{attribute}/items/{item}")
def check_item(category_id: str, attribute: str, item: str):
    attr = _attribute_or_404(_category_or_404(category_id), attribute)
    return {"success": True, "exists": item in attr.get("items", [])}


@router.post("/{category_id}/attributes/{attribute}/items")
async def add_item(category_id: str, attribute: str, payload: ItemIn,
                   user: dict = Depends(require_roles(*STAFF_ROLES))):
    category = _category_or_404(category_id)
    attr = _attribute_or_404(category, attribute)
    item = payload.item.strip()
    if item in attr.get("items", []):
        raise HTTPException(status_code=400, detail="Item already exists")
    attr.setdefault("items", []).append(item)
    return {"success": True, "category": _save_attributes(category)}


@router.put("/{category_id}/attributes/{attribute}/items/{item}")
async def rename_item(category_id: str, attribute: str, item: str, payload: ItemRename,
                      user: dict = Depends(require_roles(*STAFF_ROLES))):
    category = _category_or_404(category_id)
    attr = _attribute_or_404(category, attribute)
    items = attr.get("items", [])
    if item not in items:
        raise HTTPException(status_code=404, detail="Item not found")
    new_item = payload.new_item.strip()
    if new_item != item and new_item in items:
        raise HTTPException(status_code=400, detail="Item already exists")
    attr["items"] = [new_item if i == item else i for i in items]
    return {"success": True, "category": _save_attributes(category)}


@router.delete("/{category_id}/attributes/{attribute}/items/{item}")
async def delete_item(category_id: str, attribute: str, item: str,
                      user: dict = Depends(require_roles(*STAFF_ROLES))):
    category = _category_or_404(category_id)
    attr = _attribute_or_404(category, attribute)
    if item not in attr.get("items", []):
        raise HTTPException(status_code=404, detail="Item not found")
    attr["items"] = [i for i in attr["items"] if i != item]
    return {"success": True, "category": _save_attributes(category)}
